"""Credit rating foundation: templates, customer assessments, customers, activity log.

Revision ID: 0001
Revises:
Create Date: 2026-10-18

Creates:
- assessment_templates: questionnaire tree (JSONB) with approval state
- customer_assessments: answer snapshot and scores with approval state
- customers: directory keyed by customer_id, NIC unique
- activity_log: append-only record of user actions

Decimal scores and weights inside JSONB are stored as strings.
"""

from alembic import op

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Apply migration: create tables and indexes."""

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS assessment_templates (
            template_id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            categories JSONB NOT NULL,
            status TEXT NOT NULL DEFAULT 'inactive'
                CHECK (status IN ('active', 'inactive')),
            approval_status TEXT NOT NULL DEFAULT 'pending'
                CHECK (approval_status IN ('pending', 'approved', 'rejected')),
            approval_comments TEXT,
            approved_by TEXT,
            approved_at TIMESTAMPTZ,
            is_hidden BOOLEAN NOT NULL DEFAULT FALSE,
            created_by TEXT NOT NULL,
            created_at TIMESTAMPTZ NOT NULL,
            updated_by TEXT,
            updated_at TIMESTAMPTZ,
            is_deleted BOOLEAN NOT NULL DEFAULT FALSE,
            deleted_by TEXT,
            deleted_at TIMESTAMPTZ
        )
        """
    )

    # Names are unique case-insensitively among live templates only
    op.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_assessment_templates_live_name
        ON assessment_templates (lower(name))
        WHERE is_deleted = FALSE
        """
    )
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_assessment_templates_approval_status
        ON assessment_templates (approval_status)
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS customer_assessments (
            assessment_id TEXT PRIMARY KEY,
            customer_id TEXT NOT NULL,
            customer_name TEXT NOT NULL,
            nic TEXT NOT NULL,
            customer_type TEXT NOT NULL CHECK (customer_type IN ('new', 'existing')),
            assessment_template_id TEXT NOT NULL
                REFERENCES assessment_templates (template_id),
            assessment_template_name TEXT,
            answers JSONB NOT NULL DEFAULT '[]'::jsonb,
            category_scores JSONB NOT NULL DEFAULT '[]'::jsonb,
            total_score NUMERIC NOT NULL,
            rating TEXT NOT NULL,
            approval_status TEXT NOT NULL DEFAULT 'pending'
                CHECK (approval_status IN ('pending', 'approved', 'rejected')),
            rejection_remarks TEXT,
            approved_by TEXT,
            approved_at TIMESTAMPTZ,
            rejected_by TEXT,
            rejected_at TIMESTAMPTZ,
            assessed_by TEXT NOT NULL,
            created_at TIMESTAMPTZ NOT NULL,
            updated_by TEXT,
            updated_at TIMESTAMPTZ,
            is_deleted BOOLEAN NOT NULL DEFAULT FALSE,
            deleted_by TEXT,
            deleted_at TIMESTAMPTZ
        )
        """
    )
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_customer_assessments_customer
        ON customer_assessments (customer_id, created_at DESC)
        """
    )
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_customer_assessments_status
        ON customer_assessments (approval_status)
        """
    )
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_customer_assessments_template
        ON customer_assessments (assessment_template_id)
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS customers (
            customer_id TEXT PRIMARY KEY,
            customer_name TEXT NOT NULL,
            nic TEXT NOT NULL,
            contact_number TEXT NOT NULL DEFAULT '',
            email TEXT NOT NULL DEFAULT '',
            address TEXT NOT NULL DEFAULT '',
            created_at TIMESTAMPTZ NOT NULL
        )
        """
    )
    op.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_customers_nic
        ON customers (upper(nic))
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS activity_log (
            entry_id UUID PRIMARY KEY,
            username TEXT NOT NULL,
            action TEXT NOT NULL,
            description TEXT NOT NULL,
            metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
            created_at TIMESTAMPTZ NOT NULL
        )
        """
    )
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_activity_log_created_at
        ON activity_log (created_at DESC)
        """
    )


def downgrade() -> None:
    """Revert migration: drop all tables."""
    op.execute("DROP TABLE IF EXISTS activity_log")
    op.execute("DROP TABLE IF EXISTS customers")
    op.execute("DROP TABLE IF EXISTS customer_assessments")
    op.execute("DROP TABLE IF EXISTS assessment_templates")
