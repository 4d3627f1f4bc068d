"""Credit rating RBAC role definitions.

Roles:
- AUTHOR: builds and edits assessment templates
- APPROVER: approves or rejects templates and customer assessments
- ASSESSOR: loan officer who assesses customers
- ADMIN: may do everything
- AUDITOR: read-only

Authorization is deny-by-default: each mutating route names the roles that
may call it, and ADMIN is always among them.
"""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """RBAC roles."""

    AUTHOR = "AUTHOR"
    APPROVER = "APPROVER"
    ASSESSOR = "ASSESSOR"
    ADMIN = "ADMIN"
    AUDITOR = "AUDITOR"


ALL_ROLES: frozenset[str] = frozenset(r.value for r in Role)
TEMPLATE_AUTHORS: frozenset[str] = frozenset({Role.AUTHOR.value, Role.ADMIN.value})
APPROVERS: frozenset[str] = frozenset({Role.APPROVER.value, Role.ADMIN.value})
ASSESSORS: frozenset[str] = frozenset({Role.ASSESSOR.value, Role.ADMIN.value})


def is_allowed(actor_roles: frozenset[str], allowed_roles: frozenset[str]) -> bool:
    """Return True if any of the actor's roles is allowed."""
    return bool(actor_roles & allowed_roles)
