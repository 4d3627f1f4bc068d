"""Approval state machine for templates and customer assessments."""

from credit_rating.approval.state_machine import (
    ASSESSMENT_MACHINE,
    TEMPLATE_MACHINE,
    Approvable,
    ApprovalAction,
    ApprovalStateMachine,
)

__all__ = [
    "ASSESSMENT_MACHINE",
    "TEMPLATE_MACHINE",
    "Approvable",
    "ApprovalAction",
    "ApprovalStateMachine",
]
