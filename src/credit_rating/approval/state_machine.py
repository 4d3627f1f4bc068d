"""Approval state machine shared by templates and customer assessments.

Both entity kinds move through the same three states:

    pending --approve--> approved
    pending --reject---> rejected
    rejected --resubmit--> pending

They differ only in which content edits are permitted, so each kind gets its
own fixed transition table on one ApprovalStateMachine class. Transitions are
not configurable at runtime.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Generic, TypeVar

from credit_rating.errors import StateConflictError
from credit_rating.models.template import ApprovalStatus

T = TypeVar("T")


class ApprovalAction(StrEnum):
    """Actions that may move an entity between approval states."""

    APPROVE = "approve"
    REJECT = "reject"
    EDIT = "edit"
    RESUBMIT = "resubmit"
    DELETE = "delete"


@dataclass(frozen=True)
class ApprovalStateMachine:
    """Fixed transition table for one entity kind.

    Attributes:
        entity_kind: Name used in errors and logs (e.g. "template").
        transitions: Mapping of (current status, action) -> next status.
    """

    entity_kind: str
    transitions: dict[tuple[ApprovalStatus, ApprovalAction], ApprovalStatus] = field(
        default_factory=dict
    )

    def can(self, current: ApprovalStatus, action: ApprovalAction) -> bool:
        return (ApprovalStatus(current), action) in self.transitions

    def allowed_actions(self, current: ApprovalStatus) -> frozenset[ApprovalAction]:
        status = ApprovalStatus(current)
        return frozenset(action for (src, action) in self.transitions if src == status)

    def next_status(
        self,
        entity_id: str,
        current: ApprovalStatus | str,
        action: ApprovalAction,
    ) -> ApprovalStatus:
        """Return the status reached by applying ``action`` from ``current``.

        Raises:
            StateConflictError: If the transition is not in the table.
        """
        status = ApprovalStatus(current)
        target = self.transitions.get((status, action))
        if target is None:
            raise StateConflictError(
                self.entity_kind,
                entity_id,
                current_status=status.value,
                attempted=action.value,
            )
        return target


@dataclass(frozen=True)
class Approvable(Generic[T]):
    """An entity payload paired with its approval status."""

    entity_id: str
    status: ApprovalStatus
    payload: T

    def apply(self, machine: ApprovalStateMachine, action: ApprovalAction) -> Approvable[T]:
        """Return a copy moved to the status reached by ``action``.

        Raises:
            StateConflictError: If the machine forbids the transition.
        """
        target = machine.next_status(self.entity_id, self.status, action)
        return Approvable(entity_id=self.entity_id, status=target, payload=self.payload)


_DECISIONS: dict[tuple[ApprovalStatus, ApprovalAction], ApprovalStatus] = {
    (ApprovalStatus.PENDING, ApprovalAction.APPROVE): ApprovalStatus.APPROVED,
    (ApprovalStatus.PENDING, ApprovalAction.REJECT): ApprovalStatus.REJECTED,
    (ApprovalStatus.REJECTED, ApprovalAction.RESUBMIT): ApprovalStatus.PENDING,
}

TEMPLATE_MACHINE = ApprovalStateMachine(
    entity_kind="template",
    transitions={
        **_DECISIONS,
        # Approved content is frozen so historical scores stay reproducible.
        (ApprovalStatus.PENDING, ApprovalAction.EDIT): ApprovalStatus.PENDING,
        (ApprovalStatus.REJECTED, ApprovalAction.EDIT): ApprovalStatus.PENDING,
        (ApprovalStatus.PENDING, ApprovalAction.DELETE): ApprovalStatus.PENDING,
        (ApprovalStatus.REJECTED, ApprovalAction.DELETE): ApprovalStatus.REJECTED,
        (ApprovalStatus.APPROVED, ApprovalAction.DELETE): ApprovalStatus.APPROVED,
    },
)

ASSESSMENT_MACHINE = ApprovalStateMachine(
    entity_kind="customer_assessment",
    transitions={
        **_DECISIONS,
        # Answers may only be replaced after a rejection
        (ApprovalStatus.REJECTED, ApprovalAction.EDIT): ApprovalStatus.PENDING,
        (ApprovalStatus.PENDING, ApprovalAction.DELETE): ApprovalStatus.PENDING,
        (ApprovalStatus.REJECTED, ApprovalAction.DELETE): ApprovalStatus.REJECTED,
    },
)
