"""Approval state machine tests for templates and customer assessments."""

from __future__ import annotations

import pytest

from credit_rating.approval.state_machine import (
    ASSESSMENT_MACHINE,
    TEMPLATE_MACHINE,
    Approvable,
    ApprovalAction,
)
from credit_rating.errors import StateConflictError
from credit_rating.models.template import ApprovalStatus

PENDING = ApprovalStatus.PENDING
APPROVED = ApprovalStatus.APPROVED
REJECTED = ApprovalStatus.REJECTED


class TestDecisions:
    """Transitions shared by both entity kinds."""

    @pytest.mark.parametrize("machine", [TEMPLATE_MACHINE, ASSESSMENT_MACHINE])
    def test_pending_can_be_approved_or_rejected(self, machine) -> None:
        assert machine.next_status("x", PENDING, ApprovalAction.APPROVE) == APPROVED
        assert machine.next_status("x", PENDING, ApprovalAction.REJECT) == REJECTED

    @pytest.mark.parametrize("machine", [TEMPLATE_MACHINE, ASSESSMENT_MACHINE])
    def test_rejected_resubmits_to_pending(self, machine) -> None:
        assert machine.next_status("x", REJECTED, ApprovalAction.RESUBMIT) == PENDING

    @pytest.mark.parametrize("machine", [TEMPLATE_MACHINE, ASSESSMENT_MACHINE])
    @pytest.mark.parametrize(
        "action", [ApprovalAction.APPROVE, ApprovalAction.REJECT, ApprovalAction.RESUBMIT]
    )
    def test_approved_is_terminal_for_decisions(self, machine, action) -> None:
        with pytest.raises(StateConflictError) as exc_info:
            machine.next_status("x", APPROVED, action)

        assert exc_info.value.current_status == "approved"
        assert exc_info.value.attempted == action.value

    @pytest.mark.parametrize("machine", [TEMPLATE_MACHINE, ASSESSMENT_MACHINE])
    def test_rejected_cannot_be_approved_directly(self, machine) -> None:
        with pytest.raises(StateConflictError):
            machine.next_status("x", REJECTED, ApprovalAction.APPROVE)

    @pytest.mark.parametrize("machine", [TEMPLATE_MACHINE, ASSESSMENT_MACHINE])
    def test_pending_cannot_be_resubmitted(self, machine) -> None:
        with pytest.raises(StateConflictError):
            machine.next_status("x", PENDING, ApprovalAction.RESUBMIT)


class TestTemplateMachine:
    def test_edit_allowed_until_approved(self) -> None:
        assert TEMPLATE_MACHINE.next_status("t", PENDING, ApprovalAction.EDIT) == PENDING
        assert TEMPLATE_MACHINE.next_status("t", REJECTED, ApprovalAction.EDIT) == PENDING

    def test_approved_template_is_immutable(self) -> None:
        with pytest.raises(StateConflictError) as exc_info:
            TEMPLATE_MACHINE.next_status("t-1", APPROVED, ApprovalAction.EDIT)

        assert exc_info.value.entity_kind == "template"
        assert exc_info.value.entity_id == "t-1"

    def test_delete_allowed_in_every_state(self) -> None:
        for status in ApprovalStatus:
            assert TEMPLATE_MACHINE.can(status, ApprovalAction.DELETE)

    def test_allowed_actions(self) -> None:
        assert TEMPLATE_MACHINE.allowed_actions(APPROVED) == frozenset({ApprovalAction.DELETE})


class TestAssessmentMachine:
    def test_approved_assessment_cannot_be_deleted(self) -> None:
        with pytest.raises(StateConflictError) as exc_info:
            ASSESSMENT_MACHINE.next_status("a-1", APPROVED, ApprovalAction.DELETE)

        assert exc_info.value.entity_kind == "customer_assessment"

    def test_edit_only_after_rejection(self) -> None:
        assert ASSESSMENT_MACHINE.next_status("a", REJECTED, ApprovalAction.EDIT) == PENDING
        assert not ASSESSMENT_MACHINE.can(PENDING, ApprovalAction.EDIT)
        assert not ASSESSMENT_MACHINE.can(APPROVED, ApprovalAction.EDIT)

    def test_allowed_actions(self) -> None:
        assert ASSESSMENT_MACHINE.allowed_actions(REJECTED) == frozenset(
            {ApprovalAction.EDIT, ApprovalAction.RESUBMIT, ApprovalAction.DELETE}
        )
        assert ASSESSMENT_MACHINE.allowed_actions(APPROVED) == frozenset()

    def test_accepts_string_status(self) -> None:
        assert ASSESSMENT_MACHINE.next_status("a", "pending", ApprovalAction.APPROVE) == APPROVED


class TestApprovable:
    def test_apply_returns_moved_copy(self) -> None:
        item = Approvable(entity_id="t", status=PENDING, payload={"name": "x"})

        moved = item.apply(TEMPLATE_MACHINE, ApprovalAction.APPROVE)

        assert moved.status == APPROVED
        assert moved.payload == {"name": "x"}
        assert item.status == PENDING

    def test_apply_refuses_forbidden_transition(self) -> None:
        item = Approvable(entity_id="t", status=APPROVED, payload=None)

        with pytest.raises(StateConflictError):
            item.apply(TEMPLATE_MACHINE, ApprovalAction.REJECT)
