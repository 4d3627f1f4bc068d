"""CustomerAssessmentService tests: submit, approval cycle, customer history."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

import pytest
from sqlalchemy.exc import OperationalError

from credit_rating.activity.sink import ActivityLogError, InMemoryActivityLog
from credit_rating.errors import (
    DependencyError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from credit_rating.models.rating import RatingBand
from credit_rating.models.template import ApprovalStatus, CustomerType
from credit_rating.persistence.repositories import customer_assessments as assessments_repo
from credit_rating.services.assessments import CustomerAssessmentService, SubmitAssessmentInput
from credit_rating.services.assessments import service as assessments_service
from credit_rating.services.customers import CustomerDirectoryService
from credit_rating.services.templates import TemplateService


class _UnavailableDirectory:
    """Customer directory whose every call fails."""

    def lookup(self, customer_id: Any = None, nic: Any = None) -> Any:
        raise DependencyError("customer_directory", "connection refused")

    def register(self, input_data: Any) -> Any:
        raise DependencyError("customer_directory", "connection refused")


class _BrokenActivityLog:
    def record(self, username: str, action: str, description: str, metadata: Any = None) -> None:
        raise ActivityLogError("activity store offline")


@pytest.fixture
def ticking_clock(monkeypatch: pytest.MonkeyPatch) -> None:
    """Give each stored assessment a distinct, increasing timestamp."""
    start = datetime(2026, 1, 1, tzinfo=UTC)
    ticks = iter(range(1, 10_000))
    monkeypatch.setattr(
        assessments_repo, "utc_now", lambda: start + timedelta(seconds=next(ticks))
    )


@pytest.fixture
def template_id(template_payload: dict[str, Any]) -> str:
    templates = TemplateService()
    template = templates.create(template_payload, "author-1")
    templates.approve(template.template_id, "approver-1")
    return template.template_id


@pytest.fixture
def service(activity_log: InMemoryActivityLog) -> CustomerAssessmentService:
    return CustomerAssessmentService(activity_log=activity_log)


def _input(template_id: str, selections: dict[str, str], **overrides: Any) -> SubmitAssessmentInput:
    values: dict[str, Any] = {
        "customer_name": "Nimal Perera",
        "customer_id": "CUST-1",
        "nic": "123456789V",
        "customer_type": "new",
        "assessment_template_id": template_id,
        "selections": selections,
        "contact_number": "0771234567",
    }
    values.update(overrides)
    return SubmitAssessmentInput(**values)


class TestSubmit:
    def test_new_customer_scores_68_b(
        self,
        service: CustomerAssessmentService,
        template_id: str,
        full_selections: dict[str, str],
    ) -> None:
        assessment = service.submit(_input(template_id, full_selections), "assessor-1")

        assert assessment.approval_status == ApprovalStatus.PENDING
        assert assessment.total_score == Decimal("68")
        assert assessment.rating == RatingBand.B
        assert assessment.customer_type == CustomerType.NEW
        assert assessment.assessment_template_name == "Retail Loan Scorecard"
        assert assessment.assessed_by == "assessor-1"
        assert [a.answer_id for a in assessment.answers] == ["a-high", "a-good"]
        assert assessment.category_scores[0].score == Decimal("68")

    def test_existing_customer_track(
        self,
        service: CustomerAssessmentService,
        template_id: str,
        full_selections: dict[str, str],
    ) -> None:
        assessment = service.submit(
            _input(template_id, full_selections, customer_type="existing"), "assessor-1"
        )

        assert assessment.total_score == Decimal("80")
        assert assessment.rating == RatingBand.A

    def test_records_activity(
        self,
        service: CustomerAssessmentService,
        activity_log: InMemoryActivityLog,
        template_id: str,
        full_selections: dict[str, str],
    ) -> None:
        assessment = service.submit(_input(template_id, full_selections), "assessor-1")

        assert activity_log.actions() == ["customer_assessment_submitted"]
        assert activity_log.entries[0]["metadata"] == {"assessment_id": assessment.assessment_id}

    def test_incomplete_selections_store_nothing(
        self, service: CustomerAssessmentService, template_id: str
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            service.submit(_input(template_id, {"q-income": "a-high"}), "assessor-1")

        assert exc_info.value.details["missing_question_ids"] == ["q-history"]
        assert service.list_by_customer("CUST-1") == []
        assert not service.lookup_customer("CUST-1").found

    def test_unknown_template(
        self, service: CustomerAssessmentService, full_selections: dict[str, str]
    ) -> None:
        with pytest.raises(NotFoundError) as exc_info:
            service.submit(_input("no-such-template", full_selections), "assessor-1")

        assert exc_info.value.entity_kind == "template"

    def test_pending_template_cannot_be_used(
        self,
        service: CustomerAssessmentService,
        template_payload: dict[str, Any],
        full_selections: dict[str, str],
    ) -> None:
        pending = TemplateService().create(template_payload, "author-1")

        with pytest.raises(StateConflictError) as exc_info:
            service.submit(_input(pending.template_id, full_selections), "assessor-1")

        assert exc_info.value.attempted == "assess"
        assert exc_info.value.current_status == "pending"

    def test_template_deleted_while_scoring(
        self,
        monkeypatch: pytest.MonkeyPatch,
        service: CustomerAssessmentService,
        template_id: str,
        full_selections: dict[str, str],
    ) -> None:
        real_compute = assessments_service.compute_scores

        def _compute_then_delete(*args: Any, **kwargs: Any) -> Any:
            result = real_compute(*args, **kwargs)
            TemplateService().delete(template_id, "admin-1")
            return result

        monkeypatch.setattr(assessments_service, "compute_scores", _compute_then_delete)

        with pytest.raises(NotFoundError) as exc_info:
            service.submit(_input(template_id, full_selections), "assessor-1")

        assert exc_info.value.entity_kind == "template"
        assert service.list_by_customer("CUST-1") == []
        assert not service.lookup_customer("CUST-1").found

    @pytest.mark.parametrize("field", ["customer_name", "customer_id"])
    def test_blank_customer_fields_rejected(
        self,
        service: CustomerAssessmentService,
        template_id: str,
        full_selections: dict[str, str],
        field: str,
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            service.submit(_input(template_id, full_selections, **{field: " "}), "assessor-1")

        assert exc_info.value.details["field"] == field

    def test_malformed_nic_rejected(
        self,
        service: CustomerAssessmentService,
        template_id: str,
        full_selections: dict[str, str],
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            service.submit(_input(template_id, full_selections, nic="12345"), "assessor-1")

        assert exc_info.value.details["field"] == "nic"


class TestCustomerRegistration:
    def test_new_customer_is_registered(
        self,
        service: CustomerAssessmentService,
        template_id: str,
        full_selections: dict[str, str],
    ) -> None:
        service.submit(_input(template_id, full_selections), "assessor-1")

        lookup = service.lookup_customer(nic="123456789v")
        assert lookup.found
        assert lookup.customer_type == CustomerType.EXISTING
        assert lookup.customer is not None
        assert lookup.customer.customer_id == "CUST-1"
        assert lookup.customer.contact_number == "0771234567"

    def test_existing_customer_is_not_registered(
        self,
        service: CustomerAssessmentService,
        template_id: str,
        full_selections: dict[str, str],
    ) -> None:
        service.submit(_input(template_id, full_selections, customer_type="existing"), "assessor-1")

        assert not service.lookup_customer("CUST-1").found

    def test_second_assessment_of_known_customer(
        self,
        service: CustomerAssessmentService,
        template_id: str,
        full_selections: dict[str, str],
    ) -> None:
        service.submit(_input(template_id, full_selections), "assessor-1")
        again = service.submit(_input(template_id, full_selections), "assessor-1")

        assert again.approval_status == ApprovalStatus.PENDING
        assert len(service.list_by_customer("CUST-1")) == 2

    def test_directory_failure_aborts_submit(
        self,
        activity_log: InMemoryActivityLog,
        template_id: str,
        full_selections: dict[str, str],
    ) -> None:
        service = CustomerAssessmentService(
            activity_log=activity_log, customer_directory=_UnavailableDirectory()
        )

        with pytest.raises(DependencyError) as exc_info:
            service.submit(_input(template_id, full_selections), "assessor-1")

        assert exc_info.value.dependency == "customer_directory"
        assert CustomerAssessmentService().list_by_customer("CUST-1") == []
        assert activity_log.actions() == []


class TestDependencies:
    def test_store_failure_is_dependency_error(
        self,
        monkeypatch: pytest.MonkeyPatch,
        service: CustomerAssessmentService,
        template_id: str,
        full_selections: dict[str, str],
    ) -> None:
        def _fail(*args: Any, **kwargs: Any) -> Any:
            raise OperationalError("INSERT", {}, Exception("server closed the connection"))

        monkeypatch.setattr(assessments_repo.InMemoryCustomerAssessmentsRepository, "create", _fail)

        with pytest.raises(DependencyError) as exc_info:
            service.submit(
                _input(template_id, full_selections, customer_type="existing"), "assessor-1"
            )

        assert exc_info.value.dependency == "customer_assessment_store"

    def test_store_failure_leaves_new_customer_unregistered(
        self,
        monkeypatch: pytest.MonkeyPatch,
        service: CustomerAssessmentService,
        template_id: str,
        full_selections: dict[str, str],
    ) -> None:
        def _fail(*args: Any, **kwargs: Any) -> Any:
            raise OperationalError("INSERT", {}, Exception("server closed the connection"))

        monkeypatch.setattr(assessments_repo.InMemoryCustomerAssessmentsRepository, "create", _fail)

        with pytest.raises(DependencyError):
            service.submit(_input(template_id, full_selections, customer_id="CUST-9"), "assessor-1")

        lookup = CustomerDirectoryService().lookup("CUST-9")
        assert not lookup.found
        assert lookup.customer_type == CustomerType.NEW

    def test_retry_after_store_failure_registers_customer(
        self,
        monkeypatch: pytest.MonkeyPatch,
        service: CustomerAssessmentService,
        template_id: str,
        full_selections: dict[str, str],
    ) -> None:
        real_create = assessments_repo.InMemoryCustomerAssessmentsRepository.create
        calls = iter([True, False])

        def _fail_once(self: Any, **kwargs: Any) -> Any:
            if next(calls):
                raise OperationalError("INSERT", {}, Exception("server closed the connection"))
            return real_create(self, **kwargs)

        monkeypatch.setattr(
            assessments_repo.InMemoryCustomerAssessmentsRepository, "create", _fail_once
        )

        with pytest.raises(DependencyError):
            service.submit(_input(template_id, full_selections), "assessor-1")
        assessment = service.submit(_input(template_id, full_selections), "assessor-1")

        assert assessment.customer_type == CustomerType.NEW
        assert CustomerDirectoryService().lookup("CUST-1").found

    def test_activity_log_failure_does_not_abort(
        self, template_id: str, full_selections: dict[str, str]
    ) -> None:
        service = CustomerAssessmentService(activity_log=_BrokenActivityLog())

        assessment = service.submit(_input(template_id, full_selections), "assessor-1")
        approved = service.approve(assessment.assessment_id, "approver-1")

        assert approved.approval_status == ApprovalStatus.APPROVED


class TestApprovalCycle:
    @pytest.fixture
    def assessment_id(
        self,
        service: CustomerAssessmentService,
        template_id: str,
        full_selections: dict[str, str],
    ) -> str:
        return service.submit(_input(template_id, full_selections), "assessor-1").assessment_id

    def test_approve(self, service: CustomerAssessmentService, assessment_id: str) -> None:
        approved = service.approve(assessment_id, "approver-1")

        assert approved.approval_status == ApprovalStatus.APPROVED
        assert approved.approved_by == "approver-1"
        assert approved.approved_at is not None

    def test_approve_twice_conflicts(
        self, service: CustomerAssessmentService, assessment_id: str
    ) -> None:
        service.approve(assessment_id, "approver-1")

        with pytest.raises(StateConflictError) as exc_info:
            service.approve(assessment_id, "approver-2")

        assert exc_info.value.current_status == "approved"
        assert service.get(assessment_id).approved_by == "approver-1"

    def test_reject_requires_remarks(
        self, service: CustomerAssessmentService, assessment_id: str
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            service.reject(assessment_id, "approver-1", "")

        assert exc_info.value.details["field"] == "remarks"
        assert service.get(assessment_id).approval_status == ApprovalStatus.PENDING

    def test_reject_then_resubmit_recomputes(
        self,
        service: CustomerAssessmentService,
        activity_log: InMemoryActivityLog,
        assessment_id: str,
    ) -> None:
        rejected = service.reject(assessment_id, "approver-1", "Income not verified")
        assert rejected.approval_status == ApprovalStatus.REJECTED
        assert rejected.rejection_remarks == "Income not verified"
        assert rejected.rejected_by == "approver-1"

        resubmitted = service.edit_and_resubmit(
            assessment_id, {"q-income": "a-low", "q-history": "a-good"}, "assessor-1"
        )

        # 30 * 60 / 100 + 50 * 40 / 100
        assert resubmitted.total_score == Decimal("38")
        assert resubmitted.rating == RatingBand.C_MINUS
        assert resubmitted.approval_status == ApprovalStatus.PENDING
        assert resubmitted.rejection_remarks is None
        assert resubmitted.rejected_by is None
        assert activity_log.actions() == [
            "customer_assessment_submitted",
            "customer_assessment_rejected",
            "customer_assessment_resubmitted",
        ]

    def test_resubmit_pending_conflicts(
        self,
        service: CustomerAssessmentService,
        assessment_id: str,
        full_selections: dict[str, str],
    ) -> None:
        with pytest.raises(StateConflictError) as exc_info:
            service.edit_and_resubmit(assessment_id, full_selections, "assessor-1")

        assert exc_info.value.details["current_status"] == "pending"
        assert exc_info.value.details["attempted"] == "edit"

    def test_resubmit_with_incomplete_selections_keeps_rejection(
        self, service: CustomerAssessmentService, assessment_id: str
    ) -> None:
        service.reject(assessment_id, "approver-1", "Redo")

        with pytest.raises(ValidationError):
            service.edit_and_resubmit(assessment_id, {"q-income": "a-low"}, "assessor-1")

        current = service.get(assessment_id)
        assert current.approval_status == ApprovalStatus.REJECTED
        assert current.total_score == Decimal("68")

    def test_delete_pending(self, service: CustomerAssessmentService, assessment_id: str) -> None:
        deleted = service.delete(assessment_id, "admin-1")

        assert deleted.is_deleted
        with pytest.raises(NotFoundError):
            service.get(assessment_id)

    def test_delete_approved_refused(
        self, service: CustomerAssessmentService, assessment_id: str
    ) -> None:
        service.approve(assessment_id, "approver-1")

        with pytest.raises(StateConflictError):
            service.delete(assessment_id, "admin-1")

        assert service.get(assessment_id).approval_status == ApprovalStatus.APPROVED

    def test_list_by_status(
        self, service: CustomerAssessmentService, assessment_id: str
    ) -> None:
        assert [a.assessment_id for a in service.list_by_status("pending")] == [assessment_id]
        assert service.list_by_status(ApprovalStatus.APPROVED) == []

        with pytest.raises(ValidationError):
            service.list_by_status("done")


@pytest.mark.usefixtures("ticking_clock")
class TestCustomerHistory:
    def test_summary_and_latest_rating(
        self,
        service: CustomerAssessmentService,
        template_id: str,
        full_selections: dict[str, str],
    ) -> None:
        low = {"q-income": "a-low", "q-history": "a-bad"}
        first = service.submit(_input(template_id, low), "assessor-1")
        second = service.submit(_input(template_id, full_selections), "assessor-1")
        third = service.submit(_input(template_id, full_selections), "assessor-1")
        service.approve(first.assessment_id, "approver-1")
        service.approve(second.assessment_id, "approver-1")
        service.reject(third.assessment_id, "approver-1", "Duplicate")

        history = service.customer_history("CUST-1")

        assert [a.assessment_id for a in history.assessments] == [
            third.assessment_id,
            second.assessment_id,
            first.assessment_id,
        ]
        assert history.summary.total_assessments == 3
        assert history.summary.approved_count == 2
        assert history.summary.rejected_count == 1
        assert history.summary.pending_count == 0
        assert history.summary.latest_rating == RatingBand.B

    def test_unknown_customer_has_empty_history(self, service: CustomerAssessmentService) -> None:
        history = service.customer_history("NOBODY")

        assert history.assessments == []
        assert history.summary.total_assessments == 0
        assert history.summary.latest_rating is None


class TestCustomerDirectory:
    def test_lookup_requires_a_key(self) -> None:
        with pytest.raises(ValidationError):
            CustomerDirectoryService().lookup(None, "  ")

    def test_unknown_customer_is_new(self) -> None:
        lookup = CustomerDirectoryService().lookup("CUST-9")

        assert not lookup.found
        assert lookup.customer_type == CustomerType.NEW
        assert lookup.customer is None
