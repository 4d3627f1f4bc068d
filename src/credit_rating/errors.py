"""Error taxonomy for credit rating services.

Every rejected mutation surfaces one of four stable error kinds:
- ValidationError: input the caller can fix (unanswered questions, blank remarks)
- NotFoundError: referenced template/assessment/customer does not exist or is deleted
- StateConflictError: transition not permitted from the current approval status
- DependencyError: a critical collaborator (store, directory) failed

Each error carries a machine-readable ``code`` used by the API error envelope.
"""

from __future__ import annotations

from typing import Any


class CreditRatingError(Exception):
    """Base exception for credit rating errors.

    Attributes:
        message: Human-readable reason.
        code: Stable machine-readable error code.
        details: Optional structured context for the caller.
    """

    code = "CREDIT_RATING_ERROR"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(CreditRatingError):
    """Raised when caller input is incomplete or malformed."""

    code = "VALIDATION_FAILED"


class NotFoundError(CreditRatingError):
    """Raised when a referenced entity does not exist (including soft-deleted)."""

    code = "NOT_FOUND"

    def __init__(self, entity_kind: str, entity_id: str) -> None:
        self.entity_kind = entity_kind
        self.entity_id = entity_id
        super().__init__(
            f"{entity_kind} {entity_id} not found",
            details={"entity_kind": entity_kind, "entity_id": entity_id},
        )


class StateConflictError(CreditRatingError):
    """Raised when a transition is attempted from a state that does not permit it.

    Distinct from ValidationError so callers can report "someone already decided
    this" instead of a form error.
    """

    code = "STATE_CONFLICT"

    def __init__(
        self,
        entity_kind: str,
        entity_id: str,
        current_status: str | None,
        attempted: str,
        reason: str | None = None,
    ) -> None:
        self.entity_kind = entity_kind
        self.entity_id = entity_id
        self.current_status = current_status
        self.attempted = attempted
        message = reason or (
            f"{entity_kind} {entity_id} cannot {attempted} from status {current_status}"
        )
        super().__init__(
            message,
            details={
                "entity_kind": entity_kind,
                "entity_id": entity_id,
                "current_status": current_status,
                "attempted": attempted,
            },
        )


class DependencyError(CreditRatingError):
    """Raised when a required collaborator fails; state is left unchanged."""

    code = "DEPENDENCY_FAILED"

    def __init__(self, dependency: str, message: str) -> None:
        self.dependency = dependency
        super().__init__(
            f"{dependency} failed: {message}",
            details={"dependency": dependency},
        )
