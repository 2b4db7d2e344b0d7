"""Payroll run state machine with transition validation."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from jsc_payroll.models import PayrollRun


class PayrollRunStatus(str, Enum):
    """Payroll run status values."""

    DRAFT = "draft"
    PROCESSING = "processing"
    PROCESSED = "processed"
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class PayrollRunStateMachine:
    """State machine for payroll run status transitions.

    Allowed transitions:
    - draft → processing
    - processing → processed
    - processed → pending_review
    - processed → approved
    - pending_review → approved
    """

    # Define valid transitions: {from_status: [allowed_to_statuses]}
    VALID_TRANSITIONS: dict[str, list[str]] = {
        PayrollRunStatus.DRAFT: [PayrollRunStatus.PROCESSING],
        PayrollRunStatus.PROCESSING: [PayrollRunStatus.PROCESSED],
        PayrollRunStatus.PROCESSED: [PayrollRunStatus.PENDING_REVIEW, PayrollRunStatus.APPROVED],
        PayrollRunStatus.PENDING_REVIEW: [PayrollRunStatus.APPROVED],
        PayrollRunStatus.APPROVED: [],  # Terminal state
    }

    # Statuses that occupy a (period, scope) slot
    SCOPE_HOLDING = {
        PayrollRunStatus.PROCESSING,
        PayrollRunStatus.PROCESSED,
        PayrollRunStatus.PENDING_REVIEW,
        PayrollRunStatus.APPROVED,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def holds_scope(cls, status: str) -> bool:
        """Check if a run in this status blocks another run for its scope."""
        return status in cls.SCOPE_HOLDING

    @classmethod
    def validate_run_for_transition(
        cls, payroll_run: PayrollRun, to_status: str
    ) -> list[str]:
        """Validate a payroll run for a specific transition, returning any errors.

        Returns list of error messages (empty if valid).
        """
        errors: list[str] = []
        from_status = payroll_run.status

        if not cls.can_transition(from_status, to_status):
            errors.append(f"Cannot transition from '{from_status}' to '{to_status}'")
            return errors

        if to_status == PayrollRunStatus.PROCESSED:
            if payroll_run.total_staff <= 0:
                errors.append("Payroll run has no staff to process")

        elif to_status in (PayrollRunStatus.PENDING_REVIEW, PayrollRunStatus.APPROVED):
            if payroll_run.processed_count <= 0:
                errors.append("Payroll run produced no payslips")

        return errors
