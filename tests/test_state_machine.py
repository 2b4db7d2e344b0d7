"""Tests for payroll run state machine."""

from types import SimpleNamespace

import pytest

from jsc_payroll.models.payroll import SCOPE_HOLDING_STATUSES
from jsc_payroll.services.state_machine import (
    InvalidTransitionError,
    PayrollRunStateMachine,
    PayrollRunStatus,
)


class TestPayrollRunStateMachine:
    """Test state machine transitions."""

    def test_valid_transitions(self):
        """Test that valid transitions are allowed."""
        assert PayrollRunStateMachine.can_transition("draft", "processing") is True
        assert PayrollRunStateMachine.can_transition("processing", "processed") is True
        assert PayrollRunStateMachine.can_transition("processed", "pending_review") is True
        assert PayrollRunStateMachine.can_transition("processed", "approved") is True
        assert PayrollRunStateMachine.can_transition("pending_review", "approved") is True

    def test_invalid_transitions(self):
        """Test that invalid transitions are blocked."""
        # Can't skip processing
        assert PayrollRunStateMachine.can_transition("draft", "processed") is False
        assert PayrollRunStateMachine.can_transition("processing", "approved") is False

        # No going back
        assert PayrollRunStateMachine.can_transition("processed", "processing") is False
        assert PayrollRunStateMachine.can_transition("pending_review", "processed") is False

        # Approved is terminal
        assert PayrollRunStateMachine.can_transition("approved", "pending_review") is False
        assert PayrollRunStateMachine.can_transition("approved", "draft") is False

    def test_validate_transition_raises(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            PayrollRunStateMachine.validate_transition("draft", "approved")

        assert exc_info.value.from_status == "draft"
        assert exc_info.value.to_status == "approved"

    def test_holds_scope(self):
        """Only draft runs leave their (period, scope) free."""
        assert PayrollRunStateMachine.holds_scope("draft") is False
        for status in ("processing", "processed", "pending_review", "approved"):
            assert PayrollRunStateMachine.holds_scope(status) is True

    def test_scope_index_matches_scope_holding(self):
        """The partial unique index covers exactly the scope-holding statuses."""
        for status in PayrollRunStatus:
            in_index = f"'{status.value}'" in SCOPE_HOLDING_STATUSES
            assert in_index is PayrollRunStateMachine.holds_scope(status.value)

    def test_validate_run_rejects_approval_without_payslips(self):
        """A run where every staff member failed cannot be approved."""
        run = SimpleNamespace(status="processed", total_staff=2, processed_count=0)

        errors = PayrollRunStateMachine.validate_run_for_transition(run, "approved")

        assert errors == ["Payroll run produced no payslips"]

    def test_validate_run_for_valid_transition(self):
        run = SimpleNamespace(status="processing", total_staff=3, processed_count=3)

        assert PayrollRunStateMachine.validate_run_for_transition(run, "processed") == []
