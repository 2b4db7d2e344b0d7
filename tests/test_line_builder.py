"""Tests for payslip line builder."""

from decimal import Decimal
from uuid import uuid4

from jsc_payroll.calculators.line_builder import PayslipLineBuilder
from jsc_payroll.calculators.types import LineCandidate, LineType


class TestPayslipLineBuilder:
    """Test payslip line builder functionality."""

    def test_round_currency(self):
        """Test rounding to 2 decimal places, half-up."""
        assert PayslipLineBuilder.round_currency(Decimal("10.125")) == Decimal("10.13")
        assert PayslipLineBuilder.round_currency(Decimal("10.124")) == Decimal("10.12")
        assert PayslipLineBuilder.round_currency(Decimal("10.135")) == Decimal("10.14")
        assert PayslipLineBuilder.round_currency(Decimal("0.005")) == Decimal("0.01")

    def test_create_allowance_line(self):
        adjustment_id = uuid4()
        line = PayslipLineBuilder.create_allowance_line(
            "overtime", Decimal("5000.555"), adjustment_id=adjustment_id, description="March OT"
        )

        assert line.line_type == LineType.ALLOWANCE
        assert line.code == "overtime"
        assert line.amount == Decimal("5000.56")
        assert line.adjustment_id == adjustment_id
        assert line.description == "March OT"

    def test_create_deduction_line_is_non_negative(self):
        """Deduction amounts are stored positive; the type carries the sign."""
        line = PayslipLineBuilder.create_deduction_line("pension", Decimal("-8000"))

        assert line.line_type == LineType.DEDUCTION
        assert line.amount == Decimal("8000.00")

    def test_calculate_gross(self):
        lines = [
            PayslipLineBuilder.create_allowance_line("housing", Decimal("40000")),
            PayslipLineBuilder.create_allowance_line("transport", Decimal("20000")),
            PayslipLineBuilder.create_deduction_line("pension", Decimal("8000")),
        ]

        gross = PayslipLineBuilder.calculate_gross(Decimal("100000"), lines)

        assert gross == Decimal("160000.00")

    def test_calculate_total_deductions(self):
        lines = [
            PayslipLineBuilder.create_allowance_line("housing", Decimal("40000")),
            PayslipLineBuilder.create_deduction_line("pension", Decimal("8000")),
            PayslipLineBuilder.create_deduction_line("tax", Decimal("7500")),
        ]

        assert PayslipLineBuilder.calculate_total_deductions(lines) == Decimal("15500.00")

    def test_breakdown_merges_same_code(self):
        """Two adjustments of the same type collapse into one map entry."""
        lines = [
            PayslipLineBuilder.create_deduction_line("fine", Decimal("1000"), adjustment_id=uuid4()),
            PayslipLineBuilder.create_deduction_line("fine", Decimal("500"), adjustment_id=uuid4()),
            PayslipLineBuilder.create_deduction_line("tax", Decimal("7500")),
            PayslipLineBuilder.create_allowance_line("housing", Decimal("40000")),
        ]

        breakdown = PayslipLineBuilder.breakdown(lines, LineType.DEDUCTION)

        assert breakdown == {"fine": "1500.00", "tax": "7500.00"}

    def test_validate_lines_valid(self):
        lines = [
            PayslipLineBuilder.create_allowance_line("housing", Decimal("40000")),
            PayslipLineBuilder.create_deduction_line("tax", Decimal("7500")),
        ]

        assert PayslipLineBuilder.validate_lines(lines) == []

    def test_validate_lines_flags_negative_and_unrounded(self):
        lines = [
            LineCandidate(line_type=LineType.ALLOWANCE, code="bonus", amount=Decimal("-1.00")),
            LineCandidate(line_type=LineType.DEDUCTION, code="fine", amount=Decimal("1.005")),
        ]

        errors = PayslipLineBuilder.validate_lines(lines)

        assert len(errors) == 2
        assert "negative" in errors[0]
        assert "not rounded" in errors[1]
