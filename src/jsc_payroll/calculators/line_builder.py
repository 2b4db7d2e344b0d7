"""Payslip line builder and currency rounding."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from jsc_payroll.calculators.types import LineCandidate, LineType


class PayslipLineBuilder:
    """Builds payslip lines and derives payslip totals from them.

    Conventions:
    - Line amounts are stored non-negative; ALLOWANCE adds to gross,
      DEDUCTION subtracts from it
    - Amounts are rounded half-up to the kobo (0.01) when a line is built
    - Basic salary is not a line; gross = basic + sum(ALLOWANCE)
    """

    OUTPUT_PRECISION = Decimal("0.01")

    @staticmethod
    def round_currency(amount: Decimal) -> Decimal:
        """Round amount to the smallest currency unit, half-up."""
        return amount.quantize(PayslipLineBuilder.OUTPUT_PRECISION, rounding=ROUND_HALF_UP)

    @staticmethod
    def create_allowance_line(
        code: str,
        amount: Decimal,
        adjustment_id: UUID | None = None,
        description: str | None = None,
    ) -> LineCandidate:
        """Create an allowance line."""
        return LineCandidate(
            line_type=LineType.ALLOWANCE,
            code=code,
            amount=PayslipLineBuilder.round_currency(abs(amount)),
            adjustment_id=adjustment_id,
            description=description,
        )

    @staticmethod
    def create_deduction_line(
        code: str,
        amount: Decimal,
        adjustment_id: UUID | None = None,
        description: str | None = None,
    ) -> LineCandidate:
        """Create a deduction line."""
        return LineCandidate(
            line_type=LineType.DEDUCTION,
            code=code,
            amount=PayslipLineBuilder.round_currency(abs(amount)),
            adjustment_id=adjustment_id,
            description=description,
        )

    @staticmethod
    def sum_lines(lines: list[LineCandidate], line_type: LineType) -> Decimal:
        """Sum line amounts of one type."""
        total = Decimal("0")
        for line in lines:
            if line.line_type == line_type:
                total += line.amount
        return PayslipLineBuilder.round_currency(total)

    @staticmethod
    def calculate_gross(basic_salary: Decimal, lines: list[LineCandidate]) -> Decimal:
        """GROSS = basic + sum(ALLOWANCE)."""
        return PayslipLineBuilder.round_currency(
            basic_salary + PayslipLineBuilder.sum_lines(lines, LineType.ALLOWANCE)
        )

    @staticmethod
    def calculate_total_deductions(lines: list[LineCandidate]) -> Decimal:
        return PayslipLineBuilder.sum_lines(lines, LineType.DEDUCTION)

    @staticmethod
    def breakdown(lines: list[LineCandidate], line_type: LineType) -> dict[str, str]:
        """Aggregate lines of one type into a code -> amount map for storage.

        Several adjustments of the same type collapse into one entry.
        """
        totals: dict[str, Decimal] = {}
        for line in lines:
            if line.line_type != line_type:
                continue
            totals[line.code] = totals.get(line.code, Decimal("0")) + line.amount
        return {
            code: str(PayslipLineBuilder.round_currency(amount))
            for code, amount in totals.items()
        }

    @staticmethod
    def validate_lines(lines: list[LineCandidate]) -> list[str]:
        """Validate line amounts and types.

        Returns list of error messages (empty if all valid).
        """
        errors: list[str] = []

        for i, line in enumerate(lines):
            if line.amount < 0:
                errors.append(
                    f"Line {i} ({line.line_type.value} {line.code}) has negative amount {line.amount}"
                )
            if line.amount != PayslipLineBuilder.round_currency(line.amount):
                errors.append(
                    f"Line {i} ({line.line_type.value} {line.code}) is not rounded to 0.01"
                )

        return errors
