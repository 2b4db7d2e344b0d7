"""Payslip assembler - combines structural pay and individual adjustments."""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from jsc_payroll.calculators.line_builder import PayslipLineBuilder
from jsc_payroll.calculators.salary_table import SalaryTable
from jsc_payroll.calculators.structural import StructuralCalculator
from jsc_payroll.calculators.types import (
    LineType,
    PayslipDraft,
    deduction_rank,
    validate_period,
)
from jsc_payroll.config import StatutoryRates
from jsc_payroll.models import Payslip, PayslipLine
from jsc_payroll.services.adjustment_ledger import AdjustmentLedger

logger = logging.getLogger(__name__)


class PayslipAssembler:
    """Assembles one staff member's payslip for a period.

    Gross is basic + structural allowances + approved individual allowances.
    Deductions are taken statutory first, then individual deductions in
    DEDUCTION_PRIORITY order, each limited to the pay still left. When a
    deduction does not fit in full the payslip is flagged deductions_capped
    and net pay stays at zero or above.

    Adjustment balances are decremented in the caller's transaction, by the
    amount actually deducted.
    """

    def __init__(
        self,
        session: AsyncSession,
        salary_table: SalaryTable,
        rates: StatutoryRates,
    ):
        self.session = session
        self.salary_table = salary_table
        self.rates = rates
        self.structural = StructuralCalculator(rates)
        self.ledger = AdjustmentLedger(session)

    async def assemble(
        self,
        staff_id: UUID,
        grade_level: int,
        step: int,
        period: str,
        payroll_run_id: UUID | None = None,
    ) -> PayslipDraft:
        """Compute a payslip, applying the staff member's eligible adjustments.

        Raises:
            ConfigurationError: No salary table entry for grade_level/step
            AdjustmentConsistencyError: A touched adjustment is corrupt
        """
        validate_period(period)
        basic_salary = PayslipLineBuilder.round_currency(
            self.salary_table.lookup_basic_salary(grade_level, step)
        )
        structural = self.structural.compute_structural(basic_salary)

        draft = PayslipDraft(
            staff_id=staff_id,
            period=period,
            grade_level=grade_level,
            step=step,
            basic_salary=basic_salary,
            rates_version=self.rates.version,
        )

        # Allowances
        draft.lines.extend(self.structural.allowance_lines(structural))
        for adjustment in await self.ledger.get_active_allowances_for_period(period, staff_id):
            applied = await self.ledger.apply_adjustment(
                adjustment.adjustment_id, period, payroll_run_id=payroll_run_id
            )
            draft.applied_adjustments.append(applied)
            draft.lines.append(
                PayslipLineBuilder.create_allowance_line(
                    adjustment.adjustment_type,
                    applied.amount,
                    adjustment_id=adjustment.adjustment_id,
                    description=adjustment.description,
                )
            )

        draft.gross_pay = PayslipLineBuilder.calculate_gross(basic_salary, draft.lines)
        available = draft.gross_pay

        # Statutory deductions
        for code, amount in structural.deductions.items():
            taken = min(amount, available)
            if taken < amount:
                self._flag_capped(draft, f"{code} reduced from {amount} to {taken}")
            if taken > 0:
                draft.lines.append(PayslipLineBuilder.create_deduction_line(code, taken))
            available -= taken

        # Individual deductions, highest priority first
        deductions = await self.ledger.get_active_deductions_for_period(period, staff_id)
        deductions.sort(key=lambda a: deduction_rank(a.adjustment_type))
        for adjustment in deductions:
            if available <= 0:
                self._flag_capped(
                    draft,
                    f"{adjustment.adjustment_type} {adjustment.adjustment_id} not applied",
                )
                continue

            applied = await self.ledger.apply_adjustment(
                adjustment.adjustment_id,
                period,
                limit=available,
                payroll_run_id=payroll_run_id,
            )
            draft.applied_adjustments.append(applied)
            if applied.limited:
                self._flag_capped(
                    draft,
                    f"{adjustment.adjustment_type} {adjustment.adjustment_id} "
                    f"reduced to {applied.amount}",
                )
            if applied.amount > 0:
                draft.lines.append(
                    PayslipLineBuilder.create_deduction_line(
                        adjustment.adjustment_type,
                        applied.amount,
                        adjustment_id=adjustment.adjustment_id,
                        description=adjustment.description,
                    )
                )
            available -= applied.amount

        draft.total_deductions = PayslipLineBuilder.calculate_total_deductions(draft.lines)
        draft.net_pay = PayslipLineBuilder.round_currency(draft.gross_pay - draft.total_deductions)

        errors = PayslipLineBuilder.validate_lines(draft.lines)
        if draft.net_pay < 0:
            errors.append(f"Net pay {draft.net_pay} is negative")
        if errors:
            raise ValueError(f"Invalid payslip for staff {staff_id}: {'; '.join(errors)}")

        if draft.deductions_capped:
            logger.warning(
                "Deductions capped for staff %s in %s: %s",
                staff_id,
                period,
                "; ".join(draft.warnings),
            )
        return draft

    async def persist(self, draft: PayslipDraft, payroll_run_id: UUID) -> Payslip:
        """Add the payslip and its lines to the session and flush.

        Raises IntegrityError if the staff member already has a payslip
        for the period.
        """
        payslip = Payslip(
            staff_id=draft.staff_id,
            payroll_run_id=payroll_run_id,
            period=draft.period,
            grade_level=draft.grade_level,
            step=draft.step,
            basic_salary=draft.basic_salary,
            allowances=PayslipLineBuilder.breakdown(draft.lines, LineType.ALLOWANCE),
            deductions=PayslipLineBuilder.breakdown(draft.lines, LineType.DEDUCTION),
            gross_pay=draft.gross_pay,
            total_deductions=draft.total_deductions,
            net_pay=draft.net_pay,
            deductions_capped=draft.deductions_capped,
        )
        payslip.lines = [
            PayslipLine(
                position=position,
                line_type=line.line_type.value,
                code=line.code,
                amount=line.amount,
                adjustment_id=line.adjustment_id,
                description=line.description,
            )
            for position, line in enumerate(draft.lines)
        ]
        self.session.add(payslip)
        await self.session.flush()
        return payslip

    @staticmethod
    def _flag_capped(draft: PayslipDraft, message: str) -> None:
        draft.deductions_capped = True
        draft.warnings.append(message)

