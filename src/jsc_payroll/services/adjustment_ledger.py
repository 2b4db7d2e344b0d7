"""Individual adjustment ledger - ad-hoc allowances and deductions per staff member."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from jsc_payroll.calculators.line_builder import PayslipLineBuilder
from jsc_payroll.calculators.types import (
    TERMINAL_ADJUSTMENT_STATUSES,
    AdjustmentDirection,
    AdjustmentStatus,
    AdjustmentType,
    AllowanceType,
    AppliedAdjustment,
    is_amortizing,
    next_period,
    validate_period,
)
from jsc_payroll.models import AuditEvent, IndividualAdjustment

logger = logging.getLogger(__name__)


class AdjustmentNotFoundError(Exception):
    """Raised when an adjustment id does not exist."""

    def __init__(self, adjustment_id: UUID):
        self.adjustment_id = adjustment_id
        super().__init__(f"Adjustment {adjustment_id} not found")


class AdjustmentValidationError(ValueError):
    """Raised when adjustment input is rejected."""


class AdjustmentStateError(Exception):
    """Raised when an action is not allowed in the adjustment's current status."""

    def __init__(
        self,
        adjustment_id: UUID,
        from_status: str,
        action: str,
        reason: str | None = None,
    ):
        self.adjustment_id = adjustment_id
        self.from_status = from_status
        self.action = action
        self.reason = reason
        msg = f"Cannot {action} adjustment {adjustment_id} in status '{from_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class AdjustmentConsistencyError(Exception):
    """Raised when a stored adjustment violates its balance invariants.

    Signals ledger corruption; the payslip that touched it must not be produced.
    """

    def __init__(self, adjustment_id: UUID, reason: str):
        self.adjustment_id = adjustment_id
        self.reason = reason
        super().__init__(f"Adjustment {adjustment_id} is inconsistent: {reason}")


@dataclass(frozen=True)
class RepaymentInstallment:
    """One projected installment of an amortizing deduction."""

    period: str
    amount: Decimal
    remaining_after: Decimal


def _effective_start(adjustment: IndividualAdjustment) -> str:
    return adjustment.start_period or adjustment.period


def _snapshot(adjustment: IndividualAdjustment) -> dict[str, Any]:
    """JSON-safe view of the fields audit events track."""
    return {
        "status": adjustment.status,
        "amount": str(adjustment.amount),
        "total_amount": (
            str(adjustment.total_amount) if adjustment.total_amount is not None else None
        ),
        "remaining_balance": (
            str(adjustment.remaining_balance)
            if adjustment.remaining_balance is not None
            else None
        ),
        "end_period": adjustment.end_period,
        "last_applied_period": adjustment.last_applied_period,
    }


class AdjustmentLedger:
    """Ledger of individual allowances and deductions.

    Allowances start 'pending' and only become eligible once approved
    ('applied'). Deductions start 'active'. Amortizing deductions carry a
    remaining balance that each application decrements until it reaches
    zero and the deduction is 'paid_off'.

    The ledger never commits. Applying an adjustment must share the
    transaction that persists the payslip it contributes to.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # ===== Creation =====

    async def create_allowance(
        self,
        staff_id: UUID,
        allowance_type: str,
        amount: Decimal,
        period: str,
        description: str | None = None,
        end_period: str | None = None,
        recurring: bool = False,
        created_by: UUID | None = None,
    ) -> IndividualAdjustment:
        """Record a pending allowance.

        A non-recurring allowance covers only its own period. A recurring
        one runs until end_period, or until cancelled if end_period is None.
        """
        validate_period(period)
        try:
            allowance_type = AllowanceType(allowance_type).value
        except ValueError:
            raise AdjustmentValidationError(
                f"'{allowance_type}' is not an allowance type"
            ) from None
        amount = self._validate_amount(amount)

        if end_period is None and not recurring:
            end_period = period
        self._validate_window(period, None, end_period)

        adjustment = IndividualAdjustment(
            staff_id=staff_id,
            direction=AdjustmentDirection.ALLOWANCE.value,
            adjustment_type=allowance_type,
            amount=amount,
            period=period,
            end_period=end_period,
            status=AdjustmentStatus.PENDING.value,
            description=description,
            created_by=created_by,
        )
        self.session.add(adjustment)
        await self.session.flush()

        await self._record_audit(adjustment, "created", created_by, after=_snapshot(adjustment))
        return adjustment

    async def create_deduction(
        self,
        staff_id: UUID,
        deduction_type: str,
        amount: Decimal,
        period: str,
        total_amount: Decimal | None = None,
        start_period: str | None = None,
        end_period: str | None = None,
        description: str | None = None,
        created_by: UUID | None = None,
    ) -> IndividualAdjustment:
        """Record an active deduction.

        Amortizing types require total_amount >= amount and start with
        remaining_balance equal to total_amount.
        """
        validate_period(period)
        try:
            deduction_type = AdjustmentType(deduction_type).value
        except ValueError:
            raise AdjustmentValidationError(
                f"'{deduction_type}' is not a deduction type"
            ) from None
        amount = self._validate_amount(amount)
        self._validate_window(period, start_period, end_period)

        remaining_balance: Decimal | None = None
        if is_amortizing(deduction_type):
            if total_amount is None:
                raise AdjustmentValidationError(
                    f"{deduction_type} requires total_amount"
                )
            total_amount = PayslipLineBuilder.round_currency(Decimal(total_amount))
            if total_amount < amount:
                raise AdjustmentValidationError(
                    f"total_amount {total_amount} is less than per-period amount {amount}"
                )
            remaining_balance = total_amount
        elif total_amount is not None:
            raise AdjustmentValidationError(
                f"total_amount only applies to amortizing deductions, not {deduction_type}"
            )

        adjustment = IndividualAdjustment(
            staff_id=staff_id,
            direction=AdjustmentDirection.DEDUCTION.value,
            adjustment_type=deduction_type,
            amount=amount,
            total_amount=total_amount,
            remaining_balance=remaining_balance,
            period=period,
            start_period=start_period,
            end_period=end_period,
            status=AdjustmentStatus.ACTIVE.value,
            description=description,
            created_by=created_by,
        )
        self.session.add(adjustment)
        await self.session.flush()

        await self._record_audit(adjustment, "created", created_by, after=_snapshot(adjustment))
        return adjustment

    # ===== Queries =====

    async def get_adjustment(
        self, adjustment_id: UUID, for_update: bool = False
    ) -> IndividualAdjustment:
        stmt = select(IndividualAdjustment).where(
            IndividualAdjustment.adjustment_id == adjustment_id
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        adjustment = result.scalar_one_or_none()
        if adjustment is None:
            raise AdjustmentNotFoundError(adjustment_id)
        return adjustment

    async def list_for_staff(
        self, staff_id: UUID, period: str | None = None
    ) -> list[IndividualAdjustment]:
        """All adjustments of a staff member, optionally only those whose window covers period."""
        stmt = select(IndividualAdjustment).where(IndividualAdjustment.staff_id == staff_id)
        if period is not None:
            stmt = self._within_window(stmt, validate_period(period))
        stmt = stmt.order_by(IndividualAdjustment.created_at, IndividualAdjustment.adjustment_id)
        result = await self.session.execute(stmt)
        return list(result.scalars())

    async def get_active_allowances_for_period(
        self, period: str, staff_id: UUID | None = None
    ) -> list[IndividualAdjustment]:
        """Approved allowances whose window covers period."""
        return await self._eligible(
            AdjustmentDirection.ALLOWANCE, AdjustmentStatus.APPLIED, period, staff_id
        )

    async def get_active_deductions_for_period(
        self, period: str, staff_id: UUID | None = None
    ) -> list[IndividualAdjustment]:
        """Active deductions whose window covers period."""
        return await self._eligible(
            AdjustmentDirection.DEDUCTION, AdjustmentStatus.ACTIVE, period, staff_id
        )

    # ===== Review workflow =====

    async def approve_allowance(
        self, adjustment_id: UUID, reviewer_id: UUID | None = None
    ) -> IndividualAdjustment:
        """pending → applied."""
        return await self._review(
            adjustment_id, reviewer_id, "approve", "approved", AdjustmentStatus.APPLIED
        )

    async def reject_allowance(
        self, adjustment_id: UUID, reviewer_id: UUID | None = None
    ) -> IndividualAdjustment:
        """pending → cancelled."""
        return await self._review(
            adjustment_id, reviewer_id, "reject", "rejected", AdjustmentStatus.CANCELLED
        )

    async def cancel_adjustment(
        self, adjustment_id: UUID, actor_id: UUID | None = None
    ) -> IndividualAdjustment:
        """Cancel any adjustment that is not already paid off or cancelled."""
        adjustment = await self.get_adjustment(adjustment_id, for_update=True)
        if adjustment.status in TERMINAL_ADJUSTMENT_STATUSES:
            raise AdjustmentStateError(adjustment_id, adjustment.status, "cancel")

        before = _snapshot(adjustment)
        adjustment.status = AdjustmentStatus.CANCELLED.value
        await self.session.flush()

        await self._record_audit(adjustment, "cancelled", actor_id, before, _snapshot(adjustment))
        logger.info("Adjustment %s cancelled", adjustment_id)
        return adjustment

    async def update_adjustment(
        self,
        adjustment_id: UUID,
        amount: Decimal | None = None,
        description: str | None = None,
        end_period: str | None = None,
        actor_id: UUID | None = None,
    ) -> IndividualAdjustment:
        """Edit a non-terminal adjustment.

        Changing the per-period amount never changes the remaining balance.
        A new amount on an approved allowance sends it back to 'pending' for
        another review.
        """
        adjustment = await self.get_adjustment(adjustment_id, for_update=True)
        if adjustment.status in TERMINAL_ADJUSTMENT_STATUSES:
            raise AdjustmentStateError(adjustment_id, adjustment.status, "update")

        before = _snapshot(adjustment)
        if amount is not None:
            amount = self._validate_amount(amount)
            if (
                adjustment.direction == AdjustmentDirection.ALLOWANCE.value
                and amount != adjustment.amount
                and adjustment.status == AdjustmentStatus.APPLIED.value
            ):
                adjustment.status = AdjustmentStatus.PENDING.value
                adjustment.reviewed_by = None
                adjustment.reviewed_at = None
                logger.info("Allowance %s amount changed, review required again", adjustment_id)
            adjustment.amount = amount
        if description is not None:
            adjustment.description = description
        if end_period is not None:
            self._validate_window(adjustment.period, adjustment.start_period, end_period)
            adjustment.end_period = end_period
        await self.session.flush()

        await self._record_audit(adjustment, "updated", actor_id, before, _snapshot(adjustment))
        return adjustment

    # ===== Application =====

    async def apply_adjustment(
        self,
        adjustment_id: UUID,
        period: str,
        limit: Decimal | None = None,
        payroll_run_id: UUID | None = None,
    ) -> AppliedAdjustment:
        """Apply one adjustment to one period.

        Non-amortizing adjustments apply their full amount and keep their
        status. Amortizing deductions apply min(amount, remaining_balance),
        decrement the balance, and become 'paid_off' at zero.

        Args:
            adjustment_id: Adjustment to apply
            period: Period being paid (YYYY-MM)
            limit: Most that may be applied, when pay left after earlier
                deductions is smaller than the configured amount
            payroll_run_id: Run recording the application

        Raises:
            AdjustmentConsistencyError: Stored balance violates its invariants,
                or the adjustment was already applied for this period
            AdjustmentStateError: Adjustment is not eligible for period
        """
        validate_period(period)
        adjustment = await self.get_adjustment(adjustment_id, for_update=True)

        eligible_status = (
            AdjustmentStatus.APPLIED
            if adjustment.direction == AdjustmentDirection.ALLOWANCE.value
            else AdjustmentStatus.ACTIVE
        )
        if adjustment.status != eligible_status.value:
            raise AdjustmentStateError(adjustment_id, adjustment.status, "apply")
        if not self._covers(adjustment, period):
            raise AdjustmentStateError(
                adjustment_id, adjustment.status, "apply", f"window does not cover {period}"
            )
        if adjustment.last_applied_period == period:
            raise AdjustmentConsistencyError(adjustment_id, f"already applied for {period}")

        requested = Decimal(adjustment.amount)
        applied = requested
        amortizing = is_amortizing(adjustment.adjustment_type)

        if amortizing:
            remaining = self._check_balance(adjustment)
            applied = min(applied, remaining)

        limited = False
        if limit is not None and limit < applied:
            applied = max(limit, Decimal("0"))
            limited = True
        applied = PayslipLineBuilder.round_currency(applied)

        if amortizing:
            adjustment.remaining_balance = remaining - applied
            if adjustment.remaining_balance == 0:
                adjustment.status = AdjustmentStatus.PAID_OFF.value

        adjustment.last_applied_period = period
        if payroll_run_id is not None:
            adjustment.payroll_run_id = payroll_run_id
        await self.session.flush()

        if adjustment.status == AdjustmentStatus.PAID_OFF.value:
            logger.info("Adjustment %s paid off in %s", adjustment_id, period)
            await self._record_audit(adjustment, "paid_off", None, after=_snapshot(adjustment))

        return AppliedAdjustment(
            adjustment_id=adjustment.adjustment_id,
            period=period,
            amount=applied,
            requested_amount=requested,
            remaining_balance=adjustment.remaining_balance,
            status=adjustment.status,
            limited=limited,
        )

    @staticmethod
    def repayment_schedule(
        adjustment: IndividualAdjustment, from_period: str | None = None
    ) -> list[RepaymentInstallment]:
        """Project the remaining installments of an amortizing deduction.

        Starts at from_period, or the period after the last application, or
        the adjustment's first period. Empty for non-amortizing or finished
        adjustments.
        """
        if not is_amortizing(adjustment.adjustment_type):
            return []
        if adjustment.status in TERMINAL_ADJUSTMENT_STATUSES:
            return []

        remaining = Decimal(adjustment.remaining_balance or 0)
        amount = Decimal(adjustment.amount)
        if amount <= 0:
            return []

        if from_period is not None:
            current = validate_period(from_period)
        elif adjustment.last_applied_period is not None:
            current = next_period(adjustment.last_applied_period)
        else:
            current = _effective_start(adjustment)

        schedule: list[RepaymentInstallment] = []
        while remaining > 0:
            if adjustment.end_period is not None and current > adjustment.end_period:
                break
            installment = min(amount, remaining)
            remaining -= installment
            schedule.append(RepaymentInstallment(current, installment, remaining))
            current = next_period(current)
        return schedule

    # ===== Internals =====

    async def _eligible(
        self,
        direction: AdjustmentDirection,
        status: AdjustmentStatus,
        period: str,
        staff_id: UUID | None,
    ) -> list[IndividualAdjustment]:
        stmt = select(IndividualAdjustment).where(
            IndividualAdjustment.direction == direction.value,
            IndividualAdjustment.status == status.value,
        )
        stmt = self._within_window(stmt, validate_period(period))
        if staff_id is not None:
            stmt = stmt.where(IndividualAdjustment.staff_id == staff_id)
        stmt = stmt.order_by(IndividualAdjustment.created_at, IndividualAdjustment.adjustment_id)
        result = await self.session.execute(stmt)
        return list(result.scalars())

    @staticmethod
    def _within_window(stmt, period: str):
        # YYYY-MM strings compare in calendar order
        start = func.coalesce(IndividualAdjustment.start_period, IndividualAdjustment.period)
        return stmt.where(
            start <= period,
            or_(
                IndividualAdjustment.end_period.is_(None),
                IndividualAdjustment.end_period >= period,
            ),
        )

    @staticmethod
    def _covers(adjustment: IndividualAdjustment, period: str) -> bool:
        if _effective_start(adjustment) > period:
            return False
        return adjustment.end_period is None or period <= adjustment.end_period

    @staticmethod
    def _check_balance(adjustment: IndividualAdjustment) -> Decimal:
        """Return the remaining balance after checking 0 <= remaining <= total."""
        if adjustment.total_amount is None or adjustment.remaining_balance is None:
            raise AdjustmentConsistencyError(
                adjustment.adjustment_id,
                "amortizing adjustment has no total_amount or remaining_balance",
            )
        remaining = Decimal(adjustment.remaining_balance)
        total = Decimal(adjustment.total_amount)
        if remaining < 0:
            raise AdjustmentConsistencyError(
                adjustment.adjustment_id, f"remaining_balance {remaining} is negative"
            )
        if remaining > total:
            raise AdjustmentConsistencyError(
                adjustment.adjustment_id,
                f"remaining_balance {remaining} exceeds total_amount {total}",
            )
        return remaining

    @staticmethod
    def _validate_amount(amount: Decimal) -> Decimal:
        amount = PayslipLineBuilder.round_currency(Decimal(amount))
        if amount <= 0:
            raise AdjustmentValidationError(f"amount must be positive, got {amount}")
        return amount

    @staticmethod
    def _validate_window(period: str, start_period: str | None, end_period: str | None) -> None:
        start = validate_period(start_period) if start_period is not None else period
        if end_period is not None and validate_period(end_period) < start:
            raise AdjustmentValidationError(
                f"end_period {end_period} is before start period {start}"
            )

    async def _review(
        self,
        adjustment_id: UUID,
        reviewer_id: UUID | None,
        action: str,
        event: str,
        to_status: AdjustmentStatus,
    ) -> IndividualAdjustment:
        adjustment = await self.get_adjustment(adjustment_id, for_update=True)
        if adjustment.direction != AdjustmentDirection.ALLOWANCE.value:
            raise AdjustmentStateError(
                adjustment_id, adjustment.status, action, "only allowances are reviewed"
            )
        if adjustment.status != AdjustmentStatus.PENDING.value:
            raise AdjustmentStateError(adjustment_id, adjustment.status, action)

        before = _snapshot(adjustment)
        adjustment.status = to_status.value
        adjustment.reviewed_by = reviewer_id
        adjustment.reviewed_at = datetime.now(timezone.utc)
        await self.session.flush()

        await self._record_audit(
            adjustment, event, reviewer_id, before, _snapshot(adjustment)
        )
        logger.info("Allowance %s %s by %s", adjustment_id, event, reviewer_id)
        return adjustment

    async def _record_audit(
        self,
        adjustment: IndividualAdjustment,
        action: str,
        actor_user_id: UUID | None,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
    ) -> None:
        """Record an audit event for an adjustment action."""
        event = AuditEvent(
            actor_user_id=actor_user_id,
            entity_type="individual_adjustment",
            entity_id=adjustment.adjustment_id,
            action=action,
            before_json=before,
            after_json=after,
        )
        self.session.add(event)
