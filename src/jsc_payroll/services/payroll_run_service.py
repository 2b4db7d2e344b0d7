"""Payroll run service - orchestrates runs and manages their lifecycle."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from jsc_payroll.calculators.salary_table import SalaryTable
from jsc_payroll.calculators.types import PayslipDraft, validate_period
from jsc_payroll.config import StatutoryRates, get_settings
from jsc_payroll.database import acquire_scope_lock
from jsc_payroll.models import AuditEvent, PayrollRun, Payslip, Staff
from jsc_payroll.models.base import utcnow
from jsc_payroll.services.payslip_assembler import PayslipAssembler
from jsc_payroll.services.state_machine import (
    InvalidTransitionError,
    PayrollRunStateMachine,
    PayrollRunStatus,
)

logger = logging.getLogger(__name__)

ALL_DEPARTMENTS = "all"


class DuplicateRunError(Exception):
    """Raised when a finished run already covers the requested scope."""

    def __init__(self, period: str, department_id: UUID | None, conflicting_run_id: UUID):
        self.period = period
        self.department_id = department_id
        self.conflicting_run_id = conflicting_run_id
        super().__init__(
            f"Payroll run {conflicting_run_id} already covers {period} "
            f"for {scope_key(department_id)}"
        )


class RunInProgressError(Exception):
    """Raised when a run for the requested scope is still processing."""

    def __init__(self, period: str, department_id: UUID | None, conflicting_run_id: UUID):
        self.period = period
        self.department_id = department_id
        self.conflicting_run_id = conflicting_run_id
        super().__init__(
            f"Payroll run {conflicting_run_id} for {period} "
            f"({scope_key(department_id)}) is still processing"
        )


class NothingToProcessError(Exception):
    """Raised when no eligible staff member is left to pay for the period."""

    def __init__(
        self,
        period: str,
        department_id: UUID | None,
        skipped_staff_ids: list[UUID] | None = None,
    ):
        self.period = period
        self.department_id = department_id
        self.skipped_staff_ids = skipped_staff_ids or []
        super().__init__(
            f"Nothing to process for {period} ({scope_key(department_id)}): "
            f"{len(self.skipped_staff_ids)} staff already paid"
        )


class PayrollRunNotFoundError(Exception):
    """Raised when a payroll run id does not exist."""

    def __init__(self, payroll_run_id: UUID):
        self.payroll_run_id = payroll_run_id
        super().__init__(f"Payroll run {payroll_run_id} not found")


def scope_key(department_id: UUID | None) -> str:
    """Key identifying a run's department scope."""
    return ALL_DEPARTMENTS if department_id is None else str(department_id)


@dataclass
class RunResult:
    """Summary of one payroll run for callers and notifications."""

    run_id: UUID
    period: str
    department_id: UUID | None
    status: str
    processed_staff_ids: list[UUID] = field(default_factory=list)
    skipped_staff_ids: list[UUID] = field(default_factory=list)
    failed: dict[UUID, str] = field(default_factory=dict)  # staff_id -> reason
    warnings: dict[UUID, list[str]] = field(default_factory=dict)  # capped deductions
    gross_amount: Decimal = Decimal("0")
    total_deductions: Decimal = Decimal("0")
    net_amount: Decimal = Decimal("0")

    @property
    def failed_staff_ids(self) -> list[UUID]:
        return list(self.failed)

    @property
    def has_exceptions(self) -> bool:
        """True if the run completed but some staff need remediation."""
        return bool(self.failed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": str(self.run_id),
            "period": self.period,
            "department_id": str(self.department_id) if self.department_id else None,
            "status": self.status,
            "processed_staff_ids": [str(s) for s in self.processed_staff_ids],
            "skipped_staff_ids": [str(s) for s in self.skipped_staff_ids],
            "failed": {str(s): reason for s, reason in self.failed.items()},
            "warnings": {str(s): messages for s, messages in self.warnings.items()},
            "gross_amount": str(self.gross_amount),
            "total_deductions": str(self.total_deductions),
            "net_amount": str(self.net_amount),
        }


@dataclass(frozen=True)
class _StaffMember:
    staff_id: UUID
    grade_level: int
    step: int


@dataclass
class _StaffOutcome:
    staff_id: UUID
    draft: PayslipDraft | None = None
    error: str | None = None
    skipped: bool = False


async def _record_audit(
    session: AsyncSession,
    payroll_run: PayrollRun,
    action: str,
    actor_user_id: UUID | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """Record an audit event for a payroll run action."""
    event = AuditEvent(
        actor_user_id=actor_user_id,
        entity_type="payroll_run",
        entity_id=payroll_run.payroll_run_id,
        action=action,
        after_json=details,
    )
    session.add(event)


class PayrollRunOrchestrator:
    """Runs payroll for a period and optional department scope.

    Steps:
    1. Lock the (period, scope) and reject if a run already holds it
    2. Resolve active staff and skip those already paid for the period
       under any scope
    3. Create the run in 'processing' with the rates frozen on it
    4. Assemble each remaining staff member in its own transaction;
       failures are recorded per staff member and never stop the run
    5. Mark the run 'processed' with its totals

    Steps 1-3 share one transaction, so a rejected start leaves no run row.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        rates: StatutoryRates | None = None,
        concurrency: int | None = None,
    ):
        self.session_factory = session_factory
        if rates is None or concurrency is None:
            settings = get_settings()
            rates = rates or settings.statutory_rates
            concurrency = concurrency or settings.run_concurrency
        self.rates = rates
        self.concurrency = max(1, concurrency)

    async def start_run(
        self,
        period: str,
        department_id: UUID | None = None,
        actor_id: UUID | None = None,
    ) -> RunResult:
        """Process payroll for period, limited to department_id if given.

        Raises:
            DuplicateRunError: A finished run already covers the scope
            RunInProgressError: A run for the scope is still processing
            NothingToProcessError: Every eligible staff member is already paid
        """
        validate_period(period)
        key = scope_key(department_id)

        try:
            run_id, members, skipped, salary_table = await self._create_run(
                period, department_id, key, actor_id
            )
        except IntegrityError:
            # Lost the race on the (period, scope_key) index
            async with self.session_factory() as session:
                await self._check_scope(session, period, department_id, key)
            raise

        logger.info(
            "Payroll run %s started for %s (%s): %d to process, %d already paid",
            run_id,
            period,
            key,
            len(members),
            len(skipped),
        )
        for staff_id in skipped:
            logger.warning("Staff %s already paid for %s, skipped", staff_id, period)

        semaphore = asyncio.Semaphore(self.concurrency)

        async def process(member: _StaffMember) -> _StaffOutcome:
            async with semaphore:
                return await self._process_staff(run_id, period, member, salary_table)

        outcomes = await asyncio.gather(*(process(m) for m in members))

        return await self._finalize_run(run_id, period, department_id, skipped, outcomes)

    async def _create_run(
        self,
        period: str,
        department_id: UUID | None,
        key: str,
        actor_id: UUID | None,
    ) -> tuple[UUID, list[_StaffMember], list[UUID], SalaryTable]:
        async with self.session_factory() as session:
            async with session.begin():
                await acquire_scope_lock(session, f"payroll_run:{period}:{key}")
                await self._check_scope(session, period, department_id, key)

                staff = await self._resolve_staff(session, department_id)
                paid = await self._paid_staff_ids(session, period, [s.staff_id for s in staff])
                members = [
                    _StaffMember(s.staff_id, s.grade_level, s.step)
                    for s in staff
                    if s.staff_id not in paid
                ]
                skipped = [s.staff_id for s in staff if s.staff_id in paid]
                if not members:
                    raise NothingToProcessError(period, department_id, skipped)

                salary_table = await SalaryTable.load(session)

                payroll_run = PayrollRun(
                    period=period,
                    department_id=department_id,
                    scope_key=key,
                    status=PayrollRunStatus.DRAFT.value,
                    rates_version=self.rates.version,
                    rates_snapshot=self.rates.to_snapshot(),
                    created_by=actor_id,
                )
                PayrollRunStateMachine.validate_transition(
                    payroll_run.status, PayrollRunStatus.PROCESSING.value
                )
                payroll_run.status = PayrollRunStatus.PROCESSING.value
                payroll_run.total_staff = len(members)
                payroll_run.skipped_staff_ids = [str(s) for s in skipped]
                session.add(payroll_run)
                await session.flush()

                await _record_audit(
                    session,
                    payroll_run,
                    "started",
                    actor_id,
                    {"total_staff": len(members), "skipped": len(skipped)},
                )
                return payroll_run.payroll_run_id, members, skipped, salary_table

    async def _process_staff(
        self,
        run_id: UUID,
        period: str,
        member: _StaffMember,
        salary_table: SalaryTable,
    ) -> _StaffOutcome:
        """Assemble and persist one payslip atomically with its ledger updates."""
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    assembler = PayslipAssembler(session, salary_table, self.rates)
                    draft = await assembler.assemble(
                        member.staff_id,
                        member.grade_level,
                        member.step,
                        period,
                        payroll_run_id=run_id,
                    )
                    await assembler.persist(draft, run_id)
        except IntegrityError as exc:
            if await self._has_payslip(member.staff_id, period):
                # Paid by a concurrent run under another scope
                logger.warning("Staff %s paid concurrently for %s, skipped", member.staff_id, period)
                return _StaffOutcome(member.staff_id, skipped=True)
            logger.exception("Payslip persistence failed for staff %s in run %s", member.staff_id, run_id)
            return _StaffOutcome(member.staff_id, error=f"{type(exc).__name__}: {exc.orig}")
        except Exception as exc:
            logger.exception("Payslip assembly failed for staff %s in run %s", member.staff_id, run_id)
            return _StaffOutcome(member.staff_id, error=f"{type(exc).__name__}: {exc}")

        return _StaffOutcome(member.staff_id, draft=draft)

    async def _finalize_run(
        self,
        run_id: UUID,
        period: str,
        department_id: UUID | None,
        skipped: list[UUID],
        outcomes: list[_StaffOutcome],
    ) -> RunResult:
        result = RunResult(
            run_id=run_id,
            period=period,
            department_id=department_id,
            status=PayrollRunStatus.PROCESSED.value,
            skipped_staff_ids=list(skipped),
        )
        for outcome in outcomes:
            if outcome.skipped:
                result.skipped_staff_ids.append(outcome.staff_id)
            elif outcome.error is not None:
                result.failed[outcome.staff_id] = outcome.error
            elif outcome.draft is not None:
                draft = outcome.draft
                result.processed_staff_ids.append(outcome.staff_id)
                result.gross_amount += draft.gross_pay
                result.total_deductions += draft.total_deductions
                result.net_amount += draft.net_pay
                if draft.deductions_capped:
                    result.warnings[outcome.staff_id] = list(draft.warnings)

        async with self.session_factory() as session:
            async with session.begin():
                payroll_run = await session.get(PayrollRun, run_id, with_for_update=True)
                if payroll_run is None:
                    raise PayrollRunNotFoundError(run_id)

                payroll_run.processed_count = len(result.processed_staff_ids)
                payroll_run.failed_count = len(result.failed)
                errors = PayrollRunStateMachine.validate_run_for_transition(
                    payroll_run, PayrollRunStatus.PROCESSED
                )
                if errors:
                    raise InvalidTransitionError(
                        payroll_run.status, PayrollRunStatus.PROCESSED.value, "; ".join(errors)
                    )

                payroll_run.status = PayrollRunStatus.PROCESSED.value
                payroll_run.gross_amount = result.gross_amount
                payroll_run.total_deductions = result.total_deductions
                payroll_run.net_amount = result.net_amount
                payroll_run.failures = {str(s): reason for s, reason in result.failed.items()}
                payroll_run.skipped_staff_ids = [str(s) for s in result.skipped_staff_ids]
                payroll_run.processed_at = utcnow()

                await _record_audit(
                    session,
                    payroll_run,
                    "processed",
                    details={
                        "processed": payroll_run.processed_count,
                        "failed": payroll_run.failed_count,
                        "skipped": len(result.skipped_staff_ids),
                        "net_amount": str(result.net_amount),
                    },
                )

        if result.has_exceptions:
            logger.warning(
                "Payroll run %s processed with %d exception(s): %s",
                run_id,
                len(result.failed),
                ", ".join(str(s) for s in result.failed),
            )
        logger.info(
            "Payroll run %s processed: %d payslips, gross %s, net %s",
            run_id,
            len(result.processed_staff_ids),
            result.gross_amount,
            result.net_amount,
        )
        return result

    @staticmethod
    async def _check_scope(
        session: AsyncSession,
        period: str,
        department_id: UUID | None,
        key: str,
    ) -> None:
        """Raise if a run already holds (period, scope)."""
        result = await session.execute(
            select(PayrollRun)
            .where(PayrollRun.period == period, PayrollRun.scope_key == key)
            .order_by(PayrollRun.created_at.desc())
        )
        existing = next(
            (r for r in result.scalars() if PayrollRunStateMachine.holds_scope(r.status)),
            None,
        )
        if existing is None:
            return
        if existing.status == PayrollRunStatus.PROCESSING.value:
            raise RunInProgressError(period, department_id, existing.payroll_run_id)
        raise DuplicateRunError(period, department_id, existing.payroll_run_id)

    @staticmethod
    async def _resolve_staff(
        session: AsyncSession, department_id: UUID | None
    ) -> list[Staff]:
        stmt = select(Staff).where(Staff.status == "active")
        if department_id is not None:
            stmt = stmt.where(Staff.department_id == department_id)
        result = await session.execute(stmt.order_by(Staff.staff_number))
        return list(result.scalars())

    @staticmethod
    async def _paid_staff_ids(
        session: AsyncSession, period: str, staff_ids: list[UUID]
    ) -> set[UUID]:
        """Staff with a payslip for period from any run, whatever its scope."""
        if not staff_ids:
            return set()
        result = await session.execute(
            select(Payslip.staff_id).where(
                Payslip.period == period,
                Payslip.staff_id.in_(staff_ids),
            )
        )
        return set(result.scalars())

    async def _has_payslip(self, staff_id: UUID, period: str) -> bool:
        async with self.session_factory() as session:
            paid = await self._paid_staff_ids(session, period, [staff_id])
        return staff_id in paid


class PayrollRunService:
    """Service for payroll run lifecycle and queries.

    Operations:
    - submit_for_review: processed → pending_review
    - approve_run: processed/pending_review → approved
    - get_run, list_runs, list_payslips
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_run(self, payroll_run_id: UUID) -> PayrollRun:
        result = await self.session.execute(
            select(PayrollRun).where(PayrollRun.payroll_run_id == payroll_run_id)
        )
        payroll_run = result.scalar_one_or_none()
        if payroll_run is None:
            raise PayrollRunNotFoundError(payroll_run_id)
        return payroll_run

    async def list_runs(
        self,
        period: str | None = None,
        department_id: UUID | None = None,
        status: str | None = None,
    ) -> list[PayrollRun]:
        stmt = select(PayrollRun)
        if period is not None:
            stmt = stmt.where(PayrollRun.period == validate_period(period))
        if department_id is not None:
            stmt = stmt.where(PayrollRun.department_id == department_id)
        if status is not None:
            stmt = stmt.where(PayrollRun.status == status)
        result = await self.session.execute(
            stmt.order_by(PayrollRun.period.desc(), PayrollRun.created_at.desc())
        )
        return list(result.scalars())

    async def list_payslips(
        self,
        period: str | None = None,
        staff_id: UUID | None = None,
        payroll_run_id: UUID | None = None,
    ) -> list[Payslip]:
        """Payslips with their lines, filtered by any combination of keys."""
        stmt = select(Payslip).options(selectinload(Payslip.lines))
        if period is not None:
            stmt = stmt.where(Payslip.period == validate_period(period))
        if staff_id is not None:
            stmt = stmt.where(Payslip.staff_id == staff_id)
        if payroll_run_id is not None:
            stmt = stmt.where(Payslip.payroll_run_id == payroll_run_id)
        result = await self.session.execute(
            stmt.order_by(Payslip.period.desc(), Payslip.created_at)
        )
        return list(result.scalars())

    async def transition_status(
        self,
        payroll_run: PayrollRun,
        to_status: str,
        actor_user_id: UUID | None = None,
    ) -> PayrollRun:
        """Transition a payroll run to a new status.

        Raises InvalidTransitionError if transition is not allowed.
        """
        from_status = payroll_run.status
        to_status = PayrollRunStatus(to_status).value

        errors = PayrollRunStateMachine.validate_run_for_transition(payroll_run, to_status)
        if errors:
            raise InvalidTransitionError(from_status, to_status, "; ".join(errors))

        if to_status == PayrollRunStatus.APPROVED:
            payroll_run.approved_by = actor_user_id
            payroll_run.approved_at = utcnow()

        payroll_run.status = to_status
        await self.session.flush()

        await _record_audit(
            self.session,
            payroll_run,
            f"status_change:{from_status}:{payroll_run.status}",
            actor_user_id,
        )
        logger.info(
            "Payroll run %s moved from %s to %s", payroll_run.payroll_run_id, from_status, payroll_run.status
        )
        return payroll_run

    async def submit_for_review(
        self, payroll_run_id: UUID, actor_id: UUID | None = None
    ) -> PayrollRun:
        payroll_run = await self.get_run(payroll_run_id)
        return await self.transition_status(
            payroll_run, PayrollRunStatus.PENDING_REVIEW, actor_id
        )

    async def approve_run(
        self, payroll_run_id: UUID, approver_id: UUID | None = None
    ) -> PayrollRun:
        """Approve a processed or reviewed run. Approved runs are final."""
        payroll_run = await self.get_run(payroll_run_id)
        return await self.transition_status(
            payroll_run, PayrollRunStatus.APPROVED, approver_id
        )
