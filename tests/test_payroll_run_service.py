"""Tests for payroll run orchestration and lifecycle."""

import asyncio
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from jsc_payroll.config import StatutoryRates
from jsc_payroll.models import AuditEvent, IndividualAdjustment, PayrollRun, Payslip
from jsc_payroll.services.adjustment_ledger import AdjustmentLedger
from jsc_payroll.services.payroll_run_service import (
    DuplicateRunError,
    NothingToProcessError,
    PayrollRunNotFoundError,
    PayrollRunOrchestrator,
    PayrollRunService,
    RunInProgressError,
    RunResult,
)
from jsc_payroll.services.state_machine import InvalidTransitionError

pytestmark = pytest.mark.asyncio

PERIOD = "2025-01"


async def _count(session_factory, model, *where) -> int:
    async with session_factory() as session:
        result = await session.execute(select(func.count()).select_from(model).where(*where))
        return result.scalar_one()


async def _get_run(session_factory, run_id) -> PayrollRun:
    async with session_factory() as session:
        return await PayrollRunService(session).get_run(run_id)


async def _get_adjustment(session_factory, adjustment_id) -> IndividualAdjustment:
    async with session_factory() as session:
        return await AdjustmentLedger(session).get_adjustment(adjustment_id)


class TestStartRun:
    """Test processing a payroll run."""

    async def test_run_all_departments(
        self, orchestrator, session_factory, salary_structure, departments, make_staff, actor_id
    ):
        a = await make_staff(7, 1, departments["ADMIN"])
        b = await make_staff(7, 1, departments["ADMIN"])
        c = await make_staff(8, 1, departments["FIN"])

        result = await orchestrator.start_run(PERIOD, actor_id=actor_id)

        assert result.status == "processed"
        assert set(result.processed_staff_ids) == {a.staff_id, b.staff_id, c.staff_id}
        assert result.skipped_staff_ids == []
        assert result.has_exceptions is False
        # 152,000 + 152,000 + 96,000 * 1.52
        assert result.net_amount == Decimal("449920.00")

        payroll_run = await _get_run(session_factory, result.run_id)
        assert payroll_run.status == "processed"
        assert payroll_run.scope_key == "all"
        assert payroll_run.total_staff == 3
        assert payroll_run.processed_count == 3
        assert payroll_run.failed_count == 0
        assert payroll_run.net_amount == Decimal("449920.00")
        assert payroll_run.created_by == actor_id
        assert payroll_run.processed_at is not None
        assert await _count(session_factory, Payslip, Payslip.period == PERIOD) == 3

    async def test_run_is_audited(
        self, orchestrator, session_factory, salary_structure, make_staff
    ):
        await make_staff()

        result = await orchestrator.start_run(PERIOD)

        async with session_factory() as session:
            actions = await session.execute(
                select(AuditEvent.action).where(AuditEvent.entity_id == result.run_id)
            )
            assert set(actions.scalars()) == {"started", "processed"}

    async def test_only_active_staff(self, orchestrator, salary_structure, make_staff):
        active = await make_staff()
        await make_staff(status="on_leave")
        await make_staff(status="retired")

        result = await orchestrator.start_run(PERIOD)

        assert result.processed_staff_ids == [active.staff_id]

    async def test_rates_frozen_on_run(self, session_factory, salary_structure, make_staff):
        rates = StatutoryRates(version="2026.1", tax=Decimal("0.10"))
        orchestrator = PayrollRunOrchestrator(session_factory, rates=rates, concurrency=1)
        await make_staff()

        result = await orchestrator.start_run(PERIOD)

        payroll_run = await _get_run(session_factory, result.run_id)
        assert payroll_run.rates_version == "2026.1"
        assert payroll_run.rates_snapshot == rates.to_snapshot()
        assert payroll_run.rates == rates
        # tax 10,000 instead of 7,500
        assert result.net_amount == Decimal("149500.00")


class TestRunExclusivity:
    """Test that a (period, scope) is paid once and a staff member once per period."""

    async def test_duplicate_run_rejected(
        self, orchestrator, session_factory, salary_structure, make_staff
    ):
        await make_staff()
        first = await orchestrator.start_run(PERIOD)

        with pytest.raises(DuplicateRunError) as exc_info:
            await orchestrator.start_run(PERIOD)

        assert exc_info.value.conflicting_run_id == first.run_id
        assert await _count(session_factory, PayrollRun) == 1
        assert await _count(session_factory, Payslip) == 1

    async def test_duplicate_of_approved_run(
        self, orchestrator, session_factory, salary_structure, make_staff
    ):
        await make_staff()
        first = await orchestrator.start_run(PERIOD)
        async with session_factory() as session:
            async with session.begin():
                await PayrollRunService(session).approve_run(first.run_id)

        with pytest.raises(DuplicateRunError):
            await orchestrator.start_run(PERIOD)

    async def test_run_in_progress(
        self, orchestrator, session_factory, salary_structure, make_staff, rates
    ):
        await make_staff()
        async with session_factory() as session:
            async with session.begin():
                stuck = PayrollRun(
                    period=PERIOD,
                    scope_key="all",
                    status="processing",
                    rates_version=rates.version,
                    rates_snapshot=rates.to_snapshot(),
                )
                session.add(stuck)

        with pytest.raises(RunInProgressError) as exc_info:
            await orchestrator.start_run(PERIOD)

        assert exc_info.value.conflicting_run_id == stuck.payroll_run_id
        assert await _count(session_factory, Payslip) == 0

    async def test_draft_run_does_not_hold_scope(
        self, orchestrator, session_factory, salary_structure, make_staff, rates
    ):
        await make_staff()
        async with session_factory() as session:
            async with session.begin():
                session.add(
                    PayrollRun(
                        period=PERIOD,
                        scope_key="all",
                        rates_version=rates.version,
                        rates_snapshot=rates.to_snapshot(),
                    )
                )

        result = await orchestrator.start_run(PERIOD)

        assert len(result.processed_staff_ids) == 1
        assert await _count(session_factory, PayrollRun) == 2

    async def test_other_period_unaffected(self, orchestrator, salary_structure, make_staff):
        await make_staff()
        await orchestrator.start_run("2025-01")

        result = await orchestrator.start_run("2025-02")

        assert len(result.processed_staff_ids) == 1

    async def test_department_then_all_skips_paid_staff(
        self, orchestrator, session_factory, salary_structure, departments, make_staff
    ):
        admin = departments["ADMIN"]
        paid = await make_staff(department=admin)
        unpaid = await make_staff(department=departments["FIN"])
        await orchestrator.start_run(PERIOD, admin.department_id)

        result = await orchestrator.start_run(PERIOD)

        assert result.processed_staff_ids == [unpaid.staff_id]
        assert result.skipped_staff_ids == [paid.staff_id]
        assert await _count(session_factory, Payslip, Payslip.staff_id == paid.staff_id) == 1
        payroll_run = await _get_run(session_factory, result.run_id)
        assert payroll_run.skipped_staff_ids == [str(paid.staff_id)]

    async def test_nothing_to_process(
        self, orchestrator, session_factory, salary_structure, departments, make_staff
    ):
        admin = departments["ADMIN"]
        staff = await make_staff(department=admin)
        await orchestrator.start_run(PERIOD)

        with pytest.raises(NothingToProcessError) as exc_info:
            await orchestrator.start_run(PERIOD, admin.department_id)

        assert exc_info.value.skipped_staff_ids == [staff.staff_id]
        assert await _count(session_factory, PayrollRun, PayrollRun.scope_key != "all") == 0

    async def test_concurrent_starts_for_same_scope(
        self, orchestrator, session_factory, salary_structure, make_staff
    ):
        await make_staff()
        await make_staff()

        outcomes = await asyncio.gather(
            orchestrator.start_run(PERIOD),
            orchestrator.start_run(PERIOD),
            return_exceptions=True,
        )

        results = [o for o in outcomes if isinstance(o, RunResult)]
        rejected = [o for o in outcomes if isinstance(o, (RunInProgressError, DuplicateRunError))]
        assert len(results) == 1
        assert len(rejected) == 1
        assert rejected[0].conflicting_run_id == results[0].run_id
        assert await _count(session_factory, PayrollRun) == 1
        assert await _count(session_factory, Payslip) == 2

    async def test_scope_taken_between_check_and_insert(
        self, orchestrator, session_factory, salary_structure, make_staff, rates, monkeypatch
    ):
        await make_staff()
        async with session_factory() as session:
            async with session.begin():
                winner = PayrollRun(
                    period=PERIOD,
                    scope_key="all",
                    status="processing",
                    rates_version=rates.version,
                    rates_snapshot=rates.to_snapshot(),
                )
                session.add(winner)

        check_scope = PayrollRunOrchestrator._check_scope
        calls = []

        async def check_after_first(session, period, department_id, key):
            # The first check runs before the winner's row is visible
            calls.append(key)
            if len(calls) > 1:
                await check_scope(session, period, department_id, key)

        monkeypatch.setattr(orchestrator, "_check_scope", check_after_first)

        with pytest.raises(RunInProgressError) as exc_info:
            await orchestrator.start_run(PERIOD)

        assert calls == ["all", "all"]
        assert exc_info.value.conflicting_run_id == winner.payroll_run_id
        assert await _count(session_factory, PayrollRun) == 1
        assert await _count(session_factory, Payslip) == 0

    async def test_staff_paid_by_overlapping_run_is_skipped(
        self, orchestrator, session_factory, salary_structure, departments, make_staff, monkeypatch
    ):
        admin = departments["ADMIN"]
        shared = await make_staff(department=admin)
        other = await make_staff(department=departments["FIN"])
        department_run = await orchestrator.start_run(PERIOD, admin.department_id)

        paid_staff_ids = PayrollRunOrchestrator._paid_staff_ids
        calls = []

        async def paid_after_partition(session, period, staff_ids):
            # The department run commits after the all-departments run partitions
            calls.append(list(staff_ids))
            if len(calls) == 1:
                return set()
            return await paid_staff_ids(session, period, staff_ids)

        monkeypatch.setattr(orchestrator, "_paid_staff_ids", paid_after_partition)

        result = await orchestrator.start_run(PERIOD)

        assert len(calls) == 2
        assert result.processed_staff_ids == [other.staff_id]
        assert result.skipped_staff_ids == [shared.staff_id]
        assert result.failed == {}
        assert department_run.processed_staff_ids == [shared.staff_id]
        assert await _count(session_factory, Payslip, Payslip.staff_id == shared.staff_id) == 1

        payroll_run = await _get_run(session_factory, result.run_id)
        assert payroll_run.skipped_staff_ids == [str(shared.staff_id)]
        assert payroll_run.total_staff == 2
        assert payroll_run.processed_count == 1

    async def test_overlapping_scopes_started_together(
        self, orchestrator, session_factory, salary_structure, departments, make_staff
    ):
        admin = departments["ADMIN"]
        shared = await make_staff(department=admin)
        other = await make_staff(department=departments["FIN"])

        outcomes = await asyncio.gather(
            orchestrator.start_run(PERIOD, admin.department_id),
            orchestrator.start_run(PERIOD),
            return_exceptions=True,
        )

        results = [o for o in outcomes if isinstance(o, RunResult)]
        assert all(isinstance(o, (RunResult, NothingToProcessError)) for o in outcomes)
        assert all(r.failed == {} for r in results)
        paid = [s for r in results for s in r.processed_staff_ids]
        assert sorted(paid) == sorted([shared.staff_id, other.staff_id])
        assert await _count(session_factory, Payslip, Payslip.staff_id == shared.staff_id) == 1
        assert await _count(session_factory, Payslip, Payslip.staff_id == other.staff_id) == 1

    async def test_no_staff(self, orchestrator, session_factory, salary_structure):
        with pytest.raises(NothingToProcessError):
            await orchestrator.start_run(PERIOD)

        assert await _count(session_factory, PayrollRun) == 0


class TestStaffFailures:
    """Test per-staff failure isolation."""

    async def test_missing_salary_entry_fails_one_staff(
        self, orchestrator, session_factory, salary_structure, make_staff
    ):
        ok = await make_staff(7, 1)
        broken = await make_staff(9, 3)

        result = await orchestrator.start_run(PERIOD)

        assert result.processed_staff_ids == [ok.staff_id]
        assert result.failed_staff_ids == [broken.staff_id]
        assert "ConfigurationError" in result.failed[broken.staff_id]
        assert result.has_exceptions is True

        payroll_run = await _get_run(session_factory, result.run_id)
        assert payroll_run.status == "processed"
        assert payroll_run.failed_count == 1
        assert str(broken.staff_id) in payroll_run.failures
        assert await _count(session_factory, Payslip, Payslip.staff_id == broken.staff_id) == 0

    async def test_failed_staff_ledger_untouched(
        self, orchestrator, session_factory, salary_structure, make_staff
    ):
        """A failure after a loan was applied rolls back the loan balance too."""
        staff = await make_staff()
        async with session_factory() as session:
            async with session.begin():
                ledger = AdjustmentLedger(session)
                loan = await ledger.create_deduction(
                    staff.staff_id,
                    "loan_repayment",
                    Decimal("20000"),
                    PERIOD,
                    total_amount=Decimal("60000"),
                )
                cooperative = await ledger.create_deduction(
                    staff.staff_id,
                    "cooperative",
                    Decimal("5000"),
                    PERIOD,
                    total_amount=Decimal("30000"),
                )
                # Balance above total: the ledger refuses to touch it
                cooperative.remaining_balance = Decimal("40000")

        result = await orchestrator.start_run(PERIOD)

        assert result.failed_staff_ids == [staff.staff_id]
        assert "AdjustmentConsistencyError" in result.failed[staff.staff_id]
        stored = await _get_adjustment(session_factory, loan.adjustment_id)
        assert stored.remaining_balance == Decimal("60000.00")
        assert stored.last_applied_period is None

    async def test_loan_repaid_across_runs(
        self, orchestrator, session_factory, salary_structure, make_staff
    ):
        staff = await make_staff()
        async with session_factory() as session:
            async with session.begin():
                loan = await AdjustmentLedger(session).create_deduction(
                    staff.staff_id,
                    "loan_repayment",
                    Decimal("20000"),
                    "2025-01",
                    total_amount=Decimal("60000"),
                )

        nets = []
        for period in ("2025-01", "2025-02", "2025-03", "2025-04"):
            result = await orchestrator.start_run(period)
            nets.append(result.net_amount)

        assert nets == [
            Decimal("132000.00"),
            Decimal("132000.00"),
            Decimal("132000.00"),
            Decimal("152000.00"),
        ]
        stored = await _get_adjustment(session_factory, loan.adjustment_id)
        assert stored.status == "paid_off"
        assert stored.remaining_balance == Decimal("0.00")

    async def test_capped_payslip_reported(
        self, orchestrator, session_factory, salary_structure, make_staff
    ):
        staff = await make_staff()
        async with session_factory() as session:
            async with session.begin():
                await AdjustmentLedger(session).create_deduction(
                    staff.staff_id, "garnishment", Decimal("200000"), PERIOD
                )

        result = await orchestrator.start_run(PERIOD)

        assert result.net_amount == Decimal("0.00")
        assert staff.staff_id in result.warnings
        async with session_factory() as session:
            payslips = await PayrollRunService(session).list_payslips(staff_id=staff.staff_id)
        assert payslips[0].deductions_capped is True


class TestRunLifecycle:
    """Test review and approval of processed runs."""

    async def test_approve(
        self, orchestrator, session_factory, salary_structure, make_staff, actor_id
    ):
        await make_staff()
        result = await orchestrator.start_run(PERIOD)

        async with session_factory() as session:
            async with session.begin():
                approved = await PayrollRunService(session).approve_run(result.run_id, actor_id)

        assert approved.status == "approved"
        assert approved.approved_by == actor_id
        assert approved.approved_at is not None

    async def test_review_then_approve(
        self, orchestrator, session_factory, salary_structure, make_staff
    ):
        await make_staff()
        result = await orchestrator.start_run(PERIOD)

        async with session_factory() as session:
            async with session.begin():
                service = PayrollRunService(session)
                reviewed = await service.submit_for_review(result.run_id)
                assert reviewed.status == "pending_review"
                approved = await service.approve_run(result.run_id)

        assert approved.status == "approved"
        async with session_factory() as session:
            actions = await session.execute(
                select(AuditEvent.action).where(AuditEvent.entity_id == result.run_id)
            )
            assert "status_change:processed:pending_review" in set(actions.scalars())

    async def test_approved_is_final(
        self, orchestrator, session_factory, salary_structure, make_staff
    ):
        await make_staff()
        result = await orchestrator.start_run(PERIOD)
        async with session_factory() as session:
            async with session.begin():
                await PayrollRunService(session).approve_run(result.run_id)

        async with session_factory() as session:
            with pytest.raises(InvalidTransitionError):
                await PayrollRunService(session).submit_for_review(result.run_id)

    async def test_run_without_payslips_cannot_be_approved(
        self, orchestrator, session_factory, salary_structure, make_staff
    ):
        await make_staff(9, 3)
        result = await orchestrator.start_run(PERIOD)
        assert result.processed_staff_ids == []

        async with session_factory() as session:
            with pytest.raises(InvalidTransitionError):
                await PayrollRunService(session).approve_run(result.run_id)

    async def test_run_not_found(self, session):
        with pytest.raises(PayrollRunNotFoundError):
            await PayrollRunService(session).get_run(uuid4())


class TestQueries:
    """Test run and payslip queries."""

    async def test_list_runs_and_payslips(
        self, orchestrator, session, salary_structure, departments, make_staff
    ):
        admin = departments["ADMIN"]
        staff = await make_staff(department=admin)
        await make_staff(department=departments["FIN"])
        dept_run = await orchestrator.start_run(PERIOD, admin.department_id)
        all_run = await orchestrator.start_run(PERIOD)
        await orchestrator.start_run("2025-02")

        service = PayrollRunService(session)
        assert len(await service.list_runs(period=PERIOD)) == 2
        dept_runs = await service.list_runs(department_id=admin.department_id)
        assert [r.payroll_run_id for r in dept_runs] == [dept_run.run_id]
        assert len(await service.list_runs(status="processed")) == 3

        payslips = await service.list_payslips(staff_id=staff.staff_id)
        assert [p.period for p in payslips] == ["2025-02", "2025-01"]
        assert len(payslips[0].lines) == 6
        assert len(await service.list_payslips(payroll_run_id=all_run.run_id)) == 1
