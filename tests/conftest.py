"""Pytest fixtures for payroll engine tests."""

from __future__ import annotations

import itertools
from collections.abc import Awaitable, Callable
from decimal import Decimal
from typing import AsyncGenerator
from uuid import UUID

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from jsc_payroll.calculators.salary_table import SalaryTable
from jsc_payroll.config import StatutoryRates
from jsc_payroll.database import create_all, create_session_factory, get_engine
from jsc_payroll.models import Department, SalaryStructure, Staff
from jsc_payroll.services.payroll_run_service import PayrollRunOrchestrator

# Salary table used across tests; (9, 3) is deliberately absent
TEST_SALARY_ENTRIES: dict[tuple[int, int], Decimal] = {
    (1, 1): Decimal("42000.00"),
    (7, 1): Decimal("100000.00"),
    (8, 1): Decimal("96000.00"),
    (8, 2): Decimal("98000.00"),
}


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Create a file-backed SQLite engine per test, with all tables."""
    engine = get_engine(f"sqlite+aiosqlite:///{tmp_path / 'payroll.db'}")
    await create_all(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def rates() -> StatutoryRates:
    return StatutoryRates()


@pytest.fixture
def salary_table() -> SalaryTable:
    return SalaryTable(TEST_SALARY_ENTRIES)


@pytest_asyncio.fixture
async def salary_structure(
    session_factory: async_sessionmaker[AsyncSession],
) -> dict[tuple[int, int], Decimal]:
    """Persist TEST_SALARY_ENTRIES."""
    async with session_factory() as session:
        async with session.begin():
            session.add_all(
                SalaryStructure(grade_level=grade, step=step, basic_salary=basic)
                for (grade, step), basic in TEST_SALARY_ENTRIES.items()
            )
    return TEST_SALARY_ENTRIES


@pytest_asyncio.fixture
async def departments(
    session_factory: async_sessionmaker[AsyncSession],
) -> dict[str, Department]:
    """Create two test departments keyed by code."""
    admin = Department(code="ADMIN", name="Administration")
    finance = Department(code="FIN", name="Finance")
    async with session_factory() as session:
        async with session.begin():
            session.add_all([admin, finance])
    return {"ADMIN": admin, "FIN": finance}


@pytest.fixture
def make_staff(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[Staff]]:
    """Factory for committed staff records."""
    counter = itertools.count(1)

    async def _make(
        grade_level: int = 7,
        step: int = 1,
        department: Department | None = None,
        status: str = "active",
    ) -> Staff:
        number = next(counter)
        staff = Staff(
            staff_number=f"JSC/2025/{number:05d}",
            first_name="Staff",
            last_name=f"Member{number}",
            department_id=department.department_id if department else None,
            position="Clerk",
            grade_level=grade_level,
            step=step,
            status=status,
        )
        async with session_factory() as session:
            async with session.begin():
                session.add(staff)
        return staff

    return _make


@pytest.fixture
def orchestrator(
    session_factory: async_sessionmaker[AsyncSession], rates: StatutoryRates
) -> PayrollRunOrchestrator:
    """Orchestrator processing one staff member at a time (SQLite has one writer)."""
    return PayrollRunOrchestrator(session_factory, rates=rates, concurrency=1)


@pytest.fixture
def actor_id() -> UUID:
    return UUID("0f6a1c2e-7d4b-4e1a-9c55-3b2d8e9f1a77")
