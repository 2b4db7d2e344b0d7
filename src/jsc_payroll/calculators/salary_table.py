"""Salary table lookup by grade level and step."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from decimal import Decimal
from types import MappingProxyType

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from jsc_payroll.models import SalaryStructure

logger = logging.getLogger(__name__)

MIN_GRADE_LEVEL, MAX_GRADE_LEVEL = 1, 17
MIN_STEP, MAX_STEP = 1, 15


class ConfigurationError(Exception):
    """Raised when no salary table entry exists for a grade level and step."""

    def __init__(self, grade_level: int, step: int):
        self.grade_level = grade_level
        self.step = step
        super().__init__(
            f"No salary table entry for grade level {grade_level}, step {step}"
        )


class SalaryTable:
    """Immutable (grade level, step) -> basic salary lookup.

    Loaded once when a run starts so every payslip in the run resolves
    against the same table. A missing pair is an error, never a default.
    """

    def __init__(self, entries: Mapping[tuple[int, int], Decimal]):
        self._entries = MappingProxyType(dict(entries))

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def lookup_basic_salary(self, grade_level: int, step: int) -> Decimal:
        """Basic salary for a grade level and step.

        Raises:
            ConfigurationError: If the pair has no entry
        """
        try:
            return self._entries[(grade_level, step)]
        except KeyError:
            raise ConfigurationError(grade_level, step) from None

    def missing_pairs(self) -> list[tuple[int, int]]:
        """Valid (grade level, step) pairs that have no entry."""
        return [
            (grade, step)
            for grade in range(MIN_GRADE_LEVEL, MAX_GRADE_LEVEL + 1)
            for step in range(MIN_STEP, MAX_STEP + 1)
            if (grade, step) not in self._entries
        ]

    @classmethod
    async def load(cls, session: AsyncSession) -> SalaryTable:
        """Load the persisted salary structure."""
        result = await session.execute(select(SalaryStructure))
        entries = {
            (row.grade_level, row.step): Decimal(row.basic_salary)
            for row in result.scalars()
        }
        table = cls(entries)
        missing = table.missing_pairs()
        if missing:
            logger.warning(
                "Salary table is incomplete: %d of %d grade/step pairs missing",
                len(missing),
                (MAX_GRADE_LEVEL - MIN_GRADE_LEVEL + 1) * (MAX_STEP - MIN_STEP + 1),
            )
        return table
