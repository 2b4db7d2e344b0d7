"""Tests for salary table lookup."""

from decimal import Decimal

import pytest

from jsc_payroll.calculators.salary_table import ConfigurationError, SalaryTable

pytestmark = pytest.mark.asyncio


class TestSalaryTable:
    """Test grade level and step lookup."""

    async def test_lookup(self, salary_table):
        assert salary_table.lookup_basic_salary(7, 1) == Decimal("100000.00")
        assert salary_table.lookup_basic_salary(8, 2) == Decimal("98000.00")

    async def test_missing_pair_raises(self, salary_table):
        """A missing entry is an error, never a zero salary."""
        with pytest.raises(ConfigurationError) as exc_info:
            salary_table.lookup_basic_salary(9, 3)

        assert exc_info.value.grade_level == 9
        assert exc_info.value.step == 3

    async def test_missing_pairs(self, salary_table):
        missing = salary_table.missing_pairs()

        assert len(missing) == 17 * 15 - len(salary_table)
        assert (9, 3) in missing
        assert (7, 1) not in missing

    async def test_table_is_read_only(self, salary_table):
        with pytest.raises(TypeError):
            salary_table._entries[(9, 3)] = Decimal("1")

    async def test_load(self, session, salary_structure):
        table = await SalaryTable.load(session)

        assert len(table) == len(salary_structure)
        assert (8, 1) in table
        assert table.lookup_basic_salary(1, 1) == Decimal("42000.00")

    async def test_load_empty(self, session):
        table = await SalaryTable.load(session)

        assert len(table) == 0
        with pytest.raises(ConfigurationError):
            table.lookup_basic_salary(7, 1)
