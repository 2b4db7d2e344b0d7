"""Seed script for the CONJUSS salary structure and departments.

Run with:
    python scripts/seed_salary_structure.py

Creates the grade level 1-17, step 1-15 salary scale and the standard
departments. Existing rows are left untouched, so the script can be rerun.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from jsc_payroll.database import create_all, get_session
from jsc_payroll.models import Department, SalaryStructure

# Step-1 basic salary per grade level; each further step adds STEP_INCREMENT
GRADE_BASE_SALARY: dict[int, Decimal] = {
    1: Decimal("42000"),
    2: Decimal("48000"),
    3: Decimal("55000"),
    4: Decimal("62000"),
    5: Decimal("70000"),
    6: Decimal("78000"),
    7: Decimal("87000"),
    8: Decimal("96000"),
    9: Decimal("106000"),
    10: Decimal("116000"),
    11: Decimal("127000"),
    12: Decimal("138000"),
    13: Decimal("150000"),
    14: Decimal("162000"),
    15: Decimal("175000"),
    16: Decimal("188000"),
    17: Decimal("202000"),
}
STEP_INCREMENT = Decimal("2000")
STEPS = range(1, 16)

DEPARTMENTS: list[tuple[str, str, str]] = [
    ("SC", "Supreme Court", "Supreme Court of Nigeria"),
    ("CA", "Court of Appeal", "Court of Appeal"),
    ("FHC", "Federal High Court", "Federal High Court"),
    ("SHC", "State High Court", "State High Court"),
    ("MC", "Magistrate Court", "Magistrate Court"),
    ("CC", "Customary Court", "Customary Court"),
    ("SHA", "Sharia Court", "Sharia Court"),
    ("NJC", "National Judicial Council", "National Judicial Council"),
    ("FJSC", "Federal Judicial Service Committee", "Federal Judicial Service Committee"),
    ("ADMIN", "Administration", "Administrative Department"),
    ("HR", "Human Resources", "Human Resources Department"),
    ("FIN", "Finance", "Finance Department"),
    ("ICT", "ICT", "Information and Communication Technology"),
    ("SEC", "Security", "Security Department"),
    ("REG", "Registry", "Court Registry"),
]


def salary_scale() -> dict[tuple[int, int], Decimal]:
    """Full (grade level, step) -> basic salary scale."""
    return {
        (grade, step): base + STEP_INCREMENT * (step - 1)
        for grade, base in GRADE_BASE_SALARY.items()
        for step in STEPS
    }


async def seed_salary_structure(session: AsyncSession) -> int:
    """Insert missing salary structure rows. Returns the number created."""
    result = await session.execute(select(SalaryStructure.grade_level, SalaryStructure.step))
    existing = {(row.grade_level, row.step) for row in result}

    created = 0
    for (grade, step), basic_salary in salary_scale().items():
        if (grade, step) in existing:
            continue
        session.add(SalaryStructure(grade_level=grade, step=step, basic_salary=basic_salary))
        created += 1

    await session.flush()
    print(f"Created {created} salary structure entries")
    return created


async def seed_departments(session: AsyncSession) -> int:
    """Insert missing departments. Returns the number created."""
    result = await session.execute(select(Department.code))
    existing = set(result.scalars())

    created = 0
    for code, name, description in DEPARTMENTS:
        if code in existing:
            continue
        session.add(Department(code=code, name=name, description=description))
        created += 1

    await session.flush()
    print(f"Created {created} departments")
    return created


async def main():
    """Run seed script."""
    print("Seeding salary structure...")

    await create_all()
    async with get_session() as session:
        await seed_salary_structure(session)
        await seed_departments(session)

    print("\nDone! Salary structure seeded successfully.")


if __name__ == "__main__":
    asyncio.run(main())
