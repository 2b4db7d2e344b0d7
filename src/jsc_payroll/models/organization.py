"""Department and staff models."""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from jsc_payroll.models.base import Base, TimestampMixin


class Department(Base, TimestampMixin):
    """Organizational department."""

    __tablename__ = "department"

    department_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    code: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Relationships
    staff: Mapped[list[Staff]] = relationship(back_populates="department")


class Staff(Base, TimestampMixin):
    """Staff member on the salary scale."""

    __tablename__ = "staff"

    staff_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    staff_number: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    last_name: Mapped[str] = mapped_column(String, nullable=False)
    department_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("department.department_id"),
        nullable=True,
    )
    position: Mapped[str] = mapped_column(String, nullable=False, default="")
    grade_level: Mapped[int] = mapped_column(Integer, nullable=False)
    step: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")

    __table_args__ = (
        CheckConstraint("grade_level >= 1 AND grade_level <= 17", name="staff_grade_level_check"),
        CheckConstraint("step >= 1 AND step <= 15", name="staff_step_check"),
        CheckConstraint(
            "status IN ('active', 'on_leave', 'retired', 'terminated')",
            name="staff_status_check",
        ),
    )

    # Relationships
    department: Mapped[Department | None] = relationship(back_populates="staff")
