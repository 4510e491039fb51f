"""Program reference data: cycles, weeks, days, lookups and programs."""

import uuid
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Float, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from liftcoach.models.base import BaseModel

if TYPE_CHECKING:
    from liftcoach.models.prescription import Prescription


class DayOfWeek(str, Enum):
    """Calendar slot of a training day within a week."""

    MONDAY = "MONDAY"
    TUESDAY = "TUESDAY"
    WEDNESDAY = "WEDNESDAY"
    THURSDAY = "THURSDAY"
    FRIDAY = "FRIDAY"
    SATURDAY = "SATURDAY"
    SUNDAY = "SUNDAY"

    @property
    def ordinal(self) -> int:
        return list(DayOfWeek).index(self)


class Cycle(BaseModel):
    """A repeating block of weeks."""

    __tablename__ = "cycles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100))
    length_weeks: Mapped[int] = mapped_column(Integer)

    weeks: Mapped[list["Week"]] = relationship(
        "Week",
        back_populates="cycle",
        cascade="all, delete-orphan",
        order_by="Week.week_number",
    )

    def __repr__(self) -> str:
        return f"<Cycle(id={self.id}, weeks={self.length_weeks})>"


class Week(BaseModel):
    """One numbered week of a cycle."""

    __tablename__ = "weeks"
    __table_args__ = (UniqueConstraint("cycle_id", "week_number", name="uq_weeks_cycle_number"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    cycle_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("cycles.id", ondelete="CASCADE"),
        index=True,
    )
    week_number: Mapped[int] = mapped_column(Integer)

    cycle: Mapped["Cycle"] = relationship("Cycle", back_populates="weeks")
    week_days: Mapped[list["WeekDay"]] = relationship(
        "WeekDay",
        back_populates="week",
        cascade="all, delete-orphan",
    )


class Day(BaseModel):
    """A training day template (e.g. "Heavy Squat Day")."""

    __tablename__ = "days"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100))
    slug: Mapped[str] = mapped_column(String(100), index=True)

    day_prescriptions: Mapped[list["DayPrescription"]] = relationship(
        "DayPrescription",
        back_populates="day",
        cascade="all, delete-orphan",
        order_by="DayPrescription.order",
    )

    def __repr__(self) -> str:
        return f"<Day(id={self.id}, slug={self.slug})>"


class WeekDay(BaseModel):
    """Places a day template into a week."""

    __tablename__ = "week_days"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    week_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("weeks.id", ondelete="CASCADE"),
        index=True,
    )
    day_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("days.id", ondelete="CASCADE"),
        index=True,
    )
    day_of_week: Mapped[str] = mapped_column(String(10))
    order: Mapped[int] = mapped_column(Integer, default=0)

    week: Mapped["Week"] = relationship("Week", back_populates="week_days")
    day: Mapped["Day"] = relationship("Day")


class DayPrescription(BaseModel):
    """Ordered link between a day and a prescription."""

    __tablename__ = "day_prescriptions"
    __table_args__ = (
        UniqueConstraint("day_id", "prescription_id", name="uq_day_prescriptions"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    day_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("days.id", ondelete="CASCADE"),
        index=True,
    )
    prescription_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("prescriptions.id", ondelete="CASCADE"),
        index=True,
    )
    order: Mapped[int] = mapped_column(Integer, default=0)

    day: Mapped["Day"] = relationship("Day", back_populates="day_prescriptions")
    prescription: Mapped["Prescription"] = relationship("Prescription")


class WeeklyLookup(BaseModel):
    """Per-week percentage/rep table.

    entries: [{"week_number": 1, "percentages": [65, 75, 85],
               "reps": [5, 5, 5], "percentage_modifier": null}, ...]
    """

    __tablename__ = "weekly_lookups"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100))
    entries: Mapped[list] = mapped_column(JSONB, default=list)


class DailyLookup(BaseModel):
    """Per-day intensity table.

    entries: [{"day_identifier": "heavy", "percentage_modifier": 100,
               "intensity_level": "HEAVY"}, ...]
    """

    __tablename__ = "daily_lookups"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100))
    entries: Mapped[list] = mapped_column(JSONB, default=list)


class Program(BaseModel):
    """A training program built on one cycle."""

    __tablename__ = "programs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100))
    slug: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    cycle_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("cycles.id"), index=True)
    weekly_lookup_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("weekly_lookups.id", ondelete="SET NULL"),
        nullable=True,
    )
    daily_lookup_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("daily_lookups.id", ondelete="SET NULL"),
        nullable=True,
    )
    default_rounding: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    cycle: Mapped["Cycle"] = relationship("Cycle")
    weekly_lookup: Mapped[Optional["WeeklyLookup"]] = relationship("WeeklyLookup")
    daily_lookup: Mapped[Optional["DailyLookup"]] = relationship("DailyLookup")

    def __repr__(self) -> str:
        return f"<Program(id={self.id}, slug={self.slug})>"
