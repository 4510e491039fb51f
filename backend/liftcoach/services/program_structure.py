"""Program structure queries: weeks, their training days, day prescriptions."""

import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from liftcoach.core.errors import WeekNotFoundError
from liftcoach.models.prescription import Prescription
from liftcoach.models.program import DayOfWeek, DayPrescription, Week, WeekDay


async def get_week(db: AsyncSession, cycle_id: uuid.UUID, week_number: int) -> Week:
    result = await db.execute(
        select(Week).where(Week.cycle_id == cycle_id, Week.week_number == week_number)
    )
    week = result.scalar_one_or_none()
    if week is None:
        raise WeekNotFoundError(f"week {week_number} not found in cycle {cycle_id}")
    return week


async def list_training_days(db: AsyncSession, week: Week) -> list[WeekDay]:
    """Days of a week in calendar order (MONDAY..SUNDAY, then explicit order)."""
    result = await db.execute(
        select(WeekDay).options(selectinload(WeekDay.day)).where(WeekDay.week_id == week.id)
    )
    week_days = list(result.scalars().all())
    week_days.sort(key=lambda wd: (DayOfWeek(wd.day_of_week).ordinal, wd.order))
    return week_days


async def day_slug_at(
    db: AsyncSession, cycle_id: uuid.UUID, week_number: int, day_index: Optional[int]
) -> Optional[str]:
    """Slug of the day at ``day_index`` (0 when unset), or None if out of range."""
    week = await get_week(db, cycle_id, week_number)
    week_days = await list_training_days(db, week)
    index = day_index or 0
    if index >= len(week_days):
        return None
    return week_days[index].day.slug


async def list_day_prescriptions(db: AsyncSession, day_id: uuid.UUID) -> list[Prescription]:
    result = await db.execute(
        select(DayPrescription)
        .options(selectinload(DayPrescription.prescription))
        .where(DayPrescription.day_id == day_id)
        .order_by(DayPrescription.order)
    )
    links = result.scalars().all()
    return [link.prescription for link in links]
