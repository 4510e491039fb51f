"""Workout generation for a user's current (or previewed) program day."""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from liftcoach.core.errors import (
    DayNotFoundError,
    NoPrescriptionsError,
    UserNotEnrolledError,
    ValidationError,
)
from liftcoach.models.enrollment import UserProgramState
from liftcoach.models.prescription import Prescription
from liftcoach.models.program import Cycle, Program
from liftcoach.services.load_strategy import MaxLookup
from liftcoach.services.max_store import MaxCache, MaxStore
from liftcoach.services.prescription_service import (
    PrescriptionService,
    ResolvedPrescription,
    resolve_prescription,
    strategy_of,
)
from liftcoach.services.program_structure import (
    get_week,
    list_day_prescriptions,
    list_training_days,
)

logger = logging.getLogger(__name__)


@dataclass
class ProgramContext:
    program_id: uuid.UUID
    name: str
    cycle_id: uuid.UUID
    cycle_length_weeks: int
    weekly_lookup_id: Optional[uuid.UUID] = None
    daily_lookup_id: Optional[uuid.UUID] = None
    default_rounding: Optional[float] = None


@dataclass
class UserState:
    current_week: int
    current_cycle_iteration: int
    current_day_index: Optional[int] = None


@dataclass
class DayContext:
    day_id: uuid.UUID
    slug: str
    name: str


@dataclass
class Workout:
    """A fully resolved training day."""

    user_id: uuid.UUID
    program_id: uuid.UUID
    cycle_iteration: int
    week_number: int
    day_slug: str
    day_name: str
    date: date
    exercises: list[ResolvedPrescription] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "user_id": str(self.user_id),
            "program_id": str(self.program_id),
            "cycle_iteration": self.cycle_iteration,
            "week_number": self.week_number,
            "day_slug": self.day_slug,
            "day_name": self.day_name,
            "date": self.date.isoformat(),
            "exercises": [e.to_dict() for e in self.exercises],
        }


async def load_program_context(db: AsyncSession, program_id: uuid.UUID) -> ProgramContext:
    program = await db.get(Program, program_id)
    if program is None:
        raise UserNotEnrolledError(f"program {program_id} no longer exists")
    cycle = await db.get(Cycle, program.cycle_id)
    return ProgramContext(
        program_id=program.id,
        name=program.name,
        cycle_id=program.cycle_id,
        cycle_length_weeks=cycle.length_weeks if cycle else 0,
        weekly_lookup_id=program.weekly_lookup_id,
        daily_lookup_id=program.daily_lookup_id,
        default_rounding=program.default_rounding,
    )


# -------------------------------------------------------------------------
# Generation
# -------------------------------------------------------------------------


async def generate_workout(
    service: PrescriptionService,
    user_id: uuid.UUID,
    program_ctx: ProgramContext,
    user_state: UserState,
    day_ctx: DayContext,
    prescriptions: list[Prescription],
    workout_date: date,
    max_lookup: MaxLookup,
) -> Workout:
    """Resolve every prescription of a day, in declared order.

    Any prescription that cannot resolve fails the whole workout.
    """
    if not prescriptions:
        raise NoPrescriptionsError(f"day {day_ctx.slug} has no prescriptions")

    program = await service.db.get(Program, program_ctx.program_id)
    exercises = []
    for prescription in prescriptions:
        lookups = await service.lookup_context(
            strategy_of(prescription), program, user_state.current_week, day_ctx.slug
        )
        exercises.append(
            await resolve_prescription(
                prescription,
                user_id,
                max_lookup,
                as_of=workout_date,
                lookups=lookups,
                program_rounding=program_ctx.default_rounding,
            )
        )

    return Workout(
        user_id=user_id,
        program_id=program_ctx.program_id,
        cycle_iteration=user_state.current_cycle_iteration,
        week_number=user_state.current_week,
        day_slug=day_ctx.slug,
        day_name=day_ctx.name,
        date=workout_date,
        exercises=exercises,
    )


class WorkoutService:
    """Builds workouts from enrollment state."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.prescriptions = PrescriptionService(db)

    async def _state(self, user_id: uuid.UUID) -> UserProgramState:
        result = await self.db.execute(
            select(UserProgramState).where(UserProgramState.user_id == user_id)
        )
        state = result.scalar_one_or_none()
        if state is None:
            raise UserNotEnrolledError(f"user {user_id} is not enrolled in a program")
        return state

    async def _pick_day(
        self,
        program_ctx: ProgramContext,
        week_number: int,
        day_slug: Optional[str],
        day_index: Optional[int],
    ) -> DayContext:
        week = await get_week(self.db, program_ctx.cycle_id, week_number)
        week_days = await list_training_days(self.db, week)

        if day_slug:
            for wd in week_days:
                if wd.day.slug.lower() == day_slug.lower():
                    return DayContext(day_id=wd.day.id, slug=wd.day.slug, name=wd.day.name)
            raise DayNotFoundError(f"day '{day_slug}' not found in week {week_number}")

        index = day_index or 0
        if index >= len(week_days):
            raise DayNotFoundError(f"day index {index} not found in week {week_number}")
        day = week_days[index].day
        return DayContext(day_id=day.id, slug=day.slug, name=day.name)

    async def _build(
        self,
        user_id: uuid.UUID,
        state: UserProgramState,
        week_number: int,
        day_slug: Optional[str],
        workout_date: Optional[date],
    ) -> Workout:
        program_ctx = await load_program_context(self.db, state.program_id)
        user_state = UserState(
            current_week=week_number,
            current_cycle_iteration=state.current_cycle_iteration,
            current_day_index=state.current_day_index,
        )
        day_ctx = await self._pick_day(program_ctx, week_number, day_slug, state.current_day_index)
        prescriptions = await list_day_prescriptions(self.db, day_ctx.day_id)

        workout = await generate_workout(
            self.prescriptions,
            user_id,
            program_ctx,
            user_state,
            day_ctx,
            prescriptions,
            workout_date or datetime.now(timezone.utc).date(),
            MaxCache(MaxStore(self.db)),
        )
        logger.info(
            "Generated workout for user %s: week %d day %s (%d exercises)",
            user_id,
            week_number,
            day_ctx.slug,
            len(workout.exercises),
        )
        return workout

    async def current_workout(
        self,
        user_id: uuid.UUID,
        workout_date: Optional[date] = None,
        day_slug: Optional[str] = None,
    ) -> Workout:
        """Workout for the user's current week/day (or an explicit day slug)."""
        state = await self._state(user_id)
        return await self._build(user_id, state, state.current_week, day_slug, workout_date)

    async def preview_workout(
        self,
        user_id: uuid.UUID,
        week_number: int,
        day_slug: str,
        workout_date: Optional[date] = None,
    ) -> Workout:
        """Workout for an explicit week/day. Never touches enrollment state."""
        if week_number < 1:
            raise ValidationError("week must be at least 1", field="week")
        if not day_slug or not day_slug.strip():
            raise ValidationError("day slug is required", field="day")
        state = await self._state(user_id)
        return await self._build(user_id, state, week_number, day_slug.strip(), workout_date)
