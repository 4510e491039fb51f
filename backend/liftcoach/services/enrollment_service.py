"""Enrollment state machine.

ACTIVE --advance_week (past last week)--> BETWEEN_CYCLES --next_cycle--> ACTIVE

Position changes are single compare-and-set UPDATEs: the row only moves if
it still holds the week/cycle/status the caller read, otherwise the
operation raises ConflictError and the request can be retried.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from liftcoach.core.errors import (
    ConflictError,
    InvalidStateError,
    ProgramNotFoundError,
    UserNotEnrolledError,
)
from liftcoach.models.enrollment import EnrollmentStatus, UserProgramState
from liftcoach.models.program import Cycle, Program
from liftcoach.services.progression import AggregateTriggerResult
from liftcoach.services.progression_service import ProgressionService
from liftcoach.services.program_structure import get_week, list_training_days

logger = logging.getLogger(__name__)


def state_to_dict(state: UserProgramState) -> dict:
    return {
        "id": str(state.id),
        "user_id": str(state.user_id),
        "program_id": str(state.program_id),
        "current_week": state.current_week,
        "current_cycle_iteration": state.current_cycle_iteration,
        "current_day_index": state.current_day_index,
        "enrollment_status": state.enrollment_status,
        "cycle_status": state.cycle_status.value,
        "week_status": state.week_status.value,
        "enrolled_at": state.enrolled_at.isoformat() if state.enrolled_at else None,
    }


@dataclass
class Transition:
    """New enrollment state plus whatever progressions the move fired."""

    state: UserProgramState
    progressions: AggregateTriggerResult = field(default_factory=AggregateTriggerResult)

    def to_dict(self) -> dict:
        return {
            "state": state_to_dict(self.state),
            "progressions": self.progressions.to_dict(),
        }


class EnrollmentService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.progressions = ProgressionService(db)

    async def get(self, user_id: uuid.UUID) -> UserProgramState:
        result = await self.db.execute(
            select(UserProgramState).where(UserProgramState.user_id == user_id)
        )
        state = result.scalar_one_or_none()
        if state is None:
            raise UserNotEnrolledError(f"user {user_id} is not enrolled in a program")
        return state

    async def enroll(self, user_id: uuid.UUID, program_id: uuid.UUID) -> UserProgramState:
        """Enroll a user, replacing any existing enrollment (and its sessions)."""
        if await self.db.get(Program, program_id) is None:
            raise ProgramNotFoundError(f"program {program_id} not found")

        result = await self.db.execute(
            select(UserProgramState).where(UserProgramState.user_id == user_id)
        )
        existing = result.scalar_one_or_none()
        if existing is not None:
            await self.db.delete(existing)
            await self.db.flush()

        state = UserProgramState(
            user_id=user_id,
            program_id=program_id,
            current_week=1,
            current_cycle_iteration=1,
            current_day_index=None,
            enrollment_status=EnrollmentStatus.ACTIVE.value,
            enrolled_at=datetime.now(timezone.utc),
        )
        self.db.add(state)
        await self.db.flush()
        logger.info("User %s enrolled in program %s", user_id, program_id)
        return state

    async def unenroll(self, user_id: uuid.UUID) -> None:
        state = await self.get(user_id)
        await self.db.delete(state)
        await self.db.flush()
        logger.info("User %s unenrolled from program %s", user_id, state.program_id)

    # ---------------------------------------------------------------------
    # Transitions
    # ---------------------------------------------------------------------

    async def advance_week(self, user_id: uuid.UUID) -> Transition:
        """Move to the next week, or to BETWEEN_CYCLES after the last week.

        Raises:
            UserNotEnrolledError: No enrollment.
            InvalidStateError: Already between cycles.
            ConflictError: The enrollment moved concurrently.
        """
        state = await self.get(user_id)
        if state.is_between_cycles:
            raise InvalidStateError("cannot advance week while between cycles; start the next cycle")
        return await self._advance_week_from(state)

    async def advance_day(self, user_id: uuid.UUID) -> Transition:
        """Move to the next training day, rolling into the next week after the last."""
        state = await self.get(user_id)
        if state.is_between_cycles:
            raise InvalidStateError("cannot advance day while between cycles; start the next cycle")

        program = await self._program(state.program_id)
        week = await get_week(self.db, program.cycle_id, state.current_week)
        days_in_week = len(await list_training_days(self.db, week))

        next_index = (state.current_day_index or 0) + 1
        if next_index < days_in_week:
            await self._compare_and_set(state, current_day_index=next_index)
            return Transition(state)
        return await self._advance_week_from(state, track_day=True)

    async def next_cycle(self, user_id: uuid.UUID) -> Transition:
        """Start the next cycle iteration at week 1.

        Raises:
            InvalidStateError: Called while the cycle is still ACTIVE.
        """
        state = await self.get(user_id)
        if not state.is_between_cycles:
            raise InvalidStateError("current cycle is not complete; advance through all weeks first")

        await self._compare_and_set(
            state,
            current_cycle_iteration=state.current_cycle_iteration + 1,
            current_week=1,
            current_day_index=None,
            enrollment_status=EnrollmentStatus.ACTIVE.value,
        )
        logger.info(
            "User %s started cycle %d", user_id, state.current_cycle_iteration
        )
        return Transition(state)

    async def _advance_week_from(
        self, state: UserProgramState, track_day: bool = False
    ) -> Transition:
        program = await self._program(state.program_id)
        cycle = await self.db.get(Cycle, program.cycle_id)
        completed_week = state.current_week
        cycle_iteration = state.current_cycle_iteration
        reset_day = 0 if track_day or state.current_day_index is not None else None

        if completed_week + 1 > cycle.length_weeks:
            await self._compare_and_set(
                state,
                current_day_index=reset_day,
                enrollment_status=EnrollmentStatus.BETWEEN_CYCLES.value,
            )
        else:
            await self._compare_and_set(
                state, current_week=completed_week + 1, current_day_index=reset_day
            )

        transition = Transition(state)
        transition.progressions.extend(
            await self.progressions.handle_week_advanced(
                state.user_id, state.program_id, cycle_iteration, completed_week
            )
        )
        if state.is_between_cycles:
            transition.progressions.extend(
                await self.progressions.handle_cycle_completed(
                    state.user_id, state.program_id, cycle_iteration, completed_week
                )
            )
            logger.info("User %s completed cycle %d", state.user_id, cycle_iteration)
        else:
            logger.info("User %s advanced to week %d", state.user_id, state.current_week)
        return transition

    async def _compare_and_set(self, state: UserProgramState, **values) -> None:
        """Apply ``values`` only if the row still holds what ``state`` holds."""
        result = await self.db.execute(
            update(UserProgramState)
            .where(
                UserProgramState.id == state.id,
                UserProgramState.current_week == state.current_week,
                UserProgramState.current_cycle_iteration == state.current_cycle_iteration,
                UserProgramState.enrollment_status == state.enrollment_status,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ConflictError("enrollment was modified concurrently; reload and retry")
        await self.db.refresh(state)

    async def _program(self, program_id: uuid.UUID) -> Program:
        program = await self.db.get(Program, program_id)
        if program is None:
            raise ProgramNotFoundError(f"program {program_id} not found")
        return program

