"""Workout sessions: logging performed sets and driving variable schemes."""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from liftcoach.core.errors import (
    ConflictError,
    InvalidStateError,
    SessionNotFoundError,
    ValidationError,
)
from liftcoach.models.enrollment import LoggedSet, SessionStatus, WorkoutSession
from liftcoach.services.enrollment_service import EnrollmentService
from liftcoach.services.prescription_service import PrescriptionService, scheme_of, strategy_of
from liftcoach.services.progression import AggregateTriggerResult
from liftcoach.services.progression_service import ProgressionService
from liftcoach.services.set_scheme import (
    Amrap,
    FatigueDrop,
    Fixed,
    NextSetResult,
    Ramp,
    RepRange,
    SetHistoryEntry,
    SetScheme,
    next_set,
)

logger = logging.getLogger(__name__)


class SetLog(BaseModel):
    """One performed set as submitted by the client.

    ``is_amrap`` left unset follows the prescription's scheme.
    """

    prescription_id: uuid.UUID
    set_number: int = Field(..., ge=1)
    weight: float = Field(..., ge=0)
    reps_performed: int = Field(..., ge=0)
    target_reps: Optional[int] = Field(None, ge=0)
    is_amrap: Optional[bool] = None
    rpe: Optional[float] = Field(None, ge=1, le=10)


def session_to_dict(session: WorkoutSession, logged_sets: Optional[list[LoggedSet]] = None) -> dict:
    data = {
        "id": str(session.id),
        "user_program_state_id": str(session.user_program_state_id),
        "cycle_iteration": session.cycle_iteration,
        "week_number": session.week_number,
        "day_index": session.day_index,
        "status": session.status,
        "started_at": session.started_at.isoformat() if session.started_at else None,
        "finished_at": session.finished_at.isoformat() if session.finished_at else None,
    }
    if logged_sets is not None:
        data["logged_sets"] = [logged_set_to_dict(s) for s in logged_sets]
    return data


def logged_set_to_dict(logged: LoggedSet) -> dict:
    return {
        "id": str(logged.id),
        "prescription_id": str(logged.prescription_id),
        "lift_id": str(logged.lift_id),
        "set_number": logged.set_number,
        "weight": logged.weight,
        "target_reps": logged.target_reps,
        "reps_performed": logged.reps_performed,
        "is_amrap": logged.is_amrap,
        "rpe": logged.rpe,
    }


def _target_reps(scheme: SetScheme, set_number: int, reps_performed: int) -> int:
    """Reps the scheme asks for on ``set_number``; variable schemes take what was done."""
    if isinstance(scheme, Fixed):
        return scheme.reps
    if isinstance(scheme, (Amrap, RepRange)):
        return scheme.min_reps
    if isinstance(scheme, FatigueDrop):
        return scheme.target_reps
    if isinstance(scheme, Ramp) and set_number <= len(scheme.steps):
        return scheme.steps[set_number - 1].reps
    return reps_performed


@dataclass
class LoggedSets:
    """Rows written by one log call and the per-set progressions they fired."""

    sets: list[LoggedSet] = field(default_factory=list)
    progressions: AggregateTriggerResult = field(default_factory=AggregateTriggerResult)

    def to_dict(self) -> dict:
        return {
            "logged_sets": [logged_set_to_dict(s) for s in self.sets],
            "progressions": self.progressions.to_dict(),
        }


@dataclass
class FinishedSession:
    session: WorkoutSession
    progressions: AggregateTriggerResult = field(default_factory=AggregateTriggerResult)

    def to_dict(self) -> dict:
        return {
            "session": session_to_dict(self.session),
            "progressions": self.progressions.to_dict(),
        }


class SessionService:
    """Session lifecycle against the user's current enrollment."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.enrollment = EnrollmentService(db)
        self.prescriptions = PrescriptionService(db)
        self.progressions = ProgressionService(db)

    async def get_session(self, session_id: uuid.UUID) -> WorkoutSession:
        result = await self.db.execute(
            select(WorkoutSession)
            .options(selectinload(WorkoutSession.program_state))
            .where(WorkoutSession.id == session_id)
        )
        session = result.scalar_one_or_none()
        if session is None:
            raise SessionNotFoundError(f"session {session_id} not found")
        return session

    async def owner_of(self, session_id: uuid.UUID) -> uuid.UUID:
        session = await self.get_session(session_id)
        return session.program_state.user_id

    async def logged_sets(
        self, session_id: uuid.UUID, prescription_id: Optional[uuid.UUID] = None
    ) -> list[LoggedSet]:
        query = select(LoggedSet).where(LoggedSet.session_id == session_id)
        if prescription_id:
            query = query.where(LoggedSet.prescription_id == prescription_id)
        result = await self.db.execute(query.order_by(LoggedSet.set_number, LoggedSet.created_at))
        return list(result.scalars().all())

    async def start_session(self, user_id: uuid.UUID) -> WorkoutSession:
        """Open a session at the user's current week/day.

        Raises:
            UserNotEnrolledError: No enrollment.
            InvalidStateError: Enrollment is between cycles.
            ConflictError: Another session is still in progress.
        """
        state = await self.enrollment.get(user_id)
        if state.is_between_cycles:
            raise InvalidStateError("cannot start a session between cycles")

        result = await self.db.execute(
            select(WorkoutSession.id).where(
                WorkoutSession.user_program_state_id == state.id,
                WorkoutSession.status == SessionStatus.IN_PROGRESS.value,
            )
        )
        if result.first() is not None:
            raise ConflictError("a workout session is already in progress")

        session = WorkoutSession(
            user_program_state_id=state.id,
            cycle_iteration=state.current_cycle_iteration,
            week_number=state.current_week,
            day_index=state.current_day_index,
            status=SessionStatus.IN_PROGRESS.value,
            started_at=datetime.now(timezone.utc),
        )
        self.db.add(session)
        await self.db.flush()
        logger.info(
            "User %s started session %s (week %d)", user_id, session.id, session.week_number
        )
        return session

    async def log_sets(self, session_id: uuid.UUID, sets: list[SetLog]) -> LoggedSets:
        """Record performed sets and run the per-set progressions they trigger.

        A missing target defaults to what the prescription's scheme asks of
        that set.

        Raises:
            InvalidStateError: Session is not IN_PROGRESS.
            PrescriptionNotFoundError: Unknown prescription.
            ConflictError: A set number is already logged for its prescription.
        """
        session = await self._in_progress(session_id)
        if not sets:
            raise ValidationError("at least one set is required", field="sets")

        taken = {(s.prescription_id, s.set_number) for s in await self.logged_sets(session.id)}
        planned = []
        for entry in sets:
            key = (entry.prescription_id, entry.set_number)
            if key in taken:
                raise ConflictError(
                    f"set {entry.set_number} of prescription {entry.prescription_id} "
                    "is already logged in this session"
                )
            taken.add(key)
            prescription = await self.prescriptions.get_prescription(entry.prescription_id)
            planned.append((entry, prescription, scheme_of(prescription)))

        logged = LoggedSets()
        for entry, prescription, scheme in planned:
            row = LoggedSet(
                session_id=session.id,
                prescription_id=prescription.id,
                lift_id=prescription.lift_id,
                set_number=entry.set_number,
                weight=entry.weight,
                target_reps=entry.target_reps
                if entry.target_reps is not None
                else _target_reps(scheme, entry.set_number, entry.reps_performed),
                reps_performed=entry.reps_performed,
                is_amrap=entry.is_amrap if entry.is_amrap is not None else isinstance(scheme, Amrap),
                rpe=entry.rpe,
            )
            self.db.add(row)
            await self.db.flush()
            logged.sets.append(row)
            logged.progressions.extend(
                await self.progressions.handle_set_logged(
                    session.program_state,
                    row,
                    day_index=session.day_index,
                    max_reps=scheme.max_reps if isinstance(scheme, RepRange) else None,
                )
            )

        logger.debug(
            "Logged %d sets in session %s (%d progressions applied)",
            len(logged.sets),
            session.id,
            logged.progressions.total_applied,
        )
        return logged

    async def get_next_set(
        self, session_id: uuid.UUID, prescription_id: uuid.UUID
    ) -> NextSetResult:
        """Propose the next set of a variable-scheme prescription.

        Raises:
            SessionNotFoundError: Unknown session.
            PrescriptionNotFoundError: Unknown prescription.
            UnsupportedSchemeError: Prescription does not use a variable scheme.
            NoSetsLoggedError: Nothing logged yet for the prescription.
        """
        session = await self.get_session(session_id)
        prescription = await self.prescriptions.get_prescription(prescription_id)
        scheme = scheme_of(prescription)

        increment = None
        if isinstance(scheme, FatigueDrop):
            increment = strategy_of(prescription).rounding_increment

        history = [
            SetHistoryEntry(
                set_number=s.set_number,
                weight=s.weight,
                reps_performed=s.reps_performed,
                rpe=s.rpe,
            )
            for s in await self.logged_sets(session.id, prescription.id)
        ]
        return next_set(scheme, history, increment)

    async def finish_session(self, session_id: uuid.UUID) -> FinishedSession:
        """Complete a session and fire AFTER_SESSION progressions for trained lifts."""
        session = await self._in_progress(session_id)
        session.status = SessionStatus.COMPLETED.value
        session.finished_at = datetime.now(timezone.utc)
        await self.db.flush()

        lifts_performed = {s.lift_id for s in await self.logged_sets(session.id)}
        finished = FinishedSession(session)
        if lifts_performed:
            finished.progressions = await self.progressions.handle_session_completed(
                session.program_state,
                session.id,
                session.day_index,
                lifts_performed,
            )
        logger.info(
            "Session %s completed (%d lifts, %d progressions applied)",
            session.id,
            len(lifts_performed),
            finished.progressions.total_applied,
        )
        return finished

    async def abandon_session(self, session_id: uuid.UUID) -> WorkoutSession:
        session = await self._in_progress(session_id)
        session.status = SessionStatus.ABANDONED.value
        session.finished_at = datetime.now(timezone.utc)
        await self.db.flush()
        logger.info("Session %s abandoned", session.id)
        return session

    async def _in_progress(self, session_id: uuid.UUID) -> WorkoutSession:
        session = await self.get_session(session_id)
        if session.status != SessionStatus.IN_PROGRESS.value:
            raise InvalidStateError(f"session is {session.status}, not IN_PROGRESS")
        return session
