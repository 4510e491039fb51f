"""Enrollment state, workout sessions and logged sets."""

import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from liftcoach.models.base import BaseModel

if TYPE_CHECKING:
    from liftcoach.models.program import Program
    from liftcoach.models.user import User


class EnrollmentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    BETWEEN_CYCLES = "BETWEEN_CYCLES"


class PhaseStatus(str, Enum):
    """Derived cycle/week status."""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


class SessionStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    ABANDONED = "ABANDONED"


class UserProgramState(BaseModel):
    """A user's position in the program they are enrolled in.

    One row per user. Re-enrolling replaces the row; unenrolling deletes it.
    """

    __tablename__ = "user_program_states"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        index=True,
    )
    program_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("programs.id", ondelete="CASCADE"),
        index=True,
    )
    current_week: Mapped[int] = mapped_column(Integer, default=1)
    current_cycle_iteration: Mapped[int] = mapped_column(Integer, default=1)
    current_day_index: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    enrollment_status: Mapped[str] = mapped_column(
        String(20),
        default=EnrollmentStatus.ACTIVE.value,
    )
    enrolled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    user: Mapped["User"] = relationship("User", back_populates="program_state")
    program: Mapped["Program"] = relationship("Program")
    sessions: Mapped[list["WorkoutSession"]] = relationship(
        "WorkoutSession",
        back_populates="program_state",
        cascade="all, delete-orphan",
    )

    @property
    def is_between_cycles(self) -> bool:
        return self.enrollment_status == EnrollmentStatus.BETWEEN_CYCLES.value

    @property
    def cycle_status(self) -> PhaseStatus:
        return PhaseStatus.COMPLETED if self.is_between_cycles else PhaseStatus.PENDING

    @property
    def week_status(self) -> PhaseStatus:
        return PhaseStatus.COMPLETED if self.is_between_cycles else PhaseStatus.PENDING

    def __repr__(self) -> str:
        return (
            f"<UserProgramState(user={self.user_id}, cycle={self.current_cycle_iteration}, "
            f"week={self.current_week}, status={self.enrollment_status})>"
        )


class WorkoutSession(BaseModel):
    """One training session performed against the enrollment."""

    __tablename__ = "workout_sessions"
    __table_args__ = (Index("ix_workout_sessions_state_status", "user_program_state_id", "status"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_program_state_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("user_program_states.id", ondelete="CASCADE"),
        index=True,
    )
    cycle_iteration: Mapped[int] = mapped_column(Integer)
    week_number: Mapped[int] = mapped_column(Integer)
    day_index: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=SessionStatus.IN_PROGRESS.value)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    program_state: Mapped["UserProgramState"] = relationship(
        "UserProgramState", back_populates="sessions"
    )
    logged_sets: Mapped[list["LoggedSet"]] = relationship(
        "LoggedSet",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="LoggedSet.set_number",
    )

    def __repr__(self) -> str:
        return f"<WorkoutSession(id={self.id}, week={self.week_number}, status={self.status})>"


class LoggedSet(BaseModel):
    """A performed set. Append-only; one row per set number of a prescription."""

    __tablename__ = "logged_sets"
    __table_args__ = (
        Index("ix_logged_sets_session_prescription", "session_id", "prescription_id"),
        UniqueConstraint(
            "session_id", "prescription_id", "set_number", name="uq_logged_sets_set_number"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("workout_sessions.id", ondelete="CASCADE"),
        index=True,
    )
    prescription_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("prescriptions.id", ondelete="CASCADE"),
    )
    lift_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("lifts.id", ondelete="CASCADE"))
    set_number: Mapped[int] = mapped_column(Integer)
    weight: Mapped[float] = mapped_column(Float)
    target_reps: Mapped[int] = mapped_column(Integer)
    reps_performed: Mapped[int] = mapped_column(Integer)
    is_amrap: Mapped[bool] = mapped_column(Boolean, default=False)
    rpe: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    session: Mapped["WorkoutSession"] = relationship("WorkoutSession", back_populates="logged_sets")

    def __repr__(self) -> str:
        return f"<LoggedSet(set={self.set_number}, weight={self.weight}, reps={self.reps_performed})>"
