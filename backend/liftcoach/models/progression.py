"""Progression rule, program link and history models."""

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
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from liftcoach.models.base import BaseModel

if TYPE_CHECKING:
    from liftcoach.models.lift import Lift


class ProgressionType(str, Enum):
    LINEAR_PROGRESSION = "LINEAR_PROGRESSION"
    CYCLE_PROGRESSION = "CYCLE_PROGRESSION"
    AMRAP_PROGRESSION = "AMRAP_PROGRESSION"
    DOUBLE_PROGRESSION = "DOUBLE_PROGRESSION"
    DELOAD_ON_FAILURE = "DELOAD_ON_FAILURE"


class TriggerType(str, Enum):
    """Event that makes a progression fire."""

    AFTER_SESSION = "AFTER_SESSION"
    AFTER_WEEK = "AFTER_WEEK"
    AFTER_CYCLE = "AFTER_CYCLE"
    AFTER_SET = "AFTER_SET"
    ON_FAILURE = "ON_FAILURE"


class Progression(BaseModel):
    """A rule that adjusts a stored max when its trigger fires.

    parameters: {"increment": 5.0, "max_type": "TRAINING_MAX",
                 "trigger_type": "AFTER_WEEK"}  (trigger_type only for linear)

    The remaining fields depend on progression_type; see
    liftcoach.services.progression for each variant.
    """

    __tablename__ = "progressions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100))
    progression_type: Mapped[str] = mapped_column(String(30), index=True)
    parameters: Mapped[dict] = mapped_column(JSONB)

    def __repr__(self) -> str:
        return f"<Progression(id={self.id}, type={self.progression_type})>"


class ProgramProgression(BaseModel):
    """Attaches a progression to a program for one lift."""

    __tablename__ = "program_progressions"
    __table_args__ = (
        UniqueConstraint(
            "program_id", "progression_id", "lift_id", name="uq_program_progressions"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    program_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("programs.id", ondelete="CASCADE"),
        index=True,
    )
    progression_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("progressions.id", ondelete="CASCADE"),
        index=True,
    )
    lift_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("lifts.id", ondelete="CASCADE"))
    priority: Mapped[int] = mapped_column(Integer, default=0)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    override_increment: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    progression: Mapped["Progression"] = relationship("Progression", lazy="joined")
    lift: Mapped["Lift"] = relationship("Lift")


class ProgressionHistory(BaseModel):
    """Append-only audit row for one applied progression.

    period_key identifies the set/session/week/cycle the application belongs
    to. Unforced rows are unique per (user, progression, lift, period_key).
    """

    __tablename__ = "progression_history"
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "progression_id",
            "lift_id",
            "trigger_type",
            "applied_at",
            name="uq_progression_history_application",
        ),
        Index(
            "uq_progression_history_period",
            "user_id",
            "progression_id",
            "lift_id",
            "period_key",
            unique=True,
            postgresql_where=text("NOT forced"),
            sqlite_where=text("NOT forced"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
    )
    progression_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("progressions.id", ondelete="CASCADE"),
    )
    lift_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("lifts.id", ondelete="CASCADE"))
    previous_value: Mapped[float] = mapped_column(Float)
    new_value: Mapped[float] = mapped_column(Float)
    delta: Mapped[float] = mapped_column(Float)
    trigger_type: Mapped[str] = mapped_column(String(20))
    trigger_context: Mapped[dict] = mapped_column(JSONB, default=dict)
    period_key: Mapped[str] = mapped_column(String(100))
    forced: Mapped[bool] = mapped_column(Boolean, default=False)
    applied_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)

    def __repr__(self) -> str:
        return (
            f"<ProgressionHistory(progression={self.progression_id}, lift={self.lift_id}, "
            f"{self.previous_value}->{self.new_value})>"
        )


class FailureCounter(BaseModel):
    """Consecutive failed sets of one lift, tracked per progression.

    A failed set increments the count; a successful one resets it to zero.
    """

    __tablename__ = "failure_counters"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "lift_id", "progression_id", name="uq_failure_counters"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
    )
    lift_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("lifts.id", ondelete="CASCADE"))
    progression_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("progressions.id", ondelete="CASCADE"),
    )
    consecutive_failures: Mapped[int] = mapped_column(Integer, default=0)
    last_failed_set_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    last_failure_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_success_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<FailureCounter(lift={self.lift_id}, progression={self.progression_id}, "
            f"failures={self.consecutive_failures})>"
        )
