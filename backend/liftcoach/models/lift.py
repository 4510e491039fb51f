"""Lift and lift max models."""

import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, Float, ForeignKey, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from liftcoach.models.base import BaseModel

if TYPE_CHECKING:
    from liftcoach.models.user import User


class MaxType(str, Enum):
    """Kind of stored strength max."""

    ONE_RM = "ONE_RM"
    TRAINING_MAX = "TRAINING_MAX"


class Lift(BaseModel):
    """A barbell movement (squat, bench press, ...)."""

    __tablename__ = "lifts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100))
    slug: Mapped[str] = mapped_column(String(100), unique=True, index=True)

    def __repr__(self) -> str:
        return f"<Lift(id={self.id}, slug={self.slug})>"


class LiftMax(BaseModel):
    """Time-stamped max record.

    Several rows may exist per (user, lift, type); the current one as of a
    date is the row on the latest effective day not after that date, ties
    within a day going to the most recently created row.
    """

    __tablename__ = "lift_maxes"
    __table_args__ = (
        Index("ix_lift_maxes_lookup", "user_id", "lift_id", "max_type", "effective_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
    )
    lift_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("lifts.id", ondelete="CASCADE"),
        index=True,
    )
    max_type: Mapped[str] = mapped_column(String(20))
    value: Mapped[float] = mapped_column(Float)
    effective_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="lift_maxes")
    lift: Mapped["Lift"] = relationship("Lift")

    def __repr__(self) -> str:
        return (
            f"<LiftMax(lift={self.lift_id}, type={self.max_type}, "
            f"value={self.value}, effective={self.effective_date})>"
        )
