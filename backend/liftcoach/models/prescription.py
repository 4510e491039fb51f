"""Prescription model."""

import uuid
from typing import TYPE_CHECKING, Optional

from sqlalchemy import ForeignKey, Integer, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from liftcoach.models.base import BaseModel

if TYPE_CHECKING:
    from liftcoach.models.lift import Lift


class Prescription(BaseModel):
    """What to lift for one exercise slot.

    load_strategy and set_scheme hold the JSON form of the tagged unions in
    liftcoach.services.load_strategy and liftcoach.services.set_scheme.
    """

    __tablename__ = "prescriptions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    lift_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("lifts.id"), index=True)
    load_strategy: Mapped[dict] = mapped_column(JSONB)
    set_scheme: Mapped[dict] = mapped_column(JSONB)
    order: Mapped[int] = mapped_column(Integer, default=0)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rest_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    lift: Mapped["Lift"] = relationship("Lift", lazy="joined")

    def __repr__(self) -> str:
        return f"<Prescription(id={self.id}, lift={self.lift_id})>"
