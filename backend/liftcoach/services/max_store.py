"""Max store: time-stamped lift maxes and "current max as of" queries."""

import logging
import uuid
from datetime import date, datetime, time, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from liftcoach.core.errors import LiftNotFoundError, ValidationError
from liftcoach.models.lift import Lift, LiftMax, MaxType

logger = logging.getLogger(__name__)

# By calendar day, then latest write within the day.
_NEWEST_FIRST = (func.date(LiftMax.effective_date).desc(), LiftMax.created_at.desc())


def _cutoff(as_of: Optional[date]) -> datetime:
    """Latest instant that still counts as "as of" the given date."""
    if as_of is None:
        return datetime.now(timezone.utc)
    if isinstance(as_of, datetime):
        return as_of
    return datetime.combine(as_of, time.max, tzinfo=timezone.utc)


class MaxStore:
    """Database-backed max lookups for one request."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_current_record(
        self,
        user_id: uuid.UUID,
        lift_id: uuid.UUID,
        max_type: MaxType,
        as_of: Optional[date] = None,
    ) -> Optional[LiftMax]:
        """Return the current LiftMax row, or None.

        Rows are compared by effective day; the most recently created row
        wins within a day.
        """
        result = await self.db.execute(
            select(LiftMax)
            .where(
                LiftMax.user_id == user_id,
                LiftMax.lift_id == lift_id,
                LiftMax.max_type == MaxType(max_type).value,
                LiftMax.effective_date <= _cutoff(as_of),
            )
            .order_by(*_NEWEST_FIRST)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_current_max(
        self,
        user_id: uuid.UUID,
        lift_id: uuid.UUID,
        max_type: MaxType,
        as_of: Optional[date] = None,
    ) -> Optional[float]:
        record = await self.get_current_record(user_id, lift_id, max_type, as_of)
        return record.value if record else None

    async def record_max(
        self,
        user_id: uuid.UUID,
        lift_id: uuid.UUID,
        max_type: MaxType,
        value: float,
        effective_date: Optional[datetime] = None,
    ) -> LiftMax:
        """Insert a new max row. Does not commit."""
        if value <= 0:
            raise ValidationError("max value must be positive", field="value")

        lift = await self.db.get(Lift, lift_id)
        if lift is None:
            raise LiftNotFoundError(f"lift {lift_id} not found")

        lift_max = LiftMax(
            user_id=user_id,
            lift_id=lift_id,
            max_type=MaxType(max_type).value,
            value=value,
            effective_date=effective_date or datetime.now(timezone.utc),
        )
        self.db.add(lift_max)
        await self.db.flush()
        logger.info(
            "Recorded %s=%s for user %s lift %s", lift_max.max_type, value, user_id, lift_id
        )
        return lift_max

    async def list_maxes(
        self,
        user_id: uuid.UUID,
        lift_id: Optional[uuid.UUID] = None,
        max_type: Optional[MaxType] = None,
    ) -> list[LiftMax]:
        query = select(LiftMax).where(LiftMax.user_id == user_id)
        if lift_id:
            query = query.where(LiftMax.lift_id == lift_id)
        if max_type:
            query = query.where(LiftMax.max_type == MaxType(max_type).value)
        query = query.order_by(*_NEWEST_FIRST)
        result = await self.db.execute(query)
        return list(result.scalars().all())


class MaxCache:
    """Per-request memo over another max lookup.

    Keyed by (user, lift, type, as_of). Create one per batch and drop it with
    the request; never share it across requests.
    """

    def __init__(self, source: MaxStore):
        self._source = source
        self._values: dict[tuple, Optional[float]] = {}
        self.hits = 0
        self.misses = 0

    async def get_current_max(
        self,
        user_id: uuid.UUID,
        lift_id: uuid.UUID,
        max_type: MaxType,
        as_of: Optional[date] = None,
    ) -> Optional[float]:
        key = (user_id, lift_id, MaxType(max_type).value, as_of)
        if key in self._values:
            self.hits += 1
            return self._values[key]
        self.misses += 1
        value = await self._source.get_current_max(user_id, lift_id, max_type, as_of)
        self._values[key] = value
        return value
