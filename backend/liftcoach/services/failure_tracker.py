"""Consecutive-failure counters behind DELOAD_ON_FAILURE progressions."""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from liftcoach.models.progression import FailureCounter

logger = logging.getLogger(__name__)


def failure_counter_to_dict(counter: FailureCounter) -> dict:
    return {
        "lift_id": str(counter.lift_id),
        "progression_id": str(counter.progression_id),
        "consecutive_failures": counter.consecutive_failures,
        "last_failure_at": counter.last_failure_at.isoformat() if counter.last_failure_at else None,
        "last_success_at": counter.last_success_at.isoformat() if counter.last_success_at else None,
    }


class FailureTracker:
    """Per (user, lift, progression) failure streaks. Does not commit."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(
        self, user_id: uuid.UUID, lift_id: uuid.UUID, progression_id: uuid.UUID
    ) -> Optional[FailureCounter]:
        result = await self.db.execute(
            select(FailureCounter).where(
                FailureCounter.user_id == user_id,
                FailureCounter.lift_id == lift_id,
                FailureCounter.progression_id == progression_id,
            )
        )
        return result.scalar_one_or_none()

    async def record(
        self,
        user_id: uuid.UUID,
        lift_id: uuid.UUID,
        progression_id: uuid.UUID,
        failed: bool,
        logged_set_id: Optional[uuid.UUID] = None,
    ) -> int:
        """Count one set against the streak and return the new streak length."""
        counter = await self.get(user_id, lift_id, progression_id)
        if counter is None:
            counter = FailureCounter(
                user_id=user_id,
                lift_id=lift_id,
                progression_id=progression_id,
                consecutive_failures=0,
            )
            self.db.add(counter)

        now = datetime.now(timezone.utc)
        if failed:
            counter.consecutive_failures += 1
            counter.last_failure_at = now
            counter.last_failed_set_id = logged_set_id
        else:
            counter.consecutive_failures = 0
            counter.last_success_at = now
        await self.db.flush()

        logger.debug(
            "Failure streak for user %s lift %s progression %s: %d",
            user_id,
            lift_id,
            progression_id,
            counter.consecutive_failures,
        )
        return counter.consecutive_failures

    async def reset(
        self, user_id: uuid.UUID, lift_id: uuid.UUID, progression_id: uuid.UUID
    ) -> None:
        counter = await self.get(user_id, lift_id, progression_id)
        if counter is not None and counter.consecutive_failures:
            counter.consecutive_failures = 0
            await self.db.flush()

    async def list_for_user(
        self, user_id: uuid.UUID, lift_id: Optional[uuid.UUID] = None
    ) -> list[FailureCounter]:
        query = select(FailureCounter).where(FailureCounter.user_id == user_id)
        if lift_id:
            query = query.where(FailureCounter.lift_id == lift_id)
        result = await self.db.execute(query.order_by(FailureCounter.created_at))
        return list(result.scalars().all())
