"""Generated workouts.

Paths:
  /api/v1/users/{user_id}/workout
  /api/v1/users/{user_id}/workout/preview
"""

import time
import uuid
from datetime import date
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from liftcoach.api.v1.endpoints.auth import ensure_self_or_admin, get_current_user
from liftcoach.api.v1.errors import http_error
from liftcoach.core.database import get_db
from liftcoach.core.errors import DomainError
from liftcoach.models.user import User
from liftcoach.observability import get_metrics_backend
from liftcoach.services.workout_service import WorkoutService

router = APIRouter()


@router.get("/users/{user_id}/workout")
async def get_current_workout(
    user_id: uuid.UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
    workout_date: Annotated[Optional[date], Query(alias="date")] = None,
    day_slug: Optional[str] = None,
) -> dict[str, Any]:
    """Workout for the user's current position in their program."""
    ensure_self_or_admin(user_id, current_user)
    metrics = get_metrics_backend()
    start = time.perf_counter()
    try:
        workout = await WorkoutService(db).current_workout(user_id, workout_date, day_slug)
    except DomainError as exc:
        metrics.observe_workout("current", False, (time.perf_counter() - start) * 1000)
        raise http_error(exc) from exc
    metrics.observe_workout("current", True, (time.perf_counter() - start) * 1000)
    return workout.to_dict()


@router.get("/users/{user_id}/workout/preview")
async def preview_workout(
    user_id: uuid.UUID,
    week: int,
    day: str,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
    workout_date: Annotated[Optional[date], Query(alias="date")] = None,
) -> dict[str, Any]:
    """Workout for any week/day of the program. Enrollment is left untouched."""
    ensure_self_or_admin(user_id, current_user)
    metrics = get_metrics_backend()
    start = time.perf_counter()
    try:
        workout = await WorkoutService(db).preview_workout(user_id, week, day, workout_date)
    except DomainError as exc:
        metrics.observe_workout("preview", False, (time.perf_counter() - start) * 1000)
        raise http_error(exc) from exc
    metrics.observe_workout("preview", True, (time.perf_counter() - start) * 1000)
    return workout.to_dict()
