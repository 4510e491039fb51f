"""Workout session tracking.

Paths:
  /api/v1/users/{user_id}/sessions
  /api/v1/sessions/{workout_session_id}, /sets, /next-set, /finish, /abandon

``session_id`` is the auth cookie name, so session paths use
``workout_session_id``.
"""

import uuid
from typing import Annotated, Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from liftcoach.api.v1.endpoints.auth import ensure_self_or_admin, get_current_user
from liftcoach.api.v1.errors import http_error
from liftcoach.core.database import get_db
from liftcoach.core.errors import DomainError
from liftcoach.models.user import User
from liftcoach.services.session_service import (
    SessionService,
    SetLog,
    session_to_dict,
)

router = APIRouter()


# -------------------------------------------------------------------------
# Request Models
# -------------------------------------------------------------------------


class LogSetsRequest(BaseModel):
    sets: list[SetLog] = Field(..., min_length=1)


# -------------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------------


async def _authorized(service: SessionService, session_id: uuid.UUID, current_user: User) -> None:
    try:
        owner_id = await service.owner_of(session_id)
    except DomainError as exc:
        raise http_error(exc) from exc
    ensure_self_or_admin(owner_id, current_user)


# -------------------------------------------------------------------------
# Endpoints
# -------------------------------------------------------------------------


@router.post("/users/{user_id}/sessions", status_code=status.HTTP_201_CREATED)
async def start_session(
    user_id: uuid.UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    ensure_self_or_admin(user_id, current_user)
    try:
        session = await SessionService(db).start_session(user_id)
    except DomainError as exc:
        raise http_error(exc) from exc
    await db.commit()
    return session_to_dict(session)


@router.get("/sessions/{workout_session_id}")
async def get_session(
    workout_session_id: uuid.UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    service = SessionService(db)
    await _authorized(service, workout_session_id, current_user)
    session = await service.get_session(workout_session_id)
    return session_to_dict(session, await service.logged_sets(workout_session_id))


@router.post("/sessions/{workout_session_id}/sets", status_code=status.HTTP_201_CREATED)
async def log_sets(
    workout_session_id: uuid.UUID,
    request: LogSetsRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    service = SessionService(db)
    await _authorized(service, workout_session_id, current_user)
    try:
        logged = await service.log_sets(workout_session_id, request.sets)
    except DomainError as exc:
        raise http_error(exc) from exc
    await db.commit()
    return logged.to_dict()


@router.get("/sessions/{workout_session_id}/next-set")
async def get_next_set(
    workout_session_id: uuid.UUID,
    prescription_id: uuid.UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Next proposed set for an MRS, TOTAL_REPS or FATIGUE_DROP prescription."""
    service = SessionService(db)
    await _authorized(service, workout_session_id, current_user)
    try:
        result = await service.get_next_set(workout_session_id, prescription_id)
    except DomainError as exc:
        raise http_error(exc) from exc
    return result.to_dict()


@router.post("/sessions/{workout_session_id}/finish")
async def finish_session(
    workout_session_id: uuid.UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Complete the session and run AFTER_SESSION progressions."""
    service = SessionService(db)
    await _authorized(service, workout_session_id, current_user)
    try:
        finished = await service.finish_session(workout_session_id)
    except DomainError as exc:
        raise http_error(exc) from exc
    await db.commit()
    return finished.to_dict()


@router.post("/sessions/{workout_session_id}/abandon")
async def abandon_session(
    workout_session_id: uuid.UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    service = SessionService(db)
    await _authorized(service, workout_session_id, current_user)
    try:
        session = await service.abandon_session(workout_session_id)
    except DomainError as exc:
        raise http_error(exc) from exc
    await db.commit()
    return session_to_dict(session)
