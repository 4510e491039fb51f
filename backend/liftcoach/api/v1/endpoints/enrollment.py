"""Program enrollment and position.

Paths:
  /api/v1/users/{user_id}/enrollment
  /api/v1/users/{user_id}/enrollment/advance-week, /advance-day, /next-cycle
"""

import uuid
from typing import Annotated, Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from liftcoach.api.v1.endpoints.auth import ensure_self_or_admin, get_current_user
from liftcoach.api.v1.errors import http_error
from liftcoach.core.database import get_db
from liftcoach.core.errors import DomainError
from liftcoach.models.user import User
from liftcoach.services.enrollment_service import EnrollmentService, state_to_dict

router = APIRouter()


class EnrollRequest(BaseModel):
    program_id: uuid.UUID


@router.post("/{user_id}/enrollment", status_code=status.HTTP_201_CREATED)
async def enroll(
    user_id: uuid.UUID,
    request: EnrollRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Enroll in a program, replacing any current enrollment."""
    ensure_self_or_admin(user_id, current_user)
    try:
        state = await EnrollmentService(db).enroll(user_id, request.program_id)
    except DomainError as exc:
        raise http_error(exc) from exc
    await db.commit()
    return state_to_dict(state)


@router.get("/{user_id}/enrollment")
async def get_enrollment(
    user_id: uuid.UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    ensure_self_or_admin(user_id, current_user)
    try:
        state = await EnrollmentService(db).get(user_id)
    except DomainError as exc:
        raise http_error(exc) from exc
    return state_to_dict(state)


@router.delete("/{user_id}/enrollment", status_code=status.HTTP_204_NO_CONTENT)
async def unenroll(
    user_id: uuid.UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> None:
    ensure_self_or_admin(user_id, current_user)
    try:
        await EnrollmentService(db).unenroll(user_id)
    except DomainError as exc:
        raise http_error(exc) from exc
    await db.commit()


@router.post("/{user_id}/enrollment/advance-week")
async def advance_week(
    user_id: uuid.UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Finish the current week. After the last week the cycle is complete."""
    ensure_self_or_admin(user_id, current_user)
    try:
        transition = await EnrollmentService(db).advance_week(user_id)
    except DomainError as exc:
        raise http_error(exc) from exc
    await db.commit()
    return transition.to_dict()


@router.post("/{user_id}/enrollment/advance-day")
async def advance_day(
    user_id: uuid.UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    ensure_self_or_admin(user_id, current_user)
    try:
        transition = await EnrollmentService(db).advance_day(user_id)
    except DomainError as exc:
        raise http_error(exc) from exc
    await db.commit()
    return transition.to_dict()


@router.post("/{user_id}/enrollment/next-cycle")
async def next_cycle(
    user_id: uuid.UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    ensure_self_or_admin(user_id, current_user)
    try:
        transition = await EnrollmentService(db).next_cycle(user_id)
    except DomainError as exc:
        raise http_error(exc) from exc
    await db.commit()
    return transition.to_dict()
