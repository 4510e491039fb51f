"""Lift catalogue and per-user maxes.

Paths:
  /api/v1/lifts
  /api/v1/users/{user_id}/maxes, /maxes/current
"""

import uuid
from datetime import date, datetime
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from liftcoach.api.v1.endpoints.auth import ensure_admin, ensure_self_or_admin, get_current_user
from liftcoach.api.v1.errors import http_error
from liftcoach.core.database import get_db
from liftcoach.core.errors import DomainError
from liftcoach.models.lift import Lift, LiftMax, MaxType
from liftcoach.models.user import User
from liftcoach.services.max_store import MaxStore

router = APIRouter()


# -------------------------------------------------------------------------
# Request/Response Models
# -------------------------------------------------------------------------


class LiftResponse(BaseModel):
    id: uuid.UUID
    name: str
    slug: str


class LiftCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    slug: str = Field(..., min_length=1, max_length=100, pattern=r"^[a-z0-9-]+$")


class MaxCreate(BaseModel):
    lift_id: uuid.UUID
    max_type: MaxType
    value: float = Field(..., gt=0)
    effective_date: Optional[datetime] = None


class MaxResponse(BaseModel):
    id: uuid.UUID
    lift_id: uuid.UUID
    max_type: MaxType
    value: float
    effective_date: datetime

    @classmethod
    def from_model(cls, lift_max: LiftMax) -> "MaxResponse":
        return cls(
            id=lift_max.id,
            lift_id=lift_max.lift_id,
            max_type=MaxType(lift_max.max_type),
            value=lift_max.value,
            effective_date=lift_max.effective_date,
        )


# -------------------------------------------------------------------------
# Lifts
# -------------------------------------------------------------------------


@router.get("/lifts", response_model=list[LiftResponse])
async def list_lifts(
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> list[LiftResponse]:
    result = await db.execute(select(Lift).order_by(Lift.name))
    return [LiftResponse(id=l.id, name=l.name, slug=l.slug) for l in result.scalars().all()]


@router.post("/lifts", response_model=LiftResponse, status_code=status.HTTP_201_CREATED)
async def create_lift(
    request: LiftCreate,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> LiftResponse:
    """Add a lift to the catalogue (admin only)."""
    ensure_admin(current_user)
    existing = await db.execute(select(Lift).where(Lift.slug == request.slug))
    if existing.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Lift with slug '{request.slug}' already exists",
        )
    lift = Lift(name=request.name, slug=request.slug)
    db.add(lift)
    await db.commit()
    return LiftResponse(id=lift.id, name=lift.name, slug=lift.slug)


# -------------------------------------------------------------------------
# Maxes
# -------------------------------------------------------------------------


@router.get("/users/{user_id}/maxes", response_model=list[MaxResponse])
async def list_maxes(
    user_id: uuid.UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
    lift_id: Optional[uuid.UUID] = None,
    max_type: Annotated[Optional[MaxType], Query(alias="type")] = None,
) -> list[MaxResponse]:
    """Max history, newest first."""
    ensure_self_or_admin(user_id, current_user)
    maxes = await MaxStore(db).list_maxes(user_id, lift_id, max_type)
    return [MaxResponse.from_model(m) for m in maxes]


@router.post(
    "/users/{user_id}/maxes",
    response_model=MaxResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_max(
    user_id: uuid.UUID,
    request: MaxCreate,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> MaxResponse:
    ensure_self_or_admin(user_id, current_user)
    try:
        lift_max = await MaxStore(db).record_max(
            user_id,
            request.lift_id,
            request.max_type,
            request.value,
            request.effective_date,
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    await db.commit()
    return MaxResponse.from_model(lift_max)


@router.get("/users/{user_id}/maxes/current", response_model=MaxResponse)
async def get_current_max(
    user_id: uuid.UUID,
    lift_id: uuid.UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
    max_type: Annotated[MaxType, Query(alias="type")] = MaxType.TRAINING_MAX,
    as_of: Annotated[Optional[date], Query(alias="date")] = None,
) -> MaxResponse:
    """The max in effect on ``date`` (today by default)."""
    ensure_self_or_admin(user_id, current_user)
    record = await MaxStore(db).get_current_record(user_id, lift_id, max_type, as_of)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No {max_type.value} recorded for this lift",
        )
    return MaxResponse.from_model(record)
