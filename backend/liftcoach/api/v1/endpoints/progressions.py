"""Progression definitions, program links, manual triggers and history.

Paths:
  /api/v1/progressions
  /api/v1/programs/{program_id}/progressions
  /api/v1/users/{user_id}/progressions/trigger
  /api/v1/users/{user_id}/progression-history
  /api/v1/users/{user_id}/failure-counters
"""

import uuid
from datetime import datetime
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from liftcoach.api.v1.endpoints.auth import ensure_admin, ensure_self_or_admin, get_current_user
from liftcoach.api.v1.errors import http_error
from liftcoach.core.database import get_db
from liftcoach.core.errors import DomainError
from liftcoach.models.progression import (
    ProgramProgression,
    Progression,
    ProgressionHistory,
    ProgressionType,
)
from liftcoach.models.user import User
from liftcoach.services.failure_tracker import failure_counter_to_dict
from liftcoach.services.progression_service import ProgressionService

router = APIRouter()


# -------------------------------------------------------------------------
# Request/Response Models
# -------------------------------------------------------------------------


class ProgressionCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: ProgressionType
    parameters: dict[str, Any]


class ProgressionResponse(BaseModel):
    id: uuid.UUID
    name: str
    type: ProgressionType
    parameters: dict[str, Any]

    @classmethod
    def from_model(cls, progression: Progression) -> "ProgressionResponse":
        return cls(
            id=progression.id,
            name=progression.name,
            type=ProgressionType(progression.progression_type),
            parameters=progression.parameters,
        )


class ProgramProgressionCreate(BaseModel):
    progression_id: uuid.UUID
    lift_id: uuid.UUID
    priority: int = 0
    enabled: bool = True
    override_increment: Optional[float] = Field(None, gt=0)


class ProgramProgressionResponse(BaseModel):
    id: uuid.UUID
    program_id: uuid.UUID
    progression_id: uuid.UUID
    lift_id: uuid.UUID
    priority: int
    enabled: bool
    override_increment: Optional[float]

    @classmethod
    def from_model(cls, link: ProgramProgression) -> "ProgramProgressionResponse":
        return cls(
            id=link.id,
            program_id=link.program_id,
            progression_id=link.progression_id,
            lift_id=link.lift_id,
            priority=link.priority,
            enabled=link.enabled,
            override_increment=link.override_increment,
        )


class TriggerRequest(BaseModel):
    progression_id: uuid.UUID
    lift_id: Optional[uuid.UUID] = None
    force: bool = False


class HistoryEntry(BaseModel):
    id: uuid.UUID
    progression_id: uuid.UUID
    lift_id: uuid.UUID
    previous_value: float
    new_value: float
    delta: float
    trigger_type: str
    trigger_context: dict[str, Any]
    period_key: str
    forced: bool
    applied_at: datetime

    @classmethod
    def from_model(cls, row: ProgressionHistory) -> "HistoryEntry":
        return cls(
            id=row.id,
            progression_id=row.progression_id,
            lift_id=row.lift_id,
            previous_value=row.previous_value,
            new_value=row.new_value,
            delta=row.delta,
            trigger_type=row.trigger_type,
            trigger_context=row.trigger_context or {},
            period_key=row.period_key,
            forced=row.forced,
            applied_at=row.applied_at,
        )


# -------------------------------------------------------------------------
# Definitions
# -------------------------------------------------------------------------


@router.get("/progressions", response_model=list[ProgressionResponse])
async def list_progressions(
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> list[ProgressionResponse]:
    progressions = await ProgressionService(db).list_progressions()
    return [ProgressionResponse.from_model(p) for p in progressions]


@router.post(
    "/progressions",
    response_model=ProgressionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_progression(
    request: ProgressionCreate,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> ProgressionResponse:
    ensure_admin(current_user)
    try:
        progression = await ProgressionService(db).create_progression(
            request.name, request.type.value, request.parameters
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    await db.commit()
    return ProgressionResponse.from_model(progression)


@router.get(
    "/programs/{program_id}/progressions",
    response_model=list[ProgramProgressionResponse],
)
async def list_program_progressions(
    program_id: uuid.UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> list[ProgramProgressionResponse]:
    links = await ProgressionService(db).list_links(program_id)
    return [ProgramProgressionResponse.from_model(link) for link in links]


@router.post(
    "/programs/{program_id}/progressions",
    response_model=ProgramProgressionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def link_progression(
    program_id: uuid.UUID,
    request: ProgramProgressionCreate,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> ProgramProgressionResponse:
    """Attach a progression to one lift of a program (admin only)."""
    ensure_admin(current_user)
    try:
        link = await ProgressionService(db).link_to_program(
            program_id,
            request.progression_id,
            request.lift_id,
            priority=request.priority,
            enabled=request.enabled,
            override_increment=request.override_increment,
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    await db.commit()
    return ProgramProgressionResponse.from_model(link)


# -------------------------------------------------------------------------
# Application
# -------------------------------------------------------------------------


@router.post("/users/{user_id}/progressions/trigger")
async def trigger_progression(
    user_id: uuid.UUID,
    request: TriggerRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Apply a progression now.

    Already-applied periods are skipped unless ``force`` is set. Per-lift
    failures are returned in ``results``; successful lifts are still saved.
    """
    ensure_self_or_admin(user_id, current_user)
    try:
        aggregate = await ProgressionService(db).apply_manually(
            user_id, request.progression_id, request.lift_id, request.force
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    await db.commit()
    return aggregate.to_dict()


@router.get("/users/{user_id}/progression-history", response_model=list[HistoryEntry])
async def get_progression_history(
    user_id: uuid.UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
    lift_id: Optional[uuid.UUID] = None,
    progression_id: Optional[uuid.UUID] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> list[HistoryEntry]:
    """Applied progressions, newest first."""
    ensure_self_or_admin(user_id, current_user)
    rows = await ProgressionService(db).history(user_id, lift_id, progression_id, limit)
    return [HistoryEntry.from_model(r) for r in rows]


@router.get("/users/{user_id}/failure-counters")
async def get_failure_counters(
    user_id: uuid.UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
    lift_id: Optional[uuid.UUID] = None,
) -> list[dict[str, Any]]:
    """Consecutive-failure streaks feeding DELOAD_ON_FAILURE progressions."""
    ensure_self_or_admin(user_id, current_user)
    counters = await ProgressionService(db).failure_counters(user_id, lift_id)
    return [failure_counter_to_dict(c) for c in counters]
