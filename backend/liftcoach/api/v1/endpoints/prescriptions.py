"""Prescription authoring and resolution.

Paths:
  /api/v1/prescriptions
  /api/v1/prescriptions/{prescription_id}/resolve
  /api/v1/prescriptions/resolve (batch)
"""

import uuid
from datetime import date
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from liftcoach.api.v1.endpoints.auth import ensure_admin, ensure_self_or_admin, get_current_user
from liftcoach.api.v1.errors import http_error
from liftcoach.core.database import get_db
from liftcoach.core.errors import DomainError
from liftcoach.models.user import User
from liftcoach.services.prescription_service import PrescriptionService

router = APIRouter()

MAX_BATCH_SIZE = 100


# -------------------------------------------------------------------------
# Request/Response Models
# -------------------------------------------------------------------------


class PrescriptionCreate(BaseModel):
    lift_id: uuid.UUID
    load_strategy: dict[str, Any]
    set_scheme: dict[str, Any]
    order: int = 0
    notes: Optional[str] = None
    rest_seconds: Optional[int] = Field(None, ge=0)


class PrescriptionResponse(BaseModel):
    id: uuid.UUID
    lift_id: uuid.UUID
    load_strategy: dict[str, Any]
    set_scheme: dict[str, Any]
    order: int
    notes: Optional[str]
    rest_seconds: Optional[int]


class BatchResolveRequest(BaseModel):
    prescription_ids: list[uuid.UUID] = Field(..., min_length=1, max_length=MAX_BATCH_SIZE)
    user_id: uuid.UUID
    date: Optional[date] = None
    day: Optional[str] = Field(None, min_length=1, max_length=100)


# -------------------------------------------------------------------------
# Endpoints
# -------------------------------------------------------------------------


@router.post("", response_model=PrescriptionResponse, status_code=status.HTTP_201_CREATED)
async def create_prescription(
    request: PrescriptionCreate,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> PrescriptionResponse:
    """Author a prescription (admin only).

    Percentages are checked against 1..100 and a missing rounding
    increment gets the configured default.
    """
    ensure_admin(current_user)
    try:
        prescription = await PrescriptionService(db).create_prescription(
            request.lift_id,
            request.load_strategy,
            request.set_scheme,
            order=request.order,
            notes=request.notes,
            rest_seconds=request.rest_seconds,
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    await db.commit()
    return PrescriptionResponse(
        id=prescription.id,
        lift_id=prescription.lift_id,
        load_strategy=prescription.load_strategy,
        set_scheme=prescription.set_scheme,
        order=prescription.order,
        notes=prescription.notes,
        rest_seconds=prescription.rest_seconds,
    )


@router.get("/{prescription_id}/resolve")
async def resolve_prescription(
    prescription_id: uuid.UUID,
    user_id: uuid.UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
    as_of: Annotated[Optional[date], Query(alias="date")] = None,
    day: Annotated[Optional[str], Query(min_length=1, max_length=100)] = None,
) -> dict[str, Any]:
    """Resolve for a user; ``day`` picks the daily lookup row (default: current day)."""
    ensure_self_or_admin(user_id, current_user)
    try:
        resolved = await PrescriptionService(db).resolve(
            prescription_id, user_id, as_of, day_slug=day
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    return resolved.to_dict()


@router.post("/resolve")
async def resolve_batch(
    request: BatchResolveRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Resolve many prescriptions; failures are reported per item."""
    ensure_self_or_admin(request.user_id, current_user)
    results = await PrescriptionService(db).resolve_batch(
        request.prescription_ids, request.user_id, request.date, day_slug=request.day
    )
    return {
        "results": [r.to_dict() for r in results],
        "total_ok": sum(1 for r in results if r.status == "ok"),
        "total_errors": sum(1 for r in results if r.status == "error"),
    }
