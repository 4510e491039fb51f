"""Prescription resolution: load strategy + set scheme -> concrete sets."""

import logging
import uuid
from dataclasses import dataclass
from datetime import date
from typing import Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from liftcoach.core.errors import (
    DomainError,
    LiftNotFoundError,
    PrescriptionNotFoundError,
    ValidationError,
)
from liftcoach.models.enrollment import UserProgramState
from liftcoach.models.lift import Lift
from liftcoach.models.prescription import Prescription
from liftcoach.models.program import DailyLookup, Program, WeeklyLookup
from liftcoach.services.load_strategy import (
    LoadStrategy,
    LookupBased,
    MaxLookup,
    ResolutionContext,
    parse_load_strategy,
    resolve_load,
    validate_new_strategy,
)
from liftcoach.services.lookups import DailyLookupTable, LookupContext, WeeklyLookupTable
from liftcoach.services.max_store import MaxCache, MaxStore
from liftcoach.services.program_structure import day_slug_at
from liftcoach.services.set_scheme import GeneratedSet, SetScheme, generate_sets, parse_set_scheme

logger = logging.getLogger(__name__)


@dataclass
class LiftInfo:
    id: uuid.UUID
    name: str
    slug: str

    def to_dict(self) -> dict:
        return {"id": str(self.id), "name": self.name, "slug": self.slug}


@dataclass
class ResolvedPrescription:
    """Concrete sets for one prescription. Never persisted."""

    prescription_id: uuid.UUID
    lift: LiftInfo
    sets: list[GeneratedSet]
    notes: Optional[str] = None
    rest_seconds: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "prescription_id": str(self.prescription_id),
            "lift": self.lift.to_dict(),
            "sets": [s.to_dict() for s in self.sets],
            "notes": self.notes,
            "rest_seconds": self.rest_seconds,
        }


@dataclass
class BatchResolution:
    """Outcome of one item in a batch resolve."""

    prescription_id: uuid.UUID
    status: str  # "ok" | "error"
    resolved: Optional[ResolvedPrescription] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "prescription_id": str(self.prescription_id),
            "status": self.status,
            "resolved": self.resolved.to_dict() if self.resolved else None,
            "error": self.error,
        }


def strategy_of(prescription: Prescription) -> LoadStrategy:
    try:
        return parse_load_strategy(prescription.load_strategy)
    except ValueError as exc:
        raise ValidationError(
            f"prescription {prescription.id} has an invalid load strategy: {exc}",
            field="load_strategy",
        ) from exc


def scheme_of(prescription: Prescription) -> SetScheme:
    try:
        return parse_set_scheme(prescription.set_scheme)
    except ValueError as exc:
        raise ValidationError(
            f"prescription {prescription.id} has an invalid set scheme: {exc}",
            field="set_scheme",
        ) from exc


async def resolve_prescription(
    prescription: Prescription,
    user_id: uuid.UUID,
    max_lookup: MaxLookup,
    as_of: Optional[date] = None,
    lookups: Optional[LookupContext] = None,
    program_rounding: Optional[float] = None,
) -> ResolvedPrescription:
    """Resolve one prescription for one user.

    Args:
        prescription: Prescription row with its lift loaded.
        user_id: Lifter whose maxes drive the load.
        max_lookup: Max source (MaxStore or a per-request MaxCache).
        as_of: Date whose current max should be used; today if None.
        lookups: Week/day lookup context for LOOKUP_BASED strategies.
        program_rounding: Program default increment.

    Returns:
        The resolved prescription.

    Raises:
        LiftNotFoundError: If the prescription's lift is gone.
        MaxNotFoundError: If the referenced max does not exist.
    """
    if prescription.lift is None:
        raise LiftNotFoundError(f"lift {prescription.lift_id} not found")

    strategy = strategy_of(prescription)
    scheme = scheme_of(prescription)

    ctx = ResolutionContext(
        user_id=user_id,
        lift_id=prescription.lift_id,
        as_of=as_of,
        lookups=lookups,
        program_rounding=program_rounding,
    )
    load = await resolve_load(strategy, ctx, max_lookup)

    return ResolvedPrescription(
        prescription_id=prescription.id,
        lift=LiftInfo(
            id=prescription.lift.id,
            name=prescription.lift.name,
            slug=prescription.lift.slug,
        ),
        sets=generate_sets(scheme, load),
        notes=prescription.notes,
        rest_seconds=prescription.rest_seconds,
    )


class PrescriptionService:
    """Loads prescriptions and the context they resolve against."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.max_store = MaxStore(db)

    async def get_prescription(self, prescription_id: uuid.UUID) -> Prescription:
        result = await self.db.execute(
            select(Prescription).where(Prescription.id == prescription_id)
        )
        prescription = result.scalar_one_or_none()
        if prescription is None:
            raise PrescriptionNotFoundError(f"prescription {prescription_id} not found")
        return prescription

    async def lookup_context(
        self,
        strategy: LoadStrategy,
        program: Optional[Program],
        week_number: Optional[int],
        day_slug: Optional[str],
    ) -> Optional[LookupContext]:
        """Build the lookup context a LOOKUP_BASED strategy needs.

        Strategy lookup ids win over the program's. PERCENT_OF strategies
        never use lookups.
        """
        if not isinstance(strategy, LookupBased) or week_number is None:
            return None

        weekly_id = strategy.weekly_lookup_id or (program.weekly_lookup_id if program else None)
        daily_id = strategy.daily_lookup_id or (program.daily_lookup_id if program else None)
        if weekly_id is None and daily_id is None:
            return None

        weekly = await self.db.get(WeeklyLookup, weekly_id) if weekly_id else None
        daily = await self.db.get(DailyLookup, daily_id) if daily_id else None
        return LookupContext(
            week_number=week_number,
            day_slug=day_slug,
            weekly=WeeklyLookupTable(entries=weekly.entries) if weekly else None,
            daily=DailyLookupTable(entries=daily.entries) if daily else None,
        )

    async def _enrollment(self, user_id: uuid.UUID) -> Optional[UserProgramState]:
        result = await self.db.execute(
            select(UserProgramState).where(UserProgramState.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def resolve(
        self,
        prescription_id: uuid.UUID,
        user_id: uuid.UUID,
        as_of: Optional[date] = None,
        max_lookup: Optional[MaxLookup] = None,
        day_slug: Optional[str] = None,
    ) -> ResolvedPrescription:
        """Resolve a prescription by id, using the user's enrollment for lookups.

        The daily lookup applies to ``day_slug`` when given, otherwise to the
        day the enrollment currently points at.
        """
        prescription = await self.get_prescription(prescription_id)
        strategy = strategy_of(prescription)

        program = None
        lookups = None
        state = await self._enrollment(user_id)
        if state is not None:
            program = await self.db.get(Program, state.program_id)
            if program is not None and isinstance(strategy, LookupBased) and not day_slug:
                day_slug = await day_slug_at(
                    self.db, program.cycle_id, state.current_week, state.current_day_index
                )
            lookups = await self.lookup_context(strategy, program, state.current_week, day_slug)

        return await resolve_prescription(
            prescription,
            user_id,
            max_lookup or self.max_store,
            as_of=as_of,
            lookups=lookups,
            program_rounding=program.default_rounding if program else None,
        )

    async def resolve_batch(
        self,
        prescription_ids: list[uuid.UUID],
        user_id: uuid.UUID,
        as_of: Optional[date] = None,
        day_slug: Optional[str] = None,
    ) -> list[BatchResolution]:
        """Resolve many prescriptions, sharing one max cache for the batch.

        A failing item is reported in its slot; it never fails the batch.
        """
        cache = MaxCache(self.max_store)
        results: list[BatchResolution] = []

        for prescription_id in prescription_ids:
            try:
                resolved = await self.resolve(
                    prescription_id, user_id, as_of, max_lookup=cache, day_slug=day_slug
                )
            except DomainError as exc:
                results.append(BatchResolution(prescription_id, "error", error=str(exc)))
                continue
            results.append(BatchResolution(prescription_id, "ok", resolved=resolved))

        logger.debug(
            "Batch resolved %d prescriptions for user %s (max cache hits=%d misses=%d)",
            len(prescription_ids),
            user_id,
            cache.hits,
            cache.misses,
        )
        return results

    async def create_prescription(
        self,
        lift_id: uuid.UUID,
        load_strategy: dict,
        set_scheme: dict,
        order: int = 0,
        notes: Optional[str] = None,
        rest_seconds: Optional[int] = None,
    ) -> Prescription:
        """Author a prescription. Does not commit."""
        if await self.db.get(Lift, lift_id) is None:
            raise LiftNotFoundError(f"lift {lift_id} not found")
        try:
            strategy = validate_new_strategy(parse_load_strategy(load_strategy))
        except PydanticValidationError as exc:
            raise ValidationError(f"invalid load strategy: {exc}", field="load_strategy") from exc
        try:
            scheme = parse_set_scheme(set_scheme)
        except PydanticValidationError as exc:
            raise ValidationError(f"invalid set scheme: {exc}", field="set_scheme") from exc

        prescription = Prescription(
            lift_id=lift_id,
            load_strategy=strategy.model_dump(mode="json"),
            set_scheme=scheme.model_dump(mode="json"),
            order=order,
            notes=notes,
            rest_seconds=rest_seconds,
        )
        self.db.add(prescription)
        await self.db.flush()
        logger.info("Created %s/%s prescription %s", strategy.type, scheme.type, prescription.id)
        return prescription
