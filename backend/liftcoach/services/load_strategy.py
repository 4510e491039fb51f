"""Load strategies: turn a max (and lookup tables) into a concrete weight.

Two strategy variants exist, modelled as a tagged union on ``type``:

- PERCENT_OF: a fixed percentage of the lifter's ONE_RM or TRAINING_MAX.
- LOOKUP_BASED: a percentage driven by the program's weekly/daily lookups.

Both variants name the max they need through ``reference_type``; the max
itself comes from whatever MaxLookup the caller passes in.
"""

import math
import uuid
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Annotated, Literal, Optional, Protocol, Union

from pydantic import BaseModel, Field, TypeAdapter

from liftcoach.core.config import get_settings
from liftcoach.core.errors import MaxNotFoundError, ValidationError
from liftcoach.models.lift import MaxType
from liftcoach.services.lookups import LookupContext


class RoundingDirection(str, Enum):
    NEAREST = "NEAREST"
    UP = "UP"
    DOWN = "DOWN"


# -------------------------------------------------------------------------
# Rounding
# -------------------------------------------------------------------------


def round_weight(
    weight: float,
    increment: float,
    direction: RoundingDirection = RoundingDirection.NEAREST,
) -> float:
    """Round a weight to a multiple of ``increment``.

    NEAREST rounds half-up on the quotient ``weight / increment``.

    Args:
        weight: Raw weight, must not be negative.
        increment: Plate increment, must be positive.
        direction: NEAREST, UP or DOWN.

    Returns:
        Rounded weight.

    Raises:
        ValidationError: On a negative weight or non-positive increment.
    """
    if weight < 0:
        raise ValidationError("weight cannot be negative", field="weight")
    if increment <= 0:
        raise ValidationError("rounding increment must be positive", field="rounding_increment")
    if weight == 0:
        return 0.0

    # Trim float noise so 340.00000000000006 / 5 is treated as 68
    quotient = round(weight / increment, 9)
    if direction == RoundingDirection.UP:
        steps = math.ceil(quotient)
    elif direction == RoundingDirection.DOWN:
        steps = math.floor(quotient)
    else:
        steps = math.floor(quotient + 0.5)
    return round(steps * increment, 6)


# -------------------------------------------------------------------------
# Strategy variants
# -------------------------------------------------------------------------


class PercentOf(BaseModel):
    """A percentage of one of the lifter's maxes."""

    type: Literal["PERCENT_OF"] = "PERCENT_OF"
    reference_type: MaxType
    percentage: float = Field(..., gt=0)
    rounding_increment: Optional[float] = Field(None, ge=0)
    rounding_direction: RoundingDirection = RoundingDirection.NEAREST


class LookupBased(BaseModel):
    """A percentage adjusted by weekly/daily lookup tables.

    Lookup ids left empty fall back to the program's own lookups.
    """

    type: Literal["LOOKUP_BASED"] = "LOOKUP_BASED"
    reference_type: MaxType = MaxType.TRAINING_MAX
    percentage: float = Field(100.0, gt=0)
    weekly_lookup_id: Optional[uuid.UUID] = None
    daily_lookup_id: Optional[uuid.UUID] = None
    rounding_increment: Optional[float] = Field(None, ge=0)
    rounding_direction: RoundingDirection = RoundingDirection.NEAREST


LoadStrategy = Annotated[Union[PercentOf, LookupBased], Field(discriminator="type")]

load_strategy_adapter: TypeAdapter[LoadStrategy] = TypeAdapter(LoadStrategy)


def parse_load_strategy(data: dict) -> LoadStrategy:
    """Parse the stored JSON form of a strategy."""
    return load_strategy_adapter.validate_python(data)


def validate_new_strategy(strategy: LoadStrategy) -> LoadStrategy:
    """Checks applied when a strategy is authored, not when it is resolved.

    Percentages must lie in 1..100 and a missing rounding increment is
    filled with the configured authoring default.
    """
    if not 1 <= strategy.percentage <= 100:
        raise ValidationError("percentage must be between 1 and 100", field="percentage")
    if not strategy.rounding_increment:
        default = get_settings().default_rounding_increment
        strategy = strategy.model_copy(update={"rounding_increment": default})
    return strategy


# -------------------------------------------------------------------------
# Resolution
# -------------------------------------------------------------------------


class MaxLookup(Protocol):
    """Anything that can answer "what is this lifter's current max"."""

    async def get_current_max(
        self,
        user_id: uuid.UUID,
        lift_id: uuid.UUID,
        max_type: MaxType,
        as_of: Optional[date] = None,
    ) -> Optional[float]:
        ...


@dataclass
class ResolutionContext:
    """Who, what and when a load is being resolved for."""

    user_id: uuid.UUID
    lift_id: uuid.UUID
    as_of: Optional[date] = None
    lookups: Optional[LookupContext] = None
    program_rounding: Optional[float] = None


@dataclass
class ResolvedLoad:
    """Outcome of a strategy resolution.

    ``basis`` is the unrounded weight the strategy points at; schemes that
    derive their own percentages (ramps) work from it. ``set_weights`` and
    ``set_reps`` are filled when a weekly lookup prescribes per-set values.
    """

    weight: float
    basis: float
    max_value: float
    percentage: float
    increment: float
    direction: RoundingDirection
    set_weights: list[float] = field(default_factory=list)
    set_reps: list[int] = field(default_factory=list)

    def round(self, value: float) -> float:
        return round_weight(value, self.increment, self.direction)

    def weight_for_set(self, set_number: int) -> float:
        if 1 <= set_number <= len(self.set_weights):
            return self.set_weights[set_number - 1]
        return self.weight

    def reps_for_set(self, set_number: int) -> Optional[int]:
        if 1 <= set_number <= len(self.set_reps):
            return self.set_reps[set_number - 1]
        return None


def rounding_for(
    strategy: LoadStrategy,
    program_rounding: Optional[float] = None,
) -> tuple[float, RoundingDirection]:
    """Pick the increment/direction a strategy rounds with.

    Strategy increment first, then the program default, then the fallback
    precision (nearest 0.25).
    """
    if strategy.rounding_increment:
        return strategy.rounding_increment, strategy.rounding_direction
    if program_rounding:
        return program_rounding, strategy.rounding_direction
    return get_settings().fallback_rounding_precision, strategy.rounding_direction


async def resolve_load(
    strategy: LoadStrategy,
    ctx: ResolutionContext,
    max_lookup: MaxLookup,
) -> ResolvedLoad:
    """Resolve a strategy to a weight for one user and lift.

    Raises:
        MaxNotFoundError: If the referenced max does not exist as of ctx.as_of.
    """
    max_value = await max_lookup.get_current_max(
        ctx.user_id, ctx.lift_id, strategy.reference_type, ctx.as_of
    )
    if max_value is None:
        raise MaxNotFoundError(ctx.user_id, ctx.lift_id, strategy.reference_type.value)

    increment, direction = rounding_for(strategy, ctx.program_rounding)

    if isinstance(strategy, PercentOf):
        return _resolve_percent_of(strategy, max_value, increment, direction)
    if isinstance(strategy, LookupBased):
        return _resolve_lookup_based(strategy, max_value, ctx.lookups, increment, direction)
    raise ValidationError(f"unknown load strategy type: {strategy.type}")


def _resolve_percent_of(
    strategy: PercentOf,
    max_value: float,
    increment: float,
    direction: RoundingDirection,
) -> ResolvedLoad:
    basis = max_value * strategy.percentage / 100
    return ResolvedLoad(
        weight=round_weight(basis, increment, direction),
        basis=basis,
        max_value=max_value,
        percentage=strategy.percentage,
        increment=increment,
        direction=direction,
    )


def _resolve_lookup_based(
    strategy: LookupBased,
    max_value: float,
    lookups: Optional[LookupContext],
    increment: float,
    direction: RoundingDirection,
) -> ResolvedLoad:
    if lookups is None:
        percentage = strategy.percentage
        set_weights: list[float] = []
        set_reps: list[int] = []
    else:
        percentage = lookups.apply_modifiers(strategy.percentage)
        set_weights = [
            round_weight(max_value * lookups.apply_modifiers(strategy.percentage, n) / 100, increment, direction)
            for n in range(1, lookups.set_count() + 1)
        ]
        set_reps = [
            reps
            for reps in (lookups.reps_for_set(n) for n in range(1, lookups.set_count() + 1))
            if reps is not None
        ]

    basis = max_value * percentage / 100
    return ResolvedLoad(
        weight=round_weight(basis, increment, direction),
        basis=basis,
        max_value=max_value,
        percentage=percentage,
        increment=increment,
        direction=direction,
        set_weights=set_weights,
        set_reps=set_reps,
    )
