"""Set schemes: turn a resolved load into a list of sets.

FIXED, RAMP, AMRAP and REP_RANGE schemes are stateless and fully generated up
front. MRS, TOTAL_REPS and FATIGUE_DROP are variable schemes: generation
yields one provisional opening set, and every further set is proposed by
``next_set`` from what has already been logged in the session.
"""

import math
from dataclasses import dataclass
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, model_validator

from liftcoach.core.config import get_settings
from liftcoach.core.errors import NoSetsLoggedError, UnsupportedSchemeError
from liftcoach.services.load_strategy import ResolvedLoad, RoundingDirection, round_weight

TERMINATION_TARGET_REACHED = "target_reached"
TERMINATION_MAX_SETS = "max_sets_reached"
TERMINATION_RPE_THRESHOLD = "rpe_threshold"
TERMINATION_WEIGHT_EXHAUSTED = "weight_exhausted"


# -------------------------------------------------------------------------
# Scheme variants
# -------------------------------------------------------------------------


class Fixed(BaseModel):
    type: Literal["FIXED"] = "FIXED"
    sets: int = Field(..., ge=1)
    reps: int = Field(..., ge=1)


class Amrap(BaseModel):
    """As-many-reps-as-possible sets; ``min_reps`` is what counts as success."""

    type: Literal["AMRAP"] = "AMRAP"
    sets: int = Field(..., ge=1)
    min_reps: int = Field(..., ge=1)


class RepRange(BaseModel):
    type: Literal["REP_RANGE"] = "REP_RANGE"
    sets: int = Field(..., ge=1)
    min_reps: int = Field(..., ge=1)
    max_reps: int = Field(..., ge=1)

    @model_validator(mode="after")
    def _range_is_ordered(self) -> "RepRange":
        if self.max_reps < self.min_reps:
            raise ValueError("max_reps must be at least min_reps")
        return self


class RampStep(BaseModel):
    percentage: float = Field(..., gt=0)
    reps: int = Field(..., ge=1)


class Ramp(BaseModel):
    """Ascending (or any declared order) percentage steps.

    A step is a work set when its percentage reaches ``work_set_threshold``;
    an unset or non-positive threshold means the configured default (80).
    """

    type: Literal["RAMP"] = "RAMP"
    steps: list[RampStep] = Field(..., min_length=1)
    work_set_threshold: Optional[float] = Field(None, ge=0, le=100)


class MRS(BaseModel):
    """Target-total-reps scheme: keep doing sets until the rep total is hit."""

    type: Literal["MRS"] = "MRS"
    target_total_reps: int = Field(..., ge=1)
    min_reps_per_set: int = Field(..., ge=1)
    max_sets: int = Field(0, ge=0)

    @model_validator(mode="after")
    def _target_covers_minimum(self) -> "MRS":
        if self.target_total_reps < self.min_reps_per_set:
            raise ValueError("target_total_reps must be at least min_reps_per_set")
        return self


class TotalReps(BaseModel):
    """Accumulate ``target_total_reps`` at one weight in as many sets as it takes.

    Unlike MRS there is no per-set minimum; each set just suggests
    ``suggested_reps_per_set``.
    """

    type: Literal["TOTAL_REPS"] = "TOTAL_REPS"
    target_total_reps: int = Field(..., ge=1)
    suggested_reps_per_set: int = Field(10, ge=1)
    max_sets: int = Field(20, ge=1)


class FatigueDrop(BaseModel):
    """Top set at ``start_rpe``, then drop the load until ``stop_rpe`` is hit."""

    type: Literal["FATIGUE_DROP"] = "FATIGUE_DROP"
    target_reps: int = Field(..., ge=1)
    start_rpe: float = Field(..., ge=1, le=10)
    stop_rpe: float = Field(..., ge=1, le=10)
    drop_percent: float = Field(..., gt=0, lt=1)
    max_sets: int = Field(0, ge=0)

    @model_validator(mode="after")
    def _stop_above_start(self) -> "FatigueDrop":
        if self.stop_rpe <= self.start_rpe:
            raise ValueError("stop_rpe must be greater than start_rpe")
        return self


SetScheme = Annotated[
    Union[Fixed, Ramp, Amrap, RepRange, MRS, TotalReps, FatigueDrop],
    Field(discriminator="type"),
]

set_scheme_adapter: TypeAdapter[SetScheme] = TypeAdapter(SetScheme)

VARIABLE_SCHEMES = (MRS, TotalReps, FatigueDrop)


def parse_set_scheme(data: dict) -> SetScheme:
    """Parse the stored JSON form of a scheme."""
    return set_scheme_adapter.validate_python(data)


def is_variable(scheme: SetScheme) -> bool:
    return isinstance(scheme, VARIABLE_SCHEMES)


# -------------------------------------------------------------------------
# Results
# -------------------------------------------------------------------------


@dataclass
class GeneratedSet:
    """One concrete set to perform."""

    set_number: int
    weight: float
    target_reps: int
    is_work_set: bool
    is_provisional: bool = False
    target_rpe: Optional[float] = None
    is_amrap: bool = False
    max_reps: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "set_number": self.set_number,
            "weight": self.weight,
            "target_reps": self.target_reps,
            "is_work_set": self.is_work_set,
            "is_provisional": self.is_provisional,
            "target_rpe": self.target_rpe,
            "is_amrap": self.is_amrap,
            "max_reps": self.max_reps,
        }


@dataclass
class SetHistoryEntry:
    """A set already performed in the current session."""

    set_number: int
    weight: float
    reps_performed: int
    rpe: Optional[float] = None


@dataclass
class NextSetResult:
    next_set: Optional[GeneratedSet]
    is_complete: bool
    total_sets_completed: int
    total_reps_completed: int
    termination_reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "next_set": self.next_set.to_dict() if self.next_set else None,
            "is_complete": self.is_complete,
            "total_sets_completed": self.total_sets_completed,
            "total_reps_completed": self.total_reps_completed,
            "termination_reason": self.termination_reason,
        }


# -------------------------------------------------------------------------
# Generation
# -------------------------------------------------------------------------


def generate_sets(scheme: SetScheme, load: ResolvedLoad) -> list[GeneratedSet]:
    """Generate the sets for a scheme at a resolved load.

    Args:
        scheme: Parsed set scheme.
        load: Output of load strategy resolution.

    Returns:
        Sets in execution order, numbered from 1.
    """
    if isinstance(scheme, Fixed):
        return _generate_fixed(scheme, load)
    if isinstance(scheme, Ramp):
        return _generate_ramp(scheme, load)
    if isinstance(scheme, Amrap):
        return [
            GeneratedSet(n, load.weight_for_set(n), scheme.min_reps, True, is_amrap=True)
            for n in range(1, scheme.sets + 1)
        ]
    if isinstance(scheme, RepRange):
        return [
            GeneratedSet(n, load.weight_for_set(n), scheme.min_reps, True, max_reps=scheme.max_reps)
            for n in range(1, scheme.sets + 1)
        ]
    if isinstance(scheme, MRS):
        return [
            GeneratedSet(1, load.weight, scheme.min_reps_per_set, True, is_provisional=True)
        ]
    if isinstance(scheme, TotalReps):
        return [
            GeneratedSet(1, load.weight, scheme.suggested_reps_per_set, True, is_provisional=True)
        ]
    if isinstance(scheme, FatigueDrop):
        return [
            GeneratedSet(
                1,
                load.weight,
                scheme.target_reps,
                True,
                is_provisional=True,
                target_rpe=scheme.start_rpe,
            )
        ]
    raise UnsupportedSchemeError(getattr(scheme, "type", type(scheme).__name__))


def _generate_fixed(scheme: Fixed, load: ResolvedLoad) -> list[GeneratedSet]:
    return [
        GeneratedSet(
            set_number=n,
            weight=load.weight_for_set(n),
            target_reps=load.reps_for_set(n) or scheme.reps,
            is_work_set=True,
        )
        for n in range(1, scheme.sets + 1)
    ]


def _generate_ramp(scheme: Ramp, load: ResolvedLoad) -> list[GeneratedSet]:
    threshold = scheme.work_set_threshold
    if threshold is None or threshold <= 0:
        threshold = get_settings().ramp_default_work_set_threshold

    return [
        GeneratedSet(
            set_number=i + 1,
            weight=load.round(load.basis * step.percentage / 100),
            target_reps=step.reps,
            is_work_set=step.percentage >= threshold,
        )
        for i, step in enumerate(scheme.steps)
    ]


# -------------------------------------------------------------------------
# Variable schemes
# -------------------------------------------------------------------------


def next_set(
    scheme: SetScheme,
    history: list[SetHistoryEntry],
    increment: Optional[float] = None,
) -> NextSetResult:
    """Propose the next set of a variable scheme from the session history.

    Args:
        scheme: Parsed set scheme; must be MRS, TOTAL_REPS or FATIGUE_DROP.
        history: Sets logged so far for this prescription in this session.
        increment: Plate increment for load drops (FATIGUE_DROP only).

    Raises:
        UnsupportedSchemeError: For fully generated schemes (FIXED, RAMP, AMRAP,
            REP_RANGE).
        NoSetsLoggedError: If nothing has been logged yet.
    """
    if not is_variable(scheme):
        raise UnsupportedSchemeError(scheme.type)
    if not history:
        raise NoSetsLoggedError()

    ordered = sorted(history, key=lambda s: s.set_number)
    if isinstance(scheme, MRS):
        return _next_mrs_set(scheme, ordered)
    if isinstance(scheme, TotalReps):
        return _next_total_reps_set(scheme, ordered)
    return _next_fatigue_drop_set(scheme, ordered, increment)


def _max_sets(configured: int) -> int:
    return configured if configured > 0 else get_settings().variable_scheme_default_max_sets


def _next_mrs_set(scheme: MRS, ordered: list[SetHistoryEntry]) -> NextSetResult:
    total_reps = sum(s.reps_performed for s in ordered)
    total_sets = len(ordered)
    last_number = ordered[-1].set_number
    max_sets = _max_sets(scheme.max_sets)

    if total_reps >= scheme.target_total_reps:
        return NextSetResult(None, True, total_sets, total_reps, TERMINATION_TARGET_REACHED)

    next_number = last_number + 1
    if next_number > max_sets:
        return NextSetResult(None, True, total_sets, total_reps, TERMINATION_MAX_SETS)

    remaining = scheme.target_total_reps - total_reps
    sets_left = max_sets - last_number
    adaptive = min(remaining, math.ceil(remaining / sets_left))
    proposal = GeneratedSet(
        set_number=next_number,
        weight=ordered[0].weight,
        target_reps=max(scheme.min_reps_per_set, adaptive),
        is_work_set=True,
    )
    return NextSetResult(proposal, False, total_sets, total_reps)


def _next_total_reps_set(scheme: TotalReps, ordered: list[SetHistoryEntry]) -> NextSetResult:
    total_reps = sum(s.reps_performed for s in ordered)
    total_sets = len(ordered)

    if total_reps >= scheme.target_total_reps:
        return NextSetResult(None, True, total_sets, total_reps, TERMINATION_TARGET_REACHED)
    if total_sets >= scheme.max_sets:
        return NextSetResult(None, True, total_sets, total_reps, TERMINATION_MAX_SETS)

    proposal = GeneratedSet(
        set_number=ordered[-1].set_number + 1,
        weight=ordered[0].weight,
        target_reps=scheme.suggested_reps_per_set,
        is_work_set=True,
    )
    return NextSetResult(proposal, False, total_sets, total_reps)


def _next_fatigue_drop_set(
    scheme: FatigueDrop,
    ordered: list[SetHistoryEntry],
    increment: Optional[float],
) -> NextSetResult:
    total_reps = sum(s.reps_performed for s in ordered)
    total_sets = len(ordered)
    last = ordered[-1]

    if last.rpe is not None and last.rpe >= scheme.stop_rpe:
        return NextSetResult(None, True, total_sets, total_reps, TERMINATION_RPE_THRESHOLD)

    next_number = last.set_number + 1
    if next_number > _max_sets(scheme.max_sets):
        return NextSetResult(None, True, total_sets, total_reps, TERMINATION_MAX_SETS)

    step = increment or get_settings().fatigue_drop_rounding_increment
    weight = round_weight(last.weight * (1 - scheme.drop_percent), step, RoundingDirection.DOWN)
    if weight <= 0:
        return NextSetResult(None, True, total_sets, total_reps, TERMINATION_WEIGHT_EXHAUSTED)

    proposal = GeneratedSet(
        set_number=next_number,
        weight=weight,
        target_reps=scheme.target_reps,
        is_work_set=True,
    )
    return NextSetResult(proposal, False, total_sets, total_reps)
