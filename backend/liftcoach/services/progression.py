"""Progression rules and their pure evaluation.

A rule adjusts the lifter's ``max_type`` when its trigger happens:

- LINEAR_PROGRESSION: add ``increment`` after a session or a week.
- CYCLE_PROGRESSION: add ``increment`` when a cycle completes.
- AMRAP_PROGRESSION: after an AMRAP set, add the increment of the highest
  rep threshold reached.
- DOUBLE_PROGRESSION: after a set that reaches the top of its rep range,
  add ``increment``.
- DELOAD_ON_FAILURE: after ``failure_threshold`` consecutive failed sets,
  take a percentage or a fixed amount off.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator

from liftcoach.models.lift import MaxType
from liftcoach.models.progression import Progression, ProgressionType, TriggerType

LINEAR_TRIGGERS = (TriggerType.AFTER_SESSION, TriggerType.AFTER_WEEK)
SET_TRIGGERS = (TriggerType.AFTER_SET, TriggerType.ON_FAILURE)


class LinearProgression(BaseModel):
    type: Literal["LINEAR_PROGRESSION"] = "LINEAR_PROGRESSION"
    increment: float = Field(..., gt=0)
    max_type: MaxType
    trigger_type: TriggerType

    @field_validator("trigger_type")
    @classmethod
    def _session_or_week(cls, value: TriggerType) -> TriggerType:
        if value not in LINEAR_TRIGGERS:
            raise ValueError("linear progressions trigger AFTER_SESSION or AFTER_WEEK")
        return value


class CycleProgression(BaseModel):
    """Fires at cycle boundaries; it has no trigger type of its own."""

    type: Literal["CYCLE_PROGRESSION"] = "CYCLE_PROGRESSION"
    increment: float = Field(..., gt=0)
    max_type: MaxType

    @property
    def trigger_type(self) -> TriggerType:
        return TriggerType.AFTER_CYCLE


class AmrapThreshold(BaseModel):
    min_reps: int = Field(..., ge=0)
    increment: float = Field(..., gt=0)


class AmrapProgression(BaseModel):
    """Rep-performance based increase, evaluated after every AMRAP set.

    Thresholds are kept sorted by ``min_reps``; the highest one reached wins.
    """

    type: Literal["AMRAP_PROGRESSION"] = "AMRAP_PROGRESSION"
    max_type: MaxType
    thresholds: list[AmrapThreshold] = Field(..., min_length=1)

    @field_validator("thresholds")
    @classmethod
    def _sorted_and_unique(cls, value: list[AmrapThreshold]) -> list[AmrapThreshold]:
        ordered = sorted(value, key=lambda t: t.min_reps)
        reps = [t.min_reps for t in ordered]
        if len(set(reps)) != len(reps):
            raise ValueError("threshold min_reps values must be unique")
        return ordered

    @property
    def trigger_type(self) -> TriggerType:
        return TriggerType.AFTER_SET


class DoubleProgression(BaseModel):
    type: Literal["DOUBLE_PROGRESSION"] = "DOUBLE_PROGRESSION"
    increment: float = Field(..., gt=0)
    max_type: MaxType

    @property
    def trigger_type(self) -> TriggerType:
        return TriggerType.AFTER_SET


class DeloadType(str, Enum):
    PERCENT = "PERCENT"
    FIXED = "FIXED"


class DeloadOnFailure(BaseModel):
    """Reduce the max once a lift has failed ``failure_threshold`` sets in a row.

    PERCENT takes ``deload_percent`` (0-1] of the current max off, FIXED takes
    ``deload_amount``. With ``reset_on_deload`` the failure count starts over
    after a deload.
    """

    type: Literal["DELOAD_ON_FAILURE"] = "DELOAD_ON_FAILURE"
    max_type: MaxType
    failure_threshold: int = Field(..., ge=1)
    deload_type: DeloadType
    deload_percent: Optional[float] = Field(None, gt=0, le=1)
    deload_amount: Optional[float] = Field(None, gt=0)
    reset_on_deload: bool = True

    @model_validator(mode="after")
    def _amount_for_type(self) -> "DeloadOnFailure":
        if self.deload_type == DeloadType.PERCENT and self.deload_percent is None:
            raise ValueError("deload_percent is required for PERCENT deloads")
        if self.deload_type == DeloadType.FIXED and self.deload_amount is None:
            raise ValueError("deload_amount is required for FIXED deloads")
        return self

    @property
    def trigger_type(self) -> TriggerType:
        return TriggerType.ON_FAILURE

    def deload_for(self, current: float) -> float:
        if self.deload_type == DeloadType.PERCENT:
            return current * self.deload_percent
        return self.deload_amount


ProgressionRule = Annotated[
    Union[
        LinearProgression,
        CycleProgression,
        AmrapProgression,
        DoubleProgression,
        DeloadOnFailure,
    ],
    Field(discriminator="type"),
]

progression_rule_adapter: TypeAdapter[ProgressionRule] = TypeAdapter(ProgressionRule)


def parse_rule(progression_type: str, parameters: dict) -> ProgressionRule:
    """Validate a progression definition.

    Raises:
        pydantic.ValidationError: On unknown types or bad parameters.
    """
    data = {k: v for k, v in (parameters or {}).items() if k != "type"}
    return progression_rule_adapter.validate_python({"type": progression_type, **data})


def rule_of(progression: Progression) -> ProgressionRule:
    return parse_rule(progression.progression_type, progression.parameters)


def rule_parameters(rule: ProgressionRule) -> dict:
    """Stored JSON form of a rule's parameters (type lives in its own column)."""
    return rule.model_dump(mode="json", exclude={"type"})


@dataclass
class TriggerEvent:
    """Something that happened to an enrollment which may fire progressions.

    The set fields (``lift_id`` through ``consecutive_failures``) are only
    filled for AFTER_SET and ON_FAILURE events.
    """

    trigger_type: TriggerType
    user_id: uuid.UUID
    program_id: uuid.UUID
    cycle_iteration: int
    week_number: int
    timestamp: datetime
    day_index: Optional[int] = None
    session_id: Optional[uuid.UUID] = None
    lifts_performed: Optional[set[uuid.UUID]] = None
    source: str = "event"  # "event" | "manual"
    lift_id: Optional[uuid.UUID] = None
    logged_set_id: Optional[uuid.UUID] = None
    reps_performed: Optional[int] = None
    target_reps: Optional[int] = None
    max_reps: Optional[int] = None
    is_amrap: bool = False
    consecutive_failures: Optional[int] = None

    @property
    def day_key(self) -> str:
        return f"cycle:{self.cycle_iteration}:week:{self.week_number}:day:{self.day_index or 0}"

    @property
    def period_key(self) -> str:
        """Idempotency scope: at most one unforced application per key."""
        if self.trigger_type in SET_TRIGGERS:
            if self.logged_set_id is not None:
                return f"set:{self.logged_set_id}"
            return self.day_key
        if self.trigger_type == TriggerType.AFTER_SESSION:
            if self.session_id is not None:
                return f"session:{self.session_id}"
            return self.day_key
        if self.trigger_type == TriggerType.AFTER_WEEK:
            return f"cycle:{self.cycle_iteration}:week:{self.week_number}"
        return f"cycle:{self.cycle_iteration}"

    def to_context(self) -> dict:
        context = {
            "source": self.source,
            "program_id": str(self.program_id),
            "cycle_iteration": self.cycle_iteration,
            "week_number": self.week_number,
            "day_index": self.day_index,
            "session_id": str(self.session_id) if self.session_id else None,
            "lifts_performed": sorted(str(l) for l in self.lifts_performed)
            if self.lifts_performed is not None
            else None,
        }
        if self.trigger_type in SET_TRIGGERS:
            context.update(
                {
                    "logged_set_id": str(self.logged_set_id) if self.logged_set_id else None,
                    "reps_performed": self.reps_performed,
                    "target_reps": self.target_reps,
                    "max_reps": self.max_reps,
                    "is_amrap": self.is_amrap,
                    "consecutive_failures": self.consecutive_failures,
                }
            )
        return context


@dataclass
class ProgressionResult:
    applied: bool
    lift_id: uuid.UUID
    max_type: MaxType
    previous_value: float
    new_value: float
    delta: float
    reason: str = ""
    applied_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "applied": self.applied,
            "lift_id": str(self.lift_id),
            "max_type": self.max_type.value,
            "previous_value": self.previous_value,
            "new_value": self.new_value,
            "delta": self.delta,
            "reason": self.reason,
            "applied_at": self.applied_at.isoformat() if self.applied_at else None,
        }


def evaluate(
    rule: ProgressionRule,
    event: TriggerEvent,
    lift_id: uuid.UUID,
    previous_value: float,
    increment_override: Optional[float] = None,
) -> ProgressionResult:
    """Decide whether a rule fires for one lift and compute the new max.

    Linear, cycle and double progressions add the rule's increment, or the
    program's override when one is set. AMRAP progressions add the reached
    threshold's increment and deloads subtract.
    """
    not_applied = ProgressionResult(
        applied=False,
        lift_id=lift_id,
        max_type=rule.max_type,
        previous_value=previous_value,
        new_value=previous_value,
        delta=0.0,
    )

    if rule.trigger_type != event.trigger_type:
        not_applied.reason = (
            f"trigger type mismatch: rule fires {rule.trigger_type.value}, "
            f"event is {event.trigger_type.value}"
        )
        return not_applied

    if (
        isinstance(rule, LinearProgression)
        and rule.trigger_type == TriggerType.AFTER_SESSION
        and event.lifts_performed is not None
        and lift_id not in event.lifts_performed
    ):
        not_applied.reason = "lift not performed in session"
        return not_applied

    delta, reason = _delta(rule, event, previous_value, increment_override)
    if delta is None:
        not_applied.reason = reason
        return not_applied

    return ProgressionResult(
        applied=True,
        lift_id=lift_id,
        max_type=rule.max_type,
        previous_value=previous_value,
        new_value=round(previous_value + delta, 6),
        delta=delta,
        reason=reason,
    )


def _delta(
    rule: ProgressionRule,
    event: TriggerEvent,
    previous_value: float,
    increment_override: Optional[float],
) -> tuple[Optional[float], str]:
    """Signed change to apply, or (None, reason) when the rule does not fire."""
    if isinstance(rule, AmrapProgression):
        if not event.is_amrap:
            return None, "set is not an AMRAP set"
        if event.reps_performed is None:
            return None, "reps performed unknown"
        reached = [t for t in rule.thresholds if event.reps_performed >= t.min_reps]
        if not reached:
            return None, (
                f"no threshold met: reps={event.reps_performed}, "
                f"minimum required={rule.thresholds[0].min_reps}"
            )
        increment = reached[-1].increment
        return increment, f"AMRAP {event.reps_performed} reps +{increment:g}"

    if isinstance(rule, DoubleProgression):
        if event.reps_performed is None:
            return None, "reps performed unknown"
        if event.max_reps is None:
            return None, "set has no rep ceiling"
        if event.reps_performed < event.max_reps:
            return None, (
                f"rep ceiling not reached: performed {event.reps_performed}, "
                f"need {event.max_reps}"
            )
        increment = increment_override if increment_override else rule.increment
        return increment, f"{ProgressionType(rule.type).value} +{increment:g}"

    if isinstance(rule, DeloadOnFailure):
        failures = event.consecutive_failures or 0
        if failures < rule.failure_threshold:
            return None, (
                f"failure threshold not met: {failures} consecutive failures, "
                f"need {rule.failure_threshold}"
            )
        amount = rule.deload_for(previous_value)
        if amount >= previous_value:
            return None, f"deload of {amount:g} would leave no weight"
        return -amount, f"deload after {failures} failures -{amount:g}"

    increment = increment_override if increment_override else rule.increment
    return increment, f"{ProgressionType(rule.type).value} +{increment:g}"


@dataclass
class TriggerResult:
    """Outcome of one progression for one lift."""

    progression_id: uuid.UUID
    lift_id: uuid.UUID
    applied: bool = False
    skipped: bool = False
    skip_reason: Optional[str] = None
    result: Optional[ProgressionResult] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "progression_id": str(self.progression_id),
            "lift_id": str(self.lift_id),
            "applied": self.applied,
            "skipped": self.skipped,
            "skip_reason": self.skip_reason,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error,
        }


@dataclass
class AggregateTriggerResult:
    """Per-lift outcomes in application (priority) order."""

    results: list[TriggerResult] = field(default_factory=list)

    @property
    def total_applied(self) -> int:
        return sum(1 for r in self.results if r.applied)

    @property
    def total_skipped(self) -> int:
        return sum(1 for r in self.results if r.skipped)

    @property
    def total_errors(self) -> int:
        return sum(1 for r in self.results if r.error)

    def extend(self, other: "AggregateTriggerResult") -> None:
        self.results.extend(other.results)

    def to_dict(self) -> dict:
        return {
            "results": [r.to_dict() for r in self.results],
            "total_applied": self.total_applied,
            "total_skipped": self.total_skipped,
            "total_errors": self.total_errors,
        }
