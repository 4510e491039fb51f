"""Tests for weight rounding and load strategy resolution."""

import uuid
from datetime import date
from typing import Optional

import pytest

from liftcoach.core.errors import MaxNotFoundError, ValidationError
from liftcoach.models.lift import MaxType
from liftcoach.services.load_strategy import (
    LookupBased,
    PercentOf,
    ResolutionContext,
    RoundingDirection,
    parse_load_strategy,
    resolve_load,
    round_weight,
    rounding_for,
    validate_new_strategy,
)
from liftcoach.services.lookups import (
    DailyLookupTable,
    LookupContext,
    WeeklyLookupTable,
)


class FakeMaxes:
    """In-memory max lookup keyed by max type."""

    def __init__(self, **values: float):
        self.values = values
        self.calls = 0

    async def get_current_max(
        self,
        user_id: uuid.UUID,
        lift_id: uuid.UUID,
        max_type: MaxType,
        as_of: Optional[date] = None,
    ) -> Optional[float]:
        self.calls += 1
        return self.values.get(MaxType(max_type).value)


@pytest.fixture
def ctx() -> ResolutionContext:
    return ResolutionContext(user_id=uuid.uuid4(), lift_id=uuid.uuid4())


class TestRoundWeight:
    @pytest.mark.parametrize(
        "weight,increment,direction,expected",
        [
            (341.0, 5, RoundingDirection.NEAREST, 340.0),
            (342.5, 5, RoundingDirection.NEAREST, 345.0),
            (341.0, 5, RoundingDirection.UP, 345.0),
            (344.9, 5, RoundingDirection.DOWN, 340.0),
            (101.1, 2.5, RoundingDirection.NEAREST, 100.0),
            (0.0, 5, RoundingDirection.UP, 0.0),
        ],
    )
    def test_rounding(self, weight, increment, direction, expected):
        assert round_weight(weight, increment, direction) == expected

    def test_float_noise_is_ignored(self):
        """400 * 0.85 lands exactly on a plate multiple."""
        assert round_weight(400 * 85 / 100, 5, RoundingDirection.UP) == 340.0

    def test_nearest_is_idempotent(self):
        once = round_weight(287.3, 2.5)
        assert round_weight(once, 2.5) == once

    def test_negative_weight_rejected(self):
        with pytest.raises(ValidationError):
            round_weight(-1, 5)

    def test_non_positive_increment_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            round_weight(100, 0)
        assert exc_info.value.field == "rounding_increment"


class TestStrategyParsing:
    def test_parse_percent_of(self):
        strategy = parse_load_strategy(
            {"type": "PERCENT_OF", "reference_type": "ONE_RM", "percentage": 75}
        )
        assert isinstance(strategy, PercentOf)
        assert strategy.reference_type == MaxType.ONE_RM
        assert strategy.rounding_direction == RoundingDirection.NEAREST

    def test_parse_lookup_based_defaults(self):
        strategy = parse_load_strategy({"type": "LOOKUP_BASED"})
        assert isinstance(strategy, LookupBased)
        assert strategy.reference_type == MaxType.TRAINING_MAX
        assert strategy.percentage == 100.0

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            parse_load_strategy({"type": "RPE_BASED", "percentage": 80})

    def test_authoring_fills_default_increment(self):
        strategy = validate_new_strategy(
            PercentOf(reference_type=MaxType.TRAINING_MAX, percentage=80)
        )
        assert strategy.rounding_increment == 2.5

    def test_authoring_rejects_percentage_over_100(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_new_strategy(PercentOf(reference_type=MaxType.ONE_RM, percentage=105))
        assert exc_info.value.field == "percentage"

    async def test_resolution_allows_percentage_over_100(self, ctx):
        """Stored overloads (e.g. 105%) still resolve."""
        strategy = PercentOf(reference_type=MaxType.ONE_RM, percentage=105, rounding_increment=5)
        load = await resolve_load(strategy, ctx, FakeMaxes(ONE_RM=200))
        assert load.weight == 210.0


class TestRoundingFor:
    def test_strategy_increment_wins(self):
        strategy = PercentOf(
            reference_type=MaxType.ONE_RM,
            percentage=80,
            rounding_increment=5,
            rounding_direction=RoundingDirection.DOWN,
        )
        assert rounding_for(strategy, program_rounding=2.5) == (5, RoundingDirection.DOWN)

    def test_program_default_used(self):
        strategy = PercentOf(reference_type=MaxType.ONE_RM, percentage=80)
        assert rounding_for(strategy, program_rounding=2.5)[0] == 2.5

    def test_fallback_precision(self):
        strategy = PercentOf(reference_type=MaxType.ONE_RM, percentage=80)
        assert rounding_for(strategy)[0] == 0.25


class TestResolveLoad:
    async def test_percent_of_training_max(self, ctx):
        strategy = PercentOf(
            reference_type=MaxType.TRAINING_MAX, percentage=85, rounding_increment=5
        )
        load = await resolve_load(strategy, ctx, FakeMaxes(TRAINING_MAX=400))

        assert load.weight == 340.0
        assert load.max_value == 400
        assert load.basis == pytest.approx(340.0)
        assert load.set_weights == []

    async def test_uses_requested_max_type(self, ctx):
        strategy = PercentOf(reference_type=MaxType.ONE_RM, percentage=50, rounding_increment=5)
        load = await resolve_load(strategy, ctx, FakeMaxes(ONE_RM=300, TRAINING_MAX=270))

        assert load.weight == 150.0

    async def test_missing_max_raises(self, ctx):
        strategy = PercentOf(reference_type=MaxType.ONE_RM, percentage=80)

        with pytest.raises(MaxNotFoundError) as exc_info:
            await resolve_load(strategy, ctx, FakeMaxes(TRAINING_MAX=270))
        assert exc_info.value.max_type == "ONE_RM"

    async def test_lookup_based_without_tables_uses_base_percentage(self, ctx):
        strategy = LookupBased(percentage=80, rounding_increment=5)
        load = await resolve_load(strategy, ctx, FakeMaxes(TRAINING_MAX=300))

        assert load.weight == 240.0
        assert load.percentage == 80

    async def test_lookup_based_weekly_per_set(self, ctx):
        ctx.lookups = LookupContext(
            week_number=1,
            weekly=WeeklyLookupTable(
                entries=[{"week_number": 1, "percentages": [65, 75, 85], "reps": [5, 5, 5]}]
            ),
        )
        strategy = LookupBased(rounding_increment=5)
        load = await resolve_load(strategy, ctx, FakeMaxes(TRAINING_MAX=300))

        assert load.set_weights == [195.0, 225.0, 255.0]
        assert load.set_reps == [5, 5, 5]
        assert load.weight_for_set(2) == 225.0
        assert load.reps_for_set(4) is None

    async def test_lookup_based_weekly_and_daily_modifiers(self, ctx):
        ctx.lookups = LookupContext(
            week_number=3,
            day_slug="Light-Day",
            weekly=WeeklyLookupTable(entries=[{"week_number": 3, "percentage_modifier": 90}]),
            daily=DailyLookupTable(
                entries=[{"day_identifier": "light-day", "percentage_modifier": 80}]
            ),
        )
        strategy = LookupBased(percentage=100, rounding_increment=2.5)
        load = await resolve_load(strategy, ctx, FakeMaxes(TRAINING_MAX=300))

        # 300 * 0.90 * 0.80 = 216, nearest 2.5
        assert load.percentage == pytest.approx(72.0)
        assert load.weight == 215.0

    async def test_program_rounding_applies(self, ctx):
        ctx.program_rounding = 10
        strategy = PercentOf(reference_type=MaxType.TRAINING_MAX, percentage=85)
        load = await resolve_load(strategy, ctx, FakeMaxes(TRAINING_MAX=400))

        assert load.weight == 340.0
        assert load.increment == 10


class TestLookupTables:
    def test_weekly_lengths_must_match(self):
        with pytest.raises(ValueError):
            WeeklyLookupTable(
                entries=[{"week_number": 1, "percentages": [65, 75], "reps": [5, 5, 5]}]
            )

    def test_weekly_weeks_must_be_unique(self):
        with pytest.raises(ValueError):
            WeeklyLookupTable(
                entries=[
                    {"week_number": 1, "percentage_modifier": 90},
                    {"week_number": 1, "percentage_modifier": 95},
                ]
            )

    def test_daily_lookup_is_case_insensitive(self):
        table = DailyLookupTable(
            entries=[{"day_identifier": "Heavy", "percentage_modifier": 100}]
        )
        assert table.entry_for("heavy") is not None
        assert table.entry_for("light") is None

    def test_missing_week_leaves_percentage_alone(self):
        ctx = LookupContext(
            week_number=4,
            weekly=WeeklyLookupTable(entries=[{"week_number": 1, "percentage_modifier": 90}]),
        )
        assert ctx.apply_modifiers(80) == 80
        assert ctx.set_count() == 0
