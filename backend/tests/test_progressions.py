"""Tests for progression rules, manual triggers and history."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from liftcoach.core.errors import (
    NoApplicableProgressionsError,
    ProgressionNotFoundError,
    UserNotEnrolledError,
    ValidationError,
)
from liftcoach.models.lift import Lift, MaxType
from liftcoach.models.progression import Progression, ProgressionHistory, TriggerType
from liftcoach.models.user import User
from liftcoach.services.enrollment_service import EnrollmentService
from liftcoach.services.max_store import MaxStore
from liftcoach.services.progression import (
    AmrapProgression,
    AmrapThreshold,
    CycleProgression,
    DeloadOnFailure,
    DeloadType,
    DoubleProgression,
    LinearProgression,
    TriggerEvent,
    evaluate,
    parse_rule,
)
from liftcoach.services.progression_service import ProgressionService


def make_event(trigger_type: TriggerType, **kwargs) -> TriggerEvent:
    defaults = dict(
        user_id=uuid.uuid4(),
        program_id=uuid.uuid4(),
        cycle_iteration=2,
        week_number=3,
        timestamp=datetime.now(timezone.utc),
    )
    defaults.update(kwargs)
    return TriggerEvent(trigger_type=trigger_type, **defaults)


@pytest.fixture
async def enrolled(db_session: AsyncSession, test_user: User, program: dict, training_maxes) -> dict:
    await EnrollmentService(db_session).enroll(test_user.id, program["program"].id)
    await db_session.commit()
    return program


@pytest.fixture
async def weekly_linear(db_session: AsyncSession) -> Progression:
    progression = await ProgressionService(db_session).create_progression(
        "Add 5 weekly",
        "LINEAR_PROGRESSION",
        {"increment": 5, "max_type": "TRAINING_MAX", "trigger_type": "AFTER_WEEK"},
    )
    await db_session.commit()
    return progression


class TestRules:
    def test_parse_linear(self):
        rule = parse_rule(
            "LINEAR_PROGRESSION",
            {"increment": 2.5, "max_type": "TRAINING_MAX", "trigger_type": "AFTER_SESSION"},
        )
        assert isinstance(rule, LinearProgression)
        assert rule.trigger_type == TriggerType.AFTER_SESSION

    def test_linear_cannot_fire_after_cycle(self):
        with pytest.raises(ValueError):
            parse_rule(
                "LINEAR_PROGRESSION",
                {"increment": 5, "max_type": "TRAINING_MAX", "trigger_type": "AFTER_CYCLE"},
            )

    def test_cycle_always_fires_after_cycle(self):
        rule = parse_rule("CYCLE_PROGRESSION", {"increment": 10, "max_type": "ONE_RM"})
        assert isinstance(rule, CycleProgression)
        assert rule.trigger_type == TriggerType.AFTER_CYCLE

    def test_increment_must_be_positive(self):
        with pytest.raises(ValueError):
            parse_rule("CYCLE_PROGRESSION", {"increment": 0, "max_type": "ONE_RM"})

    def test_evaluate_applies_increment(self):
        rule = LinearProgression(
            increment=5, max_type=MaxType.TRAINING_MAX, trigger_type=TriggerType.AFTER_WEEK
        )
        result = evaluate(rule, make_event(TriggerType.AFTER_WEEK), uuid.uuid4(), 300)

        assert result.applied
        assert result.new_value == 305
        assert result.delta == 5

    def test_evaluate_override_increment(self):
        rule = CycleProgression(increment=10, max_type=MaxType.ONE_RM)
        result = evaluate(rule, make_event(TriggerType.AFTER_CYCLE), uuid.uuid4(), 400, 5)

        assert result.new_value == 405

    def test_evaluate_trigger_mismatch(self):
        rule = CycleProgression(increment=10, max_type=MaxType.ONE_RM)
        result = evaluate(rule, make_event(TriggerType.AFTER_WEEK), uuid.uuid4(), 400)

        assert not result.applied
        assert result.new_value == 400
        assert "mismatch" in result.reason

    def test_evaluate_session_lift_not_performed(self):
        rule = LinearProgression(
            increment=5, max_type=MaxType.TRAINING_MAX, trigger_type=TriggerType.AFTER_SESSION
        )
        event = make_event(TriggerType.AFTER_SESSION, lifts_performed={uuid.uuid4()})

        result = evaluate(rule, event, uuid.uuid4(), 300)

        assert not result.applied
        assert result.reason == "lift not performed in session"

    def test_period_keys(self):
        session_id = uuid.uuid4()
        assert make_event(TriggerType.AFTER_SESSION, session_id=session_id).period_key == (
            f"session:{session_id}"
        )
        assert make_event(TriggerType.AFTER_SESSION, day_index=1).period_key == (
            "cycle:2:week:3:day:1"
        )
        assert make_event(TriggerType.AFTER_WEEK).period_key == "cycle:2:week:3"
        assert make_event(TriggerType.AFTER_CYCLE).period_key == "cycle:2"


    def test_amrap_thresholds_sorted(self):
        rule = parse_rule(
            "AMRAP_PROGRESSION",
            {
                "max_type": "TRAINING_MAX",
                "thresholds": [{"min_reps": 8, "increment": 10}, {"min_reps": 5, "increment": 5}],
            },
        )
        assert isinstance(rule, AmrapProgression)
        assert [t.min_reps for t in rule.thresholds] == [5, 8]
        assert rule.trigger_type == TriggerType.AFTER_SET

    def test_amrap_thresholds_unique(self):
        with pytest.raises(ValueError):
            parse_rule(
                "AMRAP_PROGRESSION",
                {
                    "max_type": "TRAINING_MAX",
                    "thresholds": [{"min_reps": 5, "increment": 5}, {"min_reps": 5, "increment": 10}],
                },
            )

    def test_deload_requires_amount_for_type(self):
        with pytest.raises(ValueError):
            parse_rule(
                "DELOAD_ON_FAILURE",
                {"max_type": "TRAINING_MAX", "failure_threshold": 3, "deload_type": "PERCENT"},
            )
        with pytest.raises(ValueError):
            parse_rule(
                "DELOAD_ON_FAILURE",
                {
                    "max_type": "TRAINING_MAX",
                    "failure_threshold": 3,
                    "deload_type": "FIXED",
                    "deload_percent": 0.1,
                },
            )
        rule = parse_rule(
            "DELOAD_ON_FAILURE",
            {"max_type": "ONE_RM", "failure_threshold": 3, "deload_type": "FIXED", "deload_amount": 10},
        )
        assert isinstance(rule, DeloadOnFailure)
        assert rule.trigger_type == TriggerType.ON_FAILURE

    def test_evaluate_amrap_highest_threshold(self):
        rule = AmrapProgression(
            max_type=MaxType.TRAINING_MAX,
            thresholds=[
                AmrapThreshold(min_reps=5, increment=5),
                AmrapThreshold(min_reps=8, increment=10),
                AmrapThreshold(min_reps=12, increment=15),
            ],
        )
        event = make_event(TriggerType.AFTER_SET, is_amrap=True, reps_performed=9)

        result = evaluate(rule, event, uuid.uuid4(), 300)

        assert result.new_value == 310
        assert result.reason == "AMRAP 9 reps +10"

    def test_evaluate_amrap_needs_amrap_set(self):
        rule = AmrapProgression(
            max_type=MaxType.TRAINING_MAX, thresholds=[AmrapThreshold(min_reps=5, increment=5)]
        )
        event = make_event(TriggerType.AFTER_SET, is_amrap=False, reps_performed=9)

        result = evaluate(rule, event, uuid.uuid4(), 300)

        assert not result.applied
        assert result.reason == "set is not an AMRAP set"

    def test_evaluate_double_progression(self):
        rule = DoubleProgression(increment=5, max_type=MaxType.TRAINING_MAX)

        below = evaluate(
            rule, make_event(TriggerType.AFTER_SET, reps_performed=10, max_reps=12), uuid.uuid4(), 200
        )
        at_top = evaluate(
            rule, make_event(TriggerType.AFTER_SET, reps_performed=12, max_reps=12), uuid.uuid4(), 200
        )
        no_range = evaluate(rule, make_event(TriggerType.AFTER_SET, reps_performed=12), uuid.uuid4(), 200)

        assert not below.applied
        assert at_top.new_value == 205
        assert no_range.reason == "set has no rep ceiling"

    def test_evaluate_deload(self):
        rule = DeloadOnFailure(
            max_type=MaxType.TRAINING_MAX,
            failure_threshold=3,
            deload_type=DeloadType.PERCENT,
            deload_percent=0.1,
        )

        waiting = evaluate(
            rule, make_event(TriggerType.ON_FAILURE, consecutive_failures=2), uuid.uuid4(), 300
        )
        deloaded = evaluate(
            rule, make_event(TriggerType.ON_FAILURE, consecutive_failures=3), uuid.uuid4(), 300
        )

        assert waiting.reason == "failure threshold not met: 2 consecutive failures, need 3"
        assert deloaded.new_value == 270
        assert deloaded.delta == -30

    def test_deload_never_empties_the_bar(self):
        rule = DeloadOnFailure(
            max_type=MaxType.TRAINING_MAX,
            failure_threshold=1,
            deload_type=DeloadType.FIXED,
            deload_amount=50,
        )
        event = make_event(TriggerType.ON_FAILURE, consecutive_failures=1)

        result = evaluate(rule, event, uuid.uuid4(), 45)

        assert not result.applied
        assert result.new_value == 45

    def test_set_period_key(self):
        logged_set_id = uuid.uuid4()
        assert make_event(TriggerType.AFTER_SET, logged_set_id=logged_set_id).period_key == (
            f"set:{logged_set_id}"
        )
        assert make_event(TriggerType.ON_FAILURE, day_index=0).period_key == "cycle:2:week:3:day:0"


class TestDefinitions:
    async def test_create_stores_parameters_without_type(self, db_session: AsyncSession):
        progression = await ProgressionService(db_session).create_progression(
            "Cycle bump", "CYCLE_PROGRESSION", {"increment": 10, "max_type": "TRAINING_MAX"}
        )

        assert progression.progression_type == "CYCLE_PROGRESSION"
        assert progression.parameters == {"increment": 10.0, "max_type": "TRAINING_MAX"}

    async def test_create_rejects_bad_parameters(self, db_session: AsyncSession):
        with pytest.raises(ValidationError):
            await ProgressionService(db_session).create_progression(
                "Broken", "LINEAR_PROGRESSION", {"increment": -5, "max_type": "TRAINING_MAX"}
            )

    async def test_link_is_upserted(
        self, db_session: AsyncSession, program: dict, weekly_linear: Progression
    ):
        service = ProgressionService(db_session)
        squat = program["lifts"]["squat"].id
        await service.link_to_program(program["program"].id, weekly_linear.id, squat)
        await service.link_to_program(
            program["program"].id, weekly_linear.id, squat, priority=3, override_increment=10
        )

        links = await service.list_links(program["program"].id)
        assert len(links) == 1
        assert links[0].priority == 3
        assert links[0].override_increment == 10

    async def test_unknown_progression(self, db_session: AsyncSession):
        with pytest.raises(ProgressionNotFoundError):
            await ProgressionService(db_session).get_progression(uuid.uuid4())


class TestManualTrigger:
    async def test_applies_and_records_history(
        self,
        db_session: AsyncSession,
        test_user: User,
        enrolled: dict,
        weekly_linear: Progression,
    ):
        squat = enrolled["lifts"]["squat"].id
        service = ProgressionService(db_session)

        aggregate = await service.apply_manually(test_user.id, weekly_linear.id, squat)

        assert aggregate.total_applied == 1
        assert aggregate.results[0].result.new_value == 405
        assert await MaxStore(db_session).get_current_max(
            test_user.id, squat, MaxType.TRAINING_MAX
        ) == 405

        history = await service.history(test_user.id, lift_id=squat)
        assert len(history) == 1
        assert history[0].previous_value == 400
        assert history[0].new_value == 405
        assert history[0].trigger_type == "AFTER_WEEK"
        assert history[0].period_key == "cycle:1:week:1"
        assert history[0].trigger_context["source"] == "manual"

    async def test_idempotent_within_period(
        self,
        db_session: AsyncSession,
        test_user: User,
        enrolled: dict,
        weekly_linear: Progression,
    ):
        squat = enrolled["lifts"]["squat"].id
        service = ProgressionService(db_session)
        await service.apply_manually(test_user.id, weekly_linear.id, squat)

        again = await service.apply_manually(test_user.id, weekly_linear.id, squat)

        assert again.total_applied == 0
        assert again.results[0].skipped
        assert "already applied" in again.results[0].skip_reason
        assert await MaxStore(db_session).get_current_max(
            test_user.id, squat, MaxType.TRAINING_MAX
        ) == 405

    async def test_force_applies_again(
        self,
        db_session: AsyncSession,
        test_user: User,
        enrolled: dict,
        weekly_linear: Progression,
    ):
        squat = enrolled["lifts"]["squat"].id
        service = ProgressionService(db_session)
        await service.apply_manually(test_user.id, weekly_linear.id, squat)

        forced = await service.apply_manually(test_user.id, weekly_linear.id, squat, force=True)

        assert forced.total_applied == 1
        assert forced.results[0].result.new_value == 410
        history = await service.history(test_user.id, lift_id=squat)
        assert sorted(h.forced for h in history) == [False, True]

    async def test_existing_history_row_blocks_application(
        self,
        db_session: AsyncSession,
        test_user: User,
        enrolled: dict,
        weekly_linear: Progression,
    ):
        """A row written by a concurrent request turns the insert into a skip."""
        squat = enrolled["lifts"]["squat"].id
        db_session.add(
            ProgressionHistory(
                user_id=test_user.id,
                progression_id=weekly_linear.id,
                lift_id=squat,
                previous_value=400,
                new_value=405,
                delta=5,
                trigger_type="AFTER_WEEK",
                period_key="cycle:1:week:1",
                applied_at=datetime.now(timezone.utc),
            )
        )
        await db_session.flush()
        service = ProgressionService(db_session)

        aggregate = await service.apply_manually(test_user.id, weekly_linear.id, squat)

        assert aggregate.results[0].skipped
        assert aggregate.results[0].skip_reason == "already applied for cycle:1:week:1"
        assert await MaxStore(db_session).get_current_max(
            test_user.id, squat, MaxType.TRAINING_MAX
        ) == 400
        assert len(await service.history(test_user.id, lift_id=squat)) == 1

    async def test_history_period_is_unique_unless_forced(
        self, db_session: AsyncSession, test_user: User, enrolled: dict, weekly_linear: Progression
    ):
        squat = enrolled["lifts"]["squat"].id

        def row(forced: bool, minutes: int) -> ProgressionHistory:
            return ProgressionHistory(
                user_id=test_user.id,
                progression_id=weekly_linear.id,
                lift_id=squat,
                previous_value=400,
                new_value=405,
                delta=5,
                trigger_type="AFTER_WEEK",
                period_key="cycle:1:week:2",
                forced=forced,
                applied_at=datetime.now(timezone.utc) - timedelta(minutes=minutes),
            )

        db_session.add_all([row(False, 0), row(True, 1), row(True, 2)])
        await db_session.flush()

        db_session.add(row(False, 3))
        with pytest.raises(IntegrityError):
            await db_session.flush()
        await db_session.rollback()

    async def test_forced_deload_uses_stored_streak(
        self, db_session: AsyncSession, test_user: User, enrolled: dict
    ):
        service = ProgressionService(db_session)
        squat = enrolled["lifts"]["squat"].id
        deload = await service.create_progression(
            "Deload",
            "DELOAD_ON_FAILURE",
            {"max_type": "TRAINING_MAX", "failure_threshold": 1, "deload_type": "FIXED", "deload_amount": 25},
        )
        await service.link_to_program(enrolled["program"].id, deload.id, squat)

        unforced = await service.apply_manually(test_user.id, deload.id, squat)
        forced = await service.apply_manually(test_user.id, deload.id, squat, force=True)

        assert unforced.results[0].skip_reason == (
            "failure threshold not met: 0 consecutive failures, need 1"
        )
        assert forced.total_applied == 1
        assert forced.results[0].result.new_value == 375

    async def test_all_links_in_priority_order(
        self,
        db_session: AsyncSession,
        test_user: User,
        enrolled: dict,
        weekly_linear: Progression,
    ):
        service = ProgressionService(db_session)
        program_id = enrolled["program"].id
        squat = enrolled["lifts"]["squat"].id
        bench = enrolled["lifts"]["bench"].id
        await service.link_to_program(program_id, weekly_linear.id, squat, priority=2)
        await service.link_to_program(
            program_id, weekly_linear.id, bench, priority=1, override_increment=2.5
        )

        aggregate = await service.apply_manually(test_user.id, weekly_linear.id)

        assert [r.lift_id for r in aggregate.results] == [bench, squat]
        assert [r.result.new_value for r in aggregate.results] == [502.5, 405]

    async def test_disabled_link_skips_lift(
        self,
        db_session: AsyncSession,
        test_user: User,
        enrolled: dict,
        weekly_linear: Progression,
    ):
        service = ProgressionService(db_session)
        squat = enrolled["lifts"]["squat"].id
        await service.link_to_program(
            enrolled["program"].id, weekly_linear.id, squat, enabled=False
        )

        aggregate = await service.apply_manually(test_user.id, weekly_linear.id, squat)

        assert aggregate.total_skipped == 1
        assert aggregate.results[0].skip_reason == "progression is disabled for this lift"

        with pytest.raises(NoApplicableProgressionsError):
            await service.apply_manually(test_user.id, weekly_linear.id)

    async def test_missing_max_skips_only_that_lift(
        self,
        db_session: AsyncSession,
        test_user: User,
        enrolled: dict,
        weekly_linear: Progression,
    ):
        service = ProgressionService(db_session)
        deadlift = Lift(name="Deadlift", slug="deadlift")
        db_session.add(deadlift)
        await db_session.flush()
        await service.link_to_program(enrolled["program"].id, weekly_linear.id, deadlift.id)
        await service.link_to_program(
            enrolled["program"].id, weekly_linear.id, enrolled["lifts"]["squat"].id, priority=1
        )

        aggregate = await service.apply_manually(test_user.id, weekly_linear.id)

        assert aggregate.total_applied == 1
        assert aggregate.total_skipped == 1
        assert aggregate.results[0].skip_reason == "no current TRAINING_MAX for lift"

    async def test_requires_enrollment(
        self, db_session: AsyncSession, test_user: User, weekly_linear: Progression
    ):
        with pytest.raises(UserNotEnrolledError):
            await ProgressionService(db_session).apply_manually(test_user.id, weekly_linear.id)


class TestEventProcessing:
    async def test_week_event_only_fires_week_rules(
        self,
        db_session: AsyncSession,
        test_user: User,
        enrolled: dict,
        weekly_linear: Progression,
    ):
        service = ProgressionService(db_session)
        program_id = enrolled["program"].id
        squat = enrolled["lifts"]["squat"].id
        cycle_rule = await service.create_progression(
            "Cycle bump", "CYCLE_PROGRESSION", {"increment": 10, "max_type": "TRAINING_MAX"}
        )
        await service.link_to_program(program_id, weekly_linear.id, squat)
        await service.link_to_program(program_id, cycle_rule.id, squat)

        week = await service.handle_week_advanced(test_user.id, program_id, 1, 1)
        assert [r.progression_id for r in week.results] == [weekly_linear.id]
        assert week.total_applied == 1

        cycle = await service.handle_cycle_completed(test_user.id, program_id, 1, 3)
        assert [r.progression_id for r in cycle.results] == [cycle_rule.id]
        assert cycle.results[0].result.new_value == 415

    async def test_invalid_stored_rule_is_reported(
        self, db_session: AsyncSession, test_user: User, enrolled: dict
    ):
        broken = Progression(
            name="Broken", progression_type="LINEAR_PROGRESSION", parameters={"increment": 5}
        )
        db_session.add(broken)
        await db_session.flush()
        service = ProgressionService(db_session)
        await service.link_to_program(
            enrolled["program"].id, broken.id, enrolled["lifts"]["squat"].id
        )

        aggregate = await service.handle_week_advanced(
            test_user.id, enrolled["program"].id, 1, 1
        )

        assert aggregate.total_errors == 1
        assert aggregate.total_applied == 0


class TestProgressionEndpoints:
    async def test_admin_creates_and_links(
        self, admin_client: AsyncClient, program: dict
    ):
        response = await admin_client.post(
            "/api/v1/progressions",
            json={
                "name": "Add 5",
                "type": "LINEAR_PROGRESSION",
                "parameters": {
                    "increment": 5,
                    "max_type": "TRAINING_MAX",
                    "trigger_type": "AFTER_SESSION",
                },
            },
        )
        assert response.status_code == 201
        progression_id = response.json()["id"]

        response = await admin_client.post(
            f"/api/v1/programs/{program['program'].id}/progressions",
            json={"progression_id": progression_id, "lift_id": str(program["lifts"]["squat"].id)},
        )
        assert response.status_code == 201

        response = await admin_client.get(f"/api/v1/programs/{program['program'].id}/progressions")
        assert len(response.json()) == 1

    async def test_create_invalid_is_400(self, admin_client: AsyncClient):
        response = await admin_client.post(
            "/api/v1/progressions",
            json={
                "name": "Bad",
                "type": "LINEAR_PROGRESSION",
                "parameters": {"increment": 5, "max_type": "TRAINING_MAX", "trigger_type": "AFTER_CYCLE"},
            },
        )

        assert response.status_code == 400

    async def test_trigger_and_history(
        self,
        auth_client: AsyncClient,
        test_user: User,
        enrolled: dict,
        weekly_linear: Progression,
    ):
        squat = str(enrolled["lifts"]["squat"].id)
        response = await auth_client.post(
            f"/api/v1/users/{test_user.id}/progressions/trigger",
            json={"progression_id": str(weekly_linear.id), "lift_id": squat},
        )
        assert response.status_code == 200
        assert response.json()["total_applied"] == 1

        response = await auth_client.get(f"/api/v1/users/{test_user.id}/progression-history")
        assert response.status_code == 200
        history = response.json()
        assert len(history) == 1
        assert history[0]["previous_value"] == 400
        assert history[0]["new_value"] == 405

    async def test_trigger_unknown_progression_is_404(
        self, auth_client: AsyncClient, test_user: User, enrolled: dict
    ):
        response = await auth_client.post(
            f"/api/v1/users/{test_user.id}/progressions/trigger",
            json={"progression_id": str(uuid.uuid4())},
        )

        assert response.status_code == 404
