"""Applying progressions to stored maxes.

Every application writes a new LiftMax row and a ProgressionHistory row in
the caller's transaction. The history insert is guarded by the unique
(user, progression, lift, period_key) index on unforced rows, so two
concurrent triggers for the same period cannot both apply.

Nothing here commits; the endpoint (or the enrollment/session operation that
fired the event) owns the transaction.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from liftcoach.core.errors import (
    DomainError,
    LiftNotFoundError,
    NoApplicableProgressionsError,
    ProgramNotFoundError,
    ProgressionNotFoundError,
    UserNotEnrolledError,
    ValidationError,
)
from liftcoach.models.enrollment import LoggedSet, UserProgramState, WorkoutSession
from liftcoach.models.lift import Lift, LiftMax
from liftcoach.models.program import Program
from liftcoach.models.progression import (
    FailureCounter,
    ProgramProgression,
    Progression,
    ProgressionHistory,
    TriggerType,
)
from liftcoach.observability import get_metrics_backend
from liftcoach.services.failure_tracker import FailureTracker
from liftcoach.services.max_store import MaxStore
from liftcoach.services.progression import (
    SET_TRIGGERS,
    AggregateTriggerResult,
    AmrapProgression,
    DeloadOnFailure,
    ProgressionResult,
    ProgressionRule,
    TriggerEvent,
    TriggerResult,
    evaluate,
    parse_rule,
    rule_of,
    rule_parameters,
)

logger = logging.getLogger(__name__)


class ProgressionService:
    """Progression definitions, program links, and their application."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.max_store = MaxStore(db)
        self.failures = FailureTracker(db)
        self.metrics = get_metrics_backend()

    # ---------------------------------------------------------------------
    # Definitions
    # ---------------------------------------------------------------------

    async def create_progression(
        self, name: str, progression_type: str, parameters: dict
    ) -> Progression:
        try:
            rule = parse_rule(progression_type, parameters)
        except PydanticValidationError as exc:
            raise ValidationError(f"invalid progression: {exc}", field="parameters") from exc

        progression = Progression(
            name=name,
            progression_type=rule.type,
            parameters=rule_parameters(rule),
        )
        self.db.add(progression)
        await self.db.flush()
        logger.info("Created %s progression %s", rule.type, progression.id)
        return progression

    async def list_progressions(self) -> list[Progression]:
        result = await self.db.execute(select(Progression).order_by(Progression.name))
        return list(result.scalars().all())

    async def get_progression(self, progression_id: uuid.UUID) -> Progression:
        progression = await self.db.get(Progression, progression_id)
        if progression is None:
            raise ProgressionNotFoundError(f"progression {progression_id} not found")
        return progression

    async def link_to_program(
        self,
        program_id: uuid.UUID,
        progression_id: uuid.UUID,
        lift_id: uuid.UUID,
        priority: int = 0,
        enabled: bool = True,
        override_increment: Optional[float] = None,
    ) -> ProgramProgression:
        """Attach (or update) a progression for one lift of a program."""
        if await self.db.get(Program, program_id) is None:
            raise ProgramNotFoundError(f"program {program_id} not found")
        await self.get_progression(progression_id)
        if await self.db.get(Lift, lift_id) is None:
            raise LiftNotFoundError(f"lift {lift_id} not found")
        if override_increment is not None and override_increment <= 0:
            raise ValidationError("override increment must be positive", field="override_increment")

        link = await self._link(program_id, progression_id, lift_id)
        if link is None:
            link = ProgramProgression(
                program_id=program_id,
                progression_id=progression_id,
                lift_id=lift_id,
            )
            self.db.add(link)
        link.priority = priority
        link.enabled = enabled
        link.override_increment = override_increment
        await self.db.flush()
        return link

    async def list_links(self, program_id: uuid.UUID) -> list[ProgramProgression]:
        result = await self.db.execute(
            select(ProgramProgression)
            .where(ProgramProgression.program_id == program_id)
            .order_by(ProgramProgression.priority, ProgramProgression.created_at)
        )
        return list(result.scalars().all())

    async def history(
        self,
        user_id: uuid.UUID,
        lift_id: Optional[uuid.UUID] = None,
        progression_id: Optional[uuid.UUID] = None,
        limit: int = 100,
    ) -> list[ProgressionHistory]:
        query = select(ProgressionHistory).where(ProgressionHistory.user_id == user_id)
        if lift_id:
            query = query.where(ProgressionHistory.lift_id == lift_id)
        if progression_id:
            query = query.where(ProgressionHistory.progression_id == progression_id)
        query = query.order_by(ProgressionHistory.applied_at.desc()).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    # ---------------------------------------------------------------------
    # Manual trigger
    # ---------------------------------------------------------------------

    async def apply_manually(
        self,
        user_id: uuid.UUID,
        progression_id: uuid.UUID,
        lift_id: Optional[uuid.UUID] = None,
        force: bool = False,
    ) -> AggregateTriggerResult:
        """Apply one progression on demand.

        With a lift, only that lift is progressed. A link that exists but is
        disabled skips the lift; a lift with no link is still progressed.
        Without a lift, every enabled link of the user's program runs in
        priority order.

        Raises:
            ProgressionNotFoundError: Unknown progression.
            UserNotEnrolledError: User has no enrollment.
            LiftNotFoundError: Unknown lift.
            NoApplicableProgressionsError: No lift is linked to the progression.
        """
        progression = await self.get_progression(progression_id)
        rule = self._rule(progression)
        state = await self._enrollment(user_id)

        aggregate = AggregateTriggerResult()
        if lift_id is not None:
            if await self.db.get(Lift, lift_id) is None:
                raise LiftNotFoundError(f"lift {lift_id} not found")
            link = await self._link(state.program_id, progression_id, lift_id)
            if link is not None and not link.enabled:
                aggregate.results.append(
                    TriggerResult(
                        progression_id=progression_id,
                        lift_id=lift_id,
                        skipped=True,
                        skip_reason="progression is disabled for this lift",
                    )
                )
                self.metrics.observe_progression(rule.trigger_type.value, "skipped")
                return aggregate
            event = await self._manual_event(state, progression, rule, lift_id, force)
            aggregate.results.append(
                await self._apply_one(progression, rule, lift_id, event, force, link)
            )
            return aggregate

        links = [
            link
            for link in await self._enabled_links(state.program_id)
            if link.progression_id == progression_id
        ]
        if not links:
            raise NoApplicableProgressionsError(
                f"progression {progression_id} is not linked to any lift of program "
                f"{state.program_id}"
            )
        for link in links:
            event = await self._manual_event(state, progression, rule, link.lift_id, force)
            aggregate.results.append(
                await self._apply_one(progression, rule, link.lift_id, event, force, link)
            )
        return aggregate

    # ---------------------------------------------------------------------
    # Event handlers
    # ---------------------------------------------------------------------

    async def handle_session_completed(
        self,
        state: UserProgramState,
        session_id: uuid.UUID,
        day_index: Optional[int],
        lifts_performed: set[uuid.UUID],
    ) -> AggregateTriggerResult:
        """AFTER_SESSION progressions for the lifts actually trained."""
        event = TriggerEvent(
            trigger_type=TriggerType.AFTER_SESSION,
            user_id=state.user_id,
            program_id=state.program_id,
            cycle_iteration=state.current_cycle_iteration,
            week_number=state.current_week,
            day_index=day_index,
            session_id=session_id,
            lifts_performed=lifts_performed,
            timestamp=datetime.now(timezone.utc),
        )
        return await self._process_event(event)

    async def handle_week_advanced(
        self,
        user_id: uuid.UUID,
        program_id: uuid.UUID,
        cycle_iteration: int,
        completed_week: int,
    ) -> AggregateTriggerResult:
        """AFTER_WEEK progressions for the week that just ended."""
        event = TriggerEvent(
            trigger_type=TriggerType.AFTER_WEEK,
            user_id=user_id,
            program_id=program_id,
            cycle_iteration=cycle_iteration,
            week_number=completed_week,
            timestamp=datetime.now(timezone.utc),
        )
        return await self._process_event(event)

    async def handle_cycle_completed(
        self,
        user_id: uuid.UUID,
        program_id: uuid.UUID,
        cycle_iteration: int,
        final_week: int,
    ) -> AggregateTriggerResult:
        """AFTER_CYCLE progressions for the cycle that just ended."""
        event = TriggerEvent(
            trigger_type=TriggerType.AFTER_CYCLE,
            user_id=user_id,
            program_id=program_id,
            cycle_iteration=cycle_iteration,
            week_number=final_week,
            timestamp=datetime.now(timezone.utc),
        )
        return await self._process_event(event)

    async def handle_set_logged(
        self,
        state: UserProgramState,
        logged: LoggedSet,
        day_index: Optional[int] = None,
        max_reps: Optional[int] = None,
    ) -> AggregateTriggerResult:
        """Per-set progressions for one freshly logged set.

        A set below its target reps counts as a failure for every
        DELOAD_ON_FAILURE progression linked to the lift; a set at or above
        target resets those streaks. AFTER_SET rules (AMRAP, double
        progression) are evaluated against the set itself.
        """
        failed = logged.reps_performed < logged.target_reps
        aggregate = AggregateTriggerResult()
        for link in await self._enabled_links(state.program_id, logged.lift_id):
            progression = link.progression
            try:
                rule = self._rule(progression)
            except ValidationError as exc:
                logger.warning("Skipping progression %s: %s", progression.id, exc)
                aggregate.results.append(
                    TriggerResult(progression.id, link.lift_id, error=str(exc))
                )
                continue
            if rule.trigger_type not in SET_TRIGGERS:
                continue
            if isinstance(rule, AmrapProgression) and not logged.is_amrap:
                continue

            failures = None
            if rule.trigger_type == TriggerType.ON_FAILURE:
                failures = await self.failures.record(
                    state.user_id, logged.lift_id, progression.id, failed, logged.id
                )
                if not failed:
                    continue

            event = TriggerEvent(
                trigger_type=rule.trigger_type,
                user_id=state.user_id,
                program_id=state.program_id,
                cycle_iteration=state.current_cycle_iteration,
                week_number=state.current_week,
                day_index=day_index,
                session_id=logged.session_id,
                timestamp=datetime.now(timezone.utc),
                lift_id=logged.lift_id,
                logged_set_id=logged.id,
                reps_performed=logged.reps_performed,
                target_reps=logged.target_reps,
                max_reps=max_reps,
                is_amrap=logged.is_amrap,
                consecutive_failures=failures,
            )
            aggregate.results.append(
                await self._apply_one(progression, rule, logged.lift_id, event, False, link)
            )
        return aggregate

    async def failure_counters(
        self, user_id: uuid.UUID, lift_id: Optional[uuid.UUID] = None
    ) -> list[FailureCounter]:
        return await self.failures.list_for_user(user_id, lift_id)

    async def _process_event(self, event: TriggerEvent) -> AggregateTriggerResult:
        aggregate = AggregateTriggerResult()
        for link in await self._enabled_links(event.program_id):
            progression = link.progression
            try:
                rule = self._rule(progression)
            except ValidationError as exc:
                logger.warning("Skipping progression %s: %s", progression.id, exc)
                aggregate.results.append(
                    TriggerResult(progression.id, link.lift_id, error=str(exc))
                )
                continue
            if rule.trigger_type != event.trigger_type:
                continue
            aggregate.results.append(
                await self._apply_one(progression, rule, link.lift_id, event, False, link)
            )

        if aggregate.results:
            logger.info(
                "%s for user %s: applied=%d skipped=%d errors=%d",
                event.trigger_type.value,
                event.user_id,
                aggregate.total_applied,
                aggregate.total_skipped,
                aggregate.total_errors,
            )
        return aggregate

    # ---------------------------------------------------------------------
    # Internals
    # ---------------------------------------------------------------------

    def _rule(self, progression: Progression) -> ProgressionRule:
        try:
            return rule_of(progression)
        except PydanticValidationError as exc:
            raise ValidationError(
                f"progression {progression.id} has invalid parameters: {exc}",
                field="parameters",
            ) from exc

    async def _enrollment(self, user_id: uuid.UUID) -> UserProgramState:
        result = await self.db.execute(
            select(UserProgramState).where(UserProgramState.user_id == user_id)
        )
        state = result.scalar_one_or_none()
        if state is None:
            raise UserNotEnrolledError(f"user {user_id} is not enrolled in a program")
        return state

    async def _link(
        self, program_id: uuid.UUID, progression_id: uuid.UUID, lift_id: uuid.UUID
    ) -> Optional[ProgramProgression]:
        result = await self.db.execute(
            select(ProgramProgression).where(
                ProgramProgression.program_id == program_id,
                ProgramProgression.progression_id == progression_id,
                ProgramProgression.lift_id == lift_id,
            )
        )
        return result.scalar_one_or_none()

    async def _enabled_links(
        self, program_id: uuid.UUID, lift_id: Optional[uuid.UUID] = None
    ) -> list[ProgramProgression]:
        query = select(ProgramProgression).where(
            ProgramProgression.program_id == program_id,
            ProgramProgression.enabled.is_(True),
        )
        if lift_id is not None:
            query = query.where(ProgramProgression.lift_id == lift_id)
        result = await self.db.execute(
            query.order_by(ProgramProgression.priority, ProgramProgression.created_at)
        )
        return list(result.scalars().all())

    async def _manual_event(
        self,
        state: UserProgramState,
        progression: Progression,
        rule: ProgressionRule,
        lift_id: uuid.UUID,
        force: bool,
    ) -> TriggerEvent:
        """Event scoped to the period the user is currently in.

        Per-set rules look at the lift's most recent logged set; deloads use
        the stored failure streak, counted as at least one when forced.
        """
        event = TriggerEvent(
            trigger_type=rule.trigger_type,
            user_id=state.user_id,
            program_id=state.program_id,
            cycle_iteration=state.current_cycle_iteration,
            week_number=state.current_week,
            day_index=state.current_day_index,
            timestamp=datetime.now(timezone.utc),
            source="manual",
        )
        if rule.trigger_type == TriggerType.AFTER_SESSION:
            result = await self.db.execute(
                select(WorkoutSession.id)
                .where(WorkoutSession.user_program_state_id == state.id)
                .order_by(WorkoutSession.started_at.desc())
                .limit(1)
            )
            event.session_id = result.scalar_one_or_none()
        elif rule.trigger_type == TriggerType.AFTER_SET:
            result = await self.db.execute(
                select(LoggedSet)
                .join(WorkoutSession, LoggedSet.session_id == WorkoutSession.id)
                .where(
                    WorkoutSession.user_program_state_id == state.id,
                    LoggedSet.lift_id == lift_id,
                )
                .order_by(LoggedSet.created_at.desc())
                .limit(1)
            )
            logged = result.scalar_one_or_none()
            event.lift_id = lift_id
            if logged is not None:
                event.session_id = logged.session_id
                event.logged_set_id = logged.id
                event.reps_performed = logged.reps_performed
                event.target_reps = logged.target_reps
                event.is_amrap = logged.is_amrap
        elif rule.trigger_type == TriggerType.ON_FAILURE:
            counter = await self.failures.get(state.user_id, lift_id, progression.id)
            failures = counter.consecutive_failures if counter is not None else 0
            event.lift_id = lift_id
            event.logged_set_id = counter.last_failed_set_id if counter is not None else None
            event.consecutive_failures = max(failures, 1) if force else failures
        return event

    def _insert(self):
        if self.db.get_bind().dialect.name == "sqlite":
            return sqlite_insert
        return pg_insert

    async def _record_history(
        self,
        progression: Progression,
        event: TriggerEvent,
        lift_id: uuid.UUID,
        result: ProgressionResult,
        force: bool,
    ) -> bool:
        """Insert the history row; False if the period was already applied."""
        stmt = (
            self._insert()(ProgressionHistory)
            .values(
                user_id=event.user_id,
                progression_id=progression.id,
                lift_id=lift_id,
                previous_value=result.previous_value,
                new_value=result.new_value,
                delta=result.delta,
                trigger_type=event.trigger_type.value,
                trigger_context=event.to_context(),
                period_key=event.period_key,
                forced=force,
                applied_at=result.applied_at,
            )
            .on_conflict_do_nothing(
                index_elements=["user_id", "progression_id", "lift_id", "period_key"],
                index_where=text("NOT forced"),
            )
            .returning(ProgressionHistory.id)
        )
        inserted = await self.db.execute(stmt)
        return inserted.scalar_one_or_none() is not None

    async def _apply_one(
        self,
        progression: Progression,
        rule: ProgressionRule,
        lift_id: uuid.UUID,
        event: TriggerEvent,
        force: bool,
        link: Optional[ProgramProgression],
    ) -> TriggerResult:
        """Apply one progression to one lift.

        Domain failures are reported in the result so sibling lifts still
        progress; anything else propagates and aborts the transaction.
        """
        trigger = event.trigger_type.value
        period_key = event.period_key
        outcome = TriggerResult(progression_id=progression.id, lift_id=lift_id)
        try:
            current = await self.max_store.get_current_record(
                event.user_id, lift_id, rule.max_type
            )
            if current is None:
                outcome.skipped = True
                outcome.skip_reason = f"no current {rule.max_type.value} for lift"
                self.metrics.observe_progression(trigger, "skipped")
                return outcome

            override = link.override_increment if link is not None else None
            result = evaluate(rule, event, lift_id, current.value, override)
            if not result.applied:
                outcome.skipped = True
                outcome.skip_reason = result.reason
                outcome.result = result
                self.metrics.observe_progression(trigger, "skipped")
                return outcome

            result.applied_at = datetime.now(timezone.utc)
            if not await self._record_history(progression, event, lift_id, result, force):
                outcome.skipped = True
                outcome.skip_reason = f"already applied for {period_key}"
                self.metrics.observe_progression(trigger, "skipped")
                return outcome

            self.db.add(
                LiftMax(
                    user_id=event.user_id,
                    lift_id=lift_id,
                    max_type=rule.max_type.value,
                    value=result.new_value,
                    effective_date=result.applied_at,
                )
            )
            await self.db.flush()
            if isinstance(rule, DeloadOnFailure) and rule.reset_on_deload:
                await self.failures.reset(event.user_id, lift_id, progression.id)
        except DomainError as exc:
            logger.warning(
                "Progression %s failed for lift %s: %s", progression.id, lift_id, exc
            )
            outcome.error = str(exc)
            self.metrics.observe_progression(trigger, "error")
            return outcome

        outcome.applied = True
        outcome.result = result
        self.metrics.observe_progression(trigger, "applied")
        logger.info(
            "Progressed %s for user %s lift %s: %s -> %s (%s)",
            rule.max_type.value,
            event.user_id,
            lift_id,
            result.previous_value,
            result.new_value,
            period_key,
        )
        return outcome
