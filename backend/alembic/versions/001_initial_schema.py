"""Initial schema: lifts, maxes, program structure, progressions, enrollment.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.Text(), nullable=True),
        sa.Column("display_name", sa.String(length=100), nullable=True),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # -------------------------------------------------------------------------
    # Lifts & maxes
    # -------------------------------------------------------------------------
    op.create_table(
        "lifts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("slug", sa.String(length=100), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_lifts_slug", "lifts", ["slug"], unique=True)

    op.create_table(
        "lift_maxes",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("lift_id", sa.Uuid(), nullable=False),
        sa.Column("max_type", sa.String(length=20), nullable=False),
        sa.Column("value", sa.Float(), nullable=False),
        sa.Column("effective_date", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["lift_id"], ["lifts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_lift_maxes_user_id", "lift_maxes", ["user_id"])
    op.create_index("ix_lift_maxes_lift_id", "lift_maxes", ["lift_id"])
    op.create_index(
        "ix_lift_maxes_lookup",
        "lift_maxes",
        ["user_id", "lift_id", "max_type", "effective_date"],
    )

    # -------------------------------------------------------------------------
    # Program structure
    # -------------------------------------------------------------------------
    op.create_table(
        "cycles",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("length_weeks", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "weeks",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("cycle_id", sa.Uuid(), nullable=False),
        sa.Column("week_number", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["cycle_id"], ["cycles.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("cycle_id", "week_number", name="uq_weeks_cycle_number"),
    )
    op.create_index("ix_weeks_cycle_id", "weeks", ["cycle_id"])

    op.create_table(
        "days",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("slug", sa.String(length=100), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_days_slug", "days", ["slug"])

    op.create_table(
        "week_days",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("week_id", sa.Uuid(), nullable=False),
        sa.Column("day_id", sa.Uuid(), nullable=False),
        sa.Column("day_of_week", sa.String(length=10), nullable=False),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["week_id"], ["weeks.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["day_id"], ["days.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_week_days_week_id", "week_days", ["week_id"])
    op.create_index("ix_week_days_day_id", "week_days", ["day_id"])

    op.create_table(
        "prescriptions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("lift_id", sa.Uuid(), nullable=False),
        sa.Column("load_strategy", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("set_scheme", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("rest_seconds", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["lift_id"], ["lifts.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_prescriptions_lift_id", "prescriptions", ["lift_id"])

    op.create_table(
        "day_prescriptions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("day_id", sa.Uuid(), nullable=False),
        sa.Column("prescription_id", sa.Uuid(), nullable=False),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["day_id"], ["days.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["prescription_id"], ["prescriptions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("day_id", "prescription_id", name="uq_day_prescriptions"),
    )
    op.create_index("ix_day_prescriptions_day_id", "day_prescriptions", ["day_id"])
    op.create_index(
        "ix_day_prescriptions_prescription_id", "day_prescriptions", ["prescription_id"]
    )

    op.create_table(
        "weekly_lookups",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("entries", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "daily_lookups",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("entries", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "programs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("slug", sa.String(length=100), nullable=False),
        sa.Column("cycle_id", sa.Uuid(), nullable=False),
        sa.Column("weekly_lookup_id", sa.Uuid(), nullable=True),
        sa.Column("daily_lookup_id", sa.Uuid(), nullable=True),
        sa.Column("default_rounding", sa.Float(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["cycle_id"], ["cycles.id"]),
        sa.ForeignKeyConstraint(["weekly_lookup_id"], ["weekly_lookups.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["daily_lookup_id"], ["daily_lookups.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_programs_slug", "programs", ["slug"], unique=True)
    op.create_index("ix_programs_cycle_id", "programs", ["cycle_id"])

    # -------------------------------------------------------------------------
    # Progressions
    # -------------------------------------------------------------------------
    op.create_table(
        "progressions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("progression_type", sa.String(length=30), nullable=False),
        sa.Column("parameters", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_progressions_progression_type", "progressions", ["progression_type"])

    op.create_table(
        "program_progressions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("program_id", sa.Uuid(), nullable=False),
        sa.Column("progression_id", sa.Uuid(), nullable=False),
        sa.Column("lift_id", sa.Uuid(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("override_increment", sa.Float(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["program_id"], ["programs.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["progression_id"], ["progressions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["lift_id"], ["lifts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "program_id", "progression_id", "lift_id", name="uq_program_progressions"
        ),
    )
    op.create_index("ix_program_progressions_program_id", "program_progressions", ["program_id"])
    op.create_index(
        "ix_program_progressions_progression_id", "program_progressions", ["progression_id"]
    )

    op.create_table(
        "progression_history",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("progression_id", sa.Uuid(), nullable=False),
        sa.Column("lift_id", sa.Uuid(), nullable=False),
        sa.Column("previous_value", sa.Float(), nullable=False),
        sa.Column("new_value", sa.Float(), nullable=False),
        sa.Column("delta", sa.Float(), nullable=False),
        sa.Column("trigger_type", sa.String(length=20), nullable=False),
        sa.Column("trigger_context", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("period_key", sa.String(length=100), nullable=False),
        sa.Column("forced", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["progression_id"], ["progressions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["lift_id"], ["lifts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "user_id",
            "progression_id",
            "lift_id",
            "trigger_type",
            "applied_at",
            name="uq_progression_history_application",
        ),
    )
    op.create_index("ix_progression_history_user_id", "progression_history", ["user_id"])
    op.create_index("ix_progression_history_applied_at", "progression_history", ["applied_at"])
    op.create_index(
        "uq_progression_history_period",
        "progression_history",
        ["user_id", "progression_id", "lift_id", "period_key"],
        unique=True,
        postgresql_where=sa.text("NOT forced"),
    )

    op.create_table(
        "failure_counters",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("lift_id", sa.Uuid(), nullable=False),
        sa.Column("progression_id", sa.Uuid(), nullable=False),
        sa.Column("consecutive_failures", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_failed_set_id", sa.Uuid(), nullable=True),
        sa.Column("last_failure_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_success_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["lift_id"], ["lifts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["progression_id"], ["progressions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "user_id", "lift_id", "progression_id", name="uq_failure_counters"
        ),
    )
    op.create_index("ix_failure_counters_user_id", "failure_counters", ["user_id"])

    # -------------------------------------------------------------------------
    # Enrollment & sessions
    # -------------------------------------------------------------------------
    op.create_table(
        "user_program_states",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("program_id", sa.Uuid(), nullable=False),
        sa.Column("current_week", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("current_cycle_iteration", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("current_day_index", sa.Integer(), nullable=True),
        sa.Column("enrollment_status", sa.String(length=20), nullable=False, server_default="ACTIVE"),
        sa.Column("enrolled_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["program_id"], ["programs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_user_program_states_user_id", "user_program_states", ["user_id"], unique=True)
    op.create_index("ix_user_program_states_program_id", "user_program_states", ["program_id"])

    op.create_table(
        "workout_sessions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_program_state_id", sa.Uuid(), nullable=False),
        sa.Column("cycle_iteration", sa.Integer(), nullable=False),
        sa.Column("week_number", sa.Integer(), nullable=False),
        sa.Column("day_index", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="IN_PROGRESS"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["user_program_state_id"], ["user_program_states.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_workout_sessions_user_program_state_id", "workout_sessions", ["user_program_state_id"]
    )
    op.create_index(
        "ix_workout_sessions_state_status", "workout_sessions", ["user_program_state_id", "status"]
    )

    op.create_table(
        "logged_sets",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("session_id", sa.Uuid(), nullable=False),
        sa.Column("prescription_id", sa.Uuid(), nullable=False),
        sa.Column("lift_id", sa.Uuid(), nullable=False),
        sa.Column("set_number", sa.Integer(), nullable=False),
        sa.Column("weight", sa.Float(), nullable=False),
        sa.Column("target_reps", sa.Integer(), nullable=False),
        sa.Column("reps_performed", sa.Integer(), nullable=False),
        sa.Column("is_amrap", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("rpe", sa.Float(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["session_id"], ["workout_sessions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["prescription_id"], ["prescriptions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["lift_id"], ["lifts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "session_id", "prescription_id", "set_number", name="uq_logged_sets_set_number"
        ),
    )
    op.create_index("ix_logged_sets_session_id", "logged_sets", ["session_id"])
    op.create_index(
        "ix_logged_sets_session_prescription", "logged_sets", ["session_id", "prescription_id"]
    )


def downgrade() -> None:
    op.drop_table("logged_sets")
    op.drop_table("workout_sessions")
    op.drop_table("user_program_states")
    op.drop_table("failure_counters")
    op.drop_table("progression_history")
    op.drop_table("program_progressions")
    op.drop_table("progressions")
    op.drop_table("programs")
    op.drop_table("daily_lookups")
    op.drop_table("weekly_lookups")
    op.drop_table("day_prescriptions")
    op.drop_table("prescriptions")
    op.drop_table("week_days")
    op.drop_table("days")
    op.drop_table("weeks")
    op.drop_table("cycles")
    op.drop_table("lift_maxes")
    op.drop_table("lifts")
    op.drop_table("users")
