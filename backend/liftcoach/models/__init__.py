"""Database models for LiftCoach."""

from liftcoach.models.user import User
from liftcoach.models.lift import Lift, LiftMax, MaxType
from liftcoach.models.program import (
    Cycle,
    DailyLookup,
    Day,
    DayOfWeek,
    DayPrescription,
    Program,
    Week,
    WeekDay,
    WeeklyLookup,
)
from liftcoach.models.prescription import Prescription
from liftcoach.models.progression import (
    FailureCounter,
    ProgramProgression,
    Progression,
    ProgressionHistory,
    ProgressionType,
    TriggerType,
)
from liftcoach.models.enrollment import (
    EnrollmentStatus,
    LoggedSet,
    PhaseStatus,
    SessionStatus,
    UserProgramState,
    WorkoutSession,
)

__all__ = [
    # User
    "User",
    # Lifts
    "Lift",
    "LiftMax",
    "MaxType",
    # Program reference data
    "Cycle",
    "Week",
    "Day",
    "DayOfWeek",
    "WeekDay",
    "DayPrescription",
    "WeeklyLookup",
    "DailyLookup",
    "Program",
    "Prescription",
    # Progressions
    "FailureCounter",
    "Progression",
    "ProgramProgression",
    "ProgressionHistory",
    "ProgressionType",
    "TriggerType",
    # Enrollment
    "UserProgramState",
    "EnrollmentStatus",
    "PhaseStatus",
    "WorkoutSession",
    "SessionStatus",
    "LoggedSet",
]
