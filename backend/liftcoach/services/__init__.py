"""Service layer for LiftCoach.

Pure engine modules (load_strategy, set_scheme, lookups, progression) hold
no database state; the *_service modules wrap them around an AsyncSession.
"""

from liftcoach.services.enrollment_service import EnrollmentService
from liftcoach.services.max_store import MaxCache, MaxStore
from liftcoach.services.prescription_service import PrescriptionService
from liftcoach.services.progression_service import ProgressionService
from liftcoach.services.session_service import SessionService
from liftcoach.services.workout_service import WorkoutService

__all__ = [
    "EnrollmentService",
    "MaxCache",
    "MaxStore",
    "PrescriptionService",
    "ProgressionService",
    "SessionService",
    "WorkoutService",
]
