"""API v1 router aggregating all endpoint routers.

Authentication:
  /api/v1/auth/login, /logout, /me

Lifts & maxes:
  /api/v1/lifts
  /api/v1/users/{user_id}/maxes, /maxes/current

Prescriptions:
  /api/v1/prescriptions, /{id}/resolve, /resolve

Workouts:
  /api/v1/users/{user_id}/workout, /workout/preview

Progressions:
  /api/v1/progressions
  /api/v1/programs/{program_id}/progressions
  /api/v1/users/{user_id}/progressions/trigger, /progression-history

Enrollment:
  /api/v1/users/{user_id}/enrollment (+ advance-week, advance-day, next-cycle)

Sessions:
  /api/v1/users/{user_id}/sessions
  /api/v1/sessions/{id}/sets, /next-set, /finish, /abandon
"""

from fastapi import APIRouter

from liftcoach.api.v1.endpoints import (
    auth,
    enrollment,
    lifts,
    prescriptions,
    progressions,
    sessions,
    workouts,
)

api_router = APIRouter()

# -------------------------------------------------------------------------
# Authentication
# -------------------------------------------------------------------------
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])

# -------------------------------------------------------------------------
# Lifts & maxes
# -------------------------------------------------------------------------
api_router.include_router(lifts.router, tags=["lifts"])

# -------------------------------------------------------------------------
# Prescriptions
# -------------------------------------------------------------------------
api_router.include_router(prescriptions.router, prefix="/prescriptions", tags=["prescriptions"])

# -------------------------------------------------------------------------
# Workouts
# -------------------------------------------------------------------------
api_router.include_router(workouts.router, tags=["workouts"])

# -------------------------------------------------------------------------
# Progressions
# -------------------------------------------------------------------------
api_router.include_router(progressions.router, tags=["progressions"])

# -------------------------------------------------------------------------
# Enrollment
# -------------------------------------------------------------------------
api_router.include_router(enrollment.router, prefix="/users", tags=["enrollment"])

# -------------------------------------------------------------------------
# Sessions
# -------------------------------------------------------------------------
api_router.include_router(sessions.router, tags=["sessions"])
