"""Domain error taxonomy.

Services raise these; the endpoint layer decides which HTTP status each one
becomes. Nothing in here knows about HTTP.
"""


class DomainError(Exception):
    """Base exception for engine errors."""

    pass


class ValidationError(DomainError):
    """Bad or missing input."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class NotFoundError(DomainError):
    """Entity absent."""

    pass


class ConflictError(DomainError):
    """Concurrent modification or duplicate write."""

    pass


class InvalidStateError(ConflictError):
    """Operation not allowed in the current enrollment/session phase."""

    pass


# -------------------------------------------------------------------------
# Sentinels
# -------------------------------------------------------------------------


class MaxNotFoundError(DomainError):
    """No current max of the requested type exists for the user and lift."""

    def __init__(self, user_id, lift_id, max_type: str) -> None:
        super().__init__(f"no {max_type} found for user {user_id}, lift {lift_id}")
        self.user_id = user_id
        self.lift_id = lift_id
        self.max_type = max_type


class UserNotEnrolledError(NotFoundError):
    pass


class WeekNotFoundError(NotFoundError):
    pass


class DayNotFoundError(NotFoundError):
    pass


class NoPrescriptionsError(NotFoundError):
    pass


class PrescriptionNotFoundError(NotFoundError):
    pass


class LiftNotFoundError(NotFoundError):
    pass


class ProgramNotFoundError(NotFoundError):
    pass


class ProgressionNotFoundError(NotFoundError):
    pass


class SessionNotFoundError(NotFoundError):
    pass


class NoApplicableProgressionsError(NotFoundError):
    pass


class NoSetsLoggedError(ValidationError):
    def __init__(self) -> None:
        super().__init__("no sets logged for this prescription")


class UnsupportedSchemeError(ValidationError):
    def __init__(self, scheme_type: str) -> None:
        super().__init__(
            f"prescription does not use a variable set scheme (got {scheme_type})"
        )
        self.scheme_type = scheme_type
