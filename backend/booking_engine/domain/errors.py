from __future__ import annotations

from typing import Any, Optional


class BookingError(Exception):
    """Base class for every rejection the booking core can produce.

    `code` is stable and machine-readable, the message is safe to show to the
    requester. Nothing internal (SQL, stack details) is ever put in either.
    """

    code = "booking_error"

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationError(BookingError):
    code = "invalid_request"


class PolicyViolation(BookingError):
    code = "policy_violation"


class CapacityExceeded(BookingError):
    code = "slot_full"


class ConcurrencyConflict(CapacityExceeded):
    """Lost a capacity race. Reported exactly like a full slot."""

    code = "slot_full"


class AuthorizationError(BookingError):
    code = "unauthorized"


class NotFoundError(BookingError):
    code = "not_found"


class PersistenceError(BookingError):
    code = "internal_error"

    def __init__(self, message: str = "A temporary error occurred. Please try again.", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class InvalidTransition(PolicyViolation):
    code = "invalid_transition"


class SecurityCheckFailed(ValidationError):
    code = "security_check_failed"

    def __init__(self, message: str, *, challenge: dict[str, str]) -> None:
        super().__init__(message)
        self.challenge = challenge


class ScheduleConflict(PolicyViolation):
    code = "schedule_conflict"

    def __init__(self, message: str, *, report: Any) -> None:
        super().__init__(message)
        self.report = report
