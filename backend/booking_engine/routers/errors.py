import logging

from fastapi import HTTPException, status

from ..domain.errors import (
    AuthorizationError,
    BookingError,
    CapacityExceeded,
    NotFoundError,
    PersistenceError,
    PolicyViolation,
    ScheduleConflict,
    SecurityCheckFailed,
    ValidationError,
)
from ..schemas import ConflictReportRead

logger = logging.getLogger(__name__)

FORBIDDEN_POLICY_CODES = frozenset({"login_required", "insufficient_permissions"})
GENERIC_FAILURE = "A temporary error occurred. Please try again."
UNPROCESSABLE = 422


def to_http_exception(exc: BookingError) -> HTTPException:
    detail: dict[str, object] = {"code": exc.code, "message": exc.message}
    if isinstance(exc, SecurityCheckFailed):
        detail["challenge"] = exc.challenge
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)
    if isinstance(exc, ScheduleConflict):
        detail["conflicts"] = ConflictReportRead.from_domain(exc.report).model_dump(mode="json")
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)
    if isinstance(exc, PolicyViolation):
        if exc.code in FORBIDDEN_POLICY_CODES:
            return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)
        return HTTPException(status_code=UNPROCESSABLE, detail=detail)
    if isinstance(exc, CapacityExceeded):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)
    if isinstance(exc, AuthorizationError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
    if isinstance(exc, PersistenceError):
        return service_unavailable()
    logger.error("unmapped booking error %s", type(exc).__name__)
    return service_unavailable()


def service_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"code": "internal_error", "message": GENERIC_FAILURE},
    )


def audit_failure() -> HTTPException:
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="failed to write audit log")
