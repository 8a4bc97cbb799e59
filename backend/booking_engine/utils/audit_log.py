from __future__ import annotations

import json
import logging
from datetime import date, datetime, time, timezone
from typing import Any, Literal, Optional

from .request_id import get_request_id

AuditAction = Literal[
    "appointment.created",
    "appointment.cancelled",
    "appointment.confirmed",
    "appointment.completed",
    "appointment.no_show",
    "audience_booking.created",
    "audience_booking.cancelled",
]
AuditInitiator = Literal["user", "guest", "admin", "system"]

_audit_logger = logging.getLogger("audit")
_audit_logger.setLevel(logging.INFO)
if not _audit_logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    _audit_logger.addHandler(handler)
_audit_logger.propagate = False


def _to_json_value(value: Any) -> Any:
    if value is None:
        return None
    if hasattr(value, "value"):
        return str(value.value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return value


def emit_audit_log(
    *,
    action: AuditAction,
    initiator: AuditInitiator,
    record_id: int,
    calendar_id: Optional[int] = None,
    environment_id: Optional[int] = None,
    user_id: Optional[int] = None,
    status_from: Any = None,
    status_to: Any = None,
    booking_date: Optional[date] = None,
    start_time: Optional[time] = None,
    message: Optional[str] = None,
    extra: Optional[dict[str, Any]] = None,
) -> None:
    """Emit structured JSON audit log. Raises RuntimeError if logging fails."""
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": "info",
        "action": action,
        "initiator": initiator,
        "request_id": get_request_id(),
        "record_id": record_id,
        "calendar_id": calendar_id,
        "environment_id": environment_id,
        "user_id": user_id,
        "status_from": _to_json_value(status_from),
        "status_to": _to_json_value(status_to),
        "date": _to_json_value(booking_date),
        "start_time": _to_json_value(start_time),
    }
    if message is not None:
        payload["message"] = message
    if extra:
        payload.update({k: _to_json_value(v) for k, v in extra.items()})

    # Drop None values to keep the log compact.
    compact_payload = {k: v for k, v in payload.items() if v is not None}
    try:
        _audit_logger.info(json.dumps(compact_payload, ensure_ascii=True))
    except Exception as exc:
        raise RuntimeError("failed to emit audit log") from exc
