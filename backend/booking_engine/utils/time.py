from datetime import datetime, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def site_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError as exc:
        raise ValueError(f"unknown timezone: {name}") from exc


def local_now(zone: ZoneInfo, *, clock: Optional[Callable[[], datetime]] = None) -> datetime:
    """Server clock as naive wall time in `zone`.

    Appointment dates and times are stored as wall-clock values of the site,
    so every comparison against them uses this frame.
    """
    current = clock() if clock is not None else datetime.now(timezone.utc)
    if current.tzinfo is None:
        raise ValueError("clock must return a timezone-aware datetime")
    return current.astimezone(zone).replace(tzinfo=None)
