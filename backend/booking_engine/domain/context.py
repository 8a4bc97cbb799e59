from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .blocking import GlobalHoliday


@dataclass(frozen=True)
class Actor:
    user_id: Optional[int] = None
    roles: frozenset[str] = frozenset()
    is_admin: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None


GUEST = Actor()


@dataclass(frozen=True)
class SchedulingContext:
    """Per-request settings handed to the core instead of global options.

    `now` is the server clock expressed as naive wall time in the site
    timezone, the same frame appointment dates and times are stored in.
    """

    now: datetime
    actor: Actor = GUEST
    global_holidays: tuple[GlobalHoliday, ...] = ()
    disable_all_emails: bool = False
    require_consent: bool = True
    require_identity_document: bool = True
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
