from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol


class SecurityFieldsValidator(Protocol):
    """Antispam collaborator consulted before a booking is considered."""

    def validate_security_fields(self, payload: Mapping[str, Any]) -> Optional[str]:
        """Return None when the payload passes, else a user-facing message."""
        ...

    def new_challenge(self) -> dict[str, str]:
        """Return a fresh challenge as {"label": ..., "hash": ...}."""
        ...
