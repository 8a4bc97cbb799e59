"""Honeypot and arithmetic challenge used to screen anonymous booking forms."""

from __future__ import annotations

import hashlib
import hmac
import secrets
from typing import Any, Mapping, Optional

HONEYPOT_FIELD = "honeypot_trap"
ANSWER_FIELD = "captcha_answer"
HASH_FIELD = "captcha_hash"


class MathCaptcha:
    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("captcha secret must not be empty")
        self._secret = secret.encode("utf-8")

    def _sign(self, answer: str) -> str:
        return hmac.new(self._secret, answer.strip().encode("utf-8"), hashlib.sha256).hexdigest()

    def new_challenge(self) -> dict[str, str]:
        first = secrets.randbelow(9) + 1
        second = secrets.randbelow(9) + 1
        return {
            "label": f"Security: how much is {first} + {second}?",
            "hash": self._sign(str(first + second)),
        }

    def validate_security_fields(self, payload: Mapping[str, Any]) -> Optional[str]:
        if payload.get(HONEYPOT_FIELD):
            return "Security error: request blocked."
        answer = payload.get(ANSWER_FIELD)
        sent_hash = payload.get(HASH_FIELD)
        if answer is None or sent_hash is None or str(answer).strip() == "":
            return "Please answer the security question."
        if not hmac.compare_digest(self._sign(str(answer)), str(sent_hash)):
            return "The math answer is incorrect."
        return None
