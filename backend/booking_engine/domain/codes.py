from __future__ import annotations

import re
import secrets
import string
from typing import Optional

VALIDATION_CODE_ALPHABET = string.ascii_uppercase + string.digits
VALIDATION_CODE_PATTERN = re.compile(r"^[A-Z0-9]{4}-[A-Z0-9]{4}-[A-Z0-9]{4}$")


def generate_confirmation_token() -> str:
    return secrets.token_hex(32)


def generate_validation_code() -> str:
    """Return a code formatted XXXX-XXXX-XXXX (uppercase letters and digits)."""
    raw = "".join(secrets.choice(VALIDATION_CODE_ALPHABET) for _ in range(12))
    return f"{raw[0:4]}-{raw[4:8]}-{raw[8:12]}"


def normalize_validation_code(code: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9]", "", code).upper()
    if len(cleaned) != 12:
        return code.strip().upper()
    return f"{cleaned[0:4]}-{cleaned[4:8]}-{cleaned[8:12]}"


def document_digits(value: str) -> str:
    return re.sub(r"\D", "", value or "")


def is_valid_cpf(value: str) -> bool:
    digits = document_digits(value)
    if len(digits) != 11 or digits == digits[0] * 11:
        return False
    for size in (9, 10):
        total = sum(int(digits[i]) * (size + 1 - i) for i in range(size))
        check = (total * 10) % 11 % 10
        if check != int(digits[size]):
            return False
    return True


def validate_cpf_rf(value: str) -> Optional[str]:
    """Return an error code for a malformed CPF/RF, or None when it is valid.

    RF is a 7-digit registration number; CPF has 11 digits with two check digits.
    """
    digits = document_digits(value)
    if len(digits) == 7:
        return None
    if len(digits) == 11:
        return None if is_valid_cpf(digits) else "invalid_cpf"
    return "invalid_cpf_rf"
