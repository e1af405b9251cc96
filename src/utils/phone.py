"""Phone number validation helpers."""

import re

# E.164: "+" then a non-zero country code digit, 2-15 digits in total
E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")


def is_e164(phone: str) -> bool:
    return bool(phone) and E164_PATTERN.match(phone) is not None


def mask_phone(phone: str) -> str:
    """Mask all but the last four digits for log output."""
    if not phone or len(phone) <= 4:
        return "****"
    return f"***{phone[-4:]}"
