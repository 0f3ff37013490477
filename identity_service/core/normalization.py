"""Contact field normalization and format checks.

Normalization is minimal: an empty string means "not provided"
and becomes None, everything else is kept as the exact string that was sent.
Case and whitespace are significant for matching.
"""

import re
from functools import lru_cache

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def normalize_optional(value: str | None) -> str | None:
    """Map an empty string to None, pass anything else through unchanged."""
    if value is None or value == "":
        return None
    return value


def normalize_phone_input(phone: str | int | None) -> str | None:
    """Normalize a phone number as received over the wire.

    JSON clients frequently send phone numbers as numbers, so integers are
    converted to their decimal string before the empty-string rule applies.

    Examples:
        1234567890 → "1234567890"
        "" → None
        None → None
    """
    if isinstance(phone, bool):
        raise TypeError("phone number must be a string or an integer")
    if isinstance(phone, int):
        return str(phone)
    return normalize_optional(phone)


@lru_cache(maxsize=8)
def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern)


def is_valid_phone(phone: str, pattern: str) -> bool:
    """Check a phone number against the configured format.

    Args:
        phone: Phone number (already normalized, never empty)
        pattern: Regular expression the whole number must match

    Returns:
        True if the phone matches the pattern
    """
    return _compile(pattern).fullmatch(phone) is not None


def is_valid_email(email: str) -> bool:
    """Loose syntactic email check (local@domain.tld)."""
    return EMAIL_RE.match(email) is not None
