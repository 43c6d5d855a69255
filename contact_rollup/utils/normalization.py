"""
Contact hygiene utilities.

Provides the normalization and plausibility checks applied to every
contact before it is assigned a dedupe key:
- Email normalization (trim + lowercase) and format/disposable-domain checks
- Phone normalization (digits only, keeping a leading '+') and length checks
"""

from __future__ import annotations

import re

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Throwaway-inbox providers whose addresses are never worth rolling up
DISPOSABLE_EMAIL_DOMAINS = frozenset(
    {
        "mailinator.com",
        "guerrillamail.com",
        "10minutemail.com",
        "tempmail.com",
        "trashmail.com",
        "yopmail.com",
    }
)

MIN_PHONE_DIGITS = 10
MAX_PHONE_DIGITS = 15


def normalize_email(value: str | None) -> str:
    """Trim and lowercase an email address; empty string for missing input."""
    if not value:
        return ""
    return str(value).strip().lower()


def is_likely_deliverable_email(email: str) -> bool:
    """
    Check whether a normalized email address is worth keeping.

    Args:
        email: Email address, already passed through normalize_email()

    Returns:
        True if the address has a plausible shape and is not hosted on a
        known disposable-inbox domain.
    """
    if not email or not EMAIL_PATTERN.match(email):
        return False
    domain = email.rsplit("@", 1)[1]
    return domain not in DISPOSABLE_EMAIL_DOMAINS


def normalize_phone(value: str | None) -> str:
    """
    Normalize a phone number to digits, keeping a leading '+'.

    Formatting characters (spaces, dashes, dots, parentheses) are removed.
    A '+' anywhere other than the first non-blank position is dropped.

    Args:
        value: Raw phone number string

    Returns:
        Normalized phone string, or an empty string if no digits remain
    """
    if not value:
        return ""
    raw = str(value).strip()
    digits = re.sub(r"\D", "", raw)
    if not digits:
        return ""
    return f"+{digits}" if raw.startswith("+") else digits


def is_likely_dialable_phone(phone: str) -> bool:
    """True if a normalized phone number carries 10 to 15 digits."""
    digit_count = len(phone.lstrip("+"))
    return phone.lstrip("+").isdigit() and (
        MIN_PHONE_DIGITS <= digit_count <= MAX_PHONE_DIGITS
    )


def normalize_string(value: str | None) -> str:
    """Collapse internal whitespace and strip; empty string for missing input."""
    if not value:
        return ""
    return re.sub(r"\s+", " ", str(value)).strip()
