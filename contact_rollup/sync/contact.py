"""
Prepared contact model for the rollup.

Provides the run-scoped contact representation with:
- Hygiene applied to email and phone (optional scrubbing of invalid values)
- A dedupe key preferring the email over the phone
- A pure merge rule used by both local and global deduplication
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Optional

from contact_rollup.api.providers import CanonicalContact
from contact_rollup.utils.normalization import (
    is_likely_deliverable_email,
    is_likely_dialable_phone,
    normalize_email,
    normalize_phone,
    normalize_string,
)

EMAIL_KEY_PREFIX = "email:"
PHONE_KEY_PREFIX = "phone:"


@dataclass(frozen=True)
class PreparedContact:
    """
    A normalized contact keyed for deduplication.

    Attributes:
        dedupe_key: "email:<normalized>" or "phone:<normalized>"
        first_name: First name
        last_name: Last name
        full_name: Full display name
        email: Normalized email (may be empty when keyed by phone)
        phone: Normalized phone (may be empty)
        tags: Tags collected from every contributing record
        source_account_keys: Accounts that contributed to this contact
    """

    dedupe_key: str
    first_name: str = ""
    last_name: str = ""
    full_name: str = ""
    email: str = ""
    phone: str = ""
    tags: frozenset[str] = field(default_factory=frozenset)
    source_account_keys: frozenset[str] = field(default_factory=frozenset)


def build_dedupe_key(email: str, phone: str) -> Optional[str]:
    """Dedupe key for a contact, or None when it has no usable identifier."""
    if email:
        return f"{EMAIL_KEY_PREFIX}{email}"
    if phone:
        return f"{PHONE_KEY_PREFIX}{phone}"
    return None


def prepare_contact(
    contact: CanonicalContact,
    account_key: str,
    scrub_invalid_emails: bool = True,
    scrub_invalid_phones: bool = True,
) -> Optional[PreparedContact]:
    """
    Normalize a canonical contact and assign its dedupe key.

    With scrubbing enabled, an email failing the deliverability check or a
    phone failing the dialability check is discarded.

    Returns:
        PreparedContact, or None if neither email nor phone is usable
    """
    email = normalize_email(contact.email)
    if email and scrub_invalid_emails and not is_likely_deliverable_email(email):
        email = ""

    phone = normalize_phone(contact.phone)
    if phone and scrub_invalid_phones and not is_likely_dialable_phone(phone):
        phone = ""

    dedupe_key = build_dedupe_key(email, phone)
    if dedupe_key is None:
        return None

    return PreparedContact(
        dedupe_key=dedupe_key,
        first_name=normalize_string(contact.first_name),
        last_name=normalize_string(contact.last_name),
        full_name=normalize_string(contact.full_name),
        email=email,
        phone=phone,
        tags=frozenset(t.strip() for t in contact.tags if t and t.strip()),
        source_account_keys=frozenset({account_key}),
    )


def merge_prepared(existing: PreparedContact, incoming: PreparedContact) -> PreparedContact:
    """
    Merge two contacts sharing a dedupe key.

    Each scalar keeps the existing value unless it is empty; tags and
    source accounts are unioned. Neither input is modified.
    """
    return replace(
        existing,
        first_name=existing.first_name or incoming.first_name,
        last_name=existing.last_name or incoming.last_name,
        full_name=existing.full_name or incoming.full_name,
        email=existing.email or incoming.email,
        phone=existing.phone or incoming.phone,
        tags=existing.tags | incoming.tags,
        source_account_keys=existing.source_account_keys | incoming.source_account_keys,
    )
