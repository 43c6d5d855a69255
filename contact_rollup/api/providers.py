"""
Provider-neutral contact types and the adapter interface.

Each CRM provider parses its raw payloads into an explicit record type
(see ghl.py and klaviyo.py) and exposes the same adapter surface:
- Paginated listing returning ContactPage objects
- Pure normalization of raw records into CanonicalContact
- Optional write support (upsert with alternate body shapes, delete)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Optional


class ProviderKind(str, Enum):
    """CRM providers the rollup knows how to talk to."""

    GHL = "ghl"
    KLAVIYO = "klaviyo"


class UnknownProviderError(ValueError):
    """Raised when an account names a provider with no adapter."""

    pass


def parse_provider(value: str) -> ProviderKind:
    try:
        return ProviderKind(str(value).strip().lower())
    except ValueError:
        raise UnknownProviderError(f"Unknown provider: '{value}'") from None


@dataclass(frozen=True)
class AccountCredentials:
    """Resolved credentials for one CRM account."""

    token: str
    location_id: str = ""
    base_url: str = ""


@dataclass
class CanonicalContact:
    """A contact as every provider adapter reports it."""

    id: str = ""
    first_name: str = ""
    last_name: str = ""
    full_name: str = ""
    email: str = ""
    phone: str = ""
    tags: list[str] = field(default_factory=list)
    date_added: Optional[datetime] = None


@dataclass(frozen=True)
class RawContactRecord:
    """
    Base for provider-tagged raw records.

    Subclasses set ``provider`` and implement ``record_id`` so that
    pagination can fall back to the last record's id as a cursor.
    """

    provider: ClassVar[ProviderKind]
    payload: dict[str, Any]

    @property
    def record_id(self) -> str:
        raise NotImplementedError


@dataclass
class ContactPage:
    """One page of a contact listing."""

    records: list[RawContactRecord] = field(default_factory=list)
    next_cursor: Optional[str] = None
    has_more: bool = False


@dataclass(frozen=True)
class OutboundContact:
    """A fully prepared contact ready to be written to the target account."""

    first_name: str = ""
    last_name: str = ""
    full_name: str = ""
    email: str = ""
    phone: str = ""
    tags: tuple[str, ...] = ()


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 string or epoch milliseconds into an aware datetime.

    Returns None for missing or unparseable values.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def text_field(payload: dict[str, Any], *keys: str) -> str:
    """First non-empty string value among ``keys`` (stripped)."""
    for key in keys:
        value = payload.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def tag_list(value: Any) -> list[str]:
    """Stripped, non-blank tags from a JSON array; nulls and non-lists are ignored."""
    if not isinstance(value, list):
        return []
    tags = []
    for tag in value:
        if tag is None or isinstance(tag, (dict, list)):
            continue
        text = str(tag).strip()
        if text:
            tags.append(text)
    return tags


def strip_empty(body: dict[str, Any]) -> dict[str, Any]:
    """Drop None values, blank strings and empty lists from a request body."""
    out: dict[str, Any] = {}
    for key, value in body.items():
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        if isinstance(value, (list, tuple)) and len(value) == 0:
            continue
        out[key] = list(value) if isinstance(value, tuple) else value
    return out


class ContactsAdapter(ABC):
    """
    Contacts capability of one CRM account.

    Write support is a capability flag checked once before a run starts
    (``supports_writes``) rather than discovered from failed requests.
    """

    provider: ClassVar[ProviderKind]
    supports_writes: ClassVar[bool] = False
    has_alternate_listing: ClassVar[bool] = False

    @abstractmethod
    async def fetch_page(
        self, cursor: Optional[str], *, limit: int, alternate: bool = False
    ) -> ContactPage:
        """
        Fetch one page of contacts.

        Args:
            cursor: Cursor returned by the previous page, None for the first
            limit: Maximum records to return
            alternate: Use the provider's alternate (search) listing

        Raises:
            CrmAPIError: If the listing request is rejected
        """

    @abstractmethod
    def normalize_contact(self, record: RawContactRecord) -> CanonicalContact:
        """Map a raw provider record to a CanonicalContact."""

    def build_upsert_bodies(self, contact: OutboundContact) -> list[dict[str, Any]]:
        """Request bodies to try in order: primary shape first, then alternates."""
        raise NotImplementedError(f"{self.provider.value} does not support writes")

    async def upsert_contact(self, body: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError(f"{self.provider.value} does not support writes")

    async def delete_contact(self, contact_id: str) -> None:
        raise NotImplementedError(f"{self.provider.value} does not support writes")
