"""
HighLevel (GHL) contacts adapter.

The only provider that can act as a rollup target. Provides:
- Cursor listing via GET /contacts/ with a /contacts/search alternate
- Upsert via POST /contacts/upsert, flat body first, wrapped body second
- Delete via DELETE /contacts/{id}
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, Optional

import httpx

from contact_rollup.api.crm_client import CrmClient
from contact_rollup.api.providers import (
    AccountCredentials,
    CanonicalContact,
    ContactPage,
    ContactsAdapter,
    OutboundContact,
    ProviderKind,
    RawContactRecord,
    parse_timestamp,
    strip_empty,
    tag_list,
    text_field,
)

logger = logging.getLogger(__name__)

GHL_BASE_URL = "https://services.leadconnectorhq.com"
GHL_API_VERSION = "2021-07-28"

# Value of the "source" attribute on every contact the rollup writes
UPSERT_SOURCE_LABEL = "Contact Rollup"


@dataclass(frozen=True)
class GhlContactRecord(RawContactRecord):
    """Raw contact object from the GHL contacts API."""

    provider: ClassVar[ProviderKind] = ProviderKind.GHL

    @property
    def record_id(self) -> str:
        return text_field(self.payload, "id", "_id")

    @property
    def first_name(self) -> str:
        return text_field(self.payload, "firstName", "first_name", "first")

    @property
    def last_name(self) -> str:
        return text_field(self.payload, "lastName", "last_name", "last")

    @property
    def full_name(self) -> str:
        """Contact name, or the first and last names joined."""
        name = text_field(self.payload, "name", "fullName", "full_name")
        return name or " ".join(p for p in (self.first_name, self.last_name) if p)

    @property
    def email(self) -> str:
        return text_field(self.payload, "email")

    @property
    def phone(self) -> str:
        return text_field(self.payload, "phone")

    @property
    def tags(self) -> list[str]:
        return tag_list(self.payload.get("tags"))

    @property
    def date_added(self) -> Optional[datetime]:
        return parse_timestamp(self.payload.get("dateAdded"))


def _extract_contacts(payload: dict[str, Any]) -> list[dict[str, Any]]:
    """Contacts array from any of the response shapes GHL is known to return."""
    candidates = [payload.get("contacts")]
    data = payload.get("data")
    if isinstance(data, dict):
        candidates.append(data.get("contacts"))
    candidates.append(data)
    for candidate in candidates:
        if isinstance(candidate, list):
            return [c for c in candidate if isinstance(c, dict)]
    return []


def _extract_cursor(payload: dict[str, Any]) -> tuple[Optional[str], bool]:
    """Return (startAfterId, whether the page advertises a next page)."""
    meta = payload.get("meta")
    if not isinstance(meta, dict):
        return None, False
    start_after_id = meta.get("startAfterId")
    cursor = str(start_after_id) if start_after_id not in (None, "") else None
    next_page = meta.get("nextPageUrl") or meta.get("nextPage")
    return cursor, bool(next_page or cursor)


class GhlContactsAdapter(ContactsAdapter):
    """
    Contacts adapter for one GHL location.

    Usage:
        adapter = GhlContactsAdapter(http_client, credentials)
        page = await adapter.fetch_page(None, limit=100)
        contacts = [adapter.normalize_contact(r) for r in page.records]
    """

    provider = ProviderKind.GHL
    supports_writes = True
    has_alternate_listing = True

    def __init__(self, http_client: httpx.AsyncClient, credentials: AccountCredentials):
        self.location_id = credentials.location_id
        self.client = CrmClient(
            http_client,
            credentials.base_url or GHL_BASE_URL,
            headers={
                "Authorization": f"Bearer {credentials.token}",
                "Version": GHL_API_VERSION,
                "Accept": "application/json",
            },
        )

    async def fetch_page(
        self, cursor: Optional[str], *, limit: int, alternate: bool = False
    ) -> ContactPage:
        path = "/contacts/search" if alternate else "/contacts/"
        params: dict[str, Any] = {"locationId": self.location_id, "limit": limit}
        if cursor:
            params["startAfterId"] = cursor

        payload = await self.client.request("GET", path, params=params)
        raw = _extract_contacts(payload)
        next_cursor, advertised = _extract_cursor(payload)
        records = [GhlContactRecord(payload=item) for item in raw]

        logger.debug(f"GHL {path} returned {len(records)} contacts (cursor={cursor})")
        return ContactPage(
            records=records,
            next_cursor=next_cursor,
            has_more=len(records) >= limit and advertised,
        )

    def normalize_contact(self, record: RawContactRecord) -> CanonicalContact:
        if not isinstance(record, GhlContactRecord):
            record = GhlContactRecord(payload=record.payload)
        return CanonicalContact(
            id=record.record_id,
            first_name=record.first_name,
            last_name=record.last_name,
            full_name=record.full_name,
            email=record.email,
            phone=record.phone,
            tags=record.tags,
            date_added=record.date_added,
        )

    def build_upsert_bodies(self, contact: OutboundContact) -> list[dict[str, Any]]:
        fields = {
            "firstName": contact.first_name,
            "lastName": contact.last_name,
            "name": contact.full_name,
            "email": contact.email,
            "phone": contact.phone,
            "tags": contact.tags,
            "source": UPSERT_SOURCE_LABEL,
        }
        flat = strip_empty({"locationId": self.location_id, **fields})
        wrapped = strip_empty(
            {"locationId": self.location_id, "contact": strip_empty(fields)}
        )
        return [flat, wrapped]

    async def upsert_contact(self, body: dict[str, Any]) -> dict[str, Any]:
        return await self.client.request("POST", "/contacts/upsert", json=body)

    async def delete_contact(self, contact_id: str) -> None:
        await self.client.request("DELETE", f"/contacts/{contact_id}")
