"""
Klaviyo profiles adapter (source only).

Lists profiles through the JSON:API endpoint GET /api/profiles/ and
follows ``links.next`` for pagination. Klaviyo cannot be a rollup target.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, Optional
from urllib.parse import parse_qs, urlparse

import httpx

from contact_rollup.api.crm_client import CrmClient
from contact_rollup.api.providers import (
    AccountCredentials,
    CanonicalContact,
    ContactPage,
    ContactsAdapter,
    ProviderKind,
    RawContactRecord,
    parse_timestamp,
    tag_list,
    text_field,
)

logger = logging.getLogger(__name__)

KLAVIYO_BASE_URL = "https://a.klaviyo.com/api"
KLAVIYO_REVISION = "2024-10-15"

# Klaviyo caps profile pages at 100
MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class KlaviyoProfileRecord(RawContactRecord):
    """Raw JSON:API profile resource."""

    provider: ClassVar[ProviderKind] = ProviderKind.KLAVIYO

    @property
    def record_id(self) -> str:
        return text_field(self.payload, "id")

    @property
    def attributes(self) -> dict[str, Any]:
        attrs = self.payload.get("attributes")
        return attrs if isinstance(attrs, dict) else self.payload

    @property
    def properties(self) -> dict[str, Any]:
        """Custom profile properties."""
        props = self.attributes.get("properties")
        return props if isinstance(props, dict) else {}

    @property
    def first_name(self) -> str:
        return text_field(self.attributes, "first_name")

    @property
    def last_name(self) -> str:
        return text_field(self.attributes, "last_name")

    @property
    def full_name(self) -> str:
        """First and last names joined, falling back to the email address."""
        name = " ".join(p for p in (self.first_name, self.last_name) if p)
        return name or self.email

    @property
    def email(self) -> str:
        return text_field(self.attributes, "email")

    @property
    def phone(self) -> str:
        return text_field(self.attributes, "phone_number")

    @property
    def tags(self) -> list[str]:
        return tag_list(self.properties.get("tags"))

    @property
    def date_added(self) -> Optional[datetime]:
        return parse_timestamp(self.attributes.get("created"))


def _next_cursor(payload: dict[str, Any]) -> Optional[str]:
    links = payload.get("links")
    if not isinstance(links, dict) or not links.get("next"):
        return None
    query = parse_qs(urlparse(str(links["next"])).query)
    values = query.get("page[cursor]")
    return values[0] if values else None


class KlaviyoContactsAdapter(ContactsAdapter):
    """Profiles listing for one Klaviyo account."""

    provider = ProviderKind.KLAVIYO

    def __init__(self, http_client: httpx.AsyncClient, credentials: AccountCredentials):
        self.client = CrmClient(
            http_client,
            credentials.base_url or KLAVIYO_BASE_URL,
            headers={
                "Authorization": f"Klaviyo-API-Key {credentials.token}",
                "revision": KLAVIYO_REVISION,
                "Accept": "application/vnd.api+json",
            },
        )

    async def fetch_page(
        self, cursor: Optional[str], *, limit: int, alternate: bool = False
    ) -> ContactPage:
        params: dict[str, Any] = {"page[size]": min(limit, MAX_PAGE_SIZE)}
        if cursor:
            params["page[cursor]"] = cursor

        payload = await self.client.request("GET", "/profiles/", params=params)
        data = payload.get("data")
        raw = [item for item in data if isinstance(item, dict)] if isinstance(data, list) else []
        next_cursor = _next_cursor(payload)

        logger.debug(f"Klaviyo returned {len(raw)} profiles (cursor={cursor})")
        return ContactPage(
            records=[KlaviyoProfileRecord(payload=item) for item in raw],
            next_cursor=next_cursor,
            has_more=next_cursor is not None,
        )

    def normalize_contact(self, record: RawContactRecord) -> CanonicalContact:
        if not isinstance(record, KlaviyoProfileRecord):
            record = KlaviyoProfileRecord(payload=record.payload)
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
