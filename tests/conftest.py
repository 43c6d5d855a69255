"""Shared fixtures for contact_rollup tests."""

from datetime import datetime, timezone
from typing import Any, Optional

import pytest

from contact_rollup.api.crm_client import CrmAPIError, is_retryable_error
from contact_rollup.api.ghl import GhlContactRecord
from contact_rollup.api.providers import (
    AccountCredentials,
    CanonicalContact,
    ContactPage,
    ContactsAdapter,
    ProviderKind,
    RawContactRecord,
)
from contact_rollup.storage.db import RollupDatabase
from contact_rollup.utils.retry import RetryPolicy


async def _no_sleep(delay: float) -> None:
    return None


class FakeContactsAdapter(ContactsAdapter):
    """
    In-memory contacts adapter.

    ``pages`` is a list of record-payload lists served in order; the
    cursor is the index of the next page. ``fail_pages`` maps a page
    index to the status code to fail with. Writes are recorded.
    """

    provider = ProviderKind.GHL
    supports_writes = True
    has_alternate_listing = False

    def __init__(
        self,
        pages: Optional[list[list[dict[str, Any]]]] = None,
        fail_pages: Optional[dict[int, int]] = None,
        upsert_failures: Optional[list[int]] = None,
        delete_failures: Optional[dict[str, int]] = None,
    ):
        self.pages = pages or []
        self.fail_pages = fail_pages or {}
        self.upsert_failures = list(upsert_failures or [])
        self.delete_failures = dict(delete_failures or {})
        self.fetch_calls: list[tuple[Optional[str], int, bool]] = []
        self.upserted: list[dict[str, Any]] = []
        self.upsert_attempts = 0
        self.deleted: list[str] = []

    async def fetch_page(
        self, cursor: Optional[str], *, limit: int, alternate: bool = False
    ) -> ContactPage:
        self.fetch_calls.append((cursor, limit, alternate))
        index = int(cursor) if cursor else 0
        if index in self.fail_pages:
            raise CrmAPIError(self.fail_pages[index], "listing rejected")
        if index >= len(self.pages):
            return ContactPage()
        records = [GhlContactRecord(payload=p) for p in self.pages[index][:limit]]
        has_more = index + 1 < len(self.pages)
        return ContactPage(
            records=records,
            next_cursor=str(index + 1) if has_more else None,
            has_more=has_more,
        )

    def normalize_contact(self, record: RawContactRecord) -> CanonicalContact:
        payload = record.payload
        return CanonicalContact(
            id=payload.get("id", ""),
            first_name=payload.get("firstName", ""),
            last_name=payload.get("lastName", ""),
            full_name=payload.get("name", ""),
            email=payload.get("email", ""),
            phone=payload.get("phone", ""),
            tags=list(payload.get("tags", [])),
            date_added=payload.get("dateAdded"),
        )

    def build_upsert_bodies(self, contact):
        flat = {"email": contact.email, "phone": contact.phone, "tags": list(contact.tags)}
        return [flat, {"contact": dict(flat)}]

    async def upsert_contact(self, body):
        self.upsert_attempts += 1
        if self.upsert_failures:
            raise CrmAPIError(self.upsert_failures.pop(0), "upsert rejected")
        self.upserted.append(body)
        return {"contact": {"id": f"c{len(self.upserted)}"}}

    async def delete_contact(self, contact_id):
        if contact_id in self.delete_failures:
            raise CrmAPIError(self.delete_failures[contact_id], "delete rejected")
        self.deleted.append(contact_id)


class ReadOnlyAdapter(FakeContactsAdapter):
    provider = ProviderKind.KLAVIYO
    supports_writes = False


@pytest.fixture
def fake_adapter_cls():
    """The FakeContactsAdapter class, for tests that build their own."""
    return FakeContactsAdapter


@pytest.fixture
def read_only_adapter_cls():
    return ReadOnlyAdapter


@pytest.fixture
def no_sleep_policy():
    """Write retry policy that does not actually sleep."""
    return RetryPolicy(
        max_attempts=3, base_delay=0.3, is_retryable=is_retryable_error, sleep=_no_sleep
    )


@pytest.fixture
def database():
    """Initialized in-memory RollupDatabase."""
    db = RollupDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def ghl_credentials():
    return AccountCredentials(
        token="pit-test", location_id="loc-1", base_url="https://ghl.test"
    )


@pytest.fixture
def recent():
    """A timestamp inside any incremental window used in tests."""
    return datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
