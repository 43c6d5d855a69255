"""
Wipe of rollup-created contacts from the target account.

Lists the target, keeps the contacts eligible under the wipe mode and
deletes them through the TargetWriter with bounded concurrency.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Optional

from contact_rollup.api.providers import CanonicalContact, ContactsAdapter
from contact_rollup.sync.pagination import paginate_contacts
from contact_rollup.sync.writer import DEFAULT_MARKER_TAG, SOURCE_TAG_PREFIX, TargetWriter
from contact_rollup.utils.concurrency import BoundedExecutor

logger = logging.getLogger(__name__)


class WipeMode(str, Enum):
    """Which target contacts a wipe deletes."""

    ALL = "all"  # Every contact on the target
    TAGGED = "tagged"  # Only contacts carrying rollup tags


@dataclass
class WipeTotals:
    """Counters for one wipe run."""

    listed: int = 0
    unique: int = 0
    eligible: int = 0
    matched_marker_tag: int = 0
    matched_source_tag: int = 0
    truncated_by_max_deletes: int = 0
    deletes_attempted: int = 0
    deletes_succeeded: int = 0
    deletes_failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class WipeOutcome:
    """Totals plus per-contact delete failures keyed by contact id."""

    totals: WipeTotals = field(default_factory=WipeTotals)
    failures: dict[str, str] = field(default_factory=dict)


def has_marker_tag(contact: CanonicalContact, marker_tag: str) -> bool:
    marker = marker_tag.lower()
    return any(tag.lower() == marker for tag in contact.tags)


def has_source_tag(contact: CanonicalContact) -> bool:
    prefix = SOURCE_TAG_PREFIX.lower()
    return any(tag.lower().startswith(prefix) for tag in contact.tags)


class WipeEngine:
    """
    Delete contacts from the target account.

    Usage:
        engine = WipeEngine(adapter, writer, page_size=100,
                            max_records=250_000, max_deletes=10_000,
                            write_concurrency=4)
        outcome = await engine.run(WipeMode.TAGGED, dry_run=True)
    """

    def __init__(
        self,
        adapter: ContactsAdapter,
        writer: Optional[TargetWriter],
        *,
        page_size: int,
        max_records: int,
        max_deletes: int,
        write_concurrency: int,
        marker_tag: str = DEFAULT_MARKER_TAG,
    ):
        self.adapter = adapter
        self.writer = writer
        self.page_size = page_size
        self.max_records = max_records
        self.max_deletes = max_deletes
        self.write_concurrency = write_concurrency
        self.marker_tag = marker_tag

    async def list_contacts(
        self, label: str = "target"
    ) -> tuple[list[CanonicalContact], int]:
        """
        Target contacts deduplicated by id, plus the number of records listed.

        Contacts without an id cannot be deleted and are dropped.
        """
        records = await paginate_contacts(
            self.adapter,
            page_size=self.page_size,
            max_records=self.max_records,
            label=label,
        )
        contacts: dict[str, CanonicalContact] = {}
        for record in records:
            contact = self.adapter.normalize_contact(record)
            if contact.id and contact.id not in contacts:
                contacts[contact.id] = contact
        return list(contacts.values()), len(records)

    def select(
        self, contacts: list[CanonicalContact], mode: WipeMode, totals: WipeTotals
    ) -> list[CanonicalContact]:
        """Contacts eligible under ``mode``, counting tag matches into ``totals``."""
        eligible = []
        for contact in contacts:
            marker = has_marker_tag(contact, self.marker_tag)
            source = has_source_tag(contact)
            if marker:
                totals.matched_marker_tag += 1
            if source:
                totals.matched_source_tag += 1
            if mode == WipeMode.ALL or marker or source:
                eligible.append(contact)
        return eligible

    async def run(
        self, mode: WipeMode, dry_run: bool, label: str = "target"
    ) -> WipeOutcome:
        """
        List, filter and (unless dry run) delete target contacts.

        Raises:
            FetchError: If the target listing fails
        """
        outcome = WipeOutcome()
        totals = outcome.totals

        contacts, totals.listed = await self.list_contacts(label)
        totals.unique = len(contacts)

        eligible = self.select(contacts, mode, totals)
        totals.eligible = len(eligible)
        to_delete = eligible[: self.max_deletes]
        totals.truncated_by_max_deletes = len(eligible) - len(to_delete)

        logger.info(
            f"Wipe ({mode.value}): {totals.eligible} of {totals.unique} contacts "
            f"eligible, {len(to_delete)} queued"
        )
        if dry_run or not to_delete:
            return outcome
        if self.writer is None:
            raise ValueError("A TargetWriter is required for non-dry wipes")

        writer = self.writer
        executor = BoundedExecutor(self.write_concurrency)
        settled = await executor.run(
            [lambda cid=c.id: writer.delete(cid) for c in to_delete]
        )

        totals.deletes_attempted = len(settled)
        for contact, result in zip(to_delete, settled):
            if result.ok:
                totals.deletes_succeeded += 1
            else:
                totals.deletes_failed += 1
                outcome.failures[contact.id] = str(result.error)
        return outcome
