"""
Cross-source deduplication.

Pure: groups prepared contacts from every source by dedupe key, merges
collisions and truncates the result to the per-run upsert ceiling by
arrival order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from contact_rollup.sync.contact import PreparedContact, merge_prepared


@dataclass
class DedupeResult:
    """Outcome of global deduplication."""

    contacts: list[PreparedContact] = field(default_factory=list)
    global_duplicates_collapsed: int = 0
    queued_for_target: int = 0
    truncated_by_max_upserts: int = 0


class GlobalDeduplicator:
    """
    Merge contacts across sources and cap the number written.

    Usage:
        result = GlobalDeduplicator(max_upserts=10_000).dedupe(
            outcome.prepared for outcome in outcomes
        )
    """

    def __init__(self, max_upserts: int):
        if max_upserts < 0:
            raise ValueError(f"max_upserts must be >= 0, got {max_upserts}")
        self.max_upserts = max_upserts

    def dedupe(self, batches: Iterable[Iterable[PreparedContact]]) -> DedupeResult:
        """
        Deduplicate contacts from several sources.

        Args:
            batches: Per-source contact lists, in source order

        Returns:
            DedupeResult whose contacts keep first-encounter order
        """
        merged: dict[str, PreparedContact] = {}
        collapsed = 0

        for batch in batches:
            for contact in batch:
                existing = merged.get(contact.dedupe_key)
                if existing is None:
                    merged[contact.dedupe_key] = contact
                else:
                    collapsed += 1
                    merged[contact.dedupe_key] = merge_prepared(existing, contact)

        contacts = list(merged.values())
        queued = contacts[: self.max_upserts]
        return DedupeResult(
            contacts=queued,
            global_duplicates_collapsed=collapsed,
            queued_for_target=len(queued),
            truncated_by_max_upserts=len(contacts) - len(queued),
        )
