"""
Source collection for rollup syncs.

For each source account: resolve its adapter, list its contacts, apply
the incremental window, run contact hygiene and collapse duplicates
within the account. Failures are isolated per account.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Optional

import httpx

from contact_rollup.config.accounts import AccountRegistry
from contact_rollup.config.limits import RollupLimits
from contact_rollup.sync.contact import PreparedContact, merge_prepared, prepare_contact
from contact_rollup.sync.pagination import paginate_contacts
from contact_rollup.utils.concurrency import BoundedExecutor

logger = logging.getLogger(__name__)


@dataclass
class SourceSyncStats:
    """Counters for one source account."""

    provider: str = ""
    fetched: int = 0
    considered: int = 0
    accepted: int = 0
    skipped_invalid: int = 0
    local_duplicates_collapsed: int = 0

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass
class SourceOutcome:
    """Result of collecting one source account; ``error`` set on failure."""

    account_key: str
    prepared: list[PreparedContact] = field(default_factory=list)
    stats: Optional[SourceSyncStats] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class SourceCollector:
    """
    Fetch and prepare contacts from source accounts.

    Attributes:
        registry: Account directory used to open adapters
        http_client: HTTP client shared by the run
        limits: Page size, per-account ceiling and source concurrency
        scrub_invalid_emails: Discard emails failing the deliverability check
        scrub_invalid_phones: Discard phones failing the dialability check

    Usage:
        collector = SourceCollector(registry, http_client, limits)
        outcomes = await collector.collect_many(["a", "b"], full_sync=True)
    """

    def __init__(
        self,
        registry: AccountRegistry,
        http_client: httpx.AsyncClient,
        limits: RollupLimits,
        scrub_invalid_emails: bool = True,
        scrub_invalid_phones: bool = True,
    ):
        self.registry = registry
        self.http_client = http_client
        self.limits = limits
        self.scrub_invalid_emails = scrub_invalid_emails
        self.scrub_invalid_phones = scrub_invalid_phones

    async def collect_many(
        self,
        account_keys: list[str],
        *,
        full_sync: bool,
        cutoff: Optional[datetime] = None,
    ) -> list[SourceOutcome]:
        """Collect every account with bounded concurrency; outcomes keep input order."""
        executor = BoundedExecutor(self.limits.source_concurrency)
        settled = await executor.run(
            [
                lambda key=key: self.collect(key, full_sync=full_sync, cutoff=cutoff)
                for key in account_keys
            ]
        )
        outcomes = []
        for key, result in zip(account_keys, settled):
            if result.ok and result.value is not None:
                outcomes.append(result.value)
            else:
                outcomes.append(SourceOutcome(account_key=key, error=str(result.error)))
        return outcomes

    async def collect(
        self,
        account_key: str,
        *,
        full_sync: bool,
        cutoff: Optional[datetime] = None,
    ) -> SourceOutcome:
        """
        Collect one source account.

        Args:
            account_key: Source account key
            full_sync: Ignore the incremental window when True
            cutoff: Oldest accepted date-added for incremental syncs

        Returns:
            SourceOutcome with prepared contacts and stats, or with ``error``
            set if credentials, listing or normalization failed
        """
        try:
            return await self._collect(account_key, full_sync=full_sync, cutoff=cutoff)
        except Exception as e:
            logger.warning(f"Source '{account_key}' failed: {e}")
            return SourceOutcome(account_key=account_key, error=str(e) or type(e).__name__)

    async def _collect(
        self,
        account_key: str,
        *,
        full_sync: bool,
        cutoff: Optional[datetime],
    ) -> SourceOutcome:
        adapter = self.registry.open_adapter(account_key, self.http_client)
        records = await paginate_contacts(
            adapter,
            page_size=self.limits.page_size,
            max_records=self.limits.max_source_contacts_per_account,
            label=account_key,
        )

        stats = SourceSyncStats(provider=adapter.provider.value, fetched=len(records))
        local: dict[str, PreparedContact] = {}

        for record in records:
            contact = adapter.normalize_contact(record)

            if not full_sync and cutoff is not None:
                if contact.date_added is None or contact.date_added < cutoff:
                    continue

            stats.considered += 1
            prepared = prepare_contact(
                contact,
                account_key,
                scrub_invalid_emails=self.scrub_invalid_emails,
                scrub_invalid_phones=self.scrub_invalid_phones,
            )
            if prepared is None:
                stats.skipped_invalid += 1
                continue

            existing = local.get(prepared.dedupe_key)
            if existing is None:
                local[prepared.dedupe_key] = prepared
            else:
                stats.local_duplicates_collapsed += 1
                local[prepared.dedupe_key] = merge_prepared(existing, prepared)

        stats.accepted = len(local)
        logger.info(
            f"Source '{account_key}': fetched {stats.fetched}, considered "
            f"{stats.considered}, accepted {stats.accepted}, skipped "
            f"{stats.skipped_invalid} invalid"
        )
        return SourceOutcome(
            account_key=account_key, prepared=list(local.values()), stats=stats
        )
