"""
Rollup orchestration.

RollupEngine ties the pieces of a run together:
- Sync: snapshot -> schedule gate -> target precheck -> source collection
  -> global dedupe -> bounded upserts -> recording
- Wipe: snapshot -> target precheck -> listing and filtering -> bounded
  deletes -> recording

Both entry points always return a result; failures are reported through
the result's status and errors.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx

from contact_rollup.api.crm_client import new_http_client
from contact_rollup.config.accounts import ADAPTERS, AccountRegistry
from contact_rollup.config.limits import RollupLimits
from contact_rollup.config.rollup_config import DEFAULT_JOB_KEY, ConfigSnapshot
from contact_rollup.config.store import ConfigStore
from contact_rollup.daemon.scheduler import SyncMode, resolve_mode, to_utc
from contact_rollup.storage.db import utc_now_iso
from contact_rollup.sync.collector import SourceCollector
from contact_rollup.sync.dedupe import GlobalDeduplicator
from contact_rollup.sync.errors import (
    ConfigError,
    CredentialError,
    FetchError,
    ScheduleSkip,
    UnsupportedProviderError,
)
from contact_rollup.sync.recorder import RunRecorder, RunResult
from contact_rollup.sync.results import (
    ErrorLog,
    RunStatus,
    SyncRunResult,
    TriggerInfo,
    WipeRunResult,
)
from contact_rollup.sync.wipe import WipeEngine, WipeMode
from contact_rollup.sync.writer import DEFAULT_MARKER_TAG, TargetWriter
from contact_rollup.utils.concurrency import BoundedExecutor
from contact_rollup.utils.retry import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class SyncOptions:
    """
    Options for one sync invocation.

    Attributes:
        dry_run: Collect and dedupe without writing to the target
        full_sync: Ignore the incremental window (ignored when the
                   schedule is enforced; the schedule decides)
        job_key: Rollup job to run
        enforce_schedule: Gate the run on the job's schedule and enabled flag
        source_account_limit: Only use the first N configured sources
        max_upserts: Override the per-run upsert ceiling
        trigger: Who or what started the run
        now: Time of the run; defaults to the current UTC time
    """

    dry_run: bool = False
    full_sync: bool = False
    job_key: str = DEFAULT_JOB_KEY
    enforce_schedule: bool = False
    source_account_limit: Optional[int] = None
    max_upserts: Optional[int] = None
    trigger: TriggerInfo = field(default_factory=TriggerInfo)
    now: Optional[datetime] = None


@dataclass
class WipeOptions:
    """Options for one wipe invocation."""

    dry_run: bool = True
    mode: WipeMode = WipeMode.TAGGED
    job_key: str = DEFAULT_JOB_KEY
    max_deletes: Optional[int] = None
    trigger: TriggerInfo = field(default_factory=TriggerInfo)
    now: Optional[datetime] = None


class RollupEngine:
    """
    Run rollup syncs and wipes for configured jobs.

    Usage:
        engine = RollupEngine(ConfigStore(database, registry), registry)
        result = await engine.run_sync(SyncOptions(dry_run=True))
        print(result.summary())
    """

    def __init__(
        self,
        config_store: ConfigStore,
        registry: AccountRegistry,
        limits: Optional[RollupLimits] = None,
        marker_tag: str = DEFAULT_MARKER_TAG,
        http_client: Optional[httpx.AsyncClient] = None,
        retry_policy: Optional[RetryPolicy] = None,
        recorder: Optional[RunRecorder] = None,
    ):
        """
        Args:
            config_store: Job configuration access
            registry: Account directory
            limits: Concurrency ceilings and caps
            marker_tag: Tag stamped on every contact the rollup writes
            http_client: Shared client; when None each run opens and
                         closes its own
            retry_policy: Write retry policy; defaults to 3 attempts on 429/5xx
            recorder: Run recorder; defaults to one over the config store's
                      persistence
        """
        self.config_store = config_store
        self.registry = registry
        self.limits = limits or RollupLimits()
        self.marker_tag = marker_tag
        self.http_client = http_client
        self.retry_policy = retry_policy
        self.recorder = recorder or RunRecorder(config_store.store)

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self.http_client is not None:
            yield self.http_client
            return
        client = new_http_client(self.limits.request_timeout_seconds)
        try:
            yield client
        finally:
            await client.aclose()

    def _check_target(self, target_key: str) -> None:
        """
        Verify the target can be written to, without any network I/O.

        Raises:
            ConfigError: If no target is configured
            CredentialError: If the target's credentials cannot be resolved
            UnsupportedProviderError: If the target's provider is read-only
        """
        if not target_key:
            raise ConfigError("No target account configured")
        provider, _ = self.registry.resolve_credentials(target_key)
        if not ADAPTERS[provider].supports_writes:
            raise UnsupportedProviderError(
                f"Target '{target_key}' uses provider '{provider.value}', "
                "which does not support rollup writes"
            )

    def _record(
        self, result: RunResult, snapshot: Optional[ConfigSnapshot], **kwargs
    ) -> None:
        result.finished_at = utc_now_iso()
        if snapshot is None:
            logger.debug("No configuration snapshot, run not recorded")
            return
        self.recorder.record(result, snapshot.config, **kwargs)

    def scheduled_mode(
        self, job_key: str = DEFAULT_JOB_KEY, now: Optional[datetime] = None
    ) -> SyncMode:
        """Sync mode the job's schedule calls for at ``now`` (default: current time)."""
        config = self.config_store.get_snapshot(job_key=job_key).config
        return resolve_mode(config, to_utc(now or datetime.now(timezone.utc)))

    async def run_sync(self, options: Optional[SyncOptions] = None) -> SyncRunResult:
        """
        Run one sync of a rollup job.

        Returns:
            SyncRunResult; ``failed`` when the job cannot run or any upsert
            failed, ``disabled`` when the schedule is enforced on a disabled
            job, ``ok`` otherwise (including schedule skips)
        """
        options = options or SyncOptions()
        now = to_utc(options.now or datetime.now(timezone.utc))
        errors = ErrorLog()
        result = SyncRunResult(
            status=RunStatus.OK,
            job_key=options.job_key,
            dry_run=options.dry_run,
            full_sync=options.full_sync,
            mode=SyncMode.FULL.value if options.full_sync else SyncMode.INCREMENTAL.value,
            started_at=utc_now_iso(),
            trigger=options.trigger,
        )

        snapshot: Optional[ConfigSnapshot] = None
        try:
            snapshot = self.config_store.get_snapshot(job_key=options.job_key)
        except Exception as e:
            logger.error(f"Could not load rollup config '{options.job_key}': {e}")
            errors.add("config", f"Could not load configuration: {e}")
            result.status = RunStatus.FAILED
            result.errors = errors.to_dict()
            result.finished_at = utc_now_iso()
            return result

        try:
            await self._sync(result, snapshot, options, now, errors)
        except ScheduleSkip as e:
            logger.debug(str(e))
            result.skipped = True
        except Exception as e:
            logger.exception(f"Sync '{options.job_key}' failed unexpectedly")
            errors.add("run", str(e) or type(e).__name__)
            result.status = RunStatus.FAILED

        result.errors = errors.to_dict()
        result.errors_truncated = dict(errors.dropped)
        self._record(result, snapshot, update_last_sync=not result.skipped)
        logger.info(
            f"Sync '{result.job_key}' finished: {result.status.value} "
            f"({result.totals.upserts_succeeded} upserted, "
            f"{result.totals.upserts_failed} failed)"
        )
        return result

    async def _sync(
        self,
        result: SyncRunResult,
        snapshot: ConfigSnapshot,
        options: SyncOptions,
        now: datetime,
        errors: ErrorLog,
    ) -> None:
        config = snapshot.config
        sources = list(config.source_account_keys)
        if options.source_account_limit is not None and options.source_account_limit > 0:
            sources = sources[: options.source_account_limit]

        result.target_account_key = config.target_account_key
        result.source_account_keys = sources
        result.totals.source_accounts_requested = len(sources)

        if options.enforce_schedule:
            if not config.enabled:
                logger.info(f"Rollup '{config.job_key}' is disabled, not running")
                result.status = RunStatus.DISABLED
                return
            mode = resolve_mode(config, now)
            result.mode = mode.value
            if mode == SyncMode.SKIP:
                raise ScheduleSkip(f"No sync scheduled at {now:%H:%M} UTC")
            result.full_sync = mode == SyncMode.FULL

        try:
            self._check_target(config.target_account_key)
        except ConfigError as e:
            errors.add("config", str(e))
            result.status = RunStatus.FAILED
            return
        except (CredentialError, UnsupportedProviderError) as e:
            errors.add("target", str(e))
            result.status = RunStatus.FAILED
            return

        logger.info(
            f"Starting {result.mode} sync '{config.job_key}': "
            f"{len(sources)} sources -> '{config.target_account_key}'"
            f"{' (dry run)' if options.dry_run else ''}"
        )

        async with self._client() as client:
            collector = SourceCollector(
                self.registry,
                client,
                self.limits,
                scrub_invalid_emails=config.scrub_invalid_emails,
                scrub_invalid_phones=config.scrub_invalid_phones,
            )
            cutoff = now - timedelta(hours=self.limits.incremental_lookback_hours)
            outcomes = await collector.collect_many(
                sources, full_sync=result.full_sync, cutoff=cutoff
            )

            for outcome in outcomes:
                if not outcome.ok:
                    errors.add(f"source:{outcome.account_key}", outcome.error or "")
                    continue
                if outcome.stats is not None:
                    result.per_source[outcome.account_key] = outcome.stats
                    result.totals.add_source(outcome.stats)

            limits = self.limits.with_overrides(max_upserts=options.max_upserts)
            deduped = GlobalDeduplicator(limits.max_upserts).dedupe(
                outcome.prepared for outcome in outcomes if outcome.ok
            )
            totals = result.totals
            totals.global_duplicates_collapsed = deduped.global_duplicates_collapsed
            totals.queued_for_target = deduped.queued_for_target
            totals.truncated_by_max_upserts = deduped.truncated_by_max_upserts

            if options.dry_run or not deduped.contacts:
                return

            adapter = self.registry.open_adapter(config.target_account_key, client)
            writer = TargetWriter(adapter, self.marker_tag, self.retry_policy)
            executor = BoundedExecutor(self.limits.write_concurrency)
            settled = await executor.run(
                [lambda c=c: writer.upsert(c) for c in deduped.contacts]
            )

        totals.upserts_attempted = len(settled)
        for contact, outcome in zip(deduped.contacts, settled):
            if outcome.ok:
                totals.upserts_succeeded += 1
            else:
                totals.upserts_failed += 1
                errors.add(f"upsert:{contact.dedupe_key}", str(outcome.error))
        if totals.upserts_failed:
            result.status = RunStatus.FAILED

    async def run_wipe(self, options: Optional[WipeOptions] = None) -> WipeRunResult:
        """
        Delete rollup contacts (or every contact) from a job's target.

        Returns:
            WipeRunResult; ``failed`` when the target is unusable, the
            listing failed or any delete failed
        """
        options = options or WipeOptions()
        mode = WipeMode(options.mode)
        errors = ErrorLog()
        result = WipeRunResult(
            status=RunStatus.OK,
            job_key=options.job_key,
            dry_run=options.dry_run,
            mode=mode.value,
            started_at=utc_now_iso(),
            trigger=options.trigger,
        )

        snapshot: Optional[ConfigSnapshot] = None
        try:
            snapshot = self.config_store.get_snapshot(job_key=options.job_key)
        except Exception as e:
            logger.error(f"Could not load rollup config '{options.job_key}': {e}")
            errors.add("config", f"Could not load configuration: {e}")
            result.status = RunStatus.FAILED
            result.errors = errors.to_dict()
            result.finished_at = utc_now_iso()
            return result

        try:
            await self._wipe(result, snapshot, options, mode, errors)
        except Exception as e:
            logger.exception(f"Wipe '{options.job_key}' failed unexpectedly")
            errors.add("run", str(e) or type(e).__name__)
            result.status = RunStatus.FAILED

        result.errors = errors.to_dict()
        result.errors_truncated = dict(errors.dropped)
        self._record(result, snapshot)
        logger.info(
            f"Wipe '{result.job_key}' finished: {result.status.value} "
            f"({result.totals.deletes_succeeded} deleted, "
            f"{result.totals.deletes_failed} failed)"
        )
        return result

    async def _wipe(
        self,
        result: WipeRunResult,
        snapshot: ConfigSnapshot,
        options: WipeOptions,
        mode: WipeMode,
        errors: ErrorLog,
    ) -> None:
        target_key = snapshot.config.target_account_key
        result.target_account_key = target_key

        try:
            self._check_target(target_key)
        except ConfigError as e:
            errors.add("config", str(e))
            result.status = RunStatus.FAILED
            return
        except (CredentialError, UnsupportedProviderError) as e:
            errors.add("target", str(e))
            result.status = RunStatus.FAILED
            return

        limits = self.limits.with_overrides(max_deletes=options.max_deletes)
        logger.info(
            f"Starting {mode.value} wipe of '{target_key}'"
            f"{' (dry run)' if options.dry_run else ''}"
        )

        async with self._client() as client:
            adapter = self.registry.open_adapter(target_key, client)
            writer = TargetWriter(adapter, self.marker_tag, self.retry_policy)
            engine = WipeEngine(
                adapter,
                writer,
                page_size=limits.page_size,
                max_records=limits.max_source_contacts_per_account,
                max_deletes=limits.max_deletes,
                write_concurrency=limits.write_concurrency,
                marker_tag=self.marker_tag,
            )
            try:
                outcome = await engine.run(mode, options.dry_run, label=target_key)
            except FetchError as e:
                errors.add("fetch", str(e))
                result.status = RunStatus.FAILED
                return

        result.totals = outcome.totals
        for contact_id, message in outcome.failures.items():
            errors.add(f"delete:{contact_id}", message)
        if outcome.totals.deletes_failed:
            result.status = RunStatus.FAILED
