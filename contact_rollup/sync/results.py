"""
Run result types returned by the rollup engine.

Results are always returned, never raised: a run that hit errors says so
through ``status`` and the capped ``errors`` map.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional

from contact_rollup.sync.collector import SourceSyncStats
from contact_rollup.sync.wipe import WipeTotals

# Entries kept per error category (the part of the key before ':')
MAX_ERRORS_PER_CATEGORY = 25


class RunStatus(str, Enum):
    """Outcome of a rollup run."""

    OK = "ok"
    FAILED = "failed"
    DISABLED = "disabled"


class RunType(str, Enum):
    SYNC = "sync"
    WIPE = "wipe"


class ErrorLog:
    """
    Error messages keyed by "<category>:<item>" or a bare category.

    Each category keeps its first MAX_ERRORS_PER_CATEGORY entries; further
    entries are only counted.
    """

    def __init__(self, max_per_category: int = MAX_ERRORS_PER_CATEGORY):
        self.max_per_category = max_per_category
        self._entries: dict[str, str] = {}
        self._counts: dict[str, int] = {}
        self.dropped: dict[str, int] = {}

    def add(self, key: str, message: str) -> None:
        category = key.split(":", 1)[0]
        count = self._counts.get(category, 0) + 1
        self._counts[category] = count
        if count > self.max_per_category:
            self.dropped[category] = self.dropped.get(category, 0) + 1
            return
        self._entries[key] = message

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    def to_dict(self) -> dict[str, str]:
        return dict(self._entries)


def error_count_line(errors: dict[str, str], truncated: dict[str, int]) -> str:
    line = f"  Errors: {len(errors)}"
    dropped = sum(truncated.values())
    if dropped:
        line += f" ({dropped} more not recorded)"
    return line


@dataclass(frozen=True)
class TriggerInfo:
    """Who or what started a run."""

    source: str = "manual"
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    user_role: Optional[str] = None
    user_avatar_url: Optional[str] = None

    def to_dict(self) -> dict[str, Optional[str]]:
        return asdict(self)


@dataclass
class SyncTotals:
    """Counters for one sync run."""

    source_accounts_requested: int = 0
    source_accounts_processed: int = 0
    fetched: int = 0
    considered: int = 0
    accepted: int = 0
    skipped_invalid: int = 0
    local_duplicates_collapsed: int = 0
    global_duplicates_collapsed: int = 0
    queued_for_target: int = 0
    truncated_by_max_upserts: int = 0
    upserts_attempted: int = 0
    upserts_succeeded: int = 0
    upserts_failed: int = 0

    def add_source(self, stats: SourceSyncStats) -> None:
        self.source_accounts_processed += 1
        self.fetched += stats.fetched
        self.considered += stats.considered
        self.accepted += stats.accepted
        self.skipped_invalid += stats.skipped_invalid
        self.local_duplicates_collapsed += stats.local_duplicates_collapsed

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class SyncRunResult:
    """Result of one sync invocation."""

    status: RunStatus
    job_key: str
    dry_run: bool
    full_sync: bool
    mode: str
    started_at: str
    finished_at: str = ""
    skipped: bool = False
    target_account_key: str = ""
    source_account_keys: list[str] = field(default_factory=list)
    totals: SyncTotals = field(default_factory=SyncTotals)
    per_source: dict[str, SourceSyncStats] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    errors_truncated: dict[str, int] = field(default_factory=dict)
    trigger: TriggerInfo = field(default_factory=TriggerInfo)

    run_type = RunType.SYNC

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_type": self.run_type.value,
            "status": self.status.value,
            "job_key": self.job_key,
            "dry_run": self.dry_run,
            "full_sync": self.full_sync,
            "mode": self.mode,
            "skipped": self.skipped,
            "target_account_key": self.target_account_key,
            "source_account_keys": list(self.source_account_keys),
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "totals": self.totals.to_dict(),
            "per_source": {k: v.to_dict() for k, v in self.per_source.items()},
            "errors": dict(self.errors),
            "errors_truncated": dict(self.errors_truncated),
            "trigger": self.trigger.to_dict(),
        }

    def summary(self) -> str:
        """Human-readable multi-line summary."""
        t = self.totals
        lines = [
            f"Sync {self.status.value} ({self.mode}"
            f"{', dry run' if self.dry_run else ''})",
            f"  Target: {self.target_account_key or '(none)'}",
            f"  Sources: {t.source_accounts_processed}/{t.source_accounts_requested} processed",
        ]
        if self.skipped:
            lines.append("  Skipped: schedule did not match")
            return "\n".join(lines)
        lines.extend(
            [
                f"  Fetched: {t.fetched}, considered: {t.considered}, "
                f"accepted: {t.accepted}",
                f"  Skipped invalid: {t.skipped_invalid}",
                f"  Duplicates collapsed: {t.local_duplicates_collapsed} local, "
                f"{t.global_duplicates_collapsed} global",
                f"  Queued for target: {t.queued_for_target}"
                f" (truncated: {t.truncated_by_max_upserts})",
                f"  Upserts: {t.upserts_succeeded}/{t.upserts_attempted} succeeded, "
                f"{t.upserts_failed} failed",
            ]
        )
        if self.errors:
            lines.append(error_count_line(self.errors, self.errors_truncated))
        return "\n".join(lines)


@dataclass
class WipeRunResult:
    """Result of one wipe invocation."""

    status: RunStatus
    job_key: str
    dry_run: bool
    mode: str
    started_at: str
    finished_at: str = ""
    target_account_key: str = ""
    totals: WipeTotals = field(default_factory=WipeTotals)
    errors: dict[str, str] = field(default_factory=dict)
    errors_truncated: dict[str, int] = field(default_factory=dict)
    trigger: TriggerInfo = field(default_factory=TriggerInfo)

    run_type = RunType.WIPE

    @property
    def filter_breakdown(self) -> dict[str, int]:
        return {
            "matched_marker_tag": self.totals.matched_marker_tag,
            "matched_source_tag": self.totals.matched_source_tag,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_type": self.run_type.value,
            "status": self.status.value,
            "job_key": self.job_key,
            "dry_run": self.dry_run,
            "mode": self.mode,
            "target_account_key": self.target_account_key,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "totals": self.totals.to_dict(),
            "filter_breakdown": self.filter_breakdown,
            "errors": dict(self.errors),
            "errors_truncated": dict(self.errors_truncated),
            "trigger": self.trigger.to_dict(),
        }

    def summary(self) -> str:
        t = self.totals
        lines = [
            f"Wipe {self.status.value} ({self.mode}"
            f"{', dry run' if self.dry_run else ''})",
            f"  Target: {self.target_account_key or '(none)'}",
            f"  Listed: {t.listed}, unique: {t.unique}, eligible: {t.eligible}",
            f"  Matched marker tag: {t.matched_marker_tag}, "
            f"source tag: {t.matched_source_tag}",
            f"  Truncated by max deletes: {t.truncated_by_max_deletes}",
            f"  Deletes: {t.deletes_succeeded}/{t.deletes_attempted} succeeded, "
            f"{t.deletes_failed} failed",
        ]
        if self.errors:
            lines.append(error_count_line(self.errors, self.errors_truncated))
        return "\n".join(lines)
