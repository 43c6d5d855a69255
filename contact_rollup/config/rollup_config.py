"""
Rollup job configuration.

A RollupConfig names the target account, the source accounts and the
schedule of one rollup job. This module holds the pure parts:
- Defaults computed from the account directory
- Sanitizing a persisted row against the accounts that still exist
- Clamping and deduplicating user input before it is written
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Iterable, Optional

from contact_rollup.config.accounts import AccountConfig
from contact_rollup.config.limits import clamp_int

DEFAULT_JOB_KEY = "primary"

DEFAULT_SCHEDULE_INTERVAL_HOURS = 1
DEFAULT_SCHEDULE_MINUTE_UTC = 15
DEFAULT_FULL_SYNC_HOUR_UTC = 3
DEFAULT_FULL_SYNC_MINUTE_UTC = 45

# name -> (default, minimum, maximum)
SCHEDULE_RANGES = {
    "schedule_interval_hours": (DEFAULT_SCHEDULE_INTERVAL_HOURS, 1, 24),
    "schedule_minute_utc": (DEFAULT_SCHEDULE_MINUTE_UTC, 0, 55),
    "full_sync_hour_utc": (DEFAULT_FULL_SYNC_HOUR_UTC, 0, 23),
    "full_sync_minute_utc": (DEFAULT_FULL_SYNC_MINUTE_UTC, 0, 55),
}


def unique_keys(values: Iterable[Any]) -> list[str]:
    """Trimmed, non-empty keys with duplicates removed, first occurrence wins."""
    seen: dict[str, None] = {}
    for value in values or []:
        key = str(value or "").strip()
        if key:
            seen.setdefault(key, None)
    return list(seen)


def clamp_schedule_field(name: str, value: Any) -> int:
    default, minimum, maximum = SCHEDULE_RANGES[name]
    return clamp_int(value, default, minimum, maximum)


@dataclass(frozen=True)
class AccountOption:
    """An account as offered for target/source selection."""

    key: str
    name: str
    provider: str
    rollup: bool

    @classmethod
    def from_account(cls, account: AccountConfig) -> AccountOption:
        return cls(
            key=account.key,
            name=account.display_name,
            provider=account.provider,
            rollup=account.rollup,
        )


@dataclass(frozen=True)
class Actor:
    """The user responsible for a config change or a run."""

    id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    avatar_url: Optional[str] = None

    def to_dict(self) -> dict[str, Optional[str]]:
        return asdict(self)


@dataclass
class RollupConfig:
    """
    Configuration of one rollup job.

    Invariants maintained by this module: the target never appears among
    the sources, sources are unique, and schedule fields are in range.
    """

    job_key: str = DEFAULT_JOB_KEY
    target_account_key: str = ""
    source_account_keys: list[str] = field(default_factory=list)
    enabled: bool = True
    schedule_interval_hours: int = DEFAULT_SCHEDULE_INTERVAL_HOURS
    schedule_minute_utc: int = DEFAULT_SCHEDULE_MINUTE_UTC
    full_sync_enabled: bool = True
    full_sync_hour_utc: int = DEFAULT_FULL_SYNC_HOUR_UTC
    full_sync_minute_utc: int = DEFAULT_FULL_SYNC_MINUTE_UTC
    scrub_invalid_emails: bool = True
    scrub_invalid_phones: bool = True
    updated_by_user_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    last_synced_at: Optional[str] = None
    last_sync_status: Optional[str] = None
    last_sync_summary: Optional[dict[str, Any]] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> RollupConfig:
        """Build from a storage row, clamping schedule fields on the way in."""
        return cls(
            job_key=row.get("job_key") or DEFAULT_JOB_KEY,
            target_account_key=str(row.get("target_account_key") or ""),
            source_account_keys=unique_keys(row.get("source_account_keys") or []),
            enabled=bool(row.get("enabled", True)),
            schedule_interval_hours=clamp_schedule_field(
                "schedule_interval_hours", row.get("schedule_interval_hours")
            ),
            schedule_minute_utc=clamp_schedule_field(
                "schedule_minute_utc", row.get("schedule_minute_utc")
            ),
            full_sync_enabled=bool(row.get("full_sync_enabled", True)),
            full_sync_hour_utc=clamp_schedule_field(
                "full_sync_hour_utc", row.get("full_sync_hour_utc")
            ),
            full_sync_minute_utc=clamp_schedule_field(
                "full_sync_minute_utc", row.get("full_sync_minute_utc")
            ),
            scrub_invalid_emails=bool(row.get("scrub_invalid_emails", True)),
            scrub_invalid_phones=bool(row.get("scrub_invalid_phones", True)),
            updated_by_user_id=row.get("updated_by_user_id"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            last_synced_at=row.get("last_synced_at"),
            last_sync_status=row.get("last_sync_status"),
            last_sync_summary=row.get("last_sync_summary"),
        )

    def storage_values(self) -> dict[str, Any]:
        """The writable columns, as RollupDatabase.save_config expects them."""
        return {
            "target_account_key": self.target_account_key,
            "source_account_keys": list(self.source_account_keys),
            "enabled": self.enabled,
            "schedule_interval_hours": self.schedule_interval_hours,
            "schedule_minute_utc": self.schedule_minute_utc,
            "full_sync_enabled": self.full_sync_enabled,
            "full_sync_hour_utc": self.full_sync_hour_utc,
            "full_sync_minute_utc": self.full_sync_minute_utc,
            "scrub_invalid_emails": self.scrub_invalid_emails,
            "scrub_invalid_phones": self.scrub_invalid_phones,
        }

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RollupConfigInput:
    """
    A requested configuration change.

    Fields left as None keep their current value.
    """

    target_account_key: Optional[str] = None
    source_account_keys: Optional[list[str]] = None
    enabled: Optional[bool] = None
    schedule_interval_hours: Optional[int] = None
    schedule_minute_utc: Optional[int] = None
    full_sync_enabled: Optional[bool] = None
    full_sync_hour_utc: Optional[int] = None
    full_sync_minute_utc: Optional[int] = None
    scrub_invalid_emails: Optional[bool] = None
    scrub_invalid_phones: Optional[bool] = None

    def apply_to(self, current: RollupConfig) -> RollupConfig:
        """
        Merge this input over ``current`` and normalize the result.

        Numeric fields are clamped, source keys deduplicated and the target
        removed from the sources.
        """
        merged = current.storage_values()
        for name, value in asdict(self).items():
            if value is not None:
                merged[name] = value

        target = str(merged["target_account_key"] or "").strip()
        sources = [k for k in unique_keys(merged["source_account_keys"]) if k != target]
        return RollupConfig(
            job_key=current.job_key,
            target_account_key=target,
            source_account_keys=sources,
            enabled=bool(merged["enabled"]),
            schedule_interval_hours=clamp_schedule_field(
                "schedule_interval_hours", merged["schedule_interval_hours"]
            ),
            schedule_minute_utc=clamp_schedule_field(
                "schedule_minute_utc", merged["schedule_minute_utc"]
            ),
            full_sync_enabled=bool(merged["full_sync_enabled"]),
            full_sync_hour_utc=clamp_schedule_field(
                "full_sync_hour_utc", merged["full_sync_hour_utc"]
            ),
            full_sync_minute_utc=clamp_schedule_field(
                "full_sync_minute_utc", merged["full_sync_minute_utc"]
            ),
            scrub_invalid_emails=bool(merged["scrub_invalid_emails"]),
            scrub_invalid_phones=bool(merged["scrub_invalid_phones"]),
            created_at=current.created_at,
        )


@dataclass
class ConfigSnapshot:
    """
    A job's effective configuration plus the account choices around it.

    Attributes:
        config: Sanitized (or default) configuration
        target_options: Accounts eligible to be the target
        source_options: Non-rollup accounts other than the current target
        account_options: Every known account
        is_default_config: True if nothing is persisted for the job yet
    """

    config: RollupConfig
    target_options: list[AccountOption] = field(default_factory=list)
    source_options: list[AccountOption] = field(default_factory=list)
    account_options: list[AccountOption] = field(default_factory=list)
    is_default_config: bool = True


def build_account_options(accounts: Iterable[AccountConfig]) -> list[AccountOption]:
    """Account options sorted by display name (case-insensitive), then key."""
    options = [AccountOption.from_account(a) for a in accounts]
    return sorted(options, key=lambda o: (o.name.lower(), o.key))


def build_default_config(
    account_options: list[AccountOption], job_key: str = DEFAULT_JOB_KEY
) -> RollupConfig:
    """
    Defaults for a job with nothing persisted.

    The first rollup-flagged account (by display order) becomes the target
    and every other non-rollup account a source.
    """
    target = next((o for o in account_options if o.rollup), None)
    target_key = target.key if target else ""
    sources = [o.key for o in account_options if o.key != target_key and not o.rollup]
    return RollupConfig(
        job_key=job_key,
        target_account_key=target_key,
        source_account_keys=sources,
    )


def sanitize_config(
    config: RollupConfig, account_options: list[AccountOption]
) -> RollupConfig:
    """
    Reconcile a persisted config with the accounts that exist now.

    An unknown target becomes empty. Sources are restricted to known,
    non-rollup accounts other than the target; if none remain, every such
    account is used instead.
    """
    known = {o.key for o in account_options}
    target = config.target_account_key if config.target_account_key in known else ""
    source_options = eligible_sources(account_options, target)
    eligible = {o.key for o in source_options}

    sources = [k for k in unique_keys(config.source_account_keys) if k in eligible]
    if not sources:
        sources = [o.key for o in source_options]

    sanitized = RollupConfig(**{**config.to_dict(), "target_account_key": target})
    sanitized.source_account_keys = sources
    return sanitized


def eligible_sources(
    account_options: list[AccountOption], target_key: str
) -> list[AccountOption]:
    return [o for o in account_options if o.key != target_key and not o.rollup]
