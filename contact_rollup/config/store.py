"""
Config store: snapshots and transactional updates of rollup jobs.

Combines the account directory with the persisted job row so callers
always see a configuration that refers only to accounts that exist.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Iterable, Optional

from contact_rollup.config.accounts import AccountRegistry
from contact_rollup.config.rollup_config import (
    DEFAULT_JOB_KEY,
    Actor,
    ConfigSnapshot,
    RollupConfig,
    RollupConfigInput,
    build_account_options,
    build_default_config,
    eligible_sources,
    sanitize_config,
    unique_keys,
)
from contact_rollup.storage.base import RollupStore
from contact_rollup.sync.errors import ConfigError

logger = logging.getLogger(__name__)


class ConfigStore:
    """
    Read and write rollup job configuration.

    Usage:
        store = ConfigStore(database, registry)
        snapshot = store.get_snapshot()
        store.upsert_config(RollupConfigInput(enabled=False), actor=Actor(id="u1"))
    """

    def __init__(self, store: RollupStore, registry: AccountRegistry):
        self.store = store
        self.registry = registry

    def get_snapshot(
        self,
        account_filter: Optional[Iterable[str]] = None,
        job_key: str = DEFAULT_JOB_KEY,
    ) -> ConfigSnapshot:
        """
        Effective configuration of a job plus its account options.

        Args:
            account_filter: Restrict the visible accounts to these keys
            job_key: Job identifier

        Returns:
            ConfigSnapshot; defaults are computed when no row is persisted,
            otherwise the persisted row is sanitized against the accounts.
        """
        account_options = build_account_options(
            self.registry.list_accounts(account_filter)
        )
        row = self.store.get_config(job_key)

        if row is None:
            config = build_default_config(account_options, job_key)
        else:
            config = RollupConfig.from_row(row)
        config = sanitize_config(config, account_options)

        return ConfigSnapshot(
            config=config,
            target_options=[o for o in account_options if o.rollup],
            source_options=eligible_sources(account_options, config.target_account_key),
            account_options=account_options,
            is_default_config=row is None,
        )

    def upsert_config(
        self,
        config_input: RollupConfigInput,
        job_key: str = DEFAULT_JOB_KEY,
        actor: Optional[Actor] = None,
    ) -> RollupConfig:
        """
        Apply a change to a job's configuration.

        Fields are clamped and deduplicated before the write. The write and
        the diff-only history entry share one transaction; history is
        skipped when the database has no history table. A job that was
        never saved takes its unspecified fields from the computed defaults.

        Returns:
            The configuration as persisted
        """
        row = self.store.get_config(job_key)
        if row is None:
            current = self.get_snapshot(job_key=job_key).config
        else:
            current = RollupConfig.from_row(row)
        updated = config_input.apply_to(current)

        saved_row, changed_fields = self.store.save_config(
            job_key,
            updated.storage_values(),
            actor.to_dict() if actor else None,
        )
        if changed_fields:
            logger.info(
                f"Rollup config '{job_key}' updated: {', '.join(changed_fields)}"
            )
        else:
            logger.debug(f"Rollup config '{job_key}' saved with no changes")
        return RollupConfig.from_row(saved_row)


def validate_config_input(
    config_input: RollupConfigInput, snapshot: ConfigSnapshot
) -> RollupConfigInput:
    """
    Check a requested change against the accounts in a snapshot.

    The target (requested or current) must be a known rollup-flagged
    account. Sources (requested or current) are restricted to known,
    non-rollup accounts other than the target and must not end up empty.

    Returns:
        A copy of ``config_input`` with the resolved target and sources

    Raises:
        ConfigError: If the target or the source list is unusable
    """
    by_key = {o.key: o for o in snapshot.account_options}

    target = (
        config_input.target_account_key.strip()
        if config_input.target_account_key is not None
        else snapshot.config.target_account_key
    )
    if not target or target not in by_key:
        raise ConfigError("A valid target account key is required")
    if not by_key[target].rollup:
        raise ConfigError(f"Account '{target}' is not flagged as a rollup target")

    requested = (
        config_input.source_account_keys
        if config_input.source_account_keys is not None
        else snapshot.config.source_account_keys
    )
    sources = [
        key
        for key in unique_keys(requested)
        if key in by_key and key != target and not by_key[key].rollup
    ]
    if not sources:
        raise ConfigError("At least one non-rollup source account is required")

    return replace(config_input, target_account_key=target, source_account_keys=sources)
