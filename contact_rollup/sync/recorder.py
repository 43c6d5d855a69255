"""
Run recording: last-run status on the config row plus run history.

Recording is best-effort. A persistence failure is logged and never
changes the status the caller sees.
"""

from __future__ import annotations

import logging
from typing import Any, Union

from contact_rollup.config.rollup_config import RollupConfig
from contact_rollup.storage.base import RollupStore
from contact_rollup.sync.results import SyncRunResult, WipeRunResult

logger = logging.getLogger(__name__)

RunResult = Union[SyncRunResult, WipeRunResult]


def build_last_sync_summary(result: RunResult) -> dict[str, Any]:
    """Compact summary stored in the config row's last_sync_summary."""
    summary: dict[str, Any] = {
        "run_type": result.run_type.value,
        "dry_run": result.dry_run,
        "mode": result.mode,
        "totals": result.totals.to_dict(),
        "errors": dict(result.errors),
        "errors_truncated": dict(result.errors_truncated),
        "trigger_source": result.trigger.source,
    }
    if isinstance(result, SyncRunResult):
        summary["full_sync"] = result.full_sync
        summary["source_account_keys"] = list(result.source_account_keys)
    return summary


def build_history_entry(result: RunResult) -> dict[str, Any]:
    """Row for the run history table."""
    is_sync = isinstance(result, SyncRunResult)
    trigger = result.trigger
    return {
        "job_key": result.job_key,
        "run_type": result.run_type.value,
        "status": result.status.value,
        "dry_run": result.dry_run,
        "full_sync": result.full_sync if is_sync else None,
        "mode": result.mode,
        "wipe_mode": None if is_sync else result.mode,
        "trigger_source": trigger.source,
        "target_account_key": result.target_account_key or None,
        "source_account_keys": list(result.source_account_keys) if is_sync else None,
        "totals": result.totals.to_dict(),
        "errors": dict(result.errors),
        "errors_truncated": dict(result.errors_truncated),
        "triggered_by_user_id": trigger.user_id,
        "triggered_by_user_name": trigger.user_name,
        "triggered_by_user_email": trigger.user_email,
        "triggered_by_user_role": trigger.user_role,
        "triggered_by_user_avatar_url": trigger.user_avatar_url,
        "started_at": result.started_at,
        "finished_at": result.finished_at,
    }


class RunRecorder:
    """
    Persist the outcome of a run.

    Usage:
        recorder = RunRecorder(database)
        recorder.record(result, snapshot.config)
    """

    def __init__(self, store: RollupStore):
        self.store = store

    def record(
        self, result: RunResult, config: RollupConfig, update_last_sync: bool = True
    ) -> None:
        """
        Record a run.

        Args:
            result: The run result
            config: Configuration the run used; creates the config row from
                    it when the job was never saved
            update_last_sync: Stamp last_synced_at/status/summary on the
                              config row (False for schedule skips)
        """
        if update_last_sync:
            try:
                self.store.record_last_run(
                    result.job_key,
                    result.status.value,
                    build_last_sync_summary(result),
                    defaults=config.storage_values(),
                    synced_at=result.finished_at or None,
                )
            except Exception as e:
                logger.warning(f"Could not record last run for '{result.job_key}': {e}")

        if not self.store.capabilities.run_history:
            logger.debug("Run history table not present, skipping history entry")
            return

        try:
            self.store.append_run_history(build_history_entry(result))
        except Exception as e:
            logger.warning(f"Could not append run history for '{result.job_key}': {e}")
