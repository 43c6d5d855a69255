"""
Persistence port used by the rollup engine.

The engine and ConfigStore depend only on this protocol; RollupDatabase
is the SQLite implementation.
"""

from typing import Any, Optional, Protocol

from contact_rollup.storage.db import StoreCapabilities


class RollupStore(Protocol):
    """Storage operations the rollup needs."""

    capabilities: StoreCapabilities

    def get_config(self, job_key: str) -> Optional[dict[str, Any]]: ...

    def save_config(
        self,
        job_key: str,
        values: dict[str, Any],
        actor: Optional[dict[str, Any]] = None,
    ) -> tuple[dict[str, Any], list[str]]: ...

    def record_last_run(
        self,
        job_key: str,
        status: str,
        summary: dict[str, Any],
        defaults: dict[str, Any],
        synced_at: Optional[str] = None,
    ) -> None: ...

    def append_run_history(self, entry: dict[str, Any]) -> Optional[str]: ...

    def list_run_history(
        self, job_key: str, limit: int = 20, run_type: Optional[str] = None
    ) -> list[dict[str, Any]]: ...

    def list_config_history(
        self, job_key: str, limit: int = 20
    ) -> list[dict[str, Any]]: ...
