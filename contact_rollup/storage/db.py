"""
SQLite database module for rollup state.

Provides persistent storage for rollup job configuration, the config
change audit trail and the run history.
"""

import json
import sqlite3
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

# Core table, always created
CONFIG_SCHEMA = """
CREATE TABLE IF NOT EXISTS rollup_config (
    id INTEGER PRIMARY KEY,
    job_key TEXT NOT NULL,
    target_account_key TEXT NOT NULL DEFAULT '',
    source_account_keys TEXT NOT NULL DEFAULT '[]',
    enabled BOOLEAN NOT NULL DEFAULT 1,
    schedule_interval_hours INTEGER NOT NULL DEFAULT 1,
    schedule_minute_utc INTEGER NOT NULL DEFAULT 15,
    full_sync_enabled BOOLEAN NOT NULL DEFAULT 1,
    full_sync_hour_utc INTEGER NOT NULL DEFAULT 3,
    full_sync_minute_utc INTEGER NOT NULL DEFAULT 45,
    scrub_invalid_emails BOOLEAN NOT NULL DEFAULT 1,
    scrub_invalid_phones BOOLEAN NOT NULL DEFAULT 1,
    updated_by_user_id TEXT,
    last_synced_at TEXT,
    last_sync_status TEXT,
    last_sync_summary TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(job_key)
);
"""

# Audit tables; older databases may lack them
HISTORY_SCHEMA = """
CREATE TABLE IF NOT EXISTS rollup_config_history (
    id TEXT PRIMARY KEY,
    job_key TEXT NOT NULL,
    target_account_key TEXT NOT NULL,
    source_account_keys TEXT NOT NULL,
    enabled BOOLEAN NOT NULL,
    schedule_interval_hours INTEGER NOT NULL,
    schedule_minute_utc INTEGER NOT NULL,
    full_sync_enabled BOOLEAN NOT NULL,
    full_sync_hour_utc INTEGER NOT NULL,
    full_sync_minute_utc INTEGER NOT NULL,
    scrub_invalid_emails BOOLEAN NOT NULL,
    scrub_invalid_phones BOOLEAN NOT NULL,
    changed_fields TEXT NOT NULL DEFAULT '[]',
    changed_by_user_id TEXT,
    changed_by_user_name TEXT,
    changed_by_user_email TEXT,
    changed_by_user_role TEXT,
    changed_by_user_avatar_url TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_config_history_job
    ON rollup_config_history(job_key, created_at);

CREATE TABLE IF NOT EXISTS rollup_run_history (
    id TEXT PRIMARY KEY,
    job_key TEXT NOT NULL,
    run_type TEXT NOT NULL,
    status TEXT NOT NULL,
    dry_run BOOLEAN NOT NULL DEFAULT 0,
    full_sync BOOLEAN,
    mode TEXT,
    wipe_mode TEXT,
    trigger_source TEXT,
    target_account_key TEXT,
    source_account_keys TEXT,
    totals TEXT,
    errors TEXT,
    errors_truncated TEXT,
    triggered_by_user_id TEXT,
    triggered_by_user_name TEXT,
    triggered_by_user_email TEXT,
    triggered_by_user_role TEXT,
    triggered_by_user_avatar_url TEXT,
    started_at TEXT NOT NULL,
    finished_at TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_run_history_job
    ON rollup_run_history(job_key, created_at);
CREATE INDEX IF NOT EXISTS idx_run_history_type
    ON rollup_run_history(run_type, created_at);
"""

CONFIG_HISTORY_TABLE = "rollup_config_history"
RUN_HISTORY_TABLE = "rollup_run_history"

# Config columns written by save_config, in schema order
CONFIG_FIELDS = (
    "target_account_key",
    "source_account_keys",
    "enabled",
    "schedule_interval_hours",
    "schedule_minute_utc",
    "full_sync_enabled",
    "full_sync_hour_utc",
    "full_sync_minute_utc",
    "scrub_invalid_emails",
    "scrub_invalid_phones",
)

BOOLEAN_FIELDS = frozenset(
    {"enabled", "full_sync_enabled", "scrub_invalid_emails", "scrub_invalid_phones"}
)

ACTOR_FIELDS = ("id", "name", "email", "role", "avatar_url")


@dataclass(frozen=True)
class StoreCapabilities:
    """Which optional audit tables the database actually has."""

    config_history: bool = False
    run_history: bool = False


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def diff_config_fields(
    previous: Optional[dict[str, Any]], current: dict[str, Any]
) -> list[str]:
    """
    Names of the config fields whose values differ.

    Source key lists are compared as sets, so reordering alone is not a
    change. With no previous row, every field counts as changed.
    """
    if previous is None:
        return list(CONFIG_FIELDS)

    changed = []
    for name in CONFIG_FIELDS:
        before = previous.get(name)
        after = current.get(name)
        if name == "source_account_keys":
            if set(before or []) != set(after or []):
                changed.append(name)
        elif name in BOOLEAN_FIELDS:
            if bool(before) != bool(after):
                changed.append(name)
        elif before != after:
            changed.append(name)
    return changed


def _decode_json(raw: Optional[str], default: Any) -> Any:
    if not raw:
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return default


def _decode_config_row(row: sqlite3.Row) -> dict[str, Any]:
    data = dict(row)
    keys = _decode_json(data.get("source_account_keys"), [])
    data["source_account_keys"] = (
        [str(k).strip() for k in keys if str(k).strip()] if isinstance(keys, list) else []
    )
    summary = _decode_json(data.get("last_sync_summary"), None)
    data["last_sync_summary"] = summary if isinstance(summary, dict) else None
    for name in BOOLEAN_FIELDS:
        data[name] = bool(data[name])
    return data


class RollupDatabase:
    """
    SQLite database manager for rollup configuration and audit history.

    Provides methods for:
    - Reading and transactionally saving a job's configuration
    - Appending config change history with actor metadata
    - Recording last-run status and appending run history

    Optional history tables are detected once by initialize(); the result
    is exposed as ``capabilities`` so callers never have to sniff errors.

    Usage:
        db = RollupDatabase('/path/to/rollup.db')
        db.initialize()

        # Or use in-memory for testing:
        db = RollupDatabase(':memory:')
        db.initialize()
    """

    def __init__(self, db_path: str):
        """
        Initialize the database manager.

        Args:
            db_path: Path to SQLite database file, or ':memory:' for in-memory database
        """
        self.db_path = db_path
        self._shared_connection: Optional[sqlite3.Connection] = None
        self.capabilities = StoreCapabilities()

    def _get_connection(self) -> sqlite3.Connection:
        """
        Get a database connection.

        For in-memory databases, returns a shared connection to ensure
        schema persists across operations. For file databases, creates
        a new connection each time.
        """
        if self.db_path == ":memory:":
            if self._shared_connection is None:
                self._shared_connection = sqlite3.connect(":memory:")
                self._shared_connection.row_factory = sqlite3.Row
            return self._shared_connection

        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Commits on success and rolls back on any exception, so everything
        done inside one ``with`` block is a single transaction.

        Usage:
            with db.connection() as conn:
                conn.execute("SELECT * FROM rollup_config")
        """
        conn = self._get_connection()
        is_shared = self.db_path == ":memory:"
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            if not is_shared:
                conn.close()

    def initialize(self, create_history_tables: bool = True) -> StoreCapabilities:
        """
        Initialize the database schema and detect optional tables.

        Args:
            create_history_tables: Create the audit tables if missing. Pass
                False to open a database exactly as it is.

        Returns:
            The detected StoreCapabilities
        """
        with self.connection() as conn:
            conn.executescript(CONFIG_SCHEMA)
            if create_history_tables:
                conn.executescript(HISTORY_SCHEMA)
        self.capabilities = self.detect_capabilities()
        return self.capabilities

    def detect_capabilities(self) -> StoreCapabilities:
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table'"
            ).fetchall()
        tables = {row["name"] for row in rows}
        return StoreCapabilities(
            config_history=CONFIG_HISTORY_TABLE in tables,
            run_history=RUN_HISTORY_TABLE in tables,
        )

    # =========================================================================
    # Config Operations
    # =========================================================================

    def get_config(self, job_key: str) -> Optional[dict[str, Any]]:
        """
        Get the persisted configuration row for a job.

        Returns:
            Decoded row (source keys as a list, summary as a dict), or None
        """
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM rollup_config WHERE job_key = ?", (job_key,)
            ).fetchone()
        return _decode_config_row(row) if row else None

    def save_config(
        self,
        job_key: str,
        values: dict[str, Any],
        actor: Optional[dict[str, Any]] = None,
    ) -> tuple[dict[str, Any], list[str]]:
        """
        Write a job's configuration and its change history atomically.

        The previous row is read, the new values upserted and, when any
        field changed and the history table exists, a history entry is
        appended, all inside one transaction.

        Args:
            job_key: Job identifier
            values: Mapping with every name in CONFIG_FIELDS
            actor: Optional dict with id/name/email/role/avatar_url of the
                   user making the change

        Returns:
            Tuple of (saved row, list of changed field names)
        """
        actor = actor or {}
        now = utc_now_iso()
        encoded = {
            name: json.dumps(list(values[name]))
            if name == "source_account_keys"
            else values[name]
            for name in CONFIG_FIELDS
        }

        with self.connection() as conn:
            previous_row = conn.execute(
                "SELECT * FROM rollup_config WHERE job_key = ?", (job_key,)
            ).fetchone()
            previous = _decode_config_row(previous_row) if previous_row else None

            columns = ", ".join(CONFIG_FIELDS)
            placeholders = ", ".join("?" for _ in CONFIG_FIELDS)
            updates = ", ".join(f"{name} = excluded.{name}" for name in CONFIG_FIELDS)
            conn.execute(
                f"""
                INSERT INTO rollup_config
                    (job_key, {columns}, updated_by_user_id, created_at, updated_at)
                VALUES (?, {placeholders}, ?, ?, ?)
                ON CONFLICT(job_key) DO UPDATE SET
                    {updates},
                    updated_by_user_id = excluded.updated_by_user_id,
                    updated_at = excluded.updated_at
                """,
                (
                    job_key,
                    *(encoded[name] for name in CONFIG_FIELDS),
                    actor.get("id"),
                    now,
                    now,
                ),
            )

            saved_row = conn.execute(
                "SELECT * FROM rollup_config WHERE job_key = ?", (job_key,)
            ).fetchone()
            saved = _decode_config_row(saved_row)
            changed_fields = diff_config_fields(previous, saved)

            if changed_fields and self.capabilities.config_history:
                conn.execute(
                    f"""
                    INSERT INTO rollup_config_history
                        (id, job_key, {columns}, changed_fields,
                         changed_by_user_id, changed_by_user_name,
                         changed_by_user_email, changed_by_user_role,
                         changed_by_user_avatar_url, created_at)
                    VALUES (?, ?, {placeholders}, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        uuid.uuid4().hex,
                        job_key,
                        *(encoded[name] for name in CONFIG_FIELDS),
                        json.dumps(changed_fields),
                        *(actor.get(name) for name in ACTOR_FIELDS),
                        now,
                    ),
                )

        return saved, changed_fields

    def record_last_run(
        self,
        job_key: str,
        status: str,
        summary: dict[str, Any],
        defaults: dict[str, Any],
        synced_at: Optional[str] = None,
    ) -> None:
        """
        Stamp the last-run fields onto a job's config row.

        If the job has never been saved, the row is created from
        ``defaults`` (the snapshot the run used).
        """
        synced_at = synced_at or utc_now_iso()
        summary_json = json.dumps(summary, default=str)
        columns = ", ".join(CONFIG_FIELDS)
        placeholders = ", ".join("?" for _ in CONFIG_FIELDS)

        with self.connection() as conn:
            conn.execute(
                f"""
                INSERT INTO rollup_config
                    (job_key, {columns}, last_synced_at, last_sync_status,
                     last_sync_summary, created_at, updated_at)
                VALUES (?, {placeholders}, ?, ?, ?, ?, ?)
                ON CONFLICT(job_key) DO UPDATE SET
                    last_synced_at = excluded.last_synced_at,
                    last_sync_status = excluded.last_sync_status,
                    last_sync_summary = excluded.last_sync_summary
                """,
                (
                    job_key,
                    *(
                        json.dumps(list(defaults[name]))
                        if name == "source_account_keys"
                        else defaults[name]
                        for name in CONFIG_FIELDS
                    ),
                    synced_at,
                    status,
                    summary_json,
                    synced_at,
                    synced_at,
                ),
            )

    # =========================================================================
    # History Operations
    # =========================================================================

    def append_run_history(self, entry: dict[str, Any]) -> Optional[str]:
        """
        Append one run history row.

        Args:
            entry: Mapping with job_key, run_type, status, started_at and
                   finished_at plus any optional run_history columns.
                   totals, errors, errors_truncated and source_account_keys
                   are JSON encoded.

        Returns:
            The new row id, or None when the run history table is absent
        """
        if not self.capabilities.run_history:
            return None

        row = dict(entry)
        row["id"] = uuid.uuid4().hex
        row["created_at"] = utc_now_iso()
        for name in ("totals", "errors", "errors_truncated", "source_account_keys"):
            if name in row and row[name] is not None:
                row[name] = json.dumps(row[name], default=str)

        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        with self.connection() as conn:
            conn.execute(
                f"INSERT INTO rollup_run_history ({columns}) VALUES ({placeholders})",
                tuple(row.values()),
            )
        return row["id"]

    def list_run_history(
        self, job_key: str, limit: int = 20, run_type: Optional[str] = None
    ) -> list[dict[str, Any]]:
        """Most recent run history rows for a job, newest first."""
        if not self.capabilities.run_history:
            return []

        query = "SELECT * FROM rollup_run_history WHERE job_key = ?"
        params: list[Any] = [job_key]
        if run_type:
            query += " AND run_type = ?"
            params.append(run_type)
        query += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params.append(limit)

        with self.connection() as conn:
            rows = conn.execute(query, params).fetchall()

        entries = []
        for row in rows:
            data = dict(row)
            data["totals"] = _decode_json(data.get("totals"), {})
            data["errors"] = _decode_json(data.get("errors"), {})
            data["errors_truncated"] = _decode_json(data.get("errors_truncated"), {})
            data["source_account_keys"] = _decode_json(
                data.get("source_account_keys"), []
            )
            data["dry_run"] = bool(data["dry_run"])
            if data.get("full_sync") is not None:
                data["full_sync"] = bool(data["full_sync"])
            entries.append(data)
        return entries

    def list_config_history(self, job_key: str, limit: int = 20) -> list[dict[str, Any]]:
        """Most recent config history rows for a job, newest first."""
        if not self.capabilities.config_history:
            return []

        with self.connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM rollup_config_history
                WHERE job_key = ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
                """,
                (job_key, limit),
            ).fetchall()

        entries = []
        for row in rows:
            data = dict(row)
            data["changed_fields"] = _decode_json(data.get("changed_fields"), [])
            data["source_account_keys"] = _decode_json(
                data.get("source_account_keys"), []
            )
            for name in BOOLEAN_FIELDS:
                data[name] = bool(data[name])
            entries.append(data)
        return entries

    def close(self) -> None:
        """Close the shared in-memory connection, if any."""
        if self._shared_connection is not None:
            self._shared_connection.close()
            self._shared_connection = None
