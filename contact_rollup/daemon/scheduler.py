"""
Scheduling for rollup syncs.

Provides:
- resolve_mode(): the pure decision of what a scheduled tick should run
- TickScheduler: a foreground loop that wakes at every UTC minute
  boundary and hands the minute to a callback
- Signal handling for graceful shutdown (SIGTERM/SIGINT)
- PID file management so only one scheduler runs per config directory
"""

from __future__ import annotations

import logging
import os
import signal
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Optional

from contact_rollup.config.rollup_config import RollupConfig

logger = logging.getLogger(__name__)

PID_FILENAME = "daemon.pid"


class SyncMode(str, Enum):
    """What a sync invocation does."""

    SKIP = "skip"
    INCREMENTAL = "incremental"
    FULL = "full"


class DaemonError(Exception):
    """Base exception for daemon-related errors."""

    pass


class PIDFileError(DaemonError):
    """Raised when PID file operations fail."""

    pass


class DaemonAlreadyRunningError(DaemonError):
    """Raised when attempting to start a daemon that is already running."""

    pass


def to_utc(now: datetime) -> datetime:
    """Aware UTC datetime; naive values are taken to already be UTC."""
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def resolve_mode(config: RollupConfig, now_utc: datetime) -> SyncMode:
    """
    Decide what a scheduled tick at ``now_utc`` should run.

    A full sync wins when it is enabled and both the hour and minute match
    its slot. Otherwise an incremental sync runs when the minute matches and
    the hour is a multiple of the interval. Any other minute is a skip.
    """
    now = to_utc(now_utc)

    if (
        config.full_sync_enabled
        and now.hour == config.full_sync_hour_utc
        and now.minute == config.full_sync_minute_utc
    ):
        return SyncMode.FULL

    interval = max(1, config.schedule_interval_hours)
    if now.minute == config.schedule_minute_utc and now.hour % interval == 0:
        return SyncMode.INCREMENTAL

    return SyncMode.SKIP


def seconds_until_next_minute(now: datetime) -> float:
    """Seconds from ``now`` to the start of the next minute."""
    next_minute = now.replace(second=0, microsecond=0) + timedelta(minutes=1)
    return max(0.0, (next_minute - now).total_seconds())


@dataclass
class DaemonStats:
    """Statistics from scheduler operation."""

    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    tick_count: int = 0
    tick_success_count: int = 0
    tick_error_count: int = 0
    last_tick_at: datetime | None = None
    last_tick_success: bool = False
    last_error: str | None = None


class PIDFileManager:
    """Create, read and remove the scheduler's PID file."""

    def __init__(self, pid_file: Path):
        self.pid_file = pid_file

    def create(self) -> None:
        """
        Write the current process ID, replacing a stale PID file.

        Raises:
            PIDFileError: If the PID file cannot be created.
            DaemonAlreadyRunningError: If a scheduler is already running.
        """
        existing_pid = self.read()
        if existing_pid is not None:
            if self._is_process_running(existing_pid):
                raise DaemonAlreadyRunningError(
                    f"Scheduler already running with PID {existing_pid}"
                )
            logger.warning(
                f"Removing stale PID file (process {existing_pid} not running)"
            )
            self.remove()

        try:
            self.pid_file.parent.mkdir(parents=True, exist_ok=True)
            pid = os.getpid()
            self.pid_file.write_text(str(pid))
            logger.debug(f"Created PID file: {self.pid_file} (PID: {pid})")
        except OSError as e:
            raise PIDFileError(f"Failed to create PID file {self.pid_file}: {e}") from e

    def read(self) -> int | None:
        """
        Read the PID from the PID file.

        Raises:
            PIDFileError: If the PID file exists but cannot be read or parsed.
        """
        if not self.pid_file.exists():
            return None

        try:
            content = self.pid_file.read_text().strip()
            return int(content)
        except ValueError as e:
            raise PIDFileError(f"Invalid PID in file {self.pid_file}: {content}") from e
        except OSError as e:
            raise PIDFileError(f"Failed to read PID file {self.pid_file}: {e}") from e

    def remove(self) -> None:
        if not self.pid_file.exists():
            return
        try:
            self.pid_file.unlink()
            logger.debug(f"Removed PID file: {self.pid_file}")
        except OSError as e:
            raise PIDFileError(f"Failed to remove PID file {self.pid_file}: {e}") from e

    def _is_process_running(self, pid: int) -> bool:
        try:
            os.kill(pid, 0)
            return True
        except ProcessLookupError:
            return False
        except PermissionError:
            # Process exists but we don't have permission to signal it
            return True


class TickScheduler:
    """
    Wake at each UTC minute boundary and run a callback for that minute.

    The callback receives the tick's UTC minute and returns True on
    success. Whether anything actually runs in that minute is decided by
    the callback (normally a sync with the schedule enforced).

    Usage:
        scheduler = TickScheduler(pid_file=config_dir / "daemon.pid")
        scheduler.set_tick_callback(lambda minute: run_scheduled_sync(minute))
        scheduler.run()  # blocks until SIGTERM/SIGINT

    Attributes:
        stats: Scheduler statistics
    """

    def __init__(
        self,
        pid_file: Optional[Path] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            pid_file: PID file path; no PID file is written when None
            clock: Returns the current time; defaults to UTC wall clock
        """
        self._pid_manager = PIDFileManager(pid_file) if pid_file else None
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._tick_callback: Callable[[datetime], bool] | None = None
        self._running = False
        self._shutdown_requested = False
        self._original_sigterm_handler = None
        self._original_sigint_handler = None
        self.stats = DaemonStats()

    def set_tick_callback(self, callback: Callable[[datetime], bool]) -> None:
        self._tick_callback = callback

    def _setup_signal_handlers(self) -> None:
        self._original_sigterm_handler = signal.signal(
            signal.SIGTERM, self._signal_handler
        )
        self._original_sigint_handler = signal.signal(
            signal.SIGINT, self._signal_handler
        )
        logger.debug("Signal handlers installed for SIGTERM and SIGINT")

    def _restore_signal_handlers(self) -> None:
        if self._original_sigterm_handler is not None:
            signal.signal(signal.SIGTERM, self._original_sigterm_handler)
        if self._original_sigint_handler is not None:
            signal.signal(signal.SIGINT, self._original_sigint_handler)
        logger.debug("Signal handlers restored")

    def _signal_handler(self, signum: int, frame: object) -> None:
        signal_name = signal.Signals(signum).name
        logger.info(f"Received {signal_name}, initiating graceful shutdown...")
        self._shutdown_requested = True

    def tick(self, now: datetime) -> bool:
        """
        Run the callback for the minute containing ``now``.

        Returns:
            True if the callback succeeded, False otherwise
        """
        if self._tick_callback is None:
            logger.warning("No tick callback configured, skipping")
            return False

        minute = to_utc(now).replace(second=0, microsecond=0)
        self.stats.tick_count += 1
        self.stats.last_tick_at = minute

        try:
            success = self._tick_callback(minute)
        except Exception as e:
            self.stats.tick_error_count += 1
            self.stats.last_tick_success = False
            self.stats.last_error = str(e)
            logger.error(f"Tick at {minute:%H:%M} failed with exception: {e}")
            return False

        if success:
            self.stats.tick_success_count += 1
            self.stats.last_tick_success = True
            self.stats.last_error = None
        else:
            self.stats.tick_error_count += 1
            self.stats.last_tick_success = False
            logger.warning(f"Tick at {minute:%H:%M} completed with errors")
        return success

    def _sleep_interruptible(self, seconds: float) -> bool:
        """
        Sleep in short increments so shutdown signals are honored quickly.

        Returns:
            True if the sleep completed, False if shutdown was requested.
        """
        end_time = time.time() + seconds
        while time.time() < end_time and not self._shutdown_requested:
            remaining = end_time - time.time()
            sleep_time = min(1.0, max(0, remaining))
            if sleep_time > 0:
                time.sleep(sleep_time)

        return not self._shutdown_requested

    def run(self) -> None:
        """
        Run the tick loop until a shutdown signal is received.

        Raises:
            DaemonAlreadyRunningError: If another scheduler holds the PID file.
        """
        if self._pid_manager:
            self._pid_manager.create()
        logger.info(f"Scheduler started (PID: {os.getpid()})")

        self._setup_signal_handlers()
        self._running = True
        self._shutdown_requested = False
        self.stats = DaemonStats()

        try:
            while not self._shutdown_requested:
                wait = seconds_until_next_minute(self._clock())
                logger.debug(f"Sleeping {wait:.1f}s until next minute boundary")
                if not self._sleep_interruptible(wait):
                    break
                self.tick(self._clock())
        finally:
            self._running = False
            self._restore_signal_handlers()
            if self._pid_manager:
                self._pid_manager.remove()
            logger.info("Scheduler stopped")

    def stop(self) -> None:
        """Request shutdown; safe to call from the tick callback."""
        logger.info("Stop requested")
        self._shutdown_requested = True

    def is_running(self) -> bool:
        return self._running


__all__ = [
    "SyncMode",
    "resolve_mode",
    "seconds_until_next_minute",
    "TickScheduler",
    "DaemonStats",
    "DaemonError",
    "PIDFileError",
    "DaemonAlreadyRunningError",
    "PIDFileManager",
    "PID_FILENAME",
]
