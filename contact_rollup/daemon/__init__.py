"""
contact_rollup.daemon - Scheduling module

Schedule resolution and the minute-tick scheduler loop.
"""

from contact_rollup.daemon.scheduler import (
    PID_FILENAME,
    DaemonAlreadyRunningError,
    DaemonError,
    DaemonStats,
    PIDFileError,
    PIDFileManager,
    SyncMode,
    TickScheduler,
    resolve_mode,
    seconds_until_next_minute,
)

__all__ = [
    "PID_FILENAME",
    "DaemonAlreadyRunningError",
    "DaemonError",
    "DaemonStats",
    "PIDFileError",
    "PIDFileManager",
    "SyncMode",
    "TickScheduler",
    "resolve_mode",
    "seconds_until_next_minute",
]
