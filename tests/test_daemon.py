"""
Tests for the daemon module.

Tests the schedule decision, the minute-tick scheduler, signal handling
and PID file management.
"""

import os
import signal
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from contact_rollup.config.rollup_config import RollupConfig
from contact_rollup.daemon.scheduler import (
    DaemonAlreadyRunningError,
    DaemonError,
    DaemonStats,
    PIDFileError,
    PIDFileManager,
    SyncMode,
    TickScheduler,
    resolve_mode,
    seconds_until_next_minute,
    to_utc,
)


def at(hour, minute, second=0):
    return datetime(2026, 3, 1, hour, minute, second, tzinfo=timezone.utc)


class TestResolveMode:
    """Tests for resolve_mode()."""

    @pytest.mark.parametrize(
        "now,expected",
        [
            (at(2, 15), SyncMode.INCREMENTAL),
            (at(2, 16), SyncMode.SKIP),
            (at(3, 45), SyncMode.FULL),
            (at(3, 15), SyncMode.INCREMENTAL),
            (at(0, 15, 59), SyncMode.INCREMENTAL),
        ],
    )
    def test_default_schedule(self, now, expected):
        assert resolve_mode(RollupConfig(), now) == expected

    def test_interval_skips_off_hours(self):
        config = RollupConfig(schedule_interval_hours=2)
        assert resolve_mode(config, at(3, 15)) == SyncMode.SKIP
        assert resolve_mode(config, at(4, 15)) == SyncMode.INCREMENTAL

    def test_full_wins_over_incremental(self):
        config = RollupConfig(
            schedule_minute_utc=0, full_sync_hour_utc=6, full_sync_minute_utc=0
        )
        assert resolve_mode(config, at(6, 0)) == SyncMode.FULL

    def test_full_sync_disabled(self):
        config = RollupConfig(full_sync_enabled=False)
        assert resolve_mode(config, at(3, 45)) == SyncMode.SKIP

    def test_zero_interval_treated_as_hourly(self):
        config = RollupConfig(schedule_interval_hours=0)
        assert resolve_mode(config, at(7, 15)) == SyncMode.INCREMENTAL

    def test_naive_treated_as_utc(self):
        assert resolve_mode(RollupConfig(), datetime(2026, 3, 1, 3, 45)) == SyncMode.FULL

    def test_aware_converted_to_utc(self):
        plus_two = timezone(timedelta(hours=2))
        now = datetime(2026, 3, 1, 5, 45, tzinfo=plus_two)
        assert resolve_mode(RollupConfig(), now) == SyncMode.FULL

    def test_to_utc(self):
        assert to_utc(datetime(2026, 1, 1)).tzinfo == timezone.utc


class TestSecondsUntilNextMinute:
    """Tests for seconds_until_next_minute()."""

    def test_mid_minute(self):
        assert seconds_until_next_minute(at(1, 0, 45)) == 15.0

    def test_on_boundary(self):
        assert seconds_until_next_minute(at(1, 0, 0)) == 60.0


class TestDaemonStats:
    """Tests for DaemonStats dataclass."""

    def test_daemon_stats_default_values(self):
        stats = DaemonStats()
        assert stats.tick_count == 0
        assert stats.tick_success_count == 0
        assert stats.tick_error_count == 0
        assert stats.last_tick_at is None
        assert stats.last_error is None
        assert stats.started_at.tzinfo == timezone.utc


class TestPIDFileManager:
    """Tests for PID file management."""

    def test_create(self, tmp_path):
        """Test PIDFileManager creates PID file and parent directories."""
        pid_file = tmp_path / "nested" / "daemon.pid"
        manager = PIDFileManager(pid_file)

        manager.create()

        assert int(pid_file.read_text()) == os.getpid()

    def test_read(self, tmp_path):
        pid_file = tmp_path / "daemon.pid"
        manager = PIDFileManager(pid_file)
        assert manager.read() is None

        pid_file.write_text("12345\n")
        assert manager.read() == 12345

    def test_read_invalid_pid_raises_error(self, tmp_path):
        pid_file = tmp_path / "daemon.pid"
        pid_file.write_text("not_a_number")

        with pytest.raises(PIDFileError, match="Invalid PID"):
            PIDFileManager(pid_file).read()

    def test_remove(self, tmp_path):
        pid_file = tmp_path / "daemon.pid"
        pid_file.write_text("12345")
        manager = PIDFileManager(pid_file)

        manager.remove()
        manager.remove()  # Second call is a no-op

        assert not pid_file.exists()

    def test_create_detects_already_running(self, tmp_path):
        """Test create() raises error if a scheduler is already running."""
        pid_file = tmp_path / "daemon.pid"
        pid_file.write_text(str(os.getpid()))

        with pytest.raises(DaemonAlreadyRunningError, match="already running"):
            PIDFileManager(pid_file).create()

    def test_create_replaces_stale_pid_file(self, tmp_path):
        pid_file = tmp_path / "daemon.pid"
        pid_file.write_text("99999999")
        manager = PIDFileManager(pid_file)

        with patch.object(manager, "_is_process_running", return_value=False):
            manager.create()

        assert int(pid_file.read_text()) == os.getpid()

    def test_is_process_running(self, tmp_path):
        manager = PIDFileManager(tmp_path / "daemon.pid")
        assert manager._is_process_running(os.getpid()) is True
        assert manager._is_process_running(99999999) is False

    def test_error_hierarchy(self):
        assert issubclass(PIDFileError, DaemonError)
        assert issubclass(DaemonAlreadyRunningError, DaemonError)


class TestTickSchedulerTick:
    """Tests for TickScheduler.tick()."""

    def test_tick_without_callback(self):
        scheduler = TickScheduler()
        assert scheduler.tick(at(1, 15)) is False
        assert scheduler.stats.tick_count == 0

    def test_tick_passes_truncated_minute(self):
        """Test that the callback sees the tick's minute with seconds dropped."""
        callback = MagicMock(return_value=True)
        scheduler = TickScheduler()
        scheduler.set_tick_callback(callback)

        assert scheduler.tick(at(1, 15, 42)) is True

        callback.assert_called_once_with(at(1, 15))
        assert scheduler.stats.tick_count == 1
        assert scheduler.stats.tick_success_count == 1
        assert scheduler.stats.last_tick_at == at(1, 15)
        assert scheduler.stats.last_tick_success is True

    def test_tick_with_failed_callback(self):
        scheduler = TickScheduler()
        scheduler.set_tick_callback(lambda minute: False)

        assert scheduler.tick(at(1, 15)) is False
        assert scheduler.stats.tick_error_count == 1
        assert scheduler.stats.last_tick_success is False

    def test_tick_with_exception(self):
        """Test that a raising callback is counted, not propagated."""

        def boom(minute):
            raise RuntimeError("Sync error")

        scheduler = TickScheduler()
        scheduler.set_tick_callback(boom)

        assert scheduler.tick(at(1, 15)) is False
        assert scheduler.stats.tick_error_count == 1
        assert scheduler.stats.last_error == "Sync error"


class TestTickSchedulerRun:
    """Tests for the scheduler loop and signal handling."""

    def test_run_ticks_until_stopped(self, tmp_path):
        pid_file = tmp_path / "daemon.pid"
        clock = MagicMock(return_value=at(2, 14, 30))
        scheduler = TickScheduler(pid_file=pid_file, clock=clock)
        minutes = []

        def callback(minute):
            minutes.append(minute)
            assert pid_file.exists()
            assert scheduler.is_running()
            if len(minutes) == 2:
                scheduler.stop()
            return True

        scheduler.set_tick_callback(callback)
        with patch.object(scheduler, "_sleep_interruptible", return_value=True) as sleep:
            scheduler.run()

        assert minutes == [at(2, 14), at(2, 14)]
        sleep.assert_called_with(30.0)
        assert scheduler.stats.tick_success_count == 2
        assert not scheduler.is_running()
        assert not pid_file.exists()

    def test_run_exits_when_sleep_interrupted(self):
        scheduler = TickScheduler()
        callback = MagicMock(return_value=True)
        scheduler.set_tick_callback(callback)

        with patch.object(scheduler, "_sleep_interruptible", return_value=False):
            scheduler.run()

        callback.assert_not_called()

    def test_run_refuses_second_instance(self, tmp_path):
        pid_file = tmp_path / "daemon.pid"
        pid_file.write_text(str(os.getpid()))

        with pytest.raises(DaemonAlreadyRunningError):
            TickScheduler(pid_file=pid_file).run()

    def test_signal_handler_sets_shutdown_flag(self):
        scheduler = TickScheduler()
        scheduler._signal_handler(signal.SIGTERM, None)
        assert scheduler._shutdown_requested is True

    def test_sleep_interruptible_stops_on_shutdown(self):
        scheduler = TickScheduler()
        scheduler.stop()
        assert scheduler._sleep_interruptible(10) is False
