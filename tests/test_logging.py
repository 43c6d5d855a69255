"""
Tests for the logging configuration module.

Tests the centralized logging configuration functionality.
"""

import logging
import os
from unittest.mock import patch

import pytest

from contact_rollup.utils.logging import (
    CONSOLE_FORMAT,
    DATE_FORMAT,
    ROOT_LOGGER_NAME,
    ColoredFormatter,
    cleanup_old_logs,
    get_log_file_path,
    get_log_level_from_env,
    get_logger,
    set_log_level,
    setup_logging,
)


@pytest.fixture(autouse=True)
def restore_package_logger():
    """Leave the package logger as it was after each test."""
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield
    for handler in logger.handlers:
        if handler not in handlers:
            handler.close()
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate


class TestGetLogLevelFromEnv:
    """Tests for get_log_level_from_env function."""

    @pytest.mark.parametrize("value", ["1", "true", "YES"])
    def test_debug_mode_from_env(self, value, monkeypatch):
        monkeypatch.setenv("CONTACT_ROLLUP_DEBUG", value)
        assert get_log_level_from_env() == logging.DEBUG

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("WARNING", logging.WARNING),
            ("warn", logging.WARNING),
            ("ERROR", logging.ERROR),
            ("CRITICAL", logging.CRITICAL),
            ("INVALID", logging.INFO),
        ],
    )
    def test_log_level(self, value, expected, monkeypatch):
        monkeypatch.delenv("CONTACT_ROLLUP_DEBUG", raising=False)
        monkeypatch.setenv("CONTACT_ROLLUP_LOG_LEVEL", value)
        assert get_log_level_from_env() == expected


class TestGetLogFilePath:
    """Tests for get_log_file_path function."""

    def test_custom_log_file_from_env(self, monkeypatch):
        monkeypatch.setenv("CONTACT_ROLLUP_LOG_FILE", "/custom/path/app.log")
        assert str(get_log_file_path()) == "/custom/path/app.log"

    @pytest.mark.parametrize("value", ["none", "disabled", ""])
    def test_log_file_disabled(self, value, monkeypatch):
        monkeypatch.setenv("CONTACT_ROLLUP_LOG_FILE", value)
        assert get_log_file_path() is None

    def test_default_under_config_dir(self, tmp_path, monkeypatch):
        monkeypatch.delenv("CONTACT_ROLLUP_LOG_FILE", raising=False)
        monkeypatch.setenv("CONTACT_ROLLUP_CONFIG_DIR", str(tmp_path))

        path = get_log_file_path()

        assert path.parent == tmp_path.resolve() / "logs"
        assert path.name.startswith("contact_rollup_")


class TestColoredFormatter:
    """Tests for ColoredFormatter class."""

    def test_formatter_with_colors_disabled(self):
        formatter = ColoredFormatter(CONSOLE_FORMAT, DATE_FORMAT, use_colors=False)
        assert formatter.use_colors is False

    @patch("sys.stderr")
    def test_formatter_supports_color_non_tty(self, mock_stderr):
        """Test formatter detects non-TTY and disables colors."""
        mock_stderr.isatty.return_value = False
        formatter = ColoredFormatter(CONSOLE_FORMAT, DATE_FORMAT, use_colors=True)
        assert formatter.use_colors is False

    @patch.dict(os.environ, {"NO_COLOR": "1"})
    @patch("sys.stderr")
    def test_formatter_respects_no_color_env(self, mock_stderr):
        mock_stderr.isatty.return_value = True
        formatter = ColoredFormatter(CONSOLE_FORMAT, DATE_FORMAT, use_colors=True)
        assert formatter.use_colors is False

    def test_format_record_without_colors(self):
        formatter = ColoredFormatter(CONSOLE_FORMAT, DATE_FORMAT, use_colors=False)
        record = logging.LogRecord(
            name="test",
            level=logging.WARNING,
            pathname="test.py",
            lineno=1,
            msg="Source failed",
            args=(),
            exc_info=None,
        )
        result = formatter.format(record)
        assert result == "WARNING: Source failed"


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_returns_package_logger(self):
        logger = setup_logging(enable_file_logging=False)
        assert logger.name == ROOT_LOGGER_NAME
        assert logger.propagate is False
        assert len(logger.handlers) == 1

    def test_verbose_means_debug(self):
        logger = setup_logging(verbose=True, enable_file_logging=False)
        assert logger.level == logging.DEBUG

    def test_explicit_level(self):
        logger = setup_logging(level=logging.ERROR, enable_file_logging=False)
        assert logger.level == logging.ERROR

    def test_clears_handlers(self):
        setup_logging(enable_file_logging=False)
        logger = setup_logging(enable_file_logging=False)
        assert len(logger.handlers) == 1

    def test_log_dir_adds_file_handler(self, tmp_path):
        logger = setup_logging(level=logging.INFO, log_dir=tmp_path / "logs")

        file_handlers = [h for h in logger.handlers if isinstance(h, logging.FileHandler)]
        assert len(file_handlers) == 1
        assert file_handlers[0].level == logging.DEBUG
        assert (tmp_path / "logs").is_dir()

    def test_explicit_log_file(self, tmp_path):
        log_file = tmp_path / "rollup.log"
        logger = setup_logging(log_file=log_file)

        get_logger("sync.engine").info("Sync finished")
        for handler in logger.handlers:
            handler.flush()

        assert "Sync finished" in log_file.read_text()


class TestGetLogger:
    """Tests for get_logger function."""

    def test_prefixes_module_name(self):
        assert get_logger("mymodule").name == "contact_rollup.mymodule"

    def test_keeps_package_name(self):
        assert get_logger("contact_rollup.sync").name == "contact_rollup.sync"


class TestSetLogLevel:
    """Tests for set_log_level function."""

    def test_file_handlers_stay_at_debug(self, tmp_path):
        logger = setup_logging(level=logging.INFO, log_file=tmp_path / "x.log")

        set_log_level(logging.ERROR)

        assert logger.level == logging.ERROR
        for handler in logger.handlers:
            expected = logging.DEBUG if isinstance(handler, logging.FileHandler) else logging.ERROR
            assert handler.level == expected


class TestCleanupOldLogs:
    """Tests for cleanup_old_logs function."""

    def test_keeps_newest(self, tmp_path):
        for day in range(1, 5):
            path = tmp_path / f"contact_rollup_2026010{day}.log"
            path.write_text("x")
            os.utime(path, (day * 1000, day * 1000))
        (tmp_path / "other.log").write_text("x")

        deleted = cleanup_old_logs(log_dir=tmp_path, keep_count=2)

        assert deleted == 2
        remaining = sorted(p.name for p in tmp_path.iterdir())
        assert remaining == [
            "contact_rollup_20260103.log",
            "contact_rollup_20260104.log",
            "other.log",
        ]

    def test_disabled_or_missing_dir(self, tmp_path):
        assert cleanup_old_logs(log_dir=tmp_path, keep_count=0) == 0
        assert cleanup_old_logs(log_dir=tmp_path / "missing") == 0
