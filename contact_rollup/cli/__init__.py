"""CLI package for contact_rollup."""

from contact_rollup.cli.formatters import (
    show_config_history,
    show_run_history,
    show_run_result,
    show_snapshot,
)
from contact_rollup.cli.main import cli, get_config_dir, get_config_file

__all__ = [
    "cli",
    "get_config_dir",
    "get_config_file",
    "show_config_history",
    "show_run_history",
    "show_run_result",
    "show_snapshot",
]
