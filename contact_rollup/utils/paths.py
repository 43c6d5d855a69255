"""
Path utilities for configuration directory resolution.

Provides consistent path resolution for the contact-rollup configuration
directory across all modules.
"""

from __future__ import annotations

import os
from pathlib import Path

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".contact-rollup"

# Environment variable for overriding config directory
CONFIG_DIR_ENV_VAR = "CONTACT_ROLLUP_CONFIG_DIR"

# Default file names inside the configuration directory
DEFAULT_CONFIG_FILENAME = "config.yaml"
DEFAULT_DATABASE_FILENAME = "rollup.db"


def resolve_config_dir(config_dir: Path | str | None = None) -> Path:
    """
    Resolve the configuration directory path.

    Priority:
        1. Explicit config_dir parameter (if provided)
        2. CONTACT_ROLLUP_CONFIG_DIR environment variable
        3. Default directory (~/.contact-rollup)

    Args:
        config_dir: Optional explicit configuration directory path.

    Returns:
        Resolved Path to the configuration directory
    """
    if config_dir is not None:
        return Path(config_dir).expanduser().resolve()

    env_dir = os.environ.get(CONFIG_DIR_ENV_VAR)
    if env_dir:
        return Path(env_dir).expanduser().resolve()

    return DEFAULT_CONFIG_DIR.expanduser().resolve()


def resolve_database_path(
    config_dir: Path, database_path: Path | str | None = None
) -> Path:
    """Resolve the SQLite database path, relative paths anchored at config_dir."""
    if database_path is None:
        return config_dir / DEFAULT_DATABASE_FILENAME
    path = Path(database_path).expanduser()
    if not path.is_absolute():
        path = config_dir / path
    return path
