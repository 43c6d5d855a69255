"""
Configuration loader module for contact-rollup.

Provides YAML-based configuration file loading with support for:
- Loading configuration from default or custom paths
- Graceful handling of missing configuration files
- Validation of top-level keys, limits and account entries
"""

import logging
from pathlib import Path
from typing import Any

import yaml

from contact_rollup.api.providers import ProviderKind
from contact_rollup.config.limits import LIMIT_RANGES
from contact_rollup.utils.paths import DEFAULT_CONFIG_FILENAME, resolve_config_dir

# Default configuration file name
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_FILENAME

VALID_PROVIDERS = [kind.value for kind in ProviderKind]

logger = logging.getLogger(__name__)


class ConfigLoadError(Exception):
    """Raised when configuration loading or validation fails."""

    pass


def _type_name(expected: Any) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


class ConfigLoader:
    """
    YAML configuration file loader.

    Attributes:
        config_dir: Directory containing the configuration file
        config_file: Name of the configuration file

    Usage:
        loader = ConfigLoader()
        config = loader.load_and_validate()

        # Load from specific file
        config = loader.load_from_file("/path/to/config.yaml")
    """

    def __init__(
        self, config_dir: Path | None = None, config_file: str = DEFAULT_CONFIG_FILE
    ):
        """
        Initialize the configuration loader.

        Args:
            config_dir: Directory containing the configuration file.
                       Defaults to ~/.contact-rollup/ or $CONTACT_ROLLUP_CONFIG_DIR
            config_file: Name of the configuration file (default: config.yaml)
        """
        self.config_dir = resolve_config_dir(config_dir)
        self.config_file = config_file

    def _get_config_path(self) -> Path:
        return self.config_dir / self.config_file

    def load(self) -> dict[str, Any]:
        """
        Load configuration from the default configuration file.

        Returns:
            Configuration dictionary, or an empty dict if the file is missing

        Raises:
            ConfigLoadError: If the file exists but cannot be parsed
        """
        return self.load_from_file(self._get_config_path())

    def load_from_file(self, path: Path | str) -> dict[str, Any]:
        """
        Load configuration from a specific file.

        Args:
            path: Path to the configuration file

        Returns:
            Configuration dictionary, or an empty dict if the file is missing

        Raises:
            ConfigLoadError: If the file exists but cannot be read or parsed
        """
        path = Path(path)

        if not path.exists():
            logger.debug(f"Configuration file not found: {path}")
            return {}

        try:
            with open(path, encoding="utf-8") as f:
                config = yaml.safe_load(f)

            if config is None:
                logger.debug(f"Configuration file is empty: {path}")
                return {}

            if not isinstance(config, dict):
                raise ConfigLoadError(
                    f"Configuration file must contain a YAML dictionary, "
                    f"got {type(config).__name__}"
                )

            logger.debug(f"Loaded configuration from {path}")
            return config

        except yaml.YAMLError as e:
            raise ConfigLoadError(f"Failed to parse YAML configuration file: {e}") from e
        except OSError as e:
            raise ConfigLoadError(f"Failed to read configuration file: {e}") from e

    def validate(self, config: dict[str, Any]) -> None:
        """
        Validate configuration structure and values.

        Limit values are only type-checked here; RollupLimits clamps them.

        Args:
            config: Configuration dictionary to validate

        Raises:
            ConfigLoadError: If configuration is invalid
        """
        if not isinstance(config, dict):
            raise ConfigLoadError(
                f"Configuration must be a dictionary, got {type(config).__name__}"
            )

        valid_keys: dict[str, type[Any] | tuple[type[Any], ...]] = {
            "verbose": bool,
            "log_dir": str,
            "log_retention_count": int,
            "database_path": str,
            "marker_tag": str,
            "job_key": str,
            "limits": dict,
            "accounts": list,
        }

        for key, value in config.items():
            if key in valid_keys and not isinstance(value, valid_keys[key]):
                raise ConfigLoadError(
                    f"Invalid type for '{key}': expected "
                    f"{_type_name(valid_keys[key])}, got {type(value).__name__}"
                )

        if "log_retention_count" in config and config["log_retention_count"] < 0:
            raise ConfigLoadError(
                f"log_retention_count must be >= 0, got {config['log_retention_count']}"
            )

        if "marker_tag" in config and not config["marker_tag"].strip():
            raise ConfigLoadError("marker_tag must not be empty")

        for key, value in (config.get("limits") or {}).items():
            if key not in LIMIT_RANGES:
                raise ConfigLoadError(
                    f"Unknown limit '{key}'. "
                    f"Must be one of: {', '.join(sorted(LIMIT_RANGES))}"
                )
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigLoadError(
                    f"Invalid type for limit '{key}': expected int or float, "
                    f"got {type(value).__name__}"
                )

        self._validate_accounts(config.get("accounts") or [])

    def _validate_accounts(self, accounts: list[Any]) -> None:
        seen: set[str] = set()
        for index, entry in enumerate(accounts):
            if not isinstance(entry, dict):
                raise ConfigLoadError(
                    f"accounts[{index}] must be a mapping, got {type(entry).__name__}"
                )
            key = entry.get("key")
            if not isinstance(key, str) or not key.strip():
                raise ConfigLoadError(f"accounts[{index}] is missing a 'key'")
            if key in seen:
                raise ConfigLoadError(f"Duplicate account key '{key}'")
            seen.add(key)

            provider = str(entry.get("provider", ProviderKind.GHL.value)).lower()
            if provider not in VALID_PROVIDERS:
                raise ConfigLoadError(
                    f"Invalid provider '{provider}' for account '{key}'. "
                    f"Must be one of: {', '.join(VALID_PROVIDERS)}"
                )
            if "rollup" in entry and not isinstance(entry["rollup"], bool):
                raise ConfigLoadError(f"'rollup' for account '{key}' must be a bool")
            for field_name in ("name", "token", "location_id", "base_url"):
                if field_name in entry and not isinstance(entry[field_name], str):
                    raise ConfigLoadError(
                        f"'{field_name}' for account '{key}' must be a string"
                    )

    def load_and_validate(self) -> dict[str, Any]:
        """
        Load configuration and validate it.

        Raises:
            ConfigLoadError: If configuration cannot be loaded or is invalid
        """
        config = self.load()
        if config:
            self.validate(config)
        return config
