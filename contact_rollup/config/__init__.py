"""
contact_rollup.config - Configuration management module

Contains the YAML tool configuration, the account directory, run limits
and the persisted rollup job configuration.
"""

from contact_rollup.config.accounts import AccountConfig, AccountRegistry
from contact_rollup.config.limits import RollupLimits
from contact_rollup.config.loader import ConfigLoader, ConfigLoadError
from contact_rollup.config.rollup_config import (
    DEFAULT_JOB_KEY,
    Actor,
    ConfigSnapshot,
    RollupConfig,
    RollupConfigInput,
)
from contact_rollup.config.store import ConfigStore, validate_config_input

__all__ = [
    "AccountConfig",
    "AccountRegistry",
    "Actor",
    "ConfigLoadError",
    "ConfigLoader",
    "ConfigSnapshot",
    "ConfigStore",
    "DEFAULT_JOB_KEY",
    "RollupConfig",
    "RollupConfigInput",
    "RollupLimits",
    "validate_config_input",
]
