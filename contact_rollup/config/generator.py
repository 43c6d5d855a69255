"""
Configuration file generator for contact-rollup.

Generates a documented starting configuration with every option and an
example account list.
"""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def generate_default_config() -> str:
    """
    Generate default YAML configuration with all options documented.

    Returns:
        String containing YAML configuration with comments
    """
    return """# Contact Rollup Configuration
# ============================
#
# Save as ~/.contact-rollup/config.yaml (or $CONTACT_ROLLUP_CONFIG_DIR)
# and fill in the accounts section. CLI arguments override these values.

# Logging Options
# ---------------

# Enable verbose output with detailed logging
# Default: false
# verbose: false

# Directory for log files
# Default: ~/.contact-rollup/logs
# log_dir: ~/.contact-rollup/logs

# Number of log files to keep
# Default: 10
# log_retention_count: 10


# Storage
# -------

# SQLite database holding job configuration and run history.
# Relative paths are resolved against the configuration directory.
# Default: rollup.db
# database_path: rollup.db


# Rollup Behavior
# ---------------

# Tag stamped on every contact the rollup writes, used by tagged wipes
# Default: contact-rollup
# marker_tag: contact-rollup

# Job to operate on when --job is not given
# Default: primary
# job_key: primary


# Limits
# ------
# Out-of-range values are clamped.
#
# limits:
#   source_concurrency: 3                  # 1-10
#   write_concurrency: 4                   # 1-10
#   max_source_contacts_per_account: 50000 # 100-250000
#   max_upserts: 10000                     # 1-250000
#   max_deletes: 10000                     # 1-250000
#   incremental_lookback_hours: 48         # 1-336
#   page_size: 100                         # 1-100
#   request_timeout_seconds: 30            # 1-300


# Accounts
# --------
# provider: ghl or klaviyo. Only ghl accounts can be rollup targets.
# rollup: true marks an account as eligible to be the target.
#
# accounts:
#   - key: group-rollup
#     name: Group Rollup
#     provider: ghl
#     rollup: true
#     token: "pit-xxxxxxxx"
#     location_id: "LOCATION_ID"
#   - key: store-north
#     name: North Store
#     provider: ghl
#     token: "pit-yyyyyyyy"
#     location_id: "LOCATION_ID"
#   - key: newsletter
#     name: Newsletter List
#     provider: klaviyo
#     token: "pk_zzzzzzzz"
"""


def save_config_file(
    config_path: Path, overwrite: bool = False
) -> tuple[bool, str | None]:
    """
    Save default configuration file to specified path.

    Creates parent directories if they don't exist and writes the file
    readable by the owner only, since it holds API tokens.

    Args:
        config_path: Path where the config file should be saved
        overwrite: If True, overwrite existing file. If False, fail if file exists.

    Returns:
        Tuple of (success, error_message)
    """
    try:
        config_path = config_path.expanduser().resolve()

        if config_path.exists() and not overwrite:
            return (
                False,
                f"Configuration file already exists: {config_path}\n"
                "Use --force to overwrite.",
            )

        config_path.parent.mkdir(parents=True, mode=0o700, exist_ok=True)
        config_path.write_text(generate_default_config(), encoding="utf-8")
        config_path.chmod(0o600)

        logger.info(f"Created configuration file: {config_path}")
        return (True, None)

    except OSError as e:
        error_msg = f"Failed to create configuration file: {e}"
        logger.error(error_msg)
        return (False, error_msg)
