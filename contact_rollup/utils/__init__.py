"""
contact_rollup.utils - Utility module

Common utilities: logging configuration, contact hygiene, bounded
concurrency, retry policy and path resolution.
"""

from contact_rollup.utils.concurrency import BoundedExecutor, Settled
from contact_rollup.utils.normalization import (
    is_likely_deliverable_email,
    is_likely_dialable_phone,
    normalize_email,
    normalize_phone,
)
from contact_rollup.utils.paths import DEFAULT_CONFIG_DIR, resolve_config_dir
from contact_rollup.utils.retry import RetryPolicy

__all__ = [
    "BoundedExecutor",
    "DEFAULT_CONFIG_DIR",
    "RetryPolicy",
    "Settled",
    "is_likely_deliverable_email",
    "is_likely_dialable_phone",
    "normalize_email",
    "normalize_phone",
    "resolve_config_dir",
]
