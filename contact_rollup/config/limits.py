"""
Tunable limits for rollup runs.

Every limit has a default and an inclusive range; values read from the
configuration file are clamped into range and non-numeric values fall
back to the default.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, replace
from typing import Any, Optional

logger = logging.getLogger(__name__)

# name -> (default, minimum, maximum)
LIMIT_RANGES: dict[str, tuple[float, float, float]] = {
    "source_concurrency": (3, 1, 10),
    "write_concurrency": (4, 1, 10),
    "max_source_contacts_per_account": (50_000, 100, 250_000),
    "max_upserts": (10_000, 1, 250_000),
    "max_deletes": (10_000, 1, 250_000),
    "incremental_lookback_hours": (48, 1, 24 * 14),
    "page_size": (100, 1, 100),
    "request_timeout_seconds": (30.0, 1.0, 300.0),
}

FLOAT_LIMITS = frozenset({"request_timeout_seconds"})


def clamp_int(value: Any, default: int, minimum: int, maximum: int) -> int:
    """
    Coerce ``value`` to an int inside [minimum, maximum].

    Floats are floored; None, booleans, non-numeric and non-finite values
    yield ``default``.
    """
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return max(minimum, min(maximum, int(math.floor(number))))


def _clamp_float(value: Any, default: float, minimum: float, maximum: float) -> float:
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return max(minimum, min(maximum, number))


def _clamp_limit(name: str, value: Any) -> Any:
    default, minimum, maximum = LIMIT_RANGES[name]
    if name in FLOAT_LIMITS:
        return _clamp_float(value, default, minimum, maximum)
    return clamp_int(value, int(default), int(minimum), int(maximum))


@dataclass(frozen=True)
class RollupLimits:
    """
    Concurrency ceilings and hard caps for one rollup run.

    Attributes:
        source_concurrency: Source accounts fetched in parallel
        write_concurrency: Target writes (upserts/deletes) in flight
        max_source_contacts_per_account: Records listed per source account
        max_upserts: Deduplicated contacts written per sync run
        max_deletes: Contacts deleted per wipe run
        incremental_lookback_hours: Window for incremental syncs
        page_size: Records requested per listing page
        request_timeout_seconds: HTTP timeout per request
    """

    source_concurrency: int = 3
    write_concurrency: int = 4
    max_source_contacts_per_account: int = 50_000
    max_upserts: int = 10_000
    max_deletes: int = 10_000
    incremental_lookback_hours: int = 48
    page_size: int = 100
    request_timeout_seconds: float = 30.0

    def __post_init__(self) -> None:
        for name in LIMIT_RANGES:
            object.__setattr__(self, name, _clamp_limit(name, getattr(self, name)))

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> RollupLimits:
        """
        Build limits from a configuration mapping.

        Unknown keys are ignored with a warning.
        """
        if not data:
            return cls()
        values = {}
        for key, value in data.items():
            if key not in LIMIT_RANGES:
                logger.warning(f"Ignoring unknown limit '{key}'")
                continue
            values[key] = value
        return cls(**values)

    def with_overrides(self, **overrides: Any) -> RollupLimits:
        """Copy with the given limits replaced (None values are ignored)."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
