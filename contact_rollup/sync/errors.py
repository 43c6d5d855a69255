"""
Error taxonomy for rollup runs.

Per-source and per-item failures are caught where they occur and recorded
in the run result; only the whole-run preconditions surface as a failed
or disabled status.
"""


class RollupError(Exception):
    """Base class for rollup run errors."""

    pass


class ConfigError(RollupError):
    """Raised when the job has no usable target account or cannot be read."""

    pass


class UnsupportedProviderError(RollupError):
    """Raised when the target account's provider cannot accept writes."""

    pass


class CredentialError(RollupError):
    """Raised when an account's credentials or adapter cannot be resolved."""

    pass


class FetchError(RollupError):
    """Raised when listing contacts from an account fails."""

    pass


class WriteError(RollupError):
    """Raised when an upsert or delete is rejected or exhausts its retries."""

    pass


class ScheduleSkip(RollupError):
    """Raised when an enforced schedule has no sync due at the current minute."""

    pass
