"""
Account directory and credential resolution.

Accounts come from the ``accounts`` list of the configuration file. The
registry answers two questions for the rollup:
- Which accounts exist (and which are flagged as rollup targets)
- How to open a contacts adapter for a given account
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional

import httpx

from contact_rollup.api.ghl import GhlContactsAdapter
from contact_rollup.api.klaviyo import KlaviyoContactsAdapter
from contact_rollup.api.providers import (
    AccountCredentials,
    ContactsAdapter,
    ProviderKind,
    UnknownProviderError,
    parse_provider,
)
from contact_rollup.sync.errors import CredentialError

logger = logging.getLogger(__name__)

ADAPTERS: dict[ProviderKind, type[ContactsAdapter]] = {
    ProviderKind.GHL: GhlContactsAdapter,
    ProviderKind.KLAVIYO: KlaviyoContactsAdapter,
}

# Providers whose accounts need a location id alongside the token
LOCATION_SCOPED_PROVIDERS = frozenset({ProviderKind.GHL})


class AccountConfigError(Exception):
    """Raised when an account entry in the configuration file is malformed."""

    pass


@dataclass(frozen=True)
class AccountConfig:
    """
    One CRM account known to the rollup.

    Attributes:
        key: Stable account identifier
        name: Display name (falls back to the key)
        provider: CRM provider identifier, kept as given so that accounts
                  for providers without an adapter still list
        rollup: True if the account is eligible to be the rollup target
        token: API token or key
        location_id: Provider sub-account / location id
        base_url: Optional API base URL override
    """

    key: str
    name: str = ""
    provider: str = ProviderKind.GHL.value
    rollup: bool = False
    token: str = ""
    location_id: str = ""
    base_url: str = ""

    @property
    def display_name(self) -> str:
        return self.name or self.key

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AccountConfig:
        if not isinstance(data, dict):
            raise AccountConfigError(
                f"Account entry must be a mapping, got {type(data).__name__}"
            )
        key = str(data.get("key") or "").strip()
        if not key:
            raise AccountConfigError("Account entry is missing 'key'")
        return cls(
            key=key,
            name=str(data.get("name") or "").strip(),
            provider=str(data.get("provider") or ProviderKind.GHL.value).strip().lower(),
            rollup=bool(data.get("rollup", False)),
            token=str(data.get("token") or ""),
            location_id=str(data.get("location_id") or ""),
            base_url=str(data.get("base_url") or ""),
        )


class AccountRegistry:
    """
    Lookup of configured accounts and their contacts adapters.

    Usage:
        registry = AccountRegistry.from_config(config["accounts"])
        for account in registry.list_accounts():
            ...
        adapter = registry.open_adapter("store-12", http_client)
    """

    def __init__(self, accounts: Iterable[AccountConfig] = ()):
        self._accounts: dict[str, AccountConfig] = {}
        for account in accounts:
            if account.key in self._accounts:
                logger.warning(f"Duplicate account key '{account.key}', keeping first")
                continue
            self._accounts[account.key] = account

    @classmethod
    def from_config(cls, entries: Optional[list[dict[str, Any]]]) -> AccountRegistry:
        return cls(AccountConfig.from_dict(entry) for entry in entries or [])

    def list_accounts(self, keys: Optional[Iterable[str]] = None) -> list[AccountConfig]:
        """All accounts, or only those whose key is in ``keys``."""
        if keys is None:
            return list(self._accounts.values())
        wanted = set(keys)
        return [a for a in self._accounts.values() if a.key in wanted]

    def get(self, key: str) -> Optional[AccountConfig]:
        return self._accounts.get(key)

    def resolve_credentials(self, key: str) -> tuple[ProviderKind, AccountCredentials]:
        """
        Resolve provider and credentials for an account.

        Raises:
            CredentialError: If the account is unknown, its provider has no
                             adapter, or required credentials are missing.
        """
        account = self._accounts.get(key)
        if account is None:
            raise CredentialError(f"Account '{key}' is not configured")

        try:
            provider = parse_provider(account.provider)
        except UnknownProviderError as e:
            raise CredentialError(f"Account '{key}': {e}") from e

        if not account.token:
            raise CredentialError(f"Account '{key}' has no API token configured")
        if provider in LOCATION_SCOPED_PROVIDERS and not account.location_id:
            raise CredentialError(f"Account '{key}' has no location id configured")

        return provider, AccountCredentials(
            token=account.token,
            location_id=account.location_id,
            base_url=account.base_url,
        )

    def open_adapter(self, key: str, http_client: httpx.AsyncClient) -> ContactsAdapter:
        """Contacts adapter for an account, bound to the run's HTTP client."""
        provider, credentials = self.resolve_credentials(key)
        return ADAPTERS[provider](http_client, credentials)
