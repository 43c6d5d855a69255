"""
contact_rollup.api - CRM provider adapters

HTTP client wrapper plus per-provider contacts adapters.
"""

from contact_rollup.api.crm_client import (
    CrmAPIError,
    CrmClient,
    RateLimitError,
    is_retryable_error,
)
from contact_rollup.api.ghl import GhlContactRecord, GhlContactsAdapter
from contact_rollup.api.klaviyo import KlaviyoContactsAdapter, KlaviyoProfileRecord
from contact_rollup.api.providers import (
    AccountCredentials,
    CanonicalContact,
    ContactPage,
    ContactsAdapter,
    OutboundContact,
    ProviderKind,
)

__all__ = [
    "AccountCredentials",
    "CanonicalContact",
    "ContactPage",
    "ContactsAdapter",
    "CrmAPIError",
    "CrmClient",
    "GhlContactRecord",
    "GhlContactsAdapter",
    "KlaviyoContactsAdapter",
    "KlaviyoProfileRecord",
    "OutboundContact",
    "ProviderKind",
    "RateLimitError",
    "is_retryable_error",
]
