"""
Writes to the rollup target account.

Provides idempotent upserts stamped with rollup tags and idempotent
deletes, both behind one retry policy (429/5xx only, linear backoff).
"""

from __future__ import annotations

import logging
from typing import Optional

from contact_rollup.api.crm_client import CrmAPIError, is_retryable_error
from contact_rollup.api.providers import ContactsAdapter, OutboundContact
from contact_rollup.sync.contact import PreparedContact
from contact_rollup.sync.errors import UnsupportedProviderError, WriteError
from contact_rollup.utils.retry import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_MARKER_TAG = "contact-rollup"
SOURCE_TAG_PREFIX = "rollup-src:"
MAX_TAGS = 25


def default_retry_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay=0.3, is_retryable=is_retryable_error)


def build_rollup_tags(
    contact: PreparedContact, marker_tag: str = DEFAULT_MARKER_TAG
) -> tuple[str, ...]:
    """
    Tags to stamp on a written contact.

    Order: marker tag, then one source attribution tag per contributing
    account, then the contact's own tags, each group sorted. Capped at
    MAX_TAGS, so attribution survives truncation before contact tags do.
    """
    tags: dict[str, None] = {marker_tag: None}
    for key in sorted(contact.source_account_keys):
        tags.setdefault(f"{SOURCE_TAG_PREFIX}{key}", None)
    for tag in sorted(contact.tags):
        if tag:
            tags.setdefault(tag, None)
    return tuple(tags)[:MAX_TAGS]


def to_outbound(
    contact: PreparedContact, marker_tag: str = DEFAULT_MARKER_TAG
) -> OutboundContact:
    return OutboundContact(
        first_name=contact.first_name,
        last_name=contact.last_name,
        full_name=contact.full_name,
        email=contact.email,
        phone=contact.phone,
        tags=build_rollup_tags(contact, marker_tag),
    )


class TargetWriter:
    """
    Upsert and delete contacts on the target account.

    Usage:
        writer = TargetWriter(adapter, marker_tag="contact-rollup")
        await writer.upsert(prepared_contact)
        await writer.delete("contact-id")
    """

    def __init__(
        self,
        adapter: ContactsAdapter,
        marker_tag: str = DEFAULT_MARKER_TAG,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        if not adapter.supports_writes:
            raise UnsupportedProviderError(
                f"Provider '{adapter.provider.value}' does not support rollup writes"
            )
        self.adapter = adapter
        self.marker_tag = marker_tag
        self.retry_policy = retry_policy or default_retry_policy()

    async def upsert(self, contact: PreparedContact) -> None:
        """
        Create or update a contact on the target.

        Each request body shape the adapter offers is tried in turn, with
        retries per shape; the next shape is tried only after the previous
        one failed.

        Raises:
            WriteError: If every body shape was rejected
        """
        outbound = to_outbound(contact, self.marker_tag)
        bodies = self.adapter.build_upsert_bodies(outbound)
        last_error: Optional[CrmAPIError] = None

        for index, body in enumerate(bodies):
            try:
                await self.retry_policy.run(
                    lambda body=body: self.adapter.upsert_contact(body),
                    f"Upsert {contact.dedupe_key}",
                )
                logger.debug(f"Upserted {contact.dedupe_key} (body shape {index + 1})")
                return
            except CrmAPIError as e:
                last_error = e
                if index + 1 < len(bodies):
                    logger.debug(
                        f"Upsert {contact.dedupe_key} rejected ({e.status_code}), "
                        "trying alternate body shape"
                    )

        message = last_error.message if last_error else "no request body to send"
        status = f" ({last_error.status_code})" if last_error else ""
        raise WriteError(f"Upsert failed{status}: {message}") from last_error

    async def delete(self, contact_id: str) -> None:
        """
        Delete a contact from the target; a 404 counts as already deleted.

        Raises:
            WriteError: If the delete was rejected or exhausted its retries
        """
        try:
            await self.retry_policy.run(
                lambda: self.adapter.delete_contact(contact_id),
                f"Delete {contact_id}",
            )
        except CrmAPIError as e:
            if e.is_not_found:
                logger.debug(f"Contact {contact_id} already deleted")
                return
            raise WriteError(f"Delete failed ({e.status_code}): {e.message}") from e
