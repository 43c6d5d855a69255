"""
Cursor pagination over a contacts adapter.

Shared by source collection and the target wipe. Listing stops when:
- A page contains no record that has not been seen already
- No next cursor can be derived, or a cursor repeats
- The record ceiling is reached
"""

from __future__ import annotations

import logging
from typing import Optional

from contact_rollup.api.crm_client import CrmAPIError
from contact_rollup.api.providers import ContactPage, ContactsAdapter, RawContactRecord
from contact_rollup.sync.errors import FetchError

logger = logging.getLogger(__name__)


def next_cursor_for(page: ContactPage) -> Optional[str]:
    """
    Cursor for the page after ``page``.

    None unless the page reports more data. Uses the cursor from the page
    metadata, falling back to the id of the page's last record.
    """
    if not page.has_more:
        return None
    if page.next_cursor:
        return page.next_cursor
    if page.records:
        return page.records[-1].record_id or None
    return None


async def paginate_contacts(
    adapter: ContactsAdapter,
    *,
    page_size: int,
    max_records: int,
    label: str = "",
) -> list[RawContactRecord]:
    """
    List up to ``max_records`` raw records from an account.

    If the very first page is rejected and the adapter offers an alternate
    listing, the first page is retried there and the rest of the listing
    continues on the alternate endpoint.

    Args:
        adapter: Contacts adapter for the account
        page_size: Records requested per page
        max_records: Ceiling on records returned
        label: Account label for log and error messages

    Returns:
        Raw records in listing order, without repeats

    Raises:
        FetchError: If a page cannot be fetched
    """
    label = label or adapter.provider.value
    records: list[RawContactRecord] = []
    seen_ids: set[str] = set()
    seen_cursors: set[str] = set()
    cursor: Optional[str] = None
    alternate = False
    page_number = 0

    while len(records) < max_records:
        limit = min(page_size, max_records - len(records))
        try:
            page = await adapter.fetch_page(cursor, limit=limit, alternate=alternate)
        except CrmAPIError as e:
            if page_number == 0 and adapter.has_alternate_listing and not alternate:
                logger.warning(
                    f"{label}: contact listing rejected ({e.status_code}), "
                    "retrying first page with alternate listing"
                )
                alternate = True
                try:
                    page = await adapter.fetch_page(None, limit=limit, alternate=True)
                except CrmAPIError as fallback_error:
                    raise FetchError(
                        f"{label}: contacts fetch failed ({fallback_error.status_code}): "
                        f"{fallback_error.message}"
                    ) from fallback_error
            else:
                raise FetchError(
                    f"{label}: contacts fetch failed ({e.status_code}): {e.message}"
                ) from e

        page_number += 1
        fresh = []
        for record in page.records:
            record_id = record.record_id
            if record_id:
                if record_id in seen_ids:
                    continue
                seen_ids.add(record_id)
            fresh.append(record)

        if not fresh:
            break

        records.extend(fresh[: max_records - len(records)])

        cursor = next_cursor_for(page)
        if not cursor or cursor in seen_cursors:
            break
        seen_cursors.add(cursor)

    logger.debug(f"{label}: listed {len(records)} records in {page_number} pages")
    return records
