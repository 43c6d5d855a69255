"""Tests for wiping rollup contacts from the target."""

import pytest

from contact_rollup.api.providers import CanonicalContact
from contact_rollup.sync.errors import FetchError
from contact_rollup.sync.wipe import WipeEngine, WipeMode, has_marker_tag, has_source_tag
from contact_rollup.sync.writer import TargetWriter

TARGET_PAGES = [
    [
        {"id": "1", "tags": ["Contact-Rollup"]},
        {"id": "2", "tags": ["rollup-src:store-a"]},
        {"id": "3", "tags": ["customer"]},
    ],
    [
        {"id": "1", "tags": ["contact-rollup"]},
        {"tags": ["contact-rollup"]},
    ],
]


def make_engine(adapter, policy, **kwargs):
    options = {
        "page_size": 10,
        "max_records": 1000,
        "max_deletes": 100,
        "write_concurrency": 2,
    }
    options.update(kwargs)
    return WipeEngine(adapter, TargetWriter(adapter, retry_policy=policy), **options)


class TestTagMatching:
    """Tests for the rollup tag predicates."""

    def test_marker_case_insensitive(self):
        contact = CanonicalContact(tags=["CONTACT-ROLLUP"])
        assert has_marker_tag(contact, "contact-rollup")
        assert not has_source_tag(contact)

    def test_source_prefix(self):
        contact = CanonicalContact(tags=["Rollup-Src:shop"])
        assert has_source_tag(contact)
        assert not has_marker_tag(contact, "contact-rollup")


class TestWipeEngine:
    """Tests for WipeEngine.run()."""

    @pytest.mark.asyncio
    async def test_dry_run_counts_only(self, fake_adapter_cls, no_sleep_policy):
        adapter = fake_adapter_cls(pages=TARGET_PAGES)

        outcome = await make_engine(adapter, no_sleep_policy).run(
            WipeMode.TAGGED, dry_run=True
        )

        totals = outcome.totals
        assert totals.listed == 4
        assert totals.unique == 3
        assert totals.eligible == 2
        assert totals.matched_marker_tag == 1
        assert totals.matched_source_tag == 1
        assert totals.deletes_attempted == 0
        assert adapter.deleted == []

    @pytest.mark.asyncio
    async def test_tagged_deletes_only_rollup_contacts(
        self, fake_adapter_cls, no_sleep_policy
    ):
        adapter = fake_adapter_cls(pages=TARGET_PAGES)

        outcome = await make_engine(adapter, no_sleep_policy).run(
            WipeMode.TAGGED, dry_run=False
        )

        assert sorted(adapter.deleted) == ["1", "2"]
        assert outcome.totals.deletes_succeeded == 2
        assert outcome.failures == {}

    @pytest.mark.asyncio
    async def test_all_mode_deletes_everything(self, fake_adapter_cls, no_sleep_policy):
        adapter = fake_adapter_cls(pages=TARGET_PAGES)

        outcome = await make_engine(adapter, no_sleep_policy).run(
            WipeMode.ALL, dry_run=False
        )

        assert sorted(adapter.deleted) == ["1", "2", "3"]
        assert outcome.totals.eligible == 3

    @pytest.mark.asyncio
    async def test_max_deletes_truncates(self, fake_adapter_cls, no_sleep_policy):
        adapter = fake_adapter_cls(pages=TARGET_PAGES)

        outcome = await make_engine(adapter, no_sleep_policy, max_deletes=1).run(
            WipeMode.ALL, dry_run=False
        )

        assert adapter.deleted == ["1"]
        assert outcome.totals.truncated_by_max_deletes == 2
        assert outcome.totals.deletes_attempted == 1

    @pytest.mark.asyncio
    async def test_delete_failures_recorded(self, fake_adapter_cls, no_sleep_policy):
        adapter = fake_adapter_cls(pages=TARGET_PAGES, delete_failures={"2": 403})

        outcome = await make_engine(adapter, no_sleep_policy).run(
            WipeMode.TAGGED, dry_run=False
        )

        assert outcome.totals.deletes_succeeded == 1
        assert outcome.totals.deletes_failed == 1
        assert "403" in outcome.failures["2"]

    @pytest.mark.asyncio
    async def test_listing_failure_raises(self, fake_adapter_cls, no_sleep_policy):
        adapter = fake_adapter_cls(pages=TARGET_PAGES, fail_pages={0: 401})

        with pytest.raises(FetchError):
            await make_engine(adapter, no_sleep_policy).run(WipeMode.TAGGED, dry_run=True)

    @pytest.mark.asyncio
    async def test_writer_required_for_real_wipe(self, fake_adapter_cls):
        adapter = fake_adapter_cls(pages=TARGET_PAGES)
        engine = WipeEngine(
            adapter,
            None,
            page_size=10,
            max_records=1000,
            max_deletes=100,
            write_concurrency=1,
        )

        with pytest.raises(ValueError):
            await engine.run(WipeMode.ALL, dry_run=False)
