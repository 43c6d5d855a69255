"""
Tests for rollup orchestration.

Most tests swap the registry's adapters for in-memory fakes; the last
class runs a sync against mocked GHL HTTP endpoints.
"""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import httpx
import pytest

from contact_rollup.config.accounts import AccountRegistry
from contact_rollup.config.limits import RollupLimits
from contact_rollup.config.rollup_config import RollupConfigInput
from contact_rollup.config.store import ConfigStore
from contact_rollup.daemon.scheduler import SyncMode
from contact_rollup.sync.engine import RollupEngine, SyncOptions, WipeOptions
from contact_rollup.sync.errors import CredentialError
from contact_rollup.sync.results import RunStatus, TriggerInfo
from contact_rollup.sync.wipe import WipeMode

ACCOUNTS = [
    {"key": "hq", "name": "Head Office", "rollup": True, "token": "t", "location_id": "l"},
    {"key": "north", "name": "North Store", "token": "t", "location_id": "l"},
    {"key": "south", "name": "South Store", "token": "t", "location_id": "l"},
    {"key": "news", "name": "Newsletter", "provider": "klaviyo", "token": "pk"},
]

NORTH = [
    {"id": "n1", "email": "x@example.com", "tags": ["vip"]},
    {"id": "n2", "email": "y@example.com"},
    {"id": "n3", "phone": "5551112222"},
]
SOUTH = [
    {"id": "s1", "email": "X@example.com", "phone": "5553334444"},
    {"id": "s2", "email": "z@example.com"},
    {"id": "s3", "phone": "5559990000"},
]


@pytest.fixture
def registry():
    return AccountRegistry.from_config(ACCOUNTS)


@pytest.fixture
def adapters(fake_adapter_cls):
    return {
        "hq": fake_adapter_cls(),
        "north": fake_adapter_cls(pages=[NORTH]),
        "south": fake_adapter_cls(pages=[SOUTH]),
        "news": fake_adapter_cls(),
    }


@pytest.fixture
def config_store(database, registry):
    return ConfigStore(database, registry)


@pytest.fixture
def engine(config_store, registry, adapters, no_sleep_policy, monkeypatch):
    def open_adapter(key, http_client):
        if key not in adapters:
            raise CredentialError(f"Account '{key}' is not configured")
        return adapters[key]

    monkeypatch.setattr(registry, "open_adapter", open_adapter)
    return RollupEngine(config_store, registry, retry_policy=no_sleep_policy)


def at(hour, minute):
    return datetime(2026, 3, 1, hour, minute, tzinfo=timezone.utc)


class TestRunSync:
    """Tests for RollupEngine.run_sync()."""

    @pytest.mark.asyncio
    async def test_full_sync_rolls_up_sources(self, engine, adapters, database, recent):
        result = await engine.run_sync(SyncOptions(full_sync=True, now=recent))

        assert result.status == RunStatus.OK
        assert result.target_account_key == "hq"
        assert result.source_account_keys == ["news", "north", "south"]
        totals = result.totals
        assert totals.source_accounts_requested == 3
        assert totals.source_accounts_processed == 3
        assert totals.fetched == 6
        assert totals.accepted == 6
        assert totals.global_duplicates_collapsed == 1
        assert totals.queued_for_target == 5
        assert totals.upserts_succeeded == 5
        assert result.errors == {}

        upserted = adapters["hq"].upserted
        assert len(upserted) == 5
        merged = next(b for b in upserted if b["email"] == "x@example.com")
        assert merged["phone"] == "5553334444"
        assert merged["tags"][:3] == ["contact-rollup", "rollup-src:north", "rollup-src:south"]
        assert "vip" in merged["tags"]

    @pytest.mark.asyncio
    async def test_sync_is_recorded(self, engine, database, recent):
        result = await engine.run_sync(
            SyncOptions(full_sync=True, now=recent, trigger=TriggerInfo(user_name="Ada"))
        )

        row = database.get_config(result.job_key)
        assert row["last_sync_status"] == "ok"
        assert row["last_sync_summary"]["totals"]["upserts_succeeded"] == 5
        history = database.list_run_history(result.job_key)
        assert len(history) == 1
        assert history[0]["run_type"] == "sync"
        assert history[0]["mode"] == "full"
        assert history[0]["triggered_by_user_name"] == "Ada"
        assert result.finished_at

    @pytest.mark.asyncio
    async def test_dry_run_writes_nothing(self, engine, adapters, database, recent):
        result = await engine.run_sync(SyncOptions(dry_run=True, full_sync=True, now=recent))

        assert result.status == RunStatus.OK
        assert result.totals.queued_for_target == 5
        assert result.totals.upserts_attempted == 0
        assert adapters["hq"].upserted == []
        assert database.list_run_history(result.job_key)[0]["dry_run"] is True

    @pytest.mark.asyncio
    async def test_source_failure_does_not_fail_run(self, engine, adapters, recent):
        adapters["south"].fail_pages = {0: 500}

        result = await engine.run_sync(SyncOptions(full_sync=True, now=recent))

        assert result.status == RunStatus.OK
        assert "500" in result.errors["source:south"]
        assert result.totals.source_accounts_processed == 2
        assert result.totals.upserts_succeeded == 3

    @pytest.mark.asyncio
    async def test_upsert_failure_fails_run(self, engine, adapters, database, recent):
        adapters["hq"].upsert_failures = [400, 400]

        result = await engine.run_sync(SyncOptions(full_sync=True, now=recent))

        assert result.status == RunStatus.FAILED
        assert result.totals.upserts_failed == 1
        assert result.totals.upserts_succeeded == 4
        assert [k for k in result.errors if k.startswith("upsert:")]
        assert database.get_config(result.job_key)["last_sync_status"] == "failed"

    @pytest.mark.asyncio
    async def test_errors_beyond_cap_are_counted(
        self, engine, adapters, database, fake_adapter_cls, recent
    ):
        adapters["north"] = fake_adapter_cls(
            pages=[[{"id": f"n{i}", "email": f"user{i}@example.com"} for i in range(27)]]
        )
        adapters["hq"].upsert_failures = [400] * 100

        result = await engine.run_sync(SyncOptions(full_sync=True, now=recent))

        assert result.totals.upserts_failed == 30
        assert len(result.errors) == 25
        assert result.errors_truncated == {"upsert": 5}
        history = database.list_run_history(result.job_key)
        assert history[0]["errors_truncated"] == {"upsert": 5}

    @pytest.mark.asyncio
    async def test_incremental_window(self, engine, adapters, fake_adapter_cls):
        now = at(12, 0)
        adapters["north"] = fake_adapter_cls(
            pages=[
                [
                    {"id": "a", "email": "a@example.com", "dateAdded": now - timedelta(hours=1)},
                    {"id": "b", "email": "b@example.com", "dateAdded": now - timedelta(days=30)},
                ]
            ]
        )

        result = await engine.run_sync(SyncOptions(now=now))

        assert result.mode == "incremental"
        assert result.per_source["north"].considered == 1
        assert result.totals.upserts_succeeded == 1

    @pytest.mark.asyncio
    async def test_source_limit_and_max_upserts(self, engine, adapters, recent):
        result = await engine.run_sync(
            SyncOptions(full_sync=True, now=recent, source_account_limit=2, max_upserts=2)
        )

        assert result.source_account_keys == ["news", "north"]
        assert result.totals.source_accounts_requested == 2
        assert result.totals.queued_for_target == 2
        assert result.totals.truncated_by_max_upserts == 1
        assert len(adapters["hq"].upserted) == 2

    @pytest.mark.asyncio
    async def test_missing_target_fails_before_fetching(
        self, config_store, adapters, no_sleep_policy, recent
    ):
        registry = AccountRegistry.from_config(ACCOUNTS[1:3])
        store = ConfigStore(config_store.store, registry)
        engine = RollupEngine(store, registry, retry_policy=no_sleep_policy)

        result = await engine.run_sync(SyncOptions(full_sync=True, now=recent))

        assert result.status == RunStatus.FAILED
        assert "config" in result.errors
        assert adapters["north"].fetch_calls == []

    @pytest.mark.asyncio
    async def test_read_only_target_rejected(self, engine, config_store, adapters, recent):
        config_store.upsert_config(RollupConfigInput(target_account_key="news"))

        result = await engine.run_sync(SyncOptions(full_sync=True, now=recent))

        assert result.status == RunStatus.FAILED
        assert "klaviyo" in result.errors["target"]
        assert adapters["north"].fetch_calls == []

    @pytest.mark.asyncio
    async def test_config_load_failure(self, engine, database):
        engine.config_store.get_snapshot = MagicMock(side_effect=RuntimeError("db gone"))

        result = await engine.run_sync()

        assert result.status == RunStatus.FAILED
        assert "db gone" in result.errors["config"]
        assert database.list_run_history(result.job_key) == []


class TestRunSyncSchedule:
    """Tests for scheduled (enforced) syncs."""

    @pytest.mark.asyncio
    async def test_disabled_job(self, engine, config_store, adapters, database):
        config_store.upsert_config(RollupConfigInput(enabled=False))

        result = await engine.run_sync(SyncOptions(enforce_schedule=True, now=at(2, 15)))

        assert result.status == RunStatus.DISABLED
        assert adapters["north"].fetch_calls == []
        assert database.get_config(result.job_key)["last_sync_status"] == "disabled"

    @pytest.mark.asyncio
    async def test_disabled_job_runs_manually(self, engine, config_store, recent):
        config_store.upsert_config(RollupConfigInput(target_account_key="hq", enabled=False))

        result = await engine.run_sync(SyncOptions(full_sync=True, now=recent))

        assert result.status == RunStatus.OK
        assert result.totals.upserts_succeeded == 5

    @pytest.mark.asyncio
    async def test_skip_recorded_without_last_sync(self, engine, adapters, database):
        result = await engine.run_sync(SyncOptions(enforce_schedule=True, now=at(2, 16)))

        assert result.status == RunStatus.OK
        assert result.skipped
        assert result.mode == "skip"
        assert adapters["north"].fetch_calls == []
        assert database.get_config(result.job_key) is None
        assert database.list_run_history(result.job_key)[0]["mode"] == "skip"

    def test_scheduled_mode(self, engine, config_store, database):
        config_store.upsert_config(RollupConfigInput(schedule_interval_hours=2))

        assert engine.scheduled_mode(now=at(2, 15)) == SyncMode.INCREMENTAL
        assert engine.scheduled_mode(now=at(3, 15)) == SyncMode.SKIP
        assert engine.scheduled_mode(now=at(3, 45)) == SyncMode.FULL
        assert database.list_run_history("primary") == []

    @pytest.mark.asyncio
    async def test_scheduled_full_sync(self, engine):
        result = await engine.run_sync(
            SyncOptions(enforce_schedule=True, full_sync=False, now=at(3, 45))
        )

        assert result.mode == "full"
        assert result.full_sync is True
        assert result.totals.upserts_succeeded == 5

    @pytest.mark.asyncio
    async def test_scheduled_incremental_ignores_full_flag(self, engine):
        result = await engine.run_sync(
            SyncOptions(enforce_schedule=True, full_sync=True, now=at(2, 15))
        )

        assert result.mode == "incremental"
        assert result.full_sync is False


TARGET_PAGES = [
    [
        {"id": "t1", "tags": ["contact-rollup"]},
        {"id": "t2", "tags": ["rollup-src:north"]},
        {"id": "t3", "tags": ["walk-in"]},
    ]
]


class TestRunWipe:
    """Tests for RollupEngine.run_wipe()."""

    @pytest.mark.asyncio
    async def test_default_is_tagged_dry_run(self, engine, adapters, fake_adapter_cls):
        adapters["hq"] = fake_adapter_cls(pages=TARGET_PAGES)

        result = await engine.run_wipe()

        assert result.status == RunStatus.OK
        assert result.dry_run
        assert result.mode == "tagged"
        assert result.totals.eligible == 2
        assert result.filter_breakdown == {"matched_marker_tag": 1, "matched_source_tag": 1}
        assert adapters["hq"].deleted == []

    @pytest.mark.asyncio
    async def test_all_mode_deletes(self, engine, adapters, database, fake_adapter_cls):
        adapters["hq"] = fake_adapter_cls(pages=TARGET_PAGES)

        result = await engine.run_wipe(WipeOptions(dry_run=False, mode=WipeMode.ALL))

        assert result.status == RunStatus.OK
        assert sorted(adapters["hq"].deleted) == ["t1", "t2", "t3"]
        history = database.list_run_history(result.job_key, run_type="wipe")
        assert history[0]["wipe_mode"] == "all"
        assert history[0]["totals"]["deletes_succeeded"] == 3

    @pytest.mark.asyncio
    async def test_max_deletes_override(self, engine, adapters, fake_adapter_cls):
        adapters["hq"] = fake_adapter_cls(pages=TARGET_PAGES)

        result = await engine.run_wipe(
            WipeOptions(dry_run=False, mode=WipeMode.ALL, max_deletes=1)
        )

        assert result.totals.deletes_attempted == 1
        assert result.totals.truncated_by_max_deletes == 2

    @pytest.mark.asyncio
    async def test_delete_failure_fails_run(self, engine, adapters, fake_adapter_cls):
        adapters["hq"] = fake_adapter_cls(pages=TARGET_PAGES, delete_failures={"t2": 403})

        result = await engine.run_wipe(WipeOptions(dry_run=False))

        assert result.status == RunStatus.FAILED
        assert "403" in result.errors["delete:t2"]
        assert result.totals.deletes_succeeded == 1

    @pytest.mark.asyncio
    async def test_already_deleted_contact_counts_as_deleted(
        self, engine, adapters, database, fake_adapter_cls
    ):
        """Test that a 404 from the target is a successful delete."""
        adapters["hq"] = fake_adapter_cls(pages=TARGET_PAGES, delete_failures={"t1": 404})

        result = await engine.run_wipe(WipeOptions(dry_run=False))

        assert result.status == RunStatus.OK
        assert result.totals.deletes_attempted == 2
        assert result.totals.deletes_succeeded == 2
        assert result.totals.deletes_failed == 0
        assert not [k for k in result.errors if k.startswith("delete:")]
        assert adapters["hq"].deleted == ["t2"]
        assert database.get_config(result.job_key)["last_sync_status"] == "ok"

    @pytest.mark.asyncio
    async def test_listing_failure(self, engine, adapters, fake_adapter_cls):
        adapters["hq"] = fake_adapter_cls(pages=TARGET_PAGES, fail_pages={0: 401})

        result = await engine.run_wipe()

        assert result.status == RunStatus.FAILED
        assert "401" in result.errors["fetch"]

    @pytest.mark.asyncio
    async def test_read_only_target(self, engine, config_store):
        config_store.upsert_config(RollupConfigInput(target_account_key="news"))

        result = await engine.run_wipe()

        assert result.status == RunStatus.FAILED
        assert "target" in result.errors


class TestRunSyncOverHttp:
    """A sync against mocked GHL endpoints."""

    @pytest.mark.asyncio
    async def test_sync_over_http(self, database):
        accounts = [
            {"key": "hq", "rollup": True, "token": "t", "location_id": "loc-hq",
             "base_url": "https://hq.test"},
            {"key": "north", "token": "t", "location_id": "loc-n",
             "base_url": "https://north.test"},
        ]
        registry = AccountRegistry.from_config(accounts)
        upserts = []

        def handler(request):
            host = request.url.host
            if request.method == "GET" and host == "north.test":
                assert request.url.params["locationId"] == "loc-n"
                return httpx.Response(
                    200,
                    json={
                        "contacts": [
                            {"id": "1", "email": "ann@example.com", "firstName": "Ann"},
                            {"id": "2", "email": "bad-email"},
                        ],
                        "meta": {},
                    },
                )
            if request.method == "POST" and host == "hq.test":
                assert request.headers["Authorization"] == "Bearer t"
                upserts.append(json.loads(request.content))
                return httpx.Response(200, json={"contact": {"id": "c1"}})
            return httpx.Response(404, json={"message": "unexpected request"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            engine = RollupEngine(
                ConfigStore(database, registry),
                registry,
                limits=RollupLimits(page_size=50),
                http_client=client,
            )
            result = await engine.run_sync(SyncOptions(full_sync=True))

        assert result.status == RunStatus.OK
        assert result.totals.skipped_invalid == 1
        assert result.totals.upserts_succeeded == 1
        assert upserts == [
            {
                "locationId": "loc-hq",
                "firstName": "Ann",
                "name": "Ann",
                "email": "ann@example.com",
                "tags": ["contact-rollup", "rollup-src:north"],
                "source": "Contact Rollup",
            }
        ]
