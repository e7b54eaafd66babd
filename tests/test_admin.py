from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import NOW, FixedClock
from repo_activity_sync.config import SyncSettings
from repo_activity_sync.models.sync import SyncWatermark
from repo_activity_sync.sync.admin import SyncAdmin


@pytest.fixture
def store():
    store = MagicMock()
    store.find_all_by_username = AsyncMock(return_value=[])
    store.is_incremental_sync_valid = AsyncMock(return_value=True)
    store.is_full_sync_required = AsyncMock(return_value=False)
    store.cleanup = AsyncMock(return_value=0)
    store.delete_by_username_and_repo = AsyncMock(return_value=True)
    return store


@pytest.fixture
def admin(store):
    settings = SyncSettings(incremental_sync_interval_hours=4, full_sync_interval_hours=24)
    return SyncAdmin(store, settings, clock=FixedClock())


@pytest.mark.asyncio
async def test_status_reports_each_watermark(admin, store):
    fresh = SyncWatermark(username="octocat", repo="octo/a", last_sync_date=NOW)
    stale = SyncWatermark(
        username="octocat", repo="octo/b", last_sync_date=NOW - timedelta(days=2)
    )
    store.find_all_by_username.return_value = [fresh, stale]
    store.is_incremental_sync_valid.side_effect = [True, False]
    store.is_full_sync_required.side_effect = [False, True]

    statuses = await admin.status("octocat")

    assert [s.watermark.repo for s in statuses] == ["octo/a", "octo/b"]
    assert [s.needs_incremental for s in statuses] == [False, True]
    assert [s.needs_full for s in statuses] == [False, True]
    store.is_incremental_sync_valid.assert_any_await(
        "octocat", "octo/a", NOW - timedelta(hours=4)
    )
    store.is_full_sync_required.assert_any_await(
        "octocat", "octo/b", NOW - timedelta(hours=24)
    )


@pytest.mark.asyncio
async def test_cleanup_uses_retention_cutoff(admin, store):
    store.cleanup.return_value = 3

    assert await admin.cleanup(30) == 3
    store.cleanup.assert_awaited_once_with(NOW - timedelta(days=30))


@pytest.mark.asyncio
async def test_cleanup_rejects_non_positive(admin, store):
    with pytest.raises(ValueError):
        await admin.cleanup(0)
    store.cleanup.assert_not_awaited()


@pytest.mark.asyncio
async def test_reset_normalizes_repo(admin, store):
    assert await admin.reset("octocat", " octo/demo ") is True
    store.delete_by_username_and_repo.assert_awaited_once_with("octocat", "octo/demo")


@pytest.mark.asyncio
async def test_reset_then_next_sync_is_full(make_engine, fetcher, watermark_store):
    engine = make_engine()
    await engine.sync_user_repo_activity("octocat", "octo/demo", "t")
    admin = SyncAdmin(watermark_store, SyncSettings(), clock=FixedClock())

    assert await admin.reset("octocat", "octo/demo")
    outcome = await engine.sync_user_repo_activity("octocat", "octo/demo", "t")

    assert outcome.is_incremental is False
    assert len(fetcher.calls) == 2
