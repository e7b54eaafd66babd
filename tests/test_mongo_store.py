from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo import UpdateOne
from pymongo.errors import ConfigurationError

from conftest import make_comment, make_commit, make_issue, make_pr
from repo_activity_sync.storage.mongo import (
    DEFAULT_DB_NAME,
    MongoStore,
    commit_doc_id,
    numbered_doc_id,
)
from repo_activity_sync.sync.watermarks import MongoWatermarkStore

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class _Database(dict):
    def __missing__(self, name):
        coll = MagicMock()
        coll.bulk_write = AsyncMock()
        coll.create_index = AsyncMock()
        coll.count_documents = AsyncMock(return_value=0)
        self[name] = coll
        return coll


def _motor_client(default_db=None, default_error=None):
    client = MagicMock()
    databases = {}

    def _getitem(name):
        return databases.setdefault(name, _Database())

    client.__getitem__.side_effect = _getitem
    if default_error is not None:
        client.get_default_database.side_effect = default_error
    else:
        client.get_default_database.return_value = default_db
    return client


class TestConnection:
    def test_requires_connection_string_or_client(self):
        with pytest.raises(ValueError):
            MongoStore("")

    @pytest.mark.asyncio
    async def test_uses_default_database_from_uri(self):
        default_db = _Database()
        client = _motor_client(default_db=default_db)

        async with MongoStore("mongodb://host/x", client=client) as s:
            assert s.db is default_db

        client.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_falls_back_to_default_name(self):
        client = _motor_client(default_db=None)

        async with MongoStore("mongodb://host", client=client) as s:
            assert s.db is client[DEFAULT_DB_NAME]

    @pytest.mark.asyncio
    async def test_configuration_error_is_reported(self):
        client = _motor_client(default_error=ConfigurationError("no db"))

        with pytest.raises(ValueError, match="No default database"):
            async with MongoStore("mongodb://host", client=client):
                pass

    @pytest.mark.asyncio
    async def test_watermarks_share_database(self):
        async with MongoStore("mongodb://h", db_name="a", client=_motor_client()) as s:
            wm = s.watermarks()
            assert isinstance(wm, MongoWatermarkStore)
            assert wm.collection is s.db["sync_metadata"]


class TestBulkUpserts:
    @pytest.mark.asyncio
    async def test_commits_are_upserted_by_repo_and_sha(self):
        async with MongoStore("mongodb://h", db_name="a", client=_motor_client()) as s:
            await s.bulk_upsert_commits(
                "octo/demo",
                "octocat",
                [make_commit("abc", NOW), make_commit("def", NOW - timedelta(hours=1))],
            )
            coll = s.db["commits"]

        ops, = coll.bulk_write.call_args[0]
        assert coll.bulk_write.call_args.kwargs == {"ordered": False}
        assert all(isinstance(op, UpdateOne) for op in ops)
        first = ops[0]._doc["$set"]
        assert ops[0]._filter == {"_id": "octo/demo:abc"}
        assert first["_id"] == commit_doc_id("octo/demo", "abc")
        assert first["repo_owner"] == "octo"
        assert first["author"] == "octocat"
        assert first["committed_date"] == NOW.replace(tzinfo=None)
        assert first["raw_data"]["oid"] == "abc"

    @pytest.mark.asyncio
    async def test_pull_requests_keep_nullable_dates(self):
        pr = make_pr(42, NOW, comments=[make_comment("c", NOW)], state="MERGED")
        async with MongoStore("mongodb://h", db_name="a", client=_motor_client()) as s:
            await s.bulk_upsert_pull_requests("octo/demo", "octocat", [pr])
            coll = s.db["pull_requests"]

        ops, = coll.bulk_write.call_args[0]
        doc = ops[0]._doc["$set"]
        assert doc["_id"] == numbered_doc_id("octo/demo", 42) == "octo/demo#42"
        assert doc["closed_at"] is None
        assert doc["merged_at"] is None
        assert doc["state"] == "MERGED"
        assert len(doc["raw_data"]["comments"]) == 1

    @pytest.mark.asyncio
    async def test_resubmitting_yields_same_ids(self):
        issue = make_issue(5, NOW)
        async with MongoStore("mongodb://h", db_name="a", client=_motor_client()) as s:
            await s.bulk_upsert_issues("octo/demo", "octocat", [issue])
            await s.bulk_upsert_issues("octo/demo", "octocat", [issue])
            coll = s.db["issues"]

        ids = [call[0][0][0]._filter["_id"] for call in coll.bulk_write.call_args_list]
        assert ids == ["octo/demo#5", "octo/demo#5"]

    @pytest.mark.asyncio
    async def test_empty_payload_skips_write(self):
        async with MongoStore("mongodb://h", db_name="a", client=_motor_client()) as s:
            await s.bulk_upsert_commits("octo/demo", "octocat", [])
            coll = s.db["commits"]

        coll.bulk_write.assert_not_awaited()


class TestQueries:
    @pytest.mark.asyncio
    async def test_ensure_indexes_covers_all_collections(self):
        async with MongoStore("mongodb://h", db_name="a", client=_motor_client()) as s:
            await s.ensure_indexes()

            for name in ("commits", "pull_requests", "issues", "sync_metadata"):
                assert s.db[name].create_index.await_count >= 1
