"""Mongo-backed sync watermarks, one document per (username, repo).

The store holds state only: the engine decides what to do with it.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, ReturnDocument

from repo_activity_sync.models.sync import ActivityTotals, SyncWatermark
from repo_activity_sync.utils.datetime import naive_utc, utcnow
from repo_activity_sync.utils.logging import sanitize_for_log

logger = logging.getLogger(__name__)

COLLECTION = "sync_metadata"

_SETTABLE_FIELDS = {
    "last_sync_date",
    "last_commit_sha",
    "last_pr_number",
    "last_issue_number",
    "total_items",
}


def _key(username: str, repo: str) -> Dict[str, Any]:
    return {"username": username, "repo": repo}


def _to_bson(value: Any) -> Any:
    if isinstance(value, ActivityTotals):
        return value.as_dict()
    if isinstance(value, datetime):
        return naive_utc(value)
    return value


class MongoWatermarkStore:
    """Async watermark store over a Motor database handle."""

    def __init__(self, db: Any, collection: str = COLLECTION) -> None:
        self.collection = db[collection]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index(
            [("username", ASCENDING), ("repo", ASCENDING)],
            unique=True,
            name="uq_sync_metadata_username_repo",
        )
        await self.collection.create_index(
            [("last_sync_date", ASCENDING)], name="ix_sync_metadata_last_sync"
        )

    async def find_by_username_and_repo(
        self, username: str, repo: str
    ) -> Optional[SyncWatermark]:
        doc = await self.collection.find_one(_key(username, repo))
        if doc is None:
            return None
        return SyncWatermark.from_document(doc)

    async def upsert(self, username: str, repo: str, **fields: Any) -> SyncWatermark:
        """Set any subset of watermark fields, inserting the record if absent."""
        unknown = set(fields) - _SETTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown watermark fields: {sorted(unknown)}")
        update = {name: _to_bson(value) for name, value in fields.items()}
        update["fetched_at"] = naive_utc(utcnow())
        doc = await self.collection.find_one_and_update(
            _key(username, repo),
            {"$set": update},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return SyncWatermark.from_document(doc)

    async def save(self, watermark: SyncWatermark) -> SyncWatermark:
        return await self.upsert(
            watermark.username,
            watermark.repo,
            last_sync_date=watermark.last_sync_date,
            last_commit_sha=watermark.last_commit_sha,
            last_pr_number=watermark.last_pr_number,
            last_issue_number=watermark.last_issue_number,
            total_items=watermark.total_items,
        )

    async def compare_and_set(
        self, watermark: SyncWatermark, expected_last_sync_date: datetime
    ) -> bool:
        """Replace the watermark only if nobody advanced it since it was read."""
        doc = watermark.to_document()
        doc["fetched_at"] = naive_utc(utcnow())
        query = _key(watermark.username, watermark.repo)
        query["last_sync_date"] = naive_utc(expected_last_sync_date)
        result = await self.collection.update_one(query, {"$set": doc})
        return result.matched_count == 1

    async def is_incremental_sync_valid(
        self, username: str, repo: str, expiry_date: datetime
    ) -> bool:
        query = _key(username, repo)
        query["last_sync_date"] = {"$gte": naive_utc(expiry_date)}
        return await self.collection.count_documents(query, limit=1) > 0

    async def is_full_sync_required(
        self, username: str, repo: str, full_sync_expiry_date: datetime
    ) -> bool:
        query = _key(username, repo)
        query["last_sync_date"] = {"$lt": naive_utc(full_sync_expiry_date)}
        return await self.collection.count_documents(query, limit=1) > 0

    async def update_total_items(
        self, username: str, repo: str, total_items: ActivityTotals
    ) -> None:
        await self.collection.update_one(
            _key(username, repo),
            {
                "$set": {
                    "total_items": total_items.as_dict(),
                    "last_sync_date": naive_utc(utcnow()),
                }
            },
        )

    async def increment_total_items(
        self, username: str, repo: str, delta: ActivityTotals
    ) -> None:
        await self.collection.update_one(
            _key(username, repo),
            {
                "$inc": {
                    f"total_items.{name}": value
                    for name, value in delta.as_dict().items()
                },
                "$set": {"last_sync_date": naive_utc(utcnow())},
            },
        )

    async def delete_by_username_and_repo(self, username: str, repo: str) -> bool:
        result = await self.collection.delete_one(_key(username, repo))
        return result.deleted_count > 0

    async def find_all_by_username(self, username: str) -> List[SyncWatermark]:
        cursor = self.collection.find({"username": username}).sort("repo", ASCENDING)
        return [SyncWatermark.from_document(doc) async for doc in cursor]

    async def cleanup(self, older_than: datetime) -> int:
        result = await self.collection.delete_many(
            {"last_sync_date": {"$lt": naive_utc(older_than)}}
        )
        logger.info(
            "Removed %d sync watermarks older than %s",
            result.deleted_count,
            sanitize_for_log(older_than.isoformat()),
        )
        return result.deleted_count
