from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, UpdateOne
from pymongo.errors import ConfigurationError

from repo_activity_sync.models.activity import RawCommit, RawIssue, RawPullRequest
from repo_activity_sync.sync.watermarks import MongoWatermarkStore
from repo_activity_sync.utils.datetime import naive_utc, utcnow

DEFAULT_DB_NAME = "repo_activity"

COMMITS = "commits"
PULL_REQUESTS = "pull_requests"
ISSUES = "issues"


def _optional_naive(value: Any) -> Any:
    return naive_utc(value) if value is not None else None


def commit_doc_id(repo: str, sha: str) -> str:
    return f"{repo}:{sha}"


def numbered_doc_id(repo: str, number: int) -> str:
    return f"{repo}#{number}"


class MongoStore:
    """Async persistence sink for raw activity, backed by MongoDB (via Motor).

    Every write is an upsert keyed on the item's natural key, so re-submitting
    an already stored item updates it in place.
    """

    def __init__(
        self,
        conn_string: str,
        db_name: Optional[str] = None,
        client: Optional[Any] = None,
    ) -> None:
        if not conn_string and client is None:
            raise ValueError("MongoDB connection string is required")
        self.client = client if client is not None else AsyncIOMotorClient(conn_string)
        self.db_name = db_name
        self.db: Any = None

    async def __aenter__(self) -> "MongoStore":
        if self.db_name:
            self.db = self.client[self.db_name]
        else:
            try:
                default_db = self.client.get_default_database()
                self.db = (
                    default_db
                    if default_db is not None
                    else self.client[DEFAULT_DB_NAME]
                )
            except ConfigurationError:
                raise ValueError(
                    "No default database specified. Please provide a database name "
                    "either via the MONGO_DB_NAME environment variable or include it "
                    "in your MongoDB connection string (e.g., 'mongodb://localhost:27017/mydb')"
                )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.client.close()

    def watermarks(self) -> MongoWatermarkStore:
        assert self.db is not None
        return MongoWatermarkStore(self.db)

    async def ensure_indexes(self) -> None:
        assert self.db is not None
        for collection in (COMMITS, PULL_REQUESTS, ISSUES):
            await self.db[collection].create_index(
                [("repo", ASCENDING), ("author", ASCENDING)]
            )
        await self.watermarks().ensure_indexes()

    async def bulk_upsert_commits(
        self, repo: str, username: str, commits: Sequence[RawCommit]
    ) -> None:
        fetched_at = naive_utc(utcnow())
        docs = [
            {
                "repo": repo,
                "repo_owner": repo.split("/")[0],
                "sha": c.oid,
                "author": username,
                "message": c.message,
                "committed_date": naive_utc(c.committed_date),
                "raw_data": c.model_dump(mode="json"),
                "fetched_at": fetched_at,
            }
            for c in commits
        ]
        await self._upsert_many(
            COMMITS, docs, lambda doc: commit_doc_id(doc["repo"], doc["sha"])
        )

    async def bulk_upsert_pull_requests(
        self, repo: str, username: str, pull_requests: Sequence[RawPullRequest]
    ) -> None:
        fetched_at = naive_utc(utcnow())
        docs = [
            {
                "repo": repo,
                "repo_owner": repo.split("/")[0],
                "pr_number": pr.number,
                "title": pr.title,
                "state": pr.state,
                "author": username,
                "created_at": naive_utc(pr.created_at),
                "closed_at": _optional_naive(pr.closed_at),
                "merged_at": _optional_naive(pr.merged_at),
                "raw_data": pr.model_dump(mode="json"),
                "fetched_at": fetched_at,
            }
            for pr in pull_requests
        ]
        await self._upsert_many(
            PULL_REQUESTS,
            docs,
            lambda doc: numbered_doc_id(doc["repo"], doc["pr_number"]),
        )

    async def bulk_upsert_issues(
        self, repo: str, username: str, issues: Sequence[RawIssue]
    ) -> None:
        fetched_at = naive_utc(utcnow())
        docs = [
            {
                "repo": repo,
                "repo_owner": repo.split("/")[0],
                "issue_number": issue.number,
                "title": issue.title,
                "state": issue.state,
                "author": username,
                "created_at": naive_utc(issue.created_at),
                "closed_at": _optional_naive(issue.closed_at),
                "raw_data": issue.model_dump(mode="json"),
                "fetched_at": fetched_at,
            }
            for issue in issues
        ]
        await self._upsert_many(
            ISSUES, docs, lambda doc: numbered_doc_id(doc["repo"], doc["issue_number"])
        )

    async def _upsert_many(
        self,
        collection: str,
        payload: Iterable[Dict[str, Any]],
        id_builder: Callable[[Dict[str, Any]], str],
    ) -> None:
        assert self.db is not None
        docs: List[Dict[str, Any]] = []
        for item in payload:
            doc = dict(item)
            doc["_id"] = id_builder(item)
            docs.append(doc)

        if not docs:
            return

        operations = [
            UpdateOne({"_id": doc["_id"]}, {"$set": doc}, upsert=True) for doc in docs
        ]
        await self.db[collection].bulk_write(operations, ordered=False)
