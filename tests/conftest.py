from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import pytest

from repo_activity_sync.config import SyncSettings
from repo_activity_sync.models.activity import (
    RawComment,
    RawCommit,
    RawIssue,
    RawPullRequest,
    RawRepositorySnapshot,
)
from repo_activity_sync.models.sync import SyncWatermark
from repo_activity_sync.sync.engine import IncrementalSyncEngine
from repo_activity_sync.sync.fetcher import FetchLimits

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
USER = "octocat"
REPO = "octo/demo"


def make_comment(cid: str, when: datetime, login: Optional[str] = USER) -> RawComment:
    return RawComment(id=cid, body=f"comment {cid}", created_at=when, author_login=login)


def make_commit(oid: str, when: datetime, login: Optional[str] = USER) -> RawCommit:
    return RawCommit(
        oid=oid, message=f"commit {oid}", committed_date=when, author_login=login
    )


def make_pr(
    number: int,
    when: datetime,
    login: Optional[str] = USER,
    comments: Sequence[RawComment] = (),
    state: str = "OPEN",
) -> RawPullRequest:
    return RawPullRequest(
        number=number,
        title=f"PR {number}",
        state=state,
        created_at=when,
        author_login=login,
        comments=list(comments),
    )


def make_issue(
    number: int,
    when: datetime,
    login: Optional[str] = USER,
    comments: Sequence[RawComment] = (),
    state: str = "OPEN",
) -> RawIssue:
    return RawIssue(
        number=number,
        title=f"Issue {number}",
        state=state,
        created_at=when,
        author_login=login,
        comments=list(comments),
    )


def make_snapshot(
    commits: Sequence[RawCommit] = (),
    pull_requests: Sequence[RawPullRequest] = (),
    issues: Sequence[RawIssue] = (),
) -> RawRepositorySnapshot:
    return RawRepositorySnapshot(
        commits=list(commits), pull_requests=list(pull_requests), issues=list(issues)
    )


class FixedClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeWatermarkStore:
    """In-memory stand-in for ``MongoWatermarkStore``."""

    def __init__(self) -> None:
        self.records: Dict[Tuple[str, str], SyncWatermark] = {}
        self.saves: List[SyncWatermark] = []
        self.swaps: List[SyncWatermark] = []
        self.fail_read = False
        self.fail_save = False
        self.lose_cas = False

    def seed(self, watermark: SyncWatermark) -> None:
        self.records[(watermark.username, watermark.repo)] = watermark

    def get(self, username: str = USER, repo: str = REPO) -> Optional[SyncWatermark]:
        return self.records.get((username, repo))

    async def find_by_username_and_repo(
        self, username: str, repo: str
    ) -> Optional[SyncWatermark]:
        if self.fail_read:
            raise RuntimeError("watermark store unavailable")
        return self.records.get((username, repo))

    async def save(self, watermark: SyncWatermark) -> SyncWatermark:
        if self.fail_save:
            raise RuntimeError("watermark store unavailable")
        self.saves.append(watermark)
        self.records[(watermark.username, watermark.repo)] = watermark
        return watermark

    async def compare_and_set(
        self, watermark: SyncWatermark, expected_last_sync_date: datetime
    ) -> bool:
        if self.fail_save:
            raise RuntimeError("watermark store unavailable")
        current = self.records.get((watermark.username, watermark.repo))
        if self.lose_cas or current is None:
            return False
        if current.last_sync_date != expected_last_sync_date:
            return False
        self.swaps.append(watermark)
        self.records[(watermark.username, watermark.repo)] = watermark
        return True

    async def find_all_by_username(self, username: str) -> List[SyncWatermark]:
        return sorted(
            (wm for (user, _), wm in self.records.items() if user == username),
            key=lambda wm: wm.repo,
        )

    async def is_incremental_sync_valid(
        self, username: str, repo: str, expiry_date: datetime
    ) -> bool:
        wm = self.records.get((username, repo))
        return wm is not None and wm.last_sync_date >= expiry_date

    async def is_full_sync_required(
        self, username: str, repo: str, full_sync_expiry_date: datetime
    ) -> bool:
        wm = self.records.get((username, repo))
        return wm is not None and wm.last_sync_date < full_sync_expiry_date

    async def delete_by_username_and_repo(self, username: str, repo: str) -> bool:
        return self.records.pop((username, repo), None) is not None

    async def cleanup(self, older_than: datetime) -> int:
        stale = [k for k, wm in self.records.items() if wm.last_sync_date < older_than]
        for key in stale:
            del self.records[key]
        return len(stale)


class FakeSink:
    def __init__(self) -> None:
        self.calls: Dict[str, List[Tuple[str, str, list]]] = {
            "commits": [],
            "pull_requests": [],
            "issues": [],
        }
        self.fail_on: Set[str] = set()

    async def _record(self, kind: str, repo: str, username: str, items: Any) -> None:
        await asyncio.sleep(0)
        if kind in self.fail_on:
            raise RuntimeError(f"{kind} write rejected")
        self.calls[kind].append((repo, username, list(items)))

    async def bulk_upsert_commits(self, repo, username, commits) -> None:
        await self._record("commits", repo, username, commits)

    async def bulk_upsert_pull_requests(self, repo, username, pull_requests) -> None:
        await self._record("pull_requests", repo, username, pull_requests)

    async def bulk_upsert_issues(self, repo, username, issues) -> None:
        await self._record("issues", repo, username, issues)

    def written(self, kind: str) -> list:
        return [item for _, _, items in self.calls[kind] for item in items]


class FakeFetcher:
    def __init__(self, snapshot: Optional[RawRepositorySnapshot] = None) -> None:
        self.snapshot = snapshot or RawRepositorySnapshot()
        self.calls: List[Dict[str, Any]] = []
        self.error: Optional[Exception] = None
        self.delay = 0.0

    async def fetch_window(
        self,
        owner: str,
        name: str,
        since: datetime,
        limits: FetchLimits,
        *,
        token: str,
    ) -> RawRepositorySnapshot:
        self.calls.append(
            {
                "owner": owner,
                "name": name,
                "since": since,
                "limits": limits,
                "token": token,
            }
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.snapshot


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def settings() -> SyncSettings:
    return SyncSettings()


@pytest.fixture
def watermark_store() -> FakeWatermarkStore:
    return FakeWatermarkStore()


@pytest.fixture
def sink() -> FakeSink:
    return FakeSink()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def make_engine(fetcher, watermark_store, sink, clock, settings):
    def _make(**overrides: Any) -> IncrementalSyncEngine:
        return IncrementalSyncEngine(
            overrides.pop("fetcher", fetcher),
            overrides.pop("watermarks", watermark_store),
            overrides.pop("sink", sink),
            overrides.pop("settings", settings),
            clock=overrides.pop("clock", clock),
            **overrides,
        )

    return _make
