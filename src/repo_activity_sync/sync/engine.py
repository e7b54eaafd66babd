"""Incremental synchronization engine.

For one (username, repo) pair the engine decides between serving the stored
totals, fetching only what is new since the last watermark, or fetching the
whole analysis window; then persists the user's items and advances the
watermark. The watermark write is always the last step, so any failure or
timeout before it leaves the stored state exactly as it was.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    TypeVar,
    Union,
)

from repo_activity_sync.config import SyncSettings
from repo_activity_sync.exceptions import (
    SinkWriteFailure,
    SyncFailure,
    WatermarkWriteFailure,
)
from repo_activity_sync.models.activity import (
    RawCommit,
    RawIssue,
    RawPullRequest,
    RawRepositorySnapshot,
)
from repo_activity_sync.models.sync import RepoRef, SyncOutcome, SyncWatermark
from repo_activity_sync.sync.fetcher import FetchLimits
from repo_activity_sync.sync.filters import (
    FilteredActivity,
    cap_snapshot,
    filter_activity,
    max_marker,
    select_new_items,
)
from repo_activity_sync.sync.locks import KeyedLocks
from repo_activity_sync.utils.datetime import utcnow
from repo_activity_sync.utils.logging import sanitize_for_log

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SnapshotFetcher(Protocol):
    async def fetch_window(
        self,
        owner: str,
        name: str,
        since: datetime,
        limits: FetchLimits,
        *,
        token: str,
    ) -> RawRepositorySnapshot: ...


class WatermarkStore(Protocol):
    async def find_by_username_and_repo(
        self, username: str, repo: str
    ) -> Optional[SyncWatermark]: ...

    async def save(self, watermark: SyncWatermark) -> SyncWatermark: ...

    async def compare_and_set(
        self, watermark: SyncWatermark, expected_last_sync_date: datetime
    ) -> bool: ...


class ActivitySink(Protocol):
    async def bulk_upsert_commits(
        self, repo: str, username: str, commits: Sequence[RawCommit]
    ) -> None: ...

    async def bulk_upsert_pull_requests(
        self, repo: str, username: str, pull_requests: Sequence[RawPullRequest]
    ) -> None: ...

    async def bulk_upsert_issues(
        self, repo: str, username: str, issues: Sequence[RawIssue]
    ) -> None: ...


class IncrementalSyncEngine:
    """Decides, per (username, repo), between cache, incremental and full sync.

    Collaborators are injected once; the engine keeps no state besides the
    per-key locks that serialize concurrent calls for the same pair.
    """

    def __init__(
        self,
        fetcher: SnapshotFetcher,
        watermarks: WatermarkStore,
        sink: ActivitySink,
        settings: SyncSettings,
        *,
        clock: Callable[[], datetime] = utcnow,
        locks: Optional[KeyedLocks] = None,
    ) -> None:
        self.fetcher = fetcher
        self.watermarks = watermarks
        self.sink = sink
        self.settings = settings
        self._clock = clock
        self._locks = locks or KeyedLocks()

    async def sync_user_repo_activity(
        self,
        username: str,
        repo: Union[RepoRef, str],
        credential: str,
    ) -> SyncOutcome:
        """Bring the stored totals for ``username`` in ``repo`` up to date.

        :raises UpstreamQueryFailure: The data source reported an error or the
            repository does not exist. Nothing was written.
        :raises SyncFailure: Fetch, filter or persist failed. Nothing was
            written to the watermark store.
        :raises WatermarkWriteFailure: Items were persisted but the watermark
            could not be advanced; the next sync re-covers the window.
        """
        ref = RepoRef.parse(repo)
        async with self._locks.hold((username, ref.full_name)):
            return await self._sync_locked(username, ref, credential)

    async def _sync_locked(
        self, username: str, ref: RepoRef, credential: str
    ) -> SyncOutcome:
        now = self._clock()
        try:
            last_sync = await self.watermarks.find_by_username_and_repo(
                username, ref.full_name
            )
        except Exception as exc:
            raise SyncFailure(
                f"Could not read sync watermark for {ref.full_name}: {exc}",
                username=username,
                repo=ref.full_name,
            ) from exc

        if not self.settings.enable_incremental_sync:
            logger.debug(
                "Incremental sync disabled; full sync for %s in %s",
                sanitize_for_log(username),
                sanitize_for_log(ref.full_name),
            )
            return await self._full_sync(username, ref, credential, now)

        if last_sync is None:
            logger.debug(
                "First sync for %s in %s",
                sanitize_for_log(username),
                sanitize_for_log(ref.full_name),
            )
            return await self._full_sync(username, ref, credential, now)

        if last_sync.age(now) < self.settings.incremental_sync_interval:
            logger.debug(
                "Cache still valid for %s in %s",
                sanitize_for_log(username),
                sanitize_for_log(ref.full_name),
            )
            return SyncOutcome(
                totals=last_sync.total_items, is_incremental=False, items_fetched=0
            )

        logger.debug(
            "Performing incremental sync for %s in %s",
            sanitize_for_log(username),
            sanitize_for_log(ref.full_name),
        )
        return await self._incremental_sync(username, ref, credential, last_sync, now)

    async def _full_sync(
        self, username: str, ref: RepoRef, credential: str, now: datetime
    ) -> SyncOutcome:
        horizon = self.settings.analysis_start_date(now)

        async def stage() -> Tuple[RawRepositorySnapshot, FilteredActivity]:
            fetched = await self.fetcher.fetch_window(
                ref.owner,
                ref.name,
                horizon,
                FetchLimits.full(self.settings),
                token=credential,
            )
            snapshot = cap_snapshot(fetched, now)
            activity = filter_activity(
                snapshot, username, horizon, inclusive=True, until=now
            )
            await self._persist(username, ref.full_name, activity)
            return snapshot, activity

        snapshot, activity = await self._run_stage(username, ref, stage)

        # Markers are repo-level; None records "none seen" for an empty window.
        watermark = SyncWatermark(
            username=username,
            repo=ref.full_name,
            last_sync_date=now,
            last_commit_sha=snapshot.newest_commit_sha,
            last_pr_number=snapshot.highest_pr_number,
            last_issue_number=snapshot.highest_issue_number,
            total_items=activity.totals,
        )
        await self._write_watermark(username, ref, self.watermarks.save(watermark))

        logger.info(
            "Full sync for %s in %s: %d new items",
            sanitize_for_log(username),
            sanitize_for_log(ref.full_name),
            activity.item_count,
        )
        return SyncOutcome(
            totals=activity.totals,
            is_incremental=False,
            items_fetched=activity.item_count,
        )

    async def _incremental_sync(
        self,
        username: str,
        ref: RepoRef,
        credential: str,
        last_sync: SyncWatermark,
        now: datetime,
    ) -> SyncOutcome:
        since = last_sync.last_sync_date

        async def stage() -> Tuple[RawRepositorySnapshot, FilteredActivity]:
            fetched = await self.fetcher.fetch_window(
                ref.owner,
                ref.name,
                since,
                FetchLimits.incremental(self.settings),
                token=credential,
            )
            snapshot = cap_snapshot(fetched, now)
            fresh = select_new_items(
                snapshot,
                last_sync_date=since,
                last_commit_sha=last_sync.last_commit_sha,
                last_pr_number=last_sync.last_pr_number,
                last_issue_number=last_sync.last_issue_number,
            )
            activity = filter_activity(
                fresh,
                username,
                since,
                inclusive=False,
                until=now,
                comment_parents=snapshot,
            )
            await self._persist(username, ref.full_name, activity)
            return fresh, activity

        fresh, activity = await self._run_stage(username, ref, stage)

        totals = last_sync.total_items + activity.totals
        watermark = last_sync.advance(
            # Never move the watermark backwards under clock skew.
            last_sync_date=max(now, since),
            last_commit_sha=fresh.newest_commit_sha or last_sync.last_commit_sha,
            last_pr_number=max_marker(
                fresh.highest_pr_number, last_sync.last_pr_number
            ),
            last_issue_number=max_marker(
                fresh.highest_issue_number, last_sync.last_issue_number
            ),
            total_items=totals,
        )
        swapped = await self._write_watermark(
            username, ref, self.watermarks.compare_and_set(watermark, since)
        )
        if not swapped:
            raise WatermarkWriteFailure(
                f"Watermark for {ref.full_name} was advanced by a concurrent sync",
                username=username,
                repo=ref.full_name,
            )

        logger.info(
            "Incremental sync for %s in %s: %d new items",
            sanitize_for_log(username),
            sanitize_for_log(ref.full_name),
            activity.item_count,
        )
        return SyncOutcome(
            totals=totals, is_incremental=True, items_fetched=activity.item_count
        )

    async def _run_stage(
        self,
        username: str,
        ref: RepoRef,
        stage: Callable[[], Awaitable[T]],
    ) -> T:
        """Run fetch-filter-persist, mapping every failure to ``SyncFailure``."""
        timeout = self.settings.sync_timeout_seconds
        try:
            if timeout is not None:
                return await asyncio.wait_for(stage(), timeout=timeout)
            return await stage()
        except SyncFailure as exc:
            exc.username = exc.username or username
            exc.repo = exc.repo or ref.full_name
            raise
        except asyncio.TimeoutError as exc:
            raise SyncFailure(
                f"Sync of {ref.full_name} timed out after {timeout}s",
                username=username,
                repo=ref.full_name,
            ) from exc
        except Exception as exc:
            raise SyncFailure(
                f"Sync of {ref.full_name} failed: {exc}",
                username=username,
                repo=ref.full_name,
            ) from exc

    async def _write_watermark(
        self, username: str, ref: RepoRef, write: Awaitable[Any]
    ) -> Any:
        try:
            return await write
        except Exception as exc:
            raise WatermarkWriteFailure(
                f"Could not persist sync watermark for {ref.full_name}: {exc}",
                username=username,
                repo=ref.full_name,
            ) from exc

    async def _persist(
        self, username: str, repo: str, activity: FilteredActivity
    ) -> None:
        """Upsert each entity type concurrently; one failure never cancels the rest."""
        jobs: Dict[str, Awaitable[None]] = {}
        if activity.commits:
            jobs["commits"] = self.sink.bulk_upsert_commits(
                repo, username, activity.commits
            )
        if activity.pull_requests:
            jobs["pull_requests"] = self.sink.bulk_upsert_pull_requests(
                repo, username, activity.pull_requests
            )
        if activity.issues:
            jobs["issues"] = self.sink.bulk_upsert_issues(
                repo, username, activity.issues
            )
        if not jobs:
            return

        results = await asyncio.gather(*jobs.values(), return_exceptions=True)
        failures = {
            name: result
            for name, result in zip(jobs, results)
            if isinstance(result, BaseException)
        }
        if failures:
            for name, error in failures.items():
                logger.warning(
                    "Bulk upsert of %s for %s failed: %s",
                    name,
                    sanitize_for_log(repo),
                    sanitize_for_log(error),
                )
            raise SinkWriteFailure(
                f"Failed to persist {', '.join(sorted(failures))} for {repo}",
                failures=failures,
                username=username,
                repo=repo,
            )
