"""Authorship and recency filtering of a raw activity window.

Full syncs bound the window inclusively from the analysis horizon
(``inclusive=True``). Incremental syncs bound it strictly after the last sync
instant so items already counted by the previous sync are excluded. Both may
cap the window at ``until`` (inclusive), the instant recorded as the new
watermark, so the next window starts exactly where this one stopped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional, Union

from repo_activity_sync.models.activity import (
    RawCommit,
    RawIssue,
    RawPullRequest,
    RawRepositorySnapshot,
)
from repo_activity_sync.models.sync import ActivityTotals
from repo_activity_sync.utils.datetime import to_utc


@dataclass(frozen=True)
class FilteredActivity:
    commits: List[RawCommit] = field(default_factory=list)
    pull_requests: List[RawPullRequest] = field(default_factory=list)
    issues: List[RawIssue] = field(default_factory=list)
    pr_comments: int = 0
    issue_comments: int = 0

    @property
    def totals(self) -> ActivityTotals:
        return ActivityTotals(
            commits=len(self.commits),
            pull_requests=len(self.pull_requests),
            issues=len(self.issues),
            pr_comments=self.pr_comments,
            issue_comments=self.issue_comments,
        )

    @property
    def item_count(self) -> int:
        return len(self.commits) + len(self.pull_requests) + len(self.issues)


@dataclass(frozen=True)
class _Window:
    since: datetime
    inclusive: bool
    until: Optional[datetime]

    def __contains__(self, ts: datetime) -> bool:
        ts = to_utc(ts)
        if self.until is not None and ts > self.until:
            return False
        return ts >= self.since if self.inclusive else ts > self.since


def _count_comments(
    parents: Iterable[Union[RawPullRequest, RawIssue]],
    username: str,
    window: _Window,
) -> int:
    return sum(
        1
        for parent in parents
        for c in parent.comments
        if c.author_login == username and c.created_at in window
    )


def filter_activity(
    snapshot: RawRepositorySnapshot,
    username: str,
    since: datetime,
    *,
    inclusive: bool,
    until: Optional[datetime] = None,
    comment_parents: Optional[RawRepositorySnapshot] = None,
) -> FilteredActivity:
    """Select the items in ``snapshot`` authored by ``username`` within the bound.

    Comments are counted across every pull request and issue of
    ``comment_parents`` (defaults to ``snapshot``), not just the user's own, so
    a comment on someone else's pull request still counts.
    """
    window = _Window(
        since=to_utc(since),
        inclusive=inclusive,
        until=to_utc(until) if until is not None else None,
    )
    parents = comment_parents if comment_parents is not None else snapshot
    return FilteredActivity(
        commits=[
            c
            for c in snapshot.commits
            if c.author_login == username and c.committed_date in window
        ],
        pull_requests=[
            pr
            for pr in snapshot.pull_requests
            if pr.author_login == username and pr.created_at in window
        ],
        issues=[
            issue
            for issue in snapshot.issues
            if issue.author_login == username and issue.created_at in window
        ],
        pr_comments=_count_comments(parents.pull_requests, username, window),
        issue_comments=_count_comments(parents.issues, username, window),
    )


def cap_snapshot(
    snapshot: RawRepositorySnapshot, until: datetime
) -> RawRepositorySnapshot:
    """Drop items dated after ``until``.

    Markers are taken from the capped snapshot, so an item created during the
    fetch stays above the stored markers and the next sync picks it up.
    """
    until = to_utc(until)
    return RawRepositorySnapshot(
        commits=[c for c in snapshot.commits if to_utc(c.committed_date) <= until],
        pull_requests=[
            pr for pr in snapshot.pull_requests if to_utc(pr.created_at) <= until
        ],
        issues=[
            issue for issue in snapshot.issues if to_utc(issue.created_at) <= until
        ],
    )


def select_new_items(
    snapshot: RawRepositorySnapshot,
    *,
    last_sync_date: datetime,
    last_commit_sha: Optional[str],
    last_pr_number: Optional[int],
    last_issue_number: Optional[int],
) -> RawRepositorySnapshot:
    """Drop items a previous sync has already seen.

    A commit is new only if it is strictly newer than ``last_sync_date`` and is
    not the stored commit marker; relying on either check alone breaks under
    clock skew or rewritten history. Pull requests and issues are new when
    their number exceeds the stored marker (``None`` means none seen).
    """
    last_sync_date = to_utc(last_sync_date)
    return RawRepositorySnapshot(
        commits=[
            c
            for c in snapshot.commits
            if to_utc(c.committed_date) > last_sync_date
            and (last_commit_sha is None or c.oid != last_commit_sha)
        ],
        pull_requests=[
            pr
            for pr in snapshot.pull_requests
            if last_pr_number is None or pr.number > last_pr_number
        ],
        issues=[
            issue
            for issue in snapshot.issues
            if last_issue_number is None or issue.number > last_issue_number
        ],
    )


def max_marker(observed: Optional[int], previous: Optional[int]) -> Optional[int]:
    """Highest of two optional numeric markers; ``None`` only if both are."""
    candidates = [n for n in (observed, previous) if n is not None]
    return max(candidates) if candidates else None
