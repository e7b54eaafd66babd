from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timedelta
from typing import Any, Dict, Mapping, Optional

from repo_activity_sync.utils.datetime import naive_utc, to_utc


@dataclass(frozen=True)
class RepoRef:
    """An ``owner/name`` repository reference."""

    owner: str
    name: str

    @classmethod
    def parse(cls, value: "RepoRef | str") -> "RepoRef":
        if isinstance(value, RepoRef):
            return value
        owner, sep, name = str(value).strip().partition("/")
        if not sep or not owner or not name or "/" in name:
            raise ValueError(f"Repository must be 'owner/name', got {value!r}")
        return cls(owner=owner, name=name)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def __str__(self) -> str:
        return self.full_name


@dataclass(frozen=True)
class ActivityTotals:
    """Counts of items authored by one user in one repository."""

    commits: int = 0
    pull_requests: int = 0
    issues: int = 0
    pr_comments: int = 0
    issue_comments: int = 0

    def __post_init__(self) -> None:
        for f in fields(self):
            if getattr(self, f.name) < 0:
                raise ValueError(f"{f.name} cannot be negative")

    def __add__(self, other: "ActivityTotals") -> "ActivityTotals":
        if not isinstance(other, ActivityTotals):
            return NotImplemented
        return ActivityTotals(
            commits=self.commits + other.commits,
            pull_requests=self.pull_requests + other.pull_requests,
            issues=self.issues + other.issues,
            pr_comments=self.pr_comments + other.pr_comments,
            issue_comments=self.issue_comments + other.issue_comments,
        )

    @property
    def item_count(self) -> int:
        """Commits, pull requests and issues; comments are not counted as items."""
        return self.commits + self.pull_requests + self.issues

    def as_dict(self) -> Dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "ActivityTotals":
        data = data or {}
        return cls(**{f.name: int(data.get(f.name) or 0) for f in fields(cls)})


@dataclass(frozen=True)
class SyncWatermark:
    """Persisted sync state for one (username, repo) pair."""

    username: str
    repo: str
    last_sync_date: datetime
    last_commit_sha: Optional[str] = None
    last_pr_number: Optional[int] = None
    last_issue_number: Optional[int] = None
    total_items: ActivityTotals = field(default_factory=ActivityTotals)
    fetched_at: Optional[datetime] = None

    def age(self, now: datetime) -> timedelta:
        return to_utc(now) - to_utc(self.last_sync_date)

    def advance(self, **changes: Any) -> "SyncWatermark":
        return replace(self, **changes)

    def to_document(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {
            "username": self.username,
            "repo": self.repo,
            "last_sync_date": naive_utc(self.last_sync_date),
            "last_commit_sha": self.last_commit_sha,
            "last_pr_number": self.last_pr_number,
            "last_issue_number": self.last_issue_number,
            "total_items": self.total_items.as_dict(),
        }
        if self.fetched_at is not None:
            doc["fetched_at"] = naive_utc(self.fetched_at)
        return doc

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "SyncWatermark":
        fetched_at = doc.get("fetched_at")
        return cls(
            username=doc["username"],
            repo=doc["repo"],
            last_sync_date=to_utc(doc["last_sync_date"]),
            last_commit_sha=doc.get("last_commit_sha"),
            last_pr_number=doc.get("last_pr_number"),
            last_issue_number=doc.get("last_issue_number"),
            total_items=ActivityTotals.from_dict(doc.get("total_items")),
            fetched_at=to_utc(fetched_at) if fetched_at is not None else None,
        )


@dataclass(frozen=True)
class SyncOutcome:
    """Result of one ``sync_user_repo_activity`` call."""

    totals: ActivityTotals
    is_incremental: bool
    items_fetched: int

    @property
    def commits(self) -> int:
        return self.totals.commits

    @property
    def pull_requests(self) -> int:
        return self.totals.pull_requests

    @property
    def issues(self) -> int:
        return self.totals.issues

    @property
    def pr_comments(self) -> int:
        return self.totals.pr_comments

    @property
    def issue_comments(self) -> int:
        return self.totals.issue_comments

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = self.totals.as_dict()
        data["is_incremental"] = self.is_incremental
        data["items_fetched"] = self.items_fetched
        return data
