from .activity import (
    RawComment,
    RawCommit,
    RawIssue,
    RawPullRequest,
    RawRepositorySnapshot,
)
from .sync import ActivityTotals, RepoRef, SyncOutcome, SyncWatermark

__all__ = [
    "RawComment",
    "RawCommit",
    "RawIssue",
    "RawPullRequest",
    "RawRepositorySnapshot",
    "ActivityTotals",
    "RepoRef",
    "SyncOutcome",
    "SyncWatermark",
]
