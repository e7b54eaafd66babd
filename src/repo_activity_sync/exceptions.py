from __future__ import annotations

from typing import Mapping, Optional, Sequence


class SyncFailure(Exception):
    """A sync for one (username, repo) pair could not complete.

    Nothing is written to the watermark store when this is raised, except for
    ``WatermarkWriteFailure`` where the sink write already happened.
    """

    def __init__(
        self,
        message: str,
        username: Optional[str] = None,
        repo: Optional[str] = None,
    ):
        self.username = username
        self.repo = repo
        super().__init__(message)


class UpstreamQueryFailure(SyncFailure):
    """The data source reported an application-level error or no repository."""

    def __init__(
        self,
        message: str,
        errors: Optional[Sequence[str]] = None,
        username: Optional[str] = None,
        repo: Optional[str] = None,
    ):
        self.errors = list(errors or [])
        super().__init__(message, username=username, repo=repo)


class SinkWriteFailure(SyncFailure):
    """One or more bulk upserts of raw activity failed."""

    def __init__(
        self,
        message: str,
        failures: Mapping[str, BaseException],
        username: Optional[str] = None,
        repo: Optional[str] = None,
    ):
        self.failures = dict(failures)
        super().__init__(message, username=username, repo=repo)


class WatermarkWriteFailure(SyncFailure):
    """Raw items were persisted but the watermark could not be advanced.

    The next sync re-fetches a slightly larger window; sink upserts are
    idempotent so this is safe to retry.
    """
