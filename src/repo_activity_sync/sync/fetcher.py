"""Single-query fetch of a repository activity window."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Protocol

from repo_activity_sync.config import SyncSettings
from repo_activity_sync.exceptions import UpstreamQueryFailure
from repo_activity_sync.models.activity import RawRepositorySnapshot
from repo_activity_sync.utils.datetime import isoformat_z
from repo_activity_sync.utils.logging import sanitize_for_log

logger = logging.getLogger(__name__)

COMMENTS_PER_ITEM = 100
INCREMENTAL_COMMIT_LIMIT = 100

_COMMENTS_FRAGMENT = """
              comments(first: %(comments)d) {
                nodes {
                  id
                  body
                  createdAt
                  author { login }
                }
              }"""

_REPOSITORY_QUERY = """
query($owner: String!, $name: String!, $since: GitTimestamp!) {
  repository(owner: $owner, name: $name) {
    defaultBranchRef {
      target {
        ... on Commit {
          history(first: %(commits)d, since: $since) {
            nodes {
              oid
              author { user { login } }
              committedDate
              message
            }
          }
        }
      }
    }
    pullRequests(first: %(pull_requests)d, states: [OPEN, CLOSED, MERGED], orderBy: {field: CREATED_AT, direction: DESC}) {
      nodes {
        number
        title
        state
        createdAt
        closedAt
        mergedAt
        author { login }%(comments_fragment)s
      }
    }
    issues(first: %(issues)d, states: [OPEN, CLOSED], orderBy: {field: CREATED_AT, direction: DESC}) {
      nodes {
        number
        title
        state
        createdAt
        closedAt
        author { login }%(comments_fragment)s
      }
    }
  }
}
"""


class GraphQLQueryClient(Protocol):
    async def query(
        self, query: str, variables: Dict[str, Any] | None = None, *, token: str
    ) -> Dict[str, Any]: ...


@dataclass(frozen=True)
class FetchLimits:
    commits: int
    pull_requests: int
    issues: int

    def __post_init__(self) -> None:
        for name in ("commits", "pull_requests", "issues"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} limit must be positive")

    @classmethod
    def full(cls, settings: SyncSettings) -> "FetchLimits":
        return cls(
            commits=settings.max_commits_per_repo,
            pull_requests=settings.max_prs_per_repo,
            issues=settings.max_issues_per_repo,
        )

    @classmethod
    def incremental(cls, settings: SyncSettings) -> "FetchLimits":
        # Far fewer items are expected since the last watermark.
        return cls(
            commits=INCREMENTAL_COMMIT_LIMIT,
            pull_requests=settings.max_incremental_items,
            issues=settings.max_incremental_items,
        )


def build_repository_query(limits: FetchLimits) -> str:
    comments_fragment = _COMMENTS_FRAGMENT % {"comments": COMMENTS_PER_ITEM}
    return _REPOSITORY_QUERY % {
        "commits": limits.commits,
        "pull_requests": limits.pull_requests,
        "issues": limits.issues,
        "comments_fragment": comments_fragment,
    }


class DeltaFetcher:
    """Issues exactly one ``repository`` query per window."""

    def __init__(self, client: GraphQLQueryClient):
        self.client = client

    async def fetch_window(
        self,
        owner: str,
        name: str,
        since: datetime,
        limits: FetchLimits,
        *,
        token: str,
    ) -> RawRepositorySnapshot:
        full_name = f"{owner}/{name}"
        variables = {"owner": owner, "name": name, "since": isoformat_z(since)}
        logger.debug(
            "Fetching %s since %s (limits=%s)",
            sanitize_for_log(full_name),
            variables["since"],
            limits,
        )
        data = await self.client.query(
            build_repository_query(limits), variables, token=token
        )

        repository = data.get("repository")
        if not repository:
            raise UpstreamQueryFailure(
                f"Repository {full_name} not found",
                errors=[f"Repository {full_name} not found"],
                repo=full_name,
            )
        try:
            return RawRepositorySnapshot.from_graphql(repository)
        except (KeyError, TypeError, ValueError) as exc:
            raise UpstreamQueryFailure(
                f"Malformed repository payload for {full_name}: {exc}",
                repo=full_name,
            ) from exc
