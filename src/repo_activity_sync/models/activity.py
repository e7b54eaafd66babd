"""Typed views over the GitHub GraphQL ``repository`` payload.

Only the fields the activity filter and the sink consume are modelled; any
other field in a node is ignored.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def _login(author: Any) -> Optional[str]:
    """Return ``author.login`` or ``author.user.login`` (commit authors)."""
    if not isinstance(author, dict):
        return None
    login = author.get("login")
    if login:
        return str(login)
    user = author.get("user")
    if isinstance(user, dict) and user.get("login"):
        return str(user["login"])
    return None


def _nodes(connection: Any) -> List[Dict[str, Any]]:
    if not isinstance(connection, dict):
        return []
    nodes = connection.get("nodes") or []
    return [node for node in nodes if isinstance(node, dict)]


class RawComment(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    body: str = ""
    created_at: datetime
    author_login: Optional[str] = None

    @classmethod
    def from_node(cls, node: Dict[str, Any]) -> "RawComment":
        return cls(
            id=node["id"],
            body=node.get("body") or "",
            created_at=node["createdAt"],
            author_login=_login(node.get("author")),
        )


class RawCommit(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    oid: str
    message: str = ""
    committed_date: datetime
    author_login: Optional[str] = None

    @classmethod
    def from_node(cls, node: Dict[str, Any]) -> "RawCommit":
        return cls(
            oid=node["oid"],
            message=node.get("message") or "",
            committed_date=node["committedDate"],
            author_login=_login(node.get("author")),
        )


class RawPullRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    number: int
    title: str = ""
    state: str
    created_at: datetime
    closed_at: Optional[datetime] = None
    merged_at: Optional[datetime] = None
    author_login: Optional[str] = None
    comments: List[RawComment] = Field(default_factory=list)

    @classmethod
    def from_node(cls, node: Dict[str, Any]) -> "RawPullRequest":
        return cls(
            number=node["number"],
            title=node.get("title") or "",
            state=node["state"],
            created_at=node["createdAt"],
            closed_at=node.get("closedAt"),
            merged_at=node.get("mergedAt"),
            author_login=_login(node.get("author")),
            comments=[RawComment.from_node(c) for c in _nodes(node.get("comments"))],
        )


class RawIssue(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    number: int
    title: str = ""
    state: str
    created_at: datetime
    closed_at: Optional[datetime] = None
    author_login: Optional[str] = None
    comments: List[RawComment] = Field(default_factory=list)

    @classmethod
    def from_node(cls, node: Dict[str, Any]) -> "RawIssue":
        return cls(
            number=node["number"],
            title=node.get("title") or "",
            state=node["state"],
            created_at=node["createdAt"],
            closed_at=node.get("closedAt"),
            author_login=_login(node.get("author")),
            comments=[RawComment.from_node(c) for c in _nodes(node.get("comments"))],
        )


class RawRepositorySnapshot(BaseModel):
    """One window of repository activity, newest-first within each list."""

    model_config = ConfigDict(frozen=True)

    commits: List[RawCommit] = Field(default_factory=list)
    pull_requests: List[RawPullRequest] = Field(default_factory=list)
    issues: List[RawIssue] = Field(default_factory=list)

    @classmethod
    def from_graphql(cls, repository: Dict[str, Any]) -> "RawRepositorySnapshot":
        """Flatten a ``repository`` GraphQL object.

        A repository without a default branch (empty repo) yields no commits.
        """
        history: Any = None
        branch = repository.get("defaultBranchRef")
        if isinstance(branch, dict):
            target = branch.get("target")
            if isinstance(target, dict):
                history = target.get("history")
        return cls(
            commits=[RawCommit.from_node(n) for n in _nodes(history)],
            pull_requests=[
                RawPullRequest.from_node(n)
                for n in _nodes(repository.get("pullRequests"))
            ],
            issues=[RawIssue.from_node(n) for n in _nodes(repository.get("issues"))],
        )

    @property
    def newest_commit_sha(self) -> Optional[str]:
        return self.commits[0].oid if self.commits else None

    @property
    def highest_pr_number(self) -> Optional[int]:
        return max((pr.number for pr in self.pull_requests), default=None)

    @property
    def highest_issue_number(self) -> Optional[int]:
        return max((issue.number for issue in self.issues), default=None)
