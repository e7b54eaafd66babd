"""
Async GitHub GraphQL client.

A thin transport: it posts one query, surfaces HTTP and GraphQL application
errors as ``UpstreamQueryFailure`` and returns the ``data`` object. Retries
and rate-limit negotiation are left to the caller.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from repo_activity_sync.config import DEFAULT_GRAPHQL_URL
from repo_activity_sync.exceptions import UpstreamQueryFailure
from repo_activity_sync.utils.logging import sanitize_for_log

logger = logging.getLogger(__name__)


class GitHubGraphQLClient:
    """Async HTTP client for the GitHub GraphQL API."""

    def __init__(
        self,
        url: str = DEFAULT_GRAPHQL_URL,
        timeout: float = 30,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        :param url: GraphQL endpoint.
        :param timeout: Request timeout in seconds.
        :param transport: Optional httpx transport (tests use ``httpx.MockTransport``).
        """
        self.url = url
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            )
        return self._client

    async def query(
        self,
        query: str,
        variables: Optional[Dict[str, Any]] = None,
        *,
        token: str,
    ) -> Dict[str, Any]:
        """
        Execute a GraphQL query.

        :param query: GraphQL document.
        :param variables: Query variables.
        :param token: Bearer token for this request.
        :return: The ``data`` object of the response.
        :raises UpstreamQueryFailure: On HTTP errors or GraphQL ``errors``.
        """
        client = await self._get_client()
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        try:
            response = await client.post(
                self.url,
                json={"query": query, "variables": variables or {}},
                headers=headers,
            )
        except httpx.RequestError as e:
            raise UpstreamQueryFailure(f"GitHub GraphQL request failed: {e}") from e

        if response.status_code == 401:
            raise UpstreamQueryFailure("GitHub GraphQL authentication failed")
        if response.status_code >= 400:
            raise UpstreamQueryFailure(
                f"GitHub GraphQL HTTP error: {response.status_code} - "
                f"{sanitize_for_log(response.text, 200)}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamQueryFailure("GitHub GraphQL returned malformed JSON") from e
        if not isinstance(payload, dict):
            raise UpstreamQueryFailure("GitHub GraphQL returned malformed JSON")

        errors = payload.get("errors")
        if errors:
            messages = [
                str(err.get("message") or "Unknown error")
                if isinstance(err, dict)
                else str(err)
                for err in errors
            ]
            logger.debug(
                "GraphQL errors: %s", sanitize_for_log("; ".join(messages))
            )
            raise UpstreamQueryFailure(
                f"GitHub GraphQL error: {messages[0]}", errors=messages
            )

        data = payload.get("data")
        if not isinstance(data, dict):
            raise UpstreamQueryFailure("GitHub GraphQL response has no data")
        return data

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "GitHubGraphQLClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
