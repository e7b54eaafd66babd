"""
Upstream data source connectors.
"""

from .graphql import GitHubGraphQLClient

__all__ = ["GitHubGraphQLClient"]
