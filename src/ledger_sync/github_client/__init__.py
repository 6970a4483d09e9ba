"""GitHub REST API client package."""

from ledger_sync.github_client.client import GitHubClient
from ledger_sync.github_client.git_data import CommitInfo, GitDataClient, TreeChange, TreeEntry
from ledger_sync.github_client.repos import ReposClient, RepositoryInfo

__all__ = [
    "CommitInfo",
    "GitDataClient",
    "GitHubClient",
    "ReposClient",
    "RepositoryInfo",
    "TreeChange",
    "TreeEntry",
]
