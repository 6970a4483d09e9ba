"""Composed GitHub API client that exposes all sub-clients.

``GitHubClient`` is the single entry point for remote operations.  It
builds the underlying ``requests.Session`` via ``auth.build_session``
and exposes domain-specific sub-clients as properties.
"""

from __future__ import annotations

import requests

from ledger_sync.config import SyncConfig, settings
from ledger_sync.github_client.auth import build_session
from ledger_sync.github_client.git_data import GitDataClient
from ledger_sync.github_client.repos import ReposClient


class GitHubClient:
    """Unified GitHub API client composing the domain sub-clients.

    Instantiate with no arguments to use settings from environment
    variables, or pass an explicit config (and session) for testing.

    Usage::

        client = GitHubClient()
        head = client.git.get_branch_ref("main")
        client.repos.check_access()

    Args:
        config: Optional override for the ``LEDGER_SYNC_*`` settings.
        session: Optional pre-built session, e.g. a mock.
    """

    def __init__(
        self,
        config: SyncConfig | None = None,
        *,
        session: requests.Session | None = None,
    ) -> None:
        self._config = config or settings.sync_config()
        self._session = session or build_session(token=self._config.token)

        self._git: GitDataClient | None = None
        self._repos: ReposClient | None = None

    @property
    def config(self) -> SyncConfig:
        return self._config

    # ------------------------------------------------------------------
    # Sub-client accessors (lazy-initialized)
    # ------------------------------------------------------------------

    @property
    def git(self) -> GitDataClient:
        """Refs, commits, trees and blobs."""
        if self._git is None:
            self._git = GitDataClient(
                self._session, self._config.api_url, self._config.repo
            )
        return self._git

    @property
    def repos(self) -> ReposClient:
        """Repository metadata and access checks."""
        if self._repos is None:
            self._repos = ReposClient(
                self._session, self._config.api_url, self._config.repo
            )
        return self._repos

    @property
    def raw(self) -> requests.Session:
        """Access the underlying ``requests.Session`` for advanced use cases."""
        return self._session
