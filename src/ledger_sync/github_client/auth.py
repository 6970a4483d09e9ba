"""Authenticated HTTP session for the GitHub REST API.

This module provides a thin wrapper that builds a ``requests.Session``
carrying the token and the API version headers, configured from
application settings.
"""

from __future__ import annotations

import requests

from ledger_sync.config import settings

GITHUB_API_VERSION = "2022-11-28"


def build_session(
    *,
    token: str | None = None,
    user_agent: str = "ledger-sync",
) -> requests.Session:
    """Build a ``requests.Session`` authorized for GitHub API calls.

    Args:
        token: Personal access token. Falls back to ``settings.github_token``.
        user_agent: Value of the ``User-Agent`` header GitHub requires.

    Returns:
        A session whose default headers authenticate every request.

    Raises:
        ValueError: If no token is available after resolving defaults.
    """
    resolved_token = token or settings.github_token
    if not resolved_token:
        raise ValueError(
            "GitHub token is required. Set LEDGER_SYNC_GITHUB_TOKEN or pass token explicitly."
        )

    session = requests.Session()
    session.headers.update(
        {
            "Authorization": f"Bearer {resolved_token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
            "User-Agent": user_agent,
        }
    )
    return session
