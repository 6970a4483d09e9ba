"""Repository-level checks used before the first sync.

Verifies that the token can see the repository and push to it, so a
misconfigured token fails with a clear message rather than midway
through a commit.
"""

from __future__ import annotations

from dataclasses import dataclass

from ledger_sync.errors import RemoteError, RemoteErrorCode
from ledger_sync.github_client.http import ApiClient


@dataclass(frozen=True)
class RepositoryInfo:
    full_name: str
    default_branch: str
    private: bool
    can_push: bool


class ReposClient(ApiClient):
    """Client for repository metadata."""

    def get(self) -> RepositoryInfo:
        data = self._request("GET", self._repo_url(), "get_repository")
        permissions = data.get("permissions") or {}
        return RepositoryInfo(
            full_name=data.get("full_name", self.repo),
            default_branch=data.get("default_branch", "main"),
            private=bool(data.get("private", False)),
            can_push=bool(permissions.get("push", False)),
        )

    def check_access(self) -> RepositoryInfo:
        """Return repository info, requiring push permission.

        Raises:
            RemoteError: With code ``permission`` if the token is read-only,
                or whatever the lookup itself raised.
        """
        info = self.get()
        if not info.can_push:
            raise RemoteError(
                f"Token has no push access to {info.full_name}",
                RemoteErrorCode.PERMISSION,
            )
        return info
