"""Low-level Git data operations against the GitHub REST API.

Wraps the ``/repos/{owner}/{repo}/git/*`` endpoints: refs, commits,
trees and blobs.  Together they let a batch of file changes land as a
single commit without cloning the repository.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass

from ledger_sync.errors import RemoteError
from ledger_sync.github_client.http import ApiClient

logger = logging.getLogger(__name__)

FILE_MODE = "100644"


@dataclass(frozen=True)
class CommitInfo:
    """The parts of a commit object the sync needs."""

    sha: str
    tree_sha: str


@dataclass(frozen=True)
class TreeEntry:
    """One entry of a Git tree listing."""

    path: str
    sha: str
    type: str
    mode: str = FILE_MODE
    size: int | None = None


@dataclass(frozen=True)
class TreeChange:
    """A file to write or remove when building a new tree.

    ``blob_sha`` of ``None`` deletes ``path`` from the base tree.
    """

    path: str
    blob_sha: str | None


class GitDataClient(ApiClient):
    """Client for GitHub's Git database API."""

    # ------------------------------------------------------------------
    # Refs
    # ------------------------------------------------------------------

    def get_branch_ref(self, branch: str) -> str:
        """Return the commit SHA the branch currently points at.

        Raises:
            RemoteError: If the branch does not exist or the call fails.
        """
        data = self._request(
            "GET", self._repo_url(f"git/ref/heads/{branch}"), "get_branch_ref"
        )
        return data["object"]["sha"]

    def update_ref(self, branch: str, commit_sha: str, *, force: bool = False) -> None:
        """Move *branch* to *commit_sha*.

        With ``force=False`` GitHub only accepts a fast-forward, so a
        branch that moved since it was read is rejected.

        Raises:
            RemoteConflictError: If the update is not a fast-forward.
            RemoteError: On any other failure.
        """
        self._request(
            "PATCH",
            self._repo_url(f"git/refs/heads/{branch}"),
            "update_ref",
            json={"sha": commit_sha, "force": force},
        )
        logger.info("Updated %s/%s to %s", self.repo, branch, commit_sha[:7])

    # ------------------------------------------------------------------
    # Commits
    # ------------------------------------------------------------------

    def get_commit(self, commit_sha: str) -> CommitInfo:
        data = self._request(
            "GET", self._repo_url(f"git/commits/{commit_sha}"), "get_commit"
        )
        return CommitInfo(sha=data["sha"], tree_sha=data["tree"]["sha"])

    def create_commit(self, message: str, tree_sha: str, parents: list[str]) -> str:
        """Create a commit object and return its SHA."""
        data = self._request(
            "POST",
            self._repo_url("git/commits"),
            "create_commit",
            json={"message": message, "tree": tree_sha, "parents": parents},
        )
        return data["sha"]

    # ------------------------------------------------------------------
    # Trees
    # ------------------------------------------------------------------

    def get_tree(self, tree_sha: str) -> list[TreeEntry]:
        """List the entries of a tree (non-recursive).

        Raises:
            RemoteError: If the listing was truncated by GitHub.
        """
        data = self._request(
            "GET", self._repo_url(f"git/trees/{tree_sha}"), "get_tree"
        )
        if data.get("truncated"):
            raise RemoteError(f"Tree {tree_sha} listing was truncated by GitHub")
        return [
            TreeEntry(
                path=item["path"],
                sha=item["sha"],
                type=item["type"],
                mode=item.get("mode", FILE_MODE),
                size=item.get("size"),
            )
            for item in data.get("tree", [])
        ]

    def create_tree(self, base_tree: str, changes: list[TreeChange]) -> str:
        """Create a tree from *base_tree* with *changes* applied.

        Returns:
            The SHA of the new tree.
        """
        entries = [
            {
                "path": change.path,
                "mode": FILE_MODE,
                "type": "blob",
                "sha": change.blob_sha,
            }
            for change in changes
        ]
        data = self._request(
            "POST",
            self._repo_url("git/trees"),
            "create_tree",
            json={"base_tree": base_tree, "tree": entries},
        )
        return data["sha"]

    # ------------------------------------------------------------------
    # Blobs
    # ------------------------------------------------------------------

    def get_blob(self, blob_sha: str) -> str:
        """Fetch a blob and return its content decoded as UTF-8 text."""
        data = self._request(
            "GET", self._repo_url(f"git/blobs/{blob_sha}"), "get_blob"
        )
        if data.get("encoding") == "base64":
            return base64.b64decode(data.get("content", "")).decode("utf-8")
        return data.get("content", "")

    def create_blob(self, content: str) -> str:
        """Upload *content* as a blob and return its SHA."""
        encoded = base64.b64encode(content.encode("utf-8")).decode("ascii")
        data = self._request(
            "POST",
            self._repo_url("git/blobs"),
            "create_blob",
            json={"content": encoded, "encoding": "base64"},
        )
        return data["sha"]
