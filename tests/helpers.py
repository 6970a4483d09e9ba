"""Shared builders and fakes for the test suite."""

from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from ledger_sync.config import SyncConfig
from ledger_sync.errors import RemoteConflictError
from ledger_sync.github_client import CommitInfo, TreeChange, TreeEntry
from ledger_sync.models import Record

T0 = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


def ts(seconds: float = 0.0) -> datetime:
    """A timestamp *seconds* after ``T0``."""
    return T0 + timedelta(seconds=seconds)


def make_record(
    record_id: str,
    *,
    updated: float = 0.0,
    created: float | None = None,
    amount: str = "10.00",
    category: str = "food",
    day: str = "2024-01-15",
    note: str = "",
    deleted: float | None = None,
) -> Record:
    """Build a record whose timestamps are given as seconds after ``T0``."""
    created = min(0.0, updated) if created is None else created
    return Record(
        id=record_id,
        amount=Decimal(amount),
        category=category,
        date=day,
        note=note,
        created_at=ts(created),
        updated_at=ts(updated),
        deleted_at=ts(deleted) if deleted is not None else None,
    )


class FakeGit:
    """In-memory stand-in for ``GitDataClient`` with GitHub's semantics.

    ``update_ref`` refuses anything but a fast-forward of the current
    head.  ``fail_on`` maps a method name to an exception raised on the
    next call of that method.
    """

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.blobs: dict[str, str] = {}
        self.trees: dict[str, dict[str, str]] = {"tree-0": {}}
        self.commits: dict[str, tuple[str, list[str]]] = {"commit-0": ("tree-0", [])}
        self.messages: list[str] = []
        self.head = "commit-0"
        self.calls: list[str] = []
        self.fail_on: dict[str, Exception] = {}

    def _track(self, name: str) -> None:
        self.calls.append(name)
        error = self.fail_on.pop(name, None)
        if error is not None:
            raise error

    def _next(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    # GitDataClient surface

    def get_branch_ref(self, branch: str) -> str:
        self._track("get_branch_ref")
        return self.head

    def get_commit(self, commit_sha: str) -> CommitInfo:
        self._track("get_commit")
        return CommitInfo(sha=commit_sha, tree_sha=self.commits[commit_sha][0])

    def get_tree(self, tree_sha: str) -> list[TreeEntry]:
        self._track("get_tree")
        return [
            TreeEntry(path=path, sha=sha, type="blob")
            for path, sha in sorted(self.trees[tree_sha].items())
        ]

    def get_blob(self, blob_sha: str) -> str:
        self._track("get_blob")
        return self.blobs[blob_sha]

    def create_blob(self, content: str) -> str:
        self._track("create_blob")
        sha = self._next("blob")
        self.blobs[sha] = content
        return sha

    def create_tree(self, base_tree: str, changes: list[TreeChange]) -> str:
        self._track("create_tree")
        files = dict(self.trees[base_tree])
        for change in changes:
            if change.blob_sha is None:
                files.pop(change.path, None)
            else:
                files[change.path] = change.blob_sha
        sha = self._next("tree")
        self.trees[sha] = files
        return sha

    def create_commit(self, message: str, tree_sha: str, parents: list[str]) -> str:
        self._track("create_commit")
        sha = self._next("commit")
        self.commits[sha] = (tree_sha, parents)
        self.messages.append(message)
        return sha

    def update_ref(self, branch: str, commit_sha: str, *, force: bool = False) -> None:
        self._track("update_ref")
        parents = self.commits[commit_sha][1]
        if not force and parents != [self.head]:
            raise RemoteConflictError("Update is not a fast forward", status=422)
        self.head = commit_sha

    # Test helpers

    @property
    def commit_count(self) -> int:
        return len(self.messages)

    def files(self) -> dict[str, str]:
        """Path to content at the current head."""
        tree = self.trees[self.commits[self.head][0]]
        return {path: self.blobs[sha] for path, sha in tree.items()}

    def push_files(self, files: dict[str, str | None]) -> None:
        """Commit *files* directly, as another device would (``None`` deletes)."""
        changes = []
        for path, content in files.items():
            if content is None:
                changes.append(TreeChange(path=path, blob_sha=None))
            else:
                sha = self._next("blob")
                self.blobs[sha] = content
                changes.append(TreeChange(path=path, blob_sha=sha))
        base = self.commits[self.head][0]
        files_before = dict(self.trees[base])
        for change in changes:
            if change.blob_sha is None:
                files_before.pop(change.path, None)
            else:
                files_before[change.path] = change.blob_sha
        tree = self._next("tree")
        self.trees[tree] = files_before
        commit = self._next("commit")
        self.commits[commit] = (tree, [self.head])
        self.head = commit


class FakeGitHubClient:
    """Exposes a :class:`FakeGit` the way ``GitHubClient`` exposes ``git``."""

    def __init__(self, git: FakeGit | None = None) -> None:
        self.git = git or FakeGit()
        self.config = SyncConfig(token="test-token", repo="owner/ledger")
