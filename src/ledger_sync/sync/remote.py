"""Remote replica of the ledger, stored as day partitions in a Git branch.

``RemoteLedger`` reads every partition file at the branch tip in one
pass and writes a batch of partition changes back as a single commit.
The write is guarded by the branch tip observed at fetch time: if the
branch moved in between, the commit is refused with
:class:`RemoteConflictError` and nothing is written.
"""

from __future__ import annotations

import datetime as _dt
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from ledger_sync.config import SyncConfig
from ledger_sync.converter import import_csv, import_settings
from ledger_sync.errors import RemoteConflictError
from ledger_sync.github_client import GitHubClient, TreeChange
from ledger_sync.models import AppSettings, Record, format_timestamp, utc_now
from ledger_sync.sync.partitions import (
    SETTINGS_PATH,
    day_key_from_filename,
    in_window,
    window_start,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileUpload:
    """New content for one remote file."""

    path: str
    content: str


@dataclass(frozen=True)
class CommitResult:
    success: bool
    commit_sha: str | None = None
    files_uploaded: int = 0
    files_deleted: int = 0


@dataclass
class RemoteSnapshot:
    """Everything read from the branch tip in one fetch.

    Attributes:
        records: Parsed records of the partitions inside the window.
        head_sha: Commit the snapshot was read from.
        contents: Raw text of every downloaded file, keyed by path.
        partition_paths: Every partition file present at the tip, in or
            out of the window.
        oldest_day: First day covered by the fetch (``None`` when the
            whole history was read).
        extra_days: Days before *oldest_day* that were fetched anyway.
        settings: Parsed ``settings.json`` if it was requested and exists.
    """

    records: list[Record] = field(default_factory=list)
    head_sha: str = ""
    contents: dict[str, str] = field(default_factory=dict)
    partition_paths: set[str] = field(default_factory=set)
    oldest_day: str | None = None
    extra_days: frozenset[str] = frozenset()
    settings: AppSettings | None = None

    def covers(self, day_key: str) -> bool:
        return in_window(day_key, self.oldest_day) or day_key in self.extra_days


def commit_message(
    uploads: Sequence[FileUpload],
    deletions: Sequence[str],
    now: _dt.datetime | None = None,
) -> str:
    """Summarize a batch, e.g.
    ``Sync expenses: 2 files updated, 1 file deleted - 2024-01-15T10:00:00.000Z``."""

    def plural(count: int) -> str:
        return "file" if count == 1 else "files"

    stamp = format_timestamp(now or utc_now())
    return (
        f"Sync expenses: {len(uploads)} {plural(len(uploads))} updated, "
        f"{len(deletions)} {plural(len(deletions))} deleted - {stamp}"
    )


def _keep_newest(by_id: dict[str, Record], record: Record, path: str) -> None:
    # A record whose date was edited can linger in its old day file.
    existing = by_id.get(record.id)
    if existing is None:
        by_id[record.id] = record
        return
    logger.warning("Record %s appears in more than one partition (%s)", record.id, path)
    if record.updated_at > existing.updated_at:
        by_id[record.id] = record


class RemoteLedger:
    """Fetches and commits day partitions on one branch.

    Args:
        client: GitHub client bound to the target repository.
        config: Repository coordinates; defaults to the client's config.
    """

    def __init__(self, client: GitHubClient, config: SyncConfig | None = None) -> None:
        self._client = client
        self._config = config or client.config

    @property
    def branch(self) -> str:
        return self._config.branch

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    def fetch_all_partitions(
        self,
        since_days: int | None = None,
        *,
        oldest_day: str | None = None,
        today: _dt.date | None = None,
        extra_days: Iterable[str] = (),
        include_settings: bool = False,
    ) -> RemoteSnapshot:
        """Download and parse the partitions at the branch tip.

        Args:
            since_days: Only read the last *since_days* days (today
                included).  ``None`` reads every partition.
            oldest_day: Explicit first day of the window; overrides
                *since_days*.
            today: Reference date for *since_days*.
            extra_days: Older days to fetch as well, e.g. days holding
                local edits that have not been pushed yet.
            include_settings: Also read ``settings.json``.

        Returns:
            The snapshot, including the tip SHA used to guard the commit.

        Raises:
            RemoteError: If any API call fails.
            PartitionFormatError: If a downloaded file cannot be parsed.
        """
        git = self._client.git
        if oldest_day is None and since_days is not None:
            oldest_day = window_start(since_days, today)

        head_sha = git.get_branch_ref(self.branch)
        commit = git.get_commit(head_sha)
        entries = git.get_tree(commit.tree_sha)

        snapshot = RemoteSnapshot(
            head_sha=head_sha, oldest_day=oldest_day, extra_days=frozenset(extra_days)
        )
        by_id: dict[str, Record] = {}
        settings_entry = None
        for entry in entries:
            if entry.type != "blob":
                continue
            if entry.path == SETTINGS_PATH:
                settings_entry = entry
                continue
            day_key = day_key_from_filename(entry.path)
            if day_key is None:
                continue
            snapshot.partition_paths.add(entry.path)
            if not snapshot.covers(day_key):
                continue
            content = git.get_blob(entry.sha)
            snapshot.contents[entry.path] = content
            for record in import_csv(content, source=entry.path):
                _keep_newest(by_id, record, entry.path)
        snapshot.records = list(by_id.values())

        if include_settings and settings_entry is not None:
            content = git.get_blob(settings_entry.sha)
            snapshot.contents[SETTINGS_PATH] = content
            snapshot.settings = import_settings(content, source=SETTINGS_PATH)

        logger.info(
            "Fetched %d record(s) from %d partition(s) at %s (window from %s)",
            len(snapshot.records),
            len(snapshot.contents) - (SETTINGS_PATH in snapshot.contents),
            head_sha[:7],
            oldest_day or "the beginning",
        )
        return snapshot

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def commit_changes(
        self,
        uploads: Sequence[FileUpload],
        deletions: Sequence[str],
        message: str | None = None,
        *,
        expected_head: str | None = None,
    ) -> CommitResult:
        """Write *uploads* and remove *deletions* in one commit.

        Args:
            uploads: Files to create or overwrite.
            deletions: Paths to remove.
            message: Commit message; defaults to :func:`commit_message`.
            expected_head: Tip SHA the batch was computed against.  When
                given and the branch has moved, nothing is written.

        Returns:
            The result; an empty batch succeeds without any request.

        Raises:
            RemoteConflictError: If the branch moved since *expected_head*,
                or the final ref update is not a fast-forward.
            RemoteError: If any other API call fails.
        """
        if not uploads and not deletions:
            return CommitResult(success=True)

        git = self._client.git
        head_sha = git.get_branch_ref(self.branch)
        if expected_head is not None and head_sha != expected_head:
            raise RemoteConflictError(
                f"Branch {self.branch} moved from {expected_head[:7]} to {head_sha[:7]}"
            )

        base_tree = git.get_commit(head_sha).tree_sha
        changes = [
            TreeChange(path=upload.path, blob_sha=git.create_blob(upload.content))
            for upload in uploads
        ]
        changes.extend(TreeChange(path=path, blob_sha=None) for path in deletions)

        tree_sha = git.create_tree(base_tree, changes)
        commit_sha = git.create_commit(
            message or commit_message(uploads, deletions), tree_sha, [head_sha]
        )
        git.update_ref(self.branch, commit_sha, force=False)

        logger.info(
            "Committed %s: %d uploaded, %d deleted",
            commit_sha[:7],
            len(uploads),
            len(deletions),
        )
        return CommitResult(
            success=True,
            commit_sha=commit_sha,
            files_uploaded=len(uploads),
            files_deleted=len(deletions),
        )
