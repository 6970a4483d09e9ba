"""Bookkeeping of local mutations made since the last successful sync.

The tracker feeds "N pending changes" style reporting.  It is never read
by the merge engine.  After a confirmed cycle the sync engine drops the
ids it read at the start; changes tracked while the cycle ran stay
pending for the next one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from pydantic import BaseModel, Field

from ledger_sync.sync.state import JsonModelFile


class _StoredPendingChanges(BaseModel):
    added: list[str] = Field(default_factory=list)
    edited: list[str] = Field(default_factory=list)
    deleted: list[str] = Field(default_factory=list)


@dataclass
class PendingChanges:
    """Record ids touched locally since the last sync."""

    added: set[str] = field(default_factory=set)
    edited: set[str] = field(default_factory=set)
    deleted: set[str] = field(default_factory=set)

    @property
    def total(self) -> int:
        return len(self.added) + len(self.edited) + len(self.deleted)


@dataclass(frozen=True)
class PendingCount:
    added: int
    edited: int
    deleted: int

    @property
    def total(self) -> int:
        return self.added + self.edited + self.deleted


class ChangeTracker:
    """Persists the pending change set as JSON.

    Args:
        path: JSON file the pending ids are kept in.
    """

    def __init__(self, path: str | Path) -> None:
        self._file = JsonModelFile(path, _StoredPendingChanges)

    def load_pending_changes(self) -> PendingChanges:
        stored = self._file.load()
        return PendingChanges(
            added=set(stored.added),
            edited=set(stored.edited),
            deleted=set(stored.deleted),
        )

    def _save(self, changes: PendingChanges) -> None:
        self._file.save(
            _StoredPendingChanges(
                added=sorted(changes.added),
                edited=sorted(changes.edited),
                deleted=sorted(changes.deleted),
            )
        )

    def track_add(self, record_id: str) -> None:
        changes = self.load_pending_changes()
        changes.added.add(record_id)
        changes.deleted.discard(record_id)
        self._save(changes)

    def track_edit(self, record_id: str) -> None:
        changes = self.load_pending_changes()
        # An unsynced add already covers the edit.
        if record_id not in changes.added:
            changes.edited.add(record_id)
        self._save(changes)

    def track_delete(self, record_id: str) -> None:
        changes = self.load_pending_changes()
        if record_id in changes.added:
            changes.added.discard(record_id)
        else:
            changes.deleted.add(record_id)
        changes.edited.discard(record_id)
        self._save(changes)

    def clear_pending_changes(self) -> None:
        self._save(PendingChanges())

    def discard(self, synced: PendingChanges) -> None:
        """Drop the ids in *synced* and keep anything tracked since.

        Args:
            synced: The pending set read when the cycle started.
        """
        changes = self.load_pending_changes()
        changes.added -= synced.added
        changes.edited -= synced.edited
        changes.deleted -= synced.deleted
        self._save(changes)

    def pending_count(self) -> PendingCount:
        changes = self.load_pending_changes()
        return PendingCount(
            added=len(changes.added),
            edited=len(changes.edited),
            deleted=len(changes.deleted),
        )
