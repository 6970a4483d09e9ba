"""Sync package: merge engine, partition layout, remote ledger and local
bookkeeping.  The async runner lives in :mod:`ledger_sync.sync.engine`."""

from ledger_sync.sync.hashes import ContentHashStore
from ledger_sync.sync.instruments import KeyedMergeResult, merge_by_updated_at, merge_settings
from ledger_sync.sync.machine import SyncEvent, SyncState, transition
from ledger_sync.sync.merge import (
    AutoResolvedConflict,
    ConflictReason,
    ConflictResolution,
    MergeResult,
    Side,
    TrueConflict,
    apply_resolutions,
    merge_records,
)
from ledger_sync.sync.remote import CommitResult, FileUpload, RemoteLedger, RemoteSnapshot
from ledger_sync.sync.state import compute_content_hash
from ledger_sync.sync.tracker import ChangeTracker, PendingChanges, PendingCount

__all__ = [
    "AutoResolvedConflict",
    "ChangeTracker",
    "CommitResult",
    "ConflictReason",
    "ConflictResolution",
    "ContentHashStore",
    "FileUpload",
    "KeyedMergeResult",
    "MergeResult",
    "PendingChanges",
    "PendingCount",
    "RemoteLedger",
    "RemoteSnapshot",
    "Side",
    "SyncEvent",
    "SyncState",
    "TrueConflict",
    "apply_resolutions",
    "compute_content_hash",
    "merge_by_updated_at",
    "merge_records",
    "merge_settings",
    "transition",
]
