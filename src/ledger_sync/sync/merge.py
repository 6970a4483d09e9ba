"""Merge engine reconciling the local and remote replicas of the ledger.

Records are matched by id.  When both replicas hold different content
for the same id, the version with the newer ``updated_at`` wins, unless
the two timestamps are so close (within the conflict threshold) that
their order says nothing reliable about intent.  Such pairs are true
conflicts and stay out of the merged set until a resolution picks a
side.

Soft-deleted records are ordinary participants: ``deleted_at`` is just
another field, and deleting always bumps ``updated_at``.  The engine
never drops a record.
"""

from __future__ import annotations

import datetime as _dt
import logging
from collections.abc import Iterable, Sequence
from enum import StrEnum

from pydantic import BaseModel, Field

from ledger_sync.errors import MalformedRecordError
from ledger_sync.models import Record

logger = logging.getLogger(__name__)

DEFAULT_CONFLICT_THRESHOLD_MS = 1000

_ONE_MS = _dt.timedelta(milliseconds=1)


class Side(StrEnum):
    """Which replica a version came from."""

    LOCAL = "local"
    REMOTE = "remote"


class ConflictReason(StrEnum):
    NEWER_TIMESTAMP = "newer_timestamp"
    EQUAL_TIMESTAMPS = "equal_timestamps"
    WITHIN_THRESHOLD = "within_threshold"


class AutoResolvedConflict(BaseModel):
    """An overlap settled by comparing ``updated_at``."""

    record_id: str
    winner: Side
    local_version: Record
    remote_version: Record
    reason: ConflictReason = ConflictReason.NEWER_TIMESTAMP


class TrueConflict(BaseModel):
    """An overlap that needs a human to pick a side."""

    record_id: str
    local_version: Record
    remote_version: Record
    reason: ConflictReason

    def version(self, side: Side) -> Record:
        return self.local_version if side is Side.LOCAL else self.remote_version


class ConflictResolution(BaseModel):
    """A caller's choice for one true conflict."""

    record_id: str
    choice: Side


class MergeResult(BaseModel):
    """Outcome of merging two replicas.

    The classification lists are disjoint by id.  Records whose two
    versions had identical content appear only in ``merged``.
    """

    merged: list[Record] = Field(default_factory=list)
    added_from_remote: list[Record] = Field(default_factory=list)
    added_from_local: list[Record] = Field(default_factory=list)
    updated_from_remote: list[Record] = Field(default_factory=list)
    updated_from_local: list[Record] = Field(default_factory=list)
    auto_resolved: list[AutoResolvedConflict] = Field(default_factory=list)
    true_conflicts: list[TrueConflict] = Field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.true_conflicts)

    @property
    def has_changes(self) -> bool:
        return bool(
            self.added_from_remote
            or self.added_from_local
            or self.updated_from_remote
            or self.updated_from_local
        )

    def summary(self) -> str:
        return (
            f"{len(self.merged)} merged "
            f"(+{len(self.added_from_remote)} remote, +{len(self.added_from_local)} local, "
            f"~{len(self.updated_from_remote)} from remote, "
            f"~{len(self.updated_from_local)} from local, "
            f"{len(self.true_conflicts)} conflict(s))"
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _index(records: Iterable[Record], side: Side) -> dict[str, Record]:
    """Map records by id, rejecting malformed input.

    Raises:
        MalformedRecordError: On a missing id or ``updated_at``, or an id
            that appears twice in the same replica.
    """
    by_id: dict[str, Record] = {}
    for record in records:
        record_id = getattr(record, "id", None)
        if not record_id:
            raise MalformedRecordError(f"{side} record without an id: {record!r}")
        if getattr(record, "updated_at", None) is None:
            raise MalformedRecordError(f"{side} record {record_id} has no updated_at")
        if record_id in by_id:
            raise MalformedRecordError(f"duplicate {side} record id {record_id}")
        by_id[record_id] = record
    return by_id


def sort_newest_first(records: list[Record]) -> list[Record]:
    """Newest-created first, id as tie-breaker."""
    return sorted(records, key=lambda r: (r.created_at, r.id), reverse=True)


def _delta_ms(local: Record, remote: Record) -> float:
    return abs(remote.updated_at - local.updated_at) / _ONE_MS


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def merge_records(
    local: Sequence[Record],
    remote: Sequence[Record],
    resolutions: Iterable[ConflictResolution] | None = None,
    *,
    conflict_threshold_ms: int = DEFAULT_CONFLICT_THRESHOLD_MS,
) -> MergeResult:
    """Merge the local and remote replicas by record id.

    Args:
        local: All local records, soft-deleted ones included.
        remote: All remote records in the fetched window.
        resolutions: Choices for true conflicts already decided by the
            caller; each one moves its record from ``true_conflicts``
            into ``merged``.
        conflict_threshold_ms: Largest ``updated_at`` distance, in
            milliseconds, at which two differing versions count as a
            true conflict rather than being settled by timestamp.

    Returns:
        The merged set together with its classification.

    Raises:
        MalformedRecordError: If either side holds malformed records.
    """
    local_by_id = _index(local, Side.LOCAL)
    remote_by_id = _index(remote, Side.REMOTE)

    result = MergeResult()

    for record_id in sorted(local_by_id.keys() | remote_by_id.keys()):
        local_item = local_by_id.get(record_id)
        remote_item = remote_by_id.get(record_id)

        if local_item is None:
            result.merged.append(remote_item)
            result.added_from_remote.append(remote_item)
        elif remote_item is None:
            result.merged.append(local_item)
            result.added_from_local.append(local_item)
        else:
            _merge_pair(local_item, remote_item, conflict_threshold_ms, result)

    result.merged = sort_newest_first(result.merged)

    if resolutions:
        result = apply_resolutions(result, resolutions)

    logger.debug("Merge finished: %s", result.summary())
    return result


def _merge_pair(
    local_item: Record,
    remote_item: Record,
    conflict_threshold_ms: int,
    result: MergeResult,
) -> None:
    """Reconcile two versions of the same record into *result*."""
    if local_item.content_key() == remote_item.content_key():
        # Same edit on both sides; keep the later stamp so both replicas
        # converge on identical rows.
        newer = remote_item if remote_item.updated_at >= local_item.updated_at else local_item
        result.merged.append(newer)
        return

    delta = _delta_ms(local_item, remote_item)

    if delta <= conflict_threshold_ms:
        result.true_conflicts.append(
            TrueConflict(
                record_id=local_item.id,
                local_version=local_item,
                remote_version=remote_item,
                reason=(
                    ConflictReason.EQUAL_TIMESTAMPS
                    if delta == 0
                    else ConflictReason.WITHIN_THRESHOLD
                ),
            )
        )
        return

    if remote_item.updated_at >= local_item.updated_at:
        winner, side = remote_item, Side.REMOTE
        result.updated_from_remote.append(remote_item)
    else:
        winner, side = local_item, Side.LOCAL
        result.updated_from_local.append(local_item)

    result.merged.append(winner)
    result.auto_resolved.append(
        AutoResolvedConflict(
            record_id=local_item.id,
            winner=side,
            local_version=local_item,
            remote_version=remote_item,
        )
    )


def apply_resolutions(
    result: MergeResult,
    resolutions: Iterable[ConflictResolution],
) -> MergeResult:
    """Return a copy of *result* with the given conflicts resolved.

    Resolutions naming an id that is not a pending true conflict are
    ignored.  Conflicts without a resolution stay pending.
    """
    choices = {r.record_id: r.choice for r in resolutions}
    merged = list(result.merged)
    updated_from_remote = list(result.updated_from_remote)
    updated_from_local = list(result.updated_from_local)
    remaining: list[TrueConflict] = []

    for conflict in result.true_conflicts:
        choice = choices.pop(conflict.record_id, None)
        if choice is None:
            remaining.append(conflict)
            continue
        chosen = conflict.version(choice)
        merged.append(chosen)
        if choice is Side.LOCAL:
            updated_from_local.append(chosen)
        else:
            updated_from_remote.append(chosen)

    if choices:
        logger.debug("Ignoring resolutions for non-conflicting ids: %s", sorted(choices))

    return result.model_copy(
        update={
            "merged": sort_newest_first(merged),
            "updated_from_remote": updated_from_remote,
            "updated_from_local": updated_from_local,
            "true_conflicts": remaining,
        }
    )
