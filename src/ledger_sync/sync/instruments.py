"""Merging of the secondary records kept in ``settings.json``.

Settings and payment instruments are not conflict-sensitive: any overlap
is settled by the strictly newer ``updated_at``, with the remote copy
winning exact ties (including both timestamps missing).
"""

from __future__ import annotations

import datetime as _dt
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Generic, Protocol, TypeVar

from ledger_sync.models import AppSettings


class _Keyed(Protocol):
    @property
    def id(self) -> str: ...

    @property
    def updated_at(self) -> _dt.datetime | None: ...


KeyedT = TypeVar("KeyedT", bound=_Keyed)


@dataclass
class KeyedMergeResult(Generic[KeyedT]):
    merged: list[KeyedT] = field(default_factory=list)
    added_from_remote: list[KeyedT] = field(default_factory=list)
    added_from_local: list[KeyedT] = field(default_factory=list)
    updated_from_remote: list[KeyedT] = field(default_factory=list)
    updated_from_local: list[KeyedT] = field(default_factory=list)


def _is_newer(a: _dt.datetime | None, b: _dt.datetime | None) -> bool:
    if a is None:
        return False
    if b is None:
        return True
    return a > b


def merge_by_updated_at(
    local: Sequence[KeyedT] | None,
    remote: Sequence[KeyedT] | None,
) -> KeyedMergeResult[KeyedT]:
    """Union two lists by ``id``, keeping the newer copy of shared ids.

    Args:
        local: Local items (``None`` is treated as empty).
        remote: Remote items (``None`` is treated as empty).

    Returns:
        The merge, with ``merged`` sorted by id.
    """
    local_by_id = {item.id: item for item in local or ()}
    remote_by_id = {item.id: item for item in remote or ()}
    result: KeyedMergeResult[KeyedT] = KeyedMergeResult()

    for item_id in sorted(local_by_id.keys() | remote_by_id.keys()):
        local_item = local_by_id.get(item_id)
        remote_item = remote_by_id.get(item_id)

        if local_item is None:
            result.merged.append(remote_item)
            result.added_from_remote.append(remote_item)
        elif remote_item is None:
            result.merged.append(local_item)
            result.added_from_local.append(local_item)
        elif _is_newer(local_item.updated_at, remote_item.updated_at):
            result.merged.append(local_item)
            result.updated_from_local.append(local_item)
        else:
            result.merged.append(remote_item)
            if remote_item.updated_at != local_item.updated_at:
                result.updated_from_remote.append(remote_item)

    return result


def merge_settings(
    local: AppSettings | None,
    remote: AppSettings | None,
) -> AppSettings | None:
    """Merge two settings documents.

    Scalar preferences come from whichever document has the strictly
    newer ``updated_at`` (remote on ties); payment instruments are merged
    individually with :func:`merge_by_updated_at`.
    """
    if local is None or remote is None:
        return remote if local is None else local

    base = local if _is_newer(local.updated_at, remote.updated_at) else remote
    instruments = merge_by_updated_at(
        local.payment_instruments, remote.payment_instruments
    )
    return base.model_copy(
        update={
            "updated_at": max(local.updated_at, remote.updated_at),
            "payment_instruments": instruments.merged,
        }
    )
