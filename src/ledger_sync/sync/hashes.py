"""Content hash store for differential sync.

Remembers the hash of every remote file as it was last confirmed
uploaded, so unchanged partitions can be left out of the next commit.
The store is a write-avoidance optimization only; it never influences
merge outcomes.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, Field

from ledger_sync.sync.state import JsonModelFile, compute_content_hash

logger = logging.getLogger(__name__)


class ContentHashState(BaseModel):
    """Root model of the persisted hash file."""

    version: int = 1
    hashes: dict[str, str] = Field(default_factory=dict)


class ContentHashStore:
    """Persistent map of partition key to last-uploaded content hash.

    Args:
        path: JSON file the hashes are kept in.
    """

    def __init__(self, path: str | Path) -> None:
        self._file = JsonModelFile(path, ContentHashState)

    def get(self, key: str) -> str | None:
        return self._file.current().hashes.get(key)

    def should_upload(self, key: str, content: str) -> bool:
        """``True`` unless *content* hashes to the value recorded for *key*.

        A key with no recorded hash always needs uploading.
        """
        known = self.get(key)
        return known is None or known != compute_content_hash(content)

    def record_uploaded(self, key: str, content: str) -> None:
        """Remember *content* as the confirmed remote state of *key*."""
        self.record_many({key: content})

    def record_many(self, contents: Mapping[str, str]) -> None:
        """Record several confirmed uploads with a single write."""
        if not contents:
            return
        state = self._file.current()
        hashes = dict(state.hashes)
        for key, content in contents.items():
            hashes[key] = compute_content_hash(content)
        self._file.save(state.model_copy(update={"hashes": hashes}))
        logger.debug("Recorded content hashes for %d file(s)", len(contents))

    def forget(self, keys: list[str]) -> None:
        """Drop hashes for files that no longer exist remotely."""
        state = self._file.current()
        dropped = set(keys)
        hashes = {k: v for k, v in state.hashes.items() if k not in dropped}
        if len(hashes) != len(state.hashes):
            self._file.save(state.model_copy(update={"hashes": hashes}))

    def clear(self) -> None:
        self._file.save(ContentHashState())
