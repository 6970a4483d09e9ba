"""Fetch window reached by the last completed sync cycle.

Each CLI invocation builds a new engine, so the oldest day covered so far
is kept on disk next to the hash and pending-change files.  Without it a
``load-more`` would always extend the configured initial window instead
of the one already reached.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel

from ledger_sync.sync.state import JsonModelFile


class SyncWindowState(BaseModel):
    version: int = 1
    known: bool = False
    oldest_day: str | None = None


class SyncWindowStore:
    """Persists the window of the last completed cycle.

    ``oldest_day`` of ``None`` with ``known`` set means the whole history
    was covered.
    """

    def __init__(self, path: str | Path) -> None:
        self._file = JsonModelFile(path, SyncWindowState)

    def load(self) -> SyncWindowState:
        return self._file.load()

    def save(self, oldest_day: str | None) -> None:
        self._file.save(SyncWindowState(known=True, oldest_day=oldest_day))
