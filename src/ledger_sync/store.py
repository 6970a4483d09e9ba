"""Local replica of the ledger, kept as a single JSON file.

The sync engine reads it with :meth:`LocalRecordStore.get_all` and
replaces it wholesale with the merged set after each successful cycle.
The CLI uses the single-record helpers to add, edit and delete.  Every
read goes to disk since another process may have written the file.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field

from ledger_sync.models import AppSettings, Record
from ledger_sync.sync.state import JsonModelFile


class LedgerFile(BaseModel):
    """Root model of the local ledger file."""

    version: int = 1
    records: list[Record] = Field(default_factory=list)
    settings: AppSettings | None = None


class LocalRecordStore:
    """JSON-backed store of every local record, soft-deleted ones included.

    Args:
        path: Location of the ledger file.
    """

    def __init__(self, path: str | Path) -> None:
        self._file = JsonModelFile(path, LedgerFile)

    @property
    def path(self) -> Path:
        return self._file.path

    def get_all(self) -> list[Record]:
        return list(self._file.load().records)

    def get(self, record_id: str) -> Record | None:
        for record in self._file.load().records:
            if record.id == record_id:
                return record
        return None

    def get_settings(self) -> AppSettings | None:
        return self._file.load().settings

    def replace_all(
        self,
        records: list[Record],
        *,
        settings: AppSettings | None = None,
    ) -> None:
        """Atomically replace the stored records.

        Args:
            records: The new complete record set.
            settings: New settings; ``None`` keeps the stored ones.

        Raises:
            StorageError: If the file cannot be written.
        """
        current = self._file.load()
        self._file.save(
            current.model_copy(
                update={
                    "records": list(records),
                    "settings": settings if settings is not None else current.settings,
                }
            )
        )

    def upsert(self, record: Record) -> None:
        """Insert *record*, or replace the stored record with the same id."""
        records = [r for r in self._file.load().records if r.id != record.id]
        records.append(record)
        self.replace_all(records)

    def save_settings(self, settings: AppSettings) -> None:
        current = self._file.load()
        self._file.save(current.model_copy(update={"settings": settings}))
