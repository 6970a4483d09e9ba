"""Persistence helpers for the small JSON state files kept next to the
local ledger (content hashes, pending changes, the record store itself).

All writes are whole-file atomic replaces: the new content goes to a
temporary file in the same directory, which is then renamed over the
target.  A crash mid-write leaves either the old file or the new one,
never a truncated mix.
"""

from __future__ import annotations

import hashlib
import os
import tempfile
from pathlib import Path
from typing import Generic, TypeVar

from pydantic import BaseModel, ValidationError

from ledger_sync.errors import StorageError

ModelT = TypeVar("ModelT", bound=BaseModel)


def compute_content_hash(content: str) -> str:
    """Hex SHA-256 of *content*; CRLF and CR count as LF."""
    normalized = content.replace("\r\n", "\n").replace("\r", "\n")
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def atomic_write_text(path: Path, content: str) -> None:
    """Replace *path* with *content* in a single rename.

    Parent directories are created automatically if they do not exist.

    Raises:
        StorageError: If the temporary file cannot be written or renamed.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.name}.", suffix=".tmp", dir=path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as exc:
        raise StorageError(f"Failed to write {path}: {exc}") from exc


class JsonModelFile(Generic[ModelT]):
    """Loads and saves one pydantic model as a JSON file.

    A missing or empty file loads as ``model_type()``.  The loaded model
    is cached; :meth:`save` replaces both the cache and the file.

    Args:
        path: Location of the JSON file.
        model_type: The pydantic model class stored in the file.
    """

    def __init__(self, path: str | Path, model_type: type[ModelT]) -> None:
        self._path = Path(path)
        self._model_type = model_type
        self._cached: ModelT | None = None

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> ModelT:
        """Read the file from disk, returning an empty model if it does
        not exist or is empty.

        Raises:
            StorageError: If the file exists but cannot be read or parsed.
        """
        try:
            if self._path.exists() and self._path.stat().st_size > 0:
                raw = self._path.read_text(encoding="utf-8")
                self._cached = self._model_type.model_validate_json(raw)
            else:
                self._cached = self._model_type()
        except (OSError, ValidationError) as exc:
            raise StorageError(f"Failed to load {self._path}: {exc}") from exc
        return self._cached

    def current(self) -> ModelT:
        """Return the in-memory model, loading from disk if necessary."""
        if self._cached is None:
            return self.load()
        return self._cached

    def save(self, model: ModelT) -> None:
        """Persist *model* as pretty-printed JSON."""
        atomic_write_text(self._path, model.model_dump_json(indent=2) + "\n")
        self._cached = model
