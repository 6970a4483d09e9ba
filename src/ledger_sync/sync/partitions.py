"""Day-keyed partition layout of the remote store.

Each calendar day with at least one record is stored as its own file,
``expenses-YYYY-MM-DD.csv``.  The helpers here map records to day keys,
day keys to file names and back, and compute the day windows used by
incremental ("last N days") fetches.
"""

from __future__ import annotations

import datetime as _dt
import re
from collections.abc import Iterable

from ledger_sync.models import Record

SETTINGS_PATH = "settings.json"

_FILENAME_RE = re.compile(r"^expenses-(\d{4}-\d{2}-\d{2})\.csv$")


def filename_for_day(day_key: str) -> str:
    return f"expenses-{day_key}.csv"


def day_key_from_filename(filename: str) -> str | None:
    """Return the day key encoded in *filename*, or ``None`` if the name
    is not a partition file."""
    match = _FILENAME_RE.match(filename)
    if match is None:
        return None
    try:
        _dt.date.fromisoformat(match.group(1))
    except ValueError:
        return None
    return match.group(1)


def group_by_day(records: Iterable[Record]) -> dict[str, list[Record]]:
    """Bucket records by day key, preserving input order inside each bucket."""
    grouped: dict[str, list[Record]] = {}
    for record in records:
        grouped.setdefault(record.day_key, []).append(record)
    return grouped


def window_start(days: int, today: _dt.date | None = None) -> str:
    """Oldest day key covered by a window of the last *days* days
    (today included).

    Raises:
        ValueError: If *days* is not positive.
    """
    if days < 1:
        raise ValueError(f"window must cover at least one day, got {days}")
    today = today or _dt.date.today()
    return (today - _dt.timedelta(days=days - 1)).isoformat()


def extend_window(oldest_day: str, days: int) -> str:
    """Move a window's oldest day *days* further into the past."""
    if days < 1:
        raise ValueError(f"cannot extend a window by {days} days")
    start = _dt.date.fromisoformat(oldest_day)
    return (start - _dt.timedelta(days=days)).isoformat()


def in_window(day_key: str, oldest_day: str | None) -> bool:
    """``True`` if *day_key* is covered by a window starting at
    *oldest_day* (``None`` means the window covers everything)."""
    return oldest_day is None or day_key >= oldest_day
