"""Converts day partitions between ``Record`` lists and CSV text.

The output is canonical: rows are ordered by creation time then id,
timestamps use a fixed millisecond UTC format, and lines end in ``\\n``.
The same set of records therefore always serializes to the same bytes,
which is what makes content hashing of partitions meaningful.
"""

from __future__ import annotations

import csv
import io
from collections.abc import Iterable

from pydantic import ValidationError

from ledger_sync.errors import PartitionFormatError
from ledger_sync.models import PaymentMethod, Record, format_timestamp

COLUMNS: tuple[str, ...] = (
    "id",
    "amount",
    "currency",
    "category",
    "date",
    "note",
    "paymentMethodType",
    "paymentMethodId",
    "paymentInstrumentId",
    "createdAt",
    "updatedAt",
    "deletedAt",
)

_REQUIRED = ("id", "amount", "category", "date", "createdAt", "updatedAt")


def _record_to_row(record: Record) -> dict[str, str]:
    pm = record.payment_method
    return {
        "id": record.id,
        "amount": format(record.amount, "f"),
        "currency": record.currency,
        "category": record.category,
        "date": record.date,
        "note": record.note,
        "paymentMethodType": pm.type if pm else "",
        "paymentMethodId": (pm.identifier or "") if pm else "",
        "paymentInstrumentId": (pm.instrument_id or "") if pm else "",
        "createdAt": format_timestamp(record.created_at),
        "updatedAt": format_timestamp(record.updated_at),
        "deletedAt": format_timestamp(record.deleted_at) if record.deleted_at else "",
    }


def export_csv(records: Iterable[Record]) -> str:
    """Serialize *records* to canonical CSV text with a header row."""
    ordered = sorted(records, key=lambda r: (r.created_at, r.id))
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=COLUMNS, lineterminator="\n")
    writer.writeheader()
    for record in ordered:
        writer.writerow(_record_to_row(record))
    return buffer.getvalue()


def _row_to_record(row: dict[str, str | None]) -> Record:
    def value(key: str) -> str:
        return (row.get(key) or "").strip()

    missing = [key for key in _REQUIRED if not value(key)]
    if missing:
        raise ValueError(f"missing {', '.join(missing)}")

    pm_type = value("paymentMethodType")
    payment_method = (
        PaymentMethod(
            type=pm_type,
            identifier=value("paymentMethodId") or None,
            instrument_id=value("paymentInstrumentId") or None,
        )
        if pm_type
        else None
    )
    return Record(
        id=value("id"),
        amount=value("amount"),
        currency=value("currency"),
        category=value("category"),
        date=value("date"),
        # Notes keep their whitespace.
        note=row.get("note") or "",
        payment_method=payment_method,
        created_at=value("createdAt"),
        updated_at=value("updatedAt"),
        deleted_at=value("deletedAt") or None,
    )


def import_csv(text: str, source: str = "<csv>") -> list[Record]:
    """Parse CSV text produced by :func:`export_csv`.

    Older files without the currency, payment method or ``deletedAt``
    columns are accepted; those fields take their defaults.

    Args:
        text: The CSV document.
        source: Name used in error messages (usually the file path).

    Returns:
        The parsed records in file order.

    Raises:
        PartitionFormatError: If a row is missing required values or
            holds values the record model rejects.
    """
    reader = csv.DictReader(io.StringIO(text.replace("\r\n", "\n")))
    records: list[Record] = []
    for line_no, row in enumerate(reader, start=2):
        if not any((v or "").strip() for v in row.values() if isinstance(v, str)):
            continue
        try:
            records.append(_row_to_record(row))
        except (ValueError, ValidationError) as exc:
            raise PartitionFormatError(f"{source}:{line_no}: {exc}") from exc
    return records
