"""Pydantic models for the records that take part in sync.

``Record`` is the versioned expense entity reconciled by the merge
engine.  ``AppSettings`` and ``PaymentInstrument`` are the secondary,
opt-in records stored in ``settings.json`` and merged by id and
``updated_at`` only.
"""

from __future__ import annotations

import datetime as _dt
from collections.abc import Iterable
from decimal import Decimal
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def utc_now() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


def ensure_utc(value: _dt.datetime) -> _dt.datetime:
    """Return *value* as an aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=_dt.timezone.utc)
    return value.astimezone(_dt.timezone.utc)


def format_timestamp(value: _dt.datetime) -> str:
    """Render a timestamp the way it is stored remotely, e.g.
    ``2024-01-15T10:00:00.000Z``."""
    return ensure_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_day_key(value: str) -> str:
    """Extract and validate the ``YYYY-MM-DD`` day key of an ISO date string.

    Raises:
        ValueError: If the first ten characters are not a calendar date.
    """
    day = value.strip()[:10]
    _dt.date.fromisoformat(day)
    return day


class PaymentMethod(BaseModel):
    """Structured payment tag attached to a record."""

    model_config = ConfigDict(frozen=True)

    type: str
    identifier: str | None = None
    instrument_id: str | None = None


class Record(BaseModel):
    """A single expense record.

    ``deleted_at`` is the soft-delete marker: a deleted record stays in
    the syncable set so the deletion can propagate to other devices.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    amount: Decimal
    currency: str = ""
    category: str
    date: str
    note: str = ""
    payment_method: PaymentMethod | None = None
    created_at: _dt.datetime
    updated_at: _dt.datetime
    deleted_at: _dt.datetime | None = None

    @field_validator("id")
    @classmethod
    def _id_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("record id must not be empty")
        return value

    @field_validator("date")
    @classmethod
    def _date_is_iso(cls, value: str) -> str:
        parse_day_key(value)
        return value.strip()

    @field_validator("created_at", "updated_at", "deleted_at")
    @classmethod
    def _to_utc(cls, value: _dt.datetime | None) -> _dt.datetime | None:
        return None if value is None else ensure_utc(value)

    @model_validator(mode="after")
    def _updated_not_before_created(self) -> Record:
        if self.updated_at < self.created_at:
            raise ValueError(
                f"record {self.id}: updated_at precedes created_at"
            )
        return self

    @property
    def day_key(self) -> str:
        return self.date[:10]

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def content_key(self) -> tuple[object, ...]:
        """Every user-visible field, excluding the bookkeeping timestamps.

        Two versions of a record with equal content keys are the same
        edit, even if their ``updated_at`` differ.
        """
        pm = self.payment_method
        return (
            self.amount,
            self.currency,
            self.category,
            self.date,
            self.note,
            pm.type if pm else None,
            pm.identifier if pm else None,
            pm.instrument_id if pm else None,
            self.deleted_at,
        )

    def edited(self, now: _dt.datetime | None = None, **changes: object) -> Record:
        """Return a copy with *changes* applied and ``updated_at`` bumped."""
        stamp = ensure_utc(now or utc_now())
        updated = max(stamp, self.updated_at)
        return Record.model_validate(
            {**self.model_dump(), **changes, "updated_at": updated}
        )

    def soft_deleted(self, now: _dt.datetime | None = None) -> Record:
        """Return a soft-deleted copy; deleting always bumps ``updated_at``."""
        stamp = ensure_utc(now or utc_now())
        return self.edited(stamp, deleted_at=max(stamp, self.updated_at))


def visible_records(records: Iterable[Record]) -> list[Record]:
    """Records a user should see: everything not soft-deleted."""
    return [r for r in records if not r.is_deleted]


# ---------------------------------------------------------------------------
# Settings and payment instruments
# ---------------------------------------------------------------------------


class ThemePreference(StrEnum):
    LIGHT = "light"
    DARK = "dark"
    SYSTEM = "system"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PaymentInstrument(_CamelModel):
    """A saved card or UPI handle that records can reference."""

    id: str
    method: str
    nickname: str = ""
    last_digits: str = ""
    created_at: _dt.datetime | None = None
    updated_at: _dt.datetime | None = None
    deleted_at: _dt.datetime | None = None

    @field_validator("created_at", "updated_at", "deleted_at")
    @classmethod
    def _to_utc(cls, value: _dt.datetime | None) -> _dt.datetime | None:
        return None if value is None else ensure_utc(value)


class AppSettings(_CamelModel):
    """Synced application preferences (opt-in ``settings.json``)."""

    theme: ThemePreference = ThemePreference.SYSTEM
    default_payment_method: str | None = None
    updated_at: _dt.datetime = Field(default_factory=utc_now)
    version: int = 2
    payment_instruments: list[PaymentInstrument] = Field(default_factory=list)

    @field_validator("updated_at")
    @classmethod
    def _to_utc(cls, value: _dt.datetime) -> _dt.datetime:
        return ensure_utc(value)

    def content_key(self) -> tuple[object, ...]:
        return (self.theme, self.default_payment_method, self.version)
