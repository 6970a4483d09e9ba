"""Converts ``AppSettings`` to and from the remote ``settings.json``."""

from __future__ import annotations

from pydantic import ValidationError

from ledger_sync.errors import PartitionFormatError
from ledger_sync.models import AppSettings


def export_settings(settings: AppSettings) -> str:
    """Serialize settings as pretty-printed camelCase JSON.

    Instruments are written in id order so that equal settings always
    produce identical text.
    """
    ordered = settings.model_copy(
        update={
            "payment_instruments": sorted(
                settings.payment_instruments, key=lambda i: i.id
            )
        }
    )
    return ordered.model_dump_json(by_alias=True, indent=2) + "\n"


def import_settings(text: str, source: str = "settings.json") -> AppSettings:
    """Parse ``settings.json`` content.

    Raises:
        PartitionFormatError: If the JSON is malformed or fails validation.
    """
    try:
        return AppSettings.model_validate_json(text)
    except ValidationError as exc:
        raise PartitionFormatError(f"{source}: {exc}") from exc
