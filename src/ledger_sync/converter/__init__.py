"""Format converters between records and remote file contents."""

from ledger_sync.converter.csv_codec import COLUMNS, export_csv, import_csv
from ledger_sync.converter.settings_codec import export_settings, import_settings

__all__ = [
    "COLUMNS",
    "export_csv",
    "export_settings",
    "import_csv",
    "import_settings",
]
