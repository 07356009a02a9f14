"""Row store backends for the vault."""
from typing import Any

from ..exceptions import ConfigError
from .base import RowStore
from .memory import MemoryRowStore
from .json_file import JsonRowStore
from .sheets import ServiceAccountCredentials, SheetsRowStore, StaticToken


def create_row_store(config: Any) -> RowStore:
    """Build the row store selected by ``config.storage``.

    Raises:
        ConfigError: If the selected backend is missing its settings.
    """
    if config.storage == "memory":
        return MemoryRowStore()
    if config.storage == "json":
        if not config.json_storage_path:
            raise ConfigError("json_storage_path is required for JSON storage")
        return JsonRowStore(config.json_storage_path)
    if not config.spreadsheet_id or not config.google_credentials_file:
        raise ConfigError(
            "spreadsheet_id and google_credentials_file are required "
            "for Google Sheets storage"
        )
    credentials = ServiceAccountCredentials.from_file(
        config.google_credentials_file,
    )
    return SheetsRowStore(config.spreadsheet_id, credentials)


__all__ = [
    "RowStore",
    "MemoryRowStore",
    "JsonRowStore",
    "SheetsRowStore",
    "ServiceAccountCredentials",
    "StaticToken",
    "create_row_store",
]
