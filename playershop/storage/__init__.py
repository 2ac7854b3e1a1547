"""Persistence backends for the player-shop store.

The manager obtains its single provider from :func:`build_storage` and never
looks at the backend flag again.

Typical usage::

    from playershop.storage import build_storage

    storage = build_storage(settings)
    await storage.initialize()
"""

from __future__ import annotations

from playershop.core.settings import Settings
from playershop.storage.base import StorageProvider
from playershop.storage.database import TableNames, create_schema, open_db
from playershop.storage.json_file import EMPTY_DOCUMENT, FileStorage
from playershop.storage.sql import SqlStorage

__all__ = [
    "StorageProvider",
    "FileStorage",
    "SqlStorage",
    "EMPTY_DOCUMENT",
    "TableNames",
    "open_db",
    "create_schema",
    "build_storage",
    "build_file_storage",
    "build_sql_storage",
]


def build_file_storage(settings: Settings) -> FileStorage:
    """Return the JSON document backend configured by *settings*."""
    return FileStorage(settings.shop_file_path)


def build_sql_storage(settings: Settings) -> SqlStorage:
    """Return the SQL backend configured by *settings*."""
    return SqlStorage(
        settings.sql_database_path_resolved,
        table_prefix=settings.sql_table_prefix,
        connect_attempts=settings.sql_connect_attempts,
    )


def build_storage(settings: Settings, *, use_sql: bool | None = None) -> StorageProvider:
    """Select the backend once.

    Args:
        settings: Active settings.
        use_sql: Overrides ``settings.enable_sql`` when not ``None``.
    """
    enable_sql = settings.enable_sql if use_sql is None else use_sql
    if enable_sql:
        return build_sql_storage(settings)
    return build_file_storage(settings)
