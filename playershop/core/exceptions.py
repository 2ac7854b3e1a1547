"""Player-shop exception taxonomy.

Every custom exception inherits from :class:`PlayerShopError`.  Exceptions are
organised by architectural layer so callers can catch at the right granularity:

    Layer hierarchy
    ---------------
    PlayerShopError
    ├── ConfigError
    ├── StorageError
    │   ├── StorageReadError
    │   ├── StorageWriteError
    │   ├── StorageConnectionError
    │   └── StorageUnavailableError
    ├── MigrationError
    └── ManagerError
        └── ManagerClosedError

Absence of a listing, owner or tab is **not** an error anywhere in this
package; lookups return ``None`` or an empty list instead.

Usage:

    from playershop.core.exceptions import StorageWriteError

    raise StorageWriteError("sql", "insert listing failed") from exc
"""

from __future__ import annotations

import logging

__all__ = [
    "PlayerShopError",
    # Config
    "ConfigError",
    # Storage
    "StorageError",
    "StorageReadError",
    "StorageWriteError",
    "StorageConnectionError",
    "StorageUnavailableError",
    # Migration
    "MigrationError",
    # Manager
    "ManagerError",
    "ManagerClosedError",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class PlayerShopError(Exception):
    """Root exception for all player-shop errors.

    Catch this to handle any application-level error uniformly.  Prefer
    catching layer-specific subclasses wherever possible.
    """


# ---------------------------------------------------------------------------
# Config layer
# ---------------------------------------------------------------------------


class ConfigError(PlayerShopError):
    """Raised when the application configuration is invalid or incomplete.

    Examples:
        - ``SQL_TABLE_PREFIX`` contains characters unsafe for an identifier.
        - ``FLUSH_INTERVAL`` is zero or negative.
    """


# ---------------------------------------------------------------------------
# Storage layer
# ---------------------------------------------------------------------------


class StorageError(PlayerShopError):
    """Base class for persistence failures.

    Args:
        backend: Short backend label (``"file"`` or ``"sql"``).
        message: Human-readable error description.
    """

    def __init__(self, backend: str, message: str) -> None:
        self.backend = backend
        super().__init__(f"[{backend}] {message}")


class StorageReadError(StorageError):
    """Raised when stored data cannot be read or parsed."""


class StorageWriteError(StorageError):
    """Raised when a write (insert, update, delete, flush) fails.

    The in-memory tracker has usually been mutated already when this is
    raised; the manager logs it and leaves memory as-is.
    """


class StorageConnectionError(StorageError):
    """Raised when the backend cannot be opened at startup.

    The manager reacts by falling back to the file backend.
    """


class StorageUnavailableError(StorageError):
    """Raised for any write issued after the provider has been shut down."""

    def __init__(self, backend: str) -> None:
        super().__init__(backend, "provider is shut down; write rejected")


# ---------------------------------------------------------------------------
# Migration
# ---------------------------------------------------------------------------


class MigrationError(PlayerShopError):
    """Raised when a single record cannot be copied during migration.

    Args:
        record: Short description of the record (``"owner <uuid>"``,
            ``"listing 12"``).
        message: Human-readable error description.
    """

    def __init__(self, record: str, message: str) -> None:
        self.record = record
        super().__init__(f"Migration of {record} failed: {message}")


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class ManagerError(PlayerShopError):
    """Raised for misuse of the :class:`~playershop.orchestrator.manager.ShopManager`
    lifecycle (as opposed to store outcomes, which are return values)."""


class ManagerClosedError(ManagerError):
    """Raised when a mutating call reaches a manager that was not started or
    has already been shut down."""
