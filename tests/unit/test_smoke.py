"""Smoke tests — verify the test harness itself is wired up correctly.

These tests assert nothing about store behaviour.  Their sole purpose is to
confirm:

1. pytest discovers and runs tests in this suite.
2. pytest-asyncio's ``asyncio_mode = "auto"`` setting works (async tests
   run without any decorator).
3. Every playershop package imports without errors.
4. ``configure_logging()`` executes without raising.
5. The exception taxonomy is importable and the hierarchy is intact.

If any of these fail it means the project foundation is broken and no
subsequent tests can be trusted.
"""

from __future__ import annotations

import asyncio
import logging

import pytest

from playershop.core import (
    ConfigError,
    JsonFormatter,
    ManagerClosedError,
    ManagerError,
    MigrationError,
    PlayerShopError,
    StorageConnectionError,
    StorageError,
    StorageReadError,
    StorageUnavailableError,
    StorageWriteError,
    configure_logging,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Import & startup smoke
# ---------------------------------------------------------------------------


def test_core_imports_succeed() -> None:
    """All public names exported from ``playershop.core`` are importable."""
    assert configure_logging is not None
    assert JsonFormatter is not None
    assert PlayerShopError is not None


def test_layer_packages_import() -> None:
    from playershop.orchestrator import FlushScheduler, ShopManager, migrate_file_to_sql
    from playershop.storage import FileStorage, SqlStorage, StorageProvider, build_storage

    assert issubclass(FileStorage, StorageProvider)
    assert issubclass(SqlStorage, StorageProvider)
    assert callable(build_storage)
    assert callable(migrate_file_to_sql)
    assert ShopManager is not None and FlushScheduler is not None


def test_configure_logging_text() -> None:
    """``configure_logging`` runs without raising in text mode."""
    configure_logging(level="INFO", fmt="text", force=True)


def test_configure_logging_json() -> None:
    """``configure_logging`` runs without raising in JSON mode."""
    configure_logging(level="DEBUG", fmt="json", force=True)
    # Restore text mode so subsequent test output remains readable.
    configure_logging(level="DEBUG", fmt="text", force=True)


def test_configure_logging_invalid_level() -> None:
    with pytest.raises(ValueError, match="Unknown LOG_LEVEL"):
        configure_logging(level="VERBOSE", force=True)


def test_configure_logging_invalid_format() -> None:
    with pytest.raises(ValueError, match="Unknown LOG_FORMAT"):
        configure_logging(fmt="xml", force=True)


# ---------------------------------------------------------------------------
# Exception taxonomy
# ---------------------------------------------------------------------------


def test_exception_hierarchy_base() -> None:
    """All custom exceptions are subclasses of ``PlayerShopError``."""
    for exc_class in (
        ConfigError,
        StorageError,
        StorageReadError,
        StorageWriteError,
        StorageConnectionError,
        StorageUnavailableError,
        MigrationError,
        ManagerError,
        ManagerClosedError,
    ):
        assert issubclass(exc_class, PlayerShopError), (
            f"{exc_class.__name__} is not a subclass of PlayerShopError"
        )


def test_exception_hierarchy_layers() -> None:
    assert issubclass(StorageReadError, StorageError)
    assert issubclass(StorageWriteError, StorageError)
    assert issubclass(StorageConnectionError, StorageError)
    assert issubclass(StorageUnavailableError, StorageError)
    assert issubclass(ManagerClosedError, ManagerError)
    assert not issubclass(MigrationError, StorageError)


def test_storage_error_formats_message() -> None:
    """``StorageError`` includes the backend label in its string representation."""
    exc = StorageWriteError("sql", "database is locked")
    assert exc.backend == "sql"
    assert "[sql]" in str(exc)
    assert "database is locked" in str(exc)


def test_unavailable_error_needs_only_backend() -> None:
    exc = StorageUnavailableError("file")
    assert exc.backend == "file"
    assert "shut down" in str(exc)


def test_migration_error_carries_record() -> None:
    exc = MigrationError("listing 12", "constraint failed")
    assert exc.record == "listing 12"
    assert "listing 12" in str(exc)


# ---------------------------------------------------------------------------
# Async harness
# ---------------------------------------------------------------------------


async def test_async_test_runs() -> None:
    """Simplest possible async test — confirms pytest-asyncio is operational."""
    await asyncio.sleep(0)  # yield to the event loop once
    assert True


async def test_async_exception_is_catchable() -> None:
    async def _failing_coro() -> None:
        raise StorageWriteError("file", "simulated failure")

    with pytest.raises(StorageWriteError, match="simulated failure"):
        await _failing_coro()
