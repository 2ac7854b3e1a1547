"""Shared pytest fixtures and configuration for the player-shop test suite.

This file is loaded automatically by pytest before any test module.
It provides project-wide fixtures used across the unit tests.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from uuid import UUID, uuid4

import pytest
from pydantic_settings import SettingsConfigDict

from playershop.core import configure_logging
from playershop.core.settings import Settings

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _configure_test_logging() -> None:
    """Force DEBUG logging in text format for every test.

    Using ``force=True`` ensures the configuration is applied even when
    pytest's own ``log_cli`` handler is already present.
    """
    configure_logging(level="DEBUG", fmt="text", force=True)


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove every store-related env var for the duration of a test.

    Also disables pydantic-settings `.env` file loading so that values in a
    local `.env` file do not leak into Settings isolation tests.
    """
    prefixes = (
        "ENABLE_SQL",
        "DATA_DIR",
        "SHOP_FILE_NAME",
        "FLUSH_INTERVAL",
        "SQL_",
        "LOG_LEVEL",
        "LOG_FORMAT",
    )
    for key in list(os.environ):
        if any(key.upper().startswith(prefix) for prefix in prefixes):
            monkeypatch.delenv(key, raising=False)

    monkeypatch.setattr(
        Settings,
        "model_config",
        SettingsConfigDict(
            env_file=None,
            env_file_encoding="utf-8",
            extra="ignore",
        ),
    )


@pytest.fixture()
def file_settings(clean_env: None, tmp_path: Path) -> Settings:
    """Settings for the JSON file backend rooted in ``tmp_path``."""
    return Settings(
        enable_sql=False,
        data_dir=str(tmp_path / "data"),
        sql_database_path=str(tmp_path / "data" / "shop.db"),
        sql_connect_attempts=1,
    )


@pytest.fixture()
def sql_settings(clean_env: None, tmp_path: Path) -> Settings:
    """Settings for the SQL backend; the JSON document lives next to the database."""
    return Settings(
        enable_sql=True,
        data_dir=str(tmp_path / "data"),
        sql_database_path=str(tmp_path / "data" / "shop.db"),
        sql_connect_attempts=1,
    )


# ---------------------------------------------------------------------------
# Misc helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def owner() -> UUID:
    return uuid4()


@pytest.fixture()
def logger() -> logging.Logger:
    """Return a ``logging.Logger`` scoped to the running test."""
    return logging.getLogger("tests")
