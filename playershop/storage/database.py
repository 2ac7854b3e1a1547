"""SQL database initialisation for the player-shop store.

This module is responsible for:

* Opening (or creating) the database, retrying transient connect failures.
* Configuring low-level PRAGMA settings (WAL journal mode, foreign keys).
* Bootstrapping the three shop tables via ``CREATE TABLE IF NOT EXISTS``,
  safe to call on every startup.

Table names carry a configurable prefix (``SQL_TABLE_PREFIX``, default
``playershop``) so several stores can share one database::

    playershop_owners    one row per owner (nick, custom name, icon, open flag)
    playershop_tabs      one row per (owner, tab), ordered by ``position``
    playershop_listings  one row per listing, ``id`` is AUTOINCREMENT

Typical usage::

    from playershop.storage.database import TableNames, open_db

    tables = TableNames("playershop")
    conn = await open_db(Path("data/playershop.db"), tables)
    ...
    await conn.close()
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Final

import aiosqlite
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from playershop.core.exceptions import StorageConnectionError

__all__ = [
    "TableNames",
    "open_db",
    "create_schema",
]

logger = logging.getLogger(__name__)

#: Cap on the back-off between connect attempts (seconds).
_MAX_CONNECT_BACKOFF: Final[float] = 8.0


@dataclass(frozen=True)
class TableNames:
    """Concrete table names derived from the configured prefix."""

    prefix: str

    @property
    def owners(self) -> str:
        return f"{self.prefix}_owners"

    @property
    def tabs(self) -> str:
        return f"{self.prefix}_tabs"

    @property
    def listings(self) -> str:
        return f"{self.prefix}_listings"


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------


def _ddl(tables: TableNames) -> list[str]:
    #: owner_id on listings is NULL for house listings, so it carries no FK.
    return [
        f"""\
CREATE TABLE IF NOT EXISTS {tables.owners} (
    id          TEXT     NOT NULL PRIMARY KEY,
    nick        TEXT     NOT NULL DEFAULT '',
    custom_name TEXT     NOT NULL DEFAULT '',
    icon        TEXT     NOT NULL DEFAULT '',
    is_open     INTEGER  NOT NULL DEFAULT 0
)""",
        f"""\
CREATE TABLE IF NOT EXISTS {tables.tabs} (
    owner_id    TEXT     NOT NULL REFERENCES {tables.owners}(id) ON DELETE CASCADE,
    name        TEXT     NOT NULL,
    position    INTEGER  NOT NULL DEFAULT 0,
    PRIMARY KEY (owner_id, name)
)""",
        f"""\
CREATE TABLE IF NOT EXISTS {tables.listings} (
    id              INTEGER  PRIMARY KEY AUTOINCREMENT,
    owner_id        TEXT,
    item_type       TEXT     NOT NULL,
    quantity        INTEGER  NOT NULL DEFAULT 1,
    buy_price       REAL     NOT NULL DEFAULT 0.0,
    sell_price      REAL     NOT NULL DEFAULT 0.0,
    durability      REAL     NOT NULL DEFAULT 0.0,
    max_durability  REAL     NOT NULL DEFAULT 0.0,
    stock           INTEGER  NOT NULL DEFAULT 0,
    tab             TEXT     NOT NULL DEFAULT ''
)""",
        f"CREATE INDEX IF NOT EXISTS idx_{tables.listings}_owner ON {tables.listings} (owner_id)",
    ]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def open_db(
    path: Path,
    tables: TableNames,
    *,
    connect_attempts: int = 3,
) -> aiosqlite.Connection:
    """Open (or create) the database and bootstrap the shop schema.

    Args:
        path: Database file.  Parent directories are created as needed.
        tables: Table names to create.
        connect_attempts: Total attempts before giving up (≥ 1).

    Returns:
        An open, configured :class:`aiosqlite.Connection`.  The caller is
        responsible for closing it.

    Raises:
        StorageConnectionError: When every attempt failed.
    """
    db_path = Path(path)
    logger.debug("Opening SQL database at %s", db_path)

    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(connect_attempts, 1)),
            wait=wait_exponential(multiplier=0.5, max=_MAX_CONNECT_BACKOFF),
            retry=retry_if_exception_type((sqlite3.OperationalError, OSError)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                conn = await _connect(db_path)
    except (sqlite3.Error, OSError) as exc:
        raise StorageConnectionError("sql", f"cannot open {db_path}: {exc}") from exc

    try:
        await create_schema(conn, tables)
    except sqlite3.Error as exc:
        await conn.close()
        raise StorageConnectionError("sql", f"cannot create schema in {db_path}: {exc}") from exc

    logger.info("SQL database ready at %s (tables prefix %r)", db_path, tables.prefix)
    return conn


async def create_schema(conn: aiosqlite.Connection, tables: TableNames) -> None:
    """Create all shop tables if they do not already exist.

    Idempotent; existing data is untouched.
    """
    for statement in _ddl(tables):
        await conn.execute(statement)
    await conn.commit()
    logger.debug("Schema bootstrap complete (%s_* tables verified)", tables.prefix)


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------


async def _connect(db_path: Path) -> aiosqlite.Connection:
    if str(db_path) != ":memory:":
        db_path.parent.mkdir(parents=True, exist_ok=True)
    conn: aiosqlite.Connection = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row
    try:
        await _configure_pragmas(conn)
    except sqlite3.Error:
        await conn.close()
        raise
    return conn


async def _configure_pragmas(conn: aiosqlite.Connection) -> None:
    """WAL lets readers proceed while the single writer is active."""
    result = await conn.execute("PRAGMA journal_mode=WAL")
    row = await result.fetchone()
    mode = row[0] if row else "unknown"
    if mode != "wal":
        logger.warning(
            "Requested WAL journal mode but SQLite reported: %r. "
            "This may happen for in-memory databases (':memory:').",
            mode,
        )
    await conn.execute("PRAGMA foreign_keys=ON")
