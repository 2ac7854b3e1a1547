"""Row-level SQL backend.

Provides :class:`SqlStorage`, where every logical store operation is one
awaited write against the owners, tabs or listings table.  Each write is
committed before the call returns, so there is nothing to flush.

In this mode the database, not the tracker, is the listing id authority:
:meth:`SqlStorage.add_listing` returns the listing with the AUTOINCREMENT key
filled in, and the manager hands that listing to the tracker with the id
already set.

All I/O runs on the :mod:`aiosqlite` worker thread; callers simply ``await``.
After :meth:`SqlStorage.shutdown` every write raises
:class:`~playershop.core.exceptions.StorageUnavailableError`, which is why
the manager persists owner state (:meth:`SqlStorage.checkpoint`) strictly
before shutting down.

Typical usage::

    storage = SqlStorage(Path("data/playershop.db"), table_prefix="playershop")
    await storage.initialize()
    await storage.load_all(tracker)
    stored = await storage.add_listing(Listing(item_type="ore", owner_id=owner))
    tracker.add_listing(stored)
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from uuid import UUID

import aiosqlite

from playershop.core.exceptions import (
    StorageReadError,
    StorageUnavailableError,
    StorageWriteError,
)
from playershop.core.models import Listing, OwnerRecord
from playershop.core.tracker import ShopTracker
from playershop.storage.base import StorageProvider
from playershop.storage.database import TableNames, open_db

__all__ = ["SqlStorage"]

logger = logging.getLogger(__name__)


class SqlStorage(StorageProvider):
    """Immediately-durable backend on top of an :mod:`aiosqlite` connection.

    Args:
        path: Database file location.
        table_prefix: Prefix for the three shop tables.
        connect_attempts: Total attempts when opening the connection.
    """

    backend = "sql"
    requires_periodic_flush = False

    def __init__(
        self,
        path: Path | str,
        *,
        table_prefix: str = "playershop",
        connect_attempts: int = 3,
    ) -> None:
        super().__init__()
        self._path = Path(path)
        self._tables = TableNames(table_prefix)
        self._connect_attempts = connect_attempts
        self._conn: aiosqlite.Connection | None = None

    @property
    def name(self) -> str:
        return f"sql ({self._path}, {self._tables.prefix}_*)"

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Open the connection and create the schema.

        Raises:
            StorageConnectionError: If the database cannot be opened.
        """
        self._conn = await open_db(
            self._path,
            self._tables,
            connect_attempts=self._connect_attempts,
        )

    async def load_all(self, tracker: ShopTracker) -> None:
        """Fill *tracker* from the three tables and bind it.

        Raises:
            StorageReadError: If a query fails.  *tracker* may hold a partial
                load and must be discarded; the previous binding is kept.
        """
        conn = self._conn
        if conn is None:
            logger.warning("SQL backend not initialised; starting empty")
            self._tracker = tracker
            return
        t = self._tables
        try:
            async with conn.execute(
                f"SELECT id, nick, custom_name, icon, is_open FROM {t.owners}"
            ) as cursor:
                async for row in cursor:
                    try:
                        owner_id = UUID(row["id"])
                    except ValueError:
                        logger.warning("Skipping owner row with invalid id %r", row["id"])
                        continue
                    tracker.put_owner(
                        OwnerRecord(
                            id=owner_id,
                            nick=row["nick"],
                            custom_name=row["custom_name"],
                            icon=row["icon"],
                        )
                    )
                    tracker.set_shop_open(owner_id, bool(row["is_open"]))

            async with conn.execute(
                f"SELECT owner_id, name FROM {t.tabs} ORDER BY owner_id, position, rowid"
            ) as cursor:
                async for row in cursor:
                    try:
                        tracker.add_tab(UUID(row["owner_id"]), row["name"])
                    except ValueError:
                        continue

            async with conn.execute(
                f"""
                SELECT id, owner_id, item_type, quantity, buy_price, sell_price,
                       durability, max_durability, stock, tab
                FROM {t.listings} ORDER BY id
                """
            ) as cursor:
                async for row in cursor:
                    try:
                        tracker.add_listing(self._row_to_listing(row))
                    except ValueError as exc:
                        logger.warning("Skipping listing row %s: %s", row["id"], exc)
        except sqlite3.Error as exc:
            raise StorageReadError(self.backend, f"load from {self.name} failed: {exc}") from exc

        self._tracker = tracker
        logger.info(
            "Loaded shop data from %s (%d owners, %d listings)",
            self.name,
            tracker.owner_count,
            tracker.listing_count,
        )

    async def checkpoint(self) -> None:
        """Re-persist every owner record of the bound tracker, one by one.

        Failures are logged per owner; the loop always runs to the end.
        """
        tracker = self._tracker
        if tracker is None or self._conn is None:
            return
        saved = 0
        for record in tracker.all_owners():
            try:
                await self.save_owner_info(
                    record.id,
                    record,
                    tracker.is_shop_open(record.id),
                    tracker.tabs(record.id),
                )
                saved += 1
            except StorageWriteError as exc:
                logger.warning("Failed to save owner %s during checkpoint: %s", record.id, exc)
        logger.debug("Checkpoint persisted %d owner record(s)", saved)

    async def shutdown(self) -> None:
        conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            await conn.close()
        except sqlite3.Error:
            logger.warning("Error closing SQL connection", exc_info=True)
        logger.info("SQL backend closed (%s)", self._path)

    # ------------------------------------------------------------------
    # Per-operation writes
    # ------------------------------------------------------------------

    async def add_listing(self, listing: Listing) -> Listing:
        conn = self._require_conn()
        try:
            cursor = await conn.execute(
                f"""
                INSERT INTO {self._tables.listings}
                    (owner_id, item_type, quantity, buy_price, sell_price,
                     durability, max_durability, stock, tab)
                VALUES
                    (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    _owner_key(listing.owner_id),
                    listing.item_type,
                    listing.quantity,
                    listing.buy_price,
                    listing.sell_price,
                    listing.durability,
                    listing.max_durability,
                    listing.stock,
                    listing.tab,
                ),
            )
            await conn.commit()
        except sqlite3.Error as exc:
            raise StorageWriteError(self.backend, f"insert listing failed: {exc}") from exc

        if cursor.lastrowid is None:
            raise StorageWriteError(self.backend, "insert listing returned no key")
        listing.id = cursor.lastrowid
        logger.debug("Inserted listing %d (%s)", listing.id, listing.item_type)
        return listing

    async def remove_listing(self, listing_id: int) -> bool:
        conn = self._require_conn()
        try:
            await conn.execute(
                f"DELETE FROM {self._tables.listings} WHERE id = ?",
                (listing_id,),
            )
            await conn.commit()
        except sqlite3.Error as exc:
            raise StorageWriteError(self.backend, f"delete listing {listing_id} failed: {exc}") from exc
        # A row that was already gone is the outcome the caller asked for.
        return True

    async def update_listing(self, listing: Listing) -> bool:
        conn = self._require_conn()
        try:
            cursor = await conn.execute(
                f"""
                UPDATE {self._tables.listings}
                SET item_type = ?, quantity = ?, buy_price = ?, sell_price = ?,
                    durability = ?, max_durability = ?, stock = ?, tab = ?
                WHERE id = ?
                """,
                (
                    listing.item_type,
                    listing.quantity,
                    listing.buy_price,
                    listing.sell_price,
                    listing.durability,
                    listing.max_durability,
                    listing.stock,
                    listing.tab,
                    listing.id,
                ),
            )
            await conn.commit()
        except sqlite3.Error as exc:
            raise StorageWriteError(self.backend, f"update listing {listing.id} failed: {exc}") from exc
        return cursor.rowcount > 0

    async def save_owner_info(
        self,
        owner_id: UUID,
        record: OwnerRecord,
        is_open: bool,
        tabs: list[str],
    ) -> None:
        conn = self._require_conn()
        t = self._tables
        key = str(owner_id)
        try:
            await conn.execute(
                f"""
                INSERT INTO {t.owners} (id, nick, custom_name, icon, is_open)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    nick = excluded.nick,
                    custom_name = excluded.custom_name,
                    icon = excluded.icon,
                    is_open = excluded.is_open
                """,
                (key, record.nick, record.custom_name, record.icon, int(is_open)),
            )
            await conn.execute(f"DELETE FROM {t.tabs} WHERE owner_id = ?", (key,))
            await conn.executemany(
                f"INSERT INTO {t.tabs} (owner_id, name, position) VALUES (?, ?, ?)",
                [(key, name, position) for position, name in enumerate(tabs)],
            )
            await conn.commit()
        except sqlite3.Error as exc:
            await _rollback_quietly(conn)
            raise StorageWriteError(self.backend, f"save owner {owner_id} failed: {exc}") from exc

    async def create_tab(self, owner_id: UUID, name: str) -> None:
        conn = self._require_conn()
        t = self._tables
        try:
            # Tab rows reference the owner row.
            await conn.execute(
                f"INSERT OR IGNORE INTO {t.owners} (id) VALUES (?)",
                (str(owner_id),),
            )
            await conn.execute(
                f"""
                INSERT OR IGNORE INTO {t.tabs} (owner_id, name, position)
                VALUES (?, ?, (SELECT COALESCE(MAX(position) + 1, 0) FROM {t.tabs} WHERE owner_id = ?))
                """,
                (str(owner_id), name, str(owner_id)),
            )
            await conn.commit()
        except sqlite3.Error as exc:
            await _rollback_quietly(conn)
            raise StorageWriteError(self.backend, f"create tab {name!r} failed: {exc}") from exc

    async def remove_tab(self, owner_id: UUID, name: str) -> None:
        conn = self._require_conn()
        t = self._tables
        try:
            await conn.execute(
                f"DELETE FROM {t.listings} WHERE owner_id = ? AND tab = ?",
                (str(owner_id), name),
            )
            await conn.execute(
                f"DELETE FROM {t.tabs} WHERE owner_id = ? AND name = ?",
                (str(owner_id), name),
            )
            await conn.commit()
        except sqlite3.Error as exc:
            await _rollback_quietly(conn)
            raise StorageWriteError(self.backend, f"remove tab {name!r} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StorageUnavailableError(self.backend)
        return self._conn

    @staticmethod
    def _row_to_listing(row: aiosqlite.Row) -> Listing:
        owner = row["owner_id"]
        return Listing(
            id=row["id"],
            owner_id=UUID(owner) if owner else None,
            item_type=row["item_type"],
            quantity=row["quantity"],
            buy_price=row["buy_price"],
            sell_price=row["sell_price"],
            durability=row["durability"],
            max_durability=row["max_durability"],
            stock=row["stock"],
            tab=row["tab"],
        )


def _owner_key(owner_id: UUID | None) -> str | None:
    return str(owner_id) if owner_id is not None else None


async def _rollback_quietly(conn: aiosqlite.Connection) -> None:
    try:
        await conn.rollback()
    except sqlite3.Error:
        logger.debug("Rollback after failed write also failed", exc_info=True)
