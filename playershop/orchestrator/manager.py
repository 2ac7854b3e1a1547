"""The player-shop service: one entry point for every store operation.

:class:`ShopManager` owns the in-memory :class:`~playershop.core.tracker.ShopTracker`
and exactly one :class:`~playershop.storage.base.StorageProvider`, chosen once
at startup.

Startup (:meth:`ShopManager.start`)
-----------------------------------
1. Build the backend selected by ``ENABLE_SQL``.  If the SQL backend cannot
   be opened, fall back to the JSON document.
2. Load the backend into a fresh tracker.
3. SQL only: if the loaded tracker has neither owners nor listings, copy
   the JSON document into SQL (:func:`~playershop.orchestrator.migration.migrate_file_to_sql`) and
   reload.  Existing SQL data is never overwritten.
4. Start the :class:`~playershop.orchestrator.scheduler.FlushScheduler` when
   the provider defers its writes.

Write policy
------------
Mutations are serialised by one :class:`asyncio.Lock`; queries read the
tracker directly and never wait for a lock or a flush.  Each mutation applies
its change to the tracker and then hands the same change to the provider.
The provider decides what that means: the SQL backend writes and commits a
row before returning, the file backend only marks its document dirty (except
listing removal, which it flushes at once).

Listing creation is the one exception to "tracker first": the SQL backend
generates listing ids, so the listing is stored in the backend first and
enters the tracker with the generated id.  If that insert fails the listing
is not tracked at all.

Outcomes
--------
Not found, invalid input and backend failure are all return values
(``False`` / ``None``), never exceptions.  A failed backend write is logged
and the in-memory change is **kept**; the next successful write or flush of
the same entity brings the backend back in line.

Shutdown (:meth:`ShopManager.shutdown`) is strictly sequential: stop the flush
loop, persist everything, close the backend.

Typical usage::

    async with ShopManager(settings) as shop:
        listing = await shop.add_or_update_listing(
            "ore", owner_id=player, quantity=10, buy_price=5, sell_price=3, stock=10
        )
        shop.listings_by_owner(player)
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import AsyncIterator, Awaitable
from contextlib import asynccontextmanager
from types import TracebackType
from uuid import UUID

from pydantic import ValidationError

from playershop.core import events
from playershop.core.exceptions import (
    ManagerClosedError,
    StorageConnectionError,
    StorageError,
    StorageReadError,
)
from playershop.core.logging_config import owner_scope
from playershop.core.models import MATCH_TOLERANCE, MAX_TABS, Listing
from playershop.core.settings import Settings, load_settings
from playershop.core.tracker import ShopTracker
from playershop.orchestrator.migration import MigrationReport, migrate_file_to_sql
from playershop.orchestrator.scheduler import FlushScheduler
from playershop.storage import build_file_storage, build_storage
from playershop.storage.base import StorageProvider
from playershop.storage.sql import SqlStorage

__all__ = ["ShopManager"]

logger = logging.getLogger(__name__)


def _is_amount(value: float) -> bool:
    return math.isfinite(value) and value >= 0


class ShopManager:
    """Explicitly constructed store service.

    Args:
        settings: Application settings.  Loaded from the environment if
            ``None``; invalid values raise
            :class:`~playershop.core.exceptions.ConfigError`.
        storage: Pre-built provider to use instead of the one selected by
            ``settings.enable_sql`` (tests, embedding).
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        storage: StorageProvider | None = None,
    ) -> None:
        self._settings = settings if settings is not None else load_settings()
        self._storage: StorageProvider = (
            storage if storage is not None else build_storage(self._settings)
        )
        self._tracker = ShopTracker()
        self._scheduler: FlushScheduler | None = None
        self._lock = asyncio.Lock()
        self._started = False
        self._closed = False
        self.migration_report: MigrationReport | None = None

    @classmethod
    async def open(
        cls,
        settings: Settings | None = None,
        *,
        storage: StorageProvider | None = None,
    ) -> ShopManager:
        """Construct and start a manager in one call."""
        manager = cls(settings, storage=storage)
        await manager.start()
        return manager

    async def __aenter__(self) -> ShopManager:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.shutdown()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def storage(self) -> StorageProvider:
        return self._storage

    @property
    def tracker(self) -> ShopTracker:
        return self._tracker

    @property
    def backend_name(self) -> str:
        """Short label of the active backend (``"file"`` or ``"sql"``)."""
        return self._storage.backend

    @property
    def is_running(self) -> bool:
        return self._started and not self._closed

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Select the backend, load it, migrate if needed and start flushing.

        Must complete before the manager is handed to callers.

        Raises:
            ManagerClosedError: If the manager was already shut down.
            StorageReadError: If the backend content cannot be read.  The
                backend is closed again and the manager stays unstarted.
        """
        if self._closed:
            raise ManagerClosedError("manager has been shut down")
        if self._started:
            return

        try:
            await self._storage.initialize()
        except StorageConnectionError as exc:
            logger.error(
                "SQL backend unavailable, falling back to the shop file: %s",
                exc,
                extra={"event": events.STORE_FALLBACK},
            )
            self._storage = build_file_storage(self._settings)
            await self._storage.initialize()

        tracker = ShopTracker()
        try:
            await self._storage.load_all(tracker)
        except StorageReadError:
            await self._storage.shutdown()
            raise

        if isinstance(self._storage, SqlStorage) and tracker.is_empty and not tracker.listing_count:
            report = await migrate_file_to_sql(build_file_storage(self._settings), self._storage)
            self.migration_report = report
            if report.migrated:
                tracker = ShopTracker()
                await self._storage.load_all(tracker)
        self._tracker = tracker

        if self._storage.requires_periodic_flush:
            self._scheduler = FlushScheduler(self._storage, interval=self._settings.flush_interval)
            self._scheduler.start()

        self._started = True
        logger.info(
            "Player shop ready on %s (%d owners, %d listings)",
            self._storage.name,
            tracker.owner_count,
            tracker.listing_count,
            extra={"event": events.STORE_READY},
        )

    async def shutdown(self) -> None:
        """Stop the flush loop, persist everything, then close the backend.

        Each step finishes before the next begins; writes issued after the
        backend has closed would be rejected.  Calling it twice is a no-op.
        """
        if self._closed or not self._started:
            self._closed = True
            return
        async with self._lock:
            self._closed = True
            if self._scheduler is not None:
                await self._scheduler.stop()
                self._scheduler = None
            try:
                await self._storage.checkpoint()
            except StorageError as exc:
                logger.error(
                    "Final persist before shutdown failed: %s",
                    exc,
                    extra={"event": events.WRITE_ERROR},
                )
            await self._storage.shutdown()
        logger.info("Player shop shut down", extra={"event": events.STORE_SHUTDOWN})

    async def reload(self) -> bool:
        """Rebuild the in-memory state from the backend.

        Unflushed file changes are discarded; call :meth:`flush` first to keep
        them.  If the backend cannot be read,
        :class:`~playershop.core.exceptions.StorageReadError` propagates and the
        current state stays in place.

        Returns:
            ``True`` once the new state is in place.
        """
        async with self._locked():
            if self._storage.is_dirty:
                logger.warning("Reloading with unflushed changes; they are discarded")
            tracker = ShopTracker()
            await self._storage.load_all(tracker)
            self._tracker = tracker
        logger.info(
            "Player shop reloaded from %s (%d owners, %d listings)",
            self._storage.name,
            tracker.owner_count,
            tracker.listing_count,
            extra={"event": events.STORE_RELOADED},
        )
        return True

    async def flush(self) -> bool:
        """Write deferred changes now; ``False`` if the write failed."""
        async with self._locked():
            return await self._persist("flush", self._storage.flush())

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    async def add_listing(
        self,
        item_type: str,
        *,
        owner_id: UUID | None = None,
        quantity: int = 1,
        buy_price: float = 0.0,
        sell_price: float = 0.0,
        durability: float = 0.0,
        max_durability: float = 0.0,
        stock: int = 0,
        tab: str | None = "",
    ) -> Listing | None:
        """Create a new listing, without looking for one to stack onto.

        Returns:
            The stored listing with its id, or ``None`` if the input was
            declined or the backend could not store it.
        """
        async with self._mutation(owner_id):
            listing = self._build_listing(
                item_type,
                owner_id=owner_id,
                quantity=quantity,
                buy_price=buy_price,
                sell_price=sell_price,
                durability=durability,
                max_durability=max_durability,
                stock=stock,
                tab=tab,
            )
            if listing is None:
                return None
            return await self._insert_listing(listing)

    async def add_or_update_listing(
        self,
        item_type: str,
        *,
        owner_id: UUID | None = None,
        quantity: int = 1,
        buy_price: float = 0.0,
        sell_price: float = 0.0,
        durability: float = 0.0,
        max_durability: float = 0.0,
        stock: int = 0,
        tab: str | None = "",
    ) -> Listing | None:
        """Stack *stock* onto a matching listing of the owner, or create one.

        A listing matches when item type and tab are equal and durability is
        within :data:`~playershop.core.models.MATCH_TOLERANCE`.  On a match its
        stock grows by *stock*; a price is overwritten only when it differs by
        more than the tolerance.

        Returns:
            The merged or new listing, or ``None`` if declined or not stored.
        """
        async with self._mutation(owner_id):
            candidate = self._build_listing(
                item_type,
                owner_id=owner_id,
                quantity=quantity,
                buy_price=buy_price,
                sell_price=sell_price,
                durability=durability,
                max_durability=max_durability,
                stock=stock,
                tab=tab,
            )
            if candidate is None:
                return None

            existing = next(
                (
                    listing
                    for listing in self._tracker.listings_by_owner(owner_id)
                    if listing.matches_stack(candidate.item_type, candidate.tab, candidate.durability)
                ),
                None,
            )
            if existing is None:
                return await self._insert_listing(candidate)

            existing.stock += candidate.stock
            if abs(existing.buy_price - candidate.buy_price) > MATCH_TOLERANCE:
                existing.buy_price = candidate.buy_price
            if abs(existing.sell_price - candidate.sell_price) > MATCH_TOLERANCE:
                existing.sell_price = candidate.sell_price
            logger.debug(
                "Stacked %d onto listing %d (stock now %d)",
                candidate.stock,
                existing.id,
                existing.stock,
                extra={"event": events.LISTING_MERGED},
            )
            if not await self._persist(
                f"update listing {existing.id}", self._storage.update_listing(existing)
            ):
                return None
            return existing

    async def remove_listing(self, listing_id: int) -> bool:
        """Remove one listing.

        Returns:
            ``True`` if the listing existed and its removal is durable.
            Removing an unknown id returns ``False`` and changes nothing.
        """
        listing = self._tracker.get_listing(listing_id)
        async with self._mutation(listing.owner_id if listing else None):
            if not self._tracker.remove_listing(listing_id):
                logger.debug("Listing %d is not tracked; nothing removed", listing_id)
                return False
            logger.info(
                "Listing %d removed",
                listing_id,
                extra={"event": events.LISTING_REMOVED},
            )
            return await self._persist(
                f"remove listing {listing_id}", self._storage.remove_listing(listing_id)
            )

    async def decrease_stock(self, listing_id: int, amount: int) -> bool:
        """Take *amount* lots off a listing's stock, stopping at zero.

        A listing that reaches zero stock is kept so it can be restocked.
        """
        seen = self._tracker.get_listing(listing_id)
        if seen is None:
            return False
        async with self._mutation(seen.owner_id):
            if amount < 0:
                return self._decline("negative stock decrease %d", amount)
            # A reload may have replaced the tracker while waiting for the lock.
            listing = self._tracker.get_listing(listing_id)
            if listing is None:
                return False
            listing.stock = max(0, listing.stock - amount)
            return await self._persist(
                f"update listing {listing_id}", self._storage.update_listing(listing)
            )

    async def update_price(self, listing_id: int, buy_price: float, sell_price: float) -> bool:
        seen = self._tracker.get_listing(listing_id)
        if seen is None:
            return False
        async with self._mutation(seen.owner_id):
            if not (_is_amount(buy_price) and _is_amount(sell_price)):
                return self._decline("invalid prices %r/%r", buy_price, sell_price)
            listing = self._tracker.get_listing(listing_id)
            if listing is None:
                return False
            listing.buy_price = buy_price
            listing.sell_price = sell_price
            return await self._persist(
                f"update listing {listing_id}", self._storage.update_listing(listing)
            )

    def get_listing(self, listing_id: int) -> Listing | None:
        return self._tracker.get_listing(listing_id)

    def has_listing(self, listing_id: int) -> bool:
        return self._tracker.has_listing(listing_id)

    def all_listings(self) -> list[Listing]:
        return self._tracker.all_listings()

    def listings_by_owner(self, owner_id: UUID | None) -> list[Listing]:
        return self._tracker.listings_by_owner(owner_id)

    def listings_by_tab(self, owner_id: UUID | None, tab: str | None) -> list[Listing]:
        return self._tracker.listings_by_tab(owner_id, tab)

    def open_shop_listings(self) -> list[Listing]:
        """Listings of open shops that still have stock."""
        return [
            listing
            for listing in self._tracker.all_listings()
            if listing.owner_id is not None
            and listing.stock > 0
            and self._tracker.is_shop_open(listing.owner_id)
        ]

    def open_shop_owners(self) -> list[UUID]:
        """Owners whose shop is open and holds at least one listing."""
        return [
            record.id
            for record in self._tracker.all_owners()
            if self._tracker.is_shop_open(record.id) and self._tracker.listings_by_owner(record.id)
        ]

    # ------------------------------------------------------------------
    # Owners
    # ------------------------------------------------------------------

    async def update_owner_nick(self, owner_id: UUID, nick: str | None) -> bool:
        """Create the owner record or update only its nick."""
        async with self._mutation(owner_id):
            self._tracker.upsert_owner(owner_id, nick)
            return await self._save_owner(owner_id)

    async def rename_shop(self, owner_id: UUID, custom_name: str) -> bool:
        """Set the shop's display name, creating the owner record if needed."""
        async with self._mutation(owner_id):
            if not custom_name or not custom_name.strip():
                return self._decline("empty shop name")
            record, _ = self._tracker.ensure_owner(owner_id)
            record.custom_name = custom_name
            return await self._save_owner(owner_id)

    async def set_icon(self, owner_id: UUID, item_type: str) -> bool:
        """Set the item type shown as the shop's icon."""
        async with self._mutation(owner_id):
            if not item_type or not item_type.strip():
                return self._decline("empty icon item type")
            record, _ = self._tracker.ensure_owner(owner_id)
            record.icon = item_type
            return await self._save_owner(owner_id)

    async def set_shop_open(self, owner_id: UUID, is_open: bool) -> bool:
        """Open or close a shop.

        The flag of an owner without a record is kept in memory only; it is
        persisted once the record exists.
        """
        async with self._mutation(owner_id):
            self._tracker.set_shop_open(owner_id, is_open)
            if self._tracker.get_owner(owner_id) is None:
                return True
            return await self._save_owner(owner_id)

    def is_shop_open(self, owner_id: UUID) -> bool:
        return self._tracker.is_shop_open(owner_id)

    def owner_nick(self, owner_id: UUID) -> str | None:
        record = self._tracker.get_owner(owner_id)
        return record.nick if record is not None else None

    def shop_custom_name(self, owner_id: UUID) -> str | None:
        """Custom shop name, or ``None`` when unset."""
        record = self._tracker.get_owner(owner_id)
        if record is None:
            return None
        return record.custom_name or None

    def shop_icon(self, owner_id: UUID) -> str | None:
        record = self._tracker.get_owner(owner_id)
        if record is None:
            return None
        return record.icon or None

    # ------------------------------------------------------------------
    # Tabs
    # ------------------------------------------------------------------

    async def create_tab(self, owner_id: UUID, name: str) -> bool:
        """Add a tab to the owner's shop.

        Creating a tab that already exists succeeds without changes.  A new
        tab is declined once the owner holds :data:`~playershop.core.models.MAX_TABS`.
        """
        async with self._mutation(owner_id):
            if not name or not name.strip():
                return self._decline("empty tab name")
            if self._tracker.has_tab(owner_id, name):
                return True
            if len(self._tracker.tabs(owner_id)) >= MAX_TABS:
                return self._decline("owner already has %d tabs", MAX_TABS)

            self._tracker.ensure_owner(owner_id)
            self._tracker.add_tab(owner_id, name)
            logger.info("Tab %r created", name, extra={"event": events.TAB_CREATED})

            if not await self._persist(
                f"create tab {name!r}", self._storage.create_tab(owner_id, name)
            ):
                return False
            return await self._save_owner(owner_id)

    async def remove_tab(self, owner_id: UUID, name: str) -> bool:
        """Remove a tab and every listing under it.

        Returns:
            ``False`` if the owner has no such tab or the backend failed.
        """
        async with self._mutation(owner_id):
            listing_count = len(self._tracker.listings_by_tab(owner_id, name)) if name else 0
            if not self._tracker.remove_tab(owner_id, name):
                return False
            logger.info(
                "Tab %r removed with %d listing(s)",
                name,
                listing_count,
                extra={"event": events.TAB_REMOVED},
            )
            if not await self._persist(
                f"remove tab {name!r}", self._storage.remove_tab(owner_id, name)
            ):
                return False
            return await self._save_owner(owner_id)

    def has_tab(self, owner_id: UUID, name: str) -> bool:
        return self._tracker.has_tab(owner_id, name)

    def all_tabs(self, owner_id: UUID) -> list[str]:
        return self._tracker.tabs(owner_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _locked(self) -> AsyncIterator[None]:
        async with self._lock:
            if not self.is_running:
                raise ManagerClosedError("manager is not running")
            yield

    @asynccontextmanager
    async def _mutation(self, owner_id: UUID | None) -> AsyncIterator[None]:
        with owner_scope(owner_id):
            async with self._locked():
                yield

    def _decline(self, reason: str, *args: object) -> bool:
        logger.info("Declined: " + reason, *args, extra={"event": events.OPERATION_DECLINED})
        return False

    async def _persist(self, what: str, write: Awaitable[object]) -> bool:
        try:
            await write
        except StorageError as exc:
            logger.error(
                "Backend write failed (%s); in-memory change kept: %s",
                what,
                exc,
                extra={"event": events.WRITE_ERROR},
            )
            return False
        return True

    async def _save_owner(self, owner_id: UUID) -> bool:
        record = self._tracker.get_owner(owner_id)
        if record is None:
            return True
        return await self._persist(
            f"save owner {owner_id}",
            self._storage.save_owner_info(
                owner_id,
                record,
                self._tracker.is_shop_open(owner_id),
                self._tracker.tabs(owner_id),
            ),
        )

    def _build_listing(
        self,
        item_type: str,
        *,
        owner_id: UUID | None,
        quantity: int,
        buy_price: float,
        sell_price: float,
        durability: float,
        max_durability: float,
        stock: int,
        tab: str | None,
    ) -> Listing | None:
        """Validate listing input; ``None`` (logged) when it is declined."""
        tab = tab or ""
        if not item_type or not item_type.strip():
            self._decline("empty item type")
            return None
        if quantity < 1 or stock < 0:
            self._decline("quantity %d / stock %d out of range", quantity, stock)
            return None
        if not all(_is_amount(v) for v in (buy_price, sell_price, durability, max_durability)):
            self._decline("negative or non-finite price or durability")
            return None
        if tab and (owner_id is None or not self._tracker.has_tab(owner_id, tab)):
            self._decline("tab %r does not exist", tab)
            return None
        try:
            return Listing(
                item_type=item_type,
                owner_id=owner_id,
                quantity=quantity,
                buy_price=buy_price,
                sell_price=sell_price,
                durability=durability,
                max_durability=max_durability,
                stock=stock,
                tab=tab,
            )
        except ValidationError as exc:
            self._decline("invalid listing: %s", exc)
            return None

    async def _insert_listing(self, listing: Listing) -> Listing | None:
        owner_id = listing.owner_id
        owner_created = False
        if owner_id is not None:
            _, owner_created = self._tracker.ensure_owner(owner_id)

        try:
            stored = await self._storage.add_listing(listing)
        except StorageError as exc:
            logger.error(
                "Backend rejected new %s listing; not tracked: %s",
                listing.item_type,
                exc,
                extra={"event": events.WRITE_ERROR},
            )
            return None

        try:
            self._tracker.add_listing(stored)
        except ValueError:
            logger.exception("Backend returned listing id %d that is already tracked", stored.id)
            return None

        logger.info(
            "Listing %d added (%s x%d, stock %d)",
            stored.id,
            stored.item_type,
            stored.quantity,
            stored.stock,
            extra={"event": events.LISTING_ADDED},
        )
        if owner_created and owner_id is not None and not await self._save_owner(owner_id):
            return None
        return stored
