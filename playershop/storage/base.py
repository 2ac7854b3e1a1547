"""Storage provider contract shared by the file and SQL backends.

Every backend subclasses :class:`StorageProvider`.  The manager holds exactly
one provider, chosen once at startup, and calls the same methods whatever the
backend.  The two write models differ **inside** the providers:

* **File** — per-operation calls only mark the document dirty; the manager's
  flush scheduler calls :meth:`StorageProvider.flush` periodically.
  :attr:`requires_periodic_flush` is ``True``.
* **SQL** — every per-operation call is one awaited row-level write and is
  durable when it returns.  :meth:`flush` is a no-op.

Design decisions
----------------
* **Bound tracker**: :meth:`load_all` binds the provider to the tracker it
  filled.  Whole-state operations (:meth:`flush`, :meth:`checkpoint`) persist
  that tracker, so the manager never hands state around after startup.
* **Errors**: write methods raise
  :class:`~playershop.core.exceptions.StorageError` subclasses.  Reads at
  startup never raise past :meth:`load_all`; a broken source loads as empty.
* **Async context manager**: ``async with provider:`` calls :meth:`shutdown`
  on exit.

Typical usage::

    provider = FileStorage(settings.shop_file_path)
    await provider.initialize()
    await provider.load_all(tracker)
    ...
    await provider.checkpoint()
    await provider.shutdown()
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from types import TracebackType
from typing import ClassVar
from uuid import UUID

from playershop.core.models import Listing, OwnerRecord
from playershop.core.tracker import ShopTracker

__all__ = ["StorageProvider"]

logger = logging.getLogger(__name__)


class StorageProvider(ABC):
    """Abstract base for the persistence backends.

    Attributes:
        backend: Short label used in logs and error messages.
        requires_periodic_flush: ``True`` when writes are deferred and the
            manager must run a flush scheduler for this provider.
    """

    backend: ClassVar[str]
    requires_periodic_flush: ClassVar[bool] = False

    def __init__(self) -> None:
        self._tracker: ShopTracker | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        """Human-readable description of where data lives."""
        return self.backend

    @property
    def is_dirty(self) -> bool:
        """``True`` when in-memory changes have not been written yet."""
        return False

    @property
    def tracker(self) -> ShopTracker | None:
        """Tracker bound by the last successful :meth:`load_all`, if any."""
        return self._tracker

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend (create file / open connection and schema)."""

    @abstractmethod
    async def load_all(self, tracker: ShopTracker) -> None:
        """Fill *tracker* from durable storage and bind to it.

        Never raises for unreadable data: the failure is logged and the
        tracker is left empty.
        """

    async def flush(self) -> None:  # noqa: B027
        """Write deferred changes.  No-op for immediately-durable backends."""

    async def checkpoint(self) -> None:
        """Persist the complete bound state, whatever the dirty flag says.

        Called by the manager right before :meth:`shutdown`.
        """
        await self.flush()

    async def shutdown(self) -> None:  # noqa: B027
        """Release resources.  Writes issued afterwards are rejected."""

    async def __aenter__(self) -> StorageProvider:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.shutdown()

    # ------------------------------------------------------------------
    # Per-operation writes
    # ------------------------------------------------------------------

    @abstractmethod
    async def add_listing(self, listing: Listing) -> Listing:
        """Persist a new listing.

        Backends that generate ids return the listing with ``id`` filled in;
        others return it unchanged (``id == 0``) and the tracker assigns one.
        """

    @abstractmethod
    async def remove_listing(self, listing_id: int) -> bool:
        """Delete one listing; ``True`` once the removal is durable."""

    @abstractmethod
    async def update_listing(self, listing: Listing) -> bool:
        """Persist the current stock, prices and metadata of *listing*."""

    @abstractmethod
    async def save_owner_info(
        self,
        owner_id: UUID,
        record: OwnerRecord,
        is_open: bool,
        tabs: list[str],
    ) -> None:
        """Upsert the owner record together with its open flag and tabs."""

    @abstractmethod
    async def create_tab(self, owner_id: UUID, name: str) -> None:
        """Persist one new tab of *owner_id*."""

    @abstractmethod
    async def remove_tab(self, owner_id: UUID, name: str) -> None:
        """Delete the tab and every listing under it as one unit."""
