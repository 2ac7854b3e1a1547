"""In-memory index over listings and owner records.

:class:`ShopTracker` is the authoritative in-memory state of the store.  It
assigns listing ids, answers every query, and cascades tab removal.  It does
no I/O and never decides when to persist; that belongs to the storage
providers and the manager.

Id assignment has two modes, selected per call by the incoming listing:

* ``listing.id == 0`` — the tracker assigns :attr:`next_id` and advances it
  (file backend).
* ``listing.id > 0`` — the id came from an external generator (the SQL
  backend's autoincrement key, or a document being loaded); the tracker keeps
  it and only moves :attr:`next_id` past it.

Unknown ids, owners and tabs are a normal outcome: lookups return ``None``,
``False`` or an empty list, never raise.

The tracker is **not** safe for unsynchronised concurrent mutation; the
manager serialises every write.
"""

from __future__ import annotations

import logging
from uuid import UUID

from playershop.core.models import Listing, OwnerRecord

__all__ = ["ShopTracker"]

logger = logging.getLogger(__name__)


class ShopTracker:
    """Listings keyed by id plus per-owner records, open flags and tabs."""

    def __init__(self) -> None:
        self._listings: dict[int, Listing] = {}
        self._owners: dict[UUID, OwnerRecord] = {}
        self._open: dict[UUID, bool] = {}
        self._tabs: dict[UUID, list[str]] = {}
        self._next_id = 1

    # ------------------------------------------------------------------
    # Id counter
    # ------------------------------------------------------------------

    @property
    def next_id(self) -> int:
        """Id the next self-assigned listing will receive."""
        return self._next_id

    @next_id.setter
    def next_id(self, value: int) -> None:
        # Never hand out an id that is already in use.
        floor = max(self._listings, default=0) + 1
        self._next_id = max(value, floor, 1)

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def add_listing(self, listing: Listing) -> Listing:
        """Insert *listing* and return it with its id filled in.

        Raises:
            ValueError: If a pre-assigned id is already present.
        """
        if listing.id <= 0:
            listing.id = self._next_id
            self._next_id += 1
        else:
            if listing.id in self._listings:
                raise ValueError(f"listing id {listing.id} is already tracked")
            if listing.id >= self._next_id:
                self._next_id = listing.id + 1
        self._listings[listing.id] = listing
        return listing

    def remove_listing(self, listing_id: int) -> bool:
        return self._listings.pop(listing_id, None) is not None

    def get_listing(self, listing_id: int) -> Listing | None:
        return self._listings.get(listing_id)

    def has_listing(self, listing_id: int) -> bool:
        return listing_id in self._listings

    def all_listings(self) -> list[Listing]:
        return list(self._listings.values())

    @property
    def listing_count(self) -> int:
        return len(self._listings)

    def listings_by_owner(self, owner_id: UUID | None) -> list[Listing]:
        """Listings owned by *owner_id*; ``None`` selects house listings."""
        return [listing for listing in self._listings.values() if listing.owner_id == owner_id]

    def listings_by_tab(self, owner_id: UUID | None, tab: str | None) -> list[Listing]:
        """Listings of *owner_id* under *tab*.

        An empty or ``None`` tab selects the uncategorised listings, which is
        where documents written before tabs existed put everything.
        """
        wanted = tab or ""
        return [
            listing
            for listing in self._listings.values()
            if listing.owner_id == owner_id and listing.tab == wanted
        ]

    # ------------------------------------------------------------------
    # Owners
    # ------------------------------------------------------------------

    def upsert_owner(self, owner_id: UUID, nick: str | None) -> OwnerRecord:
        """Create the owner record, or update only its nick if present.

        ``custom_name`` and ``icon`` of an existing record are preserved.
        """
        record = self._owners.get(owner_id)
        if record is None:
            record = OwnerRecord(id=owner_id, nick=nick or "")
            self._owners[owner_id] = record
        else:
            record.nick = nick or ""
        return record

    def ensure_owner(self, owner_id: UUID) -> tuple[OwnerRecord, bool]:
        """Return ``(record, created)``, creating a blank record if absent."""
        record = self._owners.get(owner_id)
        if record is not None:
            return record, False
        record = OwnerRecord(id=owner_id)
        self._owners[owner_id] = record
        return record, True

    def put_owner(self, record: OwnerRecord) -> None:
        """Store *record* as-is, replacing any previous record (loaders only)."""
        self._owners[record.id] = record

    def get_owner(self, owner_id: UUID) -> OwnerRecord | None:
        return self._owners.get(owner_id)

    def all_owners(self) -> list[OwnerRecord]:
        return list(self._owners.values())

    @property
    def owner_count(self) -> int:
        return len(self._owners)

    @property
    def is_empty(self) -> bool:
        """``True`` when no owner record exists."""
        return not self._owners

    # ------------------------------------------------------------------
    # Open state
    # ------------------------------------------------------------------

    def set_shop_open(self, owner_id: UUID, is_open: bool) -> None:
        self._open[owner_id] = bool(is_open)

    def is_shop_open(self, owner_id: UUID) -> bool:
        """Unknown owners are closed."""
        return self._open.get(owner_id, False)

    # ------------------------------------------------------------------
    # Tabs
    # ------------------------------------------------------------------

    def tabs(self, owner_id: UUID) -> list[str]:
        """Copy of the owner's tabs in creation order."""
        return list(self._tabs.get(owner_id, ()))

    def has_tab(self, owner_id: UUID, name: str) -> bool:
        if not name:
            return False
        return name in self._tabs.get(owner_id, ())

    def add_tab(self, owner_id: UUID, name: str) -> None:
        """Append *name* to the owner's tabs; no-op if present or empty.

        The tab cap is the caller's responsibility.
        """
        if not name:
            return
        owner_tabs = self._tabs.setdefault(owner_id, [])
        if name not in owner_tabs:
            owner_tabs.append(name)

    def remove_tab(self, owner_id: UUID, name: str) -> bool:
        """Remove the tab and every listing under ``(owner_id, name)``.

        Returns:
            ``True`` if the tab existed.
        """
        owner_tabs = self._tabs.get(owner_id)
        if not name or owner_tabs is None or name not in owner_tabs:
            return False
        doomed = [
            listing.id
            for listing in self._listings.values()
            if listing.owner_id == owner_id and listing.tab == name
        ]
        for listing_id in doomed:
            del self._listings[listing_id]
        owner_tabs.remove(name)
        logger.debug("Tab %r of %s removed with %d listing(s)", name, owner_id, len(doomed))
        return True
