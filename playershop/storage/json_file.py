"""JSON shop document backend.

:class:`FileStorage` keeps the whole store in one pretty-printed JSON file::

    {
        "nextId": 4,
        "listings": [
            {"id": 1, "itemType": "ore", "quantity": 10, "buyPrice": 5.0,
             "sellPrice": 3.0, "ownerId": "…", "durability": 0.0,
             "maxDurability": 0.0, "stock": 15, "tab": "Main"}
        ],
        "owners": [
            {"id": "…", "nick": "Steve", "customName": "", "icon": "",
             "isOpen": true, "tabs": ["Main"]}
        ]
    }

Reading and writing are whole-document.  Per-operation calls only mark the
document dirty; the manager's flush scheduler writes it later.  Listing
removal is the exception: it is flushed at once so a crash cannot bring a
deleted or sold-out listing back.

Compatibility
-------------
* Fields missing from older documents (``tab``, ``maxDurability`` …) take
  their model defaults.
* Fields this version does not know are kept, at every level, and written
  back on the next flush.
* The two legacy layouts (``NextUniqueId`` + ``Shops`` with nested
  ``Items``, and the older flat ``Players`` + ``Items``) are read and
  rewritten in the current layout on the next flush.

Writes go to a temporary file that replaces the document atomically, and run
in a worker thread so the event loop keeps serving queries meanwhile.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Final
from uuid import UUID

from pydantic import ValidationError

from playershop.core import events
from playershop.core.exceptions import StorageUnavailableError, StorageWriteError
from playershop.core.models import Listing, OwnerRecord
from playershop.core.tracker import ShopTracker
from playershop.storage.base import StorageProvider

__all__ = ["FileStorage", "EMPTY_DOCUMENT"]

logger = logging.getLogger(__name__)

#: Content of a freshly created shop document.
EMPTY_DOCUMENT: Final[dict[str, Any]] = {"nextId": 1, "listings": [], "owners": []}

_DOCUMENT_KEYS: Final[frozenset[str]] = frozenset(EMPTY_DOCUMENT)
_LEGACY_KEYS: Final[frozenset[str]] = frozenset({"NextUniqueId", "Shops", "Players", "Items"})

#: Legacy item key → current listing key.
_LEGACY_ITEM_FIELDS: Final[dict[str, str]] = {
    "UniqueId": "id",
    "ItemId": "itemType",
    "Quantity": "quantity",
    "PriceBuy": "buyPrice",
    "PriceSell": "sellPrice",
    "OwnerUuid": "ownerId",
    "Durability": "durability",
    "MaxDurability": "maxDurability",
    "Stock": "stock",
    "Tab": "tab",
}


# ---------------------------------------------------------------------------
# Legacy layouts
# ---------------------------------------------------------------------------


def _legacy_listing(item: dict[str, Any], owner_id: Any) -> dict[str, Any]:
    converted = {_LEGACY_ITEM_FIELDS.get(key, key): value for key, value in item.items()}
    if owner_id is not None:
        converted["ownerId"] = owner_id
    return converted


def _upgrade_legacy(root: dict[str, Any]) -> dict[str, Any]:
    """Convert a legacy document into the current layout."""
    listings: list[dict[str, Any]] = []
    owners: list[dict[str, Any]] = []

    if "Shops" in root:
        for shop in root.get("Shops") or []:
            owner_id = shop.get("uuid")
            if not owner_id:
                continue
            owners.append(
                {
                    "id": owner_id,
                    "nick": shop.get("nick", ""),
                    "customName": shop.get("customName", ""),
                    "icon": shop.get("shopIcon", ""),
                    "isOpen": bool(shop.get("isOpen", False)),
                    "tabs": [tab for tab in shop.get("Tabs") or [] if tab],
                }
            )
            listings.extend(_legacy_listing(item, owner_id) for item in shop.get("Items") or [])
    else:
        for player in root.get("Players") or []:
            if player.get("Uuid"):
                owners.append({"id": player["Uuid"], "nick": player.get("Nick", "")})
        listings.extend(_legacy_listing(item, None) for item in root.get("Items") or [])

    doc: dict[str, Any] = {k: v for k, v in root.items() if k not in _LEGACY_KEYS}
    doc.update(nextId=root.get("NextUniqueId", 1), listings=listings, owners=owners)
    return doc


def _is_legacy(root: dict[str, Any]) -> bool:
    return not _DOCUMENT_KEYS & root.keys() and bool(_LEGACY_KEYS & root.keys())


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------


class FileStorage(StorageProvider):
    """Whole-document JSON backend with deferred, dirty-flag driven writes.

    Args:
        path: Location of the shop document.  Parent directories are created
            on :meth:`initialize`.
    """

    backend = "file"
    requires_periodic_flush = True

    def __init__(self, path: Path | str) -> None:
        super().__init__()
        self._path = Path(path)
        self._dirty = False
        self._closed = False
        self._flush_lock = asyncio.Lock()
        self._extra: dict[str, Any] = {}

    @property
    def name(self) -> str:
        return f"file ({self._path})"

    @property
    def path(self) -> Path:
        return self._path

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    def mark_dirty(self) -> None:
        self._ensure_open()
        self._dirty = True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Create the document with empty content when it does not exist."""
        try:
            await asyncio.to_thread(self._create_if_missing)
        except OSError:
            logger.warning("Could not create shop document %s", self._path, exc_info=True)

    def _create_if_missing(self) -> None:
        if self._path.exists():
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(EMPTY_DOCUMENT, indent=2), encoding="utf-8")
        logger.info("Created empty shop document at %s", self._path)

    async def load_all(self, tracker: ShopTracker) -> None:
        self._tracker = tracker
        self._extra = {}
        self._dirty = False

        try:
            raw = await asyncio.to_thread(self._path.read_text, encoding="utf-8")
        except FileNotFoundError:
            logger.info("Shop document %s does not exist yet; starting empty", self._path)
            return
        except OSError:
            logger.warning("Could not read shop document %s; starting empty", self._path, exc_info=True)
            return

        try:
            root = json.loads(raw) if raw.strip() else dict(EMPTY_DOCUMENT)
        except json.JSONDecodeError as exc:
            logger.warning("Shop document %s is not valid JSON (%s); starting empty", self._path, exc)
            return
        if not isinstance(root, dict):
            logger.warning("Shop document %s has no top-level object; starting empty", self._path)
            return

        if _is_legacy(root):
            logger.info("Upgrading legacy shop document %s on next flush", self._path)
            root = _upgrade_legacy(root)
            self._dirty = True

        self._extra = {k: v for k, v in root.items() if k not in _DOCUMENT_KEYS}
        self._populate(tracker, root)
        logger.info(
            "Loaded shop document %s (%d owners, %d listings)",
            self._path,
            tracker.owner_count,
            tracker.listing_count,
        )

    def _populate(self, tracker: ShopTracker, doc: dict[str, Any]) -> None:
        for entry in doc.get("owners") or []:
            if not isinstance(entry, dict):
                continue
            fields = dict(entry)
            is_open = bool(fields.pop("isOpen", False))
            tabs = fields.pop("tabs", None) or []
            try:
                record = OwnerRecord.model_validate(fields)
            except ValidationError as exc:
                logger.warning("Skipping unreadable owner entry %r: %s", entry.get("id"), exc)
                continue
            tracker.put_owner(record)
            tracker.set_shop_open(record.id, is_open)
            for tab in tabs:
                if isinstance(tab, str):
                    tracker.add_tab(record.id, tab)

        unnumbered: list[Listing] = []
        for entry in doc.get("listings") or []:
            try:
                listing = Listing.model_validate(entry)
            except ValidationError as exc:
                logger.warning("Skipping unreadable listing entry: %s", exc)
                continue
            if listing.id == 0:
                unnumbered.append(listing)
                continue
            if tracker.has_listing(listing.id):
                logger.warning("Skipping duplicate listing id %d", listing.id)
                continue
            tracker.add_listing(listing)
            if listing.owner_id is not None:
                tracker.ensure_owner(listing.owner_id)

        next_id = doc.get("nextId", 1)
        tracker.next_id = next_id if isinstance(next_id, int) else 1

        for listing in unnumbered:
            tracker.add_listing(listing)
            if listing.owner_id is not None:
                tracker.ensure_owner(listing.owner_id)
        if unnumbered:
            self._dirty = True

    async def flush(self) -> None:
        """Write the bound tracker to disk.

        The document is rendered on the event loop (a consistent snapshot) and
        written in a worker thread.  The dirty flag is cleared before the
        snapshot so changes made during the write mark it again.

        Raises:
            StorageWriteError: If the file cannot be written.  The dirty flag
                is restored so the next tick retries.
        """
        tracker = self._tracker
        if tracker is None:
            return
        async with self._flush_lock:
            self._dirty = False
            payload = self._render(tracker)
            try:
                await asyncio.to_thread(self._write_atomic, payload)
            except OSError as exc:
                self._dirty = True
                logger.error(
                    "Failed to write shop document %s: %s",
                    self._path,
                    exc,
                    extra={"event": events.FLUSH_ERROR},
                )
                raise StorageWriteError(self.backend, f"could not write {self._path}: {exc}") from exc
        logger.debug("Shop document written to %s", self._path, extra={"event": events.FLUSH_OK})

    async def shutdown(self) -> None:
        self._closed = True
        logger.info("File backend closed (%s)", self._path)

    def _render(self, tracker: ShopTracker) -> str:
        owners: list[dict[str, Any]] = []
        for record in tracker.all_owners():
            entry = record.model_dump(mode="json", by_alias=True)
            entry["isOpen"] = tracker.is_shop_open(record.id)
            entry["tabs"] = tracker.tabs(record.id)
            owners.append(entry)

        doc: dict[str, Any] = dict(self._extra)
        doc["nextId"] = tracker.next_id
        doc["listings"] = [
            listing.model_dump(mode="json", by_alias=True) for listing in tracker.all_listings()
        ]
        doc["owners"] = owners
        return json.dumps(doc, indent=2, ensure_ascii=False)

    def _write_atomic(self, payload: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_name(self._path.name + ".tmp")
        tmp.write_text(payload, encoding="utf-8")
        os.replace(tmp, self._path)

    def _ensure_open(self) -> None:
        if self._closed:
            raise StorageUnavailableError(self.backend)

    # ------------------------------------------------------------------
    # Per-operation writes (deferred)
    # ------------------------------------------------------------------

    async def add_listing(self, listing: Listing) -> Listing:
        self.mark_dirty()
        return listing

    async def remove_listing(self, listing_id: int) -> bool:
        self.mark_dirty()
        await self.flush()
        return True

    async def update_listing(self, listing: Listing) -> bool:
        self.mark_dirty()
        return True

    async def save_owner_info(
        self,
        owner_id: UUID,
        record: OwnerRecord,
        is_open: bool,
        tabs: list[str],
    ) -> None:
        self.mark_dirty()

    async def create_tab(self, owner_id: UUID, name: str) -> None:
        self.mark_dirty()

    async def remove_tab(self, owner_id: UUID, name: str) -> None:
        self.mark_dirty()
