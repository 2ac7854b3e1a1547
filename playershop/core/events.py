"""Structured log event name constants for the player-shop store.

Key transitions emit a log record with an ``event`` field (passed via
``extra={"event": events.X}``).  In ``LOG_FORMAT=json`` mode the value
surfaces as ``extra.event``; in text mode the message is self-describing.

Usage example::

    import logging
    from playershop.core import events

    logger = logging.getLogger(__name__)

    logger.info("Store ready", extra={"event": events.STORE_READY})
"""

from __future__ import annotations

__all__ = [
    # Lifecycle
    "STORE_READY",
    "STORE_FALLBACK",
    "STORE_RELOADED",
    "STORE_SHUTDOWN",
    # Migration
    "MIGRATION_START",
    "MIGRATION_COMPLETE",
    "MIGRATION_RECORD_FAILED",
    # Durability
    "FLUSH_OK",
    "FLUSH_ERROR",
    "WRITE_ERROR",
    # Listings and tabs
    "LISTING_ADDED",
    "LISTING_MERGED",
    "LISTING_REMOVED",
    "TAB_CREATED",
    "TAB_REMOVED",
    "OPERATION_DECLINED",
]

# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

#: Manager finished startup (backend selected, data loaded, migration done).
STORE_READY: str = "STORE_READY"

#: SQL backend failed to initialise; the file backend is used instead.
STORE_FALLBACK: str = "STORE_FALLBACK"

#: In-memory state was rebuilt from the backend on request.
STORE_RELOADED: str = "STORE_RELOADED"

#: Manager shut down after persisting everything.
STORE_SHUTDOWN: str = "STORE_SHUTDOWN"

# ---------------------------------------------------------------------------
# Migration
# ---------------------------------------------------------------------------

#: File-to-SQL copy started (SQL backend was empty).
MIGRATION_START: str = "MIGRATION_START"

#: File-to-SQL copy finished; summary counters attached to the message.
MIGRATION_COMPLETE: str = "MIGRATION_COMPLETE"

#: One owner or listing could not be copied and was skipped.
MIGRATION_RECORD_FAILED: str = "MIGRATION_RECORD_FAILED"

# ---------------------------------------------------------------------------
# Durability
# ---------------------------------------------------------------------------

#: The shop document was written to disk.
FLUSH_OK: str = "FLUSH_OK"

#: Writing the shop document failed; the dirty flag stays set.
FLUSH_ERROR: str = "FLUSH_ERROR"

#: A backend write failed after the in-memory change was applied.
WRITE_ERROR: str = "WRITE_ERROR"

# ---------------------------------------------------------------------------
# Listings and tabs
# ---------------------------------------------------------------------------

#: A new listing received an id and entered the store.
LISTING_ADDED: str = "LISTING_ADDED"

#: A deposit was stacked onto an existing matching listing.
LISTING_MERGED: str = "LISTING_MERGED"

#: A listing was removed by id.
LISTING_REMOVED: str = "LISTING_REMOVED"

#: A tab was created for an owner.
TAB_CREATED: str = "TAB_CREATED"

#: A tab and every listing under it were removed.
TAB_REMOVED: str = "TAB_REMOVED"

#: Invalid input was rejected before touching the tracker.
OPERATION_DECLINED: str = "OPERATION_DECLINED"
