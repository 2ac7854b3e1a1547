"""One-shot copy of the JSON shop document into an empty SQL backend.

The manager calls :func:`migrate_file_to_sql` at startup when the SQL backend
holds neither owners nor listings.  The document is loaded into a scratch
tracker and replayed as ordinary SQL writes:

1. each owner's record, open flag and tabs,
2. then that owner's listings,
3. and finally listings without an owner.

Every record is attempted independently.  A failure is logged, counted in the
returned :class:`MigrationReport` and skipped; it never aborts the run.  The
document itself is left untouched.

Typical usage::

    report = await migrate_file_to_sql(FileStorage(path), sql_storage)
    if report.migrated:
        ...  # reload the SQL backend
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from playershop.core import events
from playershop.core.exceptions import MigrationError, StorageError
from playershop.core.models import Listing
from playershop.core.tracker import ShopTracker
from playershop.storage.json_file import FileStorage
from playershop.storage.sql import SqlStorage

__all__ = ["MigrationReport", "migrate_file_to_sql"]

logger = logging.getLogger(__name__)


@dataclass
class MigrationReport:
    """Counters of one migration run."""

    owners_migrated: int = 0
    listings_migrated: int = 0
    owners_failed: int = 0
    listings_failed: int = 0

    @property
    def migrated(self) -> bool:
        """``True`` if at least one record reached the SQL backend."""
        return self.owners_migrated > 0 or self.listings_migrated > 0

    @property
    def failed(self) -> int:
        return self.owners_failed + self.listings_failed

    def __str__(self) -> str:
        return (
            f"owners={self.owners_migrated} listings={self.listings_migrated} "
            f"failed={self.failed}"
        )


async def migrate_file_to_sql(source: FileStorage, target: SqlStorage) -> MigrationReport:
    """Replay the content of *source* into *target*.

    *target* must already be initialised.  Its bound tracker is not touched;
    the caller reloads it when :attr:`MigrationReport.migrated` is set.

    Args:
        source: File backend to read from (not initialised, never written).
        target: Initialised, empty SQL backend.

    Returns:
        The per-record outcome counters.
    """
    report = MigrationReport()
    scratch = ShopTracker()
    await source.load_all(scratch)
    if scratch.is_empty and not scratch.listing_count:
        logger.info("No file data to migrate from %s", source.name)
        return report

    logger.info(
        "Migrating %d owner(s) and %d listing(s) from %s to %s",
        scratch.owner_count,
        scratch.listing_count,
        source.name,
        target.name,
        extra={"event": events.MIGRATION_START},
    )

    for record in scratch.all_owners():
        try:
            await target.save_owner_info(
                record.id,
                record,
                scratch.is_shop_open(record.id),
                scratch.tabs(record.id),
            )
        except StorageError as exc:
            report.owners_failed += 1
            _log_failure(MigrationError(f"owner {record.id}", str(exc)))
            continue
        report.owners_migrated += 1

        for listing in scratch.listings_by_owner(record.id):
            await _copy_listing(listing, target, report)

    for listing in scratch.listings_by_owner(None):
        await _copy_listing(listing, target, report)

    logger.info(
        "Migration finished (%s)",
        report,
        extra={"event": events.MIGRATION_COMPLETE},
    )
    return report


async def _copy_listing(listing: Listing, target: SqlStorage, report: MigrationReport) -> None:
    # The SQL backend assigns a fresh key; the copy keeps the scratch id intact.
    try:
        await target.add_listing(listing.model_copy(update={"id": 0}))
    except StorageError as exc:
        report.listings_failed += 1
        _log_failure(MigrationError(f"listing {listing.id}", str(exc)))
        return
    report.listings_migrated += 1


def _log_failure(error: MigrationError) -> None:
    logger.warning("%s", error, extra={"event": events.MIGRATION_RECORD_FAILED})
