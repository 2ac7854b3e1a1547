"""Store orchestration: the manager service, flush loop and migration.

Public API
----------
* :class:`~playershop.orchestrator.manager.ShopManager` — the single entry
  point for every store operation.
* :class:`~playershop.orchestrator.scheduler.FlushScheduler` — periodic flush
  of deferred-write backends.
* :func:`~playershop.orchestrator.migration.migrate_file_to_sql` /
  :class:`~playershop.orchestrator.migration.MigrationReport` — one-shot copy
  of the JSON document into an empty SQL backend.
"""

from playershop.orchestrator.manager import ShopManager
from playershop.orchestrator.migration import MigrationReport, migrate_file_to_sql
from playershop.orchestrator.scheduler import FlushScheduler

__all__ = [
    "ShopManager",
    "FlushScheduler",
    "MigrationReport",
    "migrate_file_to_sql",
]
