"""Core domain models, tracker, settings, logging configuration and errors."""

from playershop.core.exceptions import (
    ConfigError,
    ManagerClosedError,
    ManagerError,
    MigrationError,
    PlayerShopError,
    StorageConnectionError,
    StorageError,
    StorageReadError,
    StorageUnavailableError,
    StorageWriteError,
)
from playershop.core.logging_config import JsonFormatter, configure_logging, owner_scope
from playershop.core.models import MATCH_TOLERANCE, MAX_TABS, Listing, OwnerRecord
from playershop.core.settings import Settings, load_settings
from playershop.core.tracker import ShopTracker

__all__ = [
    # Logging
    "configure_logging",
    "JsonFormatter",
    "owner_scope",
    # Domain models
    "Listing",
    "OwnerRecord",
    "MAX_TABS",
    "MATCH_TOLERANCE",
    "ShopTracker",
    # Settings
    "Settings",
    "load_settings",
    # Exceptions
    "PlayerShopError",
    "ConfigError",
    "StorageError",
    "StorageReadError",
    "StorageWriteError",
    "StorageConnectionError",
    "StorageUnavailableError",
    "MigrationError",
    "ManagerError",
    "ManagerClosedError",
]
