"""Player-shop settings loaded from environment and ``.env`` files.

Uses :mod:`pydantic_settings` to parse environment variables (and optionally
an ``.env`` file) into a validated settings object.  The field name is the
**lowercase** version of the env-var name (e.g. ``ENABLE_SQL`` →
``enable_sql``).

Typical usage::

    from playershop.core.settings import Settings

    settings = load_settings()            # loads from env + .env
    print(settings.shop_file_path)        # data/PlayerShop.json
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from playershop.core.exceptions import ConfigError

__all__ = ["Settings", "load_settings"]

logger = logging.getLogger(__name__)

_TABLE_PREFIX_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,31}$")


class Settings(BaseSettings):
    """Central store configuration.

    Values are loaded in priority order:

    1. Actual environment variables (highest priority).
    2. ``.env`` file in the working directory.
    3. Field defaults (lowest priority).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Backend selection
    # ------------------------------------------------------------------
    enable_sql: bool = Field(
        default=False,
        description="Use the SQL backend instead of the JSON shop file.",
    )

    # ------------------------------------------------------------------
    # File backend
    # ------------------------------------------------------------------
    data_dir: str = Field(
        default="data",
        description="Directory holding the shop document.",
    )
    shop_file_name: str = Field(
        default="PlayerShop.json",
        min_length=1,
        description="File name of the shop document inside data_dir.",
    )
    flush_interval: float = Field(
        default=30.0,
        gt=0.0,
        description="Seconds between checks of the dirty flag for the file backend.",
    )

    # ------------------------------------------------------------------
    # SQL backend
    # ------------------------------------------------------------------
    sql_database_path: str = Field(
        default="data/playershop.db",
        description="Path of the SQL database file.",
    )
    sql_table_prefix: str = Field(
        default="playershop",
        description="Prefix for the owners, tabs and listings tables.",
    )
    sql_connect_attempts: int = Field(
        default=3,
        ge=1,
        description="Total attempts when opening the SQL connection at startup.",
    )

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------
    log_level: str = Field(default="INFO", description="Logging level.")
    log_format: str = Field(default="text", description="Log format: 'text' or 'json'.")

    # ------------------------------------------------------------------
    # Field validators
    # ------------------------------------------------------------------

    @field_validator("sql_table_prefix")
    @classmethod
    def _validate_table_prefix(cls, v: str) -> str:
        """Table names are interpolated into DDL, so only identifiers pass."""
        if not _TABLE_PREFIX_RE.match(v):
            raise ValueError(f"sql_table_prefix must be a plain SQL identifier, got {v!r}")
        return v

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of {allowed}, got {v!r}")
        return v_upper

    @field_validator("log_format")
    @classmethod
    def _validate_log_format(cls, v: str) -> str:
        allowed = {"text", "json"}
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"log_format must be one of {allowed}, got {v!r}")
        return v_lower

    # ------------------------------------------------------------------
    # Derived helpers
    # ------------------------------------------------------------------

    @property
    def shop_file_path(self) -> Path:
        """Full path of the JSON shop document."""
        return Path(self.data_dir) / self.shop_file_name

    @property
    def sql_database_path_resolved(self) -> Path:
        """Return the SQL database path as a resolved :class:`~pathlib.Path`."""
        return Path(self.sql_database_path).resolve()


def load_settings(**overrides: object) -> Settings:
    """Build :class:`Settings` from the environment plus explicit *overrides*.

    Raises:
        ConfigError: If any value fails validation.  The message lists every
            offending field.
    """
    try:
        return Settings(**overrides)  # type: ignore[arg-type]
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'settings'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ConfigError(f"Invalid configuration: {problems}") from exc
