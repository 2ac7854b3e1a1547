"""Player-shop domain models.

Defines :class:`Listing` (one tradable offer) and :class:`OwnerRecord` (the
player behind a shop).  Both are shared by the tracker, every storage
provider and the manager.

Unlike immutable value objects, listings are **mutable**: stock and prices
change in place under the manager's write lock.  ``validate_assignment`` keeps
the field constraints enforced on every mutation, so ``stock`` can never be
set below zero by accident.

Both models accept and retain unknown fields (``extra="allow"``).  The file
backend relies on this to write back fields written by a newer schema that
this version does not understand.

Serialised form uses camelCase aliases (``itemType``, ``buyPrice`` …); Python
code uses snake_case names.

Typical usage::

    from uuid import uuid4
    from playershop.core.models import Listing

    listing = Listing(item_type="ore", quantity=10, buy_price=5, sell_price=3,
                      owner_id=uuid4(), stock=10, tab="Main")
"""

from __future__ import annotations

import logging
from typing import Final
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

__all__ = [
    "MAX_TABS",
    "MATCH_TOLERANCE",
    "Listing",
    "OwnerRecord",
]

logger = logging.getLogger(__name__)

#: Maximum number of tabs one owner may hold.
MAX_TABS: Final[int] = 7

#: Absolute tolerance used when comparing durabilities and prices.
MATCH_TOLERANCE: Final[float] = 0.01

_MODEL_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    validate_assignment=True,
    extra="allow",
)


class Listing(BaseModel):
    """One tradable offer inside an owner's shop.

    Attributes:
        id: Store-wide unique id.  ``0`` means "not assigned yet"; the
            tracker (file mode) or the SQL backend (SQL mode) fills it in.
        item_type: Identifier of the traded item kind.
        quantity: Lot size sold per purchase.
        buy_price: Price a customer pays for one lot.
        sell_price: Price the shop pays when buying one lot back.
        owner_id: Owning player; ``None`` for a house/admin listing.
        durability: Item wear state (``0`` = none / default).
        max_durability: Maximum durability of the item kind (``0`` = none).
        stock: Number of lots currently available.
        tab: Category label; ``""`` means uncategorised.
    """

    model_config = _MODEL_CONFIG

    id: int = Field(default=0, ge=0)
    item_type: str = Field(..., min_length=1)
    quantity: int = Field(default=1, ge=1)
    buy_price: float = Field(default=0.0, ge=0.0)
    sell_price: float = Field(default=0.0, ge=0.0)
    owner_id: UUID | None = None
    durability: float = Field(default=0.0, ge=0.0)
    max_durability: float = Field(default=0.0, ge=0.0)
    stock: int = Field(default=0, ge=0)
    tab: str = ""

    @field_validator("tab", mode="before")
    @classmethod
    def _tab_none_to_empty(cls, v: object) -> object:
        return "" if v is None else v

    @field_validator("owner_id", mode="before")
    @classmethod
    def _blank_owner_to_none(cls, v: object) -> object:
        """Legacy documents store house listings with an empty owner string."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def matches_stack(self, item_type: str, tab: str, durability: float) -> bool:
        """Return ``True`` if a deposit of this kind may stack onto this listing."""
        return (
            self.item_type == item_type
            and self.tab == (tab or "")
            and abs(self.durability - durability) < MATCH_TOLERANCE
        )


class OwnerRecord(BaseModel):
    """The player behind a shop.

    ``custom_name`` and ``icon`` use ``""`` for "not set".  The open flag and
    the tab list live in the tracker next to the record.
    """

    model_config = _MODEL_CONFIG

    id: UUID
    nick: str = ""
    custom_name: str = ""
    icon: str = ""

    @field_validator("nick", "custom_name", "icon", mode="before")
    @classmethod
    def _none_to_empty(cls, v: object) -> object:
        return "" if v is None else v
