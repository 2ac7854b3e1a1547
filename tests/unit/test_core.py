"""Unit tests for the core layer.

Covers:
- :class:`~playershop.core.models.Listing` and
  :class:`~playershop.core.models.OwnerRecord` validation, aliases and
  forward-compatible extra fields.
- :class:`~playershop.core.tracker.ShopTracker` id assignment, queries, owner
  records, open flags and tab cascades.
- :class:`~playershop.core.settings.Settings` loading, validation and helpers.
- Owner-scoped logging context and the JSON formatter.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from uuid import UUID, uuid4

import pytest
from pydantic import ValidationError

from playershop.core.logging_config import (
    OWNER_ID_CTX,
    JsonFormatter,
    OwnerContextFilter,
    configure_logging,
    owner_scope,
)
from playershop.core.models import MATCH_TOLERANCE, MAX_TABS, Listing, OwnerRecord
from playershop.core.exceptions import ConfigError
from playershop.core.settings import Settings, load_settings
from playershop.core.tracker import ShopTracker

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Factories / helpers
# ---------------------------------------------------------------------------


def _make_listing(
    *,
    id: int = 0,
    item_type: str = "ore",
    owner_id: UUID | None = None,
    stock: int = 10,
    tab: str = "",
    durability: float = 0.0,
) -> Listing:
    """Return a valid :class:`Listing` with overridable defaults."""
    return Listing(
        id=id,
        item_type=item_type,
        quantity=1,
        buy_price=5.0,
        sell_price=3.0,
        owner_id=owner_id,
        durability=durability,
        stock=stock,
        tab=tab,
    )


# ===========================================================================
# Models
# ===========================================================================


class TestListingModel:
    """Tests for :class:`~playershop.core.models.Listing`."""

    def test_minimal_listing_defaults(self) -> None:
        listing = Listing(item_type="ore")
        assert listing.id == 0
        assert listing.quantity == 1
        assert listing.buy_price == 0.0
        assert listing.owner_id is None
        assert listing.max_durability == 0.0
        assert listing.stock == 0
        assert listing.tab == ""

    def test_empty_item_type_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Listing(item_type="")

    def test_negative_price_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Listing(item_type="ore", buy_price=-1)

    def test_stock_assignment_is_validated(self) -> None:
        """validate_assignment keeps stock non-negative on mutation."""
        listing = _make_listing()
        with pytest.raises(ValidationError):
            listing.stock = -1
        assert listing.stock == 10

    def test_camel_case_aliases_accepted(self) -> None:
        listing = Listing.model_validate(
            {"itemType": "ore", "buyPrice": 2.5, "sellPrice": 1, "maxDurability": 100}
        )
        assert listing.buy_price == 2.5
        assert listing.sell_price == 1.0
        assert listing.max_durability == 100.0

    def test_serialises_with_aliases(self) -> None:
        dumped = _make_listing(tab="Main").model_dump(mode="json", by_alias=True)
        assert dumped["itemType"] == "ore"
        assert dumped["buyPrice"] == 5.0
        assert dumped["tab"] == "Main"
        assert "item_type" not in dumped

    def test_unknown_fields_are_kept(self) -> None:
        listing = Listing.model_validate({"itemType": "ore", "enchantment": "sharp"})
        dumped = listing.model_dump(mode="json", by_alias=True)
        assert dumped["enchantment"] == "sharp"

    def test_blank_owner_becomes_none(self) -> None:
        assert Listing(item_type="ore", owner_id="").owner_id is None

    def test_none_tab_becomes_empty(self) -> None:
        assert Listing(item_type="ore", tab=None).tab == ""

    def test_matches_stack_within_tolerance(self) -> None:
        listing = _make_listing(tab="Main", durability=50.0)
        assert listing.matches_stack("ore", "Main", 50.0 + MATCH_TOLERANCE / 2)
        assert not listing.matches_stack("ore", "Main", 50.0 + MATCH_TOLERANCE * 2)
        assert not listing.matches_stack("ore", "Other", 50.0)
        assert not listing.matches_stack("gem", "Main", 50.0)

    def test_matches_stack_none_tab_is_uncategorised(self) -> None:
        assert _make_listing().matches_stack("ore", None, 0.0)  # type: ignore[arg-type]


class TestOwnerRecord:
    def test_none_fields_become_empty(self) -> None:
        record = OwnerRecord(id=uuid4(), nick=None, custom_name=None, icon=None)
        assert record.nick == ""
        assert record.custom_name == ""
        assert record.icon == ""

    def test_alias_round_trip_fields(self) -> None:
        owner = uuid4()
        record = OwnerRecord.model_validate({"id": str(owner), "customName": "Emporium"})
        assert record.id == owner
        assert record.model_dump(by_alias=True)["customName"] == "Emporium"

    def test_tab_limit_constant(self) -> None:
        assert MAX_TABS == 7


# ===========================================================================
# Tracker
# ===========================================================================


class TestTrackerIds:
    """Id assignment in both self-assigning and externally-assigned modes."""

    def test_self_assigned_ids_start_at_one_and_increase(self) -> None:
        tracker = ShopTracker()
        ids = [tracker.add_listing(_make_listing()).id for _ in range(3)]
        assert ids == [1, 2, 3]
        assert tracker.next_id == 4

    def test_pre_assigned_id_is_kept_and_counter_moves_past_it(self) -> None:
        tracker = ShopTracker()
        stored = tracker.add_listing(_make_listing(id=10))
        assert stored.id == 10
        assert tracker.next_id == 11
        assert tracker.add_listing(_make_listing()).id == 11

    def test_lower_pre_assigned_id_does_not_lower_counter(self) -> None:
        tracker = ShopTracker()
        tracker.add_listing(_make_listing(id=10))
        tracker.add_listing(_make_listing(id=3))
        assert tracker.next_id == 11

    def test_duplicate_pre_assigned_id_raises(self) -> None:
        tracker = ShopTracker()
        tracker.add_listing(_make_listing(id=5))
        with pytest.raises(ValueError):
            tracker.add_listing(_make_listing(id=5))

    def test_next_id_setter_never_reuses_tracked_ids(self) -> None:
        tracker = ShopTracker()
        tracker.add_listing(_make_listing(id=7))
        tracker.next_id = 2
        assert tracker.next_id == 8
        tracker.next_id = 20
        assert tracker.next_id == 20

    def test_ids_stay_unique_after_removal(self) -> None:
        tracker = ShopTracker()
        first = tracker.add_listing(_make_listing())
        tracker.remove_listing(first.id)
        assert tracker.add_listing(_make_listing()).id == first.id + 1


class TestTrackerListings:
    def test_remove_then_get_returns_none(self) -> None:
        tracker = ShopTracker()
        listing = tracker.add_listing(_make_listing())
        assert tracker.remove_listing(listing.id) is True
        assert tracker.get_listing(listing.id) is None
        assert tracker.remove_listing(listing.id) is False

    def test_unknown_lookups_are_empty(self) -> None:
        tracker = ShopTracker()
        assert tracker.get_listing(42) is None
        assert tracker.has_listing(42) is False
        assert tracker.listings_by_owner(uuid4()) == []
        assert tracker.listings_by_tab(uuid4(), "Main") == []

    def test_listings_by_owner_none_selects_house_listings(self) -> None:
        tracker = ShopTracker()
        owner = uuid4()
        house = tracker.add_listing(_make_listing())
        tracker.add_listing(_make_listing(owner_id=owner))
        assert tracker.listings_by_owner(None) == [house]
        assert len(tracker.listings_by_owner(owner)) == 1

    def test_listings_by_tab_empty_selects_uncategorised(self) -> None:
        tracker = ShopTracker()
        owner = uuid4()
        tracker.add_tab(owner, "Main")
        plain = tracker.add_listing(_make_listing(owner_id=owner))
        tabbed = tracker.add_listing(_make_listing(owner_id=owner, tab="Main"))
        assert tracker.listings_by_tab(owner, "") == [plain]
        assert tracker.listings_by_tab(owner, None) == [plain]
        assert tracker.listings_by_tab(owner, "Main") == [tabbed]

    def test_counts(self) -> None:
        tracker = ShopTracker()
        tracker.add_listing(_make_listing())
        tracker.add_listing(_make_listing())
        assert tracker.listing_count == 2
        assert len(tracker.all_listings()) == 2


class TestTrackerOwners:
    def test_upsert_creates_then_updates_only_nick(self) -> None:
        tracker = ShopTracker()
        owner = uuid4()
        record = tracker.upsert_owner(owner, "Steve")
        record.custom_name = "Steve's Ores"
        record.icon = "ore"
        tracker.upsert_owner(owner, "Stevie")
        stored = tracker.get_owner(owner)
        assert stored is not None
        assert stored.nick == "Stevie"
        assert stored.custom_name == "Steve's Ores"
        assert stored.icon == "ore"

    def test_ensure_owner_reports_creation(self) -> None:
        tracker = ShopTracker()
        owner = uuid4()
        _, created = tracker.ensure_owner(owner)
        _, created_again = tracker.ensure_owner(owner)
        assert created is True
        assert created_again is False
        assert tracker.owner_count == 1

    def test_is_empty_tracks_owners_only(self) -> None:
        tracker = ShopTracker()
        tracker.add_listing(_make_listing())
        assert tracker.is_empty
        tracker.ensure_owner(uuid4())
        assert not tracker.is_empty

    def test_shop_closed_by_default(self) -> None:
        tracker = ShopTracker()
        owner = uuid4()
        assert tracker.is_shop_open(owner) is False
        tracker.set_shop_open(owner, True)
        assert tracker.is_shop_open(owner) is True


class TestTrackerTabs:
    def test_add_tab_is_idempotent_and_ordered(self) -> None:
        tracker = ShopTracker()
        owner = uuid4()
        for name in ("Main", "Tools", "Main", ""):
            tracker.add_tab(owner, name)
        assert tracker.tabs(owner) == ["Main", "Tools"]
        assert tracker.has_tab(owner, "Tools")
        assert not tracker.has_tab(owner, "")

    def test_tabs_returns_a_copy(self) -> None:
        tracker = ShopTracker()
        owner = uuid4()
        tracker.add_tab(owner, "Main")
        tracker.tabs(owner).append("Hacked")
        assert tracker.tabs(owner) == ["Main"]

    def test_add_tab_does_not_enforce_limit(self) -> None:
        """The cap belongs to the caller."""
        tracker = ShopTracker()
        owner = uuid4()
        for i in range(MAX_TABS + 1):
            tracker.add_tab(owner, f"T{i}")
        assert len(tracker.tabs(owner)) == MAX_TABS + 1

    def test_remove_tab_cascades_only_that_tab(self) -> None:
        tracker = ShopTracker()
        owner, other = uuid4(), uuid4()
        for who in (owner, other):
            tracker.add_tab(who, "T")
            tracker.add_tab(who, "U")
        doomed = [tracker.add_listing(_make_listing(owner_id=owner, tab="T")) for _ in range(2)]
        kept = tracker.add_listing(_make_listing(owner_id=owner, tab="U"))
        foreign = tracker.add_listing(_make_listing(owner_id=other, tab="T"))

        assert tracker.remove_tab(owner, "T") is True

        for listing in doomed:
            assert tracker.get_listing(listing.id) is None
        assert tracker.get_listing(kept.id) is kept
        assert tracker.get_listing(foreign.id) is foreign
        assert tracker.tabs(owner) == ["U"]

    def test_remove_unknown_tab_returns_false(self) -> None:
        tracker = ShopTracker()
        owner = uuid4()
        assert tracker.remove_tab(owner, "Nope") is False
        assert tracker.remove_tab(owner, "") is False


# ===========================================================================
# Settings
# ===========================================================================


class TestSettings:
    def test_defaults(self, clean_env: None) -> None:
        s = Settings()
        assert s.enable_sql is False
        assert s.flush_interval == 30.0
        assert s.sql_table_prefix == "playershop"
        assert s.shop_file_path == Path("data") / "PlayerShop.json"

    def test_env_vars_are_read(self, clean_env: None, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ENABLE_SQL", "true")
        monkeypatch.setenv("FLUSH_INTERVAL", "5")
        monkeypatch.setenv("DATA_DIR", "/srv/shop")
        s = Settings()
        assert s.enable_sql is True
        assert s.flush_interval == 5.0
        assert s.shop_file_path == Path("/srv/shop") / "PlayerShop.json"

    def test_unsafe_table_prefix_rejected(self, clean_env: None) -> None:
        with pytest.raises(ValidationError):
            Settings(sql_table_prefix="shop; DROP TABLE x")

    def test_non_positive_flush_interval_rejected(self, clean_env: None) -> None:
        with pytest.raises(ValidationError):
            Settings(flush_interval=0)

    def test_log_level_normalised(self, clean_env: None) -> None:
        assert Settings(log_level="debug").log_level == "DEBUG"
        with pytest.raises(ValidationError):
            Settings(log_level="chatty")

    def test_log_format_normalised(self, clean_env: None) -> None:
        assert Settings(log_format="JSON").log_format == "json"

    def test_sql_path_resolved(self, clean_env: None, tmp_path: Path) -> None:
        s = Settings(sql_database_path=str(tmp_path / "x.db"))
        assert s.sql_database_path_resolved == (tmp_path / "x.db").resolve()

    def test_load_settings_applies_overrides(self, clean_env: None) -> None:
        assert load_settings(enable_sql=True).enable_sql is True

    def test_load_settings_reports_invalid_env_as_config_error(
        self, clean_env: None, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("FLUSH_INTERVAL", "0")
        with pytest.raises(ConfigError, match="flush_interval") as exc_info:
            load_settings()
        assert isinstance(exc_info.value.__cause__, ValidationError)


# ===========================================================================
# Logging
# ===========================================================================


class TestOwnerLoggingContext:
    def test_owner_scope_sets_and_resets(self) -> None:
        owner = uuid4()
        assert OWNER_ID_CTX.get() == "-"
        with owner_scope(owner):
            assert OWNER_ID_CTX.get() == str(owner)
        assert OWNER_ID_CTX.get() == "-"

    def test_none_owner_is_house(self) -> None:
        with owner_scope(None):
            assert OWNER_ID_CTX.get() == "house"

    def test_filter_and_json_formatter_carry_owner(self) -> None:
        owner = uuid4()
        record = logging.LogRecord("playershop.test", logging.INFO, __file__, 1, "hello %s", ("x",), None)
        with owner_scope(owner):
            OwnerContextFilter().filter(record)
        payload = json.loads(JsonFormatter().format(record))
        assert payload["message"] == "hello x"
        assert payload["level"] == "INFO"
        assert payload["extra"]["owner_id"] == str(owner)

    def test_configure_logging_rejects_unknown_level(self) -> None:
        with pytest.raises(ValueError):
            configure_logging(level="LOUD", force=True)
