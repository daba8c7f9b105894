"""Tests for the conflict policy and category rules."""

from __future__ import annotations

import pytest

from tenantcore.propagation import (
    DEFAULT_CATEGORY_RULES,
    LOCAL_OVERRIDES_FIELD,
    CategoryRule,
    ConflictPolicy,
    DataCategory,
    ItemAction,
    diff_records,
    resolve_item,
)

PRODUCTS = DEFAULT_CATEGORY_RULES["products"]
GBP = DEFAULT_CATEGORY_RULES["gbp_category_sync"]


class TestCategoryRules:
    """Tests for DEFAULT_CATEGORY_RULES."""

    def test_every_category_has_rule(self) -> None:
        """Test that each data category is configured."""
        assert set(DEFAULT_CATEGORY_RULES) == {c.value for c in DataCategory}

    def test_record_key(self) -> None:
        """Test keyed and singleton record keys."""
        assert PRODUCTS.record_key({"sku": 42}) == "42"
        assert DEFAULT_CATEGORY_RULES["business_hours"].record_key({"mon": "9-5"}) == "hours"

    def test_missing_key_field(self) -> None:
        """Test that keyed records must carry their key."""
        with pytest.raises(ValueError, match="sku"):
            PRODUCTS.record_key({"name": "Milk"})

    def test_singleton_defaults_to_category(self) -> None:
        """Test a singleton rule without an explicit key."""
        rule = CategoryRule(category="business_profile")
        assert rule.is_singleton
        assert rule.record_key({}) == "business_profile"


class TestResolveItem:
    """Tests for resolve_item under each policy."""

    def test_create_when_target_missing(self) -> None:
        """Every policy creates records new to the target."""
        for policy in ConflictPolicy:
            result = resolve_item(policy, PRODUCTS, "A", {"sku": "A", "price": 5}, None)
            assert result.action == ItemAction.CREATE
            assert result.record == {"sku": "A", "price": 5}

    def test_overwrite_replaces(self) -> None:
        """Overwrite replaces the whole target record."""
        result = resolve_item(
            ConflictPolicy.OVERWRITE,
            PRODUCTS,
            "A",
            {"sku": "A", "price": 5},
            {"sku": "A", "price": 4, "stock": 3},
        )
        assert result.action == ItemAction.UPDATE
        assert result.record == {"sku": "A", "price": 5}

    def test_overwrite_identical_counts_as_update(self) -> None:
        """Overwrite always writes, even when nothing changes."""
        record = {"sku": "A", "price": 5}
        assert resolve_item(ConflictPolicy.OVERWRITE, PRODUCTS, "A", record, dict(record)).action == ItemAction.UPDATE

    def test_skip_on_conflict(self) -> None:
        """Existing target records are left untouched."""
        result = resolve_item(
            ConflictPolicy.SKIP_ON_CONFLICT,
            PRODUCTS,
            "A",
            {"sku": "A", "price": 5},
            {"sku": "A", "price": 4},
        )
        assert result.action == ItemAction.SKIP
        assert result.conflict is True
        assert result.record is None

    def test_merge_keeps_target_fields(self) -> None:
        """Merge updates shared fields and keeps target-only fields."""
        result = resolve_item(
            ConflictPolicy.MERGE,
            PRODUCTS,
            "A",
            {"sku": "A", "price": 5},
            {"sku": "A", "price": 4, "stock": 3},
        )
        assert result.action == ItemAction.UPDATE
        assert result.record == {"sku": "A", "price": 5, "stock": 3}

    def test_merge_unchanged_is_skip(self) -> None:
        """A merge that changes nothing is skipped without conflict."""
        result = resolve_item(
            ConflictPolicy.MERGE,
            PRODUCTS,
            "A",
            {"sku": "A", "price": 5},
            {"sku": "A", "price": 5, "stock": 3},
        )
        assert result.action == ItemAction.SKIP
        assert result.conflict is False
        assert result.detail == "unchanged"

    def test_merge_respects_local_overrides(self) -> None:
        """Fields a location manages itself are never merged over."""
        result = resolve_item(
            ConflictPolicy.MERGE,
            PRODUCTS,
            "A",
            {"sku": "A", "price": 5},
            {"sku": "A", "price": 6, LOCAL_OVERRIDES_FIELD: ["price"]},
        )
        assert result.action == ItemAction.SKIP
        assert result.conflict is True
        assert result.detail == "local override on price"

    def test_source_local_overrides_not_copied(self) -> None:
        """The source's own local overrides never reach a target."""
        result = resolve_item(
            ConflictPolicy.OVERWRITE,
            PRODUCTS,
            "A",
            {"sku": "A", LOCAL_OVERRIDES_FIELD: ["price"]},
            None,
        )
        assert LOCAL_OVERRIDES_FIELD not in result.record

    def test_field_overrides_applied(self) -> None:
        """Field overrides replace source values on every target."""
        result = resolve_item(
            ConflictPolicy.OVERWRITE,
            PRODUCTS,
            "A",
            {"sku": "A", "price": 5, "visible": False},
            None,
            field_overrides={"visible": True},
        )
        assert result.record == {"sku": "A", "price": 5, "visible": True}

    def test_merge_unions_image_gallery(self) -> None:
        """Collections are unioned and capped under merge."""
        result = resolve_item(
            ConflictPolicy.MERGE,
            PRODUCTS,
            "A",
            {"sku": "A", "image_gallery": [f"s{i}.jpg" for i in range(8)]},
            {"sku": "A", "image_gallery": ["t0.jpg", "t1.jpg", "t2.jpg", "s0.jpg"]},
        )
        gallery = result.record["image_gallery"]
        assert len(gallery) == 10
        assert len(set(gallery)) == 10
        assert gallery[:8] == [f"s{i}.jpg" for i in range(8)]


class TestGbpCategorySync:
    """Tests for GBP category merge constraints."""

    def test_secondary_capped_and_excludes_primary(self) -> None:
        """Secondary categories cap at 9 and never repeat the primary."""
        source = {
            "primary": "bakery",
            "secondary": ["bakery", "cafe", "deli"] + [f"cat-{i}" for i in range(10)],
        }
        target = {"primary": "grocery", "secondary": ["florist"]}
        result = resolve_item(ConflictPolicy.MERGE, GBP, "gbp", source, target)

        assert result.record["primary"] == "bakery"
        secondary = result.record["secondary"]
        assert len(secondary) == 9
        assert "bakery" not in secondary
        assert secondary[:2] == ["cafe", "deli"]

    def test_overwrite_also_capped(self) -> None:
        """Source collections are normalised under every policy."""
        source = {"primary": "bakery", "secondary": ["bakery"] + [f"cat-{i}" for i in range(12)]}
        result = resolve_item(ConflictPolicy.OVERWRITE, GBP, "gbp", source, None)
        assert len(result.record["secondary"]) == 9
        assert "bakery" not in result.record["secondary"]


class TestDiffRecords:
    """Tests for diff_records."""

    SOURCE = {"A": {"sku": "A", "price": 1}, "B": {"sku": "B", "price": 2}}
    TARGET = {"A": {"sku": "A", "price": 9}, "Z": {"sku": "Z", "price": 3}}

    def test_every_item_has_one_outcome(self) -> None:
        """Test that each source record resolves exactly once."""
        changes = diff_records(ConflictPolicy.OVERWRITE, PRODUCTS, self.SOURCE, self.TARGET)
        assert [(c.key, c.action) for c in changes] == [
            ("A", ItemAction.UPDATE),
            ("B", ItemAction.CREATE),
        ]

    def test_prune_deletes_target_only_records(self) -> None:
        """Pruning under overwrite deletes records absent from the source."""
        changes = diff_records(ConflictPolicy.OVERWRITE, PRODUCTS, self.SOURCE, self.TARGET, prune=True)
        assert changes[-1].key == "Z"
        assert changes[-1].action == ItemAction.DELETE

    def test_prune_ignored_for_merge(self) -> None:
        """Merge never removes target data."""
        changes = diff_records(ConflictPolicy.MERGE, PRODUCTS, self.SOURCE, self.TARGET, prune=True)
        assert all(c.action != ItemAction.DELETE for c in changes)

    def test_inputs_not_mutated(self) -> None:
        """Test that diffing leaves its inputs untouched."""
        source = {"A": {"sku": "A", "image_gallery": ["a.jpg"]}}
        target = {"A": {"sku": "A", "image_gallery": ["b.jpg"]}}
        diff_records(ConflictPolicy.MERGE, PRODUCTS, source, target)
        assert source == {"A": {"sku": "A", "image_gallery": ["a.jpg"]}}
        assert target == {"A": {"sku": "A", "image_gallery": ["b.jpg"]}}
