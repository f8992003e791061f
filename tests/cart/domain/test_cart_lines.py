"""Tests for the cart line rules shared by projections and persisted writes."""

import pytest

from cartstream.cart.lines import (
    MAX_QUANTITY,
    LineDraft,
    apply_add,
    apply_remove,
    apply_set_quantity,
    clamp_quantity,
    merged_quantity,
    normalize_items,
)


def _lines():
    return [
        LineDraft(product_id="p1", quantity=2, price=10.0),
        LineDraft(product_id="p2", quantity=1, price=5.0),
    ]


class TestQuantityRules:
    @pytest.mark.parametrize(("given", "expected"), [(-5, 1), (0, 1), (1, 1), (42, 42), (99, 99), (150, 99)])
    def test_clamp(self, given, expected):
        assert clamp_quantity(given) == expected

    def test_merge_caps_at_max(self):
        assert merged_quantity(95, 10) == MAX_QUANTITY
        assert merged_quantity(3, 4) == 7


class TestApplyAdd:
    def test_new_line_is_appended(self):
        result = apply_add(_lines(), "p3", 4, 7.5)
        assert [line.product_id for line in result] == ["p1", "p2", "p3"]
        assert result[-1].quantity == 4
        assert result[-1].price == 7.5

    def test_existing_line_merges_and_reprices(self):
        result = apply_add(_lines(), "p1", 3, 9.0)
        assert len(result) == 2
        assert result[0].quantity == 5
        assert result[0].price == 9.0

    def test_quantity_clamped_before_merging(self):
        result = apply_add([], "p1", 500, 1.0)
        assert result[0].quantity == MAX_QUANTITY

        result = apply_add([], "p1", 0, 1.0)
        assert result[0].quantity == 1

    def test_input_is_not_mutated(self):
        original = _lines()
        apply_add(original, "p1", 3, 9.0)
        assert original[0].quantity == 2
        assert original[0].price == 10.0


class TestApplySetQuantity:
    def test_sets_and_clamps(self):
        result = apply_set_quantity(_lines(), "p1", 120, 11.0)
        assert result[0].quantity == MAX_QUANTITY
        assert result[0].price == 11.0

    def test_zero_removes(self):
        result = apply_set_quantity(_lines(), "p1", 0)
        assert [line.product_id for line in result] == ["p2"]

    def test_negative_removes(self):
        result = apply_set_quantity(_lines(), "p2", -3)
        assert [line.product_id for line in result] == ["p1"]

    def test_absent_line_is_left_alone(self):
        result = apply_set_quantity(_lines(), "p9", 3, 1.0)
        assert [(line.product_id, line.quantity) for line in result] == [("p1", 2), ("p2", 1)]

    def test_keeps_cached_price_without_new_one(self):
        result = apply_set_quantity(_lines(), "p1", 4)
        assert result[0].price == 10.0


class TestApplyRemove:
    def test_removes_line(self):
        assert [line.product_id for line in apply_remove(_lines(), "p1")] == ["p2"]

    def test_absent_line_is_a_no_op(self):
        assert len(apply_remove(_lines(), "p9")) == 2


class TestNormalizeItems:
    def test_drops_invalid_entries(self):
        items = [
            {"product_id": "p1", "quantity": 2},
            {"product_id": "", "quantity": 1},
            {"quantity": 1},
            {"product_id": "p2", "quantity": 0},
            {"product_id": "p3", "quantity": -1},
            {"product_id": "p4", "quantity": "lots"},
            {"product_id": "p5", "quantity": 1.5},
            {"product_id": "p6", "quantity": None},
            {"product_id": "p7", "quantity": True},
            None,
        ]
        assert normalize_items(items) == {"p1": 2}

    def test_clamps_quantity(self):
        assert normalize_items([{"product_id": "p1", "quantity": 300}]) == {"p1": MAX_QUANTITY}

    def test_accepts_integral_strings_and_floats(self):
        assert normalize_items([{"product_id": "p1", "quantity": "3"}, {"product_id": "p2", "quantity": 4.0}]) == {
            "p1": 3,
            "p2": 4,
        }

    def test_duplicates_keep_last_quantity_at_first_position(self):
        items = [
            {"product_id": "p1", "quantity": 1},
            {"product_id": "p2", "quantity": 2},
            {"product_id": "p1", "quantity": 5},
        ]
        normalized = normalize_items(items)
        assert list(normalized) == ["p1", "p2"]
        assert normalized["p1"] == 5

    def test_empty_payload(self):
        assert normalize_items([]) == {}
        assert normalize_items(None) == {}
