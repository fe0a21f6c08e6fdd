"""
Tests for payload normalisation used by the relation reconciler.
"""

import pytest

from basemodel.services.crud.descriptors import ModelRegistry, to_many, to_one
from basemodel.services.crud.reconciler import (
    as_fragment,
    as_fragments,
    is_empty,
    snake_case,
    split_payload,
)
from tests.models import Order, Product, registry


class TestSplitPayload:
    """Separation of attributes from relation values."""

    def test_attributes_and_relations(self):
        attributes, relations = split_payload(
            registry, Order, {"status": "paid", "items": [{"sku": "A"}], "customer": {"id": 1}}
        )

        assert attributes == {"status": "paid"}
        assert relations == {"items": [{"sku": "A"}], "customer": {"id": 1}}

    def test_id_suffix_folded(self):
        attributes, relations = split_payload(registry, Order, {"customer_id": 4})

        assert attributes == {}
        assert relations == {"customer": {"id": 4}}

    def test_bare_key_wins_over_id_suffix(self):
        _, relations = split_payload(registry, Order, {"customer": {"id": 1}, "customer_id": 2})

        assert relations == {"customer": {"id": 1}}

    @pytest.mark.parametrize("value", [None, "", 0, "abc", -3])
    def test_empty_id_suffix_means_clear(self, value):
        _, relations = split_payload(registry, Order, {"customer_id": value})

        assert relations == {"customer": {}}

    def test_camel_case_relation_names(self):
        _, relations = split_payload(registry, Product, {"orderItems": [1, 2]})

        assert relations == {"order_items": [1, 2]}

    def test_unmodifiable_relation_dropped(self):
        custom = ModelRegistry()
        custom.register(
            Order,
            relationships=[to_one("customer", inverse="orders"), to_many("tags", inverse="orders")],
            unmodifiable={"tags", "customer"},
        )

        attributes, relations = split_payload(custom, Order, {"tags": [1], "customer_id": 3, "notes": "n"})

        assert attributes == {"notes": "n"}
        assert relations == {}


class TestFragments:
    """Normalisation of relation values into fragments."""

    def test_list_is_a_sequence(self):
        assert as_fragments([{"id": 1}, 2]) == [{"id": 1}, 2]

    def test_indexed_mapping_is_a_sequence(self):
        assert as_fragments({0: {"sku": "A"}, 1: {"sku": "B"}}) == [{"sku": "A"}, {"sku": "B"}]
        assert as_fragments({"0": {"sku": "A"}}) == [{"sku": "A"}]

    def test_other_values_are_one_fragment(self):
        assert as_fragments({"sku": "A"}) == [{"sku": "A"}]
        assert as_fragments(5) == [5]

    def test_scalar_id(self):
        assert as_fragment(5) == {"id": 5}
        assert as_fragment("7") == {"id": 7}
        assert as_fragment(0) == {}
        assert as_fragment(True) == {}

    def test_mapping_copied_and_id_normalised(self):
        source = {"id": "3", "qty": 1}

        fragment = as_fragment(source)

        assert fragment == {"id": 3, "qty": 1}
        assert source == {"id": "3", "qty": 1}
        assert as_fragment({"id": 0, "sku": "N"}) == {"sku": "N"}


def test_snake_case():
    assert snake_case("orderItems") == "order_items"
    assert snake_case("order_items") == "order_items"
    assert snake_case("Customer") == "customer"


@pytest.mark.parametrize("value", [None, "", 0, [], {}])
def test_is_empty(value):
    assert is_empty(value)


@pytest.mark.parametrize("value", ["x", 1, [0], {"id": 1}])
def test_is_not_empty(value):
    assert not is_empty(value)
