"""
Tests for EntityEditor - nested create/update of entity graphs.

Tests cover:
- End-to-end order edit (required relation, to-many sync, one commit)
- Required-before-optional ordering
- To-many sync semantics and the inverse-relation exception
- ``_id`` sugar precedence
- Atomicity on validation and integrity failures
- Editability rules, pivot attributes, missing inverse configuration
"""

import pytest
from sqlalchemy import event, func, select
from sqlalchemy import inspect as sa_inspect

from basemodel.services.crud.descriptors import ModelConfig
from basemodel.services.crud.editor import EntityEditor
from basemodel_shared.config.constants import ErrorMessages
from basemodel_shared.utils.exceptions import BulkValidationError, RelationNotFoundError
from tests.conftest import engine
from tests.models import (
    Customer,
    Order,
    OrderItem,
    Product,
    Profile,
    Tag,
    build_registry,
    order_tag,
    registry,
)


@pytest.fixture
def grace(db_session):
    customer = Customer(name="Grace Hopper", email="grace@example.com")
    db_session.add(customer)
    db_session.commit()
    return customer


def _item_skus(db_session, order_id):
    return sorted(db_session.scalars(select(OrderItem.sku).where(OrderItem.order_id == order_id)))


class TestEndToEnd:
    """Editing Order with a required customer and a list of items."""

    def test_order_scenario(self, db_session, editor, seed_order, grace):
        """Customer reassigned, items replaced, one commit."""
        commits = []
        releases = []

        def on_commit(conn):
            commits.append(conn)

        def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
            if statement.startswith("RELEASE SAVEPOINT"):
                releases.append(statement)

        event.listen(engine, "commit", on_commit)
        event.listen(engine, "before_cursor_execute", before_cursor_execute)
        relations_to_load = {}
        try:
            result = editor.edit_entity(
                seed_order,
                {
                    "status": "paid",
                    "customer_id": grace.id,
                    "items": [{"sku": "A", "qty": 2}, {"sku": "B", "qty": 1}],
                },
                check_completion=False,
                relations_to_load=relations_to_load,
            )
        finally:
            event.remove(engine, "commit", on_commit)
            event.remove(engine, "before_cursor_execute", before_cursor_execute)

        assert result is seed_order
        assert len(commits) == 1
        assert len(releases) == 2
        assert seed_order.status == "paid"
        assert seed_order.customer_id == grace.id
        assert sorted((i.sku, i.qty) for i in seed_order.items) == [("A", 2), ("B", 1)]
        assert db_session.scalar(select(func.count()).select_from(OrderItem)) == 2
        assert relations_to_load == {"customer": {}, "items": {}}

    def test_create_graph(self, db_session, editor):
        """A new order creates its new customer and items."""
        order = registry.new_instance(Order)

        editor.edit_entity(
            order,
            {"customer": {"name": "Neo"}, "items": [{"sku": "X", "qty": 1}]},
        )

        assert order.id is not None
        assert order.status == "new"
        assert order.customer.name == "Neo"
        assert _item_skus(db_session, order.id) == ["X"]

    def test_nested_load_tree(self, db_session, editor, seed_customer, seed_products):
        """Relations touched at every level are reported for loading."""
        widget, _ = seed_products
        relations_to_load = {}
        order = registry.new_instance(Order)

        editor.edit_entity(
            order,
            {
                "customer_id": seed_customer.id,
                "items": [{"sku": "W", "qty": 1, "product_id": widget.id}],
            },
            relations_to_load=relations_to_load,
        )

        assert relations_to_load == {"customer": {}, "items": {"product": {}}}
        assert order.items[0].product is widget


class TestOrdering:
    """Required relations are persisted before the owner, to-many after."""

    def test_required_before_optional(self, db_session, editor):
        inserted = []

        def record(mapper, connection, target):
            inserted.append(type(target).__name__)

        models = (Customer, Order, OrderItem)
        for model in models:
            event.listen(model, "after_insert", record)
        try:
            editor.edit_entity(
                registry.new_instance(Order),
                {"items": [{"sku": "X", "qty": 1}], "customer": {"name": "Neo"}},
            )
        finally:
            for model in models:
                event.remove(model, "after_insert", record)

        assert inserted == ["Customer", "Order", "OrderItem"]


class TestToManySync:
    """The payload is the full membership list of a to-many relation."""

    def test_members_replaced(self, db_session, editor, seed_order):
        """{A, B, C} edited to {B, D}: A and C removed, B updated, D created."""
        item_b = next(i for i in seed_order.items if i.sku == "B")

        editor.edit_entity(
            seed_order,
            {"items": [{"id": item_b.id, "qty": 5}, {"sku": "D", "qty": 1}]},
            check_completion=False,
        )

        assert _item_skus(db_session, seed_order.id) == ["B", "D"]
        assert db_session.get(OrderItem, item_b.id).qty == 5

    def test_mapping_with_index_keys_is_a_list(self, db_session, editor, seed_order):
        editor.edit_entity(
            seed_order,
            {"items": {"0": {"sku": "E", "qty": 1}, "1": {"sku": "F", "qty": 1}}},
            check_completion=False,
        )

        assert _item_skus(db_session, seed_order.id) == ["E", "F"]

    def test_single_fragment(self, db_session, editor, seed_order):
        editor.edit_entity(seed_order, {"items": {"sku": "G", "qty": 1}}, check_completion=False)

        assert _item_skus(db_session, seed_order.id) == ["G"]

    def test_empty_value_clears(self, db_session, editor, seed_order):
        editor.edit_entity(seed_order, {"items": []}, check_completion=False)

        assert _item_skus(db_session, seed_order.id) == []

    def test_absent_relation_untouched(self, db_session, editor, seed_order):
        editor.edit_entity(seed_order, {"notes": "leave at door"}, check_completion=False)

        assert _item_skus(db_session, seed_order.id) == ["A", "B", "C"]

    def test_inverse_relation_not_detached(self, db_session, editor, seed_order, seed_customer):
        """Members of the relation leading back to the edited entity stay attached."""
        other = Order(customer=seed_customer, status="new")
        db_session.add(other)
        db_session.commit()

        order = registry.new_instance(Order)
        editor.edit_entity(
            order,
            {"customer": {"id": seed_customer.id, "orders": [{"id": other.id}]}},
        )

        order_ids = set(db_session.scalars(select(Order.id).where(Order.customer_id == seed_customer.id)))
        assert order_ids == {seed_order.id, other.id, order.id}


class TestIdSugar:
    """``x_id`` is sugar for ``x: {"id": ...}``."""

    def test_bare_key_wins(self, db_session, editor, seed_order, seed_customer, grace):
        editor.edit_entity(
            seed_order,
            {"customer": {"id": grace.id}, "customer_id": seed_customer.id},
            check_completion=False,
        )

        assert seed_order.customer_id == grace.id

    def test_id_key_alone(self, db_session, editor, seed_order, grace):
        editor.edit_entity(seed_order, {"customer_id": str(grace.id)}, check_completion=False)

        assert seed_order.customer_id == grace.id


class TestAtomicity:
    """Any error anywhere leaves the whole graph unchanged."""

    def test_nested_validation_error_rolls_back_everything(self, db_session, editor, seed_order):
        item_a = next(i for i in seed_order.items if i.sku == "A")
        order_id = seed_order.id

        with pytest.raises(BulkValidationError) as exc_info:
            editor.edit_entity(
                seed_order,
                {
                    "status": "paid",
                    "items": [{"id": item_a.id, "qty": 3}, {"sku": "", "qty": 1}],
                },
                check_completion=False,
            )

        assert "sku" in exc_info.value.errors
        assert exc_info.value.status_code == 400
        db_session.expire_all()
        order = db_session.get(Order, order_id)
        assert order.status == "new"
        assert _item_skus(db_session, order_id) == ["A", "B", "C"]
        assert db_session.get(OrderItem, item_a.id).qty == 1
        assert editor.transactions.depth == 0

    def test_errors_from_every_level_are_collected(self, db_session, editor, seed_order):
        """Sibling fragments keep being validated after one fails."""
        with pytest.raises(BulkValidationError) as exc_info:
            editor.edit_entity(
                seed_order,
                {"items": [{"sku": "X", "qty": 0}, {"sku": "", "qty": 1}, {"sku": "Y", "qty": 1}]},
                check_completion=False,
            )

        errors = exc_info.value.errors
        assert errors.keys() == ["qty", "sku"]
        assert db_session.scalar(select(func.count()).select_from(OrderItem)) == 3

    def test_invalid_root_attribute(self, db_session, editor, seed_order):
        with pytest.raises(BulkValidationError) as exc_info:
            editor.edit_entity(seed_order, {"status": "unknown"}, check_completion=False)

        assert list(exc_info.value.errors.keys()) == ["status"]

    def test_new_entity_requires_rule_attributes(self, db_session, editor, seed_order):
        with pytest.raises(BulkValidationError) as exc_info:
            editor.edit_entity(seed_order, {"items": [{"sku": "X"}]}, check_completion=False)

        assert exc_info.value.errors.get("qty") == [ErrorMessages.REQUIRED]

    def test_integrity_error_is_translated(self, db_session, editor, seed_order, seed_tags):
        """A duplicate tag name becomes a message keyed by the model name."""
        with pytest.raises(BulkValidationError) as exc_info:
            editor.edit_entity(seed_order, {"tags": [{"name": "vip"}]}, check_completion=False)

        messages = exc_info.value.errors.get("Tag")
        assert len(messages) == 1
        assert "already exists" in messages[0]
        assert db_session.scalar(select(func.count()).select_from(Tag)) == 3

    def test_missing_required_relation(self, db_session, editor):
        """An order without customer fails on the NOT NULL column."""
        with pytest.raises(BulkValidationError) as exc_info:
            editor.edit_entity(registry.new_instance(Order), {"notes": "no customer"})

        messages = exc_info.value.errors.get("Order")
        assert messages and "required value is missing" in messages[0]
        assert db_session.scalar(select(func.count()).select_from(Order)) == 0

    def test_domain_validation_hook(self, db_session, editor, seed_order):
        with pytest.raises(BulkValidationError) as exc_info:
            editor.edit_entity(seed_order, {"status": "cancelled"}, check_completion=False)

        assert exc_info.value.errors.get("notes") == ["A cancelled order needs a note."]
        db_session.expire_all()
        assert db_session.get(Order, seed_order.id).status == "new"

    def test_unmodifiable_attribute_ignored(self, db_session, editor, seed_order):
        editor.edit_entity(seed_order, {"reference": "R-1", "notes": "n"}, check_completion=False)

        assert seed_order.reference is None
        assert seed_order.notes == "n"


class TestRelationKinds:
    """Associate / clear through each relation shape."""

    def test_to_one_owned_create_and_clear(self, db_session, editor, seed_customer):
        editor.edit_entity(seed_customer, {"profile": {"bio": "Analyst"}}, check_completion=False)

        assert seed_customer.profile.bio == "Analyst"
        assert seed_customer.profile.customer_id == seed_customer.id

        editor.edit_entity(seed_customer, {"profile": None}, check_completion=False)

        assert db_session.scalar(select(func.count()).select_from(Profile)) == 0

    def test_pivot_attributes(self, db_session, editor, seed_order, seed_tags):
        vip, gift, _ = seed_tags

        editor.edit_entity(
            seed_order,
            {"tags": [{"id": vip.id, "pivot": {"note": "priority"}}, {"id": gift.id}]},
            check_completion=False,
        )

        rows = db_session.execute(
            select(order_tag.c.tag_id, order_tag.c.note).where(order_tag.c.order_id == seed_order.id)
        ).all()
        assert sorted(tuple(r) for r in rows) == sorted([(vip.id, "priority"), (gift.id, None)])
        assert [t.name for t in seed_order.tags] == ["vip", "gift"]

    def test_pivot_update_and_detach(self, db_session, editor, seed_order, seed_tags):
        vip, gift, _ = seed_tags
        editor.edit_entity(seed_order, {"tags": [vip.id, gift.id]}, check_completion=False)

        editor.edit_entity(
            seed_order,
            {"tags": [{"id": vip.id, "pivot": {"note": "changed"}}]},
            check_completion=False,
        )

        rows = db_session.execute(
            select(order_tag.c.tag_id, order_tag.c.note).where(order_tag.c.order_id == seed_order.id)
        ).all()
        assert [tuple(r) for r in rows] == [(vip.id, "changed")]

    def test_optional_to_one_cleared(self, db_session, editor, seed_customer, seed_products):
        widget, _ = seed_products
        order = registry.new_instance(Order)
        editor.edit_entity(
            order,
            {"customer_id": seed_customer.id, "items": [{"sku": "W", "qty": 1, "product_id": widget.id}]},
        )
        item = order.items[0]

        editor.edit_entity(
            order,
            {"items": [{"id": item.id, "product_id": None}]},
            check_completion=False,
        )

        assert db_session.get(OrderItem, item.id).product_id is None


class TestEditability:
    """Conditional editability of related entities."""

    def _order_with_product(self, editor, customer, product_fragment):
        order = registry.new_instance(Order)
        editor.edit_entity(
            order,
            {"customer_id": customer.id, "items": [{"sku": "Z", "qty": 1, "product": product_fragment}]},
        )
        return order

    def test_non_editable_is_associated_not_changed(self, db_session, editor, seed_customer, seed_products):
        _, legacy = seed_products

        order = self._order_with_product(editor, seed_customer, {"id": legacy.id, "name": "Renamed"})

        assert order.items[0].product_id == legacy.id
        db_session.expire_all()
        assert db_session.get(Product, legacy.id).name == "Legacy"

    def test_request_value_satisfies_condition(self, db_session, editor, seed_customer, seed_products):
        _, legacy = seed_products

        self._order_with_product(editor, seed_customer, {"id": legacy.id, "name": "Renamed", "active": True})

        db_session.expire_all()
        product = db_session.get(Product, legacy.id)
        assert (product.name, product.active) == ("Renamed", True)

    def test_new_entity_with_defaults(self, db_session, editor, seed_customer):
        order = self._order_with_product(editor, seed_customer, {"name": "Gadget"})

        assert order.items[0].product.name == "Gadget"
        assert order.items[0].product.active is True


class TestMissingInverse:
    """A relation whose target lacks the inverse is a soft error."""

    def test_error_under_relation_key(self, db_session, seed_order, seed_tags):
        broken = build_registry()
        broken.register(Tag, ModelConfig())
        editor = EntityEditor(db_session, broken)

        with pytest.raises(BulkValidationError) as exc_info:
            editor.edit_entity(
                seed_order,
                {"tags": [{"id": seed_tags[0].id}], "notes": "kept going"},
                check_completion=False,
            )

        messages = exc_info.value.errors.get("tags")
        assert messages == ["Relation 'tags' of Order has no inverse declared on Tag"]
        assert db_session.execute(select(order_tag)).all() == []


class TestRelationsToLoad:
    """Relations requested by the caller are loaded with the touched ones."""

    def test_requested_relations_loaded(self, db_session, editor, seed_order, seed_customer):
        assert "profile" in sa_inspect(seed_customer).unloaded
        relations_to_load = {"customer": {"profile": {}}}

        editor.edit_entity(
            seed_order,
            {"status": "paid"},
            check_completion=False,
            relations_to_load=relations_to_load,
        )

        assert "profile" not in sa_inspect(seed_customer).unloaded
        assert relations_to_load == {"customer": {"profile": {}}}

    def test_unknown_requested_relation_rolls_back(self, db_session, editor, seed_order):
        with pytest.raises(RelationNotFoundError):
            editor.edit_entity(
                seed_order,
                {"status": "paid"},
                check_completion=False,
                relations_to_load={"customer": {"invoices": {}}},
            )

        assert editor.transactions.depth == 0
        assert db_session.scalar(select(Order.status).where(Order.id == seed_order.id)) == "new"
