"""
Models and registry used by the test suite.

    Customer 1--* Order 1--* OrderItem *--1 Product
    Customer 1--1 Profile
    Order    *--* Tag  (order_tag, pivot column ``note``)
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import Field, StringConstraints
from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Table
from sqlalchemy.orm import Mapped, mapped_column, relationship

from basemodel.models.base import Base
from basemodel.services.crud.descriptors import ModelRegistry, to_many, to_one
from basemodel_shared.utils.exceptions import FieldValidationError


order_tag = Table(
    "order_tag",
    Base.metadata,
    Column("order_id", Integer, ForeignKey("orders.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
    Column("note", String(100), nullable=True),
)


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100))
    email: Mapped[str | None] = mapped_column(String(255))
    secret_note: Mapped[str | None] = mapped_column(String(500))

    orders: Mapped[list[Order]] = relationship(back_populates="customer")
    profile: Mapped[Profile | None] = relationship(
        back_populates="customer", cascade="all, delete-orphan", uselist=False
    )


class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id"), unique=True)
    bio: Mapped[str | None] = mapped_column(String(500))

    customer: Mapped[Customer] = relationship(back_populates="profile")


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id"))
    status: Mapped[str] = mapped_column(String(20), default="new")
    notes: Mapped[str | None] = mapped_column(String(500))
    reference: Mapped[str | None] = mapped_column(String(50))

    customer: Mapped[Customer] = relationship(back_populates="orders")
    items: Mapped[list[OrderItem]] = relationship(
        back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id"
    )
    tags: Mapped[list[Tag]] = relationship(
        secondary=order_tag, back_populates="orders", order_by="Tag.id"
    )

    def validate_attribute_logic(self) -> None:
        if self.status == "cancelled" and not self.notes:
            raise FieldValidationError({"notes": ["A cancelled order needs a note."]}, model="Order")


class Product(Base):
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100))
    active: Mapped[bool] = mapped_column(Boolean, default=True)

    order_items: Mapped[list[OrderItem]] = relationship(back_populates="product")


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"))
    product_id: Mapped[int | None] = mapped_column(ForeignKey("products.id"))
    sku: Mapped[str] = mapped_column(String(50))
    qty: Mapped[int] = mapped_column(Integer)

    order: Mapped[Order] = relationship(back_populates="items")
    product: Mapped[Product | None] = relationship(back_populates="order_items")


class Tag(Base):
    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(50), unique=True)

    orders: Mapped[list[Order]] = relationship(
        secondary=order_tag, back_populates="tags", order_by="Order.id"
    )


# =============================================================================
# Registry
# =============================================================================

NonEmpty = Annotated[str, StringConstraints(min_length=1, max_length=100)]


def build_registry() -> ModelRegistry:
    registry = ModelRegistry()
    registry.register(
        Customer,
        relationships=[
            to_many("orders", inverse="customer"),
            to_one("profile", inverse="customer"),
        ],
        validation_rules={"name": NonEmpty},
        default_sorting={"name": "asc"},
        default_search=("name", "email"),
        encrypted_fields={"secret_note"},
        track_changes=True,
    )
    registry.register(
        Profile,
        relationships=[to_one("customer", inverse="profile", nullable=False)],
    )
    registry.register(
        Order,
        relationships=[
            to_one("customer", inverse="orders", nullable=False),
            to_many("items", inverse="order"),
            to_many("tags", inverse="orders", pivotable=True),
        ],
        unmodifiable={"reference"},
        defaults={"status": "new"},
        validation_rules={"status": Literal["new", "paid", "cancelled"]},
        default_sorting={"id": "asc"},
        prepared_filters={
            "open_orders": lambda stmt, params: stmt.where(Order.status != "cancelled"),
        },
    )
    registry.register(
        OrderItem,
        relationships=[
            to_one("order", inverse="items", nullable=False),
            to_one("product", inverse="order_items", editable=[{"active": True}]),
        ],
        validation_rules={
            "sku": NonEmpty,
            "qty": Annotated[int, Field(gt=0)],
        },
    )
    registry.register(
        Product,
        relationships=[to_many("order_items", inverse="product")],
        defaults={"active": True},
    )
    registry.register(
        Tag,
        relationships=[to_many("orders", inverse="tags")],
        validation_rules={"name": NonEmpty},
    )
    return registry


registry = build_registry()
