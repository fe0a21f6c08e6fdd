"""
Pytest configuration and fixtures for the test suite.
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from basemodel.models.base import Base
from basemodel.routers.crud import build_crud_router
from basemodel.services.base_service import BaseModelService
from basemodel.services.crud.editor import EntityEditor
from basemodel_shared.infrastructure.db import get_db
from tests.models import Customer, Order, OrderItem, Product, Tag, registry


# SQLite in-memory database for testing
SQLALCHEMY_DATABASE_URL = "sqlite://"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@event.listens_for(engine, "connect")
def _on_connect(dbapi_connection, connection_record):
    # pysqlite: let SQLAlchemy emit BEGIN itself so SAVEPOINT works
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@event.listens_for(engine, "begin")
def _on_begin(conn):
    conn.exec_driver_sql("BEGIN")


TestingSessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
)


@pytest.fixture(scope="function")
def db_session():
    """
    Create a fresh database session for each test.
    Uses SQLite in-memory for isolation.
    """
    Base.metadata.create_all(bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def editor(db_session):
    return EntityEditor(db_session, registry)


@pytest.fixture
def app():
    application = FastAPI()
    application.include_router(
        build_crud_router(
            Order,
            lambda db: BaseModelService(db, Order, registry=registry),
            prefix="/orders",
            registry=registry,
        )
    )
    application.include_router(
        build_crud_router(Customer, prefix="/customers", registry=registry)
    )
    return application


@pytest.fixture(scope="function")
def client(app, db_session):
    """
    Create a test client with database session override.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


# =============================================================================
# Seed data
# =============================================================================


@pytest.fixture
def seed_customer(db_session):
    """Create a test customer."""
    customer = Customer(name="Ada Lovelace", email="ada@example.com")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture
def seed_products(db_session):
    """Create one active and one inactive product."""
    active = Product(name="Widget", active=True)
    inactive = Product(name="Legacy", active=False)
    db_session.add_all([active, inactive])
    db_session.commit()
    return active, inactive


@pytest.fixture
def seed_order(db_session, seed_customer):
    """Create an order with items A, B, C."""
    order = Order(customer=seed_customer, status="new")
    order.items = [
        OrderItem(sku="A", qty=1),
        OrderItem(sku="B", qty=1),
        OrderItem(sku="C", qty=1),
    ]
    db_session.add(order)
    db_session.commit()
    return order


@pytest.fixture
def seed_tags(db_session):
    tags = [Tag(name="vip"), Tag(name="gift"), Tag(name="rush")]
    db_session.add_all(tags)
    db_session.commit()
    return tags
