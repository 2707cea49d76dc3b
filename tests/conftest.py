"""Pytest configuration and fixtures."""

import os

# Configure the app for tests before it is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["CACHE_ENABLED"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["WEBHOOK_URLS"] = ""

from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from warehouse import models
from warehouse.auth import create_access_token, get_password_hash, token_claims
from warehouse.database import Base, get_db
from warehouse.main import app
from warehouse.rate_limit import limiter

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _make_user(db: Session, email: str, role: str = "user", permissions=None) -> models.User:
    user = models.User(
        name=email.split("@")[0].title(),
        email=email,
        password_hash=get_password_hash("testpass123"),
        role=role,
        is_active=True,
        permissions=permissions or [],
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def admin_user(db_session: Session) -> models.User:
    return _make_user(db_session, "admin@example.com", role="admin")


@pytest.fixture
def reader_user(db_session: Session) -> models.User:
    """A plain user who may only read deliveries and inventory."""
    return _make_user(
        db_session,
        "reader@example.com",
        permissions=[
            {"service": "deliveries", "actions": ["read"]},
            {"service": "inventory", "actions": ["read"]},
        ],
    )


@pytest.fixture
def admin_headers(admin_user: models.User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(token_claims(admin_user))}"}


@pytest.fixture
def reader_headers(reader_user: models.User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(token_claims(reader_user))}"}


@pytest.fixture
def company(db_session: Session) -> models.DeliveryCompany:
    db_company = models.DeliveryCompany(
        name="Fast Couriers",
        code="FC",
        contact_person="Dana",
        email="ops@fast.example.com",
        phone="+100000000",
        address="1 Depot Road",
        status="active",
        rating=4.0,
        notes="",
    )
    db_session.add(db_company)
    db_session.commit()
    db_session.refresh(db_company)
    return db_company


@pytest.fixture
def location(db_session: Session) -> models.Location:
    db_location = models.Location(
        name="Main Warehouse",
        address="10 Storage Lane",
        type="warehouse",
        status="active",
        capacity=100,
        used_capacity=0,
    )
    db_session.add(db_location)
    db_session.commit()
    db_session.refresh(db_location)
    return db_location


@pytest.fixture
def supplier(db_session: Session) -> models.Supplier:
    db_supplier = models.Supplier(
        name="Acme Supplies",
        email="sales@acme.example.com",
        phone="+200000000",
        address="5 Factory Street",
        status="active",
    )
    db_session.add(db_supplier)
    db_session.commit()
    db_session.refresh(db_supplier)
    return db_supplier


def delivery_payload(company_id: int, **overrides) -> dict:
    payload = {
        "customer_name": "Jane Customer",
        "customer_email": "jane@example.com",
        "customer_phone": "+300000000",
        "delivery_location": {
            "address": "42 Harbour Street",
            "city": "Lisbon",
            "state": "Lisboa",
            "postal_code": "1100-001",
            "country": "PT",
            "coordinates": [38.7223, -9.1393],
        },
        "items": [{"product_id": 1, "quantity": 2, "unit_price": 10.0, "tax_rate": 0}],
        "delivery_company_id": company_id,
        "vat_rate": 23,
    }
    payload.update(overrides)
    return payload


def item_payload(**overrides) -> dict:
    payload = {
        "name": "Widget",
        "sku": "A1",
        "category": "parts",
        "current_stock": 5,
        "min_stock": 10,
        "max_stock": 50,
        "buying_price": 2.5,
        "unit_price": 4.0,
    }
    payload.update(overrides)
    return payload
