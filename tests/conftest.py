"""Pytest fixtures for storefront tests."""

import os

# Settings are read at import time
os.environ.setdefault("OTEL_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("DATABASE_URL", "sqlite://")

from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from storefront.db import database  # noqa: E402
from storefront.models.enums import PaymentMethod, Role  # noqa: E402
from storefront.models.product import Product  # noqa: E402
from storefront.models.schemas import AddressInfo, OrderCreate, UserCreate  # noqa: E402
from storefront.services.auth import create_access_token  # noqa: E402
from storefront.services.cache import CatalogCache  # noqa: E402
from storefront.services.gateways import default_registry  # noqa: E402
from storefront.services.notifications import NotificationDispatcher  # noqa: E402
from storefront.services.order_service import OrderService  # noqa: E402
from storefront.services.payment_service import PaymentService  # noqa: E402
from storefront.services.pricing import PricingCalculator  # noqa: E402
from storefront.services.user_service import UserService  # noqa: E402


class RecordingNotifier(NotificationDispatcher):
    """Dispatcher that keeps every send in memory instead of posting it."""

    def __init__(self):
        super().__init__(webhook_url=None)
        self.messages = []

    def send(self, recipient, template_key, variables):
        self.messages.append((recipient, template_key, variables))
        return None

    def templates(self):
        return [template for _, template, _ in self.messages]


@pytest.fixture
def engine():
    """Fresh in-memory database with every table created."""
    engine = database.init_database("sqlite://")
    database.create_tables()
    yield engine
    database.Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = database.SessionLocal()
    yield session
    session.close()


@pytest.fixture
def notifier():
    dispatcher = RecordingNotifier()
    yield dispatcher
    dispatcher.close(wait=False)


@pytest.fixture
def pricing():
    return PricingCalculator()


@pytest.fixture
def order_service(pricing, notifier):
    return OrderService(pricing, notifier)


@pytest.fixture
def payment_service():
    return PaymentService(default_registry())


@pytest.fixture
def user(db):
    return UserService.create_user(
        db, UserCreate(email="alice@example.com", full_name="Alice", password="secret123")
    )


@pytest.fixture
def other_user(db):
    return UserService.create_user(
        db, UserCreate(email="bob@example.com", full_name="Bob", password="secret123")
    )


@pytest.fixture
def admin(db):
    return UserService.create_user(
        db,
        UserCreate(email="admin@example.com", full_name="Admin", password="secret123"),
        role=Role.ADMIN
    )


@pytest.fixture
def make_product(db):
    """Factory creating committed products."""
    counter = {"n": 0}

    def _make(price="25.00", stock=10, active=True, **fields):
        counter["n"] += 1
        product = Product(
            name=fields.pop("name", f"Product {counter['n']}"),
            sku=fields.pop("sku", f"SKU-{counter['n']:04d}"),
            price=Decimal(price),
            stock_quantity=stock,
            is_active=active,
            **fields
        )
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return _make


@pytest.fixture
def address():
    return AddressInfo(
        name="Alice",
        street="1 Main St",
        city="Springfield",
        state="IL",
        zip_code="62701",
        country="US",
        phone_number="555-0100"
    )


@pytest.fixture
def checkout_request(address):
    def _request(payment_method=PaymentMethod.CARD, coupon_code=None):
        return OrderCreate(
            payment_method=payment_method,
            shipping_address=address,
            coupon_code=coupon_code
        )

    return _request


@pytest.fixture
def client(engine, notifier):
    """Test client with the recording notifier and a private catalog cache."""
    from storefront.api import deps
    from storefront.main import app

    cache = CatalogCache()
    app.dependency_overrides[deps.get_notifier] = lambda: notifier
    app.dependency_overrides[deps.get_catalog_cache] = lambda: cache
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Build a bearer header for a user."""
    def _headers(user):
        token = create_access_token({"sub": str(user.id), "role": user.role.value})
        return {"Authorization": f"Bearer {token}"}

    return _headers
