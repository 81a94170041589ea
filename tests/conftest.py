"""Pytest fixtures for the marketplace tests."""

import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import Principal, Role
from config import Settings
from database import PRODUCTS, Database
from inventory import InventoryStore
from order_store import OrderStore
from orders import OrderPlacementCoordinator
from schemas import Product, RequestedItem


@pytest.fixture
def database():
    """In-memory MongoDB. No retries, so injected faults surface immediately."""
    return Database(mongomock.MongoClient(), "lokalfarmers_test", retry_attempts=1)


@pytest.fixture
def add_product(database):
    def _add(name="Carrots", price=10.0, quantity=5, category="Vegetables", farmer_id="farmer-1", description=""):
        product = Product(
            name=name,
            description=description,
            category=category,
            price=price,
            quantity=quantity,
            farmer_id=farmer_id,
        )
        return database.create_document(PRODUCTS, product)

    return _add


@pytest.fixture
def inventory(database):
    return InventoryStore(database)


@pytest.fixture
def order_store(database):
    return OrderStore(database)


@pytest.fixture
def coordinator(inventory, order_store):
    return OrderPlacementCoordinator(inventory, order_store)


@pytest.fixture
def consumer():
    return Principal(user_id="consumer-1", role=Role.CONSUMER)


def line(product_id, quantity):
    return RequestedItem(product=product_id, quantity=quantity)


def stock_of(inventory, product_id):
    return inventory.get_by_id(product_id)["quantity"]


@pytest.fixture
def client(database):
    from main import create_app

    app = create_app(database=database, settings=Settings())
    with TestClient(app) as c:
        yield c


def headers(user_id, role):
    return {"X-User-Id": user_id, "X-User-Role": role}


CONSUMER = headers("consumer-1", "Consumer")
FARMER = headers("farmer-1", "Farmer")
ADMIN = headers("admin-1", "Admin")
