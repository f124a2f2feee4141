"""Pytest configuration for the catalog API tests."""

import os
import uuid

import mongomock
import pytest
from fastapi.testclient import TestClient

from fakes import FakeDatabase


# ---------------------------------------------------------------------------
# In-memory database for HTTP and builder tests
# ---------------------------------------------------------------------------

@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def mock_db():
    """Database evaluated in process by mongomock; queries and pipelines really run."""
    return mongomock.MongoClient()[f"storefront_test_{uuid.uuid4().hex[:8]}"]


@pytest.fixture
def client(fake_db):
    """TestClient with get_db pointed at the in-memory database."""
    from main import app
    from database import get_db

    app.dependency_overrides[get_db] = lambda: fake_db
    yield TestClient(app)
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# MongoDB availability check (runs once at collection time)
# ---------------------------------------------------------------------------

_MONGO_TEST_URL = os.getenv("MONGO_TEST_URL") or "mongodb://localhost:27017"


def _mongo_available() -> bool:
    """Return True if a real MongoDB server is reachable."""
    try:
        from pymongo import MongoClient
        from pymongo.errors import PyMongoError
    except ImportError:
        return False
    try:
        client = MongoClient(_MONGO_TEST_URL, serverSelectionTimeoutMS=1500)
        client.admin.command("ping")
        client.close()
        return True
    except PyMongoError:
        return False


_MONGO_UP = _mongo_available()

# Test files that require a live MongoDB server.
_MONGO_REQUIRED_FILES = {
    "test_catalog_integration.py",
}


def pytest_collection_modifyitems(items, config):
    """Auto-skip MongoDB-dependent tests when the server is not reachable."""
    if _MONGO_UP:
        return

    skip_marker = pytest.mark.skip(
        reason="MongoDB not available; set MONGO_TEST_URL to run integration tests"
    )
    for item in items:
        if getattr(item.fspath, "basename", "") in _MONGO_REQUIRED_FILES:
            item.add_marker(skip_marker)


@pytest.fixture
def mongo_db():
    """Fresh, uniquely named database, dropped after the test."""
    from pymongo import MongoClient
    from database import ensure_indexes

    client = MongoClient(_MONGO_TEST_URL, serverSelectionTimeoutMS=1500)
    name = f"storefront_test_{uuid.uuid4().hex[:8]}"
    db = client[name]
    ensure_indexes(db)
    try:
        yield db
    finally:
        client.drop_database(name)
        client.close()


# ---------------------------------------------------------------------------
# Seeded catalog
# ---------------------------------------------------------------------------

_THUMBNAIL = {"url": "https://example.com/p.jpg", "altText": "p"}


def seed_catalog(db):
    """
    Seed brands, categories, three products and one age range:

    - Acme Widget: Acme / Widgets, basePrice 100, in stock
    - Acme Gadget: Acme / Gadgets, basePrice 200, Refurbished
    - Zed Widget:  Zed / Widgets, one variant at 50 with stock 5
    - Kids age range containing Acme Widget and Zed Widget
    """
    import catalog
    from database import AGE_RANGES, BRANDS, CATEGORIES, create_document
    from schemas import AgeRange, Brand, Category, ProductCreate

    acme = create_document(db, BRANDS, Brand(name="Acme", slug="acme"))
    zed = create_document(db, BRANDS, Brand(name="Zed", slug="zed"))
    widgets = create_document(db, CATEGORIES, catalog.category_document(Category(name="Widgets", slug="widgets")))
    gadgets = create_document(db, CATEGORIES, catalog.category_document(Category(name="Gadgets", slug="gadgets")))

    widget = catalog.create_product(db, ProductCreate(
        name="Acme Widget", brand=acme, categories=[widgets], tags=["widget"],
        basePrice=100, stockQuantity=10, images={"thumbnail": _THUMBNAIL},
    ))
    catalog.create_product(db, ProductCreate(
        name="Acme Gadget", brand=acme, categories=[gadgets], tags=["gadget"],
        basePrice=200, stockQuantity=4, condition="Refurbished", images={"thumbnail": _THUMBNAIL},
    ))
    zed_widget = catalog.create_product(db, ProductCreate(
        name="Zed Widget", brand=zed, categories=[widgets], tags=["widget"],
        variantConfiguration={"hasVariants": True, "variantType": "Color"},
        variants=[{"name": "Red", "price": 50, "stockQuantity": 5}],
        images={"thumbnail": _THUMBNAIL},
    ))

    kids = AgeRange(name="Kids", slug="kids", startAge=3, endAge=12).model_dump()
    kids["products"] = [widget["_id"], zed_widget["_id"]]
    create_document(db, AGE_RANGES, kids)
    return db


@pytest.fixture
def catalog_db(mock_db):
    return seed_catalog(mock_db)


@pytest.fixture
def live_catalog_db(mongo_db):
    return seed_catalog(mongo_db)
