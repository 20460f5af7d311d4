import logging
import os
import tempfile
from pathlib import Path

# Must be set before bookstores.database builds its module-level engine
os.environ.setdefault(
    "DATABASE_URL",
    "sqlite:///" + os.path.join(tempfile.mkdtemp(prefix="bookstores-tests-"), "default.db"),
)
os.environ.setdefault("LOG_LEVEL", "warn")

import pytest

from bookstores import crud, models, schemas
from bookstores.database import build_engine, make_session_factory
from bookstores.inventory import InventoryService


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their file name."""
    for item in items:
        if Path(item.fspath).name == "test_api.py":
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.domain)


@pytest.fixture()
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'bookstores.db'}")
    models.Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture()
def service(session_factory):
    return InventoryService(session_factory, logging.getLogger("tests.inventory"))


def make_store(session_factory, name="Store 1", address="Test street, 1"):
    """Helper: create a store in its own short-lived session."""
    with session_factory() as db:
        return crud.create_store(db, schemas.StoreCreate(name=name, address=address))


def make_book(session_factory, **overrides):
    """Helper: create a book in its own short-lived session."""
    defaults = {"isbn": "9780000000001", "title": "The Book", "author": "A. Author"}
    defaults.update(overrides)
    with session_factory() as db:
        return crud.create_book(db, schemas.BookCreate(**defaults))


@pytest.fixture()
def store(session_factory):
    return make_store(session_factory)


@pytest.fixture()
def book(session_factory):
    return make_book(session_factory)


@pytest.fixture()
def sku(service, book, store):
    return service.create_sku(book.id, store.uuid, price_in_kopeks=500, stock_count=10)


def stock_of(session_factory, sku_uuid):
    """Read the committed stock of a SKU from a fresh session."""
    with session_factory() as db:
        return crud.get_sku_by_uuid(db, sku_uuid).stock_count
