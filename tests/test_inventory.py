"""Tests for the inventory service against a real SQLite database."""

import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy.exc import IntegrityError

from bookstores import crud
from bookstores.errors import (
    BookNotFound,
    ErrorKind,
    InsufficientStock,
    InvalidInput,
    OperationCancelled,
    SKUAlreadyExists,
    SKUNotFound,
    StoreNotFound,
    Unavailable,
)
from bookstores.database import build_engine, make_session_factory
from bookstores.inventory import INT32_MAX, INT32_MIN, InventoryService, deadline_after

from conftest import make_book, make_store, stock_of


class TestCreateSKU:
    def test_create_sku(self, service, book, store):
        sku = service.create_sku(book.id, store.uuid, price_in_kopeks=500, stock_count=10)

        assert sku.id is not None
        assert isinstance(sku.uuid, uuid.UUID)
        assert sku.book_id == book.id
        assert sku.store_id == store.id
        assert sku.price_in_kopeks == 500
        assert sku.stock_count == 10
        assert sku.created_at is not None
        assert sku.updated_at is not None

    def test_store_uuid_as_string(self, service, book, store):
        sku = service.create_sku(book.id, str(store.uuid), price_in_kopeks=0, stock_count=0)
        assert sku.stock_count == 0

    def test_second_sku_for_same_pair_is_rejected(self, service, sku, book, store):
        with pytest.raises(SKUAlreadyExists) as exc_info:
            service.create_sku(book.id, store.uuid, price_in_kopeks=100, stock_count=1)
        assert exc_info.value.kind == ErrorKind.CONFLICT

    def test_same_book_in_another_store(self, service, session_factory, sku, book):
        other = make_store(session_factory, name="Store 2", address="Test street, 2")
        created = service.create_sku(book.id, other.uuid, price_in_kopeks=700, stock_count=3)
        assert created.store_id == other.id

    def test_unique_index_is_authoritative(self, service, sku, book, store, monkeypatch):
        """A racing creator that passed the pre-check still gets SKUAlreadyExists."""
        monkeypatch.setattr(crud, "get_sku_by_book_and_store", lambda db, book_id, store_id: None)
        with pytest.raises(SKUAlreadyExists):
            service.create_sku(book.id, store.uuid, price_in_kopeks=100, stock_count=1)

    def test_unknown_book(self, service, store):
        with pytest.raises(BookNotFound):
            service.create_sku(999, store.uuid, price_in_kopeks=100, stock_count=1)

    def test_unknown_store(self, service, book):
        with pytest.raises(StoreNotFound):
            service.create_sku(book.id, uuid.uuid4(), price_in_kopeks=100, stock_count=1)

    def test_soft_deleted_store(self, service, session_factory, book, store):
        with session_factory() as db:
            crud.soft_delete_store(db, store.uuid)
        with pytest.raises(StoreNotFound):
            service.create_sku(book.id, store.uuid, price_in_kopeks=100, stock_count=1)

    @pytest.mark.parametrize(
        "price, stock",
        [(-1, 0), (0, -1), ("500", 1), (1.5, 1), (True, 1), (2 ** 31, 0), (0, 2 ** 31), (2 ** 63, 0)],
    )
    def test_invalid_input_checked_before_storage(self, price, stock, tmp_path):
        # No tables exist: any storage access would fail with Unavailable
        engine = build_engine(f"sqlite:///{tmp_path / 'empty.db'}")
        service = InventoryService(make_session_factory(engine))
        with pytest.raises(InvalidInput):
            service.create_sku(1, uuid.uuid4(), price_in_kopeks=price, stock_count=stock)
        engine.dispose()

    def test_malformed_store_uuid(self, service, book):
        with pytest.raises(InvalidInput):
            service.create_sku(book.id, "not-a-uuid", price_in_kopeks=1, stock_count=1)

    def test_book_id_beyond_bigint(self, service, store):
        with pytest.raises(InvalidInput):
            service.create_sku(2 ** 63, store.uuid, price_in_kopeks=1, stock_count=1)


class TestGetSKU:
    def test_get_sku_with_book(self, service, sku, book):
        found = service.get_sku(sku.uuid)
        assert found.id == sku.id
        assert found.book.id == book.id
        assert found.book.title == "The Book"

    def test_unknown_sku(self, service):
        with pytest.raises(SKUNotFound):
            service.get_sku(uuid.uuid4())


class TestUpdatePrice:
    def test_update_price(self, service, sku):
        updated = service.update_price(sku.uuid, 450)
        assert updated.price_in_kopeks == 450
        assert updated.stock_count == 10
        assert service.get_sku(sku.uuid).price_in_kopeks == 450

    def test_zero_price_is_allowed(self, service, sku):
        assert service.update_price(sku.uuid, 0).price_in_kopeks == 0

    def test_negative_price(self, service, sku):
        with pytest.raises(InvalidInput):
            service.update_price(sku.uuid, -1)
        assert service.get_sku(sku.uuid).price_in_kopeks == 500

    def test_price_beyond_int32(self, service, sku):
        with pytest.raises(InvalidInput):
            service.update_price(sku.uuid, INT32_MAX + 1)
        assert service.update_price(sku.uuid, INT32_MAX).price_in_kopeks == INT32_MAX

    def test_unknown_sku(self, service):
        with pytest.raises(SKUNotFound):
            service.update_price(uuid.uuid4(), 100)


class TestAdjustStock:
    def test_decrease(self, service, sku):
        assert service.adjust_stock(sku.uuid, -3).stock_count == 7

    def test_increase(self, service, sku):
        assert service.adjust_stock(sku.uuid, 5).stock_count == 15

    def test_down_to_zero(self, service, sku):
        assert service.adjust_stock(sku.uuid, -10).stock_count == 0

    def test_insufficient_stock_leaves_stock_unchanged(self, service, session_factory, sku):
        with pytest.raises(InsufficientStock) as exc_info:
            service.adjust_stock(sku.uuid, -11)
        assert exc_info.value.kind == ErrorKind.INSUFFICIENT_STOCK
        assert stock_of(session_factory, sku.uuid) == 10

    def test_unknown_sku(self, service):
        with pytest.raises(SKUNotFound):
            service.adjust_stock(uuid.uuid4(), 1)

    def test_non_integer_delta(self, service, sku):
        with pytest.raises(InvalidInput):
            service.adjust_stock(sku.uuid, 1.0)

    @pytest.mark.parametrize("change_by", [2 ** 63, INT32_MAX + 1, INT32_MIN - 1])
    def test_delta_beyond_int32(self, service, session_factory, sku, change_by):
        with pytest.raises(InvalidInput):
            service.adjust_stock(sku.uuid, change_by)
        assert stock_of(session_factory, sku.uuid) == 10

    def test_stock_overflow_leaves_stock_unchanged(self, service, session_factory, sku):
        with pytest.raises(InvalidInput):
            service.adjust_stock(sku.uuid, INT32_MAX)
        assert stock_of(session_factory, sku.uuid) == 10
        assert service.adjust_stock(sku.uuid, INT32_MAX - 10).stock_count == INT32_MAX

    def test_sequential_adjustments_compose(self, service, session_factory, book):
        store_a = make_store(session_factory, name="A")
        store_b = make_store(session_factory, name="B")
        split = service.create_sku(book.id, store_a.uuid, price_in_kopeks=1, stock_count=20)
        once = service.create_sku(book.id, store_b.uuid, price_in_kopeks=1, stock_count=20)

        service.adjust_stock(split.uuid, -7)
        service.adjust_stock(split.uuid, 4)
        service.adjust_stock(once.uuid, -3)

        assert stock_of(session_factory, split.uuid) == stock_of(session_factory, once.uuid) == 17

    def test_stock_check_constraint(self, session_factory, sku):
        """The database itself refuses a negative stock."""
        with session_factory() as db:
            row = crud.get_sku_by_uuid(db, sku.uuid, for_update=True)
            with pytest.raises(IntegrityError):
                crud.adjust_sku_stock(db, row, -11)
            db.rollback()
        assert stock_of(session_factory, sku.uuid) == 10

    def test_unexpected_error_rolls_back(self, service, session_factory, sku, monkeypatch):
        original = crud.adjust_sku_stock

        def adjust_then_fail(db, db_sku, change_by):
            original(db, db_sku, change_by)
            raise RuntimeError("boom")

        monkeypatch.setattr(crud, "adjust_sku_stock", adjust_then_fail)
        with pytest.raises(RuntimeError):
            service.adjust_stock(sku.uuid, -4)
        assert stock_of(session_factory, sku.uuid) == 10


class TestConcurrentAdjustments:
    def _run(self, service, sku_uuid, deltas):
        barrier = threading.Barrier(len(deltas))

        def adjust(delta):
            barrier.wait()
            try:
                return service.adjust_stock(sku_uuid, delta).stock_count
            except InsufficientStock as exc:
                return exc

        with ThreadPoolExecutor(max_workers=len(deltas)) as pool:
            return list(pool.map(adjust, deltas))

    def test_decrements_summing_to_stock_end_at_zero(self, service, session_factory, sku):
        results = self._run(service, sku.uuid, [-1] * 10)

        assert all(isinstance(r, int) for r in results)
        assert all(r >= 0 for r in results)
        assert sorted(results) == list(range(10))
        assert stock_of(session_factory, sku.uuid) == 0

    def test_uneven_decrements_summing_to_stock(self, service, session_factory, sku):
        results = self._run(service, sku.uuid, [-4, -3, -2, -1])

        assert all(isinstance(r, int) and r >= 0 for r in results)
        assert stock_of(session_factory, sku.uuid) == 0

    def test_oversubscribed_decrements(self, service, session_factory, sku):
        results = self._run(service, sku.uuid, [-1] * 15)

        succeeded = [r for r in results if isinstance(r, int)]
        rejected = [r for r in results if isinstance(r, InsufficientStock)]
        assert len(succeeded) == 10
        assert len(rejected) == 5
        assert stock_of(session_factory, sku.uuid) == 0


class TestCancellation:
    def test_expired_deadline(self, service, session_factory, sku):
        with pytest.raises(OperationCancelled) as exc_info:
            service.adjust_stock(sku.uuid, -1, deadline=time.monotonic() - 1)
        assert exc_info.value.kind == ErrorKind.CANCELLED
        assert stock_of(session_factory, sku.uuid) == 10

    def test_future_deadline(self, service, sku):
        assert service.adjust_stock(sku.uuid, -1, deadline=deadline_after(30)).stock_count == 9

    def test_cancelled_before_start(self, service, sku):
        cancel = threading.Event()
        cancel.set()
        for call in (
            lambda: service.get_sku(sku.uuid, cancel_event=cancel),
            lambda: service.update_price(sku.uuid, 1, cancel_event=cancel),
            lambda: service.get_availability(sku.book_id, cancel_event=cancel),
        ):
            with pytest.raises(OperationCancelled):
                call()

    def test_cancelled_before_commit_rolls_back(self, service, session_factory, sku, monkeypatch):
        cancel = threading.Event()
        original = crud.adjust_sku_stock

        def adjust_then_cancel(db, db_sku, change_by):
            result = original(db, db_sku, change_by)
            cancel.set()
            return result

        monkeypatch.setattr(crud, "adjust_sku_stock", adjust_then_cancel)
        with pytest.raises(OperationCancelled):
            service.adjust_stock(sku.uuid, -5, cancel_event=cancel)
        assert stock_of(session_factory, sku.uuid) == 10


class TestAvailability:
    def test_book_without_skus(self, service, book):
        assert service.get_availability(book.id) == []

    def test_unknown_book(self, service):
        with pytest.raises(BookNotFound):
            service.get_availability(12345)

    def test_book_id_beyond_bigint(self, service):
        with pytest.raises(InvalidInput):
            service.get_availability(2 ** 63)

    def test_lists_active_stores(self, service, session_factory, book):
        zeta = make_store(session_factory, name="Zeta")
        alpha = make_store(session_factory, name="Alpha")
        gone = make_store(session_factory, name="Gone")
        for store in (zeta, alpha, gone):
            service.create_sku(book.id, store.uuid, price_in_kopeks=100, stock_count=1)
        with session_factory() as db:
            crud.soft_delete_store(db, gone.uuid)

        rows = service.get_availability(book.id)

        assert [store.name for store, _ in rows] == ["Alpha", "Zeta"]
        assert all(sku.book_id == book.id for _, sku in rows)

    def test_other_books_are_not_listed(self, service, session_factory, store, book):
        other = make_book(session_factory, isbn="9780000000002", title="Other")
        service.create_sku(other.id, store.uuid, price_in_kopeks=1, stock_count=1)
        assert service.get_availability(book.id) == []


class TestStoreSKUs:
    def test_list_store_skus(self, service, sku, store, book):
        skus = service.list_store_skus(store.uuid)
        assert [s.uuid for s in skus] == [sku.uuid]
        assert skus[0].book.id == book.id

    def test_unknown_store(self, service):
        with pytest.raises(StoreNotFound):
            service.list_store_skus(uuid.uuid4())


class TestStorageFailures:
    def test_storage_errors_become_unavailable(self, tmp_path, caplog):
        engine = build_engine(f"sqlite:///{tmp_path / 'empty.db'}")
        service = InventoryService(make_session_factory(engine))

        with pytest.raises(Unavailable) as exc_info:
            service.get_sku(uuid.uuid4())

        assert exc_info.value.kind == ErrorKind.UNAVAILABLE
        assert any(record.levelname == "ERROR" for record in caplog.records)
        engine.dispose()


class TestScenario:
    def test_store_book_sku_lifecycle(self, service, session_factory):
        store = make_store(session_factory, name="S1")
        book = make_book(session_factory, isbn=None, title="B1")

        sku = service.create_sku(book.id, store.uuid, price_in_kopeks=500, stock_count=10)
        assert sku.stock_count == 10

        assert service.adjust_stock(sku.uuid, -3).stock_count == 7

        with pytest.raises(InsufficientStock):
            service.adjust_stock(sku.uuid, -100)
        assert stock_of(session_factory, sku.uuid) == 7

        updated = service.update_price(sku.uuid, 450)
        assert updated.price_in_kopeks == 450
        assert updated.stock_count == 7

        with pytest.raises(SKUAlreadyExists):
            service.create_sku(book.id, store.uuid, price_in_kopeks=1, stock_count=1)
