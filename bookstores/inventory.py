"""
Inventory service: SKU lifecycle and stock consistency.

The service owns creation of SKUs, price changes, stock adjustments and the
per-book availability query. It keeps no state between calls; every call
opens its own session from the injected session factory and releases it on
every exit path.

Only stock adjustment runs inside a locking unit of work. The stock row is
re-read with SELECT ... FOR UPDATE, so concurrent adjustments of the same SKU
serialize while adjustments of different SKUs proceed in parallel.
"""
import logging
import threading
import time
from contextlib import contextmanager
from typing import Iterator, List, Optional, Tuple, Union
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from . import crud, models
from .models import INT32_MAX, INT32_MIN, INT64_MAX, INT64_MIN
from .database import SessionLocal, unit_of_work
from .errors import (
    BookNotFound,
    InsufficientStock,
    InvalidInput,
    InventoryError,
    OperationCancelled,
    SKUAlreadyExists,
    SKUNotFound,
    StoreNotFound,
    Unavailable,
)

UNIQUE_BOOK_STORE = ("uq_skus_book_store_active", "skus.book_id, skus.store_id")
STOCK_CHECK = ("ck_skus_stock_non_negative",)
PG_QUERY_CANCELED = "57014"

UUIDLike = Union[UUID, str]


def deadline_after(seconds: float) -> float:
    """Absolute deadline, in time.monotonic() units, `seconds` from now."""
    return time.monotonic() + seconds


def _constraint_of(exc: DBAPIError) -> str:
    diag = getattr(exc.orig, "diag", None)
    name = getattr(diag, "constraint_name", None)
    return name or str(exc.orig)


def _matches(constraint: str, markers: Tuple[str, ...]) -> bool:
    return any(marker in constraint for marker in markers)


class InventoryService:
    """
    Entry point for SKU operations.

    Args:
        session_factory: Factory for database sessions (defaults to SessionLocal)
        logger: Logger receiving the service's records (defaults to the module logger)
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None, logger: Optional[logging.Logger] = None):
        self._session_factory = session_factory or SessionLocal
        self.log = logger or logging.getLogger(__name__)

    # -----------------------------------------------------------------------
    # Operations
    # -----------------------------------------------------------------------

    def create_sku(
        self,
        book_id: int,
        store_uuid: UUIDLike,
        price_in_kopeks: int,
        stock_count: int = 0,
        deadline: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> models.SKU:
        """
        Offer a book in a store.

        The pre-check for an existing SKU only produces a friendlier error;
        the partial unique index on (book_id, store_id) is what actually
        keeps two concurrent creations from both succeeding.

        Raises:
            InvalidInput: negative or out-of-range price or stock, malformed identifiers
            BookNotFound: no active book with this ID
            StoreNotFound: no active store with this UUID
            SKUAlreadyExists: the store already offers the book
        """
        self._require_int("book_id", book_id, INT64_MIN, INT64_MAX)
        self._require_non_negative("price_in_kopeks", price_in_kopeks)
        self._require_non_negative("stock_count", stock_count)
        store_uuid = self._parse_uuid("store_uuid", store_uuid)
        self._ensure_active(deadline, cancel_event)

        with self._translate_storage_errors("create sku"):
            with self._session_factory() as db:
                book = crud.get_book(db, book_id)
                if book is None:
                    raise BookNotFound(f"book {book_id} not found")

                store = crud.get_store_by_uuid(db, store_uuid)
                if store is None:
                    raise StoreNotFound(f"store {store_uuid} not found")

                if crud.get_sku_by_book_and_store(db, book.id, store.id) is not None:
                    self.log.info(f"SKU for book {book.id} already exists in store {store.uuid}")
                    raise SKUAlreadyExists()

                self._ensure_active(deadline, cancel_event)
                sku = crud.create_sku(db, book.id, store.id, price_in_kopeks, stock_count)
                db.commit()

        self.log.info(f"SKU created successfully: {sku.uuid} (book {book_id}, store {store_uuid})")
        return sku

    def get_sku(
        self,
        sku_uuid: UUIDLike,
        deadline: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> models.SKU:
        """
        Look up an active SKU together with its book.

        Raises:
            SKUNotFound: no active SKU with this UUID
        """
        sku_uuid = self._parse_uuid("sku_uuid", sku_uuid)
        self._ensure_active(deadline, cancel_event)

        with self._translate_storage_errors("get sku"):
            with self._session_factory() as db:
                sku = crud.get_sku_by_uuid(db, sku_uuid)
                if sku is None:
                    raise SKUNotFound(f"sku {sku_uuid} not found")
                return sku

    def update_price(
        self,
        sku_uuid: UUIDLike,
        new_price_in_kopeks: int,
        deadline: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> models.SKU:
        """
        Set a new price on a SKU.

        Concurrent updates are last-writer-wins.

        Raises:
            InvalidInput: negative price
            SKUNotFound: no active SKU with this UUID
        """
        self._require_non_negative("new_price_in_kopeks", new_price_in_kopeks)
        sku_uuid = self._parse_uuid("sku_uuid", sku_uuid)
        self._ensure_active(deadline, cancel_event)

        with self._translate_storage_errors("update sku price"):
            with self._session_factory() as db:
                sku = crud.get_sku_by_uuid(db, sku_uuid)
                if sku is None:
                    raise SKUNotFound(f"sku {sku_uuid} not found")

                self._ensure_active(deadline, cancel_event)
                crud.update_sku_price(db, sku, new_price_in_kopeks)
                db.commit()

        self.log.info(f"SKU {sku_uuid} price set to {new_price_in_kopeks}")
        return sku

    def adjust_stock(
        self,
        sku_uuid: UUIDLike,
        change_by: int,
        deadline: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> models.SKU:
        """
        Add a signed delta to a SKU's stock.

        The SKU row is locked and re-read inside the transaction, the
        non-negativity check runs against that locked value and the write
        is an in-database increment. Every failure before commit rolls the
        transaction back, so stock is either fully adjusted or unchanged.

        Args:
            sku_uuid: Public identifier of the SKU
            change_by: Positive to restock, negative for sales
            deadline: Absolute time.monotonic() deadline (see deadline_after)
            cancel_event: Set by the caller to abandon the adjustment

        Returns:
            The SKU with its new stock count

        Raises:
            InvalidInput: change_by is not a 32-bit integer, or the new stock would not fit one
            SKUNotFound: no active SKU with this UUID
            InsufficientStock: the adjustment would make stock negative
            OperationCancelled: deadline passed or caller cancelled before commit
        """
        self._require_int("change_by", change_by, INT32_MIN, INT32_MAX)
        sku_uuid = self._parse_uuid("sku_uuid", sku_uuid)
        self._ensure_active(deadline, cancel_event)

        with self._translate_storage_errors("adjust sku stock"):
            with unit_of_work(self._session_factory) as db:
                self._apply_statement_timeout(db, deadline)

                sku = crud.get_sku_by_uuid(db, sku_uuid, for_update=True)
                if sku is None:
                    raise SKUNotFound(f"sku {sku_uuid} not found")

                if sku.stock_count + change_by < 0:
                    self.log.info(
                        f"Rejected stock adjustment of {change_by} for SKU {sku_uuid}: "
                        f"{sku.stock_count} on hand"
                    )
                    raise InsufficientStock(
                        f"insufficient stock: {sku.stock_count} on hand, cannot change by {change_by}"
                    )

                if sku.stock_count + change_by > INT32_MAX:
                    raise InvalidInput(
                        f"stock cannot exceed {INT32_MAX}: {sku.stock_count} on hand, cannot change by {change_by}"
                    )

                crud.adjust_sku_stock(db, sku, change_by)
                self._ensure_active(deadline, cancel_event)

        self.log.info(f"SKU {sku_uuid} stock adjusted by {change_by} to {sku.stock_count}")
        return sku

    def get_availability(
        self,
        book_id: int,
        deadline: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[Tuple[models.Store, models.SKU]]:
        """
        List the stores offering a book.

        Returns:
            (Store, SKU) pairs, ordered by store name; empty when the book
            is not offered anywhere

        Raises:
            BookNotFound: no active book with this ID
        """
        self._require_int("book_id", book_id, INT64_MIN, INT64_MAX)
        self._ensure_active(deadline, cancel_event)

        with self._translate_storage_errors("get book availability"):
            with self._session_factory() as db:
                if crud.get_book(db, book_id) is None:
                    raise BookNotFound(f"book {book_id} not found")
                return crud.list_book_availability(db, book_id)

    def list_store_skus(
        self,
        store_uuid: UUIDLike,
        deadline: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[models.SKU]:
        """
        List the SKUs offered by a store, each with its book.

        Raises:
            StoreNotFound: no active store with this UUID
        """
        store_uuid = self._parse_uuid("store_uuid", store_uuid)
        self._ensure_active(deadline, cancel_event)

        with self._translate_storage_errors("list store skus"):
            with self._session_factory() as db:
                store = crud.get_store_by_uuid(db, store_uuid)
                if store is None:
                    raise StoreNotFound(f"store {store_uuid} not found")
                return crud.list_store_skus(db, store.id)

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    @staticmethod
    def _require_int(name: str, value, low: int = INT32_MIN, high: int = INT32_MAX) -> None:
        # bool is an int subclass
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidInput(f"{name} must be an integer")
        if not low <= value <= high:
            raise InvalidInput(f"{name} must be between {low} and {high}")

    @classmethod
    def _require_non_negative(cls, name: str, value) -> None:
        cls._require_int(name, value)
        if value < 0:
            raise InvalidInput(f"{name} must be greater than or equal to 0")

    @staticmethod
    def _parse_uuid(name: str, value: UUIDLike) -> UUID:
        if isinstance(value, UUID):
            return value
        try:
            return UUID(str(value))
        except ValueError:
            raise InvalidInput(f"invalid {name} format")

    @staticmethod
    def _ensure_active(deadline: Optional[float], cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelled("operation cancelled by caller")
        if deadline is not None and time.monotonic() >= deadline:
            raise OperationCancelled("deadline exceeded")

    @staticmethod
    def _apply_statement_timeout(db: Session, deadline: Optional[float]) -> None:
        """Bound lock waits by the caller's deadline (PostgreSQL only)."""
        if deadline is None or db.get_bind().dialect.name != "postgresql":
            return
        remaining_ms = max(1, int((deadline - time.monotonic()) * 1000))
        db.execute(text(f"SET LOCAL statement_timeout = {remaining_ms}"))

    @contextmanager
    def _translate_storage_errors(self, action: str) -> Iterator[None]:
        """
        Classify storage exceptions raised inside the block.

        Constraint violations that mirror an inventory rule become the same
        error the service raises for that rule. Everything else from the
        storage layer is logged and surfaced as Unavailable.
        """
        try:
            yield
        except InventoryError:
            raise
        except IntegrityError as exc:
            constraint = _constraint_of(exc)
            if _matches(constraint, UNIQUE_BOOK_STORE):
                self.log.info(f"Failed to {action}: unique (book, store) constraint rejected insert")
                raise SKUAlreadyExists() from exc
            if _matches(constraint, STOCK_CHECK):
                self.log.info(f"Failed to {action}: stock check constraint rejected update")
                raise InsufficientStock() from exc
            self.log.error(f"Failed to {action}: {exc}")
            raise Unavailable(f"failed to {action}") from exc
        except DBAPIError as exc:
            if getattr(exc.orig, "pgcode", None) == PG_QUERY_CANCELED:
                self.log.warning(f"Failed to {action}: statement timed out")
                raise OperationCancelled("deadline exceeded") from exc
            self.log.error(f"Failed to {action}: {exc}")
            raise Unavailable(f"failed to {action}") from exc
        except SQLAlchemyError as exc:
            self.log.error(f"Failed to {action}: {exc}")
            raise Unavailable(f"failed to {action}") from exc
