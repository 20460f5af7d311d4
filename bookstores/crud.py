"""
CRUD (Create, Read, Update, Delete) operations for the Bookstores service.

Store and book functions commit their own changes. SKU row functions only
flush: the inventory service decides where each SKU transaction ends.
"""
import logging
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.sql import func

from . import models, schemas

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 10


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

def get_store_by_uuid(db: Session, store_uuid: UUID) -> Optional[models.Store]:
    """
    Retrieve an active store by its public UUID.

    Args:
        db: Database session
        store_uuid: Public identifier of the store

    Returns:
        Store object or None if not found or soft-deleted
    """
    return (
        db.query(models.Store)
        .filter(models.Store.uuid == store_uuid, models.Store.deleted_at.is_(None))
        .first()
    )


def list_stores(db: Session) -> List[models.Store]:
    """Return all active stores ordered by name."""
    return (
        db.query(models.Store)
        .filter(models.Store.deleted_at.is_(None))
        .order_by(models.Store.name)
        .all()
    )


def create_store(db: Session, store: schemas.StoreCreate) -> models.Store:
    db_store = models.Store(name=store.name, address=store.address)
    db.add(db_store)
    db.commit()
    db.refresh(db_store)
    logger.info(f"Store created successfully: {db_store.uuid}")
    return db_store


def update_store(db: Session, store_uuid: UUID, store: schemas.StoreUpdate) -> Optional[models.Store]:
    """
    Replace the name and address of an active store.

    Args:
        db: Database session
        store_uuid: Public identifier of the store
        store: New store data

    Returns:
        Updated Store object or None if not found or soft-deleted
    """
    db_store = get_store_by_uuid(db, store_uuid)
    if db_store is None:
        return None

    db_store.name = store.name
    db_store.address = store.address
    db.commit()
    db.refresh(db_store)
    logger.info(f"Store updated successfully: {db_store.uuid}")
    return db_store


def soft_delete_store(db: Session, store_uuid: UUID) -> bool:
    """
    Mark a store as deleted without removing its row.

    SKUs of the store are left untouched.

    Returns:
        True if the store was deleted, False if not found or already deleted
    """
    db_store = get_store_by_uuid(db, store_uuid)
    if db_store is None:
        return False

    db_store.deleted_at = func.now()
    db.commit()
    logger.info(f"Store soft-deleted successfully: {store_uuid}")
    return True


# ---------------------------------------------------------------------------
# Books
# ---------------------------------------------------------------------------

def get_book(db: Session, book_id: int) -> Optional[models.Book]:
    """
    Retrieve an active book by ID.

    Args:
        db: Database session
        book_id: ID of the book to retrieve

    Returns:
        Book object or None if not found or soft-deleted
    """
    return (
        db.query(models.Book)
        .filter(models.Book.id == book_id, models.Book.deleted_at.is_(None))
        .first()
    )


def get_book_by_isbn(db: Session, isbn: str) -> Optional[models.Book]:
    return db.query(models.Book).filter(models.Book.isbn == isbn).first()


def list_books(db: Session) -> List[models.Book]:
    """Return all active books ordered by title."""
    return (
        db.query(models.Book)
        .filter(models.Book.deleted_at.is_(None))
        .order_by(models.Book.title)
        .all()
    )


def search_books(db: Session, query: str, limit: int = SEARCH_LIMIT) -> List[models.Book]:
    """
    Case-insensitive substring search over title and author.

    Args:
        db: Database session
        query: Text to look for
        limit: Maximum number of books to return

    Returns:
        List of matching active books
    """
    return (
        db.query(models.Book)
        .filter(
            models.Book.title.icontains(query, autoescape=True)
            | models.Book.author.icontains(query, autoescape=True),
            models.Book.deleted_at.is_(None),
        )
        .order_by(models.Book.title)
        .limit(limit)
        .all()
    )


def create_book(db: Session, book: schemas.BookCreate) -> models.Book:
    """
    Create a book, or refresh title and author of the book with the same ISBN.

    Args:
        db: Database session
        book: Book data to create

    Returns:
        Created or updated Book object
    """
    db_book = get_book_by_isbn(db, book.isbn) if book.isbn else None
    if db_book is None:
        db_book = models.Book(**book.model_dump())
        db.add(db_book)
        try:
            db.commit()
        except IntegrityError:
            # Another request inserted the same ISBN first
            db.rollback()
            db_book = get_book_by_isbn(db, book.isbn) if book.isbn else None
            if db_book is None:
                raise
            logger.info(f"Book with ISBN {book.isbn} created concurrently, updating it")
            return _update_book(db, db_book, book)
        db.refresh(db_book)
        return db_book

    return _update_book(db, db_book, book)


def _update_book(db: Session, db_book: models.Book, book: schemas.BookCreate) -> models.Book:
    db_book.title = book.title
    db_book.author = book.author
    db.commit()
    db.refresh(db_book)
    return db_book


# ---------------------------------------------------------------------------
# SKUs
# ---------------------------------------------------------------------------

def get_sku_by_uuid(db: Session, sku_uuid: UUID, for_update: bool = False) -> Optional[models.SKU]:
    """
    Retrieve an active SKU by its public UUID.

    Args:
        db: Database session
        sku_uuid: Public identifier of the SKU
        for_update: Lock the SKU row until the surrounding transaction ends

    Returns:
        SKU object or None if not found or soft-deleted
    """
    query = db.query(models.SKU).filter(
        models.SKU.uuid == sku_uuid, models.SKU.deleted_at.is_(None)
    )
    if for_update:
        query = query.with_for_update(of=models.SKU).populate_existing()
    else:
        query = query.options(joinedload(models.SKU.book, innerjoin=True))
    return query.first()


def get_sku_by_book_and_store(db: Session, book_id: int, store_id: int) -> Optional[models.SKU]:
    return (
        db.query(models.SKU)
        .filter(
            models.SKU.book_id == book_id,
            models.SKU.store_id == store_id,
            models.SKU.deleted_at.is_(None),
        )
        .first()
    )


def create_sku(db: Session, book_id: int, store_id: int, price_in_kopeks: int, stock_count: int) -> models.SKU:
    """
    Insert a SKU row and load its generated columns.

    Raises:
        sqlalchemy.exc.IntegrityError: if the (book, store) pair is taken
    """
    db_sku = models.SKU(
        book_id=book_id,
        store_id=store_id,
        price_in_kopeks=price_in_kopeks,
        stock_count=stock_count,
    )
    db.add(db_sku)
    db.flush()
    db.refresh(db_sku)
    return db_sku


def update_sku_price(db: Session, db_sku: models.SKU, price_in_kopeks: int) -> models.SKU:
    """Unconditionally set the price of a SKU; last writer wins."""
    (
        db.query(models.SKU)
        .filter(models.SKU.id == db_sku.id)
        .update(
            {models.SKU.price_in_kopeks: price_in_kopeks, models.SKU.updated_at: func.now()},
            synchronize_session=False,
        )
    )
    db.flush()
    db.refresh(db_sku)
    return db_sku


def adjust_sku_stock(db: Session, db_sku: models.SKU, change_by: int) -> models.SKU:
    """
    Add a signed delta to the stock of a SKU.

    The increment is computed by the database, never from a value read
    earlier by the caller.

    Raises:
        sqlalchemy.exc.IntegrityError: if the result would be negative
    """
    (
        db.query(models.SKU)
        .filter(models.SKU.id == db_sku.id)
        .update(
            {
                models.SKU.stock_count: models.SKU.stock_count + change_by,
                models.SKU.updated_at: func.now(),
            },
            synchronize_session=False,
        )
    )
    db.flush()
    db.refresh(db_sku)
    return db_sku


def list_book_availability(db: Session, book_id: int) -> List[Tuple[models.Store, models.SKU]]:
    """
    List every active store offering a book, with the offering SKU.

    Args:
        db: Database session
        book_id: ID of the book

    Returns:
        List of (Store, SKU) pairs ordered by store name
    """
    rows = (
        db.query(models.Store, models.SKU)
        .join(models.SKU, models.SKU.store_id == models.Store.id)
        .filter(
            models.SKU.book_id == book_id,
            models.SKU.deleted_at.is_(None),
            models.Store.deleted_at.is_(None),
        )
        .order_by(models.Store.name, models.SKU.id)
        .all()
    )
    return [(store, sku) for store, sku in rows]


def list_store_skus(db: Session, store_id: int) -> List[models.SKU]:
    """Return the active SKUs of a store with their books loaded."""
    return (
        db.query(models.SKU)
        .options(joinedload(models.SKU.book, innerjoin=True))
        .filter(models.SKU.store_id == store_id, models.SKU.deleted_at.is_(None))
        .order_by(models.SKU.id)
        .all()
    )
