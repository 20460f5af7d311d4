"""
SQLAlchemy ORM models for the Bookstores service.

Defines the database schema for stores, books and the per-store sellable
listings (SKUs) that bind them together.
"""
import uuid

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base

# Value ranges of the INTEGER and BIGINT columns
INT32_MIN, INT32_MAX = -(2 ** 31), 2 ** 31 - 1
INT64_MIN, INT64_MAX = -(2 ** 63), 2 ** 63 - 1

# SQLite only autoincrements INTEGER PRIMARY KEY columns
BigIntegerId = BigInteger().with_variant(Integer(), "sqlite")


class Store(Base):
    """
    Store model representing a physical bookstore.

    Attributes:
        id (int): Primary key, surrogate store ID
        uuid (UUID): Public identifier used by clients
        name (str): Store name
        address (str): Postal address
        deleted_at (datetime): Soft-delete timestamp, NULL while the store is active
    """
    __tablename__ = "stores"

    id = Column(BigIntegerId, primary_key=True, autoincrement=True)
    uuid = Column(Uuid, unique=True, nullable=False, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    address = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    skus = relationship("SKU", back_populates="store", passive_deletes=True)


class Book(Base):
    """
    Book model representing a title in the global catalog.

    Attributes:
        id (int): Primary key, surrogate book ID
        isbn (str): Optional external code, unique when present
        title (str): Book title
        author (str): Book author
        description (str): Optional description
        page_count (int): Optional page count, positive when present
        publication_year (int): Optional year of publication
        deleted_at (datetime): Soft-delete timestamp
    """
    __tablename__ = "books"

    id = Column(BigIntegerId, primary_key=True, autoincrement=True)
    isbn = Column(String(13), unique=True, nullable=True)
    title = Column(Text, nullable=False)
    author = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    page_count = Column(Integer, nullable=True)
    publication_year = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    skus = relationship("SKU", back_populates="book", passive_deletes=True)

    __table_args__ = (
        CheckConstraint("page_count > 0", name="ck_books_page_count_positive"),
    )


class SKU(Base):
    """
    SKU model: one book offered by one store at a price with a stock level.

    The constraints below are the authoritative guards for the inventory
    invariants; the service layer checks the same rules first only to give
    friendlier errors.

    Attributes:
        id (int): Primary key, surrogate SKU ID
        uuid (UUID): Public identifier used by clients
        book_id (int): Referenced book
        store_id (int): Referenced store
        price_in_kopeks (int): Price in the smallest currency unit, never negative
        stock_count (int): Units on hand, never negative
        deleted_at (datetime): Soft-delete timestamp
    """
    __tablename__ = "skus"

    id = Column(BigIntegerId, primary_key=True, autoincrement=True)
    uuid = Column(Uuid, unique=True, nullable=False, default=uuid.uuid4)
    book_id = Column(BigIntegerId, ForeignKey("books.id", ondelete="CASCADE"), nullable=False)
    store_id = Column(BigIntegerId, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False)
    price_in_kopeks = Column(Integer, nullable=False)
    stock_count = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    book = relationship("Book", back_populates="skus")
    store = relationship("Store", back_populates="skus")

    __table_args__ = (
        CheckConstraint("price_in_kopeks >= 0", name="ck_skus_price_non_negative"),
        CheckConstraint("stock_count >= 0", name="ck_skus_stock_non_negative"),
        Index(
            "uq_skus_book_store_active",
            "book_id",
            "store_id",
            unique=True,
            postgresql_where=deleted_at.is_(None),
            sqlite_where=deleted_at.is_(None),
        ),
        Index("ix_skus_store_id", "store_id"),
    )
