"""
Pydantic schemas for request/response validation in the Bookstores service.

These schemas define the structure of data for API requests and responses.
Range rules on prices and stock are enforced by the inventory service, not here.
"""
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from .models import INT32_MAX, INT32_MIN


class StoreBase(BaseModel):
    """Base schema with common store attributes."""
    name: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)


class StoreCreate(StoreBase):
    """Schema for creating a new store."""
    pass


class StoreUpdate(StoreBase):
    """Schema for replacing a store's name and address."""
    pass


class Store(BaseModel):
    uuid: UUID
    name: str
    address: str

    class Config:
        from_attributes = True


class BookCreate(BaseModel):
    """
    Schema for creating a book.

    When a book with the same ISBN already exists its title and author are
    updated instead.
    """
    isbn: Optional[str] = Field(default=None, min_length=1, max_length=13)
    title: str = Field(..., min_length=1)
    author: str = Field(..., min_length=1)
    description: Optional[str] = None
    page_count: Optional[int] = Field(default=None, gt=0, le=INT32_MAX)
    publication_year: Optional[int] = Field(default=None, ge=INT32_MIN, le=INT32_MAX)


class Book(BaseModel):
    id: int
    isbn: Optional[str] = None
    title: str
    author: str
    description: Optional[str] = None
    page_count: Optional[int] = None
    publication_year: Optional[int] = None

    class Config:
        from_attributes = True


class SKUCreate(BaseModel):
    """Schema for creating a SKU: a book offered by a store."""
    book_id: int
    store_uuid: UUID
    price_in_kopeks: int
    stock_count: int = 0


class SKUPriceUpdate(BaseModel):
    new_price_in_kopeks: int


class StockAdjustment(BaseModel):
    """
    Schema for a stock adjustment.

    Attributes:
        change_by (int): Signed delta; positive restocks, negative sells
        comment (str): Free text from the operator, not stored
    """
    change_by: int
    comment: Optional[str] = None


class SKU(BaseModel):
    """
    Schema for SKU responses.

    Attributes:
        id (int): Surrogate SKU ID
        uuid (UUID): Public SKU identifier
        book_id (int): Referenced book
        store_id (int): Referenced store
        price_in_kopeks (int): Current price
        stock_count (int): Current stock level
        created_at (datetime): When the SKU was created
        updated_at (datetime): When the SKU last changed
    """
    id: int
    uuid: UUID
    book_id: int
    store_id: int
    price_in_kopeks: int
    stock_count: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class SKUWithBook(BaseModel):
    sku: SKU
    book: Book


class Availability(BaseModel):
    """One store offering a book."""
    store_uuid: UUID
    store_name: str
    sku_uuid: UUID
    price_in_kopeks: int
    stock_count: int
