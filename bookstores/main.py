"""
    Bookstores Service API

    This module implements a FastAPI-based service for managing bookstores,
    a global catalog of books and the per-store SKUs that bind a book to a
    store with a price and a stock level.

    The service exposes:
    - CRUD endpoints for stores (with soft delete) and books (with search)
    - SKU endpoints: creation, lookup, price update and stock adjustment
    - Availability of a book across stores
    - Health endpoint: Provides service health status for monitoring and orchestration

    Inventory failures are raised by the inventory service as typed errors and
    translated to HTTP responses in one place.
"""
import time
import uuid
from typing import List
from uuid import UUID

from fastapi import Depends, FastAPI, HTTPException, Path, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import config, crud, models, schemas
from .database import SessionLocal, engine, get_db
from .errors import ErrorKind, InventoryError
from .inventory import InventoryService, deadline_after
from .logging_config import setup_logging
from .models import INT64_MAX, INT64_MIN

logger = setup_logging()

# Create database tables
models.Base.metadata.create_all(bind=engine)

app = FastAPI(title=config.SERVICE_NAME)

REQUEST_ID_HEADER = "X-Request-ID"

ERROR_STATUS = {
    ErrorKind.INVALID_INPUT: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.INSUFFICIENT_STOCK: status.HTTP_409_CONFLICT,
    ErrorKind.UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.CANCELLED: status.HTTP_504_GATEWAY_TIMEOUT,
}


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Log the start and the end of every request under a request id.

    The id is taken from the X-Request-ID header when the caller sends one,
    otherwise generated, and is echoed back on the response.
    """
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    request.state.request_id = request_id
    remote_addr = request.client.host if request.client else "-"
    context = f"request_id={request_id} method={request.method} path={request.url.path}"

    logger.info(f"Request started: {context} remote_addr={remote_addr}")
    started = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - started) * 1000

    response.headers[REQUEST_ID_HEADER] = request_id
    bytes_written = response.headers.get("content-length", "-")
    logger.info(
        f"Request completed: {context} status={response.status_code} "
        f"bytes_written={bytes_written} duration_ms={duration_ms:.2f}"
    )
    return response


def get_inventory_service() -> InventoryService:
    """
    Dependency function that provides the inventory service.

    The service holds no per-request state, so it only needs the session
    factory and the service logger.
    """
    return InventoryService(SessionLocal, logger)


def request_deadline() -> float:
    return deadline_after(config.REQUEST_TIMEOUT_SECONDS)


@app.exception_handler(InventoryError)
async def inventory_error_handler(request: Request, exc: InventoryError):
    """
    Render an inventory failure as {"error": message}.

    Business-rule failures are expected outcomes and are not logged here;
    storage failures were already logged with detail by the service.
    """
    return JSONResponse(status_code=ERROR_STATUS[exc.kind], content={"error": exc.message})


def to_sku_with_book(sku: models.SKU) -> schemas.SKUWithBook:
    return schemas.SKUWithBook(
        sku=schemas.SKU.model_validate(sku),
        book=schemas.Book.model_validate(sku.book),
    )


@app.get("/healthz", response_model=dict)
def health():
    """
    Health check endpoint for the bookstores service.

    Returns:
        dict: A dictionary containing the health status of the service.
            - status (str): "healthy" if the service is operational.

    Example:
        GET /healthz
        Response: {"status": "healthy"}
    """
    return {"status": "healthy"}


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

@app.post("/stores", response_model=schemas.Store, status_code=status.HTTP_201_CREATED)
def create_store(store: schemas.StoreCreate, db: Session = Depends(get_db)):
    """
    Create a new store.

    Args:
        store: Store data to create
        db: Database session (injected)

    Returns:
        Created store object
    """
    return crud.create_store(db, store)


@app.get("/stores", response_model=List[schemas.Store])
def list_stores(db: Session = Depends(get_db)):
    """List active stores ordered by name."""
    return crud.list_stores(db)


@app.get("/stores/{store_uuid}", response_model=schemas.Store)
def get_store(store_uuid: UUID, db: Session = Depends(get_db)):
    """
    Get a single active store by UUID.

    Raises:
        HTTPException: 404 if store not found
    """
    db_store = crud.get_store_by_uuid(db, store_uuid)
    if db_store is None:
        raise HTTPException(status_code=404, detail="Store not found")
    return db_store


@app.put("/stores/{store_uuid}", response_model=schemas.Store)
def update_store(store_uuid: UUID, store: schemas.StoreUpdate, db: Session = Depends(get_db)):
    """
    Replace the name and address of an active store.

    Args:
        store_uuid: UUID of the store to update
        store: New store data
        db: Database session (injected)

    Returns:
        Updated store object

    Raises:
        HTTPException: 404 if store not found
    """
    db_store = crud.update_store(db, store_uuid, store)
    if db_store is None:
        raise HTTPException(status_code=404, detail="Store not found")
    return db_store


@app.delete("/stores/{store_uuid}", status_code=status.HTTP_204_NO_CONTENT)
def delete_store(store_uuid: UUID, db: Session = Depends(get_db)):
    """
    Soft-delete a store. Its SKUs are not deleted.

    Raises:
        HTTPException: 404 if store not found
    """
    if not crud.soft_delete_store(db, store_uuid):
        raise HTTPException(status_code=404, detail="Store not found")


@app.get("/stores/{store_uuid}/skus", response_model=List[schemas.SKUWithBook])
def list_store_skus(
    store_uuid: UUID,
    service: InventoryService = Depends(get_inventory_service),
    deadline: float = Depends(request_deadline),
):
    """List the SKUs of a store, each with its book."""
    skus = service.list_store_skus(store_uuid, deadline=deadline)
    return [to_sku_with_book(sku) for sku in skus]


# ---------------------------------------------------------------------------
# Books
# ---------------------------------------------------------------------------

@app.post("/books", response_model=schemas.Book, status_code=status.HTTP_201_CREATED)
def create_book(book: schemas.BookCreate, db: Session = Depends(get_db)):
    """
    Create a book, or update title and author of the book with the same ISBN.

    Args:
        book: Book data
        db: Database session (injected)

    Returns:
        Created or updated book object
    """
    return crud.create_book(db, book)


@app.get("/books", response_model=List[schemas.Book])
def list_books(db: Session = Depends(get_db)):
    return crud.list_books(db)


@app.get("/books/search", response_model=List[schemas.Book])
def search_books(q: str, db: Session = Depends(get_db)):
    """
    Search active books by title or author (case-insensitive, at most 10 results).

    Args:
        q: Text to search for
        db: Database session (injected)
    """
    return crud.search_books(db, q)


@app.get("/books/{book_id}", response_model=schemas.Book)
def get_book(book_id: int = Path(..., ge=INT64_MIN, le=INT64_MAX), db: Session = Depends(get_db)):
    """
    Get a single active book by ID.

    Raises:
        HTTPException: 404 if book not found
    """
    db_book = crud.get_book(db, book_id)
    if db_book is None:
        raise HTTPException(status_code=404, detail="Book not found")
    return db_book


@app.get("/books/{book_id}/availability", response_model=List[schemas.Availability])
def get_book_availability(
    book_id: int,
    service: InventoryService = Depends(get_inventory_service),
    deadline: float = Depends(request_deadline),
):
    """
    List the stores offering a book with their price and stock.

    Returns:
        List of availability entries, empty if no store offers the book
    """
    rows = service.get_availability(book_id, deadline=deadline)
    return [
        schemas.Availability(
            store_uuid=store.uuid,
            store_name=store.name,
            sku_uuid=sku.uuid,
            price_in_kopeks=sku.price_in_kopeks,
            stock_count=sku.stock_count,
        )
        for store, sku in rows
    ]


# ---------------------------------------------------------------------------
# SKUs
# ---------------------------------------------------------------------------

@app.post("/skus", response_model=schemas.SKU, status_code=status.HTTP_201_CREATED)
def create_sku(
    payload: schemas.SKUCreate,
    service: InventoryService = Depends(get_inventory_service),
    deadline: float = Depends(request_deadline),
):
    """
    Create a SKU binding a book to a store with a price and stock.

    Returns:
        Created SKU object

    Errors:
        400 invalid price or stock, 404 book or store not found,
        409 the store already offers the book
    """
    return service.create_sku(
        payload.book_id,
        payload.store_uuid,
        payload.price_in_kopeks,
        payload.stock_count,
        deadline=deadline,
    )


@app.get("/skus/{sku_uuid}", response_model=schemas.SKUWithBook)
def get_sku(
    sku_uuid: UUID,
    service: InventoryService = Depends(get_inventory_service),
    deadline: float = Depends(request_deadline),
):
    """Get a SKU with its book."""
    return to_sku_with_book(service.get_sku(sku_uuid, deadline=deadline))


@app.put("/skus/{sku_uuid}/price", response_model=schemas.SKU)
def update_sku_price(
    sku_uuid: UUID,
    payload: schemas.SKUPriceUpdate,
    service: InventoryService = Depends(get_inventory_service),
    deadline: float = Depends(request_deadline),
):
    """
    Set a new price on a SKU.

    Errors:
        400 negative price, 404 SKU not found
    """
    return service.update_price(sku_uuid, payload.new_price_in_kopeks, deadline=deadline)


@app.post("/skus/{sku_uuid}/stock-adjustments", response_model=schemas.SKU)
def adjust_sku_stock(
    sku_uuid: UUID,
    payload: schemas.StockAdjustment,
    service: InventoryService = Depends(get_inventory_service),
    deadline: float = Depends(request_deadline),
):
    """
    Increase or decrease the stock of a SKU. Use a negative change_by to decrease.

    Errors:
        404 SKU not found, 409 not enough stock for the decrease
    """
    return service.adjust_stock(sku_uuid, payload.change_by, deadline=deadline)
