import asyncio
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from redis.exceptions import RedisError

from . import accounts, config, schemas
from .deps import get_lifecycle, get_notifier, get_storage, notifier, storage
from .notifications import Notifier
from .orders import OrderLifecycleManager, OrderNotFoundError, list_orders
from .storage import InsufficientStockError, Storage, StorageError
from .utils import sanitize_input

logger = logging.getLogger(__name__)


async def purge_unverified_accounts(store: Storage):
    while True:
        settings = config.get_settings()
        await asyncio.sleep(settings.cleanup_interval)
        try:
            deleted = await store.delete_unverified_users(settings.unverified_expiry)
        except Exception:
            logger.exception("Error cleaning up unverified accounts")
            continue
        if deleted:
            logger.info("Deleted %d unverified account(s) older than %d seconds", deleted, settings.unverified_expiry)


@asynccontextmanager
async def lifespan(app: FastAPI):
    config.configure_logging()
    # pick the backend before serving any request
    await storage.connect()
    notifier.start()
    cleanup = asyncio.create_task(purge_unverified_accounts(storage))
    try:
        yield
    finally:
        cleanup.cancel()
        await notifier.stop()
        await storage.close()


app = FastAPI(title="Storefront API", lifespan=lifespan)
app.include_router(accounts.router)


def _error_list(errors) -> list:
    return [{"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")} for e in errors]


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": "Validation error", "errors": _error_list(exc.errors())})


@app.exception_handler(StorageError)
@app.exception_handler(RedisError)
async def storage_error_handler(request: Request, exc: Exception):
    logger.error("Storage failure on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/health")
async def health(store: Storage = Depends(get_storage)):
    backend = getattr(store, "backend_name", type(store).__name__)
    return {"status": "ok", "storage": backend}


# -------------------- Products --------------------

@app.get("/api/products", response_model=List[schemas.Product])
async def get_products(response: Response, category: Optional[str] = None, store: Storage = Depends(get_storage)):
    response.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"
    if category and category != "all":
        return await store.get_products_by_category(category)
    return await store.get_all_products()


@app.get("/api/products/{product_id}", response_model=schemas.Product)
async def get_product(product_id: int, store: Storage = Depends(get_storage)):
    product = await store.get_product_by_id(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@app.post("/api/products", response_model=schemas.Product, status_code=201)
async def create_product(payload: schemas.ProductCreate, store: Storage = Depends(get_storage)):
    return await store.create_product(payload)


@app.put("/api/products/{product_id}", response_model=schemas.Product)
async def update_product(product_id: int, payload: schemas.ProductUpdate, store: Storage = Depends(get_storage)):
    existing = await store.get_product_by_id(product_id)
    if not existing:
        raise HTTPException(status_code=404, detail="Product not found")

    changes = payload.model_dump(exclude_unset=True)
    # the merged record must still be a valid product (e.g. discount below original price)
    try:
        schemas.Product.model_validate({**existing.model_dump(), **changes})
    except ValidationError as e:
        raise RequestValidationError(e.errors())

    updated = await store.update_product(product_id, changes)
    if not updated:
        raise HTTPException(status_code=404, detail="Product not found")
    return updated


@app.delete("/api/products/{product_id}", status_code=204)
async def delete_product(product_id: int, store: Storage = Depends(get_storage)):
    if not await store.delete_product(product_id):
        raise HTTPException(status_code=404, detail="Product not found")
    return Response(status_code=204)


# -------------------- Orders --------------------

@app.get("/api/orders", response_model=schemas.OrderPage)
async def get_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str = Query("", max_length=200),
    search_by: str = Query("orderId", alias="searchBy"),
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    store: Storage = Depends(get_storage),
):
    orders, pagination = list_orders(
        await store.get_all_orders(),
        page=page,
        limit=limit,
        search=sanitize_input(search),
        search_by=search_by,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return schemas.OrderPage(orders=orders, pagination=pagination)


@app.get("/api/orders/{order_id}", response_model=schemas.Order)
async def get_order(order_id: str, store: Storage = Depends(get_storage)):
    order = await store.get_order_by_id(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@app.post("/api/orders", response_model=schemas.Order, status_code=201)
async def create_order(
    payload: schemas.OrderCreate,
    manager: OrderLifecycleManager = Depends(get_lifecycle),
    outbox: Notifier = Depends(get_notifier),
):
    try:
        order = await manager.create_order(payload)
    except InsufficientStockError as e:
        raise HTTPException(status_code=400, detail=str(e))

    # mail goes out in the background; a failure here must not fail the checkout
    try:
        outbox.order_placed(order)
    except Exception:
        logger.exception("Failed to queue notifications for order %s", order.id)
    return order


@app.patch("/api/orders/{order_id}/status", response_model=schemas.Order)
async def update_order_status(
    order_id: str,
    payload: schemas.OrderStatusUpdate,
    manager: OrderLifecycleManager = Depends(get_lifecycle),
):
    try:
        return await manager.transition(order_id, payload.status)
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")
    except InsufficientStockError as e:
        raise HTTPException(
            status_code=400,
            detail={"error": "Insufficient stock to restore order", "details": str(e)},
        )


def run():
    settings = config.get_settings()
    uvicorn.run("storefront.main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())
