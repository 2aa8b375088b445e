"""Order lifecycle: creation and status transitions with stock side effects.

Moving an order into ``cancelled`` puts its items back into stock. Moving it
out of ``cancelled`` takes them out again, but only if every product still
has enough stock; otherwise nothing changes and InsufficientStockError is
raised. All other transitions leave stock alone.

Stock is not taken at checkout unless ``decrement_stock_on_checkout`` is
enabled; by default the catalog stock count only moves through the
cancel / un-cancel path.
"""
import logging
import math
from collections import Counter
from typing import Dict, List, Optional

from . import config
from .schemas import Order, OrderCreate, OrderItem, Pagination
from .storage import InsufficientStockError, Storage
from .utils import KeyedLocks

logger = logging.getLogger(__name__)

CANCELLED = "cancelled"

SEARCH_FIELDS = {
    "orderId": lambda o: o.id,
    "customerName": lambda o: o.customer_name,
    "customerEmail": lambda o: o.customer_email,
}

SORT_KEYS = {
    "orderId": lambda o: o.id,
    "customerName": lambda o: o.customer_name.lower(),
    "customerEmail": lambda o: o.customer_email.lower(),
    "createdAt": lambda o: o.created_at,
}


class OrderNotFoundError(LookupError):
    pass


def _quantities(items: List[OrderItem]) -> Dict[int, int]:
    totals: Counter = Counter()
    for item in items:
        totals[item.product_id] += item.quantity
    return dict(totals)


def _product_lock(product_id: int) -> str:
    return f"product:{product_id}"


class OrderLifecycleManager:
    def __init__(self, storage: Storage, locks: Optional[KeyedLocks] = None):
        self.storage = storage
        self.locks = locks or KeyedLocks()

    async def create_order(self, data: OrderCreate) -> Order:
        if not config.get_settings().decrement_stock_on_checkout:
            return await self.storage.create_order(data)

        quantities = _quantities(data.items)
        async with self.locks.hold(*[_product_lock(pid) for pid in quantities]):
            await self._take_stock(quantities)
            try:
                return await self.storage.create_order(data)
            except Exception:
                await self._give_back(quantities)
                raise

    async def transition(self, order_id: str, status: str) -> Order:
        async with self.locks.hold(f"order:{order_id}"):
            order = await self.storage.get_order_by_id(order_id)
            if not order:
                raise OrderNotFoundError(order_id)

            old = order.status
            if old == status:
                return order

            quantities = _quantities(order.items)
            product_locks = [_product_lock(pid) for pid in quantities]
            if status == CANCELLED:
                async with self.locks.hold(*product_locks):
                    await self._restore_stock(order, quantities)
            elif old == CANCELLED:
                async with self.locks.hold(*product_locks):
                    await self._take_stock(quantities)
                    try:
                        return await self._set_status(order_id, status)
                    except Exception:
                        await self._give_back(quantities)
                        raise

            return await self._set_status(order_id, status)

    async def _set_status(self, order_id: str, status: str) -> Order:
        updated = await self.storage.update_order_status(order_id, status)
        if not updated:
            raise OrderNotFoundError(order_id)
        logger.info("Order %s moved to %s", order_id, status)
        return updated

    async def _restore_stock(self, order: Order, quantities: Dict[int, int]):
        for product_id, quantity in quantities.items():
            try:
                product = await self.storage.update_product_stock(product_id, quantity)
            except Exception as e:
                logger.error("Failed to restore stock for product %s (order %s): %s", product_id, order.id, e)
                continue
            if product is None:
                logger.warning("Product %s of order %s no longer exists; stock not restored", product_id, order.id)

    async def _take_stock(self, quantities: Dict[int, int]):
        """Decrement stock for every product, or for none of them."""
        for product_id, quantity in quantities.items():
            product = await self.storage.get_product_by_id(product_id)
            if product is not None and product.stock < quantity:
                raise InsufficientStockError(product_id, product.stock, quantity)

        applied: Dict[int, int] = {}
        try:
            for product_id, quantity in quantities.items():
                product = await self.storage.update_product_stock(product_id, -quantity)
                if product is None:
                    logger.warning("Product %s no longer exists; stock not taken", product_id)
                    continue
                applied[product_id] = quantity
        except Exception:
            await self._give_back(applied)
            raise

    async def _give_back(self, quantities: Dict[int, int]):
        for product_id, quantity in quantities.items():
            try:
                await self.storage.update_product_stock(product_id, quantity)
            except Exception as e:
                logger.error("Failed to roll back stock for product %s: %s", product_id, e)


def list_orders(
    orders: List[Order],
    page: int = 1,
    limit: int = 10,
    search: str = "",
    search_by: str = "orderId",
    sort_by: str = "createdAt",
    sort_order: str = "desc",
):
    """Filter, sort and paginate orders for the admin listing.

    Returns ``(page_of_orders, Pagination)``.
    """
    page = max(page, 1)
    limit = max(limit, 1)

    if search.strip():
        needle = search.strip().lower()
        field = SEARCH_FIELDS.get(search_by, SEARCH_FIELDS["orderId"])
        orders = [o for o in orders if needle in field(o).lower()]

    key = SORT_KEYS.get(sort_by, SORT_KEYS["createdAt"])
    orders = sorted(orders, key=key, reverse=sort_order != "asc")

    total = len(orders)
    start = (page - 1) * limit
    pagination = Pagination(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit))
    return orders[start:start + limit], pagination
