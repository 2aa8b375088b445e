"""Storage contract and the facade that picks a backend at startup.

Application code talks to a :class:`StorageFacade`. It starts out backed by
an in-memory :class:`~storefront.memstore.VolatileStore`; ``connect()`` tries
the Redis-backed :class:`~storefront.redisstore.DurableStore` once, before the
app takes traffic, and keeps the in-memory store if that fails.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from . import config
from .schemas import OTP, Order, OrderCreate, OrderStatus, OtpType, Product, ProductCreate, User, UserCreate

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when a backend cannot read or write a record."""


class InsufficientStockError(ValueError):
    def __init__(self, product_id: int, available: int, requested: int):
        self.product_id = product_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for product {product_id}. "
            f"Available: {available}, Requested: {requested}"
        )


class Storage(ABC):
    """Operations every backend implements. All of them are coroutines."""

    # Products
    @abstractmethod
    async def get_all_products(self) -> List[Product]: ...

    @abstractmethod
    async def get_product_by_id(self, product_id: int) -> Optional[Product]: ...

    @abstractmethod
    async def get_products_by_category(self, category: str) -> List[Product]: ...

    @abstractmethod
    async def create_product(self, data: ProductCreate) -> Product: ...

    @abstractmethod
    async def update_product(self, product_id: int, changes: Dict[str, Any]) -> Optional[Product]: ...

    @abstractmethod
    async def update_product_stock(self, product_id: int, delta: int) -> Optional[Product]:
        """Add ``delta`` to a product's stock.

        Returns ``None`` for an unknown id and raises InsufficientStockError
        if the result would be negative.
        """

    @abstractmethod
    async def delete_product(self, product_id: int) -> bool: ...

    @abstractmethod
    async def put_product(self, product: Product) -> Product:
        """Insert or replace a product keeping its id."""

    # Orders
    @abstractmethod
    async def get_all_orders(self) -> List[Order]:
        """All orders, newest first."""

    @abstractmethod
    async def get_order_by_id(self, order_id: str) -> Optional[Order]: ...

    @abstractmethod
    async def get_orders_by_email(self, email: str) -> List[Order]: ...

    @abstractmethod
    async def create_order(self, data: OrderCreate) -> Order: ...

    @abstractmethod
    async def update_order_status(self, order_id: str, status: OrderStatus) -> Optional[Order]: ...

    @abstractmethod
    async def put_order(self, order: Order) -> Order: ...

    # Users
    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]: ...

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[User]: ...

    async def get_user_by_username(self, username: str) -> Optional[User]:
        # accounts are keyed by email
        return await self.get_user_by_email(username)

    @abstractmethod
    async def create_user(self, data: UserCreate, is_email_verified: bool = False) -> User:
        """Persist a user. ``data.password`` must already be hashed."""

    @abstractmethod
    async def update_user(self, user_id: str, changes: Dict[str, Any]) -> Optional[User]: ...

    @abstractmethod
    async def delete_user(self, user_id: str) -> bool: ...

    @abstractmethod
    async def get_admin_users(self) -> List[User]: ...

    async def has_admin_account(self) -> bool:
        return bool(await self.get_admin_users())

    @abstractmethod
    async def delete_unverified_users(self, older_than_seconds: int) -> int: ...

    # One-time codes
    @abstractmethod
    async def create_otp(self, email: str, code: str, type: OtpType, expires_at: datetime) -> OTP: ...

    @abstractmethod
    async def get_otp(self, email: str, code: str, type: OtpType) -> Optional[OTP]: ...

    @abstractmethod
    async def get_last_otp_time(self, email: str, type: OtpType) -> Optional[datetime]: ...

    @abstractmethod
    async def delete_otp(self, otp: OTP) -> bool: ...

    @abstractmethod
    async def delete_all_otps_for_email(self, email: str) -> None: ...

    async def close(self) -> None:
        return None


class StorageFacade(Storage):
    """Delegates every call to the active backend.

    The backend may change once, inside ``connect()``, and only after the
    durable store has finished connecting and seeding.
    """

    def __init__(self, fallback: Optional[Storage] = None):
        from .memstore import VolatileStore

        self._volatile_factory = VolatileStore
        self.active: Storage = fallback or VolatileStore()
        self._connected = False

    @property
    def backend_name(self) -> str:
        return type(self.active).__name__

    async def connect(self, settings: Optional[config.Settings] = None) -> Storage:
        if self._connected:
            return self.active
        self._connected = True
        settings = settings or config.get_settings()
        if not settings.redis_host:
            logger.info("Storage: no REDIS_HOST configured, using %s", self.backend_name)
            return self.active

        from .redisstore import DurableStore

        durable = DurableStore.from_settings(settings)
        try:
            await asyncio.wait_for(durable.connect(), timeout=settings.connect_timeout)
        except Exception as e:
            logger.warning(
                "Storage: failed to connect to Redis at %s:%s, falling back to in-memory storage: %r",
                settings.redis_host, settings.redis_port, e,
            )
            await durable.close()
            self.active = self._volatile_factory()
            return self.active

        self.active = durable
        logger.info("Storage: connected to Redis at %s:%s", settings.redis_host, settings.redis_port)
        return self.active

    async def close(self) -> None:
        await self.active.close()

    # Products
    async def get_all_products(self):
        return await self.active.get_all_products()

    async def get_product_by_id(self, product_id):
        return await self.active.get_product_by_id(product_id)

    async def get_products_by_category(self, category):
        return await self.active.get_products_by_category(category)

    async def create_product(self, data):
        return await self.active.create_product(data)

    async def update_product(self, product_id, changes):
        return await self.active.update_product(product_id, changes)

    async def update_product_stock(self, product_id, delta):
        return await self.active.update_product_stock(product_id, delta)

    async def delete_product(self, product_id):
        return await self.active.delete_product(product_id)

    async def put_product(self, product):
        return await self.active.put_product(product)

    # Orders
    async def get_all_orders(self):
        return await self.active.get_all_orders()

    async def get_order_by_id(self, order_id):
        return await self.active.get_order_by_id(order_id)

    async def get_orders_by_email(self, email):
        return await self.active.get_orders_by_email(email)

    async def create_order(self, data):
        return await self.active.create_order(data)

    async def update_order_status(self, order_id, status):
        return await self.active.update_order_status(order_id, status)

    async def put_order(self, order):
        return await self.active.put_order(order)

    # Users
    async def get_user(self, user_id):
        return await self.active.get_user(user_id)

    async def get_user_by_email(self, email):
        return await self.active.get_user_by_email(email)

    async def get_user_by_username(self, username):
        return await self.active.get_user_by_username(username)

    async def create_user(self, data, is_email_verified=False):
        return await self.active.create_user(data, is_email_verified=is_email_verified)

    async def update_user(self, user_id, changes):
        return await self.active.update_user(user_id, changes)

    async def delete_user(self, user_id):
        return await self.active.delete_user(user_id)

    async def get_admin_users(self):
        return await self.active.get_admin_users()

    async def has_admin_account(self):
        return await self.active.has_admin_account()

    async def delete_unverified_users(self, older_than_seconds):
        return await self.active.delete_unverified_users(older_than_seconds)

    # One-time codes
    async def create_otp(self, email, code, type, expires_at):
        return await self.active.create_otp(email, code, type, expires_at)

    async def get_otp(self, email, code, type):
        return await self.active.get_otp(email, code, type)

    async def get_last_otp_time(self, email, type):
        return await self.active.get_last_otp_time(email, type)

    async def delete_otp(self, otp):
        return await self.active.delete_otp(otp)

    async def delete_all_otps_for_email(self, email):
        return await self.active.delete_all_otps_for_email(email)
