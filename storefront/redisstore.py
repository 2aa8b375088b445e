"""Redis-backed storage.

Key layout::

    product:{id}            hash    product fields (typed codec)
    products:list           set     all product ids, also the "already seeded" sentinel
    products:nextId         string  next product id
    order:{id}              string  order as a JSON document
    orders:list             set     all order ids
    email:orders:{email}    set     order ids placed with that email
    user:{id}               hash    user fields (typed codec)
    user:email:{email}      string  user id
    users:list              set     all user ids
    otp:{email}:{type}      string  one-time code as JSON, expires with the code

Products and users are field maps; orders are stored whole as JSON because
they are always read and written as a unit and never patched field by field.
"""
import logging
import math
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import redis.asyncio as redis
from pydantic import ValidationError
from redis.exceptions import WatchError

from . import config, db
from .codec import BOOL, DATETIME, FLOAT, INT, STR, RecordCodec
from .schemas import OTP, Order, OrderCreate, Product, ProductCreate, User, UserCreate
from .seed import sample_products
from .storage import InsufficientStockError, Storage, StorageError
from .utils import new_order_id, utcnow

logger = logging.getLogger(__name__)

PRODUCTS_LIST = "products:list"
PRODUCTS_NEXT_ID = "products:nextId"
ORDERS_LIST = "orders:list"
USERS_LIST = "users:list"
OTP_TYPES = ("email_verification", "password_reset", "email_change")

PRODUCT_CODEC = RecordCodec(Product, {
    "id": INT,
    "name": STR,
    "description": STR,
    "image": STR,
    "price": FLOAT,
    "original_price": FLOAT,
    "rating": FLOAT,
    "review_count": INT,
    "badge": STR,
    "category": STR,
    "stock": INT,
})

USER_CODEC = RecordCodec(User, {
    "id": STR,
    "email": STR,
    "password": STR,
    "name": STR,
    "role": STR,
    "is_email_verified": BOOL,
    "created_at": DATETIME,
    "updated_at": DATETIME,
})


def product_key(product_id) -> str:
    return f"product:{product_id}"


def order_key(order_id: str) -> str:
    return f"order:{order_id}"


def email_orders_key(email: str) -> str:
    return f"email:orders:{email.lower()}"


def user_key(user_id: str) -> str:
    return f"user:{user_id}"


def user_email_key(email: str) -> str:
    return f"user:email:{email.lower()}"


def otp_key(email: str, type: str) -> str:
    return f"otp:{email.lower()}:{type}"


def _load_order(raw: str, key: str) -> Order:
    try:
        return Order.model_validate_json(raw)
    except ValidationError as e:
        raise StorageError(f"{key}: stored order is invalid: {e}") from e


class DurableStore(Storage):
    def __init__(self, client: redis.Redis, seed: bool = True):
        self.client = client
        self.seed = seed

    @classmethod
    def from_settings(cls, settings: config.Settings) -> "DurableStore":
        return cls(db.create_client(settings))

    async def connect(self) -> None:
        await self.client.ping()
        if self.seed and not await self.client.exists(PRODUCTS_LIST):
            for data in sample_products():
                await self.create_product(data)
            logger.info("Seeded %d sample products", len(sample_products()))

    async def close(self) -> None:
        await self.client.aclose()

    # -------------------- Products --------------------

    async def _hgetall_many(self, keys: List[str]) -> List[Dict[str, str]]:
        if not keys:
            return []
        async with self.client.pipeline(transaction=False) as pipe:
            for key in keys:
                pipe.hgetall(key)
            return await pipe.execute()

    async def get_all_products(self) -> List[Product]:
        ids = sorted(int(i) for i in await self.client.smembers(PRODUCTS_LIST))
        keys = [product_key(i) for i in ids]
        rows = await self._hgetall_many(keys)
        return [PRODUCT_CODEC.decode(raw, key) for key, raw in zip(keys, rows) if raw]

    async def get_product_by_id(self, product_id: int) -> Optional[Product]:
        key = product_key(product_id)
        raw = await self.client.hgetall(key)
        if not raw:
            return None
        return PRODUCT_CODEC.decode(raw, key)

    async def get_products_by_category(self, category: str) -> List[Product]:
        return [p for p in await self.get_all_products() if p.category == category]

    def _write_product(self, pipe, product: Product, only: Optional[set] = None):
        mapping, absent = PRODUCT_CODEC.encode(product)
        if only is not None:
            mapping = {k: v for k, v in mapping.items() if k in only}
            absent = [k for k in absent if k in only]
        key = product_key(product.id)
        if mapping:
            pipe.hset(key, mapping=mapping)
        if absent:
            pipe.hdel(key, *absent)

    async def create_product(self, data: ProductCreate) -> Product:
        await self.client.set(PRODUCTS_NEXT_ID, 1, nx=True)
        product_id = await self.client.incr(PRODUCTS_NEXT_ID) - 1
        product = Product(id=product_id, **data.model_dump())
        async with self.client.pipeline(transaction=True) as pipe:
            self._write_product(pipe, product)
            pipe.sadd(PRODUCTS_LIST, str(product.id))
            await pipe.execute()
        return product

    async def update_product(self, product_id: int, changes: dict) -> Optional[Product]:
        key = product_key(product_id)
        changes = {k: v for k, v in changes.items() if k != "id"}
        touched = {PRODUCT_CODEC.aliases[k] for k in changes}
        async with self.client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    raw = await pipe.hgetall(key)
                    if not raw:
                        return None
                    updated = PRODUCT_CODEC.decode(raw, key).model_copy(update=changes)
                    pipe.multi()
                    self._write_product(pipe, updated, only=touched)
                    await pipe.execute()
                    return updated
                except WatchError:
                    continue

    async def update_product_stock(self, product_id: int, delta: int) -> Optional[Product]:
        key = product_key(product_id)
        async with self.client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    raw = await pipe.hgetall(key)
                    if not raw:
                        return None
                    product = PRODUCT_CODEC.decode(raw, key)
                    new_stock = product.stock + delta
                    if new_stock < 0:
                        raise InsufficientStockError(product_id, product.stock, abs(delta))
                    pipe.multi()
                    pipe.hset(key, "stock", INT.encode(new_stock))
                    await pipe.execute()
                    return product.model_copy(update={"stock": new_stock})
                except WatchError:
                    continue

    async def delete_product(self, product_id: int) -> bool:
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.delete(product_key(product_id))
            pipe.srem(PRODUCTS_LIST, str(product_id))
            deleted, _ = await pipe.execute()
        return deleted > 0

    async def put_product(self, product: Product) -> Product:
        async with self.client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(PRODUCTS_NEXT_ID)
                    next_id = int(await pipe.get(PRODUCTS_NEXT_ID) or 1)
                    pipe.multi()
                    pipe.delete(product_key(product.id))
                    self._write_product(pipe, product)
                    pipe.sadd(PRODUCTS_LIST, str(product.id))
                    if product.id >= next_id:
                        pipe.set(PRODUCTS_NEXT_ID, product.id + 1)
                    await pipe.execute()
                    return product
                except WatchError:
                    continue

    # -------------------- Orders --------------------

    async def _load_orders(self, ids) -> List[Order]:
        keys = [order_key(i) for i in ids]
        if not keys:
            return []
        rows = await self.client.mget(keys)
        orders = [_load_order(raw, key) for key, raw in zip(keys, rows) if raw]
        return sorted(orders, key=lambda o: o.created_at, reverse=True)

    async def get_all_orders(self) -> List[Order]:
        return await self._load_orders(await self.client.smembers(ORDERS_LIST))

    async def get_order_by_id(self, order_id: str) -> Optional[Order]:
        key = order_key(order_id)
        raw = await self.client.get(key)
        return _load_order(raw, key) if raw else None

    async def get_orders_by_email(self, email: str) -> List[Order]:
        return await self._load_orders(await self.client.smembers(email_orders_key(email)))

    async def put_order(self, order: Order) -> Order:
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.set(order_key(order.id), order.model_dump_json(by_alias=True))
            pipe.sadd(ORDERS_LIST, order.id)
            pipe.sadd(email_orders_key(order.customer_email), order.id)
            await pipe.execute()
        return order

    async def create_order(self, data: OrderCreate) -> Order:
        order = Order(id=new_order_id(), status="received", created_at=utcnow(), **data.model_dump())
        return await self.put_order(order)

    async def update_order_status(self, order_id: str, status: str) -> Optional[Order]:
        key = order_key(order_id)
        async with self.client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if not raw:
                        return None
                    order = _load_order(raw, key).model_copy(update={"status": status})
                    pipe.multi()
                    pipe.set(key, order.model_dump_json(by_alias=True))
                    await pipe.execute()
                    return order
                except WatchError:
                    continue

    # -------------------- Users --------------------

    async def get_user(self, user_id: str) -> Optional[User]:
        key = user_key(user_id)
        raw = await self.client.hgetall(key)
        if not raw or "id" not in raw:
            return None
        return USER_CODEC.decode(raw, key)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        user_id = await self.client.get(user_email_key(email))
        if not user_id:
            return None
        return await self.get_user(user_id)

    async def _write_user(self, user: User, old_email: Optional[str] = None):
        mapping, absent = USER_CODEC.encode(user)
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.hset(user_key(user.id), mapping=mapping)
            if absent:
                pipe.hdel(user_key(user.id), *absent)
            if old_email and old_email.lower() != user.email.lower():
                pipe.delete(user_email_key(old_email))
            pipe.set(user_email_key(user.email), user.id)
            pipe.sadd(USERS_LIST, user.id)
            await pipe.execute()

    async def create_user(self, data: UserCreate, is_email_verified: bool = False) -> User:
        now = utcnow()
        user = User(
            id=str(uuid.uuid4()),
            email=data.email.lower(),
            password=data.password,
            name=data.name,
            role=data.role,
            is_email_verified=is_email_verified,
            created_at=now,
            updated_at=now,
        )
        await self._write_user(user)
        return user

    async def update_user(self, user_id: str, changes: dict) -> Optional[User]:
        user = await self.get_user(user_id)
        if not user:
            return None
        changes = {k: v for k, v in changes.items() if k not in ("id", "created_at")}
        if "email" in changes:
            changes["email"] = changes["email"].lower()
        updated = user.model_copy(update={**changes, "updated_at": utcnow()})
        await self._write_user(updated, old_email=user.email)
        return updated

    async def delete_user(self, user_id: str) -> bool:
        user = await self.get_user(user_id)
        if not user:
            return False
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.delete(user_email_key(user.email))
            pipe.delete(user_key(user_id))
            pipe.srem(USERS_LIST, user_id)
            _, deleted, _ = await pipe.execute()
        return deleted > 0

    async def _all_users(self) -> List[User]:
        ids = sorted(await self.client.smembers(USERS_LIST))
        keys = [user_key(i) for i in ids]
        rows = await self._hgetall_many(keys)
        return [USER_CODEC.decode(raw, key) for key, raw in zip(keys, rows) if raw]

    async def get_admin_users(self) -> List[User]:
        return [u for u in await self._all_users() if u.role == "admin"]

    async def delete_unverified_users(self, older_than_seconds: int) -> int:
        cutoff = utcnow() - timedelta(seconds=older_than_seconds)
        deleted = 0
        for user in await self._all_users():
            if not user.is_email_verified and user.created_at < cutoff:
                await self.delete_user(user.id)
                await self.delete_all_otps_for_email(user.email)
                deleted += 1
        return deleted

    # -------------------- One-time codes --------------------

    async def create_otp(self, email: str, code: str, type: str, expires_at: datetime) -> OTP:
        otp = OTP(
            id=str(uuid.uuid4()),
            email=email.lower(),
            code=code,
            type=type,
            expires_at=expires_at,
            created_at=utcnow(),
        )
        ttl = math.ceil((expires_at - otp.created_at).total_seconds())
        if ttl > 0:
            await self.client.set(otp_key(email, type), otp.model_dump_json(by_alias=True), ex=ttl)
        return otp

    async def _load_otp(self, email: str, type: str) -> Optional[OTP]:
        raw = await self.client.get(otp_key(email, type))
        return OTP.model_validate_json(raw) if raw else None

    async def get_otp(self, email: str, code: str, type: str) -> Optional[OTP]:
        otp = await self._load_otp(email, type)
        if otp and otp.code == code and otp.expires_at > utcnow():
            return otp
        return None

    async def get_last_otp_time(self, email: str, type: str) -> Optional[datetime]:
        otp = await self._load_otp(email, type)
        return otp.created_at if otp else None

    async def delete_otp(self, otp: OTP) -> bool:
        current = await self._load_otp(otp.email, otp.type)
        if not current or current.id != otp.id:
            return False
        return await self.client.delete(otp_key(otp.email, otp.type)) > 0

    async def delete_all_otps_for_email(self, email: str) -> None:
        await self.client.delete(*[otp_key(email, t) for t in OTP_TYPES])
