import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from . import config
from .auth import hash_password
from .schemas import OTP, Order, OrderCreate, Product, ProductCreate, User, UserCreate
from .seed import sample_products
from .storage import InsufficientStockError, Storage
from .utils import new_order_id, utcnow


class VolatileStore(Storage):
    """Process-local storage. Everything is lost on restart.

    Used when Redis is not configured or unreachable. Seeds the sample catalog
    and a verified admin account so the shop is usable out of the box.
    """

    def __init__(self, seed: bool = True):
        self.products: Dict[int, Product] = {}
        self.orders: Dict[str, Order] = {}
        self.users: Dict[str, User] = {}
        self.otps: Dict[Tuple[str, str], OTP] = {}
        self.next_product_id = 1
        if seed:
            self._seed()

    def _seed(self):
        for data in sample_products():
            product = Product(id=self.next_product_id, **data.model_dump())
            self.products[product.id] = product
            self.next_product_id += 1

        settings = config.get_settings()
        now = utcnow()
        admin = User(
            id=str(uuid.uuid4()),
            email=settings.admin_email.lower(),
            password=hash_password(settings.default_admin_password),
            name="Administrator",
            role="admin",
            is_email_verified=True,
            created_at=now,
            updated_at=now,
        )
        self.users[admin.id] = admin

    # -------------------- Products --------------------

    async def get_all_products(self) -> List[Product]:
        return list(self.products.values())

    async def get_product_by_id(self, product_id: int) -> Optional[Product]:
        return self.products.get(product_id)

    async def get_products_by_category(self, category: str) -> List[Product]:
        return [p for p in self.products.values() if p.category == category]

    async def create_product(self, data: ProductCreate) -> Product:
        product = Product(id=self.next_product_id, **data.model_dump())
        self.next_product_id += 1
        self.products[product.id] = product
        return product

    async def update_product(self, product_id: int, changes: dict) -> Optional[Product]:
        product = self.products.get(product_id)
        if not product:
            return None
        updated = product.model_copy(update={k: v for k, v in changes.items() if k != "id"})
        self.products[product_id] = updated
        return updated

    async def update_product_stock(self, product_id: int, delta: int) -> Optional[Product]:
        product = self.products.get(product_id)
        if not product:
            return None
        new_stock = product.stock + delta
        if new_stock < 0:
            raise InsufficientStockError(product_id, product.stock, abs(delta))
        updated = product.model_copy(update={"stock": new_stock})
        self.products[product_id] = updated
        return updated

    async def delete_product(self, product_id: int) -> bool:
        return self.products.pop(product_id, None) is not None

    async def put_product(self, product: Product) -> Product:
        self.products[product.id] = product
        self.next_product_id = max(self.next_product_id, product.id + 1)
        return product

    # -------------------- Orders --------------------

    async def get_all_orders(self) -> List[Order]:
        return sorted(self.orders.values(), key=lambda o: o.created_at, reverse=True)

    async def get_order_by_id(self, order_id: str) -> Optional[Order]:
        return self.orders.get(order_id)

    async def get_orders_by_email(self, email: str) -> List[Order]:
        email = email.lower()
        orders = [o for o in self.orders.values() if o.customer_email.lower() == email]
        return sorted(orders, key=lambda o: o.created_at, reverse=True)

    async def create_order(self, data: OrderCreate) -> Order:
        order = Order(id=new_order_id(), status="received", created_at=utcnow(), **data.model_dump())
        self.orders[order.id] = order
        return order

    async def update_order_status(self, order_id: str, status: str) -> Optional[Order]:
        order = self.orders.get(order_id)
        if not order:
            return None
        updated = order.model_copy(update={"status": status})
        self.orders[order_id] = updated
        return updated

    async def put_order(self, order: Order) -> Order:
        self.orders[order.id] = order
        return order

    # -------------------- Users --------------------

    async def get_user(self, user_id: str) -> Optional[User]:
        return self.users.get(user_id)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        email = email.lower()
        for user in self.users.values():
            if user.email.lower() == email:
                return user
        return None

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
        self.users[user.id] = user
        return user

    async def update_user(self, user_id: str, changes: dict) -> Optional[User]:
        user = self.users.get(user_id)
        if not user:
            return None
        changes = {k: v for k, v in changes.items() if k not in ("id", "created_at")}
        if "email" in changes:
            changes["email"] = changes["email"].lower()
        updated = user.model_copy(update={**changes, "updated_at": utcnow()})
        self.users[user_id] = updated
        return updated

    async def delete_user(self, user_id: str) -> bool:
        return self.users.pop(user_id, None) is not None

    async def get_admin_users(self) -> List[User]:
        return [u for u in self.users.values() if u.role == "admin"]

    async def delete_unverified_users(self, older_than_seconds: int) -> int:
        cutoff = utcnow() - timedelta(seconds=older_than_seconds)
        stale = [u for u in self.users.values() if not u.is_email_verified and u.created_at < cutoff]
        for user in stale:
            del self.users[user.id]
            await self.delete_all_otps_for_email(user.email)
        return len(stale)

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
        self.otps[(otp.email, type)] = otp
        return otp

    async def get_otp(self, email: str, code: str, type: str) -> Optional[OTP]:
        otp = self.otps.get((email.lower(), type))
        if otp and otp.code == code and otp.expires_at > utcnow():
            return otp
        return None

    async def get_last_otp_time(self, email: str, type: str) -> Optional[datetime]:
        otp = self.otps.get((email.lower(), type))
        return otp.created_at if otp else None

    async def delete_otp(self, otp: OTP) -> bool:
        current = self.otps.get((otp.email, otp.type))
        if current and current.id == otp.id:
            del self.otps[(otp.email, otp.type)]
            return True
        return False

    async def delete_all_otps_for_email(self, email: str) -> None:
        email = email.lower()
        for key in [k for k in self.otps if k[0] == email]:
            del self.otps[key]
