"""Process-wide service instances and the FastAPI dependencies that expose them."""
import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .auth import decode_access_token
from .notifications import Notifier
from .orders import OrderLifecycleManager
from .schemas import User
from .storage import Storage, StorageFacade

storage = StorageFacade()
lifecycle = OrderLifecycleManager(storage)
notifier = Notifier()

bearer = HTTPBearer(auto_error=False)


def get_storage() -> Storage:
    return storage


def get_lifecycle() -> OrderLifecycleManager:
    return lifecycle


def get_notifier() -> Notifier:
    return notifier


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer),
    storage: Storage = Depends(get_storage),
) -> User:
    if credentials is None:
        raise HTTPException(status_code=401, detail="missing bearer token")
    try:
        payload = decode_access_token(credentials.credentials)
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="invalid token")
    user = await storage.get_user(str(payload.get("sub")))
    if not user:
        raise HTTPException(status_code=401, detail="user not found")
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
