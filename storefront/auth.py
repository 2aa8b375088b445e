import time
from typing import Optional

import jwt
from passlib.context import CryptContext

from . import config

# Use pbkdf2_sha256 as default to avoid bcrypt 72-byte limitation in some envs
pwd_context = CryptContext(schemes=["pbkdf2_sha256", "bcrypt"], deprecated="auto")

ALGORITHM = "HS256"
EXP_SECONDS = 60 * 60 * 24  # 1 day


def create_access_token(user_id: str, role: str, expires_delta: Optional[int] = None) -> str:
    now = int(time.time())
    exp = now + (expires_delta or EXP_SECONDS)
    payload = {"sub": user_id, "role": role, "iat": now, "exp": exp}
    return jwt.encode(payload, config.get_settings().jwt_secret, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, config.get_settings().jwt_secret, algorithms=[ALGORITHM])


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(plain, hashed)
    except ValueError:
        # stored value is not a recognised hash (e.g. a legacy cleartext entry)
        return False
