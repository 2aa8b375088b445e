import asyncio
import re
import time
import uuid
from collections import Counter
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, Optional

import bleach


def sanitize_input(value: Optional[str]) -> str:
    """Sanitize a user-supplied string for safe display and search.

    - Removes NULL bytes
    - Strips HTML tags using bleach.clean(..., strip=True)
    - Collapses runs of whitespace and trims
    """
    if value is None:
        return ""
    val = value.replace("\x00", "")
    val = bleach.clean(val, tags=[], strip=True)
    # bleach escapes bare ampersands; keep them literal for plain text
    val = val.replace("&amp;", "&")
    val = re.sub(r"\s+", " ", val)
    return val.strip()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_order_id() -> str:
    return f"ORD-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


class KeyedLocks:
    """A registry of asyncio locks addressed by string key.

    Locks are created on first use and dropped once nobody holds or waits
    for them. ``hold`` takes several keys in sorted order so two callers
    asking for overlapping sets cannot deadlock.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Counter = Counter()

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def _hold_one(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                self._locks.pop(key, None)

    @asynccontextmanager
    async def hold(self, *keys: str):
        async with AsyncExitStack() as stack:
            for key in sorted(set(keys)):
                await stack.enter_async_context(self._hold_one(key))
            yield
