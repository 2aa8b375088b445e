"""
Report Redis keys whose type does not match the storefront key layout, and
index sets that point at records which no longer exist.

Usage:
  python -m maintenance.check_keys [--fix]

With --fix, dangling index members are removed. Keys of the wrong type are
only reported; deleting them is left to the operator.
"""
import argparse
import asyncio
from typing import Dict, List, NamedTuple

import redis.asyncio as redis

from storefront import config, db
from storefront.redisstore import ORDERS_LIST, PRODUCTS_LIST, USERS_LIST, order_key, product_key, user_key

EXPECTED_TYPES = (
    ("product:*", "hash"),
    ("order:*", "string"),
    ("user:email:*", "string"),
    ("email:orders:*", "set"),
    ("otp:*", "string"),
)

INDEXES = (
    (PRODUCTS_LIST, product_key),
    (ORDERS_LIST, order_key),
    (USERS_LIST, user_key),
)


class Report(NamedTuple):
    wrong_type: Dict[str, str]
    dangling: Dict[str, List[str]]


def expected_type(key: str) -> str:
    for pattern, kind in EXPECTED_TYPES:
        if key.startswith(pattern[:-1]):
            return kind
    if key.startswith("user:"):
        return "hash"
    return ""


async def check(client: redis.Redis, fix: bool = False) -> Report:
    wrong_type: Dict[str, str] = {}
    for prefix in ("product:", "order:", "user:", "email:orders:", "otp:"):
        async for key in client.scan_iter(match=f"{prefix}*"):
            want = expected_type(key)
            got = await client.type(key)
            if want and got != want:
                wrong_type[key] = got

    dangling: Dict[str, List[str]] = {}
    for index, key_for in INDEXES:
        missing = [m for m in sorted(await client.smembers(index)) if not await client.exists(key_for(m))]
        if missing:
            dangling[index] = missing
            if fix:
                await client.srem(index, *missing)
    return Report(wrong_type, dangling)


async def _main(fix: bool):
    settings = config.get_settings()
    if not settings.redis_host:
        raise SystemExit("REDIS_HOST is not set")
    client = db.create_client(settings)
    try:
        report = await check(client, fix=fix)
    finally:
        await client.aclose()

    for key, kind in sorted(report.wrong_type.items()):
        print(f"wrong type: {key} is a {kind}")
    for index, members in report.dangling.items():
        action = "removed" if fix else "found"
        print(f"{index}: {action} {len(members)} dangling member(s): {', '.join(members)}")
    if not report.wrong_type and not report.dangling:
        print("no problems found")


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--fix", action="store_true", help="Remove dangling index members")
    args = parser.parse_args()
    asyncio.run(_main(args.fix))


if __name__ == "__main__":
    main()
