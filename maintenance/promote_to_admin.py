"""
Promote an existing user to the admin role in the Redis store.

Usage:
  python -m maintenance.promote_to_admin --email someone@example.com
"""
import argparse
import asyncio

from storefront import config
from storefront.redisstore import DurableStore


async def promote(store: DurableStore, email: str):
    user = await store.get_user_by_email(email)
    if not user:
        raise LookupError(f"no user with email {email}")
    if user.role == "admin":
        return user
    return await store.update_user(user.id, {"role": "admin"})


async def _main(email: str):
    settings = config.get_settings()
    if not settings.redis_host:
        raise SystemExit("REDIS_HOST is not set")
    store = DurableStore.from_settings(settings)
    # no seeding from a maintenance tool
    store.seed = False
    try:
        await store.connect()
        user = await promote(store, email)
        print(f"{user.email} is now {user.role}")
    finally:
        await store.close()


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--email", required=True, help="Email of the user to promote")
    args = parser.parse_args()
    asyncio.run(_main(args.email))


if __name__ == "__main__":
    main()
