import redis.asyncio as redis

from . import config


def create_client(settings: config.Settings = None) -> redis.Redis:
    """Build an asyncio Redis client. No connection is made until first use."""
    settings = settings or config.get_settings()
    kwargs = {}
    # ACL username only makes sense alongside a password
    if settings.redis_password:
        kwargs["username"] = settings.redis_username
        kwargs["password"] = settings.redis_password
    return redis.Redis(
        host=settings.redis_host or "localhost",
        port=settings.redis_port,
        decode_responses=True,
        socket_connect_timeout=settings.connect_timeout,
        **kwargs,
    )
