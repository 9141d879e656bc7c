# config/cache.py
from typing import Optional
from redis.asyncio import Redis, from_url
from config.settings import settings

_client: Optional[Redis] = None


async def get_redis(url: Optional[str] = None) -> Redis:
    """
    Shared client for both stores. Chapter payloads and explanation records are
    JSON documents, so responses are decoded to str.
    """
    global _client
    if _client is None:
        _client = from_url(
            url or settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            socket_keepalive=True,
            health_check_interval=30,
        )
        # Fail fast at batch start if Redis is unreachable.
        await _client.ping()
    return _client


async def close_redis() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
