import logging
from typing import Optional

import redis.asyncio as aioredis

from supportassist.core.config import settings

logger = logging.getLogger(__name__)

# Global client (lazily created, shared by the job store and the event publisher)
_redis_client: Optional[aioredis.Redis] = None


def get_redis_client() -> aioredis.Redis:
    """
    Return the process-wide async Redis client.

    The client is created on first use; redis-py connects lazily, so this never
    blocks and never fails on an unreachable server. Errors surface on the first
    command instead.
    """
    global _redis_client
    if _redis_client is None:
        _redis_client = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
        )
        logger.info(f"Redis client configured for {_mask_url(settings.REDIS_URL)}")
    return _redis_client


async def ping_redis() -> bool:
    try:
        return bool(await get_redis_client().ping())
    except Exception as e:
        logger.warning(f"Redis not reachable ({e}).")
        return False


async def close_redis_client() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


def _mask_url(url: str) -> str:
    return url.split("@")[1] if "@" in url else url
