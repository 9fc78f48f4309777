"""
Rate Limiting Module
Uses slowapi to protect the status/cancel endpoints from UI polling storms.
The webhook ingress is not limited: the provider controls its own delivery rate.
"""
import logging
from slowapi import Limiter
from slowapi.util import get_remote_address
from supportassist.core.config import settings

logger = logging.getLogger(__name__)

# Share counters through Redis when it is reachable
storage_uri = "memory://"
if settings.RATE_LIMIT_ENABLED and settings.REDIS_URL:
    try:
        import redis
        client = redis.from_url(settings.REDIS_URL, socket_connect_timeout=1)
        client.ping()
        storage_uri = settings.REDIS_URL
        logger.info(f"Rate Limiter connected to Redis at {settings.REDIS_URL}")
    except Exception as e:
        logger.warning(f"Rate Limiter: Redis not available ({e}). Falling back to memory storage.")
        storage_uri = "memory://"

limiter = Limiter(
    key_func=get_remote_address,
    enabled=settings.RATE_LIMIT_ENABLED,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
    storage_uri=storage_uri,
)

# Endpoint-specific limits (importable constants)
STATUS_LIMIT = "120/minute"
CANCEL_LIMIT = "20/minute"
SUBMIT_LIMIT = "60/minute"

logger.info(f"Rate limiting {'ENABLED' if settings.RATE_LIMIT_ENABLED else 'DISABLED'}")
