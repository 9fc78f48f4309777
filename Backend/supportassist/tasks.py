import asyncio
import logging
import threading
from typing import Any, Dict

import redis.asyncio as aioredis

from supportassist.core.celery_app import celery_app
from supportassist.core.config import settings
from supportassist.services.job_store import JobStore
from supportassist.services.retention import sweep_expired_jobs

logger = logging.getLogger(__name__)


def run_async_wrapper(coro):
    """
    Run an async coroutine synchronously, handling existing event loops.
    If a loop is already running (e.g. in Celery eager mode/API thread), run in a separate thread.
    Otherwise, use asyncio.run().
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop and loop.is_running():
        logger.info("Event loop detected. Running async task in separate thread.")
        result = None
        exception = None

        def run_in_thread():
            nonlocal result, exception
            try:
                result = asyncio.run(coro)
            except Exception as e:
                exception = e

        thread = threading.Thread(target=run_in_thread)
        thread.start()
        thread.join()

        if exception:
            raise exception
        return result
    else:
        return asyncio.run(coro)


async def _sweep_with_fresh_client() -> Dict[str, Any]:
    # Each run owns its event loop, so it also owns its connection pool.
    client = aioredis.from_url(settings.REDIS_URL, decode_responses=True, socket_connect_timeout=2)
    try:
        report = await sweep_expired_jobs(JobStore(client))
    finally:
        await client.aclose()
    return report.to_dict()


@celery_app.task(name="supportassist.tasks.cleanup_expired_jobs")
def cleanup_expired_jobs() -> Dict[str, Any]:
    """Scheduled retention sweep (see the beat schedule in celery_app)."""
    result = run_async_wrapper(_sweep_with_fresh_client())
    logger.info(f"Retention sweep finished: {result['message']}")
    return result
