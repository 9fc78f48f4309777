import logging
from celery import Celery
from supportassist.core.config import settings

logger = logging.getLogger(__name__)


def get_celery_app() -> Celery:
    redis_url = settings.REDIS_URL

    app = Celery(
        "supportassist_tasks",
        broker=redis_url,
        backend=redis_url,
        include=["supportassist.tasks"],
    )

    app.conf.update(
        result_expires=86400, # 24 hours
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        broker_transport_options={"visibility_timeout": 600},
        beat_schedule={
            "cleanup-expired-jobs": {
                "task": "supportassist.tasks.cleanup_expired_jobs",
                "schedule": settings.CLEANUP_INTERVAL_MINUTES * 60.0,
            },
        },
    )

    # Without Redis there is no broker: run tasks inline so a manual trigger
    # still works in local development.
    try:
        import redis
        client = redis.from_url(redis_url, socket_connect_timeout=1)
        client.ping()
        logger.info(f"[Celery] Connected to Redis at {redis_url}")
    except Exception as e:
        logger.warning(f"[Celery] Redis not available ({e}). Running in SYNC mode (task_always_eager=True).")
        app.conf.update(
            task_always_eager=True,
            task_eager_propagates=True
        )

    return app

celery_app = get_celery_app()
