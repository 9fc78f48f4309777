import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from supportassist.core.config import settings
from supportassist.services.job_store import JobRecord, JobType

logger = logging.getLogger(__name__)


def event_key_for(job_type: Optional[JobType | str], suffix: str) -> str:
    """``job-analysis-<suffix>`` for analysis jobs, ``job-response-<suffix>`` for everything else."""
    is_analysis = job_type is not None and JobType(job_type) == JobType.ANALYSIS
    return f"{'job-analysis' if is_analysis else 'job-response'}-{suffix}"


class EventPublisher:
    """
    Publishes job lifecycle events over Redis Pub/Sub.

    Fire-and-forget: a failed publish is logged and reported as False, never raised,
    so a notification outage cannot fail the request that triggered it.
    """

    def __init__(self, client, channel_prefix: Optional[str] = None):
        self.client = client
        self.channel_prefix = channel_prefix or settings.EVENTS_CHANNEL_PREFIX

    async def publish(self, event_key: str, job: Optional[JobRecord] = None) -> bool:
        data: Dict[str, Any] = {
            "event": event_key,
            "published_at": datetime.now(tz=timezone.utc).isoformat(),
        }
        if job is not None:
            data.update({
                "job_id": job.job_id,
                "job_type": job.job_type.value if job.job_type else None,
                "status": job.status.value,
            })
        channel = f"{self.channel_prefix}{event_key}"
        try:
            await self.client.publish(channel, json.dumps(data))
        except Exception as e:
            logger.error(f"Failed to publish event '{event_key}': {e}")
            return False
        logger.info(f"Published event '{event_key}'" + (f" for job {job.job_id}" if job else ""))
        return True
