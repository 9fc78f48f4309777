"""
Cancellation and status queries for background jobs.

Both return plain result dicts (``{"success": ..., "job": ...}``) so the HTTP
layer and any other caller share one contract. Returned jobs never carry the
idempotency ledger.
"""
import logging
from typing import Any, Dict, Optional

from supportassist.services.job_store import JobStatus, JobStore
from supportassist.services.notifications import EventPublisher, event_key_for
from supportassist.services.provider import ProviderClient, ProviderError

logger = logging.getLogger(__name__)


def _not_found(job_id: str) -> Dict[str, Any]:
    return {"success": False, "error": f"No background job found for id {job_id}."}


async def get_job_status(job_id: Optional[str], store: JobStore) -> Dict[str, Any]:
    """Read-only lookup."""
    if not job_id:
        return {"success": False, "error": "Job identifier is required to check status."}

    record = await store.get(job_id)
    if record is None:
        return _not_found(job_id)
    return {"success": True, "job": record.sanitized()}


async def cancel_job(
    job_id: Optional[str],
    store: JobStore,
    provider: ProviderClient,
    publisher: EventPublisher,
) -> Dict[str, Any]:
    """
    Request early termination of a job.

    A job already in a terminal state is returned untouched and the provider is
    not contacted, so repeated cancellation is harmless.
    """
    if not job_id:
        return {"success": False, "error": "Job identifier is required to request cancellation."}

    record = await store.get(job_id)
    if record is None:
        return _not_found(job_id)

    if record.is_terminal:
        return {
            "success": True,
            "job": record.sanitized(),
            "message": f"Job already settled with status {record.status.value}.",
        }

    try:
        cancel_response = await provider.cancel(job_id)
    except ProviderError as e:
        logger.error(f"Cancellation of {job_id} failed at the provider: {e}")
        updated = await store.update(job_id, {
            "status": JobStatus.FAILED,
            "error": {"reason": "cancel_failed", "message": str(e)},
        })
        await publisher.publish(event_key_for(updated.job_type, "failed"), updated)
        return {
            "success": False,
            "error": "The provider could not cancel this job.",
            "job": updated.sanitized(),
        }

    updated = await store.update(job_id, {
        "status": JobStatus.CANCELLED,
        "result": None,
        "error": {
            "reason": "cancelled_by_user",
            "message": "Job cancelled at the request of the agent.",
            "provider_status": (cancel_response or {}).get("status"),
        },
    })
    await publisher.publish(event_key_for(updated.job_type, "cancelled"), updated)
    logger.info(f"Job {job_id} cancelled by user.")
    return {"success": True, "job": updated.sanitized()}
