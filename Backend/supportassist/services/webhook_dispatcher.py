"""
Webhook Dispatcher — applies an authenticated provider callback to its job.

Pipeline per delivery:
    verify → locate job → idempotency check → retrieve artifact
           → shape result → persist → notify

Only authentication failures reach the sender as an error (400). Once a
callback is authenticated every outcome is acknowledged with 200 and recorded
on the job instead, so the sender never redelivers because of an
application-level failure.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from supportassist.services.job_store import JobRecord, JobStatus, JobStore
from supportassist.services.notifications import EventPublisher, event_key_for
from supportassist.services.provider import ProviderClient, ProviderError, extract_output_text
from supportassist.services.result_shaping import ResultParseError, shape_result
from supportassist.services.signature import (
    WebhookVerificationError,
    first_header,
    normalise_headers,
    unwrap_webhook_event,
)

logger = logging.getLogger(__name__)

DELIVERY_ID_HEADERS = ("webhook-id", "svix-id")


@dataclass
class WebhookAck:
    status_code: int
    body: str


def with_delivery_id(existing: Optional[List[str]], delivery_id: Optional[str]) -> List[str]:
    """Append to the ledger with set semantics, keeping first-seen order."""
    ledger = list(existing or [])
    if delivery_id and delivery_id not in ledger:
        ledger.append(delivery_id)
    return ledger


def _failure_details(payload: Dict[str, Any], event_type: Optional[str]) -> Dict[str, Any]:
    provider_status = payload.get("status")
    raw_error = payload.get("error")
    if isinstance(raw_error, dict):
        message = raw_error.get("message") or "Unknown failure"
    else:
        message = raw_error or "Unknown failure"

    if provider_status == "cancelled":
        reason = "provider_cancelled"
    elif provider_status == "completed":
        reason = "empty_output"
        message = "Provider reported completion without output text."
    else:
        reason = "provider_failed"

    failure: Dict[str, Any] = {
        "reason": reason,
        "message": str(message),
        "status": provider_status or event_type,
    }
    if isinstance(raw_error, dict) and raw_error.get("code"):
        failure["details"] = raw_error
    return failure


class WebhookDispatcher:

    def __init__(self, store: JobStore, provider: ProviderClient, publisher: EventPublisher, clock=None):
        self.store = store
        self.provider = provider
        self.publisher = publisher
        self._clock = clock or time.time

    async def handle(self, raw_body: bytes | str, headers: Mapping[str, Any], secret: Optional[str]) -> WebhookAck:
        headers = normalise_headers(headers)

        if not secret:
            logger.error("Webhook secret not configured.")
            return WebhookAck(401, "Webhook secret not configured")

        # 1. Authenticate
        try:
            event = unwrap_webhook_event(raw_body, headers, secret, now=self._clock())
        except WebhookVerificationError as e:
            logger.error(f"Invalid webhook ({e.reason}): {e}")
            return WebhookAck(400, "Invalid webhook signature")

        delivery_id = first_header(headers, DELIVERY_ID_HEADERS)
        data = event.get("data") if isinstance(event.get("data"), dict) else {}
        job_id = data.get("id")
        event_type = event.get("type")

        # 2. Locate job
        if not job_id:
            logger.warning(f"Received event without response id (type={event_type}).")
            return WebhookAck(200, "Ack: missing job id")

        job = await self.store.get(job_id)
        if job is None:
            logger.warning(f"No tracked job found for {job_id}.")
            return WebhookAck(200, "Ack: job not tracked")

        # 3. Idempotency
        if delivery_id and delivery_id in job.processed_webhook_ids:
            logger.info(f"Duplicate webhook {delivery_id} ignored for {job_id}.")
            return WebhookAck(200, "Ack: duplicate")

        if job.is_terminal:
            # A settled record only ever grows its ledger
            if delivery_id:
                await self.store.update(job_id, {
                    "processed_webhook_ids": with_delivery_id(job.processed_webhook_ids, delivery_id),
                })
            logger.info(f"Job {job_id} already settled as {job.status.value}; webhook recorded only.")
            return WebhookAck(200, "Ack: already settled")

        processed = with_delivery_id(job.processed_webhook_ids, delivery_id)

        # 4. Retrieve artifact
        try:
            payload = await self.provider.retrieve(job_id)
        except ProviderError as e:
            updated = await self.store.update(job_id, {
                "status": JobStatus.FAILED,
                "error": {"reason": "retrieve_failed", "message": str(e)},
                "processed_webhook_ids": processed,
            })
            await self.publisher.publish(event_key_for(updated.job_type, "failed"), updated)
            return WebhookAck(200, "Ack: retrieve failed")

        output_text = extract_output_text(payload)

        # 5. Completed with output
        if payload.get("status") == "completed" and output_text:
            try:
                result = shape_result(job.job_type, output_text, job.auxiliary_data)
            except ResultParseError as e:
                logger.error(f"Job {job_id}: {e}")
                return await self._settle(job, JobStatus.FAILED, {
                    "reason": "parse_failed",
                    "message": str(e),
                    "status": payload.get("status"),
                }, processed)

            updated = await self.store.update(job_id, {
                "status": JobStatus.COMPLETED,
                "result": result,
                "error": None,
                "processed_webhook_ids": processed,
            })
            await self.publisher.publish(event_key_for(updated.job_type, "completed"), updated)
            logger.info(f"Job {job_id} completed via webhook {delivery_id}.")
            return WebhookAck(200, "Ack: completed")

        # 6. Failed or cancelled
        status = JobStatus.CANCELLED if payload.get("status") == "cancelled" else JobStatus.FAILED
        return await self._settle(job, status, _failure_details(payload, event_type), processed)

    async def _settle(self, job: JobRecord, status: JobStatus, error: Dict[str, Any], processed: List[str]) -> WebhookAck:
        updated = await self.store.update(job.job_id, {
            "status": status,
            "error": error,
            "processed_webhook_ids": processed,
        })
        suffix = "cancelled" if status == JobStatus.CANCELLED else "failed"
        await self.publisher.publish(event_key_for(updated.job_type, suffix), updated)
        logger.warning(f"Job {job.job_id} settled as {status.value} ({error.get('reason')}).")
        return WebhookAck(200, "Ack: failure")
