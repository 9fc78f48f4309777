"""
Webhook Routes — provider callback ingress.
"""
from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from typing import Optional
import logging

from supportassist.api.deps import get_dispatcher, get_webhook_secret
from supportassist.services.webhook_dispatcher import WebhookDispatcher

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/webhooks/openai", response_class=PlainTextResponse)
async def receive_provider_webhook(
    request: Request,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
    secret: Optional[str] = Depends(get_webhook_secret),
):
    """
    Receive a background-response callback.

    The body is read raw: the signature covers its exact bytes, so it must never
    be parsed and re-serialised before verification.
    """
    raw_body = await request.body()
    ack = await dispatcher.handle(raw_body, dict(request.headers), secret)
    return PlainTextResponse(ack.body, status_code=ack.status_code)
