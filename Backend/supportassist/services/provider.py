from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from openai import AsyncOpenAI, OpenAIError

from supportassist.core.config import settings

# ─── Logger ──────────────────────────────────────────────────────────────────
logger = logging.getLogger(__name__)


# ─── Custom Exceptions ───────────────────────────────────────────────────────
class ProviderError(RuntimeError):
    """Raised when a retrieve/cancel call fails, times out, or is not configured."""


class ProviderClient:
    """
    Thin wrapper over the Responses API for background jobs.

    Calls are never retried here (``max_retries=0``); each one is bounded by
    ``timeout_seconds`` so a hung provider surfaces as ``ProviderError`` instead
    of stalling the webhook handler.
    """

    def __init__(self, client: Optional[AsyncOpenAI] = None, timeout_seconds: Optional[float] = None):
        self._client = client
        self.timeout_seconds = settings.PROVIDER_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if not settings.OPENAI_API_KEY:
                raise ProviderError("OPENAI_API_KEY is not configured.")
            self._client = AsyncOpenAI(
                api_key=settings.OPENAI_API_KEY,
                base_url=settings.OPENAI_BASE_URL,
                timeout=self.timeout_seconds,
                max_retries=0,
            )
        return self._client

    async def _call(self, operation: str, job_id: str, coro_factory) -> Dict[str, Any]:
        try:
            response = await asyncio.wait_for(coro_factory(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.error(f"Provider {operation} for {job_id} timed out after {self.timeout_seconds:.1f}s.")
            raise ProviderError(f"Provider {operation} timed out after {self.timeout_seconds:.0f}s.")
        except OpenAIError as e:
            logger.error(f"Provider {operation} for {job_id} failed: {e}")
            raise ProviderError(f"Provider {operation} failed: {e}") from e
        return response.model_dump() if hasattr(response, "model_dump") else dict(response)

    async def retrieve(self, job_id: str) -> Dict[str, Any]:
        """Fetch the finished (or failed) background response."""
        client = self.client
        return await self._call("retrieve", job_id, lambda: client.responses.retrieve(job_id))

    async def cancel(self, job_id: str) -> Dict[str, Any]:
        """Request early termination of an in-flight background response."""
        client = self.client
        return await self._call("cancel", job_id, lambda: client.responses.cancel(job_id))


def extract_output_text(payload: Optional[Dict[str, Any]]) -> Optional[str]:
    """First ``output_text`` block of a response payload, stripped; None if there is none."""
    if not payload:
        return None
    for item in payload.get("output") or []:
        for block in (item or {}).get("content") or []:
            if (block or {}).get("type") == "output_text" and block.get("text"):
                text = block["text"].strip()
                if text:
                    return text
    fallback = payload.get("output_text")
    if isinstance(fallback, str) and fallback.strip():
        return fallback.strip()
    return None
