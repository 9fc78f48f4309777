"""
Job Store — persistent record per background job, kept in Redis.

Every job lives under a namespaced key (``async-job:<job_id>``) as a JSON
document. Redis offers no per-document TTL semantics we want to rely on here, so
the expiry timestamp is written on the document itself and a scheduled sweep
prunes stale records (see ``retention.py``).

Updates are read-modify-write without transactional isolation. Concurrent
writers to the same job (one webhook delivery, one cancellation) can lose each
other's write; the last write wins.
"""
from __future__ import annotations

import copy
import hashlib
import json
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from supportassist.core.config import settings

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "…"
SEARCH_TITLE_MAX_LENGTH = 256

# Fields an update may never rewrite once the record exists
_IMMUTABLE_FIELDS = ("job_id", "created_at", "expires_at")
# Fields replaced wholesale (deep copy) when supplied
_DEEP_REPLACED_FIELDS = ("result", "error", "llm_characters", "vector_stats")


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


# ─── Data Model ──────────────────────────────────────────────────────────────

class JobStatus(str, Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


class JobType(str, Enum):
    ANALYSIS = "analysis"
    RESPONSE = "response"


class RequestMetadata(BaseModel):
    prompt_length: Optional[int] = None
    system_prompt_length: Optional[int] = None
    prompt_fingerprint: Optional[str] = None


class JobRecord(BaseModel):
    """Tracks the lifecycle of one background model invocation."""
    job_id: str
    job_type: Optional[JobType] = None
    status: JobStatus = JobStatus.QUEUED
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    invoker: Optional[Dict[str, Any]] = None
    llm_characters: Optional[Dict[str, Any]] = None
    request: RequestMetadata = Field(default_factory=RequestMetadata)
    vector_stats: Optional[Dict[str, Any]] = None
    auxiliary_data: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None
    processed_webhook_ids: List[str] = Field(default_factory=list)
    logs: List[str] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def sanitized(self) -> Dict[str, Any]:
        """JSON-ready view for callers; the idempotency ledger is never exposed."""
        return self.model_dump(mode="json", exclude={"processed_webhook_ids"})


# ─── Helpers ─────────────────────────────────────────────────────────────────

def truncate(value: Any, max_length: int) -> Any:
    if not isinstance(value, str) or len(value) <= max_length:
        return value
    return f"{value[:max_length]}{TRUNCATION_MARKER}"


def _truncate_nested(value: Any, max_length: int) -> Any:
    if isinstance(value, str):
        return truncate(value, max_length)
    if isinstance(value, dict):
        return {k: _truncate_nested(v, max_length) for k, v in value.items()}
    if isinstance(value, list):
        return [_truncate_nested(v, max_length) for v in value]
    return value


def _normalise_search_result(result: Dict[str, Any], max_length: int) -> Dict[str, str]:
    metadata = result.get("metadata") or {}
    return {
        "title": truncate(
            metadata.get("title") or result.get("title") or "Knowledge Base Article",
            SEARCH_TITLE_MAX_LENGTH,
        ),
        "link": metadata.get("link") or result.get("link") or "",
        "contentSnippet": truncate(
            metadata.get("content") or result.get("contentSnippet") or result.get("content") or "",
            max_length,
        ),
    }


def prepare_auxiliary_data(data: Optional[Dict[str, Any]], max_length: Optional[int] = None) -> Dict[str, Any]:
    """
    Deep-copy caller supplied context and cut oversized strings before persistence.

    ``searchResults`` entries are reduced to title/link/snippet so full knowledge
    base documents never end up inside a job record.
    """
    max_length = max_length or settings.AUX_STRING_MAX_LENGTH
    prepared = _truncate_nested(copy.deepcopy(data or {}), max_length)
    search_results = prepared.get("searchResults")
    if isinstance(search_results, list):
        prepared["searchResults"] = [
            _normalise_search_result(r, max_length) for r in search_results if isinstance(r, dict)
        ]
    return prepared


def fingerprint_prompt(prompt: Any, system_prompt: Any = None) -> Optional[str]:
    """SHA-256 over prompt and system prompt, for traceability only."""
    def _as_text(value: Any) -> str:
        return value if isinstance(value, str) else json.dumps(value if value is not None else "")

    try:
        digest = hashlib.sha256()
        digest.update(_as_text(prompt).encode("utf-8"))
        digest.update(b"::")
        digest.update(_as_text(system_prompt).encode("utf-8"))
        return digest.hexdigest()
    except (TypeError, ValueError) as e:
        logger.warning(f"Failed to fingerprint prompt: {e}")
        return None


# ─── Store ───────────────────────────────────────────────────────────────────

class JobStore:
    """
    Async CRUD over job records.

    ``client`` is any redis.asyncio-compatible client created with
    ``decode_responses=True``; ``clock`` returns an aware UTC datetime.
    """

    def __init__(
        self,
        client,
        key_prefix: Optional[str] = None,
        retention_days: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
        scan_page_size: Optional[int] = None,
    ):
        self.client = client
        self.key_prefix = key_prefix or settings.JOB_KEY_PREFIX
        self.retention_days = settings.JOB_RETENTION_DAYS if retention_days is None else retention_days
        self.scan_page_size = settings.SCAN_PAGE_SIZE if scan_page_size is None else scan_page_size
        self._now = clock or _utc_now

    def key_for(self, job_id: str) -> str:
        return f"{self.key_prefix}{job_id}"

    async def _save(self, record: JobRecord) -> None:
        await self.client.set(self.key_for(record.job_id), record.model_dump_json())

    async def create(
        self,
        job_id: str,
        job_type: JobType | str,
        status: JobStatus | str = JobStatus.QUEUED,
        invoker: Optional[Dict[str, Any]] = None,
        llm_characters: Optional[Dict[str, Any]] = None,
        prompt_length: Optional[int] = None,
        system_prompt_length: Optional[int] = None,
        prompt_fingerprint: Optional[str] = None,
        vector_stats: Optional[Dict[str, Any]] = None,
        auxiliary_data: Optional[Dict[str, Any]] = None,
        retention_days: Optional[int] = None,
        logs: Optional[List[str]] = None,
    ) -> JobRecord:
        now = self._now()
        days = self.retention_days if retention_days is None else retention_days
        record = JobRecord(
            job_id=job_id,
            job_type=JobType(job_type),
            status=JobStatus(status),
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(days=days),
            invoker=copy.deepcopy(invoker) if invoker else None,
            llm_characters=copy.deepcopy(llm_characters) if llm_characters else None,
            request=RequestMetadata(
                prompt_length=prompt_length,
                system_prompt_length=system_prompt_length,
                prompt_fingerprint=prompt_fingerprint,
            ),
            vector_stats=copy.deepcopy(vector_stats) if vector_stats else None,
            auxiliary_data=prepare_auxiliary_data(auxiliary_data),
            logs=list(logs or []),
        )
        await self._save(record)
        logger.info(f"Job {job_id} ({record.job_type.value}) created with status {record.status.value}.")
        return record

    async def get(self, job_id: str) -> Optional[JobRecord]:
        raw = await self.client.get(self.key_for(job_id))
        if raw is None:
            return None
        return JobRecord.model_validate_json(raw)

    async def update(self, job_id: str, changes: Dict[str, Any]) -> JobRecord:
        """
        Read-merge-write. A missing record is replaced by a minimal shell so an
        update racing ahead of ``create`` is not lost.
        """
        now = self._now()
        existing = await self.get(job_id)
        if existing is None:
            logger.warning(f"Job {job_id} not found during update; synthesising record shell.")
            existing = JobRecord(
                job_id=job_id,
                created_at=now,
                updated_at=now,
                expires_at=now + timedelta(days=self.retention_days),
            )

        merged = existing.model_dump()
        for field_name, value in changes.items():
            if field_name in _IMMUTABLE_FIELDS:
                logger.debug(f"Ignoring update to immutable field '{field_name}' on job {job_id}.")
                continue
            if field_name == "job_type" and existing.job_type is not None:
                continue
            if field_name == "status":
                merged["status"] = value or existing.status
            elif field_name in _DEEP_REPLACED_FIELDS:
                merged[field_name] = copy.deepcopy(value)
            elif field_name == "auxiliary_data":
                if value:
                    merged["auxiliary_data"] = {
                        **(existing.auxiliary_data or {}),
                        **prepare_auxiliary_data(value),
                    }
            else:
                merged[field_name] = value
        merged["updated_at"] = now

        record = JobRecord.model_validate(merged)
        await self._save(record)
        return record

    async def list_expired(self) -> AsyncIterator[JobRecord]:
        """
        Lazily yield records whose ``expires_at`` has passed.

        Walks the key namespace with SCAN one cursor page at a time, so memory
        stays bounded however many jobs exist. Each call starts a fresh scan.
        SCAN may return a key more than once; each job is yielded at most once.
        """
        cursor = 0
        pattern = f"{self.key_prefix}*"
        seen = set()
        while True:
            cursor, keys = await self.client.scan(cursor=cursor, match=pattern, count=self.scan_page_size)
            keys = [k for k in dict.fromkeys(keys) if k not in seen]
            if keys:
                seen.update(keys)
                now = self._now()
                values = await self.client.mget(keys)
                for key, raw in zip(keys, values):
                    if raw is None:
                        continue  # deleted between SCAN and MGET
                    try:
                        record = JobRecord.model_validate_json(raw)
                    except ValidationError as e:
                        logger.warning(f"Skipping unreadable job document at {key}: {e}")
                        continue
                    if record.expires_at <= now:
                        yield record
            if int(cursor) == 0:
                break

    async def delete(self, job_id: str) -> None:
        await self.client.delete(self.key_for(job_id))
