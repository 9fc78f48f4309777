"""
Job Routes — submission bookkeeping, status polling, cancellation, cleanup.
"""
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
import logging

from supportassist.api.deps import get_job_store, get_provider, get_publisher
from supportassist.core.limiter import limiter, STATUS_LIMIT, CANCEL_LIMIT, SUBMIT_LIMIT
from supportassist.services.job_control import cancel_job, get_job_status
from supportassist.services.job_store import JobStatus, JobStore, JobType
from supportassist.services.notifications import EventPublisher
from supportassist.services.provider import ProviderClient
from supportassist.services.retention import sweep_expired_jobs

logger = logging.getLogger(__name__)
router = APIRouter()


class JobCreateRequest(BaseModel):
    job_id: str = Field(..., min_length=1)
    job_type: JobType
    status: JobStatus = JobStatus.QUEUED
    invoker: Optional[Dict[str, Any]] = None
    llm_characters: Optional[Dict[str, Any]] = None
    prompt_length: Optional[int] = None
    system_prompt_length: Optional[int] = None
    prompt_fingerprint: Optional[str] = None
    vector_stats: Optional[Dict[str, Any]] = None
    auxiliary_data: Dict[str, Any] = Field(default_factory=dict)
    retention_days: Optional[int] = Field(default=None, ge=0)
    logs: List[str] = Field(default_factory=list)


@router.post("/jobs", status_code=201)
@limiter.limit(SUBMIT_LIMIT)
async def create_job(request: Request, payload: JobCreateRequest, store: JobStore = Depends(get_job_store)):
    """Record a job the dispatch layer has just submitted to the provider."""
    record = await store.create(**payload.model_dump())
    return {"success": True, "job": record.sanitized()}


@router.get("/jobs/{job_id}")
@limiter.limit(STATUS_LIMIT)
async def job_status(request: Request, job_id: str, store: JobStore = Depends(get_job_store)):
    result = await get_job_status(job_id, store)
    if not result["success"]:
        return JSONResponse(status_code=404, content=result)
    return result


@router.post("/jobs/{job_id}/cancel")
@limiter.limit(CANCEL_LIMIT)
async def job_cancel(
    request: Request,
    job_id: str,
    store: JobStore = Depends(get_job_store),
    provider: ProviderClient = Depends(get_provider),
    publisher: EventPublisher = Depends(get_publisher),
):
    result = await cancel_job(job_id, store, provider, publisher)
    if not result["success"]:
        # A job in the payload means it existed and the provider call failed
        return JSONResponse(status_code=502 if "job" in result else 404, content=result)
    return result


@router.post("/jobs/cleanup")
async def cleanup_jobs(store: JobStore = Depends(get_job_store)):
    """Manual trigger for the retention sweep (normally run by Celery beat)."""
    report = await sweep_expired_jobs(store)
    return report.to_dict()
