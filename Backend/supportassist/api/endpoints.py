from fastapi import APIRouter

from supportassist.api.routes import jobs, webhooks

router = APIRouter()
router.include_router(webhooks.router, tags=["webhooks"])
router.include_router(jobs.router, tags=["jobs"])
