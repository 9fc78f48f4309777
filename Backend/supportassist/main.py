from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from supportassist.core.config import settings
from supportassist.core.limiter import limiter
from supportassist.core.logging_config import configure_logging

from contextlib import asynccontextmanager
import logging

from supportassist.api import endpoints
from supportassist.db import close_redis_client, ping_redis

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    if not await ping_redis():
        # Keep serving: every store call will fail loudly until Redis is back.
        logger.error("JOB STORE UNAVAILABLE: Redis did not answer PING at startup.")
    if not settings.OPENAI_WEBHOOK_SECRET:
        logger.warning("OPENAI_WEBHOOK_SECRET is not set; webhook callbacks will be rejected with 401.")
    yield
    await close_redis_client()

app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

# Rate Limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

_cors_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(endpoints.router, prefix="/api", tags=["api"])

@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "project": settings.PROJECT_NAME,
        "job_store": "up" if await ping_redis() else "down",
    }
