"""
Health check endpoints.
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
import redis.asyncio as redis
from sqlalchemy import func, select

from analysis.models import AuditStatus
from config import settings
from database import engine
from models.audit import Audit
from services.audit_queue import AUDIT_QUEUE_NAME

router = APIRouter()


def _key_status(value: str) -> str:
    return "configured" if value else "missing"


@router.get("/health")
async def health_check():
    """
    Overall service health: database, job queue (when enabled) and which
    external API keys are configured. Also reports how many audits are running.
    """
    status = {
        "status": "healthy",
        "api": "up",
        "database": "unknown",
        "redis": "unknown" if settings.AUDIT_USE_QUEUE else "not_used",
        "youtube_api_key": _key_status(settings.YOUTUBE_API_KEY),
        "openai_api_key": _key_status(settings.OPENAI_API_KEY),
    }

    try:
        async with engine.connect() as conn:
            result = await conn.execute(
                select(func.count()).select_from(Audit).where(Audit.status == AuditStatus.RUNNING.value)
            )
            status["audits_running"] = int(result.scalar() or 0)
        status["database"] = "up"
    except Exception as e:
        status["database"] = f"down: {e}"
        status["status"] = "degraded"

    if settings.AUDIT_USE_QUEUE:
        try:
            r = redis.from_url(settings.REDIS_URL)
            await r.ping()
            status["audits_queued"] = int(await r.llen(f"rq:queue:{AUDIT_QUEUE_NAME}"))
            await r.aclose()
            status["redis"] = "up"
        except Exception as e:
            status["redis"] = f"down: {e}"
            status["status"] = "degraded"

    return status


@router.get("/health/ready")
async def readiness_check():
    """Ready once audits can resolve channels; the LLM is optional."""
    if not settings.YOUTUBE_API_KEY:
        return JSONResponse(
            status_code=503,
            content={"ready": False, "missing": ["YOUTUBE_API_KEY"]},
        )
    return {"ready": True, "llm": "configured" if settings.OPENAI_API_KEY else "heuristic"}


@router.get("/health/live")
async def liveness_check():
    return {"alive": True}
