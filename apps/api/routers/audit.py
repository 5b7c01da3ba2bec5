"""
Audit router for starting channel audits and polling their progress.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from analysis.models import AuditConfig, AuditStatus, AuditType
from config import settings
from ingestion.youtube import ChannelResolutionError, YouTubeAPIError
from models.audit import Audit
from models.audit_section import AuditSection
from services.audit_pipeline import AuditPipeline, build_audit_pipeline
from services.audit_queue import enqueue_audit_job
from services.audit_store import AuditNotFoundError, AuditStateError

router = APIRouter()
logger = logging.getLogger(__name__)

_pipeline: Optional[AuditPipeline] = None


def get_audit_pipeline() -> AuditPipeline:
    """Process-wide pipeline; tests override this dependency."""
    global _pipeline
    if _pipeline is None:
        _pipeline = build_audit_pipeline()
    return _pipeline


class CreateAuditRequest(BaseModel):
    channel_reference: str = Field(min_length=1)
    audit_type: AuditType = AuditType.PROSPECT
    config: AuditConfig = Field(default_factory=AuditConfig)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_section(section: AuditSection) -> Dict[str, Any]:
    return {
        "section_key": section.section_key,
        "position": section.position,
        "status": section.status,
        "started_at": _iso(section.started_at),
        "completed_at": _iso(section.completed_at),
        "error_message": section.error_message,
        "result_data": section.result_data,
    }


def serialize_audit(audit: Audit, include_results: bool = True) -> Dict[str, Any]:
    payload = {
        "audit_id": audit.id,
        "channel_reference": audit.channel_reference,
        "youtube_channel_id": audit.youtube_channel_id,
        "channel_id": audit.channel_id,
        "audit_type": audit.audit_type,
        "status": audit.status,
        "progress": audit.progress,
        "config": audit.config,
        "total_tokens": int(audit.total_tokens or 0),
        "total_cost": float(audit.total_cost or 0),
        "youtube_api_calls": int(audit.youtube_api_calls or 0),
        "error_message": audit.error_message,
        "created_at": _iso(audit.created_at),
        "completed_at": _iso(audit.completed_at),
    }
    if include_results:
        payload.update(
            {
                "channel_snapshot": audit.channel_snapshot,
                "series_summary": audit.series_summary,
                "benchmark_data": audit.benchmark_data,
                "opportunities": audit.opportunities,
                "recommendations": audit.recommendations,
                "executive_summary": audit.executive_summary,
                "videos": audit.videos,
                "sections": [serialize_section(s) for s in audit.sections],
            }
        )
    return payload


def _schedule(audit_id: str, background_tasks: BackgroundTasks, pipeline: AuditPipeline) -> str:
    if settings.AUDIT_USE_QUEUE:
        enqueue_audit_job(audit_id)
        return "queue"
    background_tasks.add_task(pipeline.execute, audit_id)
    return "background"


@router.post("", status_code=202)
async def create_audit(
    request: CreateAuditRequest,
    background_tasks: BackgroundTasks,
    pipeline: AuditPipeline = Depends(get_audit_pipeline),
):
    """Resolve the channel, create the audit and schedule its execution."""
    try:
        audit = await pipeline.start_audit(request.channel_reference, request.audit_type.value, request.config)
    except ChannelResolutionError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except YouTubeAPIError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except ValueError as e:
        # Raised when the YouTube API key is not configured.
        raise HTTPException(status_code=503, detail=str(e))

    mode = _schedule(audit.id, background_tasks, pipeline)
    logger.info(f"Scheduled audit {audit.id} via {mode}")
    return {
        "audit_id": audit.id,
        "status": audit.status,
        "youtube_channel_id": audit.youtube_channel_id,
        "execution": mode,
    }


@router.get("")
async def list_audits(
    limit: int = Query(20, ge=1, le=200),
    channel_id: Optional[str] = None,
    audit_type: Optional[AuditType] = None,
    status: Optional[AuditStatus] = None,
    pipeline: AuditPipeline = Depends(get_audit_pipeline),
):
    """List recent audits, newest first."""
    audits = await pipeline.store.list_audits(
        limit=limit,
        channel_id=channel_id,
        audit_type=audit_type.value if audit_type else None,
        status=status.value if status else None,
    )
    return [serialize_audit(a, include_results=False) for a in audits]


@router.get("/{audit_id}")
async def get_audit(audit_id: str, pipeline: AuditPipeline = Depends(get_audit_pipeline)):
    """Audit with its results so far and the state of every section."""
    try:
        audit = await pipeline.store.get_audit(audit_id)
    except AuditNotFoundError:
        raise HTTPException(status_code=404, detail="Audit not found")
    return serialize_audit(audit)


@router.get("/{audit_id}/sections")
async def get_audit_sections(audit_id: str, pipeline: AuditPipeline = Depends(get_audit_pipeline)):
    try:
        sections = await pipeline.store.get_audit_sections(audit_id)
    except AuditNotFoundError:
        raise HTTPException(status_code=404, detail="Audit not found")
    return [serialize_section(s) for s in sections]


@router.post("/{audit_id}/retry", status_code=202)
async def retry_audit(
    audit_id: str,
    background_tasks: BackgroundTasks,
    pipeline: AuditPipeline = Depends(get_audit_pipeline),
):
    """Start a new audit with the inputs of a failed one."""
    try:
        audit = await pipeline.retry_audit(audit_id)
    except AuditNotFoundError:
        raise HTTPException(status_code=404, detail="Audit not found")
    except AuditStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    mode = _schedule(audit.id, background_tasks, pipeline)
    return {
        "audit_id": audit.id,
        "retry_of": audit_id,
        "status": audit.status,
        "execution": mode,
    }


@router.delete("/{audit_id}")
async def delete_audit(audit_id: str, pipeline: AuditPipeline = Depends(get_audit_pipeline)):
    try:
        await pipeline.store.delete_audit(audit_id)
    except AuditNotFoundError:
        raise HTTPException(status_code=404, detail="Audit not found")
    except AuditStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"deleted": True, "audit_id": audit_id}
