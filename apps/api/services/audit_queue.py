"""Durable audit job queue helpers (Redis/RQ)."""

from __future__ import annotations

import logging
from typing import Optional

from redis import Redis
from rq import Queue
from rq.job import Job

from config import settings
from services.audit_store import AuditStore

logger = logging.getLogger(__name__)

AUDIT_QUEUE_NAME = "audit_jobs"
AUDIT_JOB_TIMEOUT_SECONDS = 3600


def get_redis_connection() -> Redis:
    """Build Redis connection used by RQ."""
    return Redis.from_url(settings.REDIS_URL)


def get_audit_queue(connection: Optional[Redis] = None) -> Queue:
    """Return the configured audit queue."""
    return Queue(
        name=AUDIT_QUEUE_NAME,
        connection=connection or get_redis_connection(),
        default_timeout=AUDIT_JOB_TIMEOUT_SECONDS,
    )


def enqueue_audit_job(audit_id: str, queue: Optional[Queue] = None) -> Job:
    """
    Enqueue execution of a created audit.

    No RQ retry: a failed audit is never re-entered, retrying means creating a
    new audit.
    """
    queue = queue or get_audit_queue()
    job = queue.enqueue(
        "services.audit_pipeline.process_audit_job",
        audit_id,
        job_id=f"audit:{audit_id}",
        job_timeout=AUDIT_JOB_TIMEOUT_SECONDS,
        result_ttl=86400,
        failure_ttl=86400,
    )
    logger.info(f"Enqueued audit {audit_id} on {AUDIT_QUEUE_NAME}")
    return job


async def recover_stalled_audits(max_age_minutes: Optional[int] = None, store: Optional[AuditStore] = None) -> int:
    """Mark audits left running after restarts/worker interruptions as failed."""
    store = store or AuditStore()
    minutes = max_age_minutes if max_age_minutes is not None else settings.AUDIT_STALL_MINUTES
    return await store.fail_stalled_audits(minutes)
