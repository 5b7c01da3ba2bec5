"""
Persistence of audit state: status, progress, per-stage sections and cost.

Only the pipeline writes to an audit while it runs, and nothing writes to it
once it is completed or failed.
"""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from analysis.models import AuditConfig, AuditStatus, SECTION_ORDER, SectionKey, SectionStatus, StageCost
from database import async_session_maker
from models.audit import Audit
from models.audit_section import AuditSection

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = {AuditStatus.COMPLETED.value, AuditStatus.FAILED.value}

AUDIT_TRANSITIONS = {
    AuditStatus.CREATED.value: {AuditStatus.RUNNING.value},
    AuditStatus.RUNNING.value: {AuditStatus.COMPLETED.value, AuditStatus.FAILED.value},
}

SECTION_TRANSITIONS = {
    SectionStatus.PENDING.value: {SectionStatus.RUNNING.value},
    SectionStatus.RUNNING.value: {SectionStatus.COMPLETED.value, SectionStatus.FAILED.value},
}

# Audit columns a completed stage may write.
RESULT_FIELDS = {
    "channel_id",
    "channel_snapshot",
    "series_summary",
    "benchmark_data",
    "opportunities",
    "recommendations",
    "executive_summary",
    "videos",
}


class AuditNotFoundError(Exception):
    """No audit exists with the given id."""


class AuditStateError(Exception):
    """The requested write is not allowed in the audit's current state."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AuditStore:
    """Audit record store backed by SQLAlchemy async sessions."""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        self.session_factory = session_factory or async_session_maker

    async def _load(self, db: AsyncSession, audit_id: str, with_sections: bool = False) -> Audit:
        query = select(Audit).where(Audit.id == audit_id)
        if with_sections:
            query = query.options(selectinload(Audit.sections))
        result = await db.execute(query)
        audit = result.scalar_one_or_none()
        if audit is None:
            raise AuditNotFoundError(f"Audit {audit_id} not found")
        return audit

    @staticmethod
    def _require_writable(audit: Audit) -> None:
        if audit.status in TERMINAL_STATUSES:
            raise AuditStateError(f"Audit {audit.id} is {audit.status} and can no longer change")

    async def create_audit(
        self,
        channel_reference: str,
        youtube_channel_id: str,
        audit_type: str,
        config: Optional[AuditConfig] = None,
    ) -> Audit:
        """Create an audit in ``created`` with one pending section per stage."""
        config = config or AuditConfig()
        async with self.session_factory() as db:
            audit = Audit(
                channel_reference=channel_reference,
                youtube_channel_id=youtube_channel_id,
                audit_type=audit_type,
                status=AuditStatus.CREATED.value,
                progress={"step": "created", "pct": 0, "message": "Audit created"},
                config=config.model_dump(mode="json"),
                total_tokens=0,
                total_cost=Decimal("0"),
                youtube_api_calls=0,
            )
            audit.sections = [
                AuditSection(section_key=key.value, position=position, status=SectionStatus.PENDING.value)
                for position, key in enumerate(SECTION_ORDER)
            ]
            db.add(audit)
            await db.commit()
            audit_id = audit.id

        logger.info(f"Created audit {audit_id} for {youtube_channel_id} ({audit_type})")
        return await self.get_audit(audit_id)

    async def get_audit(self, audit_id: str) -> Audit:
        async with self.session_factory() as db:
            return await self._load(db, audit_id, with_sections=True)

    async def get_audit_sections(self, audit_id: str) -> List[AuditSection]:
        async with self.session_factory() as db:
            await self._load(db, audit_id)
            result = await db.execute(
                select(AuditSection)
                .where(AuditSection.audit_id == audit_id)
                .order_by(AuditSection.position)
            )
            return list(result.scalars().all())

    async def list_audits(
        self,
        limit: int = 20,
        channel_id: Optional[str] = None,
        audit_type: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Audit]:
        """Most recent audits first."""
        query = select(Audit).options(selectinload(Audit.sections))
        if channel_id:
            query = query.where(Audit.channel_id == channel_id)
        if audit_type:
            query = query.where(Audit.audit_type == audit_type)
        if status:
            query = query.where(Audit.status == status)
        query = query.order_by(Audit.created_at.desc(), Audit.id).limit(max(1, min(limit, 200)))

        async with self.session_factory() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    async def delete_audit(self, audit_id: str) -> None:
        async with self.session_factory() as db:
            audit = await self._load(db, audit_id, with_sections=True)
            if audit.status == AuditStatus.RUNNING.value:
                raise AuditStateError(f"Audit {audit_id} is running and cannot be deleted")
            await db.delete(audit)
            await db.commit()
        logger.info(f"Deleted audit {audit_id}")

    async def set_audit_status(
        self,
        audit_id: str,
        status: str,
        error_message: Optional[str] = None,
    ) -> None:
        status = AuditStatus(status).value
        async with self.session_factory() as db:
            audit = await self._load(db, audit_id)
            allowed = AUDIT_TRANSITIONS.get(audit.status, set())
            if status not in allowed:
                raise AuditStateError(f"Audit {audit_id} cannot move from {audit.status} to {status}")
            audit.status = status
            if status == AuditStatus.FAILED.value:
                audit.error_message = error_message or "Audit failed"
            if status in TERMINAL_STATUSES:
                audit.completed_at = _now()
            await db.commit()

    async def update_audit_progress(
        self,
        audit_id: str,
        step: str,
        pct: int,
        message: str = "",
    ) -> Dict[str, Any]:
        """Set the progress step; the percentage is clamped to 0-100 and never lowered."""
        async with self.session_factory() as db:
            audit = await self._load(db, audit_id)
            self._require_writable(audit)
            current = int((audit.progress or {}).get("pct", 0) or 0)
            clamped = max(0, min(100, int(pct)))
            progress = {"step": step, "pct": max(current, clamped), "message": message}
            audit.progress = progress
            await db.commit()
            return progress

    async def _load_section(self, db: AsyncSession, audit_id: str, section_key: str) -> AuditSection:
        result = await db.execute(
            select(AuditSection).where(
                AuditSection.audit_id == audit_id,
                AuditSection.section_key == section_key,
            )
        )
        section = result.scalar_one_or_none()
        if section is None:
            raise AuditStateError(f"Audit {audit_id} has no section {section_key}")
        return section

    async def _check_start_order(self, db: AsyncSession, audit_id: str, section: AuditSection) -> None:
        result = await db.execute(select(AuditSection).where(AuditSection.audit_id == audit_id))
        for other in result.scalars().all():
            if other.id == section.id:
                continue
            if other.status == SectionStatus.RUNNING.value:
                raise AuditStateError(f"Section {other.section_key} is already running")
            if other.position < section.position and other.status != SectionStatus.COMPLETED.value:
                raise AuditStateError(
                    f"Section {section.section_key} cannot start before {other.section_key} completes"
                )

    def _apply_section_status(
        self,
        section: AuditSection,
        status: str,
        result_data: Optional[Dict[str, Any]],
        error_message: Optional[str],
    ) -> None:
        allowed = SECTION_TRANSITIONS.get(section.status, set())
        if status not in allowed:
            raise AuditStateError(f"Section {section.section_key} cannot move from {section.status} to {status}")

        section.status = status
        if status == SectionStatus.RUNNING.value:
            section.started_at = _now()
        else:
            section.completed_at = _now()
        if result_data is not None:
            section.result_data = result_data
        if status == SectionStatus.FAILED.value:
            section.error_message = error_message or "Stage failed"

    async def update_audit_section(
        self,
        audit_id: str,
        section_key: str,
        status: str,
        result_data: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
    ) -> None:
        status = SectionStatus(status).value
        section_key = SectionKey(section_key).value
        async with self.session_factory() as db:
            audit = await self._load(db, audit_id)
            self._require_writable(audit)
            section = await self._load_section(db, audit_id, section_key)
            if status == SectionStatus.RUNNING.value:
                await self._check_start_order(db, audit_id, section)
            self._apply_section_status(section, status, result_data, error_message)
            await db.commit()

    async def complete_stage(
        self,
        audit_id: str,
        section_key: str,
        result_data: Dict[str, Any],
        fields: Dict[str, Any],
    ) -> None:
        """Mark a running section completed and write its results to the audit in one commit."""
        unknown = set(fields) - RESULT_FIELDS
        if unknown:
            raise ValueError(f"Not audit result fields: {sorted(unknown)}")

        section_key = SectionKey(section_key).value
        async with self.session_factory() as db:
            audit = await self._load(db, audit_id)
            self._require_writable(audit)
            section = await self._load_section(db, audit_id, section_key)
            self._apply_section_status(section, SectionStatus.COMPLETED.value, result_data, None)
            for name, value in fields.items():
                setattr(audit, name, value)
            await db.commit()

    async def add_audit_cost(
        self,
        audit_id: str,
        api_calls: int = 0,
        llm_cost: float = 0.0,
        llm_tokens: int = 0,
    ) -> None:
        """Add to the running cost totals in a single UPDATE."""
        if api_calls < 0 or llm_cost < 0 or llm_tokens < 0:
            raise ValueError("Cost deltas must not be negative")
        if not (api_calls or llm_cost or llm_tokens):
            return

        async with self.session_factory() as db:
            result = await db.execute(
                update(Audit)
                .where(Audit.id == audit_id, Audit.status.notin_(TERMINAL_STATUSES))
                .values(
                    youtube_api_calls=Audit.youtube_api_calls + int(api_calls),
                    total_tokens=Audit.total_tokens + int(llm_tokens),
                    total_cost=Audit.total_cost + Decimal(str(llm_cost)),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                audit = await self._load(db, audit_id)
                self._require_writable(audit)
            await db.commit()

    async def fail_stalled_audits(self, max_age_minutes: int = 120) -> int:
        """
        Fail unfinished audits with no activity for ``max_age_minutes``, e.g. after
        a restart. Activity is the last write to the audit row, so an audit that
        sat in the queue before running is judged by its recent progress.
        """
        cutoff = _now() - timedelta(minutes=max(max_age_minutes, 1))
        last_activity = func.coalesce(Audit.updated_at, Audit.created_at)
        async with self.session_factory() as db:
            result = await db.execute(
                select(Audit)
                .options(selectinload(Audit.sections))
                .where(
                    Audit.status.in_([AuditStatus.CREATED.value, AuditStatus.RUNNING.value]),
                    last_activity < cutoff,
                )
            )
            audits = result.scalars().all()
            for audit in audits:
                audit.status = AuditStatus.FAILED.value
                audit.error_message = "Audit execution was interrupted. Start a new audit to retry."
                audit.completed_at = _now()
                audit.progress = {**(audit.progress or {}), "step": "failed", "message": audit.error_message}
                for section in audit.sections:
                    if section.status == SectionStatus.RUNNING.value:
                        section.status = SectionStatus.FAILED.value
                        section.error_message = "Interrupted"
                        section.completed_at = _now()
            if audits:
                await db.commit()
            return len(audits)


class CostReporter:
    """Adds the cost of a stage's external calls to one audit."""

    def __init__(self, store: AuditStore, audit_id: str):
        self.store = store
        self.audit_id = audit_id

    async def report(self, cost: StageCost) -> None:
        await self.store.add_audit_cost(
            self.audit_id,
            api_calls=cost.api_calls,
            llm_cost=cost.llm_cost,
            llm_tokens=cost.llm_tokens,
        )

    async def api_calls(self, count: int) -> None:
        await self.report(StageCost(api_calls=count))

    async def llm_usage(self, tokens: int, cost: float) -> None:
        await self.report(StageCost(llm_tokens=tokens, llm_cost=cost))
