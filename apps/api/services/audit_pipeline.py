"""
Audit pipeline orchestrator.

An audit runs seven stages in a fixed order. Each stage marks its section
running, does its work under a timeout, then completes the section and writes
its results to the audit in one commit. The first failing stage fails the
audit; results of the stages before it are kept.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from analysis.categorization import categorize_videos
from analysis.models import (
    AuditConfig,
    AuditStatus,
    AuditType,
    BenchmarkData,
    CategorizationResult,
    ExecutiveSummary,
    Opportunities,
    PeerMatch,
    Recommendations,
    SECTION_ORDER,
    SectionKey,
    SectionStatus,
    SeriesSummary,
)
from config import settings
from ingestion.youtube import YouTubeClient
from llm.client import LLMClient, create_llm_client
from models.audit import Audit
from services.audit_insights import AuditInsightsService
from services.audit_store import AuditStateError, AuditStore, CostReporter
from services.channel_cache import ChannelDataCache, IngestionResult
from services.peer_benchmark import PeerBenchmarkService
from services.series_detection import SeriesDetectionService

logger = logging.getLogger(__name__)

# Progress shown when a stage starts, and the milestone reached when it completes.
STAGE_PROGRESS: Dict[SectionKey, tuple] = {
    SectionKey.INGESTION: (5, 15, "Fetching channel data..."),
    SectionKey.SERIES_DETECTION: (17, 30, "Detecting content series..."),
    SectionKey.COMPETITOR_MATCHING: (32, 40, "Finding peer channels..."),
    SectionKey.BENCHMARKING: (42, 55, "Computing peer benchmarks..."),
    SectionKey.OPPORTUNITY_ANALYSIS: (57, 70, "Analyzing opportunities..."),
    SectionKey.RECOMMENDATIONS: (72, 85, "Generating recommendations..."),
    SectionKey.EXECUTIVE_SUMMARY: (87, 100, "Writing executive summary..."),
}


@dataclass
class AuditRun:
    """Typed results handed from one stage to the next within a single execution."""
    audit_id: str
    audit_type: str
    youtube_channel_id: str
    config: AuditConfig
    costs: CostReporter
    ingestion: Optional[IngestionResult] = None
    series: Optional[SeriesSummary] = None
    peers: Optional[PeerMatch] = None
    benchmark: Optional[BenchmarkData] = None
    categorization: Optional[CategorizationResult] = None
    opportunities: Optional[Opportunities] = None
    recommendations: Optional[Recommendations] = None
    summary: Optional[ExecutiveSummary] = None


@dataclass
class StageOutcome:
    result_data: Dict[str, Any]
    fields: Dict[str, Any] = field(default_factory=dict)
    message: str = ""


StageHandler = Callable[[AuditRun], Awaitable[StageOutcome]]


def _error_message(error: Exception) -> str:
    text = str(error).strip()
    return f"{type(error).__name__}: {text}" if text else type(error).__name__


class AuditPipeline:
    def __init__(
        self,
        store: AuditStore,
        cache: ChannelDataCache,
        peers: PeerBenchmarkService,
        series: SeriesDetectionService,
        insights: AuditInsightsService,
        stage_timeout: Optional[float] = None,
    ):
        self.store = store
        self.cache = cache
        self.peers = peers
        self.series = series
        self.insights = insights
        self.stage_timeout = stage_timeout or settings.AUDIT_STAGE_TIMEOUT_SECONDS
        self._handlers: Dict[SectionKey, StageHandler] = {
            SectionKey.INGESTION: self._run_ingestion,
            SectionKey.SERIES_DETECTION: self._run_series_detection,
            SectionKey.COMPETITOR_MATCHING: self._run_competitor_matching,
            SectionKey.BENCHMARKING: self._run_benchmarking,
            SectionKey.OPPORTUNITY_ANALYSIS: self._run_opportunity_analysis,
            SectionKey.RECOMMENDATIONS: self._run_recommendations,
            SectionKey.EXECUTIVE_SUMMARY: self._run_executive_summary,
        }

    # ==================== Entry points ====================

    async def start_audit(
        self,
        channel_reference: str,
        audit_type: str,
        config: Optional[AuditConfig] = None,
    ) -> Audit:
        """
        Resolve the channel and create the audit record.

        Resolution happens first, so an unknown or ambiguous reference raises
        ChannelResolutionError and no audit is created.
        """
        audit_type = AuditType(audit_type).value
        youtube_channel_id = await self.cache.resolve(channel_reference)
        return await self.store.create_audit(
            channel_reference=channel_reference,
            youtube_channel_id=youtube_channel_id,
            audit_type=audit_type,
            config=config or AuditConfig(),
        )

    async def run_audit(
        self,
        channel_reference: str,
        audit_type: str,
        config: Optional[AuditConfig] = None,
    ) -> Audit:
        audit = await self.start_audit(channel_reference, audit_type, config)
        return await self.execute(audit.id)

    async def retry_audit(self, audit_id: str) -> Audit:
        """Create a new audit with the inputs of a failed one."""
        previous = await self.store.get_audit(audit_id)
        if previous.status != AuditStatus.FAILED.value:
            raise AuditStateError(f"Only failed audits can be retried; audit {audit_id} is {previous.status}")
        return await self.store.create_audit(
            channel_reference=previous.channel_reference,
            youtube_channel_id=previous.youtube_channel_id,
            audit_type=previous.audit_type,
            config=AuditConfig.model_validate(previous.config or {}),
        )

    async def execute(self, audit_id: str) -> Audit:
        """Drive a created audit through every stage. Returns the final audit."""
        audit = await self.store.get_audit(audit_id)
        if audit.status != AuditStatus.CREATED.value:
            raise AuditStateError(f"Audit {audit_id} is {audit.status}; only created audits can run")

        run = AuditRun(
            audit_id=audit.id,
            audit_type=audit.audit_type,
            youtube_channel_id=audit.youtube_channel_id,
            config=AuditConfig.model_validate(audit.config or {}),
            costs=CostReporter(self.store, audit.id),
        )
        await self.store.set_audit_status(audit_id, AuditStatus.RUNNING.value)
        logger.info(f"Starting audit {audit_id} for {run.youtube_channel_id} ({run.audit_type})")

        for key in SECTION_ORDER:
            start_pct, end_pct, message = STAGE_PROGRESS[key]
            try:
                await self.store.update_audit_section(audit_id, key.value, SectionStatus.RUNNING.value)
                await self.store.update_audit_progress(audit_id, key.value, start_pct, message)
                logger.info(f"Audit {audit_id}: stage {key.value} started")

                try:
                    outcome = await asyncio.wait_for(self._handlers[key](run), timeout=self.stage_timeout)
                except asyncio.TimeoutError as e:
                    raise TimeoutError(f"Stage {key.value} timed out after {self.stage_timeout:g}s") from e

                await self.store.complete_stage(audit_id, key.value, outcome.result_data, outcome.fields)
                await self.store.update_audit_progress(audit_id, key.value, end_pct, outcome.message)
                logger.info(f"Audit {audit_id}: stage {key.value} completed")
            except Exception as e:
                error = _error_message(e)
                logger.error(f"Audit {audit_id}: stage {key.value} failed: {error}")
                await self._fail(audit_id, key, error)
                return await self.store.get_audit(audit_id)

        await self.store.update_audit_progress(audit_id, "complete", 100, "Audit complete")
        await self.store.set_audit_status(audit_id, AuditStatus.COMPLETED.value)
        logger.info(f"Audit {audit_id} completed successfully")
        return await self.store.get_audit(audit_id)

    async def _fail(self, audit_id: str, key: SectionKey, error: str) -> None:
        audit = await self.store.get_audit(audit_id)
        if audit.status != AuditStatus.RUNNING.value:
            logger.warning(f"Audit {audit_id} is already {audit.status}; not marking it failed again")
            return

        section = next((s for s in audit.sections if s.section_key == key.value), None)
        if section is not None and section.status == SectionStatus.RUNNING.value:
            await self.store.update_audit_section(
                audit_id, key.value, SectionStatus.FAILED.value, error_message=error
            )
        pct = int((audit.progress or {}).get("pct", 0) or 0)
        await self.store.update_audit_progress(audit_id, "failed", pct, f"Failed during {key.value}: {error}")
        await self.store.set_audit_status(audit_id, AuditStatus.FAILED.value, error_message=error)

    # ==================== Stages ====================

    async def _run_ingestion(self, run: AuditRun) -> StageOutcome:
        result = await self.cache.ingest(
            run.youtube_channel_id,
            force_refresh=run.config.force_refresh,
            max_videos=run.config.max_videos,
            report_api_calls=run.costs.api_calls,
        )
        run.ingestion = result
        return StageOutcome(
            result_data={
                "videos_fetched": len(result.videos),
                "size_tier": result.size_tier.value,
                "fetched_from_youtube": result.fetched_from_youtube,
                "api_calls": result.api_calls,
            },
            fields={
                "channel_id": result.channel.id,
                "channel_snapshot": result.snapshot.model_dump(mode="json"),
            },
            message=f"Loaded {len(result.videos)} videos",
        )

    async def _run_series_detection(self, run: AuditRun) -> StageOutcome:
        summary = await self.series.detect(
            run.audit_id,
            run.ingestion.channel.id,
            run.ingestion.samples,
            costs=run.costs,
        )
        run.series = summary
        return StageOutcome(
            result_data={
                "total_series": summary.total_series,
                "uncategorized_count": summary.uncategorized_count,
            },
            fields={"series_summary": summary.model_dump(mode="json")},
            message=f"Detected {summary.total_series} series",
        )

    async def _run_competitor_matching(self, run: AuditRun) -> StageOutcome:
        match = await self.peers.find_peers(
            run.ingestion.channel.id,
            run.ingestion.size_tier,
            run.config.peer_scope,
        )
        run.peers = match
        return StageOutcome(
            result_data={
                "peer_count": match.peer_count,
                "peer_names": match.peer_names[:10],
                "tiers_searched": [t.value for t in match.tiers_searched],
                "widened": match.widened,
            },
            message=f"Found {match.peer_count} peer channels",
        )

    async def _run_benchmarking(self, run: AuditRun) -> StageOutcome:
        data = await self.peers.benchmark(run.peers, run.ingestion.samples)
        run.benchmark = data
        return StageOutcome(
            result_data={
                "has_benchmarks": data.has_benchmarks,
                "peer_count": data.peer_count,
                "overall_score": data.overall_score,
                "reason": data.reason,
            },
            fields={"benchmark_data": data.model_dump(mode="json")},
            message="Benchmarking complete" if data.has_benchmarks else "Not enough peers for benchmarking",
        )

    async def _run_opportunity_analysis(self, run: AuditRun) -> StageOutcome:
        run.categorization = categorize_videos(run.ingestion.samples)
        opportunities = await self.insights.analyze_opportunities(
            run.ingestion.snapshot,
            run.categorization,
            run.series,
            run.benchmark,
            brand=run.config.brand_context,
            costs=run.costs,
        )
        run.opportunities = opportunities
        return StageOutcome(
            result_data={
                "content_gaps": len(opportunities.content_gaps),
                "growth_levers": len(opportunities.growth_levers),
                "quadrants": {q.value: n for q, n in run.categorization.quadrant_counts.items()},
                "source": opportunities.source,
            },
            fields={
                "opportunities": opportunities.model_dump(mode="json"),
                "videos": [v.model_dump(mode="json") for v in run.categorization.videos],
            },
            message=f"Found {len(opportunities.content_gaps)} content gaps",
        )

    async def _run_recommendations(self, run: AuditRun) -> StageOutcome:
        recommendations = await self.insights.generate_recommendations(
            run.ingestion.snapshot,
            run.categorization,
            run.series,
            run.benchmark,
            run.opportunities,
            brand=run.config.brand_context,
            costs=run.costs,
        )
        run.recommendations = recommendations
        result_data = {
            "stop": len(recommendations.stop),
            "start": len(recommendations.start),
            "optimize": len(recommendations.optimize),
            "source": recommendations.source,
        }
        if recommendations.incomplete:
            result_data["warning"] = "Recommendations could not be generated; the model response was empty."
        return StageOutcome(
            result_data=result_data,
            fields={"recommendations": recommendations.model_dump(mode="json")},
            message="Recommendations ready",
        )

    async def _run_executive_summary(self, run: AuditRun) -> StageOutcome:
        summary = await self.insights.write_executive_summary(
            run.audit_type,
            run.ingestion.snapshot,
            run.series,
            run.benchmark,
            run.opportunities,
            run.recommendations,
            brand=run.config.brand_context,
            costs=run.costs,
        )
        run.summary = summary
        return StageOutcome(
            result_data={"characters": len(summary.text), "source": summary.source},
            fields={"executive_summary": summary.text},
            message="Summary complete",
        )


def build_audit_pipeline(
    session_factory: Optional[async_sessionmaker] = None,
    client_factory: Optional[Callable[[], YouTubeClient]] = None,
    llm_client: Optional[LLMClient] = None,
    stage_timeout: Optional[float] = None,
) -> AuditPipeline:
    """Wire the pipeline with its default collaborators."""
    llm_client = llm_client or create_llm_client()
    return AuditPipeline(
        store=AuditStore(session_factory),
        cache=ChannelDataCache(session_factory, client_factory),
        peers=PeerBenchmarkService(session_factory),
        series=SeriesDetectionService(llm_client, session_factory),
        insights=AuditInsightsService(llm_client),
        stage_timeout=stage_timeout,
    )


async def process_audit(audit_id: str) -> None:
    """Background/worker entry point: execute one already-created audit."""
    pipeline = build_audit_pipeline()
    audit = await pipeline.execute(audit_id)
    logger.info(f"Audit {audit_id} finished with status {audit.status}")


def process_audit_job(audit_id: str) -> None:
    """Synchronous wrapper for RQ workers."""
    asyncio.run(process_audit(audit_id))
