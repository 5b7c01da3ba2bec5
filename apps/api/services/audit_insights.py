"""
Opportunity analysis, recommendations and executive summary.

With an OpenAI key these stages ask the model for structured JSON (or markdown
for the summary). Without one they fall back to rules over the same data so an
audit can still complete locally.
"""

import asyncio
import logging
from typing import Any, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from analysis.models import (
    AuditType,
    BenchmarkData,
    BenchmarkStatus,
    BrandContext,
    CategorizationResult,
    ChannelSnapshot,
    ContentGap,
    ExecutiveSummary,
    GrowthLever,
    MarketPotential,
    Opportunities,
    OverallRating,
    PerformanceTrend,
    Quadrant,
    RecommendationItem,
    Recommendations,
    SeriesSummary,
)
from llm.client import LLMClient, LLMResponse, parse_json_object
from services.audit_store import CostReporter

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

OPPORTUNITIES_SYSTEM_PROMPT = """
You are a YouTube content strategist running the opportunity analysis of a channel audit.
Given channel data, series performance and peer benchmarks, identify actionable growth opportunities.

Rules:
- Be specific and reference actual numbers from the data
- Focus on gaps between the channel and its peers
- Identify at least 2 content gaps and 2 growth levers
- If peer benchmarks are unavailable, compare against best practices for the size tier
- Return only a JSON object
"""

RECOMMENDATIONS_SYSTEM_PROMPT = """
You are a YouTube growth strategist turning a channel audit into recommendations,
grouped as Stop, Start and Optimize.

Rules:
- Every recommendation cites specific data from the audit
- Be direct and actionable
- 3-5 recommendations per group, at least 1 in each
- Calibrate advice to the channel's size tier
- Return only a JSON object
"""

SUMMARY_SYSTEM_PROMPTS = {
    AuditType.PROSPECT.value: """
You are a YouTube growth consultant writing the executive summary of an audit for a prospective client.
Cover the channel's strengths and weaknesses and make the case for what an agency could unlock.
Professional, approachable tone. Markdown. Specific data points. 400-600 words.
""",
    AuditType.CLIENT_BASELINE.value: """
You are a YouTube growth consultant writing the executive summary of a baseline audit for a new client.
Establish current performance benchmarks, the biggest opportunities and realistic growth expectations.
Professional, approachable tone. Markdown. Specific data points. 400-600 words.
""",
}


def brand_block(brand: Optional[BrandContext]) -> str:
    if brand is None:
        return ""
    lines = ["## Brand Context"]
    if brand.brand_name:
        lines.append(f"- Brand: {brand.brand_name}")
    if brand.voice:
        lines.append(f"- Voice: {brand.voice}")
    if brand.target_audience:
        lines.append(f"- Audience: {brand.target_audience}")
    if brand.content_pillars:
        lines.append(f"- Content pillars: {', '.join(brand.content_pillars)}")
    if brand.goals:
        lines.append(f"- Goals: {', '.join(brand.goals)}")
    if brand.notes:
        lines.append(f"- Notes: {brand.notes}")
    return "\n".join(lines) if len(lines) > 1 else ""


def _with_brand(system_prompt: str, brand: Optional[BrandContext]) -> str:
    block = brand_block(brand)
    return f"{system_prompt.strip()}\n\n{block}" if block else system_prompt.strip()


def _parse_items(model: Type[T], raw: Any) -> List[T]:
    items: List[T] = []
    for entry in raw if isinstance(raw, list) else []:
        if not isinstance(entry, dict):
            continue
        try:
            items.append(model.model_validate(entry))
        except ValidationError as e:
            logger.warning(f"Dropping malformed {model.__name__} from LLM output: {e.errors()[:1]}")
    return items


def _channel_section(snapshot: ChannelSnapshot) -> str:
    return (
        "## Channel Overview\n"
        f"- Name: {snapshot.name}\n"
        f"- Subscribers: {snapshot.subscriber_count:,}\n"
        f"- Size Tier: {snapshot.size_tier.value}\n"
        f"- Videos Analyzed: {snapshot.total_videos_analyzed}\n"
        f"- Recent Videos (90d): {snapshot.recent_videos_90d}\n"
        f"- Avg Views (recent): {snapshot.avg_views_recent:,}\n"
        f"- Avg Engagement (recent): {snapshot.avg_engagement_recent * 100:.2f}%\n"
        f"- Format mix: {snapshot.format_mix.long_count} long-form / {snapshot.format_mix.short_count} shorts"
    )


def _series_section(series: SeriesSummary, limit: int = 10) -> str:
    if not series.series:
        return "## Series\nNo series detected"
    lines = [
        f'- "{s.name}": {s.video_count} videos, {s.avg_views:,} avg views, '
        f"engagement {s.avg_engagement_rate * 100:.2f}%, trend: {s.performance_trend.value}, "
        f"cadence: {f'{s.cadence_days} days' if s.cadence_days else 'irregular'}"
        for s in series.series[:limit]
    ]
    return "## Series\n" + "\n".join(lines) + f"\nUncategorized videos: {series.uncategorized_count}"


def _benchmark_section(benchmark: BenchmarkData) -> str:
    if not benchmark.has_benchmarks or benchmark.benchmarks is None:
        return (
            "## Peer Benchmarks\n"
            f"No peer benchmarks available ({benchmark.reason}). "
            "Compare against general best practices for this size tier instead."
        )
    stats = benchmark.benchmarks
    lines = [
        f"Peers: {benchmark.peer_count} ({', '.join(benchmark.peer_names[:5])})",
        f"Peer median views: {stats.views_all.median:,.0f}",
        f"Peer median engagement: {stats.engagement_rate.median * 100:.2f}%",
        f"Peer median upload frequency: {stats.upload_frequency.median:.1f}/week",
        f"Peer median shorts ratio: {stats.shorts_ratio.median * 100:.0f}%",
    ]
    lines += [
        f"- {c.label}: channel {c.channel_value:,.4g} vs peer {c.peer_median:,.4g} ({c.ratio}x, {c.status.value})"
        for c in benchmark.comparisons
    ]
    if benchmark.overall_score is not None:
        lines.append(f"Overall score: {benchmark.overall_score}x peer median")
    return "## Peer Benchmarks\n" + "\n".join(lines)


class AuditInsightsService:
    """Prose-producing stages of the audit pipeline."""

    def __init__(self, llm_client: Optional[LLMClient] = None):
        self.llm_client = llm_client

    @property
    def uses_llm(self) -> bool:
        return self.llm_client is not None and self.llm_client.is_configured

    async def _call(
        self,
        system_prompt: str,
        prompt: str,
        max_tokens: int,
        json_mode: bool,
        costs: Optional[CostReporter],
    ) -> LLMResponse:
        response = await asyncio.to_thread(self.llm_client.complete, system_prompt, prompt, max_tokens, json_mode)
        if costs is not None:
            await costs.llm_usage(response.total_tokens, response.cost)
        return response

    # ==================== Opportunities ====================

    async def analyze_opportunities(
        self,
        snapshot: ChannelSnapshot,
        categorization: CategorizationResult,
        series: SeriesSummary,
        benchmark: BenchmarkData,
        brand: Optional[BrandContext] = None,
        costs: Optional[CostReporter] = None,
    ) -> Opportunities:
        base = Opportunities(
            format_mix=snapshot.format_mix,
            quadrant_counts=categorization.quadrant_counts,
            investigate_prompts=[v.diagnostic for v in categorization.investigate if v.diagnostic][:5],
        )
        if not self.uses_llm:
            return self._heuristic_opportunities(base, snapshot, categorization, series, benchmark)

        top = sorted(categorization.videos, key=lambda v: v.view_count, reverse=True)[:10]
        prompt = "\n\n".join([
            "Analyze opportunities for this YouTube channel.",
            _channel_section(snapshot),
            _series_section(series),
            _benchmark_section(benchmark),
            "## Top Videos\n" + "\n".join(f'- "{v.title}": {v.view_count:,} views ({v.video_type.value})' for v in top),
            "## Performance Quadrants\n" + "\n".join(
                f"- {q.value}: {n}" for q, n in categorization.quadrant_counts.items()
            ),
            "Respond as:\n"
            '{"content_gaps": [{"gap": "", "evidence": "", "potential_impact": "high|medium|low", '
            '"suggested_action": ""}], '
            '"growth_levers": [{"lever": "", "current_state": "", "target_state": "", "evidence": "", '
            '"priority": "high|medium|low"}], '
            '"market_potential": {"tier_position": "", "growth_ceiling": "", "key_differentiators": [], '
            '"biggest_risk": ""}}',
        ])
        response = await self._call(_with_brand(OPPORTUNITIES_SYSTEM_PROMPT, brand), prompt, 2500, True, costs)
        data = parse_json_object(response.text) or {}

        market = None
        if isinstance(data.get("market_potential"), dict):
            try:
                market = MarketPotential.model_validate(data["market_potential"])
            except ValidationError as e:
                logger.warning(f"Dropping malformed market potential from LLM output: {e.errors()[:1]}")

        return base.model_copy(update={
            "content_gaps": _parse_items(ContentGap, data.get("content_gaps")),
            "growth_levers": _parse_items(GrowthLever, data.get("growth_levers")),
            "market_potential": market,
            "source": "llm",
        })

    def _heuristic_opportunities(
        self,
        base: Opportunities,
        snapshot: ChannelSnapshot,
        categorization: CategorizationResult,
        series: SeriesSummary,
        benchmark: BenchmarkData,
    ) -> Opportunities:
        gaps: List[ContentGap] = []
        levers: List[GrowthLever] = []
        mix = snapshot.format_mix

        peer_shorts = benchmark.benchmarks.shorts_ratio.median if benchmark.benchmarks else None
        if not mix.has_short_form and mix.has_long_form:
            evidence = f"{mix.long_count} long-form videos and no Shorts"
            if peer_shorts:
                evidence += f"; the median peer publishes {peer_shorts * 100:.0f}% Shorts"
            gaps.append(ContentGap(
                gap="No Shorts presence",
                evidence=evidence,
                potential_impact="high" if (peer_shorts or 0) >= 0.2 else "medium",
                suggested_action="Cut 2-3 Shorts per week from the best-performing long-form videos.",
            ))
        elif mix.has_short_form and not mix.has_long_form:
            gaps.append(ContentGap(
                gap="No long-form content",
                evidence=f"{mix.short_count} Shorts and no long-form videos",
                potential_impact="medium",
                suggested_action="Test a long-form format built on the topics of the top Shorts.",
            ))

        if not series.series:
            gaps.append(ContentGap(
                gap="No recurring series",
                evidence=f"None of the {snapshot.total_videos_analyzed} analyzed videos form a recurring series",
                potential_impact="medium",
                suggested_action="Package the strongest topic into a named, numbered series.",
            ))
        for s in series.series:
            if s.performance_trend == PerformanceTrend.DECLINING:
                gaps.append(ContentGap(
                    gap=f'Declining series "{s.name}"',
                    evidence=f"{s.video_count} videos, recent episodes average below earlier ones",
                    potential_impact="medium",
                    suggested_action="Refresh the format or retire the series.",
                ))

        for comparison in benchmark.comparisons:
            if comparison.status == BenchmarkStatus.BELOW:
                levers.append(GrowthLever(
                    lever=comparison.label,
                    current_state=f"{comparison.channel_value:,.4g}",
                    target_state=f"{comparison.peer_median:,.4g} (peer median)",
                    evidence=f"{comparison.ratio}x the peer median",
                    priority="high" if comparison.ratio < 0.5 else "medium",
                ))

        investigate = categorization.investigate
        if investigate:
            levers.append(GrowthLever(
                lever="Convert reach into engagement",
                current_state=f"{len(investigate)} high-reach videos with weak engagement",
                target_state="Engagement at or above the channel median on breakout topics",
                evidence=investigate[0].diagnostic or "",
                priority="medium",
            ))
        breakouts = categorization.in_quadrant(Quadrant.BREAKOUT)
        if breakouts:
            best = max(breakouts, key=lambda v: v.view_count)
            levers.append(GrowthLever(
                lever="Double down on breakout topics",
                current_state=f"{len(breakouts)} breakout videos",
                target_state="A follow-up for every breakout within two weeks",
                evidence=f'"{best.title}" reached {best.views_ratio}x typical views',
                priority="high",
            ))

        position = {
            OverallRating.OUTPERFORMING: "Ahead of its peer tier",
            OverallRating.ON_PAR: "In line with its peer tier",
            OverallRating.BELOW_PEER_AVERAGE: "Behind its peer tier",
        }.get(benchmark.overall_rating, "Not benchmarked against peers")
        market = MarketPotential(
            tier_position=f"{position} ({snapshot.size_tier.value})",
            growth_ceiling=(
                f"Peer median of {benchmark.benchmarks.views_all.median:,.0f} views per video"
                if benchmark.benchmarks else "Unknown without peer data"
            ),
            key_differentiators=[s.name for s in series.series[:3]],
            biggest_risk=gaps[0].gap if gaps else "",
        )
        return base.model_copy(update={
            "content_gaps": gaps,
            "growth_levers": levers,
            "market_potential": market,
            "source": "heuristic",
        })

    # ==================== Recommendations ====================

    async def generate_recommendations(
        self,
        snapshot: ChannelSnapshot,
        categorization: CategorizationResult,
        series: SeriesSummary,
        benchmark: BenchmarkData,
        opportunities: Opportunities,
        brand: Optional[BrandContext] = None,
        costs: Optional[CostReporter] = None,
    ) -> Recommendations:
        if not self.uses_llm:
            return self._heuristic_recommendations(categorization, series, benchmark, opportunities)

        underperformers = categorization.in_quadrant(Quadrant.UNDERPERFORMER)[:10]
        prompt = "\n\n".join([
            "Generate strategic recommendations for this YouTube channel from the full audit.",
            _channel_section(snapshot),
            _series_section(series),
            _benchmark_section(benchmark),
            "## Content Gaps\n" + (
                "\n".join(f"- {g.gap} ({g.potential_impact} impact)" for g in opportunities.content_gaps)
                or "None identified"
            ),
            "## Growth Levers\n" + (
                "\n".join(
                    f"- {lever.lever}: {lever.current_state} -> {lever.target_state} ({lever.priority} priority)"
                    for lever in opportunities.growth_levers
                ) or "None identified"
            ),
            "## Underperforming Videos\n" + (
                "\n".join(f'- "{v.title}": {v.view_count:,} views' for v in underperformers) or "None identified"
            ),
            "Respond as:\n"
            '{"stop": [{"action": "", "rationale": "", "evidence": "", "impact": "high|medium|low"}], '
            '"start": [{"action": "", "rationale": "", "evidence": "", "impact": "high|medium|low", '
            '"effort": "high|medium|low"}], '
            '"optimize": [{"action": "", "rationale": "", "evidence": "", "impact": "high|medium|low"}]}',
        ])
        system_prompt = _with_brand(RECOMMENDATIONS_SYSTEM_PROMPT, brand)

        result = await self._recommendations_attempt(system_prompt, prompt, costs)
        if result.is_empty:
            logger.warning("Recommendations came back empty, retrying once")
            result = await self._recommendations_attempt(system_prompt, prompt, costs)
        if result.is_empty:
            return result.model_copy(update={"incomplete": True})
        return result

    async def _recommendations_attempt(
        self,
        system_prompt: str,
        prompt: str,
        costs: Optional[CostReporter],
    ) -> Recommendations:
        response = await self._call(system_prompt, prompt, 4000, True, costs)
        data = parse_json_object(response.text) or {}
        return Recommendations(
            stop=_parse_items(RecommendationItem, data.get("stop")),
            start=_parse_items(RecommendationItem, data.get("start")),
            optimize=_parse_items(RecommendationItem, data.get("optimize")),
            source="llm",
        )

    def _heuristic_recommendations(
        self,
        categorization: CategorizationResult,
        series: SeriesSummary,
        benchmark: BenchmarkData,
        opportunities: Opportunities,
    ) -> Recommendations:
        stop: List[RecommendationItem] = []
        start: List[RecommendationItem] = []
        optimize: List[RecommendationItem] = []

        for s in series.series:
            if s.performance_trend == PerformanceTrend.DECLINING:
                stop.append(RecommendationItem(
                    action=f'Stop producing "{s.name}" in its current form',
                    rationale="Later episodes draw clearly fewer views than earlier ones",
                    evidence=f"{s.video_count} videos, {s.avg_views:,} average views",
                    impact="medium",
                ))
        underperformers = categorization.in_quadrant(Quadrant.UNDERPERFORMER)
        if categorization.videos and len(underperformers) * 4 >= len(categorization.videos):
            stop.append(RecommendationItem(
                action="Stop publishing topics that land in the underperformer quadrant",
                rationale="A large share of recent uploads trail the channel's own reach and engagement",
                evidence=f"{len(underperformers)} of {len(categorization.videos)} videos",
                impact="medium",
            ))

        for gap in opportunities.content_gaps:
            if gap.suggested_action:
                start.append(RecommendationItem(
                    action=gap.suggested_action,
                    rationale=gap.gap,
                    evidence=gap.evidence,
                    impact=gap.potential_impact,
                    effort="medium",
                ))

        for lever in opportunities.growth_levers:
            optimize.append(RecommendationItem(
                action=lever.lever,
                rationale=f"From {lever.current_state} towards {lever.target_state}",
                evidence=lever.evidence,
                impact=lever.priority,
            ))
        for comparison in benchmark.comparisons:
            if comparison.status == BenchmarkStatus.ABOVE:
                optimize.append(RecommendationItem(
                    action=f"Protect the lead on {comparison.label.lower()}",
                    rationale="This metric is a strength against peers",
                    evidence=f"{comparison.ratio}x the peer median",
                    impact="low",
                ))

        return Recommendations(stop=stop[:5], start=start[:5], optimize=optimize[:5], source="heuristic")

    # ==================== Executive summary ====================

    async def write_executive_summary(
        self,
        audit_type: str,
        snapshot: ChannelSnapshot,
        series: SeriesSummary,
        benchmark: BenchmarkData,
        opportunities: Opportunities,
        recommendations: Recommendations,
        brand: Optional[BrandContext] = None,
        costs: Optional[CostReporter] = None,
    ) -> ExecutiveSummary:
        audit_type = AuditType(audit_type).value
        if not self.uses_llm:
            return ExecutiveSummary(
                text=self._heuristic_summary(audit_type, snapshot, series, benchmark, opportunities, recommendations),
                source="heuristic",
            )

        framing = (
            "Frame this as a pitch: highlight what an agency can unlock for this channel."
            if audit_type == AuditType.PROSPECT.value
            else "Frame this as a baseline: establish measurable starting points and realistic growth targets."
        )
        prompt = "\n\n".join([
            f"Write an executive summary for this {audit_type.replace('_', ' ')} YouTube channel audit.",
            _channel_section(snapshot),
            _series_section(series, limit=5),
            _benchmark_section(benchmark),
            "## Top Opportunities\n" + (
                "\n".join(f"- {g.gap} ({g.potential_impact} impact)" for g in opportunities.content_gaps[:3])
                or "None identified"
            ),
            "## Recommendations\n"
            f"Stop: {'; '.join(r.action for r in recommendations.stop) or 'None'}\n"
            f"Start: {'; '.join(r.action for r in recommendations.start) or 'None'}\n"
            f"Optimize: {'; '.join(r.action for r in recommendations.optimize) or 'None'}",
            framing,
        ])
        system_prompt = _with_brand(SUMMARY_SYSTEM_PROMPTS[audit_type], brand)
        response = await self._call(system_prompt, prompt, 2000, False, costs)
        return ExecutiveSummary(text=response.text, source="llm")

    def _heuristic_summary(
        self,
        audit_type: str,
        snapshot: ChannelSnapshot,
        series: SeriesSummary,
        benchmark: BenchmarkData,
        opportunities: Opportunities,
        recommendations: Recommendations,
    ) -> str:
        title = "Channel Audit" if audit_type == AuditType.PROSPECT.value else "Baseline Audit"
        lines = [
            f"# {title}: {snapshot.name}",
            "",
            f"**{snapshot.subscriber_count:,} subscribers** ({snapshot.size_tier.value} tier). "
            f"{snapshot.recent_videos_90d} videos in the last 90 days averaging "
            f"{snapshot.avg_views_recent:,} views and {snapshot.avg_engagement_recent * 100:.2f}% engagement.",
            "",
            "## Benchmarks",
        ]
        if benchmark.has_benchmarks:
            lines.append(
                f"Compared with {benchmark.peer_count} peer channels the overall score is "
                f"{benchmark.overall_score}x the peer median."
            )
            lines += [f"- {c.label}: {c.status.value} peers ({c.ratio}x)" for c in benchmark.comparisons]
        else:
            lines.append(benchmark.reason or "No peer benchmarks available.")

        lines += ["", f"## Series ({series.total_series} detected)"]
        lines += [
            f'- "{s.name}": {s.video_count} videos, {s.avg_views:,} avg views, {s.performance_trend.value}'
            for s in series.series[:5]
        ] or ["No recurring series detected."]

        lines += ["", "## Top Opportunities"]
        lines += [f"- {g.gap}" for g in opportunities.content_gaps[:3]] or ["None identified."]

        lines += ["", "## Priorities"]
        for label, items in (("Stop", recommendations.stop), ("Start", recommendations.start),
                             ("Optimize", recommendations.optimize)):
            if items:
                lines.append(f"- **{label}:** {items[0].action}")
        return "\n".join(lines)
