"""Scan orchestration: feeds -> intake -> dedup -> prefilter -> cache -> AI -> alerts."""

from __future__ import annotations

import argparse
import asyncio
import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from riskintel.ai import AiServiceError, RelevanceClassifier, Relevant, build_llm_client
from riskintel.alerts import AlertWriter
from riskintel.config import Config, ConfigurationError
from riskintel.db import (
    AlertRepository,
    DedupIndexRepository,
    ExternalEvent,
    ExternalEventRepository,
    FilterStatus,
    IndustryCacheRepository,
    OrgAnalysisCacheRepository,
    OrganizationProfile,
    OrganizationRepository,
    Risk,
    RiskRepository,
    SourceRepository,
    SupabaseClient,
    SupabaseError,
    get_supabase_client,
)
from riskintel.feeds import FeedFetcher, SourceRegistry
from riskintel.filters import (
    DuplicateCheckResult,
    DuplicateDetector,
    IntakeFilter,
    IntakeStats,
    PreFilterConfig,
    RelevanceScorer,
    build_keyword_set,
    default_keyword_set,
)
from riskintel.intel_cache import ClassificationCache
from riskintel.retry import RetryTracker
from riskintel.utils import setup_logger, utc_now

logger = setup_logger(__name__)


@dataclass
class ClassificationStats:
    filtered: int = 0
    deduplicated: int = 0
    cache_hits: int = 0
    ai_analyzed: int = 0
    errors: int = 0
    retried: int = 0
    permanently_failed: int = 0


@dataclass
class ScanSummary:
    success: bool
    organization_id: Optional[str] = None
    institution_type: Optional[str] = None
    feeds_processed: int = 0
    feeds_total: int = 0
    items_found: int = 0
    events_stored: int = 0
    alerts_created: int = 0
    intake: IntakeStats = field(default_factory=IntakeStats)
    classification: ClassificationStats = field(default_factory=ClassificationStats)
    timestamp: datetime = field(default_factory=utc_now)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {"intake": self.intake.to_dict()}
        stats.update(asdict(self.classification))
        return {
            "success": self.success,
            "organization_id": self.organization_id,
            "institution_type": self.institution_type,
            "feeds_processed": self.feeds_processed,
            "feeds_total": self.feeds_total,
            "items_found": self.items_found,
            "events_stored": self.events_stored,
            "alerts_created": self.alerts_created,
            "stats": stats,
            "timestamp": self.timestamp.isoformat(),
            "error": self.error,
        }


@dataclass
class ScanContext:
    """Per-organization inputs loaded once per run."""

    organization: OrganizationProfile
    risks: List[Risk]
    intake_keywords: List[str]
    scorer: RelevanceScorer


@dataclass
class ScannerDependencies:
    """External services shared across pipeline stages."""

    organizations: OrganizationRepository
    risks: RiskRepository
    events: ExternalEventRepository
    source_registry: SourceRegistry
    fetcher: FeedFetcher
    intake: IntakeFilter
    detector: DuplicateDetector
    cache: ClassificationCache
    classifier: Optional[RelevanceClassifier]
    alert_writer: AlertWriter
    retry_tracker: RetryTracker

    @classmethod
    def from_config(cls, config: type[Config] = Config, client: Optional[SupabaseClient] = None) -> "ScannerDependencies":
        client = client or get_supabase_client(
            config.SUPABASE_URL,
            config.SUPABASE_SERVICE_KEY,
            timeout=config.SUPABASE_TIMEOUT_SECONDS,
        )
        events = ExternalEventRepository(client)
        sources = SourceRepository(client)
        llm_client = build_llm_client(config)
        return cls(
            organizations=OrganizationRepository(client),
            risks=RiskRepository(client),
            events=events,
            source_registry=SourceRegistry(sources),
            fetcher=FeedFetcher(
                timeout=config.FEED_TIMEOUT_SECONDS,
                user_agent=config.FEED_USER_AGENT,
                items_per_feed=config.ITEMS_PER_FEED,
                source_repository=sources,
            ),
            intake=IntakeFilter(events, max_age_days=config.MAX_AGE_DAYS),
            detector=DuplicateDetector(
                DedupIndexRepository(client),
                threshold=config.DEDUP_SIMILARITY_THRESHOLD,
                window_days=config.DEDUP_WINDOW_DAYS,
                recent_limit=config.DEDUP_RECENT_LIMIT,
            ),
            cache=ClassificationCache(
                IndustryCacheRepository(client),
                OrgAnalysisCacheRepository(client),
                ttl_days=config.CACHE_TTL_DAYS,
            ),
            classifier=RelevanceClassifier(llm_client, max_concurrency=config.AI_MAX_CONCURRENCY)
            if llm_client
            else None,
            alert_writer=AlertWriter(AlertRepository(client), min_confidence=config.MIN_ALERT_CONFIDENCE),
            retry_tracker=RetryTracker(events, max_retries=config.MAX_RETRIES),
        )


class RiskIntelligenceScanner:
    """Runs one scan for one organization under hard resource caps."""

    def __init__(
        self,
        deps: ScannerDependencies,
        *,
        max_feeds: int = 5,
        feed_concurrency: int = 2,
        batch_size: int = 3,
        batch_delay_seconds: float = 1.0,
        max_events_per_run: int = 30,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._deps = deps
        self._max_feeds = max_feeds
        self._feed_concurrency = feed_concurrency
        self._batch_size = max(1, batch_size)
        self._batch_delay = batch_delay_seconds
        self._max_events = max_events_per_run
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: type[Config] = Config, client: Optional[SupabaseClient] = None) -> "RiskIntelligenceScanner":
        config.validate()
        return cls(
            ScannerDependencies.from_config(config, client),
            max_feeds=config.MAX_FEEDS,
            feed_concurrency=config.FEED_CONCURRENCY,
            batch_size=config.BATCH_SIZE,
            batch_delay_seconds=config.BATCH_DELAY_SECONDS,
            max_events_per_run=config.MAX_EVENTS_PER_RUN,
        )

    async def resolve_organization(
        self,
        organization_id: Optional[str] = None,
        access_token: Optional[str] = None,
    ) -> str:
        """Request body first, then auth token, then the first known organization."""
        if organization_id:
            return organization_id
        orgs = self._deps.organizations
        if access_token:
            try:
                resolved = await orgs.get_id_for_token(access_token)
            except SupabaseError as exc:
                logger.warning("⚠️ Auth token resolution failed: %s", exc)
                resolved = None
            if resolved:
                return resolved
        try:
            first = await orgs.get_first_id()
        except SupabaseError as exc:
            raise ConfigurationError(f"Could not load organizations: {exc}") from exc
        if not first:
            raise ConfigurationError("No organizations found")
        return first

    async def scan(
        self,
        organization_id: Optional[str] = None,
        *,
        access_token: Optional[str] = None,
    ) -> ScanSummary:
        """Run one full scan. ConfigurationError propagates; other failures land in the summary."""
        org_id = await self.resolve_organization(organization_id, access_token)
        summary = ScanSummary(success=True, organization_id=org_id)
        try:
            ctx = await self._load_context(org_id)
            summary.institution_type = ctx.organization.institution.name
            logger.info(
                "🚀 Scan start org=%s (%s), %d active risks",
                org_id,
                summary.institution_type,
                len(ctx.risks),
            )

            stored = await self._ingest(ctx, summary)
            queue = await self._build_queue(org_id, stored)
            await self._classify(queue, ctx, summary)
        except SupabaseError as exc:
            logger.error("❌ Scan aborted for org=%s: %s", org_id, exc)
            summary.success = False
            summary.error = str(exc)

        logger.info("🏁 Scan finished org=%s: %s", org_id, json.dumps(summary.to_dict()["stats"]))
        return summary

    async def _load_context(self, org_id: str) -> ScanContext:
        deps = self._deps
        organization = await deps.organizations.get_profile(org_id)
        if organization is None:
            raise ConfigurationError(f"Organization {org_id} not found")

        try:
            risks = await deps.risks.list_active(org_id)
        except SupabaseError as exc:
            logger.error("❌ Could not load active risks for org=%s: %s", org_id, exc)
            risks = []

        try:
            grouped = await deps.organizations.list_keywords(org_id)
        except SupabaseError as exc:
            logger.warning("⚠️ Could not load keywords for org=%s: %s", org_id, exc)
            grouped = {}
        custom_keywords = build_keyword_set(grouped)
        intake_keywords = custom_keywords or default_keyword_set()

        try:
            categories = await deps.organizations.list_categories(org_id)
        except SupabaseError as exc:
            logger.warning("⚠️ Could not load risk categories for org=%s: %s", org_id, exc)
            categories = []
        if not categories:
            categories = list(dict.fromkeys(risk.category for risk in risks if risk.category))

        config = PreFilterConfig.from_settings(
            organization.ai_optimization,
            org_keywords=custom_keywords,
            risk_categories=categories,
            industry=organization.industry_type,
        )
        return ScanContext(organization, risks, intake_keywords, RelevanceScorer(config))

    async def _ingest(self, ctx: ScanContext, summary: ScanSummary) -> List[ExternalEvent]:
        deps = self._deps
        org_id = ctx.organization.id
        sources = await deps.source_registry.load(org_id)
        selected = sources[: self._max_feeds]
        summary.feeds_total = len(sources)

        results = await deps.fetcher.fetch_all(
            selected,
            concurrency=self._feed_concurrency,
            organization_id=org_id,
        )
        items = [item for result in results if result.ok for item in result.items]
        summary.feeds_processed = sum(1 for result in results if result.ok)
        summary.items_found = len(items)

        intake = await deps.intake.ingest(items, org_id, ctx.intake_keywords)
        summary.intake = intake.stats
        summary.events_stored = len(intake.events)
        return intake.events

    async def _build_queue(self, org_id: str, stored: Sequence[ExternalEvent]) -> List[ExternalEvent]:
        queue: Dict[str, ExternalEvent] = {event.id: event for event in stored}
        try:
            pending = await self._deps.events.list_pending(
                org_id,
                max_retries=self._deps.retry_tracker.max_retries,
                limit=self._max_events,
            )
        except SupabaseError as exc:
            logger.warning("⚠️ Could not load pending events for org=%s: %s", org_id, exc)
            pending = []
        for event in pending:
            queue.setdefault(event.id, event)
        return list(queue.values())[: self._max_events]

    async def _classify(self, queue: Sequence[ExternalEvent], ctx: ScanContext, summary: ScanSummary) -> None:
        stats = summary.classification
        for start in range(0, len(queue), self._batch_size):
            if start:
                await self._sleep(self._batch_delay)
            batch = queue[start : start + self._batch_size]

            # Sequential so a near-duplicate later in the batch sees the earlier fingerprint.
            verdicts = [await self._check_duplicate(event, ctx) for event in batch]
            checked = [
                (event, verdict) for event, verdict in zip(batch, verdicts)
                if isinstance(verdict, DuplicateCheckResult)
            ]
            results = iter(
                await asyncio.gather(
                    *(self.process_event(event, ctx, stats, verdict) for event, verdict in checked),
                    return_exceptions=True,
                )
            )
            for event, verdict in zip(batch, verdicts):
                outcome = next(results) if isinstance(verdict, DuplicateCheckResult) else verdict
                if isinstance(outcome, BaseException):
                    stats.errors += 1
                    if await self._deps.retry_tracker.record_failure(event, outcome):
                        stats.permanently_failed += 1
                    else:
                        stats.retried += 1
                else:
                    summary.alerts_created += outcome

    async def _check_duplicate(
        self, event: ExternalEvent, ctx: ScanContext
    ) -> Union[DuplicateCheckResult, Exception]:
        try:
            return await self._deps.detector.check(
                event.title,
                event.url,
                event_id=event.id,
                organization_id=ctx.organization.id,
            )
        except Exception as exc:
            logger.warning("⚠️ Duplicate check crashed for event %s: %s", event.id, exc)
            return exc

    async def process_event(
        self,
        event: ExternalEvent,
        ctx: ScanContext,
        stats: ClassificationStats,
        duplicate: DuplicateCheckResult,
    ) -> int:
        """Classify one event and return the number of alerts written."""
        deps = self._deps
        events = deps.events

        if duplicate.is_duplicate:
            stats.deduplicated += 1
            await events.update_event(
                event.id,
                filter_status=FilterStatus.DUPLICATE,
                filter_reason=(
                    f"Duplicate of {duplicate.matched_event_id or duplicate.matched_hash} "
                    f"({duplicate.method}, similarity {duplicate.similarity:.2f})"
                ),
                relevance_checked=True,
            )
            return 0

        score = ctx.scorer.score(
            event.title,
            event.summary,
            source_name=event.source,
            published_at=event.published_date,
        )
        if not score.passed:
            stats.filtered += 1
            await events.update_event(
                event.id,
                filter_status=FilterStatus.LOW_RELEVANCE,
                relevance_score=score.score,
                filter_reason="; ".join(score.reasons) or f"Score {score.score:.0f} below threshold",
                relevance_checked=True,
            )
            return 0

        if not ctx.risks:
            await events.update_event(
                event.id,
                relevance_score=score.score,
                filter_reason="No active risks to match",
                relevance_checked=True,
            )
            return 0

        cached = await deps.cache.lookup(event, ctx.organization, ctx.risks)
        if cached is not None:
            stats.cache_hits += 1
            alerts = await deps.alert_writer.write(event, cached.assessments)
            await events.update_event(
                event.id,
                filter_status=FilterStatus.CACHED,
                relevance_score=score.score,
                relevance_checked=True,
            )
            return alerts

        if deps.classifier is None:
            logger.info("⏸️ AI disabled, event %s left pending", event.id)
            return 0

        result = await deps.classifier.classify(event, ctx.risks, ctx.organization.institution)
        stats.ai_analyzed += 1
        await deps.cache.store(event, ctx.organization, result)
        assessments = result.risks if isinstance(result, Relevant) else []
        alerts = await deps.alert_writer.write(event, assessments)
        await events.update_event(
            event.id,
            filter_status=FilterStatus.ANALYZED,
            relevance_score=score.score,
            relevance_checked=True,
        )
        return alerts


async def run_scan(organization_id: Optional[str] = None) -> ScanSummary:
    scanner = RiskIntelligenceScanner.from_config(Config)
    return await scanner.scan(organization_id)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Run one risk intelligence feed scan")
    parser.add_argument("--org", dest="organization_id", help="organization id (defaults to the first organization)")
    args = parser.parse_args(argv)

    try:
        summary = asyncio.run(run_scan(args.organization_id))
    except (ConfigurationError, AiServiceError) as exc:
        logger.error("❌ %s", exc)
        print(json.dumps({"success": False, "error": str(exc)}, indent=2))
        return 1
    print(json.dumps(summary.to_dict(), indent=2, ensure_ascii=False))
    return 0 if summary.success else 1


if __name__ == "__main__":
    raise SystemExit(main())
