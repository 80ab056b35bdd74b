"""Two-layer classification cache: shared industry layer, then private organization layer."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Dict, List, Optional, Sequence

from riskintel.ai.classifier import ClassificationResult, Relevant, RiskAssessment
from riskintel.db import (
    ExternalEvent,
    IndustryCacheEntry,
    IndustryCacheRepository,
    OrgAnalysisCacheRepository,
    OrgCacheEntry,
    OrganizationProfile,
    Risk,
    SupabaseError,
)
from riskintel.utils import compute_sha256, setup_logger, utc_now

logger = setup_logger(__name__)

MIN_CACHED_RELEVANCE = 50
IMPACT_TO_LIKELIHOOD = {"critical": 2, "high": 1, "medium": 0, "low": 0}

SYNONYM_GROUPS: Dict[str, List[str]] = {
    "cyber": ["it", "technology", "digital", "information security", "infosec"],
    "operational": ["operations", "process", "business continuity"],
    "financial": ["market", "credit", "liquidity", "investment"],
    "regulatory": ["compliance", "legal", "governance"],
    "strategic": ["business", "competitive"],
    "reputational": ["brand", "public relations"],
}

_NON_WORD_RE = re.compile(r"[^\w\s]")
_WS_RE = re.compile(r"\s+")


def event_cache_key(title: str, url: str) -> str:
    """Content hash of the normalized title and source URL."""
    normalized = _WS_RE.sub(" ", _NON_WORD_RE.sub("", (title or "").lower())).strip()
    return compute_sha256(f"{normalized}|{url or ''}")


@lru_cache(maxsize=None)
def _term_pattern(term: str) -> re.Pattern:
    # Short terms like "it" must be whole words so "credit" does not read as IT.
    suffix = r"\b" if len(term) <= 3 else ""
    return re.compile(rf"\b{re.escape(term)}{suffix}")


def _in_group(category: str, terms: Sequence[str]) -> bool:
    return any(_term_pattern(term).search(category) for term in terms)


def categories_similar(first: str, second: str) -> bool:
    a, b = first.strip().lower(), second.strip().lower()
    if not a or not b:
        return False
    if a in b or b in a:
        return True
    for key, synonyms in SYNONYM_GROUPS.items():
        terms = [key, *synonyms]
        if _in_group(a, terms) and _in_group(b, terms):
            return True
    return False


def map_cached_analysis(entry: IndustryCacheEntry, risks: Sequence[Risk]) -> List[RiskAssessment]:
    """Project a generic domain->relevance mapping onto concrete organizational risks."""
    likelihood = IMPACT_TO_LIKELIHOOD.get(entry.suggested_impact_level, 0)
    reasoning = f"Matched via cached industry analysis: {entry.summary}".strip()
    matched: List[RiskAssessment] = []
    for risk in risks:
        best = 0.0
        for domain, relevance in entry.risk_category_mappings.items():
            if relevance >= MIN_CACHED_RELEVANCE and categories_similar(risk.category, domain):
                best = max(best, relevance)
        if best:
            matched.append(
                RiskAssessment(
                    risk_code=risk.risk_code,
                    reasoning=reasoning,
                    likelihood_change=likelihood,
                    impact_change=0,
                    confidence=round(best / 100.0, 4),
                )
            )
    return matched


@dataclass
class CacheLookup:
    layer: str
    assessments: List[RiskAssessment] = field(default_factory=list)


class ClassificationCache:
    """Consults the industry layer then the organization layer; writes back after AI analysis."""

    def __init__(
        self,
        industry_repository: IndustryCacheRepository,
        org_repository: OrgAnalysisCacheRepository,
        *,
        ttl_days: int = 7,
    ) -> None:
        self._industry = industry_repository
        self._org = org_repository
        self._ttl = timedelta(days=ttl_days)

    async def lookup(
        self,
        event: ExternalEvent,
        organization: OrganizationProfile,
        risks: Sequence[Risk],
        *,
        now: Optional[datetime] = None,
    ) -> Optional[CacheLookup]:
        now = now or utc_now()
        key = event_cache_key(event.title, event.url)

        try:
            entry = await self._industry.find(key, organization.institution_type_id, now)
        except SupabaseError as exc:
            logger.warning("⚠️ Industry cache lookup failed for event %s: %s", event.id, exc)
            entry = None
        if entry is not None:
            try:
                await self._industry.record_hit(entry, organization.id)
            except SupabaseError as exc:
                logger.warning("⚠️ Could not meter industry cache hit: %s", exc)
            logger.info("💾 Industry cache hit for event %s", event.id)
            return CacheLookup("industry", map_cached_analysis(entry, risks))

        try:
            cached = await self._org.list_for_event(event.id, organization.id, now)
        except SupabaseError as exc:
            logger.warning("⚠️ Org cache lookup failed for event %s: %s", event.id, exc)
            cached = []
        if cached:
            active_codes = {risk.risk_code for risk in risks}
            logger.info("💾 Org cache hit for event %s (%d risks)", event.id, len(cached))
            return CacheLookup(
                "org",
                [
                    RiskAssessment(
                        risk_code=row.risk_code,
                        reasoning=row.reasoning,
                        likelihood_change=row.likelihood_change,
                        impact_change=row.impact_change,
                        confidence=row.confidence,
                        suggested_controls=list(row.suggested_controls),
                        impact_assessment=row.impact_assessment,
                    )
                    for row in cached
                    if row.risk_code in active_codes
                ],
            )
        return None

    async def store(
        self,
        event: ExternalEvent,
        organization: OrganizationProfile,
        result: ClassificationResult,
        *,
        now: Optional[datetime] = None,
    ) -> None:
        """Write a fresh analysis to both layers. Failures are logged, never raised."""
        now = now or utc_now()
        expires_at = now + self._ttl

        if isinstance(result, Relevant) or result.parsed:
            entry = IndustryCacheEntry(
                event_hash=event_cache_key(event.title, event.url),
                institution_type_id=organization.institution_type_id,
                event_title=event.title,
                event_source=event.source,
                summary=result.summary,
                key_themes=list(result.key_themes),
                risk_category_mappings=dict(result.domains),
                suggested_impact_level=result.impact_level,
                confidence_score=result.confidence,
                model_version=result.model,
                original_event_id=event.id,
                organization_ids=[organization.id],
                expires_at=expires_at,
            )
            try:
                await self._industry.store(entry)
            except SupabaseError as exc:
                logger.warning("⚠️ Industry cache write failed for event %s: %s", event.id, exc)

        if not isinstance(result, Relevant):
            return
        for assessment in result.risks:
            try:
                await self._org.store(
                    OrgCacheEntry(
                        event_id=event.id,
                        organization_id=organization.id,
                        risk_code=assessment.risk_code,
                        reasoning=assessment.reasoning,
                        likelihood_change=assessment.likelihood_change,
                        impact_change=assessment.impact_change,
                        confidence=assessment.confidence,
                        suggested_controls=list(assessment.suggested_controls),
                        impact_assessment=assessment.impact_assessment,
                        model_used=result.model,
                        expires_at=expires_at,
                    )
                )
            except SupabaseError as exc:
                logger.warning("⚠️ Org cache write failed for %s/%s: %s", event.id, assessment.risk_code, exc)
