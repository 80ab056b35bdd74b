"""Relevance pre-scoring that decides whether an event is worth AI analysis."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

from riskintel.utils import normalize_text, utc_now

DEFAULT_THRESHOLD = 30

CRITICAL_KEYWORDS: List[str] = [
    "cyberattack", "ransomware", "data breach", "hacked",
    "bank failure", "market crash", "default", "bankruptcy",
    "sec action", "cbn directive", "regulatory fine", "sanction",
    "system outage", "major disruption", "operational failure",
]

CATEGORY_KEYWORDS: Dict[str, List[str]] = {
    "cyber": ["cyber", "hack", "breach", "malware", "ransomware", "phishing", "security"],
    "operational": ["operation", "system", "outage", "failure", "disruption", "process"],
    "financial": ["financial", "market", "trading", "credit", "liquidity", "investment"],
    "regulatory": ["regulat", "compliance", "sec", "cbn", "pencom", "penalty", "fine", "law"],
    "strategic": ["strategic", "competition", "market share", "innovation", "business model"],
    "reputational": ["reputation", "brand", "scandal", "controversy", "public", "media"],
    "esg": ["environment", "climate", "esg", "sustainab", "carbon", "social", "governance"],
}

INDUSTRY_KEYWORDS: Dict[str, List[str]] = {
    "financial_services": ["bank", "finance", "investment", "trading", "securities", "insurance"],
    "healthcare": ["health", "hospital", "medical", "pharma", "patient", "clinical"],
    "technology": ["tech", "software", "information technology", "digital", "cloud", "data", "cyber"],
    "manufacturing": ["manufactur", "factory", "production", "supply chain", "industrial"],
    "retail": ["retail", "consumer", "store", "shopping", "e-commerce"],
    "energy": ["energy", "oil", "gas", "power", "renewable", "electricity"],
    "government": ["government", "public sector", "regulatory", "policy", "federal", "state"],
}

SOURCE_TIERS = [
    (10, ["reuters", "bloomberg", "associated press", "financial times", "wall street journal"]),
    (7, ["bbc", "cnn", "cnbc", "techcrunch", "the economist", "forbes"]),
    (5, ["vanguard", "punch", "thisday", "guardian", "businessday"]),
]
DEFAULT_SOURCE_SCORE = 3


@dataclass
class PreFilterConfig:
    enabled: bool = True
    threshold: float = DEFAULT_THRESHOLD
    critical_keywords: List[str] = field(default_factory=lambda: list(CRITICAL_KEYWORDS))
    org_keywords: List[str] = field(default_factory=list)
    risk_categories: List[str] = field(default_factory=list)
    industry: Optional[str] = None

    @classmethod
    def from_settings(
        cls,
        ai_optimization: Mapping[str, Any],
        *,
        org_keywords: Sequence[str] = (),
        risk_categories: Sequence[str] = (),
        industry: Optional[str] = None,
    ) -> "PreFilterConfig":
        """Build from ``organizations.settings.ai_optimization``; extra critical terms extend the defaults."""
        extra = ai_optimization.get("critical_keywords") or []
        critical = list(CRITICAL_KEYWORDS)
        for keyword in extra:
            normalized = str(keyword).strip().lower()
            if normalized and normalized not in critical:
                critical.append(normalized)
        threshold = ai_optimization.get("prefilter_threshold")
        enabled = ai_optimization.get("enable_prefilter")
        return cls(
            enabled=True if enabled is None else bool(enabled),
            threshold=float(threshold) if threshold is not None else DEFAULT_THRESHOLD,
            critical_keywords=critical,
            org_keywords=[keyword.lower() for keyword in org_keywords],
            risk_categories=list(risk_categories),
            industry=industry,
        )


@dataclass
class PreFilterResult:
    score: float
    passed: bool
    reasons: List[str] = field(default_factory=list)
    critical: bool = False
    breakdown: Dict[str, float] = field(default_factory=dict)


def match_categories(text: str, categories: Sequence[str]) -> List[str]:
    matches: List[str] = []
    for category in categories:
        lowered = category.lower()
        if lowered and lowered in text:
            matches.append(category)
            continue
        for key, keywords in CATEGORY_KEYWORDS.items():
            if key in lowered:
                if any(keyword in text for keyword in keywords):
                    matches.append(category)
                break
    return list(dict.fromkeys(matches))


def matches_industry(text: str, industry: Optional[str]) -> bool:
    if not industry:
        return False
    keywords = INDUSTRY_KEYWORDS.get(industry.strip().lower(), [])
    return any(keyword in text for keyword in keywords)


def source_credibility(source_name: Optional[str]) -> int:
    if not source_name:
        return 0
    lowered = source_name.lower()
    for points, names in SOURCE_TIERS:
        if any(name in lowered for name in names):
            return points
    return DEFAULT_SOURCE_SCORE


def recency_points(published_at: Optional[datetime], now: datetime) -> int:
    if published_at is None:
        return 0
    hours = (now - published_at).total_seconds() / 3600
    if hours < 24:
        return 10
    if hours < 72:
        return 5
    return 0


class RelevanceScorer:
    """Additive pre-AI relevance score with a critical-keyword bypass."""

    def __init__(self, config: PreFilterConfig) -> None:
        self.config = config

    def score(
        self,
        title: str,
        summary: str = "",
        *,
        source_name: Optional[str] = None,
        published_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> PreFilterResult:
        config = self.config
        if not config.enabled:
            return PreFilterResult(100, True, ["Pre-filter disabled"])

        text = normalize_text(f"{title} {summary}")
        critical_hits = [keyword for keyword in config.critical_keywords if keyword.lower() in text]
        if critical_hits:
            return PreFilterResult(
                100,
                True,
                [f'Critical keyword bypass: "{keyword}"' for keyword in critical_hits],
                critical=True,
            )

        now = now or utc_now()
        reasons: List[str] = []
        breakdown: Dict[str, float] = {}

        keyword_hits = list(dict.fromkeys(k for k in config.org_keywords if k and k in text))
        breakdown["keywords"] = min(len(keyword_hits) * 10, 50)
        if keyword_hits:
            reasons.append(f"Keyword matches ({len(keyword_hits)}): {', '.join(keyword_hits[:3])}")

        category_hits = match_categories(text, config.risk_categories)
        breakdown["categories"] = min(len(category_hits) * 15, 45)
        if category_hits:
            reasons.append(f"Category overlap ({len(category_hits)}): {', '.join(category_hits)}")

        breakdown["industry"] = 25 if matches_industry(text, config.industry) else 0
        if breakdown["industry"]:
            reasons.append(f"Industry match: {config.industry}")

        breakdown["recency"] = recency_points(published_at, now)
        if breakdown["recency"]:
            reasons.append(f"Recent event: +{breakdown['recency']}")

        breakdown["source"] = source_credibility(source_name)
        if breakdown["source"]:
            reasons.append(f"Source credibility: +{breakdown['source']}")

        total = sum(breakdown.values())
        return PreFilterResult(total, total >= config.threshold, reasons, breakdown=breakdown)
