"""Typed payloads used by the repository layer."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from riskintel.utils import parse_iso_datetime


def _strip_none(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class FilterStatus:
    UNFILTERED = "unfiltered"
    LOW_RELEVANCE = "filtered_low_relevance"
    DUPLICATE = "filtered_duplicate"
    CACHED = "cached"
    ANALYZED = "analyzed"


ACTIVE_RISK_STATUSES = ("OPEN", "MONITORING", "Open", "Monitoring", "open", "monitoring")


@dataclass
class FeedSource:
    name: str
    url: str
    category: str = "general"
    id: Optional[str] = None
    max_items: Optional[int] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "FeedSource":
        max_items = row.get("max_items")
        return cls(
            id=row.get("id"),
            name=row.get("name") or row.get("url", ""),
            url=row.get("url", ""),
            category=row.get("category") or "general",
            max_items=int(max_items) if max_items else None,
        )


@dataclass
class FeedItem:
    title: str
    summary: str
    link: str
    published_at: datetime
    source_name: str
    source_category: str = "general"


@dataclass
class ExternalEventPayload:
    organization_id: str
    source: str
    event_type: str
    title: str
    summary: str
    url: str
    published_date: datetime
    fetched_at: datetime
    filter_status: str = FilterStatus.UNFILTERED
    relevance_checked: bool = False
    retry_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["published_date"] = _iso(self.published_date)
        data["fetched_at"] = _iso(self.fetched_at)
        return _strip_none(data)


@dataclass
class ExternalEvent:
    id: str
    organization_id: str
    title: str
    summary: str = ""
    url: str = ""
    source: str = ""
    event_type: str = "other"
    published_date: Optional[datetime] = None
    filter_status: str = FilterStatus.UNFILTERED
    relevance_checked: bool = False
    retry_count: int = 0

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ExternalEvent":
        return cls(
            id=str(row["id"]),
            organization_id=str(row.get("organization_id") or ""),
            title=row.get("title") or "",
            summary=row.get("summary") or row.get("description") or "",
            url=row.get("url") or row.get("source_url") or "",
            source=row.get("source") or "",
            event_type=row.get("event_type") or "other",
            published_date=parse_iso_datetime(row.get("published_date")),
            filter_status=row.get("filter_status") or FilterStatus.UNFILTERED,
            relevance_checked=bool(row.get("relevance_checked")),
            retry_count=int(row.get("retry_count") or 0),
        )


@dataclass
class Risk:
    risk_code: str
    risk_title: str
    category: str = ""
    risk_description: str = ""
    likelihood_inherent: Optional[int] = None
    impact_inherent: Optional[int] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Risk":
        return cls(
            risk_code=row["risk_code"],
            risk_title=row.get("risk_title") or "",
            category=row.get("category") or "",
            risk_description=row.get("risk_description") or "",
            likelihood_inherent=row.get("likelihood_inherent"),
            impact_inherent=row.get("impact_inherent"),
        )


@dataclass
class InstitutionContext:
    name: str = "Unknown"
    category: str = "General"
    description: str = ""
    regulators: List[str] = field(default_factory=list)


@dataclass
class OrganizationProfile:
    id: str
    name: str = ""
    industry_type: Optional[str] = None
    institution_type_id: Optional[str] = None
    settings: Dict[str, Any] = field(default_factory=dict)
    institution: InstitutionContext = field(default_factory=InstitutionContext)

    @property
    def ai_optimization(self) -> Dict[str, Any]:
        value = self.settings.get("ai_optimization") if isinstance(self.settings, dict) else None
        return value if isinstance(value, dict) else {}


@dataclass
class DedupIndexEntry:
    title_hash: str
    title_tokens: List[str]
    source_domain: str
    expires_at: datetime
    event_id: Optional[str] = None
    organization_id: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return _strip_none(
            {
                "organization_id": self.organization_id,
                "title_hash": self.title_hash,
                "title_tokens": list(self.title_tokens),
                "source_domain": self.source_domain,
                "event_id": self.event_id,
                "created_at": _iso(self.created_at),
                "expires_at": _iso(self.expires_at),
            }
        )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "DedupIndexEntry":
        tokens = row.get("title_tokens") or []
        return cls(
            title_hash=row["title_hash"],
            title_tokens=[str(token) for token in tokens],
            source_domain=row.get("source_domain") or "unknown",
            event_id=str(row["event_id"]) if row.get("event_id") is not None else None,
            organization_id=row.get("organization_id"),
            created_at=parse_iso_datetime(row.get("created_at")),
            expires_at=parse_iso_datetime(row.get("expires_at")),
        )


@dataclass
class IndustryCacheEntry:
    event_hash: str
    event_title: str
    event_source: str
    risk_category_mappings: Dict[str, float]
    expires_at: datetime
    institution_type_id: Optional[str] = None
    summary: str = ""
    key_themes: List[str] = field(default_factory=list)
    suggested_impact_level: str = "medium"
    confidence_score: float = 0.0
    model_version: str = ""
    original_event_id: Optional[str] = None
    hit_count: int = 0
    organization_ids: List[str] = field(default_factory=list)
    id: Optional[str] = None

    @property
    def orgs_using(self) -> int:
        return max(1, len(self.organization_ids))

    def to_dict(self) -> Dict[str, Any]:
        return _strip_none(
            {
                "event_hash": self.event_hash,
                "institution_type_id": self.institution_type_id,
                "event_title": self.event_title,
                "event_source": self.event_source,
                "general_analysis": {
                    "summary": self.summary,
                    "key_themes": self.key_themes,
                    "risk_domains": list(self.risk_category_mappings.keys()),
                },
                "risk_category_mappings": self.risk_category_mappings,
                "suggested_impact_level": self.suggested_impact_level,
                "confidence_score": self.confidence_score,
                "model_version": self.model_version,
                "original_event_id": self.original_event_id,
                "hit_count": self.hit_count,
                "organization_ids": list(self.organization_ids),
                "orgs_using": self.orgs_using,
                "expires_at": _iso(self.expires_at),
            }
        )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "IndustryCacheEntry":
        analysis = row.get("general_analysis") or {}
        mappings = row.get("risk_category_mappings") or {}
        return cls(
            id=str(row["id"]) if row.get("id") is not None else None,
            event_hash=row["event_hash"],
            institution_type_id=row.get("institution_type_id"),
            event_title=row.get("event_title") or "",
            event_source=row.get("event_source") or "",
            summary=analysis.get("summary") or "",
            key_themes=list(analysis.get("key_themes") or []),
            risk_category_mappings={str(k): float(v) for k, v in mappings.items() if v is not None},
            suggested_impact_level=row.get("suggested_impact_level") or "medium",
            confidence_score=float(row.get("confidence_score") or 0.0),
            model_version=row.get("model_version") or "",
            original_event_id=row.get("original_event_id"),
            hit_count=int(row.get("hit_count") or 0),
            organization_ids=[str(org_id) for org_id in row.get("organization_ids") or []],
            expires_at=parse_iso_datetime(row.get("expires_at")),
        )


@dataclass
class OrgCacheEntry:
    event_id: str
    organization_id: str
    risk_code: str
    reasoning: str
    likelihood_change: int
    impact_change: int
    confidence: float
    expires_at: datetime
    suggested_controls: List[str] = field(default_factory=list)
    impact_assessment: str = ""
    model_used: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "organization_id": self.organization_id,
            "risk_code": self.risk_code,
            "analysis_result": {"impact_assessment": self.impact_assessment},
            "likelihood_change": self.likelihood_change,
            "impact_change": self.impact_change,
            "confidence": self.confidence,
            "suggested_controls": list(self.suggested_controls),
            "reasoning": self.reasoning,
            "model_used": self.model_used,
            "expires_at": _iso(self.expires_at),
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "OrgCacheEntry":
        analysis = row.get("analysis_result") or {}
        return cls(
            event_id=str(row["event_id"]),
            organization_id=str(row["organization_id"]),
            risk_code=row["risk_code"],
            reasoning=row.get("reasoning") or "",
            likelihood_change=int(row.get("likelihood_change") or 0),
            impact_change=int(row.get("impact_change") or 0),
            confidence=float(row.get("confidence") or 0.0),
            suggested_controls=list(row.get("suggested_controls") or []),
            impact_assessment=analysis.get("impact_assessment") or "",
            model_used=row.get("model_used") or "",
            expires_at=parse_iso_datetime(row.get("expires_at")),
        )


@dataclass
class AlertPayload:
    """Advisory alert row. Status fields are owned by reviewers and never sent."""

    event_id: str
    risk_code: str
    organization_id: str
    confidence_score: float
    suggested_likelihood_change: int
    impact_change: int
    reasoning: str
    suggested_controls: List[str] = field(default_factory=list)
    impact_assessment: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return _strip_none(asdict(self))


@dataclass
class SourceScanRecord:
    source_name: str
    source_url: str
    status: str
    items_found: int = 0
    error: Optional[str] = None
    source_id: Optional[str] = None
    organization_id: Optional[str] = None
    scanned_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return _strip_none(
            {
                "source_id": self.source_id,
                "organization_id": self.organization_id,
                "source_name": self.source_name,
                "source_url": self.source_url,
                "status": self.status,
                "error": self.error,
                "items_found": self.items_found,
                "scanned_at": _iso(self.scanned_at),
            }
        )
