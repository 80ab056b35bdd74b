"""Database integration helpers."""

from .models import (
    ACTIVE_RISK_STATUSES,
    AlertPayload,
    DedupIndexEntry,
    ExternalEvent,
    ExternalEventPayload,
    FeedItem,
    FeedSource,
    FilterStatus,
    IndustryCacheEntry,
    InstitutionContext,
    OrgCacheEntry,
    OrganizationProfile,
    Risk,
    SourceScanRecord,
)
from .repositories import (
    AlertRepository,
    DedupIndexRepository,
    ExternalEventRepository,
    IndustryCacheRepository,
    OrgAnalysisCacheRepository,
    OrganizationRepository,
    RiskRepository,
    SourceRepository,
)
from .supabase_client import SupabaseClient, SupabaseError, get_supabase_client, in_filter

__all__ = [
    "ACTIVE_RISK_STATUSES",
    "AlertPayload",
    "AlertRepository",
    "DedupIndexEntry",
    "DedupIndexRepository",
    "ExternalEvent",
    "ExternalEventPayload",
    "ExternalEventRepository",
    "FeedItem",
    "FeedSource",
    "FilterStatus",
    "IndustryCacheEntry",
    "IndustryCacheRepository",
    "InstitutionContext",
    "OrgAnalysisCacheRepository",
    "OrgCacheEntry",
    "OrganizationProfile",
    "OrganizationRepository",
    "Risk",
    "RiskRepository",
    "SourceRepository",
    "SourceScanRecord",
    "SupabaseClient",
    "SupabaseError",
    "get_supabase_client",
    "in_filter",
]
