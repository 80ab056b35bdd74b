"""Repository layer encapsulating Supabase persistence logic."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set

from riskintel.utils import setup_logger

from .models import (
    ACTIVE_RISK_STATUSES,
    AlertPayload,
    DedupIndexEntry,
    ExternalEvent,
    ExternalEventPayload,
    FeedSource,
    IndustryCacheEntry,
    InstitutionContext,
    OrgCacheEntry,
    OrganizationProfile,
    Risk,
    SourceScanRecord,
)
from .supabase_client import SupabaseClient, SupabaseError, in_filter

logger = setup_logger(__name__)


def _gt(moment: datetime) -> str:
    return f"gt.{moment.isoformat()}"


class SourceRepository:
    """Persistence helpers for rss_sources and the rss_source_scans log."""

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    async def list_active(self, organization_id: str, *, limit: Optional[int] = None) -> List[FeedSource]:
        rows = await self._client.select(
            "rss_sources",
            filters={"organization_id": organization_id, "is_active": True},
            columns="id,name,url,category,max_items",
            order="created_at.asc",
            limit=limit,
        )
        return [FeedSource.from_row(row) for row in rows if row.get("url")]

    async def record_scan(self, record: SourceScanRecord) -> None:
        """Append one scan-log row and refresh the source's last-scan fields."""
        await self._client.insert("rss_source_scans", record.to_dict())
        if not record.source_id:
            return
        await self._client.update(
            "rss_sources",
            {
                "last_scanned_at": record.scanned_at.isoformat() if record.scanned_at else None,
                "last_scan_status": record.status,
                "last_scan_error": record.error,
            },
            filters={"id": record.source_id},
        )


class ExternalEventRepository:
    """Persistence helpers for the external_events table."""

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    async def find_existing_urls(self, organization_id: str, urls: Iterable[str]) -> Set[str]:
        url_list = [url for url in urls if url]
        if not url_list:
            return set()
        rows = await self._client.select(
            "external_events",
            filters={"organization_id": organization_id, "url": in_filter(url_list)},
            columns="url",
        )
        return {row["url"] for row in rows if row.get("url")}

    async def insert_events(self, payloads: List[ExternalEventPayload]) -> List[ExternalEvent]:
        if not payloads:
            return []
        rows = await self._client.insert_many(
            "external_events",
            [payload.to_dict() for payload in payloads],
            on_conflict="organization_id,url",
            ignore_duplicates=True,
        )
        return [ExternalEvent.from_row(row) for row in rows if row.get("id") is not None]

    async def list_pending(
        self,
        organization_id: str,
        *,
        max_retries: int,
        limit: int,
    ) -> List[ExternalEvent]:
        rows = await self._client.select(
            "external_events",
            filters={
                "organization_id": organization_id,
                "relevance_checked": False,
                "retry_count": f"lt.{max_retries}",
            },
            order="fetched_at.desc",
            limit=limit,
        )
        return [ExternalEvent.from_row(row) for row in rows]

    async def update_event(self, event_id: str, **fields: Any) -> None:
        if not fields:
            return
        await self._client.update("external_events", fields, filters={"id": event_id})


class DedupIndexRepository:
    """Expiring title fingerprints in event_dedup_index, scoped per organization."""

    TABLE = "event_dedup_index"

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    async def find_by_hash(
        self,
        title_hash: str,
        now: datetime,
        *,
        organization_id: Optional[str] = None,
    ) -> Optional[DedupIndexEntry]:
        row = await self._client.select_one(
            self.TABLE,
            filters={
                "organization_id": organization_id or "is.null",
                "title_hash": title_hash,
                "expires_at": _gt(now),
            },
        )
        return DedupIndexEntry.from_row(row) if row else None

    async def list_recent(
        self,
        now: datetime,
        *,
        limit: int,
        organization_id: Optional[str] = None,
    ) -> List[DedupIndexEntry]:
        rows = await self._client.select(
            self.TABLE,
            filters={"organization_id": organization_id or "is.null", "expires_at": _gt(now)},
            columns="organization_id,title_hash,title_tokens,source_domain,event_id,created_at,expires_at",
            order="created_at.desc",
            limit=limit,
        )
        return [DedupIndexEntry.from_row(row) for row in rows]

    async def upsert(self, entry: DedupIndexEntry) -> None:
        await self._client.upsert(self.TABLE, entry.to_dict(), on_conflict="organization_id,title_hash")


class IndustryCacheRepository:
    """Cross-organization analysis cache in industry_event_cache."""

    TABLE = "industry_event_cache"

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    async def find(
        self,
        event_hash: str,
        institution_type_id: Optional[str],
        now: datetime,
    ) -> Optional[IndustryCacheEntry]:
        filters: Dict[str, Any] = {"event_hash": event_hash, "expires_at": _gt(now)}
        extra = None
        if institution_type_id:
            extra = {"or": f"(institution_type_id.eq.{institution_type_id},institution_type_id.is.null)"}
        else:
            filters["institution_type_id"] = "is.null"
        rows = await self._client.select(self.TABLE, filters=filters, extra_params=extra)
        if not rows:
            return None
        scoped = [row for row in rows if institution_type_id and row.get("institution_type_id") == institution_type_id]
        return IndustryCacheEntry.from_row((scoped or rows)[0])

    async def record_hit(self, entry: IndustryCacheEntry, organization_id: str) -> None:
        """Count every hit; orgs_using only grows the first time an organization reuses the entry."""
        filters: Dict[str, Any] = {"event_hash": entry.event_hash}
        if entry.id:
            filters = {"id": entry.id}
        elif entry.institution_type_id:
            filters["institution_type_id"] = entry.institution_type_id
        else:
            filters["institution_type_id"] = "is.null"
        values: Dict[str, Any] = {"hit_count": entry.hit_count + 1}
        if organization_id not in entry.organization_ids:
            organization_ids = [*entry.organization_ids, organization_id]
            values["organization_ids"] = organization_ids
            values["orgs_using"] = len(organization_ids)
        await self._client.update(self.TABLE, values, filters=filters)

    async def store(self, entry: IndustryCacheEntry) -> None:
        await self._client.insert_many(
            self.TABLE,
            [entry.to_dict()],
            on_conflict="event_hash,institution_type_id",
            ignore_duplicates=True,
        )


class OrgAnalysisCacheRepository:
    """Organization-private, risk-specific analysis cache."""

    TABLE = "org_analysis_cache"

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    async def list_for_event(self, event_id: str, organization_id: str, now: datetime) -> List[OrgCacheEntry]:
        rows = await self._client.select(
            self.TABLE,
            filters={
                "event_id": event_id,
                "organization_id": organization_id,
                "expires_at": _gt(now),
            },
        )
        return [OrgCacheEntry.from_row(row) for row in rows]

    async def store(self, entry: OrgCacheEntry) -> None:
        await self._client.upsert(
            self.TABLE,
            entry.to_dict(),
            on_conflict="event_id,organization_id,risk_code",
        )


class AlertRepository:
    """Persistence helpers for risk_intelligence_alerts."""

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    async def upsert_alert(self, payload: AlertPayload) -> Optional[Dict[str, Any]]:
        return await self._client.upsert(
            "risk_intelligence_alerts",
            payload.to_dict(),
            on_conflict="event_id,risk_code",
        )


class RiskRepository:
    """Read-only access to the organization's risk register."""

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    async def list_active(self, organization_id: str) -> List[Risk]:
        rows = await self._client.select(
            "risks",
            filters={"organization_id": organization_id, "status": in_filter(ACTIVE_RISK_STATUSES)},
            columns="risk_code,risk_title,risk_description,category,likelihood_inherent,impact_inherent",
        )
        return [Risk.from_row(row) for row in rows if row.get("risk_code")]


class OrganizationRepository:
    """Organization lookups: identity resolution, profile, and keyword settings."""

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    async def get_first_id(self) -> Optional[str]:
        row = await self._client.select_one("organizations", filters={}, columns="id", order="created_at.asc")
        return str(row["id"]) if row and row.get("id") is not None else None

    async def get_id_for_token(self, access_token: str) -> Optional[str]:
        user = await self._client.get_auth_user(access_token)
        if not user or not user.get("id"):
            return None
        row = await self._client.select_one(
            "user_profiles",
            filters={"id": user["id"]},
            columns="organization_id",
        )
        if row and row.get("organization_id"):
            return str(row["organization_id"])
        return None

    async def get_profile(self, organization_id: str) -> Optional[OrganizationProfile]:
        row = await self._client.select_one(
            "organizations",
            filters={"id": organization_id},
            columns="id,name,industry_type,institution_type_id,settings,institution_types(name,category,description)",
        )
        if not row:
            return None

        institution = InstitutionContext(name=row.get("name") or "Unknown")
        type_row = row.get("institution_types")
        if isinstance(type_row, dict):
            institution = InstitutionContext(
                name=type_row.get("name") or institution.name,
                category=type_row.get("category") or "General",
                description=type_row.get("description") or "",
            )

        type_id = row.get("institution_type_id")
        if type_id:
            try:
                reg_rows = await self._client.select(
                    "institution_type_regulators",
                    filters={"institution_type_id": type_id},
                    columns="regulators(name)",
                )
            except SupabaseError as exc:
                logger.warning("⚠️ Could not load regulators for org=%s: %s", organization_id, exc)
                reg_rows = []
            institution.regulators = [
                reg["regulators"]["name"]
                for reg in reg_rows
                if isinstance(reg.get("regulators"), dict) and reg["regulators"].get("name")
            ]

        settings = row.get("settings")
        return OrganizationProfile(
            id=str(row["id"]),
            name=row.get("name") or "",
            industry_type=row.get("industry_type"),
            institution_type_id=str(type_id) if type_id else None,
            settings=settings if isinstance(settings, dict) else {},
            institution=institution,
        )

    async def list_categories(self, organization_id: str) -> List[str]:
        rows = await self._client.select(
            "risk_categories",
            filters={"organization_id": organization_id},
            columns="name",
        )
        return [row["name"] for row in rows if row.get("name")]

    async def list_keywords(self, organization_id: str) -> Dict[str, List[str]]:
        """Active custom keywords grouped by category."""
        rows = await self._client.select(
            "risk_keywords",
            filters={"organization_id": organization_id, "is_active": True},
            columns="keyword,category",
        )
        grouped: Dict[str, List[str]] = defaultdict(list)
        for row in rows:
            keyword = (row.get("keyword") or "").strip()
            if keyword:
                grouped[row.get("category") or "custom"].append(keyword)
        return dict(grouped)
