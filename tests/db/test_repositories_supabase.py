"""Repository behaviour against the in-memory Supabase stand-in."""

from datetime import datetime, timedelta, timezone

import pytest

from riskintel.db import (
    AlertPayload,
    AlertRepository,
    ExternalEventRepository,
    IndustryCacheEntry,
    IndustryCacheRepository,
    OrganizationRepository,
    RiskRepository,
)

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _cache_entry(institution_type_id, summary):
    return IndustryCacheEntry(
        event_hash="h1",
        institution_type_id=institution_type_id,
        event_title="Ransomware hits lender",
        event_source="Reuters",
        risk_category_mappings={"cyber": 90.0},
        summary=summary,
        expires_at=NOW + timedelta(days=7),
    )


@pytest.mark.asyncio
async def test_list_pending_excludes_exhausted_and_checked(fake_db):
    fake_db.seed(
        "external_events",
        {"id": "a", "organization_id": "org-1", "title": "A", "relevance_checked": False, "retry_count": 0, "fetched_at": "2025-03-01T10:00:00"},
        {"id": "b", "organization_id": "org-1", "title": "B", "relevance_checked": False, "retry_count": 2, "fetched_at": "2025-03-01T11:00:00"},
        {"id": "c", "organization_id": "org-1", "title": "C", "relevance_checked": False, "retry_count": 3, "fetched_at": "2025-03-01T12:00:00"},
        {"id": "d", "organization_id": "org-1", "title": "D", "relevance_checked": True, "retry_count": 0, "fetched_at": "2025-03-01T12:00:00"},
        {"id": "e", "organization_id": "org-2", "title": "E", "relevance_checked": False, "retry_count": 0, "fetched_at": "2025-03-01T12:00:00"},
    )

    pending = await ExternalEventRepository(fake_db).list_pending("org-1", max_retries=3, limit=10)

    assert [event.id for event in pending] == ["b", "a"]


@pytest.mark.asyncio
async def test_industry_cache_prefers_institution_scope(fake_db):
    repo = IndustryCacheRepository(fake_db)
    await repo.store(_cache_entry(None, "generic"))
    await repo.store(_cache_entry("type-bank", "bank specific"))

    scoped = await repo.find("h1", "type-bank", NOW)
    fallback = await repo.find("h1", "type-insurer", NOW)
    unscoped = await repo.find("h1", None, NOW)

    assert scoped.summary == "bank specific"
    assert fallback.summary == "generic"
    assert unscoped.summary == "generic"


@pytest.mark.asyncio
async def test_industry_cache_store_is_insert_or_ignore(fake_db):
    repo = IndustryCacheRepository(fake_db)
    await repo.store(_cache_entry("type-bank", "first"))
    await repo.store(_cache_entry("type-bank", "second"))

    rows = fake_db.tables["industry_event_cache"]
    assert len(rows) == 1
    assert rows[0]["general_analysis"]["summary"] == "first"


@pytest.mark.asyncio
async def test_industry_cache_ignores_expired_and_counts_hits(fake_db):
    repo = IndustryCacheRepository(fake_db)
    entry = _cache_entry(None, "generic")
    entry.organization_ids = ["org-1"]
    await repo.store(entry)
    row = fake_db.tables["industry_event_cache"][0]
    assert row["orgs_using"] == 1

    await repo.record_hit(await repo.find("h1", None, NOW), "org-2")
    assert row["hit_count"] == 1
    assert row["orgs_using"] == 2
    assert row["organization_ids"] == ["org-1", "org-2"]

    assert await repo.find("h1", None, NOW + timedelta(days=8)) is None


@pytest.mark.asyncio
async def test_repeat_hits_from_one_organization_count_once(fake_db):
    repo = IndustryCacheRepository(fake_db)
    entry = _cache_entry("type-bank", "bank specific")
    entry.organization_ids = ["org-1"]
    await repo.store(entry)

    for _ in range(3):
        await repo.record_hit(await repo.find("h1", "type-bank", NOW), "org-1")
    await repo.record_hit(await repo.find("h1", "type-bank", NOW), "org-2")
    await repo.record_hit(await repo.find("h1", "type-bank", NOW), "org-2")

    row = fake_db.tables["industry_event_cache"][0]
    assert row["hit_count"] == 5
    assert row["orgs_using"] == 2
    assert row["organization_ids"] == ["org-1", "org-2"]


@pytest.mark.asyncio
async def test_alert_upsert_never_sends_status_fields(fake_db):
    repo = AlertRepository(fake_db)
    payload = AlertPayload(
        event_id="e1",
        risk_code="CYB-001",
        organization_id="org-1",
        confidence_score=0.85,
        suggested_likelihood_change=1,
        impact_change=0,
        reasoning="Ransomware wave targets lenders",
        suggested_controls=["Patch VPN", "Test backups"],
    )
    assert "status" not in payload.to_dict()
    assert "applied_to_risk" not in payload.to_dict()

    await repo.upsert_alert(payload)
    fake_db.tables["risk_intelligence_alerts"][0]["status"] = "accepted"
    await repo.upsert_alert(payload)

    rows = fake_db.tables["risk_intelligence_alerts"]
    assert len(rows) == 1
    assert rows[0]["status"] == "accepted"


@pytest.mark.asyncio
async def test_risk_register_only_active_statuses(fake_db):
    fake_db.seed(
        "risks",
        {"organization_id": "org-1", "risk_code": "R1", "risk_title": "Cyber", "status": "OPEN"},
        {"organization_id": "org-1", "risk_code": "R2", "risk_title": "Old", "status": "CLOSED"},
        {"organization_id": "org-1", "risk_code": "R3", "risk_title": "Watch", "status": "Monitoring"},
    )
    risks = await RiskRepository(fake_db).list_active("org-1")
    assert [risk.risk_code for risk in risks] == ["R1", "R3"]


@pytest.mark.asyncio
async def test_organization_resolution_helpers(fake_db):
    fake_db.seed(
        "organizations",
        {"id": "org-b", "name": "Second", "created_at": "2024-02-01"},
        {"id": "org-a", "name": "First", "created_at": "2024-01-01"},
    )
    fake_db.users["token-1"] = {"id": "user-1"}
    fake_db.seed("user_profiles", {"id": "user-1", "organization_id": "org-b"})
    repo = OrganizationRepository(fake_db)

    assert await repo.get_first_id() == "org-a"
    assert await repo.get_id_for_token("token-1") == "org-b"
    assert await repo.get_id_for_token("unknown") is None


@pytest.mark.asyncio
async def test_profile_includes_institution_and_regulators(fake_db):
    fake_db.seed(
        "organizations",
        {
            "id": "org-1",
            "name": "Acme Bank",
            "industry_type": "financial_services",
            "institution_type_id": "type-bank",
            "settings": {"ai_optimization": {"prefilter_threshold": 40}},
            "institution_types": {"name": "Commercial Bank", "category": "Banking", "description": "Deposit taking"},
        },
    )
    fake_db.seed(
        "institution_type_regulators",
        {"institution_type_id": "type-bank", "regulators": {"name": "CBN"}},
        {"institution_type_id": "type-bank", "regulators": {"name": "NDIC"}},
    )

    profile = await OrganizationRepository(fake_db).get_profile("org-1")

    assert profile.institution.name == "Commercial Bank"
    assert profile.institution.regulators == ["CBN", "NDIC"]
    assert profile.ai_optimization == {"prefilter_threshold": 40}
    assert await OrganizationRepository(fake_db).get_profile("missing") is None


@pytest.mark.asyncio
async def test_keywords_grouped_by_category(fake_db):
    fake_db.seed(
        "risk_keywords",
        {"organization_id": "org-1", "keyword": "Naira", "category": "market", "is_active": True},
        {"organization_id": "org-1", "keyword": "PenCom", "category": None, "is_active": True},
        {"organization_id": "org-1", "keyword": "unused", "category": "market", "is_active": False},
    )
    grouped = await OrganizationRepository(fake_db).list_keywords("org-1")
    assert grouped == {"market": ["Naira"], "custom": ["PenCom"]}
