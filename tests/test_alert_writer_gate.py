import pytest

from riskintel.ai import RiskAssessment
from riskintel.alerts import AlertWriter, passes_confidence_gate
from riskintel.db import AlertRepository, ExternalEvent, SupabaseError

EVENT = ExternalEvent(id="e1", organization_id="org-1", title="Ransomware hits lender")


def _assessment(code, confidence):
    return RiskAssessment(
        risk_code=code,
        reasoning="Exposure via shared vendor",
        likelihood_change=1,
        impact_change=0,
        confidence=confidence,
        suggested_controls=["Vendor review"],
    )


@pytest.mark.parametrize("confidence,expected", [(0.59, False), (0.5999, False), (0.6, True), (0.60000001, True), (0.95, True)])
def test_confidence_gate_boundary(confidence, expected):
    assert passes_confidence_gate(confidence) is expected


@pytest.mark.asyncio
async def test_only_confident_assessments_are_written(fake_db):
    writer = AlertWriter(AlertRepository(fake_db))

    written = await writer.write(EVENT, [_assessment("CYB-001", 0.6), _assessment("OPS-002", 0.59)])

    assert written == 1
    rows = fake_db.tables["risk_intelligence_alerts"]
    assert [row["risk_code"] for row in rows] == ["CYB-001"]
    assert rows[0]["organization_id"] == "org-1"
    assert rows[0]["suggested_likelihood_change"] == 1
    assert "status" not in rows[0]


@pytest.mark.asyncio
async def test_rewriting_same_pair_updates_in_place(fake_db):
    writer = AlertWriter(AlertRepository(fake_db))

    await writer.write(EVENT, [_assessment("CYB-001", 0.7)])
    await writer.write(EVENT, [_assessment("CYB-001", 0.9)])

    rows = fake_db.tables["risk_intelligence_alerts"]
    assert len(rows) == 1
    assert rows[0]["confidence_score"] == 0.9


@pytest.mark.asyncio
async def test_write_failure_propagates(fake_db):
    fake_db.failing.add("risk_intelligence_alerts")
    with pytest.raises(SupabaseError):
        await AlertWriter(AlertRepository(fake_db)).write(EVENT, [_assessment("CYB-001", 0.8)])
