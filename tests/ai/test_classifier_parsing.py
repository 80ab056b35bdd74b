"""Strict parsing of model output into Relevant / NotRelevant."""

import json

import pytest

from riskintel.ai import LlmResponse, NotRelevant, Relevant, RelevanceClassifier, build_prompt, parse_classification
from riskintel.ai.classifier import prepare_json_text
from riskintel.db import ExternalEvent, InstitutionContext, Risk

CODES = ["CYB-001", "OPS-002"]


def _payload(**overrides):
    data = {
        "is_relevant": True,
        "confidence": 85,
        "impact_level": "high",
        "summary": "Ransomware wave",
        "key_themes": ["ransomware"],
        "risk_domains": {"Cyber": 90, "operational": "40"},
        "risk_analyses": [
            {
                "risk_code": "CYB-001",
                "reasoning": "Direct exposure",
                "likelihood_change": 1,
                "impact_change": 0,
                "suggested_controls": ["Patch", "Backups"],
                "impact_assessment": "Moderate",
            }
        ],
    }
    data.update(overrides)
    return json.dumps(data)


@pytest.mark.parametrize("text", ["", "not json", "[1, 2]", "{broken", "```json\n{\"is_relevant\": tru\n```"])
def test_malformed_output_is_not_relevant(text):
    result = parse_classification(text, CODES)
    assert isinstance(result, NotRelevant)
    assert result.parsed is False


def test_valid_output_becomes_relevant():
    result = parse_classification(_payload(), CODES, model="m1")
    assert isinstance(result, Relevant)
    assert result.confidence == 0.85
    assert result.domains == {"cyber": 90.0, "operational": 40.0}
    assert result.model == "m1"
    risk = result.risks[0]
    assert risk.risk_code == "CYB-001"
    assert risk.confidence == 0.85
    assert risk.suggested_controls == ["Patch", "Backups"]


def test_fenced_and_thinking_output_is_accepted():
    text = "<thinking>hmm</thinking>\nHere you go:\n```json\n" + _payload() + "\n```"
    assert isinstance(parse_classification(text, CODES), Relevant)
    assert prepare_json_text('noise {"a": 1} trailing') == '{"a": 1}'


def test_deltas_are_clamped_and_controls_capped():
    analyses = [
        {
            "risk_code": "CYB-001",
            "likelihood_change": 7,
            "impact_change": -5,
            "suggested_controls": ["a", "b", "c", "d", "e"],
        }
    ]
    risk = parse_classification(_payload(risk_analyses=analyses), CODES).risks[0]
    assert risk.likelihood_change == 2
    assert risk.impact_change == -2
    assert len(risk.suggested_controls) == 4


def test_unknown_and_repeated_codes_are_dropped():
    analyses = [
        {"risk_code": "NOPE-9", "reasoning": "hallucinated"},
        {"risk_code": "OPS-002", "reasoning": "first"},
        {"risk_code": "OPS-002", "reasoning": "second"},
    ]
    result = parse_classification(_payload(risk_analyses=analyses), CODES)
    assert [risk.risk_code for risk in result.risks] == ["OPS-002"]
    assert result.risks[0].reasoning == "first"


def test_relevant_without_valid_risks_is_not_relevant():
    result = parse_classification(_payload(risk_analyses=[{"risk_code": "NOPE-9"}]), CODES)
    assert isinstance(result, NotRelevant)
    assert result.parsed is True
    assert result.domains["cyber"] == 90.0


def test_not_relevant_keeps_domain_scores():
    result = parse_classification(_payload(is_relevant=False, risk_analyses=[]), CODES)
    assert isinstance(result, NotRelevant)
    assert result.impact_level == "high"
    assert result.domains["cyber"] == 90.0


@pytest.mark.parametrize("raw,expected", [(59, 0.59), (60, 0.6), ("high", 0.8), (150, 1.0), (-3, 0.0)])
def test_confidence_scale(raw, expected):
    result = parse_classification(_payload(confidence=raw), CODES)
    assert result.confidence == expected


class _StubClient:
    model_name = "stub-model"

    def __init__(self, text):
        self.text = text
        self.prompts = []

    async def complete(self, system_prompt, user_prompt):
        self.prompts.append(user_prompt)
        return LlmResponse(text=self.text, model=self.model_name)


def _event():
    return ExternalEvent(id="e1", organization_id="org-1", title="Ransomware hits lender", url="https://x/1", source="Reuters")


def test_prompt_carries_institution_and_register():
    institution = InstitutionContext(name="Pension Fund Administrator", category="Pensions", regulators=["PenCom"])
    risks = [Risk(risk_code="CYB-001", risk_title="Cyber breach", category="Cyber")]
    prompt = build_prompt(_event(), risks, institution)
    assert "Pension Fund Administrator" in prompt
    assert "PenCom" in prompt
    assert "- CYB-001: Cyber breach (Cyber)" in prompt


@pytest.mark.asyncio
async def test_classifier_uses_client_and_parses():
    client = _StubClient(_payload())
    classifier = RelevanceClassifier(client, max_concurrency=1)
    risks = [Risk(risk_code="CYB-001", risk_title="Cyber breach", category="Cyber")]

    result = await classifier.classify(_event(), risks, InstitutionContext())

    assert isinstance(result, Relevant)
    assert result.model == "stub-model"
    assert len(client.prompts) == 1
