"""AI relevance classification with strict parsing of model output."""

from __future__ import annotations

import asyncio
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from riskintel.db import ExternalEvent, InstitutionContext, Risk
from riskintel.utils import setup_logger

from .llm_clients import LlmClient

logger = setup_logger(__name__)

MAX_DELTA = 2
MAX_CONTROLS = 4
IMPACT_LEVELS = ("critical", "high", "medium", "low")

SYSTEM_PROMPT = (
    "You are a risk intelligence analyst. You decide whether an external news event "
    "affects specific risks in an organization's risk register. Respond with a single "
    "JSON object and nothing else."
)


@dataclass
class RiskAssessment:
    risk_code: str
    reasoning: str
    likelihood_change: int
    impact_change: int
    confidence: float
    suggested_controls: List[str] = field(default_factory=list)
    impact_assessment: str = ""


@dataclass
class Relevant:
    confidence: float
    risks: List[RiskAssessment]
    domains: Dict[str, float] = field(default_factory=dict)
    impact_level: str = "medium"
    summary: str = ""
    key_themes: List[str] = field(default_factory=list)
    model: str = ""


@dataclass
class NotRelevant:
    reason: str = ""
    domains: Dict[str, float] = field(default_factory=dict)
    impact_level: str = "low"
    summary: str = ""
    key_themes: List[str] = field(default_factory=list)
    confidence: float = 0.0
    parsed: bool = True
    model: str = ""


ClassificationResult = Union[Relevant, NotRelevant]


def format_risks(risks: Iterable[Risk]) -> str:
    return "\n".join(f"- {risk.risk_code}: {risk.risk_title} ({risk.category or 'Uncategorized'})" for risk in risks)


def build_prompt(event: ExternalEvent, risks: Sequence[Risk], institution: InstitutionContext) -> str:
    regulators = ", ".join(institution.regulators) or "general regulators"
    focus = f"Institution focus: {institution.description}\n\n" if institution.description else ""
    published = event.published_date.isoformat() if event.published_date else "unknown"
    return f"""You are analyzing a risk intelligence event for a {institution.name} (Category: {institution.category}) regulated by {regulators}.

{focus}Judge relevance for this specific type of institution, not for financial services in general.

EVENT:
Title: "{event.title}"
Type: {event.event_type}
Source: {event.source or 'unknown'}
Published: {published}
URL: {event.url}
Summary: {event.summary or 'N/A'}

ORGANIZATIONAL RISKS:
{format_risks(risks)}

TASK:
1. Decide whether the event is relevant to ANY listed risk.
2. For EACH affected risk give specific reasoning, likelihood_change and impact_change on a -2..+2 scale,
   2-4 controls tailored to that risk, and an impact assessment.
3. Independently of these risks, score generic risk domains (cyber, operational, financial, regulatory,
   strategic, reputational, esg) from 0 to 100, give an overall impact level (critical/high/medium/low),
   a one-sentence summary and up to 5 key themes.

RESPOND ONLY WITH JSON:
{{
  "is_relevant": true,
  "confidence": 85,
  "impact_level": "high",
  "summary": "...",
  "key_themes": ["..."],
  "risk_domains": {{"cyber": 80, "operational": 40}},
  "risk_analyses": [
    {{
      "risk_code": "CODE-001",
      "reasoning": "...",
      "likelihood_change": 1,
      "impact_change": 0,
      "suggested_controls": ["...", "..."],
      "impact_assessment": "..."
    }}
  ]
}}

If not relevant, return "is_relevant": false with an empty "risk_analyses" list and still fill "risk_domains"."""


_THINK_RE = re.compile(r"<think(?:ing)?>.*?</think(?:ing)?>", re.DOTALL | re.IGNORECASE)
_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def prepare_json_text(text: str) -> str:
    """Strip thinking tags and Markdown fences, then cut to the outermost JSON object."""
    candidate = _THINK_RE.sub("", text or "").strip()
    fenced = _FENCE_RE.search(candidate)
    if fenced:
        candidate = fenced.group(1).strip()
    start = candidate.find("{")
    end = candidate.rfind("}")
    if start >= 0 and end > start:
        candidate = candidate[start : end + 1]
    return candidate


def _clamp_delta(value: Any) -> int:
    try:
        number = int(round(float(value)))
    except (TypeError, ValueError):
        return 0
    return max(-MAX_DELTA, min(MAX_DELTA, number))


def _parse_confidence(value: Any, default: float = 0.0) -> float:
    """Model confidence is reported on 0-100; returns a 0-1 fraction."""
    if value is None:
        return default
    if isinstance(value, str):
        named = {"high": 80.0, "medium": 50.0, "low": 30.0}.get(value.strip().lower())
        if named is not None:
            value = named
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return round(max(0.0, min(100.0, number)) / 100.0, 4)


def _parse_domains(value: Any) -> Dict[str, float]:
    if not isinstance(value, dict):
        return {}
    domains: Dict[str, float] = {}
    for key, score in value.items():
        try:
            domains[str(key).strip().lower()] = max(0.0, min(100.0, float(score)))
        except (TypeError, ValueError):
            continue
    return domains


def _parse_controls(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    controls = [str(item).strip() for item in value if str(item).strip()]
    return controls[:MAX_CONTROLS]


def parse_classification(text: str, known_codes: Iterable[str], *, model: str = "") -> ClassificationResult:
    """Validate raw model output into Relevant or NotRelevant. Never raises."""
    try:
        data = json.loads(prepare_json_text(text))
    except (json.JSONDecodeError, TypeError) as exc:
        logger.warning("⚠️ Unparseable AI response, treating as not relevant: %s", exc)
        return NotRelevant(reason="Unparseable AI response", parsed=False, model=model)
    if not isinstance(data, dict):
        return NotRelevant(reason="AI response was not a JSON object", parsed=False, model=model)

    confidence = _parse_confidence(data.get("confidence"))
    impact_level = str(data.get("impact_level") or "medium").strip().lower()
    if impact_level not in IMPACT_LEVELS:
        impact_level = "medium"
    themes = data.get("key_themes")
    common = {
        "domains": _parse_domains(data.get("risk_domains")),
        "impact_level": impact_level,
        "summary": str(data.get("summary") or "").strip(),
        "key_themes": [str(theme) for theme in themes][:5] if isinstance(themes, list) else [],
        "model": model,
    }

    if data.get("is_relevant") is not True:
        return NotRelevant(reason="Model judged event not relevant", confidence=confidence, **common)

    codes = set(known_codes)
    risks: List[RiskAssessment] = []
    analyses = data.get("risk_analyses")
    for item in analyses if isinstance(analyses, list) else []:
        if not isinstance(item, dict):
            continue
        code = str(item.get("risk_code") or "").strip()
        if code not in codes or any(existing.risk_code == code for existing in risks):
            if code:
                logger.debug("Dropping analysis for unknown or repeated risk code %s", code)
            continue
        risks.append(
            RiskAssessment(
                risk_code=code,
                reasoning=str(item.get("reasoning") or "").strip(),
                likelihood_change=_clamp_delta(item.get("likelihood_change")),
                impact_change=_clamp_delta(item.get("impact_change")),
                confidence=_parse_confidence(item.get("confidence"), default=confidence),
                suggested_controls=_parse_controls(item.get("suggested_controls")),
                impact_assessment=str(item.get("impact_assessment") or "").strip(),
            )
        )

    if not risks:
        return NotRelevant(reason="No valid risk analyses in relevant response", confidence=confidence, **common)
    return Relevant(confidence=confidence, risks=risks, **common)


class RelevanceClassifier:
    """Calls the LLM for one event under a shared concurrency cap."""

    def __init__(self, client: LlmClient, *, max_concurrency: int = 2) -> None:
        self._client = client
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))

    async def classify(
        self,
        event: ExternalEvent,
        risks: Sequence[Risk],
        institution: InstitutionContext,
    ) -> ClassificationResult:
        """Raises AiServiceError on transport failure; malformed output becomes NotRelevant."""
        prompt = build_prompt(event, risks, institution)
        async with self._semaphore:
            response = await self._client.complete(SYSTEM_PROMPT, prompt)
        result = parse_classification(response.text, (risk.risk_code for risk in risks), model=response.model)
        if isinstance(result, Relevant):
            logger.info(
                "🤖 Event %s relevant to %d risks (confidence %.2f)",
                event.id,
                len(result.risks),
                result.confidence,
            )
        else:
            logger.info("🤖 Event %s not relevant: %s", event.id, result.reason)
        return result
