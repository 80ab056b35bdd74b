"""Alert writer: confidence-gated upsert of advisory alerts per (event, risk)."""

from __future__ import annotations

from typing import Sequence

from riskintel.ai.classifier import RiskAssessment
from riskintel.db import AlertPayload, AlertRepository, ExternalEvent
from riskintel.utils import setup_logger

logger = setup_logger(__name__)

DEFAULT_MIN_CONFIDENCE = 0.6


def passes_confidence_gate(confidence: float, minimum: float = DEFAULT_MIN_CONFIDENCE) -> bool:
    return round(confidence, 4) >= minimum


class AlertWriter:
    def __init__(self, repository: AlertRepository, *, min_confidence: float = DEFAULT_MIN_CONFIDENCE) -> None:
        self._repository = repository
        self._min_confidence = min_confidence

    async def write(self, event: ExternalEvent, assessments: Sequence[RiskAssessment]) -> int:
        """Upsert one alert per gated assessment and return how many were written.

        Raises SupabaseError so the caller can count the event as failed.
        """
        written = 0
        for assessment in assessments:
            if not passes_confidence_gate(assessment.confidence, self._min_confidence):
                logger.debug(
                    "Skipping %s for event %s: confidence %.2f below %.2f",
                    assessment.risk_code,
                    event.id,
                    assessment.confidence,
                    self._min_confidence,
                )
                continue
            await self._repository.upsert_alert(
                AlertPayload(
                    event_id=event.id,
                    risk_code=assessment.risk_code,
                    organization_id=event.organization_id,
                    confidence_score=assessment.confidence,
                    suggested_likelihood_change=assessment.likelihood_change,
                    impact_change=assessment.impact_change,
                    reasoning=assessment.reasoning,
                    suggested_controls=list(assessment.suggested_controls),
                    impact_assessment=assessment.impact_assessment,
                )
            )
            written += 1
        if written:
            logger.info("✅ %d alerts written for event %s", written, event.id)
        return written
