"""Bounded per-event failure accounting."""

from __future__ import annotations

from riskintel.db import ExternalEvent, ExternalEventRepository, SupabaseError
from riskintel.utils import setup_logger

logger = setup_logger(__name__)

MAX_RETRIES = 3


class RetryTracker:
    def __init__(self, repository: ExternalEventRepository, *, max_retries: int = MAX_RETRIES) -> None:
        self._repository = repository
        self.max_retries = max_retries

    async def record_failure(self, event: ExternalEvent, error: BaseException) -> bool:
        """Count one failed attempt. Returns True when the event is now permanently failed."""
        attempts = event.retry_count + 1
        exhausted = attempts >= self.max_retries
        fields = {"retry_count": attempts}
        if exhausted:
            fields["relevance_checked"] = True
            fields["filter_reason"] = f"Analysis failed after {attempts} attempts: {error}"[:500]

        try:
            await self._repository.update_event(event.id, **fields)
        except SupabaseError as exc:
            logger.error("❌ Could not record failure for event %s: %s", event.id, exc)
            return exhausted

        event.retry_count = attempts
        if exhausted:
            event.relevance_checked = True
            logger.error("❌ Event %s permanently failed after %d attempts: %s", event.id, attempts, error)
        else:
            logger.warning("🔁 Event %s failed (attempt %d/%d): %s", event.id, attempts, self.max_retries, error)
        return exhausted
