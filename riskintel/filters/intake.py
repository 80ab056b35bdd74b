"""Intake filter: language, age and keyword screening, then bulk storage."""

from __future__ import annotations

import unicodedata
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from riskintel.db import (
    ExternalEvent,
    ExternalEventPayload,
    ExternalEventRepository,
    FeedItem,
    SupabaseError,
)
from riskintel.utils import contains_keywords, setup_logger, strip_html, truncate, utc_now

from .keywords import categorize_event

logger = setup_logger(__name__)

TITLE_MAX_LENGTH = 500
SUMMARY_MAX_LENGTH = 2000
NON_LATIN_THRESHOLD = 0.4
MIN_LANGUAGE_SAMPLE = 20


@dataclass
class IntakeStats:
    total: int = 0
    filtered_language: int = 0
    filtered_too_old: int = 0
    filtered_no_keywords: int = 0
    duplicates: int = 0
    stored: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class IntakeResult:
    events: List[ExternalEvent] = field(default_factory=list)
    stats: IntakeStats = field(default_factory=IntakeStats)


def _is_latin_letter(char: str) -> bool:
    try:
        return unicodedata.name(char).startswith("LATIN")
    except ValueError:
        return False


def is_target_language(text: str) -> bool:
    """Heuristic English check: reject text where over 40% of letters are non-Latin."""
    cleaned = strip_html(text)
    if len(cleaned) < MIN_LANGUAGE_SAMPLE:
        return True
    letters = [char for char in cleaned if char.isalpha()]
    if not letters:
        return True
    non_latin = sum(1 for char in letters if not _is_latin_letter(char))
    return non_latin / len(letters) <= NON_LATIN_THRESHOLD


def is_within_age(published_at: datetime, now: datetime, max_age_days: int) -> bool:
    return published_at >= now - timedelta(days=max_age_days)


class IntakeFilter:
    """Screens fetched items and stores the survivors as external events."""

    def __init__(
        self,
        repository: ExternalEventRepository,
        *,
        max_age_days: int = 365,
    ) -> None:
        self._repository = repository
        self._max_age_days = max_age_days

    def screen(
        self,
        item: FeedItem,
        keywords: Sequence[str],
        stats: IntakeStats,
        now: datetime,
    ) -> bool:
        text = f"{item.title} {item.summary}"
        if not is_target_language(text):
            stats.filtered_language += 1
            logger.debug("Filtered (language): %s", item.title[:60])
            return False
        if not is_within_age(item.published_at, now, self._max_age_days):
            stats.filtered_too_old += 1
            logger.debug("Filtered (age %s): %s", item.published_at.date(), item.title[:60])
            return False
        if not contains_keywords(text, keywords):
            stats.filtered_no_keywords += 1
            logger.debug("Filtered (no keywords): %s", item.title[:60])
            return False
        return True

    @staticmethod
    def to_payload(item: FeedItem, organization_id: str, now: datetime) -> ExternalEventPayload:
        return ExternalEventPayload(
            organization_id=organization_id,
            source=item.source_name,
            event_type=categorize_event(item.title, item.summary),
            title=truncate(item.title, TITLE_MAX_LENGTH),
            summary=truncate(item.summary, SUMMARY_MAX_LENGTH),
            url=item.link,
            published_date=item.published_at,
            fetched_at=now,
        )

    async def ingest(
        self,
        items: Sequence[FeedItem],
        organization_id: str,
        keywords: Sequence[str],
        *,
        now: Optional[datetime] = None,
    ) -> IntakeResult:
        now = now or utc_now()
        result = IntakeResult()
        stats = result.stats
        stats.total = len(items)

        candidates: Dict[str, ExternalEventPayload] = {}
        for item in items:
            if not self.screen(item, keywords, stats, now):
                continue
            if item.link in candidates:
                stats.duplicates += 1
                continue
            candidates[item.link] = self.to_payload(item, organization_id, now)

        if not candidates:
            return result

        try:
            existing = await self._repository.find_existing_urls(organization_id, candidates.keys())
        except SupabaseError as exc:
            # Storing without the check would insert guaranteed duplicates.
            stats.errors += 1
            logger.error("❌ URL existence check failed, skipping storage of %d events: %s", len(candidates), exc)
            return result

        fresh = [payload for url, payload in candidates.items() if url not in existing]
        stats.duplicates += len(candidates) - len(fresh)
        if not fresh:
            logger.info("ℹ️ All %d candidate events already stored", len(candidates))
            return result

        try:
            result.events = await self._repository.insert_events(fresh)
        except SupabaseError as exc:
            stats.errors += 1
            logger.error("❌ Bulk insert of %d events failed: %s", len(fresh), exc)
            return result

        stats.stored = len(result.events)
        logger.info(
            "✅ Intake: %d items, %d stored, %d duplicates, filtered lang=%d age=%d keywords=%d",
            stats.total,
            stats.stored,
            stats.duplicates,
            stats.filtered_language,
            stats.filtered_too_old,
            stats.filtered_no_keywords,
        )
        return result
