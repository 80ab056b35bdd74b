"""Source registry: configured feeds per organization with a built-in fallback."""

from __future__ import annotations

from typing import List, Optional

from riskintel.db import FeedSource, SourceRepository, SupabaseError
from riskintel.utils import setup_logger

logger = setup_logger(__name__)


DEFAULT_FEED_SOURCES: List[FeedSource] = [
    FeedSource(name="Central Bank of Nigeria", url="https://www.cbn.gov.ng/rss/news.xml", category="regulatory"),
    FeedSource(name="SEC Nigeria", url="https://sec.gov.ng/feed/", category="regulatory"),
    FeedSource(name="FMDQ Group", url="https://fmdqgroup.com/feed/", category="market"),
    FeedSource(name="BusinessDay Nigeria", url="https://businessday.ng/feed/", category="business"),
    FeedSource(name="The Guardian Nigeria", url="https://guardian.ng/feed/", category="business"),
    FeedSource(name="Premium Times", url="https://www.premiumtimesng.com/feed", category="business"),
    FeedSource(name="US-CERT Alerts", url="https://www.cisa.gov/cybersecurity-advisories/all.xml", category="cybersecurity"),
    FeedSource(name="SANS ISC", url="https://isc.sans.edu/rssfeed.xml", category="cybersecurity"),
    FeedSource(name="UN Environment", url="https://www.unep.org/news-and-stories/rss.xml", category="environmental"),
]


class SourceRegistry:
    """Resolves which feeds to scan for an organization."""

    def __init__(
        self,
        repository: Optional[SourceRepository],
        *,
        defaults: Optional[List[FeedSource]] = None,
    ) -> None:
        self._repository = repository
        self._defaults = list(defaults if defaults is not None else DEFAULT_FEED_SOURCES)

    async def load(self, organization_id: str) -> List[FeedSource]:
        if self._repository is None:
            return list(self._defaults)
        try:
            sources = await self._repository.list_active(organization_id)
        except SupabaseError as exc:
            logger.error("❌ Failed to load feed sources for org=%s: %s, using defaults", organization_id, exc)
            return list(self._defaults)

        if not sources:
            logger.info("⚠️ No active feed sources for org=%s, using %d defaults", organization_id, len(self._defaults))
            return list(self._defaults)

        logger.info("✅ Loaded %d active feed sources for org=%s", len(sources), organization_id)
        return sources
