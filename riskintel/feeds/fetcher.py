"""Feed fetcher: retrieve one RSS/Atom feed and normalize its items."""

from __future__ import annotations

import asyncio
import calendar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Dict, List, Optional, Sequence

import feedparser
import httpx

from riskintel.db import FeedItem, FeedSource, SourceRepository, SourceScanRecord, SupabaseError
from riskintel.utils import setup_logger, strip_html, utc_now

logger = setup_logger(__name__)


class FeedFetchError(Exception):
    """Source-level failure. Returned inside FeedFetchResult, never raised to callers."""


@dataclass
class FeedFetchResult:
    source: FeedSource
    items: List[FeedItem] = field(default_factory=list)
    error: Optional[FeedFetchError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _entry_datetime(entry: feedparser.FeedParserDict) -> Optional[datetime]:
    for key in ("published_parsed", "updated_parsed"):
        parsed = entry.get(key)
        if parsed:
            return datetime.fromtimestamp(calendar.timegm(parsed), tz=timezone.utc)
    raw = entry.get("published") or entry.get("updated") or ""
    if not raw:
        return None
    try:
        value = parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        try:
            value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _entry_summary(entry: feedparser.FeedParserDict) -> str:
    summary = entry.get("summary") or entry.get("description") or ""
    if not summary and entry.get("content"):
        for content in entry.content:
            if content.get("value", "").strip():
                summary = content["value"]
                break
    return strip_html(summary)


def parse_feed(
    content: str | bytes,
    source: FeedSource,
    *,
    max_items: int,
    now: Optional[datetime] = None,
) -> List[FeedItem]:
    """Parse RSS 2.0 or Atom content into at most ``max_items`` newest items.

    Missing titles become "Untitled", missing dates become ``now`` and entries
    without a link are skipped. Raises FeedFetchError only when the document is
    malformed and yields no entries at all.
    """
    now = now or utc_now()
    parsed = feedparser.parse(content)
    if parsed.get("bozo") and not parsed.entries:
        reason = parsed.get("bozo_exception")
        raise FeedFetchError(f"Unparseable feed: {reason}")

    items: List[FeedItem] = []
    for entry in parsed.entries:
        link = (entry.get("link") or entry.get("id") or "").strip()
        if not link.startswith(("http://", "https://")):
            continue
        items.append(
            FeedItem(
                title=strip_html(entry.get("title")) or "Untitled",
                summary=_entry_summary(entry),
                link=link,
                published_at=_entry_datetime(entry) or now,
                source_name=source.name,
                source_category=source.category,
            )
        )

    items.sort(key=lambda item: item.published_at, reverse=True)
    return items[:max_items]


class FeedFetcher:
    """Fetches feeds with per-call timeouts and records per-source scan stats."""

    def __init__(
        self,
        *,
        timeout: float = 10.0,
        user_agent: str = "RiskIntel/2.0 (Risk Intelligence Monitor)",
        items_per_feed: int = 5,
        source_repository: Optional[SourceRepository] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeout = timeout
        self._user_agent = user_agent
        self._items_per_feed = items_per_feed
        self._source_repository = source_repository
        self._transport = transport
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, source: FeedSource) -> asyncio.Lock:
        key = source.id or source.url
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def fetch(self, source: FeedSource, *, organization_id: Optional[str] = None) -> FeedFetchResult:
        async with self._lock_for(source):
            result = await self._fetch_unlocked(source)
            await self._record(source, result, organization_id)
            return result

    async def fetch_all(
        self,
        sources: Sequence[FeedSource],
        *,
        concurrency: int = 2,
        organization_id: Optional[str] = None,
    ) -> List[FeedFetchResult]:
        semaphore = asyncio.Semaphore(max(1, concurrency))

        async def _bounded(source: FeedSource) -> FeedFetchResult:
            async with semaphore:
                return await self.fetch(source, organization_id=organization_id)

        return list(await asyncio.gather(*(_bounded(source) for source in sources)))

    async def _fetch_unlocked(self, source: FeedSource) -> FeedFetchResult:
        max_items = source.max_items or self._items_per_feed
        headers = {
            "User-Agent": self._user_agent,
            "Accept": "application/rss+xml, application/atom+xml, application/xml, text/xml;q=0.9, */*;q=0.8",
        }
        logger.info("📰 Fetching feed %s (%s)", source.name, source.url)
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                response = await client.get(source.url, headers=headers)
        except httpx.TimeoutException:
            return FeedFetchResult(source, error=FeedFetchError(f"Timed out after {self._timeout:.0f}s"))
        except httpx.HTTPError as exc:
            return FeedFetchResult(source, error=FeedFetchError(f"Request failed: {exc}"))

        if not response.is_success:
            return FeedFetchResult(
                source,
                error=FeedFetchError(f"HTTP {response.status_code}: {response.reason_phrase}"),
            )

        try:
            items = parse_feed(response.content, source, max_items=max_items)
        except FeedFetchError as exc:
            return FeedFetchResult(source, error=exc)

        logger.info("✅ %s: %d items", source.name, len(items))
        return FeedFetchResult(source, items=items)

    async def _record(self, source: FeedSource, result: FeedFetchResult, organization_id: Optional[str]) -> None:
        if not result.ok:
            logger.warning("⚠️ Feed %s failed: %s", source.name, result.error)
        if self._source_repository is None:
            return
        record = SourceScanRecord(
            source_id=source.id,
            organization_id=organization_id,
            source_name=source.name,
            source_url=source.url,
            status="success" if result.ok else "failed",
            items_found=len(result.items),
            error=str(result.error) if result.error else None,
            scanned_at=utc_now(),
        )
        try:
            await self._source_repository.record_scan(record)
        except SupabaseError as exc:
            logger.warning("⚠️ Could not record scan stats for %s: %s", source.name, exc)
