"""Feed fetching against mocked HTTP responses."""

from datetime import datetime, timezone

import httpx
import pytest

from riskintel.db import FeedSource, SourceRepository
from riskintel.feeds import DEFAULT_FEED_SOURCES, FeedFetcher, SourceRegistry, parse_feed

RSS = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"><channel><title>Test</title>
  <item><title>Older story</title><link>https://news.test/1</link>
    <description>&lt;p&gt;Bank &lt;b&gt;fined&lt;/b&gt;&lt;/p&gt;</description>
    <pubDate>Mon, 03 Feb 2025 08:00:00 GMT</pubDate></item>
  <item><title>Newest story</title><link>https://news.test/3</link>
    <pubDate>Wed, 05 Feb 2025 08:00:00 GMT</pubDate></item>
  <item><title>Middle story</title><link>https://news.test/2</link>
    <pubDate>Tue, 04 Feb 2025 08:00:00 GMT</pubDate></item>
  <item><title>No link here</title></item>
</channel></rss>"""

ATOM = b"""<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom"><title>Atom Test</title>
  <entry><title>Advisory published</title>
    <link href="https://cert.test/advisory/1"/>
    <id>urn:uuid:1</id>
    <updated>2025-02-06T10:30:00Z</updated>
    <summary>Critical vulnerability in VPN appliance</summary></entry>
  <entry><id>urn:uuid:2</id><link href="https://cert.test/advisory/2"/></entry>
</feed>"""

SOURCE = FeedSource(id="src-1", name="Test Feed", url="https://feeds.test/rss", category="business")


def _fetcher(handler, fake_db=None, **kwargs):
    repository = SourceRepository(fake_db) if fake_db is not None else None
    return FeedFetcher(
        transport=httpx.MockTransport(handler),
        source_repository=repository,
        **kwargs,
    )


def test_parse_rss_sorts_newest_first_and_caps():
    items = parse_feed(RSS, SOURCE, max_items=2)
    assert [item.link for item in items] == ["https://news.test/3", "https://news.test/2"]
    assert items[0].published_at == datetime(2025, 2, 5, 8, 0, tzinfo=timezone.utc)
    assert items[0].source_name == "Test Feed"
    assert items[0].source_category == "business"


def test_parse_rss_strips_markup_from_summary():
    items = parse_feed(RSS, SOURCE, max_items=10)
    older = next(item for item in items if item.link == "https://news.test/1")
    assert older.summary == "Bank fined"
    assert len(items) == 3


def test_parse_atom_defaults_missing_fields():
    now = datetime(2025, 3, 1, tzinfo=timezone.utc)
    items = parse_feed(ATOM, SOURCE, max_items=10, now=now)
    by_link = {item.link: item for item in items}
    assert by_link["https://cert.test/advisory/1"].summary == "Critical vulnerability in VPN appliance"
    assert by_link["https://cert.test/advisory/1"].published_at == datetime(2025, 2, 6, 10, 30, tzinfo=timezone.utc)
    untitled = by_link["https://cert.test/advisory/2"]
    assert untitled.title == "Untitled"
    assert untitled.published_at == now


@pytest.mark.asyncio
async def test_fetch_success_records_scan(fake_db):
    fake_db.seed("rss_sources", {"id": "src-1", "name": "Test Feed", "url": SOURCE.url})
    seen = {}

    def handler(request):
        seen["user_agent"] = request.headers.get("user-agent", "")
        return httpx.Response(200, content=RSS, headers={"Content-Type": "application/rss+xml"})

    fetcher = _fetcher(handler, fake_db, items_per_feed=2)
    result = await fetcher.fetch(SOURCE, organization_id="org-1")

    assert result.ok
    assert len(result.items) == 2
    assert "RiskIntel" in seen["user_agent"]

    scan = fake_db.tables["rss_source_scans"][0]
    assert scan["status"] == "success"
    assert scan["items_found"] == 2
    assert scan["organization_id"] == "org-1"
    source_row = fake_db.tables["rss_sources"][0]
    assert source_row["last_scan_status"] == "success"
    assert source_row["last_scanned_at"]


@pytest.mark.asyncio
async def test_source_max_items_overrides_default():
    source = FeedSource(name="Capped", url="https://feeds.test/capped", max_items=1)
    fetcher = _fetcher(lambda request: httpx.Response(200, content=RSS), items_per_feed=5)

    result = await fetcher.fetch(source)

    assert [item.link for item in result.items] == ["https://news.test/3"]


@pytest.mark.asyncio
async def test_http_error_is_returned_and_recorded(fake_db):
    fetcher = _fetcher(lambda request: httpx.Response(500, text="boom"), fake_db)

    result = await fetcher.fetch(SOURCE, organization_id="org-1")

    assert not result.ok
    assert "HTTP 500" in str(result.error)
    scan = fake_db.tables["rss_source_scans"][0]
    assert scan["status"] == "failed"
    assert scan["items_found"] == 0
    assert "HTTP 500" in scan["error"]


@pytest.mark.asyncio
async def test_timeout_is_returned_not_raised(fake_db):
    def handler(request):
        raise httpx.ReadTimeout("too slow", request=request)

    fetcher = _fetcher(handler, fake_db, timeout=10)
    result = await fetcher.fetch(SOURCE)

    assert not result.ok
    assert "Timed out after 10s" in str(result.error)
    assert fake_db.tables["rss_source_scans"][0]["status"] == "failed"


@pytest.mark.asyncio
async def test_malformed_document_is_a_source_failure():
    fetcher = _fetcher(lambda request: httpx.Response(200, content=b"this is not a feed at all"))

    result = await fetcher.fetch(SOURCE)

    assert not result.ok
    assert "Unparseable feed" in str(result.error)


@pytest.mark.asyncio
async def test_scan_log_failure_does_not_break_fetch(fake_db):
    fake_db.failing.add("rss_source_scans")
    fetcher = _fetcher(lambda request: httpx.Response(200, content=RSS), fake_db)

    result = await fetcher.fetch(SOURCE)

    assert result.ok


@pytest.mark.asyncio
async def test_fetch_all_keeps_going_after_a_failing_source():
    good = FeedSource(name="Good", url="https://feeds.test/good")
    bad = FeedSource(name="Bad", url="https://feeds.test/bad")

    def handler(request):
        if request.url.path == "/bad":
            return httpx.Response(503)
        return httpx.Response(200, content=ATOM)

    results = await _fetcher(handler).fetch_all([bad, good], concurrency=2)

    assert [result.source.name for result in results] == ["Bad", "Good"]
    assert not results[0].ok
    assert results[1].ok and len(results[1].items) == 2


@pytest.mark.asyncio
async def test_registry_prefers_configured_sources(fake_db):
    fake_db.seed(
        "rss_sources",
        {"organization_id": "org-1", "is_active": True, "name": "Mine", "url": "https://mine.test/rss", "created_at": "2025-01-01"},
        {"organization_id": "org-1", "is_active": False, "name": "Off", "url": "https://off.test/rss", "created_at": "2025-01-02"},
    )
    sources = await SourceRegistry(SourceRepository(fake_db)).load("org-1")
    assert [source.name for source in sources] == ["Mine"]


@pytest.mark.asyncio
async def test_registry_falls_back_to_defaults(fake_db):
    registry = SourceRegistry(SourceRepository(fake_db))
    assert await registry.load("org-1") == DEFAULT_FEED_SOURCES

    fake_db.failing.add("rss_sources")
    assert len(await registry.load("org-1")) == len(DEFAULT_FEED_SOURCES)
