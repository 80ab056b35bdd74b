"""Feed source registry and fetcher."""

from .fetcher import FeedFetcher, FeedFetchError, FeedFetchResult, parse_feed
from .sources import DEFAULT_FEED_SOURCES, SourceRegistry

__all__ = [
    "DEFAULT_FEED_SOURCES",
    "FeedFetchError",
    "FeedFetchResult",
    "FeedFetcher",
    "SourceRegistry",
    "parse_feed",
]
