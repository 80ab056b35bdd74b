"""Utility helpers for logging, hashing, and text cleanup."""

from __future__ import annotations

import hashlib
import html
import logging
import os
import re
import sys
import unicodedata
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable, Optional
from urllib.parse import urlparse

import colorlog


_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _format_utc(record: logging.LogRecord, datefmt: Optional[str]) -> str:
    dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
    stamp = dt.strftime(datefmt or _DATE_FORMAT)
    return f"{stamp},{int(record.msecs):03d}"


class UtcFormatter(logging.Formatter):
    """Plain formatter that always renders timestamps in UTC."""

    def formatTime(self, record, datefmt=None):
        return _format_utc(record, datefmt)


class UtcColoredFormatter(colorlog.ColoredFormatter):
    """Colored console formatter with UTC timestamps."""

    def formatTime(self, record, datefmt=None):
        return _format_utc(record, datefmt)


class _MaxLevelFilter(logging.Filter):
    """Filter that only allows records up to a specific level."""

    def __init__(self, max_level: int) -> None:
        super().__init__()
        self._max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - logging helper
        return record.levelno <= self._max_level


def setup_logger(name: str, level: str = None) -> logging.Logger:
    """Configure a color logger that also writes to a rotating file in UTC."""
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if logger.handlers:
        return logger

    console_handler = colorlog.StreamHandler(stream=sys.stdout)
    console_handler.setLevel(logging.DEBUG)
    console_handler.addFilter(_MaxLevelFilter(logging.INFO))
    console_handler.setFormatter(
        UtcColoredFormatter(
            "%(log_color)s" + _LOG_FORMAT,
            datefmt=_DATE_FORMAT,
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "red,bg_white",
            },
        )
    )
    logger.addHandler(console_handler)

    stderr_handler = logging.StreamHandler(stream=sys.stderr)
    stderr_handler.setLevel(logging.WARNING)
    stderr_handler.setFormatter(UtcFormatter(_LOG_FORMAT, datefmt=_DATE_FORMAT))
    logger.addHandler(stderr_handler)

    log_dir = Path(os.getenv("LOG_DIR", "./logs"))
    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        log_dir / "app.log",
        maxBytes=5 * 1024 * 1024,
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setFormatter(UtcFormatter(_LOG_FORMAT, datefmt=_DATE_FORMAT))
    logger.addHandler(file_handler)

    return logger


def compute_sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")


def strip_html(text: Optional[str]) -> str:
    """Remove markup, decode entities, and collapse whitespace."""
    if not text:
        return ""
    cleaned = _TAG_RE.sub(" ", text)
    cleaned = html.unescape(cleaned)
    return _WS_RE.sub(" ", cleaned).strip()


def normalize_text(value: str) -> str:
    if not value:
        return ""
    return unicodedata.normalize("NFKC", value).lower()


def contains_keywords(text: str, keywords: Iterable[str]) -> list[str]:
    """Return the keywords found in text using case-insensitive substring match."""
    if not text:
        return []
    haystack = normalize_text(text)
    hits: list[str] = []
    for keyword in keywords:
        needle = normalize_text(keyword).strip()
        if needle and needle in haystack and keyword not in hits:
            hits.append(keyword)
    return hits


def truncate(value: Optional[str], limit: int) -> str:
    if not value:
        return ""
    return value if len(value) <= limit else value[:limit]


def extract_domain(url: str) -> str:
    """Return the host part of a URL without a leading www."""
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        return "unknown"
    if not host:
        return "unknown"
    return host[4:] if host.startswith("www.") else host


def parse_iso_datetime(value: object) -> Optional[datetime]:
    """Parse database timestamps into aware datetimes."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    text = str(value).strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
