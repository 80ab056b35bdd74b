import logging
from datetime import datetime, timezone

from riskintel.utils import (
    contains_keywords,
    extract_domain,
    parse_iso_datetime,
    setup_logger,
    strip_html,
    truncate,
)


def test_strip_html_decodes_entities_and_collapses_whitespace():
    assert strip_html("<p>Bank&nbsp;X   <b>fined</b> &amp; warned</p>") == "Bank X fined & warned"
    assert strip_html(None) == ""


def test_contains_keywords_is_case_insensitive():
    assert contains_keywords("CBN issues new DIRECTIVE", ["directive", "ransomware", "CBN"]) == ["directive", "CBN"]
    assert contains_keywords("", ["risk"]) == []


def test_extract_domain():
    assert extract_domain("https://www.example.com/a?b=1") == "example.com"
    assert extract_domain("https://news.example.org") == "news.example.org"
    assert extract_domain("not a url") == "unknown"


def test_truncate():
    assert truncate("abcdef", 3) == "abc"
    assert truncate("abc", 10) == "abc"
    assert truncate(None, 3) == ""


def test_parse_iso_datetime():
    assert parse_iso_datetime("2025-03-01T12:00:00Z") == datetime(2025, 3, 1, 12, tzinfo=timezone.utc)
    assert parse_iso_datetime("2025-03-01T12:00:00").tzinfo is not None
    assert parse_iso_datetime("garbage") is None
    assert parse_iso_datetime(None) is None


def test_setup_logger_splits_streams_and_writes_file(tmp_path, monkeypatch):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    logger = setup_logger("riskintel.tests.logger_split", level="DEBUG")

    assert logger.level == logging.DEBUG
    assert len(logger.handlers) == 3
    assert (tmp_path / "app.log").exists()
    # idempotent
    assert setup_logger("riskintel.tests.logger_split") is logger
    assert len(logger.handlers) == 3
