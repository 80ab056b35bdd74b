"""Configuration loader for the risk intelligence scanner."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


class ConfigurationError(RuntimeError):
    """Raised when required environment configuration is missing."""


def _as_bool(value: str, default: bool = False) -> bool:
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on"}


def _default_ai_key(provider: str) -> str:
    explicit = os.getenv("AI_API_KEY", "").strip()
    if explicit:
        return explicit
    if provider == "openai":
        return os.getenv("OPENAI_API_KEY", "").strip()
    return os.getenv("ANTHROPIC_API_KEY", "").strip()


class Config:
    # Supabase
    SUPABASE_URL: str = os.getenv("SUPABASE_URL", "").strip()
    SUPABASE_SERVICE_KEY: str = os.getenv("SUPABASE_SERVICE_KEY", "").strip()
    SUPABASE_TIMEOUT_SECONDS: float = float(os.getenv("SUPABASE_TIMEOUT_SECONDS", "8"))

    # AI classifier
    AI_ENABLED: bool = _as_bool(os.getenv("AI_ENABLED", "true"), default=True)
    AI_PROVIDER: str = os.getenv("AI_PROVIDER", "anthropic").strip().lower()
    AI_MODEL_NAME: str = os.getenv("AI_MODEL_NAME", "claude-3-5-haiku-20241022").strip()
    AI_API_KEY: str = _default_ai_key(AI_PROVIDER)
    AI_BASE_URL: str = os.getenv("AI_BASE_URL", "https://api.openai.com/v1").strip()
    AI_TIMEOUT_SECONDS: float = float(os.getenv("AI_TIMEOUT_SECONDS", "25"))
    AI_MAX_RETRIES: int = int(os.getenv("AI_MAX_RETRIES", "1"))
    AI_RETRY_BACKOFF_SECONDS: float = float(os.getenv("AI_RETRY_BACKOFF_SECONDS", "1.5"))
    AI_MAX_CONCURRENCY: int = int(os.getenv("AI_MAX_CONCURRENCY", "2"))
    AI_MAX_TOKENS: int = int(os.getenv("AI_MAX_TOKENS", "1500"))

    # Feed fetching (hard caps)
    FEED_TIMEOUT_SECONDS: float = float(os.getenv("FEED_TIMEOUT_SECONDS", "10"))
    FEED_CONCURRENCY: int = int(os.getenv("FEED_CONCURRENCY", "2"))
    MAX_FEEDS: int = int(os.getenv("MAX_FEEDS", "5"))
    ITEMS_PER_FEED: int = int(os.getenv("ITEMS_PER_FEED", "5"))
    MAX_AGE_DAYS: int = int(os.getenv("MAX_AGE_DAYS", "365"))
    FEED_USER_AGENT: str = os.getenv(
        "FEED_USER_AGENT", "RiskIntel/2.0 (Risk Intelligence Monitor)"
    )

    # Classification
    BATCH_SIZE: int = int(os.getenv("BATCH_SIZE", "3"))
    BATCH_DELAY_SECONDS: float = float(os.getenv("BATCH_DELAY_SECONDS", "1.0"))
    MAX_EVENTS_PER_RUN: int = int(os.getenv("MAX_EVENTS_PER_RUN", "30"))
    MIN_ALERT_CONFIDENCE: float = float(os.getenv("MIN_ALERT_CONFIDENCE", "0.6"))
    DEDUP_SIMILARITY_THRESHOLD: float = float(os.getenv("DEDUP_SIMILARITY_THRESHOLD", "0.7"))
    DEDUP_WINDOW_DAYS: int = int(os.getenv("DEDUP_WINDOW_DAYS", "7"))
    DEDUP_RECENT_LIMIT: int = int(os.getenv("DEDUP_RECENT_LIMIT", "100"))
    CACHE_TTL_DAYS: int = int(os.getenv("CACHE_TTL_DAYS", "7"))
    MAX_RETRIES: int = int(os.getenv("MAX_RETRIES", "3"))

    # HTTP trigger
    API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.getenv("API_PORT", "8000"))

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def validate(cls) -> bool:
        """Ensure required config values exist."""
        required_values = [
            ("SUPABASE_URL", cls.SUPABASE_URL),
            ("SUPABASE_SERVICE_KEY", cls.SUPABASE_SERVICE_KEY),
        ]
        missing = [name for name, value in required_values if not value]
        if missing:
            raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")

        if cls.BATCH_SIZE < 1 or cls.FEED_CONCURRENCY < 1:
            raise ConfigurationError("BATCH_SIZE and FEED_CONCURRENCY must be at least 1")

        if cls.AI_ENABLED and not cls.AI_API_KEY:
            logger.warning("⚠️ AI is enabled but no API key is configured; uncached events will stay pending")
        return True

    @classmethod
    def summary(cls) -> Dict[str, Any]:
        return {
            "ai_provider": cls.AI_PROVIDER if cls.AI_ENABLED else "disabled",
            "ai_model": cls.AI_MODEL_NAME,
            "max_feeds": cls.MAX_FEEDS,
            "items_per_feed": cls.ITEMS_PER_FEED,
            "feed_concurrency": cls.FEED_CONCURRENCY,
            "batch_size": cls.BATCH_SIZE,
            "batch_delay_seconds": cls.BATCH_DELAY_SECONDS,
            "min_alert_confidence": cls.MIN_ALERT_CONFIDENCE,
            "max_retries": cls.MAX_RETRIES,
        }
