"""Runtime configuration loaded from the environment (.env supported)."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

from storyscout.errors import ConfigError


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

DEFAULT_PG_DSN = "dbname=storyscout user=storyscout password=storyscout host=localhost port=5432"

DAY_MS = 24 * 60 * 60 * 1000


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging for an entry point (workers, web app)."""
    lvl = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, lvl, logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str) -> List[str]:
    return [part.strip() for part in os.getenv(name, "").split(",") if part.strip()]


@dataclass
class Settings:
    """Pipeline settings. Every field has a default so tests can build one directly."""

    pg_dsn: str = DEFAULT_PG_DSN
    app_env: str = "development"

    # AI service
    openai_api_key: str = ""
    openai_base_url: str = ""
    classifier_model: str = "gpt-4o-mini"
    rating_model: str = "gpt-4o-mini"
    ai_timeout_seconds: float = 60.0

    # Engine
    classify_batch_size: int = 10
    rating_batch_size: int = 10
    min_rating_confidence: int = 75

    # Retry controller
    retry_attempts: int = 3
    retry_base_delay: float = 2.0
    retry_max_delay: float = 30.0

    # Lock manager
    lock_ttl_seconds: int = 1800

    # Limiters (window length in milliseconds, max requests per window)
    api_rate_window_ms: int = 60_000
    api_rate_max: int = 100
    trigger_rate_window_ms: int = 60_000
    trigger_rate_max: int = 5
    ai_rate_window_ms: int = 60_000
    ai_rate_max: int = 60
    send_quota_window_ms: int = DAY_MS
    send_quota_max: int = 20
    trust_proxy: bool = False
    rate_limit_exempt_ips: List[str] = field(default_factory=lambda: ["127.0.0.1", "::1", "::ffff:127.0.0.1"])

    # Sources
    group_ids: List[str] = field(default_factory=list)
    apify_token: str = ""
    apify_actor: str = "apify~facebook-posts-scraper"
    apify_results_limit: int = 20
    apify_timeout_seconds: int = 300
    browser_storage_state: str = "state/browser_state.json"
    headless: bool = True
    page_timeout_ms: int = 90_000
    scroll_iterations: int = 8

    # Worker schedules (minutes)
    ingest_interval_minutes: int = 30
    classify_interval_minutes: int = 3
    rating_interval_minutes: int = 15

    @property
    def is_production(self) -> bool:
        return self.app_env.strip().lower() == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        """Load and validate settings from environment variables."""
        load_dotenv()
        settings = cls(
            pg_dsn=os.getenv("PG_DSN", DEFAULT_PG_DSN),
            app_env=os.getenv("APP_ENV", "development"),
            openai_api_key=os.getenv("OPENAI_API_KEY", ""),
            openai_base_url=os.getenv("OPENAI_BASE_URL", ""),
            classifier_model=os.getenv("OPENAI_CLASSIFIER_MODEL", "gpt-4o-mini"),
            rating_model=os.getenv("OPENAI_RATING_MODEL", os.getenv("OPENAI_CLASSIFIER_MODEL", "gpt-4o-mini")),
            ai_timeout_seconds=float(os.getenv("AI_TIMEOUT_SECONDS", "60")),
            classify_batch_size=int(os.getenv("CLASSIFIER_BATCH_SIZE", "10")),
            rating_batch_size=int(os.getenv("RATING_BATCH_SIZE", "10")),
            min_rating_confidence=int(os.getenv("MIN_RATING_CONFIDENCE", "75")),
            retry_attempts=int(os.getenv("RETRY_ATTEMPTS", "3")),
            retry_base_delay=float(os.getenv("RETRY_BASE_DELAY", "2.0")),
            retry_max_delay=float(os.getenv("RETRY_MAX_DELAY", "30")),
            lock_ttl_seconds=int(os.getenv("LOCK_TTL_SECONDS", "1800")),
            api_rate_window_ms=int(os.getenv("API_RATE_WINDOW_MS", "60000")),
            api_rate_max=int(os.getenv("API_RATE_MAX", "100")),
            trigger_rate_window_ms=int(os.getenv("TRIGGER_RATE_WINDOW_MS", "60000")),
            trigger_rate_max=int(os.getenv("TRIGGER_RATE_MAX", "5")),
            ai_rate_window_ms=int(os.getenv("AI_RATE_WINDOW_MS", "60000")),
            ai_rate_max=int(os.getenv("AI_RATE_MAX", "60")),
            send_quota_window_ms=int(os.getenv("SEND_QUOTA_WINDOW_MS", str(DAY_MS))),
            send_quota_max=int(os.getenv("MAX_MESSAGES_PER_DAY", "20")),
            trust_proxy=_env_bool("TRUST_PROXY"),
            rate_limit_exempt_ips=_env_list("RATE_LIMIT_EXEMPT_IPS") or ["127.0.0.1", "::1", "::ffff:127.0.0.1"],
            group_ids=_env_list("GROUP_IDS"),
            apify_token=os.getenv("APIFY_TOKEN", ""),
            apify_actor=os.getenv("APIFY_ACTOR", "apify~facebook-posts-scraper"),
            apify_results_limit=int(os.getenv("APIFY_RESULTS_LIMIT", "20")),
            apify_timeout_seconds=int(os.getenv("APIFY_TIMEOUT_SECONDS", "300")),
            browser_storage_state=os.getenv("BROWSER_STORAGE_STATE", "state/browser_state.json"),
            headless=_env_bool("HEADLESS", True),
            page_timeout_ms=int(os.getenv("PAGE_TIMEOUT_MS", "90000")),
            scroll_iterations=int(os.getenv("SCROLL_ITERATIONS", "8")),
            ingest_interval_minutes=int(os.getenv("INGEST_INTERVAL_MINUTES", "30")),
            classify_interval_minutes=int(os.getenv("CLASSIFY_INTERVAL_MINUTES", "3")),
            rating_interval_minutes=int(os.getenv("RATING_INTERVAL_MINUTES", "15")),
        )
        settings._validate()
        return settings

    def _validate(self) -> None:
        errors = []

        for name in ("classify_batch_size", "rating_batch_size", "retry_attempts", "lock_ttl_seconds"):
            if getattr(self, name) < 1:
                errors.append(f"{name} must be >= 1")
        if not 0 <= self.min_rating_confidence <= 100:
            errors.append("MIN_RATING_CONFIDENCE must be within 0-100")
        if self.ai_timeout_seconds <= 0:
            errors.append("AI_TIMEOUT_SECONDS must be positive")
        if self.retry_base_delay < 0 or self.retry_max_delay < self.retry_base_delay:
            errors.append("RETRY_BASE_DELAY must be >= 0 and <= RETRY_MAX_DELAY")
        # The lock has to outlive a batch where every call runs into its timeout once.
        expected_batch = max(self.classify_batch_size, self.rating_batch_size) * self.ai_timeout_seconds
        if self.lock_ttl_seconds <= expected_batch:
            errors.append(
                f"LOCK_TTL_SECONDS ({self.lock_ttl_seconds}) must exceed the expected batch duration ({expected_batch:.0f}s)"
            )
        for prefix in ("api_rate", "trigger_rate", "ai_rate"):
            if getattr(self, f"{prefix}_window_ms") <= 0:
                errors.append(f"{prefix.upper()}_WINDOW_MS must be positive")
            if getattr(self, f"{prefix}_max") < 0:
                errors.append(f"{prefix.upper()}_MAX must be >= 0")
        if self.send_quota_window_ms <= 0 or self.send_quota_max < 0:
            errors.append("Send quota window must be positive and MAX_MESSAGES_PER_DAY >= 0")
        if self.openai_api_key and not self.openai_api_key.startswith(("sk-", "sk-proj-")) and not self.openai_base_url:
            errors.append("OPENAI_API_KEY appears to be invalid (wrong format)")

        if errors:
            raise ConfigError(errors)
