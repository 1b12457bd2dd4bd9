# rentscout/config.py
"""Runtime settings loaded from the environment (and `.env` via python-dotenv).

Everything tunable about a crawl pass lives here: search filters, politeness,
timeouts, credentials, sweep thresholds and match scoring knobs.
"""
import os
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()


def _bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _opt_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    return float(raw) if raw not in (None, "") else None


def _list(name: str, default: str = "") -> List[str]:
    return [p.strip() for p in os.getenv(name, default).split(",") if p.strip()]


class Settings:
    """Crawler configuration. Instantiate to re-read the environment."""

    def __init__(self):
        # Storage
        self.DATABASE_URL: str = os.getenv("DATABASE_URL") or os.getenv("POSTGRES_URL") or "sqlite:///./rentscout.db"
        self.DB_POOL_SIZE: int = int(os.getenv("DB_POOL_SIZE", "5"))
        self.DB_MAX_OVERFLOW: int = int(os.getenv("DB_MAX_OVERFLOW", "10"))

        # Logging
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

        # Search filters
        self.BASE_URL: str = os.getenv("WG_GESUCHT_BASE_URL", "https://www.wg-gesucht.de")
        self.CITY: str = os.getenv("CITY", "Berlin")
        self.CITY_ID: int = int(os.getenv("CITY_ID", "8"))
        self.SEARCH_MIN_RENT: Optional[float] = _opt_float("SEARCH_MIN_RENT")
        self.SEARCH_MAX_RENT: Optional[float] = _opt_float("SEARCH_MAX_RENT")
        self.SEARCH_PROPERTY_TYPES: List[str] = _list("SEARCH_PROPERTY_TYPES")
        self.SEARCH_DISTRICTS: List[str] = _list("SEARCH_DISTRICTS")
        self.MAX_PAGES: int = int(os.getenv("MAX_PAGES", "3"))
        self.SCRAPE_MAX_ITEMS: int = int(os.getenv("SCRAPE_MAX_ITEMS", "200"))

        # Browser and politeness
        self.HEADLESS: bool = _bool("HEADLESS", "1")
        self.CRAWL_CONCURRENCY: int = int(os.getenv("CRAWL_CONCURRENCY", "2"))
        self.REQUEST_DELAY: float = float(os.getenv("REQUEST_DELAY", "2.0"))
        self.BATCH_SIZE: int = int(os.getenv("BATCH_SIZE", "10"))
        self.BATCH_DELAY: float = float(os.getenv("BATCH_DELAY", "12.0"))
        self.HTTP_TIMEOUT: float = float(os.getenv("HTTP_TIMEOUT", "30"))
        self.HTTP_RETRIES: int = int(os.getenv("HTTP_RETRIES", "3"))
        self.RETRY_DELAY: float = float(os.getenv("RETRY_DELAY", "2.0"))
        self.RETRY_MAX_DELAY: float = float(os.getenv("RETRY_MAX_DELAY", "30.0"))
        self.DETAIL_TIMEOUT_MS: int = int(os.getenv("DETAIL_TIMEOUT_MS", "45000"))
        self.ZERO_RESULT_ESCALATION_MIN: int = int(os.getenv("ZERO_RESULT_ESCALATION_MIN", "5"))

        # Authenticated extraction
        self.WG_GESUCHT_EMAIL: Optional[str] = os.getenv("WG_GESUCHT_EMAIL")
        self.WG_GESUCHT_PASSWORD: Optional[str] = os.getenv("WG_GESUCHT_PASSWORD")
        self.SESSION_STATE_FILE: str = os.getenv("SESSION_STATE_FILE", ".rentscout_session.json")
        self.SESSION_TTL_HOURS: float = float(os.getenv("SESSION_TTL_HOURS", "24"))

        # Sweep
        self.STALE_MISSED_PASSES: int = int(os.getenv("STALE_MISSED_PASSES", "3"))
        self.AVAILABILITY_GRACE_DAYS: int = int(os.getenv("AVAILABILITY_GRACE_DAYS", "30"))

        # Listings with no images or missing core fields, re-visited per pass
        self.REFETCH_BATCH: int = int(os.getenv("REFETCH_BATCH", "10"))

        # Matching
        self.MATCH_THRESHOLD: int = int(os.getenv("MATCH_THRESHOLD", "60"))
        self.RENT_DECAY_PCT: float = float(os.getenv("RENT_DECAY_PCT", "0.20"))
        self.RENT_HARD_CEILING_PCT: float = float(os.getenv("RENT_HARD_CEILING_PCT", "0.30"))

        # Images
        self.MAX_IMAGES: int = int(os.getenv("MAX_IMAGES", "20"))
        self.IMAGE_BASE_URL: str = os.getenv("IMAGE_BASE_URL", "https://img.wg-gesucht.de/")

        # Scheduler
        self.SCHEDULER_ENABLED: bool = _bool("SCHEDULER_ENABLED", "0")
        self.CRAWL_INTERVAL_HOURS: float = float(os.getenv("CRAWL_INTERVAL_HOURS", "1"))

    def has_credentials(self) -> bool:
        return bool(self.WG_GESUCHT_EMAIL and self.WG_GESUCHT_PASSWORD)


settings = Settings()
