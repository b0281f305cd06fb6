from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = "sqlite:///./autohunt.db"
    DB_STATEMENT_TIMEOUT_MS: int = 15000
    LOG_LEVEL: str = "INFO"

    # Scan scheduling
    ENABLE_SCAN_POLLING: bool = False
    SCAN_POLL_INTERVAL_MINUTES: int = 15
    SCAN_INTERVAL_MINUTES: int = 60      # per-hunt re-scan interval
    SCAN_BATCH_SIZE: int = 20            # hunts claimed per run
    SCAN_TIME_BUDGET_SECONDS: float = 120.0
    SCAN_CANDIDATE_LIMIT: int = 500
    SCAN_SCORING_WORKERS: int = 4
    SCAN_YEAR_WINDOW: int = 1

    # Listing source (falls back to the local listings table when unset)
    LISTING_SOURCE_URL: str | None = None
    LISTING_SOURCE_PAGE_SIZE: int = 100
    SOURCE_TIMEOUT_SECONDS: float = 20.0

    # Notifications
    SLACK_WEBHOOK_URL: str | None = None
    NOTIFY_TIMEOUT_SECONDS: float = 10.0
    NOTIFY_MAX_ATTEMPTS: int = 3
    NOTIFY_POLL_INTERVAL_MINUTES: int = 5

    STALE_LISTING_DAYS: int = 5
    FINGERPRINT_CACHE_TTL_SECONDS: float = 900.0
    CLASSIFIER_CACHE_SIZE: int = 5000

    MIN_PROVEN_SAMPLES: int = 3

    # Decision thresholds
    BUY_SCORE_MIN: float = 7.5
    WATCH_SCORE_MIN: float = 5.0
    MIN_GAP_ABS_BUY: int = 800
    MIN_GAP_PCT_BUY: float = 0.04      # 4%
    MIN_GAP_ABS_WATCH: int = 400
    MIN_GAP_PCT_WATCH: float = 0.02    # 2%
    MAX_LISTING_AGE_DAYS_BUY: int = 7
    MAX_LISTING_AGE_DAYS_WATCH: int = 14
    BUY_DISALLOWED_SOURCES: list[str] = Field(default_factory=lambda: [
        "gumtree_private",
        "facebook_marketplace",
    ])

    CONFIDENCE_HIGH_MIN: float = 7.0
    CONFIDENCE_MEDIUM_MIN: float = 5.5

    # Odometer band: base + pct * reference km
    KM_TOLERANCE_BASE: int = 10000
    KM_TOLERANCE_PCT: float = 0.10

    ALERT_COOLDOWN_HOURS: int = 24

settings = Settings()
