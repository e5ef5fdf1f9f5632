from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Supabase
    SUPABASE_URL: str = ""
    SUPABASE_KEY: str = ""

    # Source credentials (an empty value disables that collector)
    REDDIT_CLIENT_ID: str = ""
    REDDIT_CLIENT_SECRET: str = ""
    TWITTER_BEARER_TOKEN: str = ""
    PRODUCT_HUNT_TOKEN: str = ""
    GITHUB_TOKEN: str = ""
    SERPAPI_KEY: str = ""

    # Search-interest backend: "serpapi" or "fixture"
    TRENDS_BACKEND: str = "fixture"

    # API auth
    API_KEY: str = ""

    # HTTP
    HTTP_TIMEOUT: float = 30.0
    USER_AGENT: str = "trendscout/0.1"

    # Processing
    BATCH_SIZE: int = 100
    MAX_CONCURRENCY: int = 5
    RETENTION_DAYS: int = 90
    OBSERVATION_BUCKET_MINUTES: int = 60
    INSIGHT_RETRACTION_POLICY: str = "keep"  # keep | retract
    REALTIME_WINDOW_MINUTES: int = 5

    # Scheduler
    SCHEDULER_ENABLED: bool = True
    BATCH_INTERVAL_MINUTES: int = 60
    ANALYZE_INTERVAL_MINUTES: int = 30
    REALTIME_INTERVAL_SECONDS: int = 60
    COLLECTION_CRON_HOUR: int = 5
    WATCHLIST: str = ""  # comma-separated theme names for the daily collection

    # Paths
    SOURCES_DIR: Path = BASE_DIR / "sources"

    @property
    def watchlist_themes(self) -> list[str]:
        return [t.strip() for t in self.WATCHLIST.split(",") if t.strip()]


settings = Settings()
