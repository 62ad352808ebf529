from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """App-wide configuration pulled from environment variables or .env."""

    # Database
    db_user: str = "contribclub"
    db_password: str = "contribclub"
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "contribclub"
    database_url: str | None = None

    # GitHub
    github_token: str | None = None
    github_api_url: str = "https://api.github.com"
    github_raw_url: str = "https://raw.githubusercontent.com"
    github_org: str = "contributor-club"
    wiki_repo: str = "contrib.club.wiki"
    user_agent: str = "contrib-club-worker/1.0 (+https://contrib.club)"
    api_version: str = "2022-11-28"
    request_concurrency: int = 8

    # Cache tiers / cooldown (seconds)
    cache_ttl: float = 60 * 15
    rate_limit_cooldown: float = 60 * 15
    fallback_path: Path | None = None

    # Commit activity
    activity_ttl: float = 60 * 60 * 24
    activity_retry_ttl: float = 60 * 15
    activity_max_age: float = 60 * 60 * 24 * 2
    activity_attempts: int = 3
    activity_retry_delay: float = 2.0
    activity_window_days: int = 60
    activity_max_pages: int = 5

    # Cost-limited enrichment
    homepage_hydration_limit: int = 10

    # Reactions
    reaction_salt: str = ""

    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    @property
    def db_url(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+psycopg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )


@lru_cache()
def get_settings() -> Settings:  # pragma: no cover
    return Settings()
