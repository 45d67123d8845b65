from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field, model_validator


DEFAULT_USER_AGENT = "Feeds/1.0 (Feed Reader; +https://github.com/feedpipe/feedpipe)"
BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)


class Settings(BaseModel):
    """
    Runtime configuration, built once per process and passed to each component.

    Nothing in feedpipe reads os.environ outside load_settings().
    """

    db_path: str = "./data/feeds.db"
    cache_dir: str | None = None

    user_agent: str = DEFAULT_USER_AGENT
    browser_user_agent: str = BROWSER_USER_AGENT

    feed_timeout_s: float = 30.0
    page_timeout_s: float = 15.0
    probe_timeout_s: float = 5.0
    activity_timeout_s: float = 15.0
    icon_timeout_s: float = 10.0
    fetch_attempts: int = Field(default=3, ge=1)
    retry_base_sleep_s: float = 0.5

    activity_threshold_weeks: int = Field(default=6, ge=1)
    default_refresh_interval_minutes: int = Field(default=30, ge=1)
    summary_max_chars: int = 500
    reddit_summary_max_chars: int = 200

    thumbnail_workers: int = Field(default=4, ge=1)
    thumbnail_batch_size: int = Field(default=10, ge=1)
    thumbnail_queue_size: int = Field(default=100, ge=1)
    max_asset_bytes: int = 5 * 1024 * 1024

    youtube_api_key: str | None = None
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"

    @model_validator(mode="after")
    def _default_cache_dir(self):
        if not self.cache_dir:
            self.cache_dir = str(Path(self.db_path).parent / "cache")
        return self


def _env_int(name: str) -> int | None:
    raw = os.environ.get(name)
    return int(raw) if raw not in (None, "") else None


def load_settings(**overrides) -> Settings:
    """
    Build Settings from the environment (call load_dotenv() first).

    Keyword overrides win over env vars; unset env vars fall back to model defaults.
    """
    env = {
        "db_path": os.environ.get("FEEDPIPE_DB_PATH"),
        "cache_dir": os.environ.get("FEEDPIPE_CACHE_DIR"),
        "user_agent": os.environ.get("FEEDPIPE_USER_AGENT"),
        "default_refresh_interval_minutes": _env_int("FEEDPIPE_REFRESH_INTERVAL_MINUTES"),
        "activity_threshold_weeks": _env_int("FEEDPIPE_ACTIVITY_THRESHOLD_WEEKS"),
        "thumbnail_workers": _env_int("FEEDPIPE_THUMBNAIL_WORKERS"),
        "youtube_api_key": os.environ.get("YOUTUBE_API_KEY"),
        "openai_api_key": os.environ.get("OPENAI_API_KEY"),
        "openai_model": os.environ.get("OPENAI_MODEL"),
    }
    values = {k: v for k, v in env.items() if v not in (None, "")}
    values.update(overrides)
    return Settings(**values)
