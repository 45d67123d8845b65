from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


FeedType = Literal["rss", "youtube", "reddit", "podcast"]
DiscoveryMethod = Literal["link_tag", "well_known", "direct", "youtube", "reddit", "directory", "search", "ai"]

FEED_TYPES: tuple[str, ...] = ("rss", "youtube", "reddit", "podcast")


class DiscoveredCandidate(BaseModel):
    type: FeedType
    title: str
    feed_url: str
    site_url: str | None = None
    icon_url: str | None = None
    description: str | None = None
    confidence: float = Field(..., ge=0.0, le=1.0)
    method: DiscoveryMethod
    is_active: bool | None = None
    last_post_date: datetime | None = None


class Enclosure(BaseModel):
    url: str
    type: str | None = None
    length: int | None = None


class RawArticle(BaseModel):
    guid: str
    title: str
    link: str | None = None
    author: str | None = None
    summary: str | None = None
    # Full HTML body (content:encoded / atom:content, else description)
    description: str | None = None
    pubdate: datetime | None = None
    enclosures: list[Enclosure] = Field(default_factory=list)
    image: str | None = None
    thumbnail: str | None = None


class ParsedFeed(BaseModel):
    title: str
    description: str | None = None
    link: str | None = None
    favicon: str | None = None
    articles: list[RawArticle] = Field(default_factory=list)
    is_podcast: bool = False
    youtube_channel_id: str | None = None


class NormalizedArticle(BaseModel):
    guid: str
    title: str
    url: str | None = None
    author: str | None = None
    summary: str | None = None
    content: str | None = None
    enclosure_url: str | None = None
    enclosure_type: str | None = None
    thumbnail_url: str | None = None
    published_at: datetime | None = None


class FeedRecord(BaseModel):
    id: int
    user_id: str
    url: str
    type: FeedType = "rss"
    title: str
    site_url: str | None = None
    icon_url: str | None = None
    icon_cached_path: str | None = None
    icon_cached_content_type: str | None = None
    description: str | None = None
    refresh_interval_minutes: int | None = None
    last_fetched_at: datetime | None = None
    next_fetch_at: datetime | None = None
    error_count: int = 0
    last_error: str | None = None
    last_error_at: datetime | None = None
    paused_at: datetime | None = None
    deleted_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class RefreshResult(BaseModel):
    success: bool
    new_articles: int = 0
    next_fetch_at: datetime | None = None
    error: str | None = None
    error_category: str | None = None


class CachedAsset(BaseModel):
    file_ref: str
    mime_type: str


class ActivityResult(BaseModel):
    is_active: bool
    last_post_date: datetime | None = None
    days_since_last_post: int | None = None


class AiSuggestion(BaseModel):
    url: str
    title: str | None = None
    reason: str | None = None


# --- API request bodies ---

class DiscoverUrlRequest(BaseModel):
    url: str = Field(..., min_length=1)


class SubscribeRequest(BaseModel):
    url: str = Field(..., min_length=1)
    title: str | None = None
    type: FeedType | None = None
    user_id: str = "default"
