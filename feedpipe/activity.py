from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Literal
from urllib.parse import parse_qs, quote, urlsplit

from feedpipe import http_fetch
from feedpipe.config import Settings
from feedpipe.feed_parse import parse_feed_document
from feedpipe.logging_utils import log_event
from feedpipe.schemas import ActivityResult


ActivityKind = Literal["rss", "podcast", "youtube", "reddit"]

YOUTUBE_SEARCH_LATEST = (
    "https://www.googleapis.com/youtube/v3/search?part=snippet&channelId={id}"
    "&order=date&maxResults=1&type=video&key={key}"
)
YOUTUBE_CHANNEL_FEED = "https://www.youtube.com/feeds/videos.xml?channel_id={id}"
RSS_SAMPLE_SIZE = 10

_REDDIT_NAME_RE = re.compile(r"(?:^|/)(r|u|user)/([A-Za-z0-9_-]+)")


def classify_activity(last_post: datetime | None, settings: Settings, now: datetime | None = None) -> ActivityResult:
    """Active when the newest post is within the staleness threshold. No dated post -> active."""
    if last_post is None:
        return ActivityResult(is_active=True)
    now = now or datetime.now(timezone.utc)
    age = now - last_post
    return ActivityResult(
        is_active=age <= timedelta(weeks=settings.activity_threshold_weeks),
        last_post_date=last_post,
        days_since_last_post=max(age.days, 0),
    )


def _latest_feed_post(feed_url: str, settings: Settings) -> datetime | None:
    resp = http_fetch.fetch(feed_url, timeout_s=settings.activity_timeout_s, user_agent=settings.user_agent)
    parsed = parse_feed_document(resp.body, feed_url=feed_url)
    dates = [a.pubdate for a in parsed.articles[:RSS_SAMPLE_SIZE] if a.pubdate]
    return max(dates) if dates else None


def _youtube_channel_id(identifier: str) -> str | None:
    if identifier.startswith("UC"):
        return identifier
    values = parse_qs(urlsplit(identifier).query).get("channel_id")
    return values[0] if values else None


def _latest_youtube_post(identifier: str, settings: Settings) -> datetime | None:
    channel_id = _youtube_channel_id(identifier)

    if channel_id and settings.youtube_api_key:
        url = YOUTUBE_SEARCH_LATEST.format(id=quote(channel_id), key=quote(settings.youtube_api_key))
        data = http_fetch.get_json(url, timeout_s=settings.activity_timeout_s, user_agent=settings.user_agent)
        items = data.get("items") or []
        if not items:
            return None
        published = items[0]["snippet"]["publishedAt"]
        return datetime.fromisoformat(published.replace("Z", "+00:00"))

    # No API key (or a playlist feed): read the public videos.xml feed
    feed_url = YOUTUBE_CHANNEL_FEED.format(id=channel_id) if channel_id and "://" not in identifier else identifier
    return _latest_feed_post(feed_url, settings)


def _latest_reddit_post(identifier: str, settings: Settings) -> datetime | None:
    match = _REDDIT_NAME_RE.search(identifier)
    if match:
        kind, name = match.group(1), match.group(2)
    else:
        kind, name = "r", identifier.strip("/")

    if kind == "r":
        url = f"https://www.reddit.com/r/{quote(name)}/new.json?limit=1"
    else:
        url = f"https://www.reddit.com/user/{quote(name)}/submitted.json?limit=1"

    data = http_fetch.get_json(url, timeout_s=settings.activity_timeout_s, user_agent=settings.user_agent)
    children = (data.get("data") or {}).get("children") or []
    if not children:
        return None
    created = children[0]["data"]["created_utc"]
    return datetime.fromtimestamp(float(created), tz=timezone.utc)


def check_activity(identifier: str, kind: ActivityKind, settings: Settings, *, now: datetime | None = None) -> ActivityResult:
    """
    Probe a feed/channel/subreddit for its most recent post.

    Contract:
    - ALWAYS returns an ActivityResult (never raises)
    - Any probe failure is reported as active (fail open)
    """
    try:
        if kind == "youtube":
            last_post = _latest_youtube_post(identifier, settings)
        elif kind == "reddit":
            last_post = _latest_reddit_post(identifier, settings)
        else:
            last_post = _latest_feed_post(identifier, settings)
    except Exception as exc:
        log_event("activity_check_failed", identifier=identifier, kind=kind, error_type=type(exc).__name__, error=str(exc))
        return ActivityResult(is_active=True)

    result = classify_activity(last_post, settings, now=now)
    log_event("activity_checked", identifier=identifier, kind=kind, is_active=result.is_active,
              days_since_last_post=result.days_since_last_post)
    return result
