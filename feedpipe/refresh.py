from __future__ import annotations

import sqlite3
import time
from datetime import datetime, timedelta, timezone

from feedpipe.assets import AssetCache
from feedpipe.config import Settings
from feedpipe.discovery import DIRECT_FEED_TITLE, DISCOVERED_FEED_TITLE, LINK_TAG_DEFAULT_TITLE
from feedpipe.errors import classify_error, format_error
from feedpipe.feed_parse import DEFAULT_FEED_TITLE, detect_type, parse_feed
from feedpipe.icons import is_generic_icon_url
from feedpipe.logging_utils import log_event
from feedpipe.normalize import normalize_article
from feedpipe.repo import get_refresh_interval, insert_articles, mark_refresh_success, record_refresh_failure, set_icon_cache
from feedpipe.schemas import FeedRecord, ParsedFeed, RefreshResult
from feedpipe.thumbnail_queue import ThumbnailQueue


PLACEHOLDER_TITLES = {DIRECT_FEED_TITLE, DISCOVERED_FEED_TITLE, LINK_TAG_DEFAULT_TITLE, DEFAULT_FEED_TITLE}

# Failed refreshes wait this many intervals before the next attempt
FAILURE_BACKOFF_FACTOR = 2


def is_placeholder(value: str | None, feed_url: str) -> bool:
    return not value or value == feed_url or value in PLACEHOLDER_TITLES


def should_skip_icon_fetch(feed: FeedRecord) -> bool:
    """
    Skip platform icon lookups when an authentic icon is already stored and cached.

    YouTube feeds still holding a generic icon always retry, since the channel
    avatar lookup is the only way they get real art.
    """
    generic = is_generic_icon_url(feed.icon_url)
    if feed.type == "youtube" and generic:
        return False
    return not generic and bool(feed.icon_cached_path)


def effective_interval(conn: sqlite3.Connection, feed: FeedRecord, settings: Settings) -> int:
    """Feed's own interval, else the owner's default, else the configured default."""
    if feed.refresh_interval_minutes:
        return feed.refresh_interval_minutes
    try:
        owner_default = get_refresh_interval(conn, user_id=feed.user_id)
    except sqlite3.Error as exc:
        log_event("refresh_interval_lookup_failed", feed_id=feed.id, error=str(exc))
        owner_default = None
    return owner_default or settings.default_refresh_interval_minutes


def metadata_updates(feed: FeedRecord, parsed: ParsedFeed) -> dict:
    """Fields worth overwriting: only stored placeholders are replaced."""
    updates: dict = {}
    if is_placeholder(feed.title, feed.url) and parsed.title and parsed.title != DEFAULT_FEED_TITLE:
        updates["title"] = parsed.title
    if is_placeholder(feed.site_url, feed.url) and parsed.link:
        updates["site_url"] = parsed.link
    if not feed.description and parsed.description:
        updates["description"] = parsed.description
    if parsed.favicon and is_generic_icon_url(feed.icon_url) and parsed.favicon != feed.icon_url:
        updates["icon_url"] = parsed.favicon
    return updates


def refresh_feed(
    conn: sqlite3.Connection,
    feed: FeedRecord,
    *,
    settings: Settings,
    assets: AssetCache,
    thumbnails: ThumbnailQueue | None = None,
    now: datetime | None = None,
) -> RefreshResult:
    """
    Refresh one feed: parse, store new articles, update health and schedule.

    Contract:
    - ALWAYS returns a RefreshResult (never raises)
    - Success: error_count reset, next_fetch_at = now + interval
    - Failure: error_count + 1, last_error = "[category] message",
      next_fetch_at = now + 2 * interval, nothing else touched
    - The stored refresh_interval_minutes is never rewritten, so backoff does not compound
    """
    now = now or datetime.now(timezone.utc)
    t0 = time.perf_counter()
    interval = effective_interval(conn, feed, settings)

    try:
        skip_icon_fetch = should_skip_icon_fetch(feed)
        parsed = parse_feed(feed.url, settings, skip_icon_fetch=skip_icon_fetch)

        feed_type = feed.type
        if feed_type == "rss":
            feed_type = detect_type(feed.url, parsed)

        articles = [
            normalize_article(
                raw,
                feed_type,
                summary_max_chars=settings.summary_max_chars,
                reddit_summary_max_chars=settings.reddit_summary_max_chars,
            )
            for raw in parsed.articles
        ]
        inserted = insert_articles(conn, feed.id, articles)

        if thumbnails is not None:
            thumbnails.submit([(article_id, url) for article_id, url in inserted if url])

        updates = metadata_updates(feed, parsed)
        if not feed.icon_cached_path:
            icon_source = updates.get("icon_url") or feed.icon_url
            asset = assets.cache_asset(feed.id, icon_source, kind="icons") if icon_source else None
            if asset is not None:
                set_icon_cache(conn, feed.id, file_ref=asset.file_ref, mime_type=asset.mime_type)

        next_fetch_at = now + timedelta(minutes=interval)
        mark_refresh_success(
            conn,
            feed.id,
            now=now,
            next_fetch_at=next_fetch_at,
            type=feed_type if feed_type != feed.type else None,
            **updates,
        )

    except Exception as exc:
        return _record_failure(conn, feed, exc, now=now, interval=interval, t0=t0)

    log_event("refresh_ok",
        feed_id=feed.id,
        url=feed.url,
        new_articles=len(inserted),
        seen_articles=len(articles),
        skip_icon_fetch=skip_icon_fetch,
        updated_fields=sorted(updates),
        latency_ms=_elapsed_ms(t0),
    )
    return RefreshResult(success=True, new_articles=len(inserted), next_fetch_at=next_fetch_at)


def _record_failure(conn: sqlite3.Connection, feed: FeedRecord, exc: Exception, *, now: datetime, interval: int, t0: float) -> RefreshResult:
    category = classify_error(exc)
    message = format_error(exc)
    next_fetch_at = now + timedelta(minutes=FAILURE_BACKOFF_FACTOR * interval)

    try:
        conn.rollback()
        record_refresh_failure(conn, feed.id, now=now, message=message, next_fetch_at=next_fetch_at)
    except sqlite3.Error as db_exc:
        log_event("refresh_failure_not_recorded", feed_id=feed.id, error=str(db_exc))

    log_event("refresh_failed",
        feed_id=feed.id,
        url=feed.url,
        category=category,
        error_type=type(exc).__name__,
        error=message,
        next_fetch_at=next_fetch_at.isoformat(),
        latency_ms=_elapsed_ms(t0),
    )
    return RefreshResult(success=False, next_fetch_at=next_fetch_at, error=message, error_category=category)


def _elapsed_ms(t0: float) -> int:
    """Calculate elapsed milliseconds since t0."""
    return int((time.perf_counter() - t0) * 1000)
