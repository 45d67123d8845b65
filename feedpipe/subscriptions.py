"""
Subscription lifecycle: subscribe, pause/resume, soft delete/restore, icon maintenance.

Every operation takes an explicit connection and raises NotFoundError for
unknown (or, where noted, deleted) feed ids.
"""
from __future__ import annotations

import sqlite3

from feedpipe import repo
from feedpipe.assets import AssetCache
from feedpipe.config import Settings
from feedpipe.errors import FeedPipeError, NotFoundError
from feedpipe.feed_parse import detect_type, parse_feed
from feedpipe.http_fetch import validate_url
from feedpipe.icons import is_generic_icon_url
from feedpipe.logging_utils import log_event
from feedpipe.refresh import refresh_feed
from feedpipe.schemas import FeedRecord, FeedType
from feedpipe.thumbnail_queue import ThumbnailQueue


def _require(conn: sqlite3.Connection, feed_id: int, *, include_deleted: bool = False) -> FeedRecord:
    feed = repo.get_feed(conn, feed_id, include_deleted=include_deleted)
    if feed is None:
        raise NotFoundError(f"feed {feed_id} not found")
    return feed


def _recache_icon(conn: sqlite3.Connection, feed: FeedRecord, assets: AssetCache, icon_url: str | None) -> FeedRecord:
    """Drop any cached icon for the feed, then cache icon_url from scratch."""
    assets.clear_asset(feed.id, "icons")
    repo.clear_icon_cache_refs(conn, feed.id)
    if icon_url:
        asset = assets.cache_asset(feed.id, icon_url, kind="icons")
        if asset is not None:
            repo.set_icon_cache(conn, feed.id, file_ref=asset.file_ref, mime_type=asset.mime_type)
    return repo.get_feed(conn, feed.id, include_deleted=True)


def subscribe(
    conn: sqlite3.Connection,
    url: str,
    *,
    settings: Settings,
    assets: AssetCache,
    thumbnails: ThumbnailQueue | None = None,
    user_id: str = "default",
    title: str | None = None,
    type: FeedType | None = None,
) -> FeedRecord:
    """
    Verify a feed URL and persist it, then run its first refresh.

    - Already subscribed: the existing feed is returned unchanged
    - Previously deleted: the feed is restored instead of duplicated
    - Fetch/parse failures propagate (nothing is stored)
    """
    url = validate_url(url)
    existing = repo.get_feed_by_url(conn, user_id=user_id, url=url)
    if existing is not None and existing.deleted_at is None:
        return existing
    if existing is not None:
        return restore_feed(conn, existing.id, settings=settings, assets=assets)

    parsed = parse_feed(url, settings)
    feed_id = repo.insert_feed(
        conn,
        url=url,
        title=title or parsed.title,
        type=type or detect_type(url, parsed),
        user_id=user_id,
        site_url=parsed.link,
        icon_url=parsed.favicon,
        description=parsed.description,
    )
    log_event("feed_subscribed", feed_id=feed_id, url=url, user_id=user_id)

    feed = _require(conn, feed_id)
    refresh_feed(conn, feed, settings=settings, assets=assets, thumbnails=thumbnails)
    return _require(conn, feed_id)


def pause_feed(conn: sqlite3.Connection, feed_id: int) -> FeedRecord:
    _require(conn, feed_id)
    repo.set_feed_paused(conn, feed_id, paused=True)
    log_event("feed_paused", feed_id=feed_id)
    return _require(conn, feed_id)


def resume_feed(conn: sqlite3.Connection, feed_id: int) -> FeedRecord:
    _require(conn, feed_id)
    repo.set_feed_paused(conn, feed_id, paused=False)
    log_event("feed_resumed", feed_id=feed_id)
    return _require(conn, feed_id)


def delete_feed(conn: sqlite3.Connection, feed_id: int, *, assets: AssetCache) -> None:
    """Soft delete; the cached icon file is purged along with its DB reference."""
    _require(conn, feed_id)
    repo.soft_delete_feed(conn, feed_id)
    assets.clear_asset(feed_id, "icons")
    log_event("feed_deleted", feed_id=feed_id)


def restore_feed(conn: sqlite3.Connection, feed_id: int, *, settings: Settings, assets: AssetCache) -> FeedRecord:
    """
    Undelete a feed and force a fresh icon cache.

    The old cached file may belong to whatever the URL used to point at, so it is
    never reused.
    """
    feed = _require(conn, feed_id, include_deleted=True)
    if feed.deleted_at is None:
        return feed
    repo.restore_feed(conn, feed_id)
    feed = _recache_icon(conn, feed, assets, feed.icon_url)
    log_event("feed_restored", feed_id=feed_id, icon_cached=bool(feed.icon_cached_path))
    return feed


def refresh_icon(conn: sqlite3.Connection, feed_id: int, *, settings: Settings, assets: AssetCache) -> FeedRecord:
    """Re-resolve the feed's icon (platform lookup included) and overwrite the cached copy."""
    feed = _require(conn, feed_id)
    icon_url = feed.icon_url
    try:
        parsed = parse_feed(feed.url, settings, skip_icon_fetch=False)
        if parsed.favicon and (not is_generic_icon_url(parsed.favicon) or is_generic_icon_url(icon_url)):
            icon_url = parsed.favicon
    except FeedPipeError as exc:
        log_event("icon_refresh_parse_failed", feed_id=feed_id, error=str(exc))

    if icon_url and icon_url != feed.icon_url:
        repo.update_icon_url(conn, feed_id, icon_url)
    feed = _recache_icon(conn, feed, assets, icon_url)
    log_event("feed_icon_refreshed", feed_id=feed_id, icon_url=icon_url, icon_cached=bool(feed.icon_cached_path))
    return feed


def clear_all_icons(conn: sqlite3.Connection, *, assets: AssetCache) -> dict:
    feeds_cleared = repo.clear_icon_cache_refs(conn)
    files_removed = assets.clear_all_assets("icons")
    return {"feeds_cleared": feeds_cleared, "files_removed": files_removed}
