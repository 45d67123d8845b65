from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone

from feedpipe.assets import AssetCache
from feedpipe.config import Settings
from feedpipe.db import db_conn, get_conn
from feedpipe.logging_utils import log_event
from feedpipe.refresh import refresh_feed
from feedpipe.repo import get_feed, list_due_feeds
from feedpipe.schemas import FeedRecord, RefreshResult
from feedpipe.thumbnail_queue import ThumbnailQueue


def _refresh_one(feed: FeedRecord, settings: Settings, assets: AssetCache, thumbnails: ThumbnailQueue | None) -> RefreshResult:
    # One connection per job; feeds never share rows so no coordination is needed
    conn = get_conn(settings)
    try:
        return refresh_feed(conn, feed, settings=settings, assets=assets, thumbnails=thumbnails)
    finally:
        conn.close()


def refresh_due_feeds(
    settings: Settings,
    *,
    limit: int = 50,
    max_workers: int = 4,
    feed_ids: list[int] | None = None,
    now: datetime | None = None,
    wait_for_thumbnails: bool = True,
) -> dict:
    """
    Refresh every due feed (or the given ids) concurrently.

    Returns a summary: {"due", "ok", "failed", "new_articles", "results": {feed_id: RefreshResult}}.
    """
    now = now or datetime.now(timezone.utc)
    with db_conn(settings) as conn:
        if feed_ids:
            feeds = [f for f in (get_feed(conn, fid) for fid in feed_ids) if f is not None]
        else:
            feeds = list_due_feeds(conn, now=now, limit=limit)

    log_event("refresh_batch_started", due=len(feeds), max_workers=max_workers)
    assets = AssetCache(settings)
    thumbnails = ThumbnailQueue(settings, assets)
    results: dict[int, RefreshResult] = {}

    try:
        if feeds:
            with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(feeds)))) as executor:
                futures = {executor.submit(_refresh_one, feed, settings, assets, thumbnails): feed.id for feed in feeds}
                for future in as_completed(futures):
                    results[futures[future]] = future.result()
    finally:
        thumbnails.shutdown(wait=wait_for_thumbnails)

    summary = {
        "due": len(feeds),
        "ok": sum(1 for r in results.values() if r.success),
        "failed": sum(1 for r in results.values() if not r.success),
        "new_articles": sum(r.new_articles for r in results.values()),
        "thumbnails": thumbnails.stats(),
        "results": results,
    }
    log_event("refresh_batch_finished", **{k: v for k, v in summary.items() if k != "results"})
    return summary
