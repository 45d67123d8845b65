from __future__ import annotations

import sqlite3
from datetime import datetime, timezone

from feedpipe.schemas import FeedRecord, NormalizedArticle


FEED_COLUMNS = [
    "id", "user_id", "url", "type", "title", "site_url", "icon_url",
    "icon_cached_path", "icon_cached_content_type", "description",
    "refresh_interval_minutes", "last_fetched_at", "next_fetch_at",
    "error_count", "last_error", "last_error_at", "paused_at", "deleted_at",
    "created_at", "updated_at",
]
_FEED_SELECT = f"SELECT {', '.join(FEED_COLUMNS)} FROM feeds"


def to_db_time(dt: datetime | None) -> str | None:
    """Fixed-width UTC ISO string so stored timestamps compare correctly as text."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now() -> str:
    return to_db_time(datetime.now(timezone.utc))


def _row_to_feed(row) -> FeedRecord | None:
    if row is None:
        return None
    return FeedRecord(**dict(zip(FEED_COLUMNS, row)))


# --- feeds ---

def insert_feed(
    conn: sqlite3.Connection,
    *,
    url: str,
    title: str,
    type: str = "rss",
    user_id: str = "default",
    site_url: str | None = None,
    icon_url: str | None = None,
    description: str | None = None,
    refresh_interval_minutes: int | None = None,
) -> int:
    now = _now()
    cur = conn.execute(
        """
        INSERT INTO feeds (user_id, url, type, title, site_url, icon_url, description,
                           refresh_interval_minutes, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
        """,
        (user_id, url, type, title, site_url, icon_url, description, refresh_interval_minutes, now, now),
    )
    conn.commit()
    return cur.lastrowid


def get_feed(conn: sqlite3.Connection, feed_id: int, *, include_deleted: bool = False) -> FeedRecord | None:
    sql = f"{_FEED_SELECT} WHERE id = ?"
    if not include_deleted:
        sql += " AND deleted_at IS NULL"
    return _row_to_feed(conn.execute(sql, (feed_id,)).fetchone())


def get_feed_by_url(conn: sqlite3.Connection, *, user_id: str, url: str) -> FeedRecord | None:
    """Lookup including soft-deleted rows (the UNIQUE(user_id, url) constraint spans them)."""
    row = conn.execute(f"{_FEED_SELECT} WHERE user_id = ? AND url = ?", (user_id, url)).fetchone()
    return _row_to_feed(row)


def list_feeds(conn: sqlite3.Connection, *, user_id: str | None = None) -> list[FeedRecord]:
    sql = f"{_FEED_SELECT} WHERE deleted_at IS NULL"
    params: tuple = ()
    if user_id is not None:
        sql += " AND user_id = ?"
        params = (user_id,)
    rows = conn.execute(sql + " ORDER BY id", params).fetchall()
    return [_row_to_feed(r) for r in rows]


def list_due_feeds(conn: sqlite3.Connection, *, now: datetime, limit: int = 50) -> list[FeedRecord]:
    """Live, unpaused feeds whose next attempt is due (never-fetched feeds first)."""
    rows = conn.execute(
        f"""
        {_FEED_SELECT}
        WHERE deleted_at IS NULL
          AND paused_at IS NULL
          AND (next_fetch_at IS NULL OR next_fetch_at <= ?)
        ORDER BY next_fetch_at IS NOT NULL, next_fetch_at
        LIMIT ?
        """,
        (to_db_time(now), limit),
    ).fetchall()
    return [_row_to_feed(r) for r in rows]


def mark_refresh_success(
    conn: sqlite3.Connection,
    feed_id: int,
    *,
    now: datetime,
    next_fetch_at: datetime,
    type: str | None = None,
    title: str | None = None,
    site_url: str | None = None,
    icon_url: str | None = None,
    description: str | None = None,
) -> None:
    """
    Single-statement success update.

    None for a metadata argument means "leave as is"; the caller decides
    which placeholder fields get overwritten.
    """
    conn.execute(
        """
        UPDATE feeds
        SET error_count = 0,
            last_error = NULL,
            last_fetched_at = ?,
            next_fetch_at = ?,
            type = COALESCE(?, type),
            title = COALESCE(?, title),
            site_url = COALESCE(?, site_url),
            icon_url = COALESCE(?, icon_url),
            description = COALESCE(?, description),
            updated_at = ?
        WHERE id = ?
        """,
        (to_db_time(now), to_db_time(next_fetch_at), type, title, site_url, icon_url, description, to_db_time(now), feed_id),
    )
    conn.commit()


def record_refresh_failure(conn: sqlite3.Connection, feed_id: int, *, now: datetime, message: str, next_fetch_at: datetime) -> None:
    """Touches only the failure columns; everything else on the feed is left alone."""
    conn.execute(
        """
        UPDATE feeds
        SET error_count = error_count + 1,
            last_error = ?,
            last_error_at = ?,
            next_fetch_at = ?
        WHERE id = ?
        """,
        (message, to_db_time(now), to_db_time(next_fetch_at), feed_id),
    )
    conn.commit()


def set_icon_cache(conn: sqlite3.Connection, feed_id: int, *, file_ref: str, mime_type: str) -> None:
    conn.execute(
        "UPDATE feeds SET icon_cached_path = ?, icon_cached_content_type = ? WHERE id = ?",
        (file_ref, mime_type, feed_id),
    )
    conn.commit()


def update_icon_url(conn: sqlite3.Connection, feed_id: int, icon_url: str) -> None:
    conn.execute("UPDATE feeds SET icon_url = ?, updated_at = ? WHERE id = ?", (icon_url, _now(), feed_id))
    conn.commit()


def clear_icon_cache_refs(conn: sqlite3.Connection, feed_id: int | None = None) -> int:
    """Null the cached icon columns for one feed, or every feed when feed_id is None."""
    if feed_id is None:
        cur = conn.execute("UPDATE feeds SET icon_cached_path = NULL, icon_cached_content_type = NULL WHERE icon_cached_path IS NOT NULL")
    else:
        cur = conn.execute(
            "UPDATE feeds SET icon_cached_path = NULL, icon_cached_content_type = NULL WHERE id = ?",
            (feed_id,),
        )
    conn.commit()
    return cur.rowcount


def set_feed_paused(conn: sqlite3.Connection, feed_id: int, *, paused: bool) -> bool:
    cur = conn.execute(
        "UPDATE feeds SET paused_at = ?, updated_at = ? WHERE id = ? AND deleted_at IS NULL",
        (_now() if paused else None, _now(), feed_id),
    )
    conn.commit()
    return cur.rowcount == 1


def soft_delete_feed(conn: sqlite3.Connection, feed_id: int) -> bool:
    cur = conn.execute(
        """
        UPDATE feeds
        SET deleted_at = ?, icon_cached_path = NULL, icon_cached_content_type = NULL, updated_at = ?
        WHERE id = ? AND deleted_at IS NULL
        """,
        (_now(), _now(), feed_id),
    )
    conn.commit()
    return cur.rowcount == 1


def restore_feed(conn: sqlite3.Connection, feed_id: int) -> bool:
    """Undelete and make the feed due immediately with a clean error state."""
    cur = conn.execute(
        """
        UPDATE feeds
        SET deleted_at = NULL, paused_at = NULL, next_fetch_at = NULL,
            error_count = 0, last_error = NULL, updated_at = ?
        WHERE id = ? AND deleted_at IS NOT NULL
        """,
        (_now(), feed_id),
    )
    conn.commit()
    return cur.rowcount == 1


# --- articles ---

def insert_articles(conn: sqlite3.Connection, feed_id: int, articles: list[NormalizedArticle]) -> list[tuple[int, str | None]]:
    """
    Insert-or-ignore keyed by (feed_id, guid), all rows in one transaction.

    Returns (article_id, thumbnail_url) for the rows actually inserted;
    already-seen guids are skipped silently.
    """
    sql = """
    INSERT OR IGNORE INTO articles
    (feed_id, guid, title, url, author, summary, content, enclosure_url, enclosure_type,
     thumbnail_url, published_at, fetched_at)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
    """
    inserted: list[tuple[int, str | None]] = []
    fetched_at = _now()

    with conn:
        for a in articles:
            cur = conn.execute(
                sql,
                (
                    feed_id, a.guid, a.title, a.url, a.author, a.summary, a.content,
                    a.enclosure_url, a.enclosure_type, a.thumbnail_url,
                    to_db_time(a.published_at), fetched_at,
                ),
            )
            if cur.rowcount == 1:
                inserted.append((cur.lastrowid, a.thumbnail_url))

    return inserted


def count_articles(conn: sqlite3.Connection, feed_id: int) -> int:
    return conn.execute("SELECT COUNT(*) FROM articles WHERE feed_id = ?", (feed_id,)).fetchone()[0]


def set_article_thumbnail_cache(conn: sqlite3.Connection, article_id: int, *, file_ref: str, mime_type: str) -> None:
    conn.execute(
        "UPDATE articles SET thumbnail_cached_path = ?, thumbnail_cached_content_type = ? WHERE id = ?",
        (file_ref, mime_type, article_id),
    )
    conn.commit()


def clear_thumbnail_cache_refs(conn: sqlite3.Connection) -> int:
    cur = conn.execute(
        "UPDATE articles SET thumbnail_cached_path = NULL, thumbnail_cached_content_type = NULL WHERE thumbnail_cached_path IS NOT NULL"
    )
    conn.commit()
    return cur.rowcount


# --- user settings ---

def get_refresh_interval(conn: sqlite3.Connection, *, user_id: str) -> int | None:
    row = conn.execute("SELECT refresh_interval_minutes FROM user_settings WHERE user_id = ?", (user_id,)).fetchone()
    return row[0] if row else None


def upsert_user_settings(conn: sqlite3.Connection, *, user_id: str, refresh_interval_minutes: int) -> None:
    conn.execute(
        """
        INSERT INTO user_settings (user_id, refresh_interval_minutes, updated_at)
        VALUES (?, ?, ?)
        ON CONFLICT(user_id) DO UPDATE SET
            refresh_interval_minutes = excluded.refresh_interval_minutes,
            updated_at = excluded.updated_at
        """,
        (user_id, refresh_interval_minutes, _now()),
    )
    conn.commit()
