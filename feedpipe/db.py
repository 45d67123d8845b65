# feedpipe/db.py
from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path

from feedpipe.config import Settings


class InvalidDbPathError(Exception):
    """Raised when the configured db_path points to an invalid location."""
    pass


@contextmanager
def db_conn(settings: Settings):
    """
    Context manager for database connections.
    Opens connection, initializes schema, yields connection, closes on exit.

    Usage:
        with db_conn(settings) as conn:
            # use conn
    """
    conn = get_conn(settings)
    try:
        init_db(conn)
        yield conn
    finally:
        conn.close()


def get_conn(settings: Settings) -> sqlite3.Connection:
    """
    Open a SQLite connection to settings.db_path.
    One connection per thread; connections are never shared across workers.
    """
    path = Path(settings.db_path)

    root = path.anchor or (path.parts[0] if path.parts else None)
    if path.is_absolute() and root and not Path(root).exists():
        raise InvalidDbPathError(
            f"db_path is set to '{settings.db_path}' but the root path '{root}' doesn't exist."
        )

    # Ensure parent directory exists (e.g., ./data/)
    if path.parent and not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(path), timeout=30.0)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db(conn: sqlite3.Connection) -> None:
    """
    Create required tables if they don't exist.
    """
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS feeds (
            id INTEGER PRIMARY KEY,
            user_id TEXT NOT NULL DEFAULT 'default',
            type TEXT NOT NULL DEFAULT 'rss' CHECK (type IN ('rss', 'youtube', 'reddit', 'podcast')),
            title TEXT NOT NULL,
            url TEXT NOT NULL,
            site_url TEXT,
            icon_url TEXT,
            icon_cached_path TEXT,
            icon_cached_content_type TEXT,
            description TEXT,
            refresh_interval_minutes INTEGER,
            last_fetched_at TEXT,
            next_fetch_at TEXT,
            error_count INTEGER NOT NULL DEFAULT 0,
            last_error TEXT,
            last_error_at TEXT,
            paused_at TEXT,
            deleted_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE(user_id, url)
        );
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS articles (
            id INTEGER PRIMARY KEY,
            feed_id INTEGER NOT NULL REFERENCES feeds(id) ON DELETE CASCADE,
            guid TEXT NOT NULL,
            title TEXT NOT NULL,
            url TEXT,
            author TEXT,
            summary TEXT,
            content TEXT,
            enclosure_url TEXT,
            enclosure_type TEXT,
            thumbnail_url TEXT,
            thumbnail_cached_path TEXT,
            thumbnail_cached_content_type TEXT,
            published_at TEXT,
            fetched_at TEXT NOT NULL,
            UNIQUE(feed_id, guid)
        );
        """
    )

    # Per-owner defaults (refresh interval); rows are optional
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS user_settings (
            user_id TEXT PRIMARY KEY,
            refresh_interval_minutes INTEGER NOT NULL,
            updated_at TEXT NOT NULL
        );
        """
    )

    conn.execute("CREATE INDEX IF NOT EXISTS idx_feeds_next_fetch ON feeds(next_fetch_at)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_articles_feed_published ON articles(feed_id, published_at)")

    conn.commit()
