from datetime import datetime, timedelta, timezone

import pytest

from feedpipe.assets import AssetCache
from feedpipe.refresh import effective_interval, refresh_feed, should_skip_icon_fetch
from feedpipe.repo import count_articles, get_feed, upsert_user_settings

from tests.conftest import insert_test_feed

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
FEED_URL = "https://blog.example.com/feed.xml"

RSS = """<rss version="2.0"><channel>
  <title>Example Blog</title>
  <link>https://blog.example.com/</link>
  <description>All the examples</description>
  <image><url>https://blog.example.com/logo.png</url></image>
  <item><title>One</title><guid>1</guid><link>https://blog.example.com/1</link>
    <description>&lt;p&gt;first &lt;img src="https://img.example.com/one.jpg"&gt;&lt;/p&gt;</description></item>
  <item><title>Two</title><guid>2</guid><link>https://blog.example.com/2</link></item>
</channel></rss>
"""

PODCAST = """<rss xmlns:itunes="http://www.itunes.com/dtds/podcast-1.0.dtd"><channel>
  <title>Talk Show</title><itunes:author>Host</itunes:author>
  <item><title>Ep</title><guid>ep1</guid><enclosure url="https://cdn.example.com/ep1.mp3" type="audio/mpeg"/></item>
</channel></rss>
"""

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


class RecordingQueue:
    def __init__(self):
        self.items = []

    def submit(self, items):
        self.items.extend(items)
        return len(items)


@pytest.fixture
def assets(settings):
    return AssetCache(settings)


def test_refresh_inserts_articles_and_schedules_next(conn, settings, assets, web):
    web.add(FEED_URL, RSS, content_type="application/rss+xml")
    feed = insert_test_feed(conn, url=FEED_URL)

    result = refresh_feed(conn, feed, settings=settings, assets=assets, now=NOW)

    assert result.success
    assert result.new_articles == 2
    assert result.next_fetch_at == NOW + timedelta(minutes=30)
    assert count_articles(conn, feed.id) == 2
    stored = get_feed(conn, feed.id)
    assert stored.last_fetched_at == NOW
    assert stored.error_count == 0


def test_second_refresh_reports_no_new_articles(conn, settings, assets, web):
    web.add(FEED_URL, RSS, content_type="application/rss+xml")
    feed = insert_test_feed(conn, url=FEED_URL)

    refresh_feed(conn, feed, settings=settings, assets=assets, now=NOW)
    again = refresh_feed(conn, get_feed(conn, feed.id), settings=settings, assets=assets, now=NOW + timedelta(minutes=30))

    assert again.success
    assert again.new_articles == 0
    assert count_articles(conn, feed.id) == 2


def test_failure_backs_off_to_twice_the_interval(conn, settings, assets, web):
    # No route: every fetch attempt fails with a network error
    feed = insert_test_feed(conn, url=FEED_URL)

    result = refresh_feed(conn, feed, settings=settings, assets=assets, now=NOW)

    assert not result.success
    assert result.error_category == "network"
    assert result.next_fetch_at >= NOW + timedelta(minutes=60)
    stored = get_feed(conn, feed.id)
    assert stored.error_count == 1
    assert stored.last_error.startswith("[network]")
    assert stored.last_error_at == NOW
    assert stored.next_fetch_at == NOW + timedelta(minutes=60)
    assert stored.title == "Example Feed"


def test_backoff_does_not_compound(conn, settings, assets, web):
    feed = insert_test_feed(conn, url=FEED_URL)
    refresh_feed(conn, feed, settings=settings, assets=assets, now=NOW)
    second = refresh_feed(conn, get_feed(conn, feed.id), settings=settings, assets=assets, now=NOW + timedelta(hours=1))

    assert second.next_fetch_at == NOW + timedelta(hours=1) + timedelta(minutes=60)
    stored = get_feed(conn, feed.id)
    assert stored.error_count == 2
    assert stored.refresh_interval_minutes is None


def test_success_after_failure_resets_error_count(conn, settings, assets, web):
    feed = insert_test_feed(conn, url=FEED_URL)
    refresh_feed(conn, feed, settings=settings, assets=assets, now=NOW)
    assert get_feed(conn, feed.id).error_count == 1

    web.add(FEED_URL, RSS, content_type="application/rss+xml")
    result = refresh_feed(conn, get_feed(conn, feed.id), settings=settings, assets=assets, now=NOW + timedelta(hours=1))
    assert result.success
    stored = get_feed(conn, feed.id)
    assert stored.error_count == 0
    assert stored.last_error is None


def test_parse_failure_is_categorized(conn, settings, assets, web):
    web.add(FEED_URL, "<html><body>moved</body></html>")
    feed = insert_test_feed(conn, url=FEED_URL)
    result = refresh_feed(conn, feed, settings=settings, assets=assets, now=NOW)
    assert result.error_category == "parse"
    assert get_feed(conn, feed.id).last_error.startswith("[parse]")


def test_http_error_is_categorized_as_fetch(conn, settings, assets, web):
    web.add(FEED_URL, status=410)
    feed = insert_test_feed(conn, url=FEED_URL)
    result = refresh_feed(conn, feed, settings=settings, assets=assets, now=NOW)
    assert result.error_category == "fetch"


def test_placeholder_metadata_is_replaced(conn, settings, assets, web):
    web.add(FEED_URL, RSS, content_type="application/rss+xml")
    feed = insert_test_feed(conn, url=FEED_URL, title="Discovered Feed", site_url=FEED_URL)

    refresh_feed(conn, feed, settings=settings, assets=assets, now=NOW)
    stored = get_feed(conn, feed.id)
    assert stored.title == "Example Blog"
    assert stored.site_url == "https://blog.example.com/"
    assert stored.description == "All the examples"


def test_user_chosen_title_is_kept(conn, settings, assets, web):
    web.add(FEED_URL, RSS, content_type="application/rss+xml")
    feed = insert_test_feed(conn, url=FEED_URL, title="My Favourite Blog")
    refresh_feed(conn, feed, settings=settings, assets=assets, now=NOW)
    assert get_feed(conn, feed.id).title == "My Favourite Blog"


def test_rss_feed_is_retyped_as_podcast(conn, settings, assets, web):
    web.add("https://talk.example.com/feed", PODCAST)
    feed = insert_test_feed(conn, url="https://talk.example.com/feed")
    refresh_feed(conn, feed, settings=settings, assets=assets, now=NOW)
    assert get_feed(conn, feed.id).type == "podcast"


def test_icon_is_cached_when_missing(conn, settings, assets, web):
    web.add(FEED_URL, RSS, content_type="application/rss+xml")
    web.add("https://blog.example.com/logo.png", PNG, content_type="image/png")
    feed = insert_test_feed(conn, url=FEED_URL)

    refresh_feed(conn, feed, settings=settings, assets=assets, now=NOW)
    stored = get_feed(conn, feed.id)
    assert stored.icon_url == "https://blog.example.com/logo.png"
    assert stored.icon_cached_path == f"feed-{feed.id}.png"
    assert stored.icon_cached_content_type == "image/png"


def test_new_thumbnails_are_handed_to_queue(conn, settings, assets, web):
    web.add(FEED_URL, RSS, content_type="application/rss+xml")
    feed = insert_test_feed(conn, url=FEED_URL)
    queue = RecordingQueue()

    refresh_feed(conn, feed, settings=settings, assets=assets, thumbnails=queue, now=NOW)
    assert [url for _, url in queue.items] == ["https://img.example.com/one.jpg"]

    refresh_feed(conn, get_feed(conn, feed.id), settings=settings, assets=assets, thumbnails=queue, now=NOW)
    assert len(queue.items) == 1


def test_effective_interval_precedence(conn, settings):
    feed = insert_test_feed(conn)
    assert effective_interval(conn, feed, settings) == 30

    upsert_user_settings(conn, user_id="default", refresh_interval_minutes=120)
    assert effective_interval(conn, feed, settings) == 120

    own = insert_test_feed(conn, url="https://own.example/feed", refresh_interval_minutes=5)
    assert effective_interval(conn, own, settings) == 5


def test_owner_interval_drives_backoff(conn, settings, assets, web):
    upsert_user_settings(conn, user_id="default", refresh_interval_minutes=120)
    feed = insert_test_feed(conn, url=FEED_URL)
    result = refresh_feed(conn, feed, settings=settings, assets=assets, now=NOW)
    assert result.next_fetch_at == NOW + timedelta(minutes=240)


def test_should_skip_icon_fetch(conn):
    cached = insert_test_feed(conn, url="https://a.example/feed", icon_url="https://a.example/logo.png")
    conn.execute("UPDATE feeds SET icon_cached_path = 'feed-1.png'")
    conn.commit()
    assert should_skip_icon_fetch(get_feed(conn, cached.id))

    uncached = cached.model_copy(update={"icon_cached_path": None})
    assert not should_skip_icon_fetch(uncached)

    generic_youtube = cached.model_copy(update={
        "type": "youtube",
        "icon_url": "https://www.google.com/s2/favicons?domain=youtube.com&sz=64",
        "icon_cached_path": "feed-1.png",
    })
    assert not should_skip_icon_fetch(generic_youtube)


def test_refresh_stores_titles_with_encoded_emoji(conn, settings, assets, web):
    body = """<rss><channel><title>Emoji Blog</title>
      <item><title>Party &amp;#55357;&amp;#56832; time</title><guid>e1</guid></item>
      <item><title>Caf&amp;eacute; &amp;mdash; open</title><guid>e2</guid></item>
    </channel></rss>"""
    web.add(FEED_URL, body, content_type="application/rss+xml")
    feed = insert_test_feed(conn, url=FEED_URL)

    result = refresh_feed(conn, feed, settings=settings, assets=assets, now=NOW)

    assert result.success, result.error
    assert result.new_articles == 2
    titles = {row[0] for row in conn.execute("SELECT title FROM articles WHERE feed_id = ?", (feed.id,))}
    assert titles == {"Party \U0001F600 time", "Café — open"}
