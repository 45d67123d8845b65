import pytest

from feedpipe.discovery import (
    annotate_activity,
    candidate_type,
    discover_from_url,
    extract_link_tags,
    is_feed_content_type,
    sort_by_confidence,
)
from feedpipe.errors import ValidationError
from feedpipe.schemas import DiscoveredCandidate

CHANNEL_ID = "UCuAXFkgsw1L7xaCfnd5JJOw"

BLOG_PAGE = """<html><head>
<title>Example Blog</title>
<meta name="description" content="A blog about examples">
<link rel="icon" href="/static/fav.png">
<link rel="alternate" type="application/rss+xml" title="Posts" href="/feed.xml">
<link rel="alternate" type="application/atom+xml" href="https://blog.example.com/atom.xml">
<link rel="alternate" type="application/rss+xml" title="Dup" href="https://blog.example.com/feed.xml">
<link rel="alternate" type="text/html" hreflang="fr" href="/fr/">
</head><body></body></html>
"""


def _candidate(confidence: float, url: str) -> DiscoveredCandidate:
    return DiscoveredCandidate(type="rss", title="t", feed_url=url, confidence=confidence, method="link_tag")


def test_sort_by_confidence_descending():
    ranked = sort_by_confidence([_candidate(0.8, "a"), _candidate(1.0, "b"), _candidate(0.95, "c")])
    assert [c.confidence for c in ranked] == [1.0, 0.95, 0.8]


def test_is_feed_content_type():
    assert is_feed_content_type("application/rss+xml; charset=utf-8")
    assert is_feed_content_type("text/xml")
    assert not is_feed_content_type("application/xhtml+xml")
    assert not is_feed_content_type("text/html")


def test_candidate_type_platform_beats_podcast():
    assert candidate_type("https://www.youtube.com/x", "https://www.youtube.com/feeds/videos.xml", "My Podcast") == "youtube"
    assert candidate_type("https://example.com", "https://example.com/podcast.xml") == "podcast"
    assert candidate_type("https://example.com", "https://example.com/feed") == "rss"


def test_extract_link_tags_resolves_and_dedupes():
    candidates, icon = extract_link_tags(BLOG_PAGE, "https://blog.example.com/about")
    assert icon == "https://blog.example.com/static/fav.png"
    assert [c.feed_url for c in candidates] == ["https://blog.example.com/feed.xml", "https://blog.example.com/atom.xml"]
    assert candidates[0].title == "Posts"
    assert candidates[1].title == "RSS Feed"
    assert all(c.confidence == 0.95 and c.method == "link_tag" for c in candidates)
    assert candidates[0].description == "A blog about examples"
    assert candidates[0].site_url == "https://blog.example.com"


def test_discover_generic_page_with_link_tags(settings, web):
    web.add("https://blog.example.com/", BLOG_PAGE)
    out = discover_from_url("https://blog.example.com/", settings)
    assert len(out) == 2
    # Activity probes have no route and fail open
    assert all(c.is_active is True for c in out)


def test_direct_feed_url_is_top_confidence(settings, web):
    rss = "<rss><channel><title>Direct Blog</title><link>https://direct.example.com</link></channel></rss>"
    web.add("https://direct.example.com/feed", rss, content_type="application/rss+xml")
    out = discover_from_url("https://direct.example.com/feed", settings)
    assert len(out) == 1
    assert out[0].method == "direct"
    assert out[0].confidence == 1.0
    assert out[0].title == "Direct Blog"


def test_well_known_probe_continues_past_failures(settings, web):
    web.add("https://plain.example.com/", "<html><head><title>No feeds here</title></head></html>")
    web.add("https://plain.example.com/rss.xml", status=200, content_type="application/rss+xml", method="HEAD")
    out = discover_from_url("https://plain.example.com/", settings)
    assert [c.feed_url for c in out] == ["https://plain.example.com/rss.xml"]
    assert out[0].method == "well_known"
    assert out[0].confidence == 0.8
    assert web.called("https://plain.example.com/feed") == 1


def test_everything_failing_yields_empty_list(settings, web):
    assert discover_from_url("https://down.example.com/", settings) == []


def test_invalid_url_raises_validation_error(settings, web):
    with pytest.raises(ValidationError):
        discover_from_url("javascript:alert(1)", settings)


def test_youtube_channel_path(settings, web):
    out = discover_from_url(f"https://www.youtube.com/channel/{CHANNEL_ID}", settings)
    assert len(out) == 1
    assert out[0].feed_url == f"https://www.youtube.com/feeds/videos.xml?channel_id={CHANNEL_ID}"
    assert out[0].type == "youtube"
    assert out[0].confidence == 0.95


def test_youtube_handle_is_scraped(settings, web):
    page = (
        '<html><head><meta property="og:title" content="Veritasium">'
        '<meta property="og:image" content="https://yt3.googleusercontent.com/abc=s900-c-k-no"></head>'
        f'<body><script>var x = {{"externalId":"{CHANNEL_ID}"}};</script></body></html>'
    )
    web.add("https://www.youtube.com/@veritasium", page)
    out = discover_from_url("https://www.youtube.com/@veritasium", settings)
    assert out[0].feed_url.endswith(CHANNEL_ID)
    assert out[0].title == "Veritasium"
    assert out[0].icon_url == "https://yt3.googleusercontent.com/abc=s176-c-k-c0x00ffffff-no-rj-mo"


def test_youtube_playlist(settings, web):
    out = discover_from_url("https://www.youtube.com/playlist?list=PL123", settings)
    assert out[0].feed_url == "https://www.youtube.com/feeds/videos.xml?playlist_id=PL123"


def test_unresolved_youtube_url_keeps_youtube_type(settings, web):
    page = (
        '<html><head><link rel="alternate" type="application/rss+xml" title="Podcast"'
        f' href="https://www.youtube.com/feeds/videos.xml?channel_id={CHANNEL_ID}"></head></html>'
    )
    web.add("https://www.youtube.com/feed/trending", page)
    out = discover_from_url("https://www.youtube.com/feed/trending", settings)
    assert len(out) == 1
    assert out[0].type == "youtube"


def test_reddit_subreddit_and_user(settings, web):
    sub = discover_from_url("https://old.reddit.com/r/python/top/", settings)
    assert sub[0].feed_url == "https://www.reddit.com/r/python/.rss"
    assert sub[0].confidence == 0.9

    user = discover_from_url("https://www.reddit.com/u/spez", settings)
    assert user[0].feed_url == "https://www.reddit.com/user/spez/.rss"


def test_activity_check_crash_keeps_candidate_active(settings, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("probe exploded")

    monkeypatch.setattr("feedpipe.discovery.check_activity", boom)
    out = annotate_activity([_candidate(0.9, "https://a.example/feed")], settings)
    assert out[0].is_active is True


def test_annotate_skips_already_annotated(settings, monkeypatch):
    calls = []
    monkeypatch.setattr("feedpipe.discovery.check_activity", lambda *a, **k: calls.append(a))
    done = _candidate(0.9, "https://a.example/feed").model_copy(update={"is_active": False})
    assert annotate_activity([done], settings)[0].is_active is False
    assert calls == []
