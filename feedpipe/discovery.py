"""
URL discovery: resolve a page, channel or subreddit URL into candidate feeds.

Branches by platform:
- youtube: channel id from /channel/UC..., or scraped from the page for /@handle, /c/, /user/;
  playlists via ?list=
- reddit: /r/<name> and /user/<name> map straight to reddit's .rss endpoints
- generic: direct feed response, <link rel="alternate"> tags, then well-known path probes

Every network branch is best effort: a failure degrades that branch to no candidates.
"""
from __future__ import annotations

import re
from concurrent.futures import ThreadPoolExecutor
from urllib.parse import parse_qs, quote, urljoin, urlsplit

from bs4 import BeautifulSoup

from feedpipe import http_fetch
from feedpipe.activity import check_activity
from feedpipe.config import Settings
from feedpipe.errors import FeedPipeError, ParseError
from feedpipe.feed_parse import detect_type, parse_feed_document
from feedpipe.icons import scrape_youtube_page
from feedpipe.logging_utils import log_event
from feedpipe.platforms import classify, is_reddit, is_youtube
from feedpipe.schemas import DiscoveredCandidate, FeedType


WELL_KNOWN_PATHS = ["/feed", "/rss", "/feed.xml", "/rss.xml", "/atom.xml", "/index.xml", "/feed/rss", "/feed/atom", "/.rss"]
FEED_LINK_TYPES = ("application/rss+xml", "application/atom+xml")
ICON_RELS = {"icon", "shortcut", "apple-touch-icon"}
HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"

YOUTUBE_CHANNEL_FEED = "https://www.youtube.com/feeds/videos.xml?channel_id={id}"
YOUTUBE_PLAYLIST_FEED = "https://www.youtube.com/feeds/videos.xml?playlist_id={id}"

CONFIDENCE_DIRECT = 1.0
CONFIDENCE_LINK_TAG = 0.95
CONFIDENCE_YOUTUBE = 0.95
CONFIDENCE_REDDIT = 0.9
CONFIDENCE_WELL_KNOWN = 0.8

DIRECT_FEED_TITLE = "Direct Feed"
DISCOVERED_FEED_TITLE = "Discovered Feed"
LINK_TAG_DEFAULT_TITLE = "RSS Feed"

_CHANNEL_PATH_RE = re.compile(r"/channel/(UC[a-zA-Z0-9_-]{22})")
_SUBREDDIT_PATH_RE = re.compile(r"/r/([A-Za-z0-9_]+)")
_REDDIT_USER_PATH_RE = re.compile(r"/(?:user|u)/([A-Za-z0-9_-]+)")


def sort_by_confidence(candidates: list[DiscoveredCandidate]) -> list[DiscoveredCandidate]:
    """Highest confidence first; ties keep their discovery order."""
    return sorted(candidates, key=lambda c: c.confidence, reverse=True)


def is_feed_content_type(content_type: str) -> bool:
    ct = (content_type or "").lower()
    if "xhtml" in ct:
        return False
    return "rss" in ct or "atom" in ct or "xml" in ct


def _origin(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def candidate_type(page_url: str, feed_url: str, title: str | None = None) -> FeedType:
    """Platform hostnames win over the podcast heuristic."""
    if is_youtube(page_url) or is_youtube(feed_url):
        return "youtube"
    if is_reddit(page_url) or is_reddit(feed_url):
        return "reddit"
    if "podcast" in (title or "").lower() or "podcast" in feed_url.lower():
        return "podcast"
    return "rss"


# --- activity annotation ---

def _annotate(candidate: DiscoveredCandidate, settings: Settings) -> DiscoveredCandidate:
    try:
        result = check_activity(candidate.feed_url, candidate.type, settings)
    except Exception as exc:
        log_event("discovery_activity_failed", feed_url=candidate.feed_url, error=str(exc))
        return candidate.model_copy(update={"is_active": True})
    return candidate.model_copy(update={"is_active": result.is_active, "last_post_date": result.last_post_date})


def annotate_activity(candidates: list[DiscoveredCandidate], settings: Settings) -> list[DiscoveredCandidate]:
    """Run the activity checker over every candidate not yet annotated, concurrently. Order is preserved."""
    pending = [i for i, c in enumerate(candidates) if c.is_active is None]
    if not pending:
        return list(candidates)

    out = list(candidates)
    with ThreadPoolExecutor(max_workers=min(8, len(pending))) as executor:
        futures = {i: executor.submit(_annotate, candidates[i], settings) for i in pending}
        for i, future in futures.items():
            out[i] = future.result()
    return out


# --- youtube ---

def _discover_youtube(url: str, settings: Settings) -> list[DiscoveredCandidate] | None:
    """One candidate, or None when no channel/playlist could be resolved."""
    parts = urlsplit(url)
    playlist = (parse_qs(parts.query).get("list") or [None])[0]
    if playlist:
        feed_url = YOUTUBE_PLAYLIST_FEED.format(id=quote(playlist))
        return [_annotate(DiscoveredCandidate(
            type="youtube",
            title="YouTube Playlist",
            feed_url=feed_url,
            site_url=f"https://www.youtube.com/playlist?list={quote(playlist)}",
            confidence=CONFIDENCE_YOUTUBE,
            method="youtube",
        ), settings)]

    channel_id = None
    title = None
    icon = None
    match = _CHANNEL_PATH_RE.search(parts.path)
    if match:
        channel_id = match.group(1)
    elif parts.path.startswith(("/@", "/c/", "/user/")):
        try:
            resp = http_fetch.fetch(
                url,
                timeout_s=settings.page_timeout_s,
                user_agent=settings.browser_user_agent,
                headers={"Accept": HTML_ACCEPT, "Accept-Language": "en-US,en;q=0.9"},
            )
            scraped = scrape_youtube_page(resp.text())
            channel_id, title, icon = scraped["channel_id"], scraped["title"], scraped["avatar"]
        except FeedPipeError as exc:
            log_event("discovery_youtube_scrape_failed", url=url, error=str(exc))

    if not channel_id:
        return None

    feed_url = YOUTUBE_CHANNEL_FEED.format(id=channel_id)
    return [_annotate(DiscoveredCandidate(
        type="youtube",
        title=title or "YouTube Channel",
        feed_url=feed_url,
        site_url=f"https://www.youtube.com/channel/{channel_id}",
        icon_url=icon,
        confidence=CONFIDENCE_YOUTUBE,
        method="youtube",
    ), settings)]


# --- reddit ---

def _discover_reddit(url: str, settings: Settings) -> list[DiscoveredCandidate]:
    path = urlsplit(url).path
    sub = _SUBREDDIT_PATH_RE.search(path)
    user = _REDDIT_USER_PATH_RE.search(path)

    if sub:
        name = sub.group(1)
        title = f"r/{name}"
        site_url = f"https://www.reddit.com/r/{name}"
    elif user:
        name = user.group(1)
        title = f"u/{name}"
        site_url = f"https://www.reddit.com/user/{name}"
    else:
        return []

    return [_annotate(DiscoveredCandidate(
        type="reddit",
        title=title,
        feed_url=f"{site_url}/.rss",
        site_url=site_url,
        confidence=CONFIDENCE_REDDIT,
        method="reddit",
    ), settings)]


# --- generic sites ---

def _direct_candidate(resp: http_fetch.HttpResponse) -> DiscoveredCandidate:
    candidate = DiscoveredCandidate(
        type=candidate_type(resp.url, resp.url),
        title=DIRECT_FEED_TITLE,
        feed_url=resp.url,
        confidence=CONFIDENCE_DIRECT,
        method="direct",
    )
    try:
        parsed = parse_feed_document(resp.body, feed_url=resp.url)
    except ParseError as exc:
        log_event("discovery_direct_parse_failed", url=resp.url, error=str(exc))
        return candidate
    return candidate.model_copy(update={
        "type": detect_type(resp.url, parsed),
        "title": parsed.title,
        "site_url": parsed.link,
        "icon_url": parsed.favicon,
        "description": parsed.description,
    })


def _rels(tag) -> set[str]:
    rel = tag.get("rel") or []
    if isinstance(rel, str):
        rel = rel.split()
    return {r.lower() for r in rel}


def extract_link_tags(html: str, page_url: str) -> tuple[list[DiscoveredCandidate], str | None]:
    """
    <link rel="alternate"> feed candidates plus the page's own icon, if declared.

    Relative hrefs resolve against page_url; duplicate feed URLs keep the first tag.
    """
    soup = BeautifulSoup(html, "html.parser")
    site_url = _origin(page_url)

    icon = None
    for tag in soup.find_all("link", href=True):
        if ICON_RELS & _rels(tag):
            icon = urljoin(page_url, tag["href"])
            break

    description = None
    meta_desc = soup.find("meta", attrs={"name": "description"})
    if meta_desc and meta_desc.get("content"):
        description = meta_desc["content"].strip()

    seen: set[str] = set()
    out: list[DiscoveredCandidate] = []
    for link in soup.find_all("link"):
        if "alternate" not in _rels(link):
            continue
        typ = (link.get("type") or "").lower().strip()
        href = link.get("href")
        if typ not in FEED_LINK_TYPES or not href:
            continue
        feed_url = urljoin(page_url, href.strip())
        if feed_url in seen:
            continue
        seen.add(feed_url)
        title = (link.get("title") or "").strip() or LINK_TAG_DEFAULT_TITLE
        out.append(DiscoveredCandidate(
            type=candidate_type(page_url, feed_url, title),
            title=title,
            feed_url=feed_url,
            site_url=site_url,
            icon_url=icon,
            description=description,
            confidence=CONFIDENCE_LINK_TAG,
            method="link_tag",
        ))
    return out, icon


def probe_well_known(base_url: str, settings: Settings, *, icon_url: str | None = None) -> list[DiscoveredCandidate]:
    """HEAD each well-known path in order; the first XML/RSS response wins."""
    origin = _origin(base_url)
    for path in WELL_KNOWN_PATHS:
        probe_url = origin + path
        try:
            resp = http_fetch.fetch(probe_url, method="HEAD", timeout_s=settings.probe_timeout_s, user_agent=settings.user_agent)
        except FeedPipeError:
            continue
        ct = resp.content_type
        if resp.ok and ("xml" in ct or "rss" in ct):
            log_event("discovery_well_known_hit", url=probe_url)
            return [DiscoveredCandidate(
                type=candidate_type(base_url, probe_url),
                title=DISCOVERED_FEED_TITLE,
                feed_url=probe_url,
                site_url=origin,
                icon_url=icon_url,
                confidence=CONFIDENCE_WELL_KNOWN,
                method="well_known",
            )]
    return []


def _discover_generic(url: str, settings: Settings) -> list[DiscoveredCandidate]:
    try:
        resp = http_fetch.fetch(
            url,
            timeout_s=settings.page_timeout_s,
            user_agent=settings.user_agent,
            headers={"Accept": HTML_ACCEPT},
        )
    except FeedPipeError as exc:
        log_event("discovery_page_fetch_failed", url=url, error_type=type(exc).__name__, error=str(exc))
        resp = None

    if resp is not None and is_feed_content_type(resp.content_type):
        return [_direct_candidate(resp)]

    candidates: list[DiscoveredCandidate] = []
    icon = None
    if resp is not None:
        candidates, icon = extract_link_tags(resp.text(), resp.url or url)
    if not candidates:
        candidates = probe_well_known(resp.url if resp is not None else url, settings, icon_url=icon)
    return candidates


def discover_from_url(url: str, settings: Settings) -> list[DiscoveredCandidate]:
    """
    Resolve a URL into ranked feed candidates.

    Raises ValidationError for a malformed URL; every network failure past that
    point only shrinks the result.
    """
    url = http_fetch.validate_url(url)
    platform = classify(url)

    candidates: list[DiscoveredCandidate] | None = None
    if platform == "youtube":
        candidates = _discover_youtube(url, settings)
    elif platform == "reddit":
        candidates = _discover_reddit(url, settings)

    if candidates is None:
        candidates = _discover_generic(url, settings)

    candidates = annotate_activity(candidates, settings)
    ranked = sort_by_confidence(candidates)
    log_event("discovery_url_done", url=url, platform=platform, candidates=len(ranked))
    return ranked
