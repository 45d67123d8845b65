"""
Feed icon resolution.

Order for a feed's favicon:
1. Explicit feed metadata (image/url, atom icon/logo, itunes:image, media:thumbnail)
2. Site-level fallback (reddit static favicon, <origin>/favicon.ico, favicon service)
3. Platform lookup, which overrides 1-2 when it finds something:
   - YouTube channel avatar: Data API, then channel page scrape
   - Reddit community icon from r/<name>/about.json

Platform lookups never raise; a miss keeps the fallback from step 2.
"""
from __future__ import annotations

import re
from urllib.parse import parse_qs, quote, urlsplit

from bs4 import BeautifulSoup

from feedpipe import http_fetch
from feedpipe.config import Settings
from feedpipe.errors import FeedPipeError
from feedpipe.logging_utils import log_event
from feedpipe.platforms import hostname, is_reddit


REDDIT_FAVICON = "https://www.redditstatic.com/desktop2x/img/favicon/favicon-32x32.png"
FAVICON_SERVICE = "https://www.google.com/s2/favicons?domain={host}&sz=64"
YOUTUBE_API_CHANNELS = "https://www.googleapis.com/youtube/v3/channels?part=snippet&id={id}&key={key}"
YOUTUBE_AVATAR_SIZE = "=s176-c-k-c0x00ffffff-no-rj-mo"

# Tried in order against the raw channel page (ytInitialData first, HTML meta last)
AVATAR_PATTERNS = [
    re.compile(r'"avatar":\s*\{\s*"thumbnails":\s*\[\s*\{\s*"url":\s*"([^"]+)"'),
    re.compile(r'"channelHeaderAvatarViewModel"[^}]*"image"[^}]*"sources"[^}]*"url":\s*"([^"]+)"'),
    re.compile(r'"channelMetadataRenderer"\s*:\s*\{[^}]*"avatar":\s*\{"thumbnails":\s*\[\{"url":\s*"([^"]+)"'),
    re.compile(r'"channelMetadataRenderer".*?"avatar".*?"url":"([^"]+)"'),
    re.compile(r'(https://yt3\.googleusercontent\.com/[^"\s]+)'),
    re.compile(r'(https://yt3\.ggpht\.com/[^"\s]+)'),
]

_CHANNEL_ID_PATTERNS = [
    re.compile(r'"channelId":"(UC[a-zA-Z0-9_-]{22})"'),
    re.compile(r'"externalId":"(UC[a-zA-Z0-9_-]{22})"'),
    re.compile(r'channel_id=(UC[a-zA-Z0-9_-]{22})'),
]


def is_generic_icon_url(url: str | None) -> bool:
    """True for missing icons and for fallbacks that carry no feed-specific art."""
    if not url:
        return True
    lowered = url.lower()
    return (
        "google.com/s2/favicons" in lowered
        or lowered.rstrip("/").endswith("/favicon.ico")
        or "youtube.com/favicon" in lowered
        or "yt3.ggpht.com/favicon" in lowered
    )


def resolve_favicon(meta_icon: str | None, site_link: str | None, feed_url: str) -> str | None:
    if meta_icon:
        return meta_icon

    site = site_link or feed_url
    if is_reddit(site):
        return REDDIT_FAVICON

    parts = urlsplit(site or "")
    if parts.scheme in ("http", "https") and parts.netloc:
        return f"{parts.scheme}://{parts.netloc}/favicon.ico"

    host = hostname(feed_url)
    return FAVICON_SERVICE.format(host=host) if host else None


def is_valid_channel_id(channel_id: str | None) -> bool:
    if not channel_id:
        return False
    return (channel_id.startswith("UC") and len(channel_id) == 24) or channel_id.startswith("@")


def youtube_channel_id(feed_url: str, meta_channel_id: str | None) -> str | None:
    """Channel id from the feed's ?channel_id= param, else from yt:channelId metadata."""
    qs = parse_qs(urlsplit(feed_url).query)
    candidate = (qs.get("channel_id") or [None])[0]
    if not candidate and meta_channel_id:
        candidate = meta_channel_id if meta_channel_id.startswith("UC") else "UC" + meta_channel_id
    return candidate if is_valid_channel_id(candidate) else None


def normalize_avatar_url(raw: str) -> str:
    url = raw.replace("\\u0026", "&").replace("\\", "")
    if "=s" in url:
        url = re.sub(r"=s\d+.*", YOUTUBE_AVATAR_SIZE, url)
    return url


def scrape_youtube_page(html: str) -> dict:
    """
    Pull channel_id, title and avatar out of a YouTube channel page.

    Keys are present with None values when not found.
    """
    out: dict = {"channel_id": None, "title": None, "avatar": None}

    for pattern in _CHANNEL_ID_PATTERNS:
        match = pattern.search(html)
        if match:
            out["channel_id"] = match.group(1)
            break

    for pattern in AVATAR_PATTERNS:
        match = pattern.search(html)
        if match and match.group(1):
            out["avatar"] = normalize_avatar_url(match.group(1))
            break

    soup = BeautifulSoup(html, "html.parser")
    if out["avatar"] is None:
        for attrs in ({"property": "og:image"}, {"name": "twitter:image"}):
            tag = soup.find("meta", attrs=attrs)
            if tag and tag.get("content"):
                out["avatar"] = normalize_avatar_url(tag["content"])
                break

    title_tag = soup.find("meta", attrs={"property": "og:title"})
    if title_tag and title_tag.get("content"):
        out["title"] = title_tag["content"].strip()
    elif soup.title and soup.title.string:
        out["title"] = re.sub(r"\s*-\s*YouTube\s*$", "", soup.title.string.strip())

    return out


def _youtube_icon_from_api(channel_id: str, settings: Settings) -> str | None:
    url = YOUTUBE_API_CHANNELS.format(id=quote(channel_id), key=quote(settings.youtube_api_key or ""))
    data = http_fetch.get_json(url, timeout_s=settings.icon_timeout_s, user_agent=settings.user_agent)
    items = data.get("items") or []
    if not items:
        return None
    thumbs = (items[0].get("snippet") or {}).get("thumbnails") or {}
    for size in ("high", "medium", "default"):
        if (thumbs.get(size) or {}).get("url"):
            return thumbs[size]["url"]
    return None


def fetch_youtube_icon(channel_id: str, settings: Settings) -> str | None:
    """Channel avatar URL: Data API when a key is configured, then page scrape. None on miss."""
    if settings.youtube_api_key and channel_id.startswith("UC"):
        try:
            icon = _youtube_icon_from_api(channel_id, settings)
            if icon:
                return icon
        except (FeedPipeError, ValueError) as exc:
            log_event("youtube_icon_api_failed", channel_id=channel_id, error=str(exc))

    page_url = (
        f"https://www.youtube.com/{channel_id}"
        if channel_id.startswith("@")
        else f"https://www.youtube.com/channel/{channel_id}"
    )
    try:
        resp = http_fetch.fetch(
            page_url,
            timeout_s=settings.icon_timeout_s,
            user_agent=settings.browser_user_agent,
            headers={"Accept-Language": "en-US,en;q=0.9"},
        )
    except FeedPipeError as exc:
        log_event("youtube_icon_scrape_failed", channel_id=channel_id, error=str(exc))
        return None

    avatar = scrape_youtube_page(resp.text())["avatar"]
    if avatar is None:
        log_event("youtube_icon_not_found", channel_id=channel_id)
    return avatar


def fetch_reddit_icon(subreddit: str, settings: Settings) -> str | None:
    url = f"https://www.reddit.com/r/{quote(subreddit)}/about.json"
    try:
        data = http_fetch.get_json(url, timeout_s=settings.icon_timeout_s, user_agent=settings.user_agent)
    except (FeedPipeError, ValueError) as exc:
        log_event("reddit_icon_failed", subreddit=subreddit, error=str(exc))
        return None

    about = (data.get("data") or {}) if isinstance(data, dict) else {}
    icon = about.get("community_icon") or about.get("icon_img")
    if not icon:
        return None
    return icon.split("?")[0].replace("&amp;", "&")


def subreddit_from_url(url: str | None) -> str | None:
    match = re.search(r"/r/([A-Za-z0-9_]+)", url or "")
    return match.group(1) if match else None
