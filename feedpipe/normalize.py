# feedpipe/normalize.py
"""
Article normalization: RawArticle -> NormalizedArticle.
Pure functions: no side effects, no network or database access.

Platform transforms are applied by feed type:
- youtube: video id from guid/link, synthesized watch URL and thumbnail
- reddit: footer table stripped, u/ author prefix, preview image upgrade
- everything else: plain-text summary truncated on a word boundary
"""
from __future__ import annotations

import re
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from feedpipe.schemas import FeedType, NormalizedArticle, RawArticle
from feedpipe.text_utils import decode_entities, first_content_image, is_usable_image, strip_html, truncate


MAX_SUMMARY_CHARS = 500
REDDIT_SUMMARY_CHARS = 200

YOUTUBE_GUID_RE = re.compile(r"(?:yt:video:|video:)([a-zA-Z0-9_-]{11})")
YOUTUBE_LINK_RE = re.compile(r"(?:v=|youtu\.be/|/embed/|/shorts/)([a-zA-Z0-9_-]{11})")

_REDDIT_TABLE_RE = re.compile(r"<table[^>]*>[\s\S]*?</table>", re.IGNORECASE)
_IMAGE_LINK_RE = re.compile(r"<a[^>]+href=[\"']([^\"']+\.(?:jpg|jpeg|png|gif|webp)(?:\?[^\"']*)?)[\"']", re.IGNORECASE)


def youtube_video_id(guid: str | None, link: str | None) -> str | None:
    match = YOUTUBE_GUID_RE.search(guid or "") or YOUTUBE_LINK_RE.search(link or "")
    return match.group(1) if match else None


def youtube_watch_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"


def youtube_thumbnail_url(video_id: str) -> str:
    return f"https://img.youtube.com/vi/{video_id}/maxresdefault.jpg"


def clean_reddit_content(html: str | None) -> str | None:
    """Remove the "submitted by ... [link] [comments]" footer table reddit injects."""
    if html is None:
        return None
    return _REDDIT_TABLE_RE.sub("", html).strip()


def reddit_author(author: str | None) -> str | None:
    if not author:
        return author
    name = author.strip().lstrip("/")
    return name if name.startswith("u/") else f"u/{name}"


def upgrade_reddit_image_url(url: str) -> str:
    """Ask reddit's preview hosts for a 640px webp variant. Signed URLs (s=...) are left alone."""
    parts = urlsplit(url)
    params = parse_qsl(parts.query, keep_blank_values=True)
    if any(k == "s" and v for k, v in params):
        return url

    host = (parts.hostname or "").lower()
    if host == "preview.redd.it":
        wanted = {"width": "640", "crop": "smart", "auto": "webp"}
    elif host == "external-preview.redd.it":
        wanted = {"width": "640", "format": "jpg", "auto": "webp"}
    else:
        return url

    kept = [(k, v) for k, v in params if k not in wanted]
    query = urlencode(kept + list(wanted.items()))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def reddit_content_image(html: str | None) -> str | None:
    """First usable <img src>, else an <a href> pointing at an image file."""
    src = first_content_image(html)
    if src is None and html:
        for match in _IMAGE_LINK_RE.finditer(html):
            if is_usable_image(match.group(1)):
                src = match.group(1)
                break
    if src is None:
        return None
    return upgrade_reddit_image_url(decode_entities(src) or src)


def hero_image(raw: RawArticle) -> str | None:
    return raw.image or raw.thumbnail or first_content_image(raw.description)


def normalize_article(
    raw: RawArticle,
    feed_type: FeedType,
    *,
    summary_max_chars: int = MAX_SUMMARY_CHARS,
    reddit_summary_max_chars: int = REDDIT_SUMMARY_CHARS,
) -> NormalizedArticle:
    title = decode_entities(raw.title) or raw.title
    url = raw.link
    author = raw.author
    content = raw.description
    thumbnail = hero_image(raw)
    summary_source = raw.summary or raw.description

    if feed_type == "youtube":
        video_id = youtube_video_id(raw.guid, raw.link)
        if video_id:
            url = url or youtube_watch_url(video_id)
            thumbnail = thumbnail or youtube_thumbnail_url(video_id)
        summary = truncate(strip_html(summary_source), summary_max_chars) or None

    elif feed_type == "reddit":
        content = clean_reddit_content(raw.description)
        summary = truncate(strip_html(content), reddit_summary_max_chars) or None
        author = reddit_author(author)
        thumbnail = raw.image or raw.thumbnail or reddit_content_image(content)

    else:
        summary = truncate(strip_html(summary_source), summary_max_chars) or None

    enclosure = raw.enclosures[0] if raw.enclosures else None

    return NormalizedArticle(
        guid=raw.guid,
        title=title,
        url=url,
        author=author,
        summary=summary,
        content=content,
        enclosure_url=enclosure.url if enclosure else None,
        enclosure_type=enclosure.type if enclosure else None,
        thumbnail_url=thumbnail,
        published_at=raw.pubdate,
    )
