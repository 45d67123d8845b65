# feedpipe/feed_parse.py
from __future__ import annotations

import hashlib
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

from feedpipe import http_fetch, icons
from feedpipe.config import Settings
from feedpipe.errors import HttpStatusError, ParseError
from feedpipe.logging_utils import log_event
from feedpipe.platforms import is_reddit, is_youtube
from feedpipe.schemas import Enclosure, FeedType, ParsedFeed, RawArticle


ATOM = "http://www.w3.org/2005/Atom"
ITUNES = "http://www.itunes.com/dtds/podcast-1.0.dtd"
MEDIA = "http://search.yahoo.com/mrss/"
CONTENT = "http://purl.org/rss/1.0/modules/content/"
DC = "http://purl.org/dc/elements/1.1/"
YT = "http://www.youtube.com/xml/schemas/2015"
PODCAST_NS = "https://podcastindex.org/namespace/1.0"
RDF = "http://www.w3.org/1999/02/22-rdf-syntax-ns#"
RSS1 = "http://purl.org/rss/1.0/"

DEFAULT_FEED_TITLE = "Untitled Feed"
DEFAULT_ARTICLE_TITLE = "Untitled"
GENERATED_GUID_PREFIX = "generated-"

FEED_ACCEPT = "application/rss+xml, application/atom+xml, application/xml;q=0.9, text/xml;q=0.9, */*;q=0.8"

# Elements that open a feed-level metadata block (RSS 2.0 channel, Atom feed, RSS 1.0 channel)
_FEED_CONTAINERS = {"channel", "feed"}
_ITEM_CONTAINERS = {"item", "entry"}
_CHUNK = 64 * 1024


def _split(tag: str) -> tuple[str, str]:
    if tag.startswith("{"):
        ns, _, local = tag[1:].partition("}")
        return ns, local
    return "", tag


def _text(elem: ET.Element) -> str | None:
    if elem.text is None:
        return None
    text = elem.text.strip()
    return text or None


def parse_date(value: str | None) -> datetime | None:
    """RFC 822 (RSS) or ISO 8601 (Atom, dc:date). Naive results are taken as UTC."""
    if not value:
        return None
    value = value.strip()
    dt: datetime | None = None
    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        dt = None
    if dt is None:
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def generated_guid(title: str, link: str | None, pubdate: datetime | None) -> str:
    raw = f"{title}|{link or ''}|{pubdate.isoformat() if pubdate else ''}".encode("utf-8")
    return GENERATED_GUID_PREFIX + hashlib.sha256(raw).hexdigest()[:16]


class _ItemState:
    def __init__(self, about: str | None = None):
        self.fields: dict[str, str] = {}
        self.enclosures: list[Enclosure] = []
        self.link: str | None = None
        self.image: str | None = None
        self.thumbnail: str | None = None
        self.about = about

    def set_first(self, key: str, value: str | None) -> None:
        if value and key not in self.fields:
            self.fields[key] = value

    def build(self) -> RawArticle:
        f = self.fields
        title = f.get("title") or f.get("media_title") or DEFAULT_ARTICLE_TITLE
        link = self.link or f.get("link")
        pubdate = parse_date(f.get("pubdate") or f.get("published") or f.get("updated") or f.get("dc_date"))
        summary = f.get("description") or f.get("summary") or f.get("itunes_summary") or f.get("media_description")
        body = f.get("content") or f.get("description") or f.get("summary")
        guid = f.get("guid") or f.get("id") or self.about or link or generated_guid(title, link, pubdate)
        return RawArticle(
            guid=guid,
            title=title,
            link=link,
            author=f.get("author") or f.get("dc_creator") or f.get("itunes_author"),
            summary=summary,
            description=body,
            pubdate=pubdate,
            enclosures=self.enclosures,
            image=self.image,
            thumbnail=self.thumbnail,
        )


def _enclosure(attrs: dict) -> Enclosure | None:
    url = attrs.get("url") or attrs.get("href")
    if not url:
        return None
    length = attrs.get("length")
    return Enclosure(url=url, type=attrs.get("type"), length=int(length) if length and length.isdigit() else None)


def _pick_link(current: str | None, attrs: dict) -> str | None:
    rel = attrs.get("rel", "alternate")
    href = attrs.get("href")
    if not href or rel not in ("alternate", ""):
        return current
    return current or href


def parse_feed_document(body: bytes | str, *, feed_url: str) -> ParsedFeed:
    """
    Stream-parse an RSS 2.0, RSS 1.0 (RDF) or Atom document.

    Rules:
    - Items are accumulated in document order
    - Feed-level metadata must be seen (channel/feed element), else ParseError
    - Malformed XML -> ParseError
    - Podcast signal: audio/* enclosure, channel itunes:author/itunes:summary, or any podcastindex element
    - Favicon resolved from metadata only (no network)
    """
    parser = ET.XMLPullParser(events=("start", "end"))
    data = body.encode("utf-8") if isinstance(body, str) else body

    meta: dict[str, str] = {}
    meta_seen = False
    is_podcast = False
    meta_icon: str | None = None
    feed_link: str | None = None
    articles: list[RawArticle] = []
    stack: list[str] = []
    item: _ItemState | None = None

    def handle(event: str, elem: ET.Element) -> None:
        nonlocal meta_seen, is_podcast, meta_icon, feed_link, item
        ns, local = _split(elem.tag)

        if event == "start":
            stack.append(local)
            if local in _FEED_CONTAINERS and ns in ("", ATOM, RSS1):
                meta_seen = True
            elif local in _ITEM_CONTAINERS and item is None:
                item = _ItemState(about=elem.get(f"{{{RDF}}}about"))
            return

        stack.pop()
        parent = stack[-1] if stack else ""
        text = _text(elem)
        attrs = dict(elem.attrib)

        if ns == PODCAST_NS:
            is_podcast = True

        if item is not None:
            if local in _ITEM_CONTAINERS:
                articles.append(item.build())
                item = None
                elem.clear()
                return
            _item_field(item, ns, local, parent, text, attrs)
            return

        # Feed-level fields: direct children of channel/feed, plus <image><url>
        if parent == "image" and local == "url" and ns in ("", RSS1):
            meta_icon = meta_icon or text
            return
        if parent not in _FEED_CONTAINERS:
            return

        if ns in ("", ATOM, RSS1):
            if local == "title" and text:
                meta.setdefault("title", text)
            elif local == "link":
                if text:
                    feed_link = feed_link or text
                else:
                    feed_link = _pick_link(feed_link, attrs)
            elif local in ("description", "subtitle") and text:
                meta.setdefault("description", text)
            elif local in ("icon", "logo") and text:
                meta_icon = meta_icon or text
        elif ns == ITUNES:
            if local in ("author", "summary") and text:
                is_podcast = True
                if local == "summary":
                    meta.setdefault("description", text)
            elif local == "image" and attrs.get("href"):
                meta_icon = meta_icon or attrs["href"]
        elif ns == MEDIA and local in ("thumbnail", "content") and attrs.get("url"):
            meta_icon = meta_icon or attrs["url"]
        elif ns == YT and local == "channelId" and text:
            meta.setdefault("yt_channel_id", text)

    try:
        for offset in range(0, len(data), _CHUNK):
            parser.feed(data[offset:offset + _CHUNK])
            for event, elem in parser.read_events():
                handle(event, elem)
        parser.close()
        for event, elem in parser.read_events():
            handle(event, elem)
    except ET.ParseError as exc:
        raise ParseError(f"malformed feed XML: {exc}") from exc

    if not meta_seen:
        raise ParseError("no feed metadata found (not an RSS/Atom document)")

    if any((enc.type or "").startswith("audio/") for a in articles for enc in a.enclosures):
        is_podcast = True

    return ParsedFeed(
        title=meta.get("title") or DEFAULT_FEED_TITLE,
        description=meta.get("description"),
        link=feed_link,
        favicon=icons.resolve_favicon(meta_icon, feed_link, feed_url),
        articles=articles,
        is_podcast=is_podcast,
        youtube_channel_id=meta.get("yt_channel_id"),
    )


def _item_field(item: _ItemState, ns: str, local: str, parent: str, text: str | None, attrs: dict) -> None:
    if ns in ("", ATOM, RSS1):
        if local == "name" and parent == "author":
            item.set_first("author", text)
        elif local == "link":
            if text:
                item.link = item.link or text
            elif attrs.get("rel") == "enclosure":
                enc = _enclosure(attrs)
                if enc:
                    item.enclosures.append(enc)
            else:
                item.link = _pick_link(item.link, attrs)
        elif local == "enclosure":
            enc = _enclosure(attrs)
            if enc:
                item.enclosures.append(enc)
        elif local == "pubDate":
            item.set_first("pubdate", text)
        elif local == "author" and text:
            item.set_first("author", text)
        elif local in ("title", "guid", "id", "description", "summary", "published", "updated"):
            item.set_first(local, text)
        elif local == "content":
            item.set_first("content", text)
    elif ns == CONTENT and local == "encoded":
        item.set_first("content", text)
    elif ns == DC and local in ("creator", "date"):
        item.set_first(f"dc_{local}", text)
    elif ns == ITUNES:
        if local == "image" and attrs.get("href"):
            item.image = item.image or attrs["href"]
        elif local in ("author", "summary"):
            item.set_first(f"itunes_{local}", text)
    elif ns == MEDIA:
        if local == "thumbnail" and attrs.get("url"):
            item.thumbnail = item.thumbnail or attrs["url"]
        elif local == "content" and attrs.get("url"):
            if attrs.get("medium") == "image" or (attrs.get("type") or "").startswith("image/"):
                item.image = item.image or attrs["url"]
        elif local == "title":
            item.set_first("media_title", text)
        elif local == "description":
            item.set_first("media_description", text)


def detect_type(url: str, parsed: ParsedFeed) -> FeedType:
    """Hostname first (feed URL, then site link), then the podcast signal, else rss."""
    if is_youtube(url) or is_youtube(parsed.link):
        return "youtube"
    if is_reddit(url) or is_reddit(parsed.link):
        return "reddit"
    if parsed.is_podcast:
        return "podcast"
    return "rss"


def _fetch_feed_body(url: str, settings: Settings) -> bytes:
    kwargs = dict(
        attempts=settings.fetch_attempts,
        base_sleep_s=settings.retry_base_sleep_s,
        timeout_s=settings.feed_timeout_s,
        headers={"Accept": FEED_ACCEPT},
    )
    try:
        return http_fetch.fetch_with_retry(url, user_agent=settings.user_agent, **kwargs).body
    except HttpStatusError as exc:
        # YouTube rejects some non-browser clients on videos.xml
        if not is_youtube(url):
            raise
        log_event("feed_fetch_retry_browser_ua", url=url, status=exc.status_code)
        return http_fetch.fetch_with_retry(url, user_agent=settings.browser_user_agent, **kwargs).body


def parse_feed(url: str, settings: Settings, skip_icon_fetch: bool = False) -> ParsedFeed:
    """
    Fetch and parse a feed, then resolve its icon.

    Raises:
        ValidationError for a malformed URL
        NetworkError / HttpStatusError when the document cannot be fetched
        ParseError when it is not a usable feed
    """
    url = http_fetch.validate_url(url)
    body = _fetch_feed_body(url, settings)
    parsed = parse_feed_document(body, feed_url=url)

    if not skip_icon_fetch:
        platform_icon = None
        if is_youtube(url) or is_youtube(parsed.link):
            channel_id = icons.youtube_channel_id(url, parsed.youtube_channel_id)
            if channel_id:
                platform_icon = icons.fetch_youtube_icon(channel_id, settings)
        elif is_reddit(url) or is_reddit(parsed.link):
            subreddit = icons.subreddit_from_url(url) or icons.subreddit_from_url(parsed.link)
            if subreddit:
                platform_icon = icons.fetch_reddit_icon(subreddit, settings)
        if platform_icon:
            parsed.favicon = platform_icon

    log_event("feed_parsed", url=url, articles=len(parsed.articles), is_podcast=parsed.is_podcast)
    return parsed


