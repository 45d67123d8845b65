"""
Keyword discovery: fan out to directory/platform searches plus AI suggestions,
then merge, annotate, filter and rank.

Every branch is best effort and degrades to [] on any failure.
"""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Callable
from urllib.parse import quote

from feedpipe import http_fetch
from feedpipe.activity import check_activity
from feedpipe.clients.llm_openai import suggest_feed_urls
from feedpipe.config import Settings
from feedpipe.discovery import (
    DIRECT_FEED_TITLE,
    DISCOVERED_FEED_TITLE,
    LINK_TAG_DEFAULT_TITLE,
    YOUTUBE_CHANNEL_FEED,
    annotate_activity,
    discover_from_url,
    sort_by_confidence,
)
from feedpipe.errors import ValidationError
from feedpipe.logging_utils import log_event
from feedpipe.schemas import FEED_TYPES, AiSuggestion, DiscoveredCandidate, FeedType


FEEDLY_SEARCH = "https://cloud.feedly.com/v3/search/feeds?query={term}&count={count}"
ITUNES_SEARCH = "https://itunes.apple.com/search?media=podcast&entity=podcast&term={term}&limit={count}"
YOUTUBE_CHANNEL_SEARCH = (
    "https://www.googleapis.com/youtube/v3/search?part=snippet&type=channel"
    "&q={term}&maxResults={count}&key={key}"
)
REDDIT_SEARCH = "https://www.reddit.com/subreddits/search.json?q={term}&limit={count}"

MIN_TERM_LENGTH = 2
MAX_LIMIT = 50

# Concurrent activity probes / suggestion resolutions per branch
PROBE_WORKERS = 8

CONFIDENCE_DIRECTORY = 0.7
CONFIDENCE_PODCAST_DIRECTORY = 0.75
CONFIDENCE_PLATFORM_SEARCH = 0.7

# Titles that say nothing about the feed; AI suggestions replace them with their own title
GENERIC_TITLES = {DIRECT_FEED_TITLE, DISCOVERED_FEED_TITLE, LINK_TAG_DEFAULT_TITLE, "RSS", "Atom", "Untitled Feed", "YouTube Channel"}


def _get_json(url: str, settings: Settings):
    return http_fetch.get_json(url, timeout_s=settings.page_timeout_s, user_agent=settings.user_agent)


def _pre_annotate(identifier: str, kind: str, settings: Settings) -> dict:
    result = check_activity(identifier, kind, settings)
    return {"is_active": result.is_active, "last_post_date": result.last_post_date}


def _pre_annotate_all(
    candidates: list[DiscoveredCandidate],
    probes: list[tuple[str, str]],
    settings: Settings,
) -> list[DiscoveredCandidate]:
    """Run one activity probe per candidate, concurrently. probes[i] is (identifier, kind) for candidates[i]."""
    if not candidates:
        return []
    with ThreadPoolExecutor(max_workers=min(PROBE_WORKERS, len(candidates))) as executor:
        results = list(executor.map(lambda p: _pre_annotate(p[0], p[1], settings), probes))
    return [c.model_copy(update=r) for c, r in zip(candidates, results)]


def search_rss_directory(term: str, count: int, settings: Settings) -> list[DiscoveredCandidate]:
    data = _get_json(FEEDLY_SEARCH.format(term=quote(term), count=count), settings)
    out = []
    for result in data.get("results") or []:
        feed_id = result.get("feedId") or ""
        if not feed_id.startswith("feed/"):
            continue
        feed_url = feed_id[len("feed/"):]
        out.append(DiscoveredCandidate(
            type="rss",
            title=result.get("title") or feed_url,
            feed_url=feed_url,
            site_url=result.get("website"),
            icon_url=result.get("iconUrl") or result.get("visualUrl"),
            description=result.get("description"),
            confidence=CONFIDENCE_DIRECTORY,
            method="directory",
        ))
    return out


def search_podcasts(term: str, count: int, settings: Settings) -> list[DiscoveredCandidate]:
    data = _get_json(ITUNES_SEARCH.format(term=quote(term), count=count), settings)
    out = []
    for result in data.get("results") or []:
        feed_url = result.get("feedUrl")
        if not feed_url:
            continue
        out.append(DiscoveredCandidate(
            type="podcast",
            title=result.get("collectionName") or result.get("trackName") or feed_url,
            feed_url=feed_url,
            site_url=result.get("collectionViewUrl"),
            icon_url=result.get("artworkUrl100") or result.get("artworkUrl60"),
            description=result.get("artistName"),
            confidence=CONFIDENCE_PODCAST_DIRECTORY,
            method="directory",
        ))
    return out


def search_youtube_channels(term: str, count: int, settings: Settings) -> list[DiscoveredCandidate]:
    """Data API channel search. Pre-annotated from each channel's latest upload."""
    if not settings.youtube_api_key:
        log_event("youtube_search_disabled", reason="YOUTUBE_API_KEY not set")
        return []

    url = YOUTUBE_CHANNEL_SEARCH.format(term=quote(term), count=count, key=quote(settings.youtube_api_key))
    data = _get_json(url, settings)
    out = []
    for item in data.get("items") or []:
        channel_id = (item.get("id") or {}).get("channelId") or (item.get("snippet") or {}).get("channelId")
        if not channel_id:
            continue
        snippet = item.get("snippet") or {}
        thumbs = snippet.get("thumbnails") or {}
        icon = ((thumbs.get("medium") or thumbs.get("default")) or {}).get("url")
        out.append(DiscoveredCandidate(
            type="youtube",
            title=snippet.get("channelTitle") or snippet.get("title") or "YouTube Channel",
            feed_url=YOUTUBE_CHANNEL_FEED.format(id=channel_id),
            site_url=f"https://www.youtube.com/channel/{channel_id}",
            icon_url=icon,
            description=snippet.get("description") or None,
            confidence=CONFIDENCE_PLATFORM_SEARCH,
            method="search",
        ))
    return _pre_annotate_all(out, [(c.feed_url, "youtube") for c in out], settings)


def search_subreddits(term: str, count: int, settings: Settings) -> list[DiscoveredCandidate]:
    """Subreddit search (SFW only). Pre-annotated from each subreddit's newest post."""
    data = _get_json(REDDIT_SEARCH.format(term=quote(term), count=count), settings)
    out = []
    names = []
    for child in (data.get("data") or {}).get("children") or []:
        sub = child.get("data") or {}
        name = sub.get("display_name")
        if not name or sub.get("over18"):
            continue
        icon = (sub.get("community_icon") or sub.get("icon_img") or "").split("?")[0].replace("&amp;", "&") or None
        names.append(name)
        out.append(DiscoveredCandidate(
            type="reddit",
            title=f"r/{name}",
            feed_url=f"https://www.reddit.com/r/{name}/.rss",
            site_url=f"https://www.reddit.com/r/{name}",
            icon_url=icon,
            description=sub.get("public_description") or sub.get("title"),
            confidence=CONFIDENCE_PLATFORM_SEARCH,
            method="search",
        ))
    return _pre_annotate_all(out, [(f"r/{name}", "reddit") for name in names], settings)


def _resolve_suggestion(suggestion: AiSuggestion, settings: Settings) -> list[DiscoveredCandidate]:
    try:
        found = discover_from_url(suggestion.url, settings)
    except Exception as exc:
        log_event("ai_suggestion_resolve_failed", url=suggestion.url, error=str(exc))
        return []

    out = []
    for candidate in found:
        update: dict = {"method": "ai"}
        if suggestion.title and candidate.title in GENERIC_TITLES:
            update["title"] = suggestion.title
        if not candidate.description and suggestion.reason:
            update["description"] = suggestion.reason
        out.append(candidate.model_copy(update=update))
    return out


def resolve_ai_suggestions(suggestions: list[AiSuggestion], settings: Settings) -> list[DiscoveredCandidate]:
    """Re-resolve each suggested URL through URL discovery, concurrently; tag results as AI-sourced."""
    if not suggestions:
        return []
    out: list[DiscoveredCandidate] = []
    with ThreadPoolExecutor(max_workers=min(PROBE_WORKERS, len(suggestions))) as executor:
        for found in executor.map(lambda s: _resolve_suggestion(s, settings), suggestions):
            out.extend(found)
    return out


def _ai_branch(term: str, settings: Settings) -> list[DiscoveredCandidate]:
    return resolve_ai_suggestions(suggest_feed_urls(term, settings=settings), settings)


BRANCHES: dict[str, Callable[[str, int, Settings], list[DiscoveredCandidate]]] = {
    "rss": search_rss_directory,
    "podcast": search_podcasts,
    "youtube": search_youtube_channels,
    "reddit": search_subreddits,
}


def _run_branch(name: str, fn: Callable, *args) -> list[DiscoveredCandidate]:
    try:
        results = fn(*args)
    except Exception as exc:
        log_event("discovery_branch_failed", branch=name, error_type=type(exc).__name__, error=str(exc))
        return []
    log_event("discovery_branch_done", branch=name, candidates=len(results))
    return results


def dedupe_by_feed_url(candidates: list[DiscoveredCandidate]) -> list[DiscoveredCandidate]:
    """First occurrence wins."""
    seen: set[str] = set()
    out = []
    for candidate in candidates:
        if candidate.feed_url in seen:
            continue
        seen.add(candidate.feed_url)
        out.append(candidate)
    return out


def discover_by_keyword(term: str, limit: int, settings: Settings, type: FeedType | None = None) -> list[DiscoveredCandidate]:
    """
    Keyword search across directories, platforms and AI suggestions.

    Steps:
    1. Run the selected branches (all four when type is None) and the AI branch concurrently
    2. Merge, filter by type
    3. Activity-check anything not already annotated, drop inactive
    4. Dedupe by feed_url (first wins), sort by confidence, truncate to limit

    Raises ValidationError for a too-short term, an out-of-range limit or an unknown type.
    """
    term = (term or "").strip()
    if len(term) < MIN_TERM_LENGTH:
        raise ValidationError(f"search term must be at least {MIN_TERM_LENGTH} characters")
    if not 1 <= limit <= MAX_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_LIMIT}")
    if type is not None and type not in FEED_TYPES:
        raise ValidationError(f"unknown feed type: {type!r}")

    selected = [type] if type else list(BRANCHES)

    with ThreadPoolExecutor(max_workers=len(selected) + 1) as executor:
        futures = [executor.submit(_run_branch, name, BRANCHES[name], term, limit, settings) for name in selected]
        ai_future = executor.submit(_run_branch, "ai", _ai_branch, term, settings)
        merged: list[DiscoveredCandidate] = []
        for future in futures:
            merged.extend(future.result())
        merged.extend(ai_future.result())

    if type:
        merged = [c for c in merged if c.type == type]

    annotated = annotate_activity(merged, settings)
    active = [c for c in annotated if c.is_active is not False]

    ranked = sort_by_confidence(dedupe_by_feed_url(active))[:limit]
    log_event("discovery_keyword_done", term=term, type=type, merged=len(merged), active=len(active), returned=len(ranked))
    return ranked
