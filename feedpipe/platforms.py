"""
Platform classification by hostname.
Pure functions: no network I/O, never raises.
"""
from __future__ import annotations

from typing import Literal
from urllib.parse import urlsplit


Platform = Literal["youtube", "reddit", "generic"]

YOUTUBE_HOSTS = ("youtube.com", "youtu.be", "youtube-nocookie.com")
REDDIT_HOSTS = ("reddit.com", "redd.it")


def hostname(url: str | None) -> str:
    """Lowercased hostname, or "" if the input does not parse as a URL."""
    if not url:
        return ""
    text = url.strip()
    if "://" not in text:
        text = "//" + text
    try:
        return (urlsplit(text).hostname or "").lower()
    except ValueError:
        return ""


def _host_matches(host: str, domains: tuple[str, ...]) -> bool:
    return any(host == d or host.endswith("." + d) for d in domains)


def is_youtube(url: str | None) -> bool:
    return _host_matches(hostname(url), YOUTUBE_HOSTS)


def is_reddit(url: str | None) -> bool:
    return _host_matches(hostname(url), REDDIT_HOSTS)


def classify(url: str | None) -> Platform:
    if is_youtube(url):
        return "youtube"
    if is_reddit(url):
        return "reddit"
    return "generic"
