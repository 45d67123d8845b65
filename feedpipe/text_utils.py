"""
Text helpers for article normalization.
Pure functions: no side effects, no network access.
"""
from __future__ import annotations

import html
import re


# Some CMSes write astral characters (emoji) as two UTF-16 surrogate references
_SURROGATE_PAIR_RE = re.compile(r"&#([xX][0-9a-fA-F]+|[0-9]+);&#([xX][0-9a-fA-F]+|[0-9]+);")
_TAG_RE = re.compile(r"<[^>]*>")
_SCRIPT_STYLE_RE = re.compile(r"<(script|style)[^>]*>[\s\S]*?</\1>", re.IGNORECASE)
_IMG_SRC_RE = re.compile(r"<img[^>]+src=[\"']([^\"']+)[\"']", re.IGNORECASE)

# Content images whose URL contains one of these are chrome, not article art
SKIP_IMAGE_MARKERS = ("icon", "avatar", "logo", "spinner")


def _charref_value(ref: str) -> int:
    return int(ref[1:], 16) if ref[0] in "xX" else int(ref)


def _join_surrogates(match: re.Match) -> str:
    high, low = _charref_value(match.group(1)), _charref_value(match.group(2))
    if 0xD800 <= high <= 0xDBFF and 0xDC00 <= low <= 0xDFFF:
        return chr(0x10000 + ((high - 0xD800) << 10) + (low - 0xDC00))
    return match.group(0)


def decode_entities(text: str | None) -> str | None:
    """
    Decode numeric and HTML5 named character references.

    Surrogate pairs are joined into one character; any other invalid code
    point becomes U+FFFD so the text always encodes as UTF-8.
    """
    if text is None:
        return None
    return html.unescape(_SURROGATE_PAIR_RE.sub(_join_surrogates, text))


def strip_html(html: str | None) -> str:
    """Drop tags (and script/style bodies), decode entities, collapse whitespace."""
    if not html:
        return ""
    text = _SCRIPT_STYLE_RE.sub(" ", html)
    text = _TAG_RE.sub(" ", text)
    text = decode_entities(text) or ""
    return re.sub(r"\s+", " ", text).strip()


def truncate(text: str | None, max_length: int) -> str | None:
    """
    Cut to max_length without splitting a word.

    The trailing partial word is removed and "..." appended.
    Text already within budget is returned unchanged.
    """
    if text is None:
        return None
    if len(text) <= max_length:
        return text
    cut = text[:max_length]
    trimmed = re.sub(r"\s+\S*$", "", cut)
    return (trimmed or cut).rstrip() + "..."


def is_usable_image(url: str | None) -> bool:
    if not url or url.startswith("data:"):
        return False
    lowered = url.lower()
    return not any(marker in lowered for marker in SKIP_IMAGE_MARKERS)


def first_content_image(html: str | None) -> str | None:
    """First <img src> in the content that is not a data: URI or an icon-ish asset."""
    if not html:
        return None
    for match in _IMG_SRC_RE.finditer(html):
        src = match.group(1)
        if is_usable_image(src):
            return src
    return None
