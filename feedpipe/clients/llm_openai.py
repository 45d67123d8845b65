from __future__ import annotations

import time

from feedpipe import http_fetch
from feedpipe.config import Settings
from feedpipe.errors import FeedPipeError
from feedpipe.json_utils import safe_parse_json
from feedpipe.logging_utils import log_event
from feedpipe.schemas import AiSuggestion


OPENAI_URL = "https://api.openai.com/v1/chat/completions"
MAX_SUGGESTIONS = 8

#Cost estimates (per 1k tokens) - for logging only
COST_PER_1K_PROMPT = 0.00015
COST_PER_1K_COMPLETION = 0.0006

SUGGESTION_PROMPT = """You are a feed discovery assistant. Given the keyword "{term}", suggest 5-8 high-quality websites, blogs, YouTube channels, or subreddits that likely have RSS or Atom feeds.
Return the result as a raw JSON array of objects with "url", "title", and "reason" fields.
Make sure the URLs are direct links to the homepages or channel pages.
Do not include any other text in your response, only the raw JSON array.
"""


def suggest_feed_urls(term: str, *, settings: Settings) -> list[AiSuggestion]:
    """
    Ask the model for sites likely to publish feeds about `term`.

    Contract:
    - ALWAYS returns a list (never raises)
    - Returns [] when no API key is configured, on API errors and on unparseable output
    - Suggestions are unverified; callers re-resolve every URL through discovery
    """
    if not settings.openai_api_key:
        log_event("ai_suggestions_disabled", reason="OPENAI_API_KEY not set")
        return []

    t0 = time.perf_counter()
    payload = {
        "model": settings.openai_model,
        "messages": [{"role": "user", "content": SUGGESTION_PROMPT.format(term=term)}],
        "temperature": 0.2,
        "max_tokens": 800,
    }

    try:
        body = http_fetch.post_json(
            OPENAI_URL,
            payload,
            timeout_s=settings.feed_timeout_s,
            user_agent=settings.user_agent,
            headers={"Authorization": f"Bearer {settings.openai_api_key}"},
        )
        content = body["choices"][0]["message"]["content"]
        usage = body.get("usage", {})
    except (FeedPipeError, ValueError, KeyError, IndexError, TypeError) as exc:
        log_event("ai_suggestions_api_fail", term=term, error=str(exc), latency_ms=_elapsed_ms(t0))
        return []

    data = safe_parse_json(content)
    if not isinstance(data, list):
        log_event("ai_suggestions_parse_fail", term=term, raw=content[:200])
        return []

    suggestions: list[AiSuggestion] = []
    for entry in data:
        if not isinstance(entry, dict) or not isinstance(entry.get("url"), str):
            continue
        suggestions.append(AiSuggestion(
            url=entry["url"].strip(),
            title=entry.get("title") or "Suggested Site",
            reason=entry.get("reason") or "",
        ))

    log_event("ai_suggestions_ok",
        model=settings.openai_model,
        term=term,
        count=len(suggestions),
        latency_ms=_elapsed_ms(t0),
        cost_usd=_compute_cost(usage.get("prompt_tokens", 0), usage.get("completion_tokens", 0)),
    )
    return suggestions[:MAX_SUGGESTIONS]


def _elapsed_ms(t0: float) -> int:
    """Calculate elapsed milliseconds since t0."""
    return int((time.perf_counter() - t0) * 1000)


def _compute_cost(prompt_tokens: int, completion_tokens: int) -> float:
    """Compute cost in USD from token counts."""
    return round(
        prompt_tokens / 1000 * COST_PER_1K_PROMPT +
        completion_tokens / 1000 * COST_PER_1K_COMPLETION,
        6
    )
