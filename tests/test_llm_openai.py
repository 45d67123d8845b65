import json
from unittest.mock import patch

import pytest

from feedpipe.clients.llm_openai import MAX_SUGGESTIONS, _compute_cost, _elapsed_ms, suggest_feed_urls
from feedpipe.errors import HttpStatusError, NetworkError


@pytest.fixture
def keyed(settings):
    return settings.model_copy(update={"openai_api_key": "sk-test"})


def _completion(content: str) -> dict:
    return {
        "choices": [{"message": {"content": content}}],
        "usage": {"prompt_tokens": 100, "completion_tokens": 50},
    }


def test_no_api_key_returns_empty(settings):
    with patch("feedpipe.clients.llm_openai.http_fetch.post_json") as post:
        assert suggest_feed_urls("rust", settings=settings) == []
    post.assert_not_called()


def test_parses_fenced_json_response(keyed):
    content = "```json\n" + json.dumps([
        {"url": "https://blog.rust-lang.org/", "title": "Rust Blog", "reason": "Official"},
        {"url": " https://this-week-in-rust.org ", "reason": "Weekly"},
    ]) + "\n```"

    with patch("feedpipe.clients.llm_openai.http_fetch.post_json", return_value=_completion(content)) as post:
        out = suggest_feed_urls("rust", settings=keyed)

    assert [s.url for s in out] == ["https://blog.rust-lang.org/", "https://this-week-in-rust.org"]
    assert out[1].title == "Suggested Site"
    assert post.call_args.kwargs["headers"]["Authorization"] == "Bearer sk-test"
    assert "rust" in post.call_args.args[1]["messages"][0]["content"]


def test_suggestions_are_capped(keyed):
    content = json.dumps([{"url": f"https://site{i}.example.com"} for i in range(12)])
    with patch("feedpipe.clients.llm_openai.http_fetch.post_json", return_value=_completion(content)):
        out = suggest_feed_urls("news", settings=keyed)
    assert len(out) == MAX_SUGGESTIONS


def test_skips_malformed_entries(keyed):
    content = json.dumps([{"title": "no url"}, "just a string", {"url": 42}, {"url": "https://ok.example.com"}])
    with patch("feedpipe.clients.llm_openai.http_fetch.post_json", return_value=_completion(content)):
        out = suggest_feed_urls("news", settings=keyed)
    assert [s.url for s in out] == ["https://ok.example.com"]


@pytest.mark.parametrize("exc", [HttpStatusError(500), NetworkError("boom", timeout=True)])
def test_api_errors_return_empty(keyed, exc):
    with patch("feedpipe.clients.llm_openai.http_fetch.post_json", side_effect=exc):
        assert suggest_feed_urls("news", settings=keyed) == []


def test_unexpected_response_shape_returns_empty(keyed):
    with patch("feedpipe.clients.llm_openai.http_fetch.post_json", return_value={"choices": []}):
        assert suggest_feed_urls("news", settings=keyed) == []


def test_non_array_content_returns_empty(keyed):
    with patch("feedpipe.clients.llm_openai.http_fetch.post_json", return_value=_completion("I can't help with that")):
        assert suggest_feed_urls("news", settings=keyed) == []


def test_elapsed_ms_and_cost():
    assert _elapsed_ms(0.0) >= 0
    assert _compute_cost(1000, 1000) == round(0.00015 + 0.0006, 6)
