# Enable type hint syntax from future Python versions (allows using | for union types)
from __future__ import annotations

import http.client
import json
import time
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from urllib.parse import urlsplit

from feedpipe.errors import HttpStatusError, NetworkError, ValidationError


@dataclass
class HttpResponse:
    url: str
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "").lower()

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def text(self) -> str:
        charset = "utf-8"
        for part in self.content_type.split(";")[1:]:
            key, _, value = part.strip().partition("=")
            if key == "charset" and value:
                charset = value.strip('"')
        try:
            return self.body.decode(charset, errors="replace")
        except LookupError:
            return self.body.decode("utf-8", errors="replace")

    def json(self):
        return json.loads(self.text())


def validate_url(url: str) -> str:
    """Reject anything that is not an absolute http(s) URL with a sane hostname."""
    parts = urlsplit((url or "").strip())
    if parts.scheme not in ("http", "https"):
        raise ValidationError(f"unsupported URL scheme: {url!r}")
    if not parts.hostname or len(parts.hostname) > 253:
        raise ValidationError(f"invalid URL host: {url!r}")
    return url.strip()


# Single request, no retries. Every failure leaves as a tagged FeedPipeError.
def fetch(
    url: str,
    *,
    timeout_s: float,
    user_agent: str,
    method: str = "GET",
    headers: dict[str, str] | None = None,
    data: bytes | None = None,
    max_bytes: int | None = None,
) -> HttpResponse:
    """Perform one HTTP request (redirects followed) and return the final response."""
    req_headers = {"User-Agent": user_agent, **(headers or {})}
    req = urllib.request.Request(url, data=data, headers=req_headers, method=method)

    try:
        with urllib.request.urlopen(req, timeout=timeout_s) as resp:
            status = getattr(resp, "status", None) or 200
            # Only the first max_bytes + 1 bytes are read so callers can detect oversize bodies
            body = b"" if method == "HEAD" else (resp.read(max_bytes + 1) if max_bytes else resp.read())
            final_url = resp.geturl() if hasattr(resp, "geturl") else url
            raw_headers = getattr(resp, "headers", None)
            resp_headers = {k.lower(): v for k, v in (raw_headers.items() if raw_headers else [])}

    except urllib.error.HTTPError as exc:
        raise HttpStatusError(exc.code, url) from exc
    except urllib.error.URLError as exc:
        if isinstance(exc.reason, TimeoutError):
            raise NetworkError(f"timeout fetching {url}", timeout=True) from exc
        raise NetworkError(f"URL error for {url}: {exc.reason}") from exc
    except TimeoutError as exc:
        raise NetworkError(f"timeout fetching {url}", timeout=True) from exc
    except (http.client.HTTPException, OSError) as exc:
        raise NetworkError(f"connection error for {url}: {exc}") from exc

    if not 200 <= status < 300:
        raise HttpStatusError(status, url)

    return HttpResponse(url=final_url or url, status=status, headers=resp_headers, body=body)


# Fetch with exponential backoff for transient failures (timeouts, connection errors, 429, 5xx)
def fetch_with_retry(
    url: str,
    *,
    attempts: int = 3,
    base_sleep_s: float = 0.5,
    **kwargs,
) -> HttpResponse:
    if attempts < 1:
        raise ValueError(f"attempts must be >= 1, got {attempts}")
    last_exc: Exception | None = None

    for i in range(attempts):
        try:
            return fetch(url, **kwargs)
        except HttpStatusError as exc:
            last_exc = exc
            # Other 4xx are permanent, no retry
            if not exc.transient:
                raise
        except NetworkError as exc:
            last_exc = exc

        if i < attempts - 1:
            time.sleep(base_sleep_s * (2 ** i))

    raise last_exc


def get_json(url: str, *, timeout_s: float, user_agent: str, headers: dict[str, str] | None = None):
    resp = fetch(url, timeout_s=timeout_s, user_agent=user_agent, headers={"Accept": "application/json", **(headers or {})})
    return resp.json()


def post_json(url: str, payload: dict, *, timeout_s: float, user_agent: str, headers: dict[str, str] | None = None):
    resp = fetch(
        url,
        timeout_s=timeout_s,
        user_agent=user_agent,
        method="POST",
        data=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json", **(headers or {})},
    )
    return resp.json()
