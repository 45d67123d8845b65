# Load .env file BEFORE other imports (so env vars are available)
from dotenv import load_dotenv
load_dotenv()

import re
from contextlib import contextmanager

from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from feedpipe.middleware import request_id_middleware
from feedpipe.logging_utils import log_event
from feedpipe.errors import FeedPipeError, NotFoundError, problem

from feedpipe import subscriptions
from feedpipe.assets import AssetCache
from feedpipe.config import Settings, load_settings
from feedpipe.db import db_conn
from feedpipe.discovery import discover_from_url
from feedpipe.refresh import refresh_feed
from feedpipe.repo import get_feed, list_feeds
from feedpipe.schemas import DiscoverUrlRequest, FeedType, SubscribeRequest
from feedpipe.search import discover_by_keyword
from feedpipe.thumbnail_queue import ThumbnailQueue


app = FastAPI()

#Register middleware
app.middleware("http")(request_id_middleware)

_BARE_DOMAIN_RE = re.compile(r"^[\w-]+(\.[\w-]+)+(/\S*)?$")


def get_settings(request: Request) -> Settings:
    """Settings pinned on app.state win; otherwise read the environment per request."""
    return getattr(request.app.state, "settings", None) or load_settings()


@contextmanager
def thumbnail_queue(settings: Settings, assets: AssetCache):
    # Workers keep draining after the response is sent; they exit once the queue is empty
    queue = ThumbnailQueue(settings, assets)
    try:
        yield queue
    finally:
        queue.shutdown(wait=False)


def looks_like_url(q: str) -> bool:
    q = q.strip()
    return q.startswith(("http://", "https://")) or bool(_BARE_DOMAIN_RE.match(q))


def _feed_out(feed) -> dict:
    return feed.model_dump(mode="json")


@app.get("/health")
def health(request: Request):
    request_id = request.state.request_id
    log_event("health_check", request_id=request_id)
    return {"status": "ok"}


# --- Discovery ---

@app.get("/discover")
def discover(request: Request, q: str, limit: int = 20, type: FeedType | None = None):
    """
    One search box: URL-looking input goes through URL discovery first and
    falls back to keyword discovery when that finds nothing.
    """
    settings = get_settings(request)
    request_id = request.state.request_id
    mode = "keyword"
    candidates = []

    if looks_like_url(q):
        url = q.strip() if q.strip().startswith(("http://", "https://")) else f"https://{q.strip()}"
        candidates = discover_from_url(url, settings)
        if type:
            candidates = [c for c in candidates if c.type == type]
        mode = "url"

    if not candidates:
        candidates = discover_by_keyword(q, limit, settings, type=type)
        mode = "keyword"

    log_event("discover_request", request_id=request_id, mode=mode, results=len(candidates))
    return {"query": q, "mode": mode, "results": [c.model_dump(mode="json") for c in candidates[:limit]]}


@app.post("/discover/url")
def discover_url(payload: DiscoverUrlRequest, request: Request):
    settings = get_settings(request)
    candidates = discover_from_url(payload.url, settings)
    log_event("discover_url_request", request_id=request.state.request_id, url=payload.url, results=len(candidates))
    return {"url": payload.url, "results": [c.model_dump(mode="json") for c in candidates]}


# --- Feeds ---

@app.get("/feeds")
def get_feeds(request: Request, user_id: str = "default"):
    with db_conn(get_settings(request)) as conn:
        feeds = list_feeds(conn, user_id=user_id)
    return {"feeds": [_feed_out(f) for f in feeds]}


@app.post("/feeds", status_code=201)
def create_feed(payload: SubscribeRequest, request: Request):
    settings = get_settings(request)
    assets = AssetCache(settings)
    with db_conn(settings) as conn, thumbnail_queue(settings, assets) as thumbnails:
        feed = subscriptions.subscribe(
            conn,
            payload.url,
            settings=settings,
            assets=assets,
            thumbnails=thumbnails,
            user_id=payload.user_id,
            title=payload.title,
            type=payload.type,
        )
    log_event("feed_create_request", request_id=request.state.request_id, feed_id=feed.id)
    return _feed_out(feed)


@app.get("/feeds/{feed_id}")
def get_one_feed(request: Request, feed_id: int):
    with db_conn(get_settings(request)) as conn:
        feed = get_feed(conn, feed_id)
    if feed is None:
        raise NotFoundError(f"feed {feed_id} not found")
    return _feed_out(feed)


@app.post("/feeds/{feed_id}/refresh")
def refresh_one_feed(request: Request, feed_id: int):
    settings = get_settings(request)
    assets = AssetCache(settings)
    with db_conn(settings) as conn, thumbnail_queue(settings, assets) as thumbnails:
        feed = get_feed(conn, feed_id)
        if feed is None:
            raise NotFoundError(f"feed {feed_id} not found")
        result = refresh_feed(conn, feed, settings=settings, assets=assets, thumbnails=thumbnails)
    log_event("feed_refresh_request", request_id=request.state.request_id, feed_id=feed_id, success=result.success)
    return {"feed_id": feed_id, **result.model_dump(mode="json")}


@app.post("/feeds/{feed_id}/pause")
def pause(request: Request, feed_id: int):
    with db_conn(get_settings(request)) as conn:
        return _feed_out(subscriptions.pause_feed(conn, feed_id))


@app.post("/feeds/{feed_id}/resume")
def resume(request: Request, feed_id: int):
    with db_conn(get_settings(request)) as conn:
        return _feed_out(subscriptions.resume_feed(conn, feed_id))


@app.delete("/feeds/{feed_id}")
def delete(request: Request, feed_id: int):
    settings = get_settings(request)
    with db_conn(settings) as conn:
        subscriptions.delete_feed(conn, feed_id, assets=AssetCache(settings))
    return {"status": "deleted", "feed_id": feed_id}


@app.post("/feeds/{feed_id}/restore")
def restore(request: Request, feed_id: int):
    settings = get_settings(request)
    with db_conn(settings) as conn:
        feed = subscriptions.restore_feed(conn, feed_id, settings=settings, assets=AssetCache(settings))
    return _feed_out(feed)


@app.post("/feeds/{feed_id}/refresh-icon")
def refresh_icon(request: Request, feed_id: int):
    settings = get_settings(request)
    with db_conn(settings) as conn:
        feed = subscriptions.refresh_icon(conn, feed_id, settings=settings, assets=AssetCache(settings))
    return _feed_out(feed)


@app.delete("/cache/icons")
def clear_icons(request: Request):
    settings = get_settings(request)
    with db_conn(settings) as conn:
        out = subscriptions.clear_all_icons(conn, assets=AssetCache(settings))
    log_event("icon_cache_cleared", request_id=request.state.request_id, **out)
    return {"status": "cleared", **out}


# --- Error handlers ---

def _problem_response(request: Request, *, status: int, code: str, message: str) -> JSONResponse:
    rid = request.state.request_id
    payload = problem(status=status, code=code, message=message, request_id=rid)
    resp = JSONResponse(status_code=status, content=payload.model_dump(exclude_none=True))
    resp.headers["X-Request-ID"] = rid
    return resp


@app.exception_handler(FeedPipeError)
async def feedpipe_exception_handler(request: Request, exc: FeedPipeError):
    log_event("request_failed", request_id=request.state.request_id, status=exc.status, category=exc.category, message=str(exc))
    return _problem_response(request, status=exc.status, code=exc.category, message=str(exc))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    log_event("http_error", request_id=request.state.request_id, status=exc.status_code, message=str(exc.detail))
    return _problem_response(request, status=exc.status_code, code="http_error", message=str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Return ProblemDetails for Pydantic validation errors."""
    # Extract first error for a clean message
    errors = exc.errors()
    if errors:
        first = errors[0]
        loc = ".".join(str(x) for x in first.get("loc", []))  #e.g., "body.url"
        msg = first.get("msg", "Validation error")
        message = f"{loc}: {msg}"
    else:
        message = "Validation error"

    log_event("validation_error", request_id=request.state.request_id, message=message)
    return _problem_response(request, status=422, code="validation_error", message=message)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    # Don't leak details to the client, but do log them
    log_event("internal_error", request_id=request.state.request_id, error_type=type(exc).__name__)
    return _problem_response(request, status=500, code="internal_error", message="Internal server error")
