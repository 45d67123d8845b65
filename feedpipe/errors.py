from __future__ import annotations

from pydantic import BaseModel

from feedpipe.error_codes import FETCH, NETWORK, NOT_FOUND, PARSE, TIMEOUT, UNKNOWN, VALIDATION


class FeedPipeError(Exception):
    """Base for every failure raised by the pipeline. `category` is the tag refresh persists."""

    category = UNKNOWN
    status = 500


class NetworkError(FeedPipeError):
    """Timeout, DNS failure, refused connection."""

    status = 502

    def __init__(self, message: str, *, timeout: bool = False):
        super().__init__(message)
        self.timeout = timeout
        self.category = TIMEOUT if timeout else NETWORK


class HttpStatusError(FeedPipeError):
    category = FETCH
    status = 502

    def __init__(self, status_code: int, url: str = ""):
        super().__init__(f"HTTP {status_code}" + (f" for {url}" if url else ""))
        self.status_code = status_code
        self.url = url

    @property
    def transient(self) -> bool:
        return self.status_code == 429 or self.status_code >= 500


class ParseError(FeedPipeError, ValueError):
    """Malformed document, or no feed metadata seen by end of stream."""

    category = PARSE
    status = 422


class ValidationError(FeedPipeError, ValueError):
    category = VALIDATION
    status = 400


class NotFoundError(FeedPipeError):
    category = NOT_FOUND
    status = 404


def classify_error(exc: BaseException) -> str:
    """Map an exception to a persisted failure category. Pure tag match, never inspects messages."""
    if isinstance(exc, FeedPipeError) and exc.category in (TIMEOUT, NETWORK, PARSE, FETCH):
        return exc.category
    return UNKNOWN


def format_error(exc: BaseException) -> str:
    """Human-readable `[category] message` stored in feeds.last_error."""
    message = str(exc) or type(exc).__name__
    return f"[{classify_error(exc)}] {message}"


class ProblemDetails(BaseModel):
    status: int
    code: str
    message: str
    request_id: str


def problem(*, status: int, code: str, message: str, request_id: str) -> ProblemDetails:
    return ProblemDetails(status=status, code=code, message=message, request_id=request_id)
