"""
Local cache of remote icon/thumbnail binaries.

Layout: <cache_dir>/icons/feed-<id>.<ext> and <cache_dir>/thumbnails/article-<id>.<ext>.
One file per owner; caching again replaces whatever was there.
"""
from __future__ import annotations

import re
from pathlib import Path, PurePosixPath
from typing import Literal
from urllib.parse import urlsplit

from feedpipe import http_fetch
from feedpipe.config import Settings
from feedpipe.errors import FeedPipeError
from feedpipe.logging_utils import log_event
from feedpipe.schemas import CachedAsset


AssetKind = Literal["icons", "thumbnails"]

OWNER_PREFIX = {"icons": "feed", "thumbnails": "article"}

MIME_FROM_EXTENSION = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
    ".gif": "image/gif",
    ".ico": "image/x-icon",
    ".svg": "image/svg+xml",
}
DEFAULT_EXTENSION = ".png"
IMAGE_ACCEPT = "image/*,*/*;q=0.8"

_SAFE_FILE_RE = re.compile(r"^[a-zA-Z0-9_-]+\.[a-zA-Z0-9]+$")


def is_safe_file_ref(file_ref: str) -> bool:
    if "/" in file_ref or "\\" in file_ref or ".." in file_ref:
        return False
    return bool(_SAFE_FILE_RE.match(file_ref))


def normalize_extension(ext: str) -> str:
    ext = ext.lower() if ext.startswith(".") else f".{ext.lower()}"
    return ext if ext in MIME_FROM_EXTENSION else DEFAULT_EXTENSION


def derive_extension(url: str, content_type: str | None) -> str:
    """Extension from an image/* content type, else from the URL path, else .png."""
    mime = (content_type or "").split(";")[0].strip().lower()
    if mime.startswith("image/"):
        for ext, known in MIME_FROM_EXTENSION.items():
            if known == mime:
                return ext
        if mime == "image/vnd.microsoft.icon":
            return ".ico"
    suffix = PurePosixPath(urlsplit(url).path).suffix
    return normalize_extension(suffix) if suffix else DEFAULT_EXTENSION


def mime_for(file_ref: str, override: str | None = None) -> str:
    if override:
        return override
    return MIME_FROM_EXTENSION.get(PurePosixPath(file_ref).suffix.lower(), "application/octet-stream")


class AssetCache:
    def __init__(self, settings: Settings):
        self.settings = settings
        self.root = Path(settings.cache_dir)

    def kind_dir(self, kind: AssetKind) -> Path:
        path = self.root / kind
        path.mkdir(parents=True, exist_ok=True)
        return path

    def resolve_path(self, file_ref: str, kind: AssetKind = "icons") -> Path | None:
        if not is_safe_file_ref(file_ref):
            log_event("asset_invalid_file_ref", file_ref=file_ref, kind=kind)
            return None
        return self.kind_dir(kind) / file_ref

    def _owner_files(self, owner_id: int, kind: AssetKind) -> list[Path]:
        return list(self.kind_dir(kind).glob(f"{OWNER_PREFIX[kind]}-{owner_id}.*"))

    def cache_asset(self, owner_id: int, source_url: str | None, kind: AssetKind = "icons") -> CachedAsset | None:
        """
        Fetch and persist one image for an owner.

        Returns None (and logs) on a non-http URL, fetch failure, non-image
        content type or oversize body. Never raises for remote failures.
        """
        if not source_url or not source_url.startswith(("http://", "https://")):
            return None

        user_agent = self.settings.browser_user_agent if kind == "icons" else self.settings.user_agent
        try:
            resp = http_fetch.fetch_with_retry(
                source_url,
                attempts=self.settings.fetch_attempts,
                base_sleep_s=self.settings.retry_base_sleep_s,
                timeout_s=self.settings.icon_timeout_s,
                user_agent=user_agent,
                headers={"Accept": IMAGE_ACCEPT, "Accept-Language": "en-US,en;q=0.9"},
                max_bytes=self.settings.max_asset_bytes,
            )
        except FeedPipeError as exc:
            log_event("asset_fetch_failed", owner_id=owner_id, kind=kind, url=source_url, error=str(exc))
            return None

        content_type = resp.content_type.split(";")[0].strip()
        if content_type and not content_type.startswith("image/") and content_type != "application/octet-stream":
            log_event("asset_rejected_content_type", owner_id=owner_id, kind=kind, content_type=content_type)
            return None
        if len(resp.body) > self.settings.max_asset_bytes:
            log_event("asset_rejected_size", owner_id=owner_id, kind=kind, max_bytes=self.settings.max_asset_bytes)
            return None
        if not resp.body:
            log_event("asset_rejected_empty", owner_id=owner_id, kind=kind)
            return None

        file_ref = f"{OWNER_PREFIX[kind]}-{owner_id}{derive_extension(source_url, content_type)}"
        path = self.resolve_path(file_ref, kind)
        if path is None:
            return None

        self.clear_asset(owner_id, kind)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_bytes(resp.body)
        tmp.replace(path)

        mime = content_type if content_type.startswith("image/") else mime_for(file_ref)
        log_event("asset_cached", owner_id=owner_id, kind=kind, file_ref=file_ref, bytes=len(resp.body))
        return CachedAsset(file_ref=file_ref, mime_type=mime)

    def clear_asset(self, owner_id: int, kind: AssetKind = "icons") -> bool:
        removed = False
        for path in self._owner_files(owner_id, kind):
            path.unlink(missing_ok=True)
            removed = True
        return removed

    def clear_all_assets(self, kind: AssetKind | None = None) -> int:
        """Delete every cached file of one kind (or both). Returns the number of files removed."""
        removed = 0
        for k in ([kind] if kind else list(OWNER_PREFIX)):
            for path in self.kind_dir(k).iterdir():
                if path.is_file() and path.name != ".gitkeep":
                    path.unlink(missing_ok=True)
                    removed += 1
        log_event("asset_cache_cleared", kind=kind or "all", removed=removed)
        return removed
