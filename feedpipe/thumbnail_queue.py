"""
Background thumbnail caching.

Refresh hands newly inserted (article_id, thumbnail_url) pairs to a bounded
queue of batches drained by a fixed pool of worker threads. Submission never
blocks: when the queue is full the batch is dropped and counted. Failures are
logged and counted, never raised to the submitter. No retries.
"""
from __future__ import annotations

import queue
import threading

from feedpipe.assets import AssetCache
from feedpipe.config import Settings
from feedpipe.db import get_conn
from feedpipe.logging_utils import log_event
from feedpipe.repo import set_article_thumbnail_cache


# How long an idle worker waits before rechecking the stop flag
IDLE_POLL_S = 0.1


class ThumbnailQueue:
    def __init__(self, settings: Settings, assets: AssetCache):
        self.settings = settings
        self.assets = assets
        self._queue: queue.Queue = queue.Queue(maxsize=settings.thumbnail_queue_size)
        self._lock = threading.Lock()
        self._stats = {"submitted": 0, "cached": 0, "failed": 0, "dropped": 0}
        self._workers: list[threading.Thread] = []
        self._closed = False
        self._stop = threading.Event()
        for i in range(settings.thumbnail_workers):
            t = threading.Thread(target=self._run, name=f"thumbnail-worker-{i}", daemon=True)
            t.start()
            self._workers.append(t)

    def _bump(self, key: str, n: int = 1) -> None:
        with self._lock:
            self._stats[key] += n

    def submit(self, items: list[tuple[int, str]]) -> int:
        """Queue (article_id, url) pairs in batches. Returns how many items were accepted."""
        items = [(aid, url) for aid, url in items if url]
        if self._closed or not items:
            return 0

        accepted = 0
        size = self.settings.thumbnail_batch_size
        for start in range(0, len(items), size):
            batch = items[start:start + size]
            try:
                self._queue.put_nowait(batch)
            except queue.Full:
                self._bump("dropped", len(batch))
                log_event("thumbnail_batch_dropped", size=len(batch), reason="queue_full")
                continue
            accepted += len(batch)
        self._bump("submitted", accepted)
        return accepted

    def _run(self) -> None:
        # Exit only once stop is requested and nothing is left to drain
        while True:
            try:
                batch = self._queue.get(timeout=IDLE_POLL_S)
            except queue.Empty:
                if self._stop.is_set():
                    return
                continue
            try:
                self._process(batch)
            finally:
                self._queue.task_done()

    def _process(self, batch: list[tuple[int, str]]) -> None:
        # Each batch gets its own connection; workers never share one
        try:
            conn = get_conn(self.settings)
        except Exception as exc:
            self._bump("failed", len(batch))
            log_event("thumbnail_batch_failed", size=len(batch), error=str(exc))
            return

        try:
            for article_id, url in batch:
                try:
                    asset = self.assets.cache_asset(article_id, url, kind="thumbnails")
                    if asset is None:
                        self._bump("failed")
                        continue
                    set_article_thumbnail_cache(conn, article_id, file_ref=asset.file_ref, mime_type=asset.mime_type)
                    self._bump("cached")
                except Exception as exc:
                    self._bump("failed")
                    log_event("thumbnail_cache_failed", article_id=article_id, url=url, error=str(exc))
        finally:
            conn.close()

    def stats(self) -> dict:
        with self._lock:
            out = dict(self._stats)
        out["pending_batches"] = self._queue.qsize()
        return out

    def join(self) -> None:
        """Block until every queued batch has been processed."""
        self._queue.join()

    def shutdown(self, wait: bool = True) -> None:
        """
        Stop accepting work; workers exit after draining what is already queued.

        Never blocks when wait=False, even with a full queue.
        """
        if self._closed:
            return
        self._closed = True
        self._stop.set()
        if wait:
            for t in self._workers:
                t.join()
        log_event("thumbnail_queue_stopped", **self.stats())
