from __future__ import annotations

# Load .env before other imports that use env vars
from dotenv import load_dotenv
load_dotenv()

import argparse
import time

from feedpipe.config import load_settings
from feedpipe.logging_utils import log_event
from feedpipe.scheduler import refresh_due_feeds


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Refresh every feed whose next fetch is due.")
    p.add_argument("--limit", type=int, default=50, help="max feeds to refresh this run")
    p.add_argument("--workers", type=int, default=4, help="concurrent feed refreshes")
    p.add_argument("--feed-id", type=int, action="append", dest="feed_ids", help="refresh only this feed (repeatable)")
    p.add_argument("--db", default=None, help="override FEEDPIPE_DB_PATH")
    args = p.parse_args(argv)

    overrides = {"db_path": args.db} if args.db else {}
    settings = load_settings(**overrides)

    t0 = time.perf_counter()
    log_event("refresh_job_started", limit=args.limit, workers=args.workers, feed_ids=args.feed_ids)
    summary = refresh_due_feeds(settings, limit=args.limit, max_workers=args.workers, feed_ids=args.feed_ids)
    elapsed_ms = int((time.perf_counter() - t0) * 1000)

    log_event(
        "refresh_job_finished",
        due=summary["due"],
        ok=summary["ok"],
        failed=summary["failed"],
        new_articles=summary["new_articles"],
        elapsed_ms=elapsed_ms,
    )
    print(f"OK due={summary['due']} ok={summary['ok']} failed={summary['failed']} new_articles={summary['new_articles']}")
    return 0 if summary["failed"] == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
