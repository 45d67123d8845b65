import json
import logging
from datetime import datetime, timezone


logging.basicConfig(level=logging.INFO)

logger = logging.getLogger("feedpipe")

# Event names ending in one of these are emitted at WARNING
_FAILURE_SUFFIXES = ("_fail", "_failed", "_error", "_dropped", "_rejected")


def event_level(event: str) -> int:
    return logging.WARNING if event.endswith(_FAILURE_SUFFIXES) or "_rejected_" in event else logging.INFO


def log_event(event: str, **fields):
    """One JSON line per event; values that json can't encode are str()'d."""
    payload = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "event": event,
        **fields,
    }

    logger.log(event_level(event), json.dumps(payload, default=str))
