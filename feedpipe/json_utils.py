import json
import re


_FENCE_RE = re.compile(r"^```(?:json)?\s*\n?(.*?)\n?```$", re.DOTALL)
_ARRAY_RE = re.compile(r"\[.*\]", re.DOTALL)


def safe_parse_json(raw: str | None) -> dict | list | None:
    """
    Parse messy LLM JSON safely.

    - Never crash
    - Strip markdown fences (```json ... ```)
    - If the whole text is not JSON, fall back to the outermost [...] span
      (models like to wrap the array in a sentence)

    Returns None instead of guessing at partial recovery.
    """
    if not raw or not raw.strip():
        return None

    text = raw.strip()
    match = _FENCE_RE.match(text)
    if match:
        text = match.group(1).strip()

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    array = _ARRAY_RE.search(text)
    if array is None:
        return None
    try:
        return json.loads(array.group(0))
    except json.JSONDecodeError:
        return None
