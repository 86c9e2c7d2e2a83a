"""Turn a raw model reply into a plain string.

Backends normally hand back plain text, but some wrap it in JSON such as
``{"content": "..."}`` or return content parts. Each attempt below either
returns a string or None and never raises; the last resort is a JSON dump.
"""

import json
from collections.abc import Callable
from typing import Any

from gabble_bot.core.turns import ContentPart


def _from_mapping(raw: Any) -> str | None:
    if isinstance(raw, dict) and "content" in raw:
        return normalize_reply(raw["content"])
    return None


def _from_json_string(raw: Any) -> str | None:
    if not isinstance(raw, str):
        return None
    stripped = raw.strip()
    if not stripped.startswith("{"):
        return None
    try:
        parsed = json.loads(stripped)
    except json.JSONDecodeError:
        return None
    if isinstance(parsed, dict) and "content" in parsed:
        return normalize_reply(parsed["content"])
    return None


def _from_plain_string(raw: Any) -> str | None:
    return raw if isinstance(raw, str) else None


def _from_parts(raw: Any) -> str | None:
    if not isinstance(raw, (list, tuple)) or not raw:
        return None
    texts = []
    for part in raw:
        if isinstance(part, ContentPart):
            if part.type != "text":
                continue
            texts.append(part.text or "")
        elif isinstance(part, dict) and "type" in part:
            if part["type"] != "text":
                continue
            texts.append(str(part.get("text") or ""))
        elif isinstance(part, str):
            texts.append(part)
        else:
            return None
    return " ".join(texts) if texts else None


def _fallback(raw: Any) -> str:
    try:
        return json.dumps(raw, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(raw)


_ATTEMPTS: tuple[Callable[[Any], str | None], ...] = (
    _from_mapping,
    _from_json_string,
    _from_plain_string,
    _from_parts,
)


def normalize_reply(raw: Any) -> str:
    """Unwrap a model reply into the text to route and store."""
    for attempt in _ATTEMPTS:
        result = attempt(raw)
        if result is not None:
            return result
    return _fallback(raw)
