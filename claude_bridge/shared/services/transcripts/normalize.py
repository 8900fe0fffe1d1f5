"""Normalization helpers for backend transcript entries."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any


def parse_timestamp(value: Any) -> datetime | None:
    """Parse ISO-8601 strings or epoch numbers into aware UTC datetimes."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        # Epoch milliseconds when the value is too large for seconds
        seconds = value / 1000.0 if value > 1e11 else float(value)
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str):
        return None
    raw = value.strip()
    if not raw:
        return None
    if raw.endswith("Z"):
        raw = f"{raw[:-1]}+00:00"
    try:
        dt = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def to_json(value: Any) -> str:
    """Pretty JSON for embedding tool parameters in message text."""
    try:
        return json.dumps(value, indent=2, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)


def render_content(content: Any) -> str:
    """Render entry content (string or ordered block list) to message text.

    Text blocks are kept verbatim, tool_use blocks become a labeled
    parameter summary, anything else is dumped with its type tag.
    """
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return str(content)

    formatted = ""
    for item in content:
        if isinstance(item, str):
            formatted += item
            continue
        if not isinstance(item, dict):
            formatted += str(item)
            continue
        item_type = item.get("type")
        if item_type == "text":
            formatted += str(item.get("text") or "")
        elif item_type == "tool_use":
            formatted += f"\n\n🔧 **Tool Use:** {item.get('name')}\n"
            if item.get("input"):
                formatted += f"Parameters: {to_json(item['input'])}\n"
        else:
            formatted += f"\n[{item_type}]: {to_json(item)}\n"
    return formatted.strip()


def entry_role(entry: dict[str, Any]) -> str | None:
    """Conversation role of a transcript entry, or None for bookkeeping rows."""
    for candidate in (
        entry.get("type"),
        entry.get("role"),
        (entry.get("message") or {}).get("role") if isinstance(entry.get("message"), dict) else None,
    ):
        if candidate in ("user", "assistant"):
            return candidate
    return None


def entry_content(entry: dict[str, Any]) -> Any:
    message = entry.get("message")
    if isinstance(message, dict):
        return message.get("content")
    if isinstance(message, str):
        return message
    return entry.get("content")
