"""Incremental parser for ``claude --output-format stream-json`` output.

The CLI writes one JSON object per line, but stdout arrives in arbitrary
chunks and may interleave free text. ``LineBuffer`` reassembles complete
lines; ``StreamJsonParser`` maps each line to StreamEvents. The mapping
helpers at the bottom are shared with the direct transport so both paths
speak the same event vocabulary.
"""
from __future__ import annotations

import codecs
import json
import logging
from typing import Any, Iterable

from claude_bridge.engine.classify import detect_language, is_thinking_content
from claude_bridge.shared.models.events import EventKind, StreamEvent

logger = logging.getLogger(__name__)

WRITE_TOOL = "Write"
INIT_MESSAGE = "Initializing Claude session..."


class LineBuffer:
    """Accumulate text chunks and hand back newline-terminated lines.

    The trailing fragment after the last newline is retained until a later
    chunk (or ``flush()`` at EOF) completes it.
    """

    def __init__(self) -> None:
        self._pending = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, chunk: str | bytes) -> list[str]:
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        if not chunk:
            return []
        self._pending += chunk
        *lines, self._pending = self._pending.split("\n")
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> list[str]:
        tail = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        return [tail.rstrip("\r")] if tail else []

    @property
    def pending(self) -> str:
        return self._pending


class StreamJsonParser:
    """Stateful line-to-event mapper for one request.

    Once a terminal event (complete/error) has been produced, every later
    line is discarded.
    """

    def __init__(self) -> None:
        self._buffer = LineBuffer()
        self.terminated = False
        self.session_id: str | None = None
        self.lines_seen = 0
        self.text_parts: list[str] = []

    def feed(self, chunk: str | bytes) -> list[StreamEvent]:
        return self._parse_lines(self._buffer.feed(chunk))

    def finish(self) -> list[StreamEvent]:
        """Treat EOF as the terminator of any pending fragment."""
        return self._parse_lines(self._buffer.flush())

    def _parse_lines(self, lines: Iterable[str]) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        for line in lines:
            if self.terminated:
                if line.strip():
                    logger.debug("Discarding output after terminal event: %.80s", line)
                continue
            for event in self.parse_line(line):
                if self.terminated:
                    break
                events.append(event)
                if event.kind is EventKind.TEXT:
                    self.text_parts.append(event.content)
                if event.is_terminal:
                    self.terminated = True
        return events

    def parse_line(self, line: str) -> list[StreamEvent]:
        """Map a single complete line to zero or more events."""
        stripped = line.strip()
        if not stripped:
            return []
        self.lines_seen += 1

        data: Any = None
        if stripped.startswith("{"):
            try:
                data = json.loads(stripped)
            except json.JSONDecodeError:
                logger.debug("Line is not valid JSON, treating as text: %.80s", stripped)
                data = None

        if not isinstance(data, dict):
            kind = EventKind.THINKING if is_thinking_content(stripped) else EventKind.TEXT
            return [StreamEvent(kind, stripped + "\n")]

        session_id = data.get("session_id")
        if isinstance(session_id, str) and session_id:
            self.session_id = session_id
        return events_from_payload(data, raw_line=stripped)


# ── Shared mapping helpers ──


def usage_metadata(usage: Any) -> dict[str, int] | None:
    """Normalize a backend usage block to input/output token counters."""
    if usage is None:
        return None
    if not isinstance(usage, dict):
        usage = {
            "input_tokens": getattr(usage, "input_tokens", 0),
            "output_tokens": getattr(usage, "output_tokens", 0),
        }
    return {
        "input_tokens": int(usage.get("input_tokens") or 0),
        "output_tokens": int(usage.get("output_tokens") or 0),
    }


def _meta(**values: Any) -> dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


def tool_use_event(
    name: str,
    tool_input: Any,
    *,
    tool_id: str | None = None,
    session_id: str | None = None,
) -> StreamEvent:
    """Build a tool_use event; ``Write`` calls surface the file body."""
    params = tool_input if isinstance(tool_input, dict) else {}
    if name == WRITE_TOOL:
        file_path = str(params.get("file_path") or "")
        file_content = str(params.get("content") or "")
        language = detect_language(file_path)
        return StreamEvent(
            EventKind.TOOL_USE,
            f"Creating file: {file_path}\n```{language}\n{file_content}\n```",
            _meta(
                tool_name=name,
                tool_id=tool_id,
                session_id=session_id,
                file_path=file_path,
                language=language,
                is_code_file=True,
            ),
        )
    return StreamEvent(
        EventKind.TOOL_USE,
        f"Using tool: {name}",
        _meta(
            tool_name=name,
            tool_id=tool_id,
            session_id=session_id,
            tool_input=tool_input,
        ),
    )


def tool_result_text(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for item in content:
            if isinstance(item, dict):
                text = item.get("text")
                parts.append(text if isinstance(text, str) else json.dumps(item, ensure_ascii=False))
            else:
                parts.append(str(item))
        return "\n".join(p for p in parts if p)
    try:
        return json.dumps(content, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(content)


def tool_result_event(
    tool_use_id: str | None,
    content: Any,
    *,
    is_error: bool = False,
    session_id: str | None = None,
) -> StreamEvent:
    return StreamEvent(
        EventKind.TOOL_RESULT,
        tool_result_text(content),
        _meta(tool_id=tool_use_id, is_error=bool(is_error), session_id=session_id),
    )


def result_events(
    *,
    subtype: str | None,
    is_error: bool,
    result: Any,
    session_id: str | None = None,
    usage: Any = None,
    duration_ms: Any = None,
    total_cost_usd: Any = None,
    errors: Any = None,
) -> list[StreamEvent]:
    """Map a final result record to ``[text, complete]`` or ``[error]``."""
    meta = _meta(
        session_id=session_id,
        usage=usage_metadata(usage),
        duration_ms=duration_ms,
        total_cost_usd=total_cost_usd,
        subtype=subtype,
    )
    result_text = result if isinstance(result, str) else ("" if result is None else str(result))
    if subtype == "success" and not is_error:
        events = []
        if result_text:
            events.append(StreamEvent(EventKind.TEXT, result_text, _meta(session_id=session_id)))
        events.append(StreamEvent(EventKind.COMPLETE, "", {**meta, "result": result_text}))
        return events

    if result_text:
        message = result_text
    elif errors:
        message = "; ".join(str(e) for e in errors) if isinstance(errors, list) else str(errors)
    else:
        message = f"Claude request failed ({subtype or 'error'})"
    return [StreamEvent(EventKind.ERROR, message, {**meta, "is_error": True})]


def _content_block_events(
    blocks: list[Any],
    *,
    session_id: str | None,
    request_id: str | None,
    usage: Any,
) -> list[StreamEvent]:
    events: list[StreamEvent] = []
    for block in blocks:
        if not isinstance(block, dict):
            continue
        block_type = str(block.get("type") or "").lower()
        if block_type == "text":
            text = block.get("text")
            if isinstance(text, str) and text:
                events.append(StreamEvent(
                    EventKind.TEXT,
                    text,
                    _meta(session_id=session_id, request_id=request_id, usage=usage_metadata(usage)),
                ))
        elif block_type == "thinking":
            thinking = block.get("thinking")
            if isinstance(thinking, str) and thinking:
                events.append(StreamEvent(EventKind.THINKING, thinking, _meta(session_id=session_id)))
        elif block_type == "tool_use":
            events.append(tool_use_event(
                str(block.get("name") or "tool"),
                block.get("input"),
                tool_id=block.get("id"),
                session_id=session_id,
            ))
        elif block_type == "tool_result":
            events.append(tool_result_event(
                block.get("tool_use_id"),
                block.get("content"),
                is_error=bool(block.get("is_error")),
                session_id=session_id,
            ))
        else:
            logger.debug("Skipping unsupported content block type %r", block_type)
    return events


def events_from_payload(data: dict[str, Any], *, raw_line: str = "") -> list[StreamEvent]:
    """Map one decoded stream-json object to events."""
    msg_type = data.get("type")
    session_id = data.get("session_id") if isinstance(data.get("session_id"), str) else None

    if msg_type == "system":
        subtype = data.get("subtype")
        if subtype == "init":
            return [StreamEvent(
                EventKind.PROGRESS,
                INIT_MESSAGE,
                _meta(session_id=session_id, model=data.get("model"), cwd=data.get("cwd")),
            )]
        return [StreamEvent(
            EventKind.PROGRESS,
            str(subtype or "system"),
            _meta(session_id=session_id, subtype=subtype),
        )]

    if msg_type in ("assistant", "user"):
        message = data.get("message")
        if not isinstance(message, dict):
            message = {}
        content = message.get("content")
        if isinstance(content, list):
            return _content_block_events(
                content,
                session_id=session_id,
                request_id=message.get("id"),
                usage=message.get("usage"),
            )
        if msg_type == "assistant" and isinstance(content, str) and content:
            return [StreamEvent(
                EventKind.TEXT,
                content,
                _meta(session_id=session_id, request_id=message.get("id")),
            )]
        # user echoes with plain string content carry nothing new
        return []

    if msg_type == "result":
        return result_events(
            subtype=data.get("subtype"),
            is_error=bool(data.get("is_error")),
            result=data.get("result"),
            session_id=session_id,
            usage=data.get("usage"),
            duration_ms=data.get("duration_ms"),
            total_cost_usd=data.get("total_cost_usd"),
            errors=data.get("errors"),
        )

    if msg_type == "error":
        error = data.get("error")
        message = data.get("message")
        if not isinstance(message, str) or not message:
            message = error.get("message") if isinstance(error, dict) else error
        return [StreamEvent(
            EventKind.ERROR,
            str(message or "Unknown error"),
            _meta(session_id=session_id, is_error=True),
        )]

    logger.debug("Unknown stream-json type %r, degrading to text", msg_type)
    for key in ("content", "text", "message"):
        value = data.get(key)
        if isinstance(value, str) and value:
            return [StreamEvent(EventKind.TEXT, value, {"type": msg_type})]
    return [StreamEvent(EventKind.TEXT, raw_line or json.dumps(data), {"type": msg_type})]
