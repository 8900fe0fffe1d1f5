"""Stream event vocabulary shared by every transport and the transcript reader."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventKind(Enum):
    TEXT = "text"
    THINKING = "thinking"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"
    PROGRESS = "progress"
    COMPLETE = "complete"
    ERROR = "error"


TERMINAL_KINDS = frozenset({EventKind.COMPLETE, EventKind.ERROR})


@dataclass(frozen=True)
class StreamEvent:
    """One unit of live progress for a single request.

    ``metadata`` is additive: tool name, progress fraction, session id,
    request id, file path/language for file writes, token usage. Consumers
    must ignore keys they do not understand.
    """

    kind: EventKind
    content: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.kind in TERMINAL_KINDS

    @property
    def progress(self) -> float | None:
        value = self.metadata.get("progress")
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return max(0.0, min(1.0, float(value)))
        return None

    @classmethod
    def text(cls, content: str, **metadata: Any) -> StreamEvent:
        return cls(EventKind.TEXT, content, metadata)

    @classmethod
    def thinking(cls, content: str, **metadata: Any) -> StreamEvent:
        return cls(EventKind.THINKING, content, metadata)

    @classmethod
    def progress_event(cls, content: str = "", **metadata: Any) -> StreamEvent:
        return cls(EventKind.PROGRESS, content, metadata)

    @classmethod
    def complete(cls, content: str = "", **metadata: Any) -> StreamEvent:
        return cls(EventKind.COMPLETE, content, metadata)

    @classmethod
    def error(cls, content: str, **metadata: Any) -> StreamEvent:
        return cls(EventKind.ERROR, content, metadata)
