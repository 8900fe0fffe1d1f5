"""Message model for live and reconstructed conversations."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
import uuid


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _gen_id() -> str:
    return str(uuid.uuid4())


class MessageRole(Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class ToolCall:
    id: str
    name: str
    parameters: dict[str, Any] = field(default_factory=dict)
    status: str = "pending"


@dataclass
class Message:
    role: MessageRole
    content: str
    id: str = field(default_factory=_gen_id)
    timestamp: datetime = field(default_factory=_utcnow)
    files: list[str] = field(default_factory=list)
    # session_id, request_id, tool_use_result, tool_calls, cancelled
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def tool_calls(self) -> list[ToolCall]:
        return list(self.metadata.get("tool_calls") or [])
