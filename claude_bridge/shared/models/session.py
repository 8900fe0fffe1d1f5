"""Session state: one conversation with the backend."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
import uuid

from claude_bridge.shared.models.message import Message, MessageRole


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


DEFAULT_TITLE = "Claude Code Session"
TITLE_LIMIT = 50


class SessionStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


def derive_title(messages: list[Message]) -> str:
    """Title from the first user message, clipped to ``TITLE_LIMIT`` chars."""
    for message in messages:
        if message.role is MessageRole.USER and message.content:
            title = message.content[:TITLE_LIMIT].replace("\n", " ").strip()
            if len(message.content) > TITLE_LIMIT:
                title += "..."
            return title
    return DEFAULT_TITLE


@dataclass
class Session:
    """Holds all conversation state for a session.

    ``metadata`` carries the backend session id, working directory,
    backend version, git branch and, for cross-project listings, the
    originating project directory.
    """

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    title: str = DEFAULT_TITLE
    status: SessionStatus = SessionStatus.PENDING
    messages: list[Message] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    metadata: dict[str, Any] = field(default_factory=dict)

    def append(self, message: Message) -> None:
        """Append *message*, keeping timestamps non-decreasing."""
        if self.messages and message.timestamp < self.messages[-1].timestamp:
            message.timestamp = self.messages[-1].timestamp
        self.messages.append(message)
        self.updated_at = message.timestamp
        if message.role is MessageRole.USER:
            self.status = SessionStatus.RUNNING
            if self.title == DEFAULT_TITLE:
                self.title = derive_title(self.messages)

    @property
    def backend_session_id(self) -> str | None:
        value = self.metadata.get("session_id")
        return str(value) if value else None
