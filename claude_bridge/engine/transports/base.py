"""Abstract base for backend transports.

Each transport wraps a different way of reaching the Claude backend
(in-process SDK iteration, or the ``claude`` CLI as a subprocess). The
session manager consumes ``stream()``; ``send()`` drains the same stream
into a caller sink.
"""
from __future__ import annotations

import abc
from dataclasses import dataclass, field
import logging
import shutil
from typing import TYPE_CHECKING, AsyncIterator

from claude_bridge.shared.models.events import StreamEvent

if TYPE_CHECKING:
    from claude_bridge.engine.sink import StreamSink

logger = logging.getLogger(__name__)


@dataclass
class TransportRequest:
    """One outgoing prompt and its session routing."""
    prompt: str
    cwd: str | None = None
    # Backend session id; new sessions pin it, continued ones resume it
    session_id: str | None = None
    resume: bool = False
    metadata: dict[str, str] = field(default_factory=dict)


class Transport(abc.ABC):
    """Abstract transport interface.

    Implementations:
    - DirectTransport: claude_agent_sdk.query() in-process
    - SubprocessTransport: ``claude --print --output-format stream-json``

    A transport stops yielding after the first complete/error event.
    Closing the iterator (or cancelling its consumer) must release the
    underlying process or SDK stream.
    """

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Short transport name (e.g. 'direct', 'subprocess')."""

    @abc.abstractmethod
    def stream(self, request: TransportRequest) -> AsyncIterator[StreamEvent]:
        """Yield StreamEvents for *request* in production order."""

    @abc.abstractmethod
    async def is_available(self) -> bool:
        """Check if this transport's backend can be reached."""

    async def send(self, request: TransportRequest, sink: StreamSink) -> None:
        """Relay every event of *request* to ``sink.on_event``."""
        async for event in self.stream(request):
            await sink.event(event)

    @staticmethod
    def resolve_command(command: str, fallback: str | None = None) -> str:
        """Resolve a backend binary, preferring *command* then *fallback*.

        Keeps the raw value when nothing resolves so error messages can
        name the configured command.
        """
        if command and shutil.which(command):
            return command
        if fallback and shutil.which(fallback):
            logger.debug("Command %s not found; falling back to %s", command, fallback)
            return fallback
        return command or fallback or ""

    async def shutdown(self) -> None:
        """Clean up long-lived resources. Default no-op."""
        return None
