"""Caller-facing event sink.

A sink is passed explicitly into each streaming call. Callbacks may be
plain functions or coroutines; a failing callback is logged and never
breaks the request that fired it.
"""
from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Union

from claude_bridge.shared.models.events import StreamEvent
from claude_bridge.shared.models.message import Message

logger = logging.getLogger(__name__)

# Signature: def/async def callback(payload) -> None
Callback = Callable[[Any], Union[Awaitable[None], None]]


async def fire_callback(callback: Callback | None, payload: Any) -> None:
    """Invoke a sync or async callback if set, logging (not raising) errors."""
    if callback is None:
        return
    try:
        result = callback(payload)
        if inspect.isawaitable(result):
            await result
    except Exception:
        # Never let presentation errors break the request
        logger.warning("Sink callback %r raised", callback, exc_info=True)


@dataclass
class StreamSink:
    """Receives the events of one request.

    Exactly one of ``on_complete`` / ``on_error`` fires per request, after
    zero or more ``on_event`` calls. ``on_message`` is used when a stored
    session is replayed.
    """

    on_event: Callable[[StreamEvent], Any] | None = None
    on_progress: Callable[[float], Any] | None = None
    on_complete: Callable[[Message], Any] | None = None
    on_error: Callable[[str], Any] | None = None
    on_message: Callable[[Message], Any] | None = None

    async def event(self, event: StreamEvent) -> None:
        await fire_callback(self.on_event, event)
        progress = event.progress
        if progress is not None:
            await fire_callback(self.on_progress, progress)

    async def complete(self, message: Message) -> None:
        await fire_callback(self.on_complete, message)

    async def error(self, error: str) -> None:
        await fire_callback(self.on_error, error)

    async def message(self, message: Message) -> None:
        await fire_callback(self.on_message, message)


class CollectingSink(StreamSink):
    """Sink that records everything it receives."""

    def __init__(self) -> None:
        self.events: list[StreamEvent] = []
        self.progress: list[float] = []
        self.completed: list[Message] = []
        self.errors: list[str] = []
        self.replayed: list[Message] = []
        super().__init__(
            on_event=self.events.append,
            on_progress=self.progress.append,
            on_complete=self.completed.append,
            on_error=self.errors.append,
            on_message=self.replayed.append,
        )
