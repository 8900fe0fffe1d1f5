"""Session manager: owns the active session and drives one request at a time.

    caller -> send_streaming(prompt, sink)
           -> TransportSelector.stream(request)
           -> StreamEvents relayed to sink.on_event
           -> terminal event -> assistant Message appended -> on_complete / on_error
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from claude_bridge.engine.config import BridgeConfig
from claude_bridge.engine.errors import (
    BridgeError,
    NotInitializedError,
    RequestInFlightError,
    SessionNotFoundError,
)
from claude_bridge.engine.sink import StreamSink
from claude_bridge.engine.transports import TransportMode, TransportRequest, TransportSelector
from claude_bridge.shared.models.events import EventKind, StreamEvent
from claude_bridge.shared.models.message import Message, MessageRole, ToolCall
from claude_bridge.shared.models.session import Session, SessionStatus
from claude_bridge.shared.services.transcripts import (
    SessionStore,
    deduplicate_sessions,
    generate_session_id,
)

logger = logging.getLogger(__name__)

NO_RESPONSE = "No response received from Claude CLI"


@dataclass
class _ResponseAccumulator:
    """Collects the pieces of the assistant reply for one request."""

    text_parts: list[str] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    files: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    result: str | None = None

    def observe(self, event: StreamEvent) -> None:
        meta = event.metadata
        if meta.get("session_id"):
            self.metadata["session_id"] = meta["session_id"]
        if meta.get("request_id"):
            self.metadata["request_id"] = meta["request_id"]

        if event.kind is EventKind.TEXT:
            self.text_parts.append(event.content)
        elif event.kind is EventKind.TOOL_USE:
            params = meta.get("tool_input")
            if not isinstance(params, dict):
                params = {"file_path": meta["file_path"]} if meta.get("file_path") else {}
            self.tool_calls.append(ToolCall(
                id=str(meta.get("tool_id") or len(self.tool_calls)),
                name=str(meta.get("tool_name") or "tool"),
                parameters=params,
            ))
            file_path = meta.get("file_path")
            if file_path and file_path not in self.files:
                self.files.append(file_path)
        elif event.kind is EventKind.TOOL_RESULT:
            tool_id = meta.get("tool_id")
            for call in self.tool_calls:
                if call.id == tool_id:
                    call.status = "error" if meta.get("is_error") else "completed"
        elif event.kind is EventKind.COMPLETE:
            result = meta.get("result")
            if isinstance(result, str) and result:
                self.result = result
            for key in ("usage", "duration_ms", "total_cost_usd"):
                if meta.get(key) is not None:
                    self.metadata[key] = meta[key]

    @property
    def text(self) -> str:
        if self.result is not None:
            return self.result
        return "".join(self.text_parts)

    def build_message(self, content: str, **extra: Any) -> Message:
        metadata = dict(self.metadata)
        if self.tool_calls:
            metadata["tool_calls"] = list(self.tool_calls)
        metadata.update(extra)
        return Message(
            role=MessageRole.ASSISTANT,
            content=content,
            files=list(self.files),
            metadata=metadata,
        )


class SessionManager:
    """Owns the single active Session and its one in-flight request.

    Call ``initialize()`` once (it probes the direct transport) before
    sending. Historical sessions returned by ``load_sessions()`` are plain
    values until ``resume_session()`` promotes one to active.
    """

    def __init__(
        self,
        config: BridgeConfig | None = None,
        *,
        selector: TransportSelector | None = None,
        store: SessionStore | None = None,
    ) -> None:
        self.config = config or BridgeConfig.from_env()
        self.selector = selector or TransportSelector.from_config(self.config)
        self.store = store or SessionStore(self.config.claude_home)
        self._session: Session | None = None
        # Sessions created or resumed in this process (may not be on disk yet)
        self._sessions: dict[str, Session] = {}
        self._initialized = False
        self._active_task: asyncio.Task | None = None

    # ── Lifecycle ──

    @property
    def current_session(self) -> Session | None:
        return self._session

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def is_busy(self) -> bool:
        return self._active_task is not None and not self._active_task.done()

    @property
    def transport_mode(self) -> TransportMode:
        return self.selector.mode

    async def initialize(self) -> TransportMode:
        """Select a transport (bounded probe of the direct transport)."""
        mode = await self.selector.initialize()
        self._initialized = True
        logger.info("SessionManager initialized (transport=%s)", mode.value)
        return mode

    async def refresh_transport(self) -> TransportMode:
        mode = await self.selector.refresh()
        self._initialized = True
        return mode

    async def shutdown(self) -> None:
        await self.stop()
        await self.selector.shutdown()

    # ── Sessions ──

    def start_new_session(self) -> Session:
        """Replace the active session with a fresh, empty one."""
        if self.is_busy:
            raise RequestInFlightError(self._session.id if self._session else "-")
        self._discard_draft()
        session = Session(
            id=generate_session_id(),
            metadata={"cwd": str(self.config.resolved_cwd)},
        )
        self._session = session
        self._sessions[session.id] = session
        logger.info("Started new session %s", session.id[:8])
        return session

    def _discard_draft(self) -> None:
        current = self._session
        if current is not None and not current.messages:
            self._sessions.pop(current.id, None)

    def load_sessions(self) -> list[Session]:
        """Persisted sessions for this project merged with in-memory ones."""
        persisted = self.store.list_sessions(self.config.resolved_cwd)
        return deduplicate_sessions(persisted, self._sessions.values())

    async def resume_session(
        self,
        session_id: str,
        sink: StreamSink | None = None,
    ) -> Session:
        """Promote a stored session to active and replay its messages.

        Every stored message is sent to ``sink.on_message`` in order so a
        presentation layer can rebuild its view.
        """
        if self.is_busy:
            raise RequestInFlightError(self._session.id if self._session else session_id)
        session = (
            self.store.get_session(session_id, self.config.resolved_cwd)
            or self.store.get_session(session_id)
            or self._sessions.get(session_id)
        )
        if session is None:
            raise SessionNotFoundError(session_id)
        # Later prompts continue the backend conversation
        session.metadata["session_id"] = session.metadata.get("session_id") or session.id

        self._discard_draft()
        self._session = session
        self._sessions[session.id] = session
        logger.info(
            "Resumed session %s (%d messages)", session.id[:8], len(session.messages)
        )
        if sink is not None:
            for message in session.messages:
                await sink.message(message)
        return session

    # ── Requests ──

    def start_streaming(self, prompt: str, sink: StreamSink | None = None) -> asyncio.Task:
        """Begin a request and return its task without waiting for it.

        Raises immediately if the manager is not initialized or a request
        is already running.
        """
        if not self._initialized:
            raise NotInitializedError("send a prompt")
        if self.is_busy:
            raise RequestInFlightError(self._session.id if self._session else "-")
        session = self._session or self.start_new_session()

        backend_id = session.backend_session_id
        request = TransportRequest(
            prompt=prompt,
            cwd=str(self.config.resolved_cwd),
            session_id=backend_id or session.id,
            resume=backend_id is not None,
        )
        session.append(Message(
            role=MessageRole.USER,
            content=prompt,
            metadata={"session_id": request.session_id},
        ))
        logger.info(
            "Sending prompt on session %s (%d chars, resume=%s)",
            session.id[:8], len(prompt), request.resume,
        )
        self._active_task = asyncio.ensure_future(
            self._run_request(session, request, sink or StreamSink())
        )
        return self._active_task

    async def send_streaming(self, prompt: str, sink: StreamSink | None = None) -> Message:
        """Send *prompt* and wait for the assistant reply.

        Returns the appended assistant Message. On failure its content is
        the error text and the session status is ``error``. If ``stop()``
        cancels the request, the partial reply is returned.
        """
        task = self.start_streaming(prompt, sink)
        session = self._session
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.done():
                # Our caller was cancelled; take the request down with it
                await self.stop()
                raise
            if task.cancelled() and session is not None and session.messages:
                return session.messages[-1]
            raise

    async def stop(self) -> bool:
        """Cancel the in-flight request, if any. Returns True if one was stopped."""
        task = self._active_task
        if task is None or task.done():
            return False
        logger.info("Stopping in-flight request")
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        return True

    async def _run_request(
        self,
        session: Session,
        request: TransportRequest,
        sink: StreamSink,
    ) -> Message:
        acc = _ResponseAccumulator()
        terminal: StreamEvent | None = None
        try:
            async for event in self.selector.stream(request):
                if terminal is not None:
                    logger.debug("Dropping %s event after terminal", event.kind.value)
                    continue
                acc.observe(event)
                backend_id = event.metadata.get("session_id")
                if backend_id and session.metadata.get("session_id") != backend_id:
                    session.metadata["session_id"] = backend_id
                if event.is_terminal:
                    terminal = event
                await sink.event(event)
        except asyncio.CancelledError:
            message = acc.build_message(acc.text, cancelled=True)
            self._finish(session, message, SessionStatus.COMPLETED)
            logger.info("Request on session %s cancelled by caller", session.id[:8])
            await sink.complete(message)
            raise
        except BridgeError as exc:
            logger.error("Request on session %s failed: %s", session.id[:8], exc)
            terminal = StreamEvent.error(str(exc))
        except Exception as exc:
            logger.exception("Unexpected transport failure on session %s", session.id[:8])
            terminal = StreamEvent.error(f"Unexpected transport failure: {exc}")

        if terminal is None:
            terminal = StreamEvent.error(NO_RESPONSE)

        if terminal.kind is EventKind.COMPLETE:
            message = acc.build_message(acc.text)
            self._finish(session, message, SessionStatus.COMPLETED)
            await sink.complete(message)
        else:
            message = acc.build_message(terminal.content, is_error=True)
            self._finish(session, message, SessionStatus.ERROR)
            await sink.error(terminal.content)
        return message

    def _finish(self, session: Session, message: Message, status: SessionStatus) -> None:
        session.append(message)
        session.status = status
        logger.info(
            "Session %s -> %s (%d chars)",
            session.id[:8], status.value, len(message.content),
        )
