from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from conftest import FakeProcess, install_process
from claude_bridge.engine.config import BridgeConfig
from claude_bridge.engine.errors import (
    NotInitializedError,
    RequestInFlightError,
    SessionNotFoundError,
)
from claude_bridge.engine.manager import NO_RESPONSE, SessionManager
from claude_bridge.engine.sink import CollectingSink, StreamSink
from claude_bridge.engine.transports import SubprocessTransport, TransportMode, TransportSelector
from claude_bridge.shared.models.events import EventKind, StreamEvent
from claude_bridge.shared.models.message import MessageRole
from claude_bridge.shared.models.session import SessionStatus


DEMO_ID = "217df94b-a1f0-43b4-b457-764295a557ec"


def _manager(tmp_path: Path, proc_factory, *, claude_home: Path | None = None, cwd: str | None = None):
    config = BridgeConfig(
        cwd=cwd or str(tmp_path),
        claude_home=str(claude_home or tmp_path / ".claude"),
        use_direct=False,
    )
    subprocess = SubprocessTransport("claude", timeout_seconds=0, terminate_grace_seconds=0.5)
    calls = install_process(subprocess, proc_factory)
    selector = TransportSelector(subprocess, None, use_direct=False)
    return SessionManager(config, selector=selector), calls


class FakeSelector:
    """Selector stand-in that replays a fixed event list."""

    def __init__(self, events: list[StreamEvent]) -> None:
        self._events = events
        self.mode = TransportMode.UNPROBED

    async def initialize(self) -> TransportMode:
        self.mode = TransportMode.CLI_ONLY
        return self.mode

    async def stream(self, request):
        for event in self._events:
            yield event

    async def shutdown(self) -> None:
        return None


@pytest.mark.asyncio
async def test_send_before_initialize_raises(tmp_path: Path) -> None:
    manager, calls = _manager(tmp_path, FakeProcess([]))

    with pytest.raises(NotInitializedError):
        await manager.send_streaming("hi")
    assert calls == []
    assert manager.current_session is None


@pytest.mark.asyncio
async def test_cli_failure_fires_on_error_once(tmp_path: Path) -> None:
    manager, _ = _manager(tmp_path, FakeProcess([], exit_code=1))
    await manager.initialize()
    sink = CollectingSink()

    message = await manager.send_streaming("hi", sink)

    assert sink.errors == ["Claude CLI failed with code 1"]
    assert sink.completed == []
    assert message.content == "Claude CLI failed with code 1"
    assert message.metadata["is_error"] is True
    session = manager.current_session
    assert session.status is SessionStatus.ERROR
    assert [m.role for m in session.messages] == [MessageRole.USER, MessageRole.ASSISTANT]


@pytest.mark.asyncio
async def test_successful_request_completes_and_records_reply(tmp_path: Path, stream_fixture: bytes) -> None:
    manager, calls = _manager(tmp_path, lambda: FakeProcess([stream_fixture]))
    assert await manager.initialize() is TransportMode.CLI_ONLY
    sink = CollectingSink()

    message = await manager.send_streaming("write a helper", sink)

    assert sink.errors == []
    assert sink.completed == [message]
    assert message.content == "Created util.py with add()."
    assert message.files == ["/home/dev/demo/util.py"]
    assert [(c.name, c.status) for c in message.tool_calls] == [("Write", "completed")]
    assert message.metadata["total_cost_usd"] == 0.0123
    session = manager.current_session
    assert session.status is SessionStatus.COMPLETED
    assert session.title == "write a helper"
    # New sessions pin their id on the first request
    assert calls[0][calls[0].index("--session-id") + 1] == session.id
    assert session.backend_session_id == DEMO_ID

    await manager.send_streaming("and a test", sink)

    assert calls[1][calls[1].index("--resume") + 1] == DEMO_ID
    assert len(session.messages) == 4


@pytest.mark.asyncio
async def test_second_request_while_busy_is_rejected(tmp_path: Path) -> None:
    manager, _ = _manager(tmp_path, FakeProcess([b"partial output\n"], hang=True))
    await manager.initialize()
    sink = CollectingSink()

    manager.start_streaming("long job", sink)
    await asyncio.sleep(0.05)

    assert manager.is_busy
    with pytest.raises(RequestInFlightError):
        manager.start_streaming("another", sink)

    assert await manager.stop() is True
    assert not manager.is_busy
    session = manager.current_session
    assert session.status is SessionStatus.COMPLETED
    last = session.messages[-1]
    assert last.metadata["cancelled"] is True
    assert last.content == "partial output\n"
    assert sink.completed == [last]
    assert sink.errors == []


@pytest.mark.asyncio
async def test_stop_returns_partial_reply_to_sender(tmp_path: Path) -> None:
    proc = FakeProcess([b"working on it\n"], hang=True)
    manager, _ = _manager(tmp_path, proc)
    await manager.initialize()
    sink = CollectingSink()

    sender = asyncio.ensure_future(manager.send_streaming("long job", sink))
    await asyncio.sleep(0.05)
    await manager.stop()
    message = await sender

    assert message.metadata["cancelled"] is True
    assert message.content == "working on it\n"
    assert manager.current_session.status is SessionStatus.COMPLETED
    assert manager.current_session.messages[-1] is message
    assert sink.completed == [message]
    assert sink.errors == []
    # Nothing is relayed after the stop
    assert [e.kind for e in sink.events] == [EventKind.TEXT]
    assert proc.terminated is True
    assert await manager.stop() is False


@pytest.mark.asyncio
async def test_missing_terminal_event_reports_no_response(tmp_path: Path) -> None:
    config = BridgeConfig(cwd=str(tmp_path), claude_home=str(tmp_path))
    manager = SessionManager(config, selector=FakeSelector([StreamEvent.text("half")]))
    await manager.initialize()
    sink = CollectingSink()

    message = await manager.send_streaming("hi", sink)

    assert sink.errors == [NO_RESPONSE]
    assert message.content == NO_RESPONSE
    assert manager.current_session.status is SessionStatus.ERROR


@pytest.mark.asyncio
async def test_events_after_terminal_are_dropped(tmp_path: Path) -> None:
    config = BridgeConfig(cwd=str(tmp_path), claude_home=str(tmp_path))
    events = [
        StreamEvent.text("answer"),
        StreamEvent.complete(result="answer"),
        StreamEvent.error("late"),
    ]
    manager = SessionManager(config, selector=FakeSelector(events))
    await manager.initialize()
    sink = CollectingSink()

    await manager.send_streaming("hi", sink)

    assert [e.kind for e in sink.events] == [EventKind.TEXT, EventKind.COMPLETE]
    assert len(sink.completed) == 1
    assert sink.errors == []


@pytest.mark.asyncio
async def test_failing_callbacks_do_not_break_request(tmp_path: Path) -> None:
    config = BridgeConfig(cwd=str(tmp_path), claude_home=str(tmp_path))
    manager = SessionManager(
        config,
        selector=FakeSelector([StreamEvent.text("ok"), StreamEvent.complete(result="ok")]),
    )
    await manager.initialize()
    completed = []

    async def on_complete(message):
        completed.append(message)

    def on_event(event):
        raise ValueError("renderer broke")

    message = await manager.send_streaming("hi", StreamSink(on_event=on_event, on_complete=on_complete))

    assert completed == [message]
    assert manager.current_session.status is SessionStatus.COMPLETED


@pytest.mark.asyncio
async def test_resume_replays_messages_and_continues_backend_session(
    tmp_path: Path, claude_home: Path, stream_fixture: bytes,
) -> None:
    manager, calls = _manager(
        tmp_path,
        lambda: FakeProcess([stream_fixture]),
        claude_home=claude_home,
        cwd="/home/dev/demo",
    )
    sink = CollectingSink()

    session = await manager.resume_session(DEMO_ID, sink)

    assert manager.current_session is session
    assert len(sink.replayed) == 4
    assert sink.replayed[0].role is MessageRole.USER

    await manager.initialize()
    await manager.send_streaming("one more change")

    assert calls[0][calls[0].index("--resume") + 1] == DEMO_ID
    assert len(session.messages) == 6


@pytest.mark.asyncio
async def test_resume_unknown_session_raises(tmp_path: Path, claude_home: Path) -> None:
    manager, _ = _manager(tmp_path, FakeProcess([]), claude_home=claude_home)

    with pytest.raises(SessionNotFoundError):
        await manager.resume_session("00000000-0000-4000-8000-000000000000")


@pytest.mark.asyncio
async def test_load_sessions_merges_memory_and_disk(
    tmp_path: Path, claude_home: Path, stream_fixture: bytes,
) -> None:
    manager, _ = _manager(
        tmp_path,
        lambda: FakeProcess([stream_fixture]),
        claude_home=claude_home,
        cwd="/home/dev/demo",
    )
    await manager.resume_session(DEMO_ID)
    fresh = manager.start_new_session()
    await manager.initialize()
    await manager.send_streaming("brand new")

    ids = [s.id for s in manager.load_sessions()]

    assert ids.count(DEMO_ID) == 1
    assert fresh.id in ids
    assert ids[0] == fresh.id


def test_new_session_discards_empty_draft(tmp_path: Path) -> None:
    manager, _ = _manager(tmp_path, FakeProcess([]))

    first = manager.start_new_session()
    second = manager.start_new_session()

    ids = [s.id for s in manager.load_sessions()]
    assert first.id not in ids
    assert second.id in ids
