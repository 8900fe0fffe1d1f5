from __future__ import annotations

import asyncio
import time
from types import SimpleNamespace

import pytest

from claude_bridge.engine.errors import TransportRuntimeError, TransportUnavailableError
from claude_bridge.engine.transports.base import TransportRequest
from claude_bridge.engine.transports.direct_transport import DirectTransport, exception_text
from claude_bridge.shared.models.events import EventKind


SESSION_ID = "217df94b-a1f0-43b4-b457-764295a557ec"


def _options(**kwargs):
    return SimpleNamespace(**kwargs)


def _sdk_loader(messages, *, raise_after=None, delay=0.0, captured=None):
    """Build a loader returning a fake (query, ClaudeAgentOptions) pair."""

    async def query(*, prompt, options):
        if captured is not None:
            captured.append((prompt, options))
        for message in messages:
            if delay:
                await asyncio.sleep(delay)
            yield message
        if raise_after is not None:
            raise raise_after

    return lambda: (query, _options)


def _success_messages():
    return [
        SimpleNamespace(subtype="init", data={"session_id": SESSION_ID, "model": "sonnet"}),
        SimpleNamespace(content=[
            SimpleNamespace(thinking="Weighing options"),
            SimpleNamespace(text="Reading the file."),
            SimpleNamespace(id="toolu_01", name="Read", input={"file_path": "a.py"}),
        ]),
        SimpleNamespace(content=[
            SimpleNamespace(tool_use_id="toolu_01", content="print('a')", is_error=False),
        ]),
        SimpleNamespace(
            subtype="success",
            is_error=False,
            result="All good.",
            session_id=SESSION_ID,
            usage={"input_tokens": 3, "output_tokens": 4},
            duration_ms=120,
            total_cost_usd=0.001,
        ),
    ]


async def _collect(transport: DirectTransport, request: TransportRequest):
    return [event async for event in transport.stream(request)]


@pytest.mark.asyncio
async def test_stream_maps_sdk_messages() -> None:
    captured: list = []
    transport = DirectTransport(loader=_sdk_loader(_success_messages(), captured=captured))

    events = await _collect(transport, TransportRequest("read a.py", cwd="/w", session_id=SESSION_ID))

    assert [e.kind for e in events] == [
        EventKind.PROGRESS,
        EventKind.THINKING,
        EventKind.TEXT,
        EventKind.TOOL_USE,
        EventKind.TOOL_RESULT,
        EventKind.TEXT,
        EventKind.COMPLETE,
    ]
    assert events[0].metadata["session_id"] == SESSION_ID
    assert events[3].metadata["tool_input"] == {"file_path": "a.py"}
    assert events[4].content == "print('a')"
    assert events[-1].metadata["usage"] == {"input_tokens": 3, "output_tokens": 4}

    prompt, options = captured[0]
    assert prompt == "read a.py"
    assert options.cwd == "/w"
    assert options.extra_args == {"session-id": SESSION_ID}


@pytest.mark.asyncio
async def test_resume_request_sets_resume_option() -> None:
    captured: list = []
    transport = DirectTransport(loader=_sdk_loader(_success_messages(), captured=captured))

    await _collect(transport, TransportRequest("again", session_id=SESSION_ID, resume=True))

    _, options = captured[0]
    assert options.resume == SESSION_ID
    assert not hasattr(options, "extra_args")


@pytest.mark.asyncio
async def test_error_result_yields_single_error() -> None:
    messages = [SimpleNamespace(subtype="error_during_execution", is_error=True, result=None)]
    transport = DirectTransport(loader=_sdk_loader(messages))

    events = await _collect(transport, TransportRequest("x"))

    assert [e.kind for e in events] == [EventKind.ERROR]
    assert "error_during_execution" in events[0].content


@pytest.mark.asyncio
async def test_sdk_exception_becomes_runtime_error() -> None:
    messages = _success_messages()[:2]
    transport = DirectTransport(loader=_sdk_loader(messages, raise_after=RuntimeError("connection reset")))

    seen = []
    with pytest.raises(TransportRuntimeError) as excinfo:
        async for event in transport.stream(TransportRequest("x")):
            seen.append(event)

    assert "connection reset" in str(excinfo.value)
    assert seen and not any(e.is_terminal for e in seen)


@pytest.mark.asyncio
async def test_stream_without_result_is_runtime_error() -> None:
    transport = DirectTransport(loader=_sdk_loader(_success_messages()[:2]))

    with pytest.raises(TransportRuntimeError, match="without a result"):
        await _collect(transport, TransportRequest("x"))


@pytest.mark.asyncio
async def test_exception_after_result_is_ignored() -> None:
    transport = DirectTransport(
        loader=_sdk_loader(_success_messages(), raise_after=RuntimeError("late"))
    )

    events = await _collect(transport, TransportRequest("x"))

    assert events[-1].kind is EventKind.COMPLETE


@pytest.mark.asyncio
async def test_request_timeout_yields_error_event() -> None:
    transport = DirectTransport(
        timeout_seconds=0.01,
        loader=_sdk_loader(_success_messages(), delay=0.05),
    )

    events = await _collect(transport, TransportRequest("x"))

    assert [e.kind for e in events] == [EventKind.ERROR]
    assert "timed out" in events[0].content


@pytest.mark.asyncio
async def test_stalled_sdk_times_out_and_closes_iterator() -> None:
    closed = []

    async def query(*, prompt, options):
        try:
            yield SimpleNamespace(subtype="init", data={"session_id": SESSION_ID})
            await asyncio.Event().wait()
        finally:
            closed.append(True)

    transport = DirectTransport(timeout_seconds=0.05, loader=lambda: (query, _options))

    events = await asyncio.wait_for(_collect(transport, TransportRequest("x")), timeout=2.0)

    assert [e.kind for e in events] == [EventKind.PROGRESS, EventKind.ERROR]
    assert "timed out after 0.05 seconds" in events[-1].content
    assert closed == [True]


@pytest.mark.asyncio
async def test_probe_timeout_marks_unavailable() -> None:
    def slow_loader():
        time.sleep(0.3)
        raise AssertionError("probe should have given up")

    transport = DirectTransport(probe_timeout_seconds=0.05, loader=slow_loader)

    assert await transport.probe() is False
    assert "exceeded" in transport.last_probe_error
    with pytest.raises(TransportUnavailableError):
        await _collect(transport, TransportRequest("x"))


@pytest.mark.asyncio
async def test_probe_is_memoized_until_forced() -> None:
    calls = []

    def loader():
        calls.append(1)
        if len(calls) == 1:
            raise ImportError("No module named 'claude_agent_sdk'")
        return _sdk_loader([])()

    transport = DirectTransport(loader=loader)

    assert await transport.probe() is False
    assert await transport.is_available() is False
    assert len(calls) == 1
    assert "not installed" in transport.last_probe_error

    assert await transport.probe(force=True) is True
    assert transport.last_probe_error is None
    assert len(calls) == 2


def test_map_dict_thinking_and_progress() -> None:
    transport = DirectTransport(loader=_sdk_loader([]))

    thinking = transport.map_message({"type": "thinking", "content": "hmm"})
    progress = transport.map_message({"type": "progress", "content": "step", "progress": 0.5})

    assert thinking[0].kind is EventKind.THINKING
    assert thinking[0].content == "hmm"
    assert progress[0].kind is EventKind.PROGRESS
    assert progress[0].progress == 0.5


def test_exception_text_includes_cause() -> None:
    try:
        try:
            raise OSError("pipe closed")
        except OSError as inner:
            raise RuntimeError("query failed") from inner
    except RuntimeError as exc:
        text = exception_text(exc)

    assert text == "RuntimeError: query failed | OSError: pipe closed"
