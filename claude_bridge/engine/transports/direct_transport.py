"""Claude Agent SDK transport.

Wraps claude_agent_sdk.query() and maps its typed messages onto the same
event vocabulary the CLI transport produces. The SDK is loaded lazily by a
memoized, time-bounded probe so a missing or broken install only disables
this transport.
"""
from __future__ import annotations

import asyncio
import importlib
import logging
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable

from claude_bridge.engine.errors import TransportRuntimeError, TransportUnavailableError
from claude_bridge.engine.stream_parser import (
    INIT_MESSAGE,
    events_from_payload,
    result_events,
    tool_result_event,
    tool_use_event,
)
from claude_bridge.shared.models.events import EventKind, StreamEvent

from .base import Transport, TransportRequest

if TYPE_CHECKING:
    from claude_bridge.engine.config import BridgeConfig

logger = logging.getLogger(__name__)

# (query, ClaudeAgentOptions)
SdkBinding = tuple[Callable[..., Any], Callable[..., Any]]


def load_sdk() -> SdkBinding:
    """Import claude_agent_sdk and return its query factory + options type."""
    sdk = importlib.import_module("claude_agent_sdk")
    query = getattr(sdk, "query", None)
    options_cls = getattr(sdk, "ClaudeAgentOptions", None)
    if not callable(query) or options_cls is None:
        raise ImportError("claude_agent_sdk does not expose query()/ClaudeAgentOptions")
    return query, options_cls


def exception_text(exc: BaseException) -> str:
    """Flatten an exception (and its causes/groups) to one line."""
    parts: list[str] = []
    seen: set[int] = set()

    def visit(err: BaseException | None) -> None:
        if err is None or id(err) in seen:
            return
        seen.add(id(err))
        parts.append(f"{type(err).__name__}: {err}")
        nested = getattr(err, "exceptions", None)
        if isinstance(nested, tuple):
            for child in nested:
                if isinstance(child, BaseException):
                    visit(child)
        visit(err.__cause__)

    visit(exc)
    return " | ".join(p.strip() for p in parts if p.strip())


class DirectTransport(Transport):
    """Transport backed by the in-process Claude Agent SDK."""

    def __init__(
        self,
        *,
        probe_timeout_seconds: float = 10.0,
        timeout_seconds: float = 120.0,
        model: str | None = None,
        permission_mode: str = "default",
        allowed_tools: list[str] | None = None,
        system_prompt: str | None = None,
        max_turns: int | None = None,
        loader: Callable[[], SdkBinding] = load_sdk,
    ) -> None:
        self._probe_timeout = probe_timeout_seconds
        self._timeout = timeout_seconds
        self._model = model
        self._permission_mode = permission_mode
        self._allowed_tools = list(allowed_tools or [])
        self._system_prompt = system_prompt
        self._max_turns = max_turns
        self._loader = loader
        self._binding: SdkBinding | None = None
        self._available: bool | None = None
        self.last_probe_error: str | None = None

    @classmethod
    def from_config(cls, config: BridgeConfig) -> DirectTransport:
        return cls(
            probe_timeout_seconds=config.probe_timeout_seconds,
            timeout_seconds=config.request_timeout_seconds,
            model=config.model,
            permission_mode=config.permission_mode,
            allowed_tools=config.allowed_tools,
            system_prompt=config.system_prompt,
            max_turns=config.max_turns,
        )

    @property
    def name(self) -> str:
        return "direct"

    async def probe(self, timeout: float | None = None, *, force: bool = False) -> bool:
        """One-shot availability check, memoized until ``force=True``."""
        if self._available is not None and not force:
            return self._available
        limit = self._probe_timeout if timeout is None else timeout
        try:
            self._binding = await asyncio.wait_for(
                asyncio.to_thread(self._loader), timeout=limit,
            )
            self._available = True
            self.last_probe_error = None
            logger.info("Claude Agent SDK available (direct transport enabled)")
        except asyncio.TimeoutError:
            self._fail_probe(f"SDK load exceeded {limit:g}s")
        except ImportError as exc:
            self._fail_probe(f"SDK not installed: {exc}")
        except Exception as exc:
            self._fail_probe(exception_text(exc))
        return bool(self._available)

    def _fail_probe(self, reason: str) -> None:
        self._binding = None
        self._available = False
        self.last_probe_error = reason
        logger.warning("Direct transport unavailable: %s", reason)

    async def is_available(self) -> bool:
        return await self.probe()

    def build_options(self, request: TransportRequest) -> Any:
        if self._binding is None:
            raise TransportUnavailableError(self.name, self.last_probe_error or "not probed")
        _, options_cls = self._binding
        kwargs: dict[str, Any] = {
            "cwd": request.cwd or ".",
            "permission_mode": self._permission_mode,
        }
        if self._allowed_tools:
            kwargs["allowed_tools"] = self._allowed_tools
        if self._system_prompt:
            kwargs["system_prompt"] = self._system_prompt
        if self._model:
            kwargs["model"] = self._model
        if self._max_turns:
            kwargs["max_turns"] = self._max_turns
        if request.session_id:
            if request.resume:
                kwargs["resume"] = request.session_id
            else:
                kwargs["extra_args"] = {"session-id": request.session_id}
        return options_cls(**kwargs)

    async def stream(self, request: TransportRequest) -> AsyncIterator[StreamEvent]:
        """Iterate the SDK query for *request*, yielding mapped events.

        SDK failures are raised as TransportRuntimeError so the selector
        can fall back to the CLI.
        """
        if not await self.probe():
            raise TransportUnavailableError(self.name, self.last_probe_error or "probe failed")
        query, _ = self._binding
        options = self.build_options(request)
        logger.info(
            "Starting SDK query (cwd=%s, session=%s, resume=%s)",
            request.cwd, (request.session_id or "-")[:8], request.resume,
        )

        iterator = query(prompt=request.prompt, options=options)
        terminated = False
        count = 0
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout if self._timeout > 0 else None

        def remaining() -> float | None:
            if deadline is None:
                return None
            left = deadline - loop.time()
            if left <= 0:
                raise asyncio.TimeoutError
            return left

        try:
            while True:
                # Each SDK message is awaited against the request deadline
                try:
                    message = await asyncio.wait_for(iterator.__anext__(), timeout=remaining())
                except StopAsyncIteration:
                    break
                count += 1
                for event in self.map_message(message):
                    yield event
                    if event.is_terminal:
                        terminated = True
                        break
                if terminated:
                    break
        except asyncio.TimeoutError:
            logger.warning("SDK query timed out after %.0fs", self._timeout)
            terminated = True
            yield StreamEvent.error(
                f"Claude SDK request timed out after {self._timeout:g} seconds",
                timeout_seconds=self._timeout,
            )
        except TransportRuntimeError:
            raise
        except Exception as exc:
            raise TransportRuntimeError(self.name, exception_text(exc)) from exc
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                try:
                    await aclose()
                except Exception as exc:
                    logger.debug("Error closing SDK iterator: %s", exc)

        logger.info("SDK query finished (messages=%d, terminal=%s)", count, terminated)
        if not terminated:
            raise TransportRuntimeError(self.name, "SDK stream ended without a result")

    def map_message(self, message: Any) -> list[StreamEvent]:
        """Map one SDK message (object or dict) to StreamEvents."""
        if isinstance(message, dict):
            return self._map_dict(message)

        # SystemMessage(subtype, data)
        if hasattr(message, "subtype") and hasattr(message, "data"):
            data = message.data if isinstance(message.data, dict) else {}
            if message.subtype == "init":
                meta = {"session_id": data.get("session_id"), "model": data.get("model")}
                return [StreamEvent(
                    EventKind.PROGRESS,
                    INIT_MESSAGE,
                    {k: v for k, v in meta.items() if v},
                )]
            return [StreamEvent.progress_event(str(message.subtype or "system"), subtype=message.subtype)]

        # ResultMessage
        if hasattr(message, "is_error") and hasattr(message, "subtype"):
            return result_events(
                subtype=message.subtype,
                is_error=bool(message.is_error),
                result=getattr(message, "result", None),
                session_id=getattr(message, "session_id", None),
                usage=getattr(message, "usage", None),
                duration_ms=getattr(message, "duration_ms", None),
                total_cost_usd=getattr(message, "total_cost_usd", None),
            )

        if hasattr(message, "content"):
            content = message.content
            if isinstance(content, str):
                return []
            events: list[StreamEvent] = []
            for block in content or []:
                if hasattr(block, "thinking"):
                    events.append(StreamEvent.thinking(str(block.thinking or "")))
                elif hasattr(block, "text"):
                    if block.text:
                        events.append(StreamEvent.text(block.text))
                elif hasattr(block, "name") and hasattr(block, "input"):
                    logger.info(
                        "SDK tool_use id=%s name=%s",
                        str(getattr(block, "id", ""))[:12], block.name,
                    )
                    events.append(tool_use_event(
                        block.name, block.input, tool_id=getattr(block, "id", None),
                    ))
                elif hasattr(block, "tool_use_id"):
                    events.append(tool_result_event(
                        block.tool_use_id,
                        getattr(block, "content", ""),
                        is_error=bool(getattr(block, "is_error", False)),
                    ))
            return events

        logger.debug("Ignoring unrecognized SDK message %s", type(message).__name__)
        return []

    @staticmethod
    def _map_dict(message: dict[str, Any]) -> list[StreamEvent]:
        msg_type = message.get("type")
        if msg_type == "thinking":
            text = message.get("content") or message.get("thinking") or message.get("text") or ""
            return [StreamEvent(EventKind.THINKING, str(text))]
        if msg_type == "progress":
            meta: dict[str, Any] = {}
            if isinstance(message.get("progress"), (int, float)):
                meta["progress"] = float(message["progress"])
            return [StreamEvent(EventKind.PROGRESS, str(message.get("content") or ""), meta)]
        return events_from_payload(message)
