"""Transport selection with one-shot fallback.

Mode transitions:

    UNPROBED -> PROBING_DIRECT -> DIRECT_ACTIVE | CLI_ONLY
    DIRECT_ACTIVE -> CLI_ONLY   (first runtime failure of the direct path)

The selector never re-probes on its own; ``refresh()`` is the only way
back to the direct transport after a demotion.
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING, AsyncIterator

from claude_bridge.engine.errors import (
    TransportNotReadyError,
    TransportRuntimeError,
    TransportUnavailableError,
)
from claude_bridge.shared.models.events import StreamEvent

from .base import Transport, TransportRequest
from .direct_transport import DirectTransport
from .subprocess_transport import SubprocessTransport

if TYPE_CHECKING:
    from claude_bridge.engine.config import BridgeConfig

logger = logging.getLogger(__name__)


class TransportMode(Enum):
    UNPROBED = "unprobed"
    PROBING_DIRECT = "probing_direct"
    DIRECT_ACTIVE = "direct_active"
    CLI_ONLY = "cli_only"


class TransportSelector:
    """Routes requests to the direct transport, falling back to the CLI.

    The mode is the only shared mutable state and the selector is its only
    writer. Writes happen under ``_lock``; ``stream()`` reads under the
    same lock so a caller never acts on a mode that a probe is about to
    replace.
    """

    def __init__(
        self,
        subprocess: SubprocessTransport,
        direct: DirectTransport | None = None,
        *,
        use_direct: bool = True,
    ) -> None:
        self._subprocess = subprocess
        self._direct = direct if use_direct else None
        self._mode = TransportMode.UNPROBED
        self._lock = asyncio.Lock()
        self.last_fallback_reason: str | None = None

    @classmethod
    def from_config(cls, config: BridgeConfig) -> TransportSelector:
        return cls(
            SubprocessTransport.from_config(config),
            DirectTransport.from_config(config),
            use_direct=config.use_direct,
        )

    @property
    def mode(self) -> TransportMode:
        return self._mode

    @property
    def subprocess(self) -> SubprocessTransport:
        return self._subprocess

    @property
    def direct(self) -> DirectTransport | None:
        return self._direct

    @property
    def is_ready(self) -> bool:
        return self._mode in (TransportMode.DIRECT_ACTIVE, TransportMode.CLI_ONLY)

    async def initialize(self) -> TransportMode:
        """Probe once; later calls return the memoized mode."""
        async with self._lock:
            if self._mode is TransportMode.UNPROBED:
                await self._probe(force=False)
            return self._mode

    async def refresh(self) -> TransportMode:
        """Explicit re-probe (the only way to leave CLI_ONLY)."""
        async with self._lock:
            await self._probe(force=True)
            return self._mode

    async def _probe(self, *, force: bool) -> None:
        if self._direct is None:
            self._mode = TransportMode.CLI_ONLY
            logger.info("Transport selector: direct transport disabled, using CLI")
            return
        self._mode = TransportMode.PROBING_DIRECT
        ok = await self._direct.probe(force=force)
        self._mode = TransportMode.DIRECT_ACTIVE if ok else TransportMode.CLI_ONLY
        logger.info(
            "Transport selector: mode=%s%s",
            self._mode.value,
            "" if ok else f" ({self._direct.last_probe_error})",
        )

    async def demote(self, reason: str) -> None:
        async with self._lock:
            if self._mode is TransportMode.DIRECT_ACTIVE:
                self._mode = TransportMode.CLI_ONLY
                self.last_fallback_reason = reason
                logger.warning("Transport selector: demoted to CLI_ONLY: %s", reason)

    async def current_transport(self) -> Transport:
        async with self._lock:
            mode = self._mode
        if mode is TransportMode.DIRECT_ACTIVE and self._direct is not None:
            return self._direct
        if mode is TransportMode.CLI_ONLY:
            return self._subprocess
        raise TransportNotReadyError()

    async def stream(self, request: TransportRequest) -> AsyncIterator[StreamEvent]:
        """Yield events for *request*, retrying once on the CLI if direct fails."""
        transport = await self.current_transport()
        if transport is self._subprocess:
            async for event in self._subprocess.stream(request):
                yield event
            return

        try:
            async for event in transport.stream(request):
                yield event
            return
        except (TransportRuntimeError, TransportUnavailableError) as exc:
            reason = str(exc)
        await self.demote(reason)
        yield StreamEvent.progress_event(
            "Direct transport failed, retrying with Claude CLI",
            transport=self._subprocess.name,
            fallback_reason=reason,
        )
        async for event in self._subprocess.stream(request):
            yield event

    async def shutdown(self) -> None:
        await self._subprocess.shutdown()
        if self._direct is not None:
            await self._direct.shutdown()
