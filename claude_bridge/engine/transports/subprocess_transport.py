"""Claude CLI subprocess transport.

Runs ``claude --print --verbose --output-format stream-json`` and turns
its stdout into StreamEvents as chunks arrive.
"""
from __future__ import annotations

import asyncio
import logging
import shutil
from typing import TYPE_CHECKING, AsyncIterator

from claude_bridge.engine.stream_parser import StreamJsonParser
from claude_bridge.shared.models.events import StreamEvent

from .base import Transport, TransportRequest

if TYPE_CHECKING:
    from claude_bridge.engine.config import BridgeConfig

logger = logging.getLogger(__name__)

_STDERR_EXCERPT = 2000


class SubprocessTransport(Transport):
    """Transport backed by the ``claude`` command-line tool.

    The prompt is written to stdin by default (avoids argv length limits);
    set ``prompt_via_stdin=False`` to pass it as the trailing argument.
    A per-request timeout forces termination and surfaces an error event.
    """

    def __init__(
        self,
        command: str = "claude",
        *,
        timeout_seconds: float = 120.0,
        terminate_grace_seconds: float = 5.0,
        prompt_via_stdin: bool = True,
        model: str | None = None,
        permission_mode: str = "default",
        allowed_tools: list[str] | None = None,
        system_prompt: str | None = None,
        max_turns: int | None = None,
        chunk_size: int = 65536,
    ) -> None:
        self._command = self.resolve_command(command, "claude")
        self._timeout = timeout_seconds
        self._grace = terminate_grace_seconds
        self._prompt_via_stdin = prompt_via_stdin
        self._model = model
        self._permission_mode = permission_mode
        self._allowed_tools = list(allowed_tools or [])
        self._system_prompt = system_prompt
        self._max_turns = max_turns
        self._chunk_size = chunk_size

    @classmethod
    def from_config(cls, config: BridgeConfig) -> SubprocessTransport:
        return cls(
            config.cli_command,
            timeout_seconds=config.request_timeout_seconds,
            terminate_grace_seconds=config.terminate_grace_seconds,
            prompt_via_stdin=config.prompt_via_stdin,
            model=config.model,
            permission_mode=config.permission_mode,
            allowed_tools=config.allowed_tools,
            system_prompt=config.system_prompt,
            max_turns=config.max_turns,
        )

    @property
    def name(self) -> str:
        return "subprocess"

    @property
    def command(self) -> str:
        return self._command

    async def is_available(self) -> bool:
        """Check if the claude CLI is installed."""
        return shutil.which(self._command) is not None

    def build_command(self, request: TransportRequest) -> list[str]:
        cmd = [
            self._command,
            "--print",
            "--verbose",
            "--output-format", "stream-json",
        ]
        if request.session_id:
            flag = "--resume" if request.resume else "--session-id"
            cmd.extend([flag, request.session_id])
        if self._model:
            cmd.extend(["--model", self._model])
        if self._permission_mode and self._permission_mode != "default":
            cmd.extend(["--permission-mode", self._permission_mode])
        if self._allowed_tools:
            cmd.extend(["--allowedTools", ",".join(self._allowed_tools)])
        if self._system_prompt:
            cmd.extend(["--append-system-prompt", self._system_prompt])
        if self._max_turns:
            cmd.extend(["--max-turns", str(self._max_turns)])
        if not self._prompt_via_stdin:
            cmd.append(request.prompt)
        return cmd

    async def _spawn(
        self, cmd: list[str], cwd: str | None
    ) -> asyncio.subprocess.Process:
        # create_subprocess_exec passes args as array, no shell
        return await asyncio.create_subprocess_exec(
            *cmd,
            stdin=(
                asyncio.subprocess.PIPE
                if self._prompt_via_stdin
                else asyncio.subprocess.DEVNULL
            ),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
        )

    async def stream(self, request: TransportRequest) -> AsyncIterator[StreamEvent]:
        """Run the CLI for *request* and yield events as stdout arrives."""
        cmd = self.build_command(request)
        logger.info(
            "Spawning Claude CLI: %s (cwd=%s, session=%s, resume=%s)",
            " ".join(cmd[:-1] if not self._prompt_via_stdin else cmd),
            request.cwd,
            (request.session_id or "-")[:8],
            request.resume,
        )
        try:
            proc = await self._spawn(cmd, request.cwd)
        except FileNotFoundError:
            logger.error("'%s' CLI not found", self._command)
            yield StreamEvent.error(f"Claude CLI not found: {self._command}")
            return
        except OSError as exc:
            logger.error("Failed to start Claude CLI: %s", exc)
            yield StreamEvent.error(f"Failed to start Claude CLI: {exc}")
            return

        parser = StreamJsonParser()
        received = False
        settled = False
        stderr_task = (
            asyncio.ensure_future(proc.stderr.read())
            if proc.stderr is not None
            else None
        )
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
            if self._prompt_via_stdin and proc.stdin is not None:
                try:
                    proc.stdin.write(request.prompt.encode("utf-8"))
                    await asyncio.wait_for(proc.stdin.drain(), timeout=remaining())
                    proc.stdin.close()
                except (BrokenPipeError, ConnectionResetError) as exc:
                    # The exit code below reports the real failure
                    logger.warning("Claude CLI closed stdin early: %s", exc)

            while True:
                chunk = await asyncio.wait_for(
                    proc.stdout.read(self._chunk_size), timeout=remaining()
                )
                if not chunk:
                    break
                received = True
                for event in parser.feed(chunk):
                    yield event

            for event in parser.finish():
                yield event

            returncode = await asyncio.wait_for(proc.wait(), timeout=remaining())
            stderr_text = await self._collect_stderr(stderr_task)
            settled = True
            logger.info(
                "Claude CLI exited with code %s (lines=%d, terminal=%s)",
                returncode, parser.lines_seen, parser.terminated,
            )

            if parser.terminated:
                return
            if returncode != 0:
                yield StreamEvent.error(
                    f"Claude CLI failed with code {returncode}",
                    exit_code=returncode,
                    stderr=stderr_text[-_STDERR_EXCERPT:],
                )
            elif not received or not "".join(parser.text_parts).strip():
                yield StreamEvent.error("No response received from Claude CLI")
            else:
                yield StreamEvent.complete(
                    result="".join(parser.text_parts),
                    session_id=parser.session_id,
                )

        except asyncio.TimeoutError:
            logger.warning(
                "Claude CLI timed out after %.0fs, terminating pid=%s",
                self._timeout, proc.pid,
            )
            await self.terminate(proc)
            settled = True
            if not parser.terminated:
                yield StreamEvent.error(
                    f"Claude CLI request timed out after {self._timeout:g} seconds",
                    timeout_seconds=self._timeout,
                )
        finally:
            if not settled:
                # Consumer closed the stream or was cancelled
                logger.info("Claude CLI stream closed early, terminating pid=%s", proc.pid)
                await self.terminate(proc)
            if stderr_task is not None and not stderr_task.done():
                stderr_task.cancel()

    @staticmethod
    async def _collect_stderr(task: asyncio.Future | None) -> str:
        if task is None:
            return ""
        try:
            data = await asyncio.wait_for(task, timeout=1.0)
        except asyncio.TimeoutError:
            return ""
        return data.decode("utf-8", errors="replace") if data else ""

    async def terminate(self, proc: asyncio.subprocess.Process) -> None:
        """SIGTERM the process, escalating to kill after the grace period."""
        if proc.returncode is not None:
            return
        pid = proc.pid
        try:
            proc.terminate()
            try:
                await asyncio.wait_for(proc.wait(), timeout=self._grace)
            except asyncio.TimeoutError:
                logger.warning("Claude CLI pid=%s ignored SIGTERM, killing", pid)
                proc.kill()
                await proc.wait()
            logger.info("Claude CLI stopped (pid=%s)", pid)
        except ProcessLookupError:
            pass
