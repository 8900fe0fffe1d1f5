from __future__ import annotations

import asyncio
from pathlib import Path
import shutil

import pytest

FIXTURES_DIR = Path(__file__).parent / "fixtures"


class FakeStream:
    """Reader that hands out pre-split chunks, optionally hanging at the end."""

    def __init__(self, chunks: list[bytes], *, hang: asyncio.Event | None = None) -> None:
        self._chunks = list(chunks)
        self._hang = hang

    async def read(self, n: int = -1) -> bytes:
        await asyncio.sleep(0)
        if self._chunks:
            return self._chunks.pop(0)
        if self._hang is not None:
            await self._hang.wait()
        return b""


class FakeStdin:
    def __init__(self, *, stalled: bool = False) -> None:
        self.data = b""
        self.closed = False
        self._stalled = stalled

    def write(self, data: bytes) -> None:
        self.data += data

    async def drain(self) -> None:
        if self._stalled:
            # Child never reads its stdin
            await asyncio.Event().wait()

    def close(self) -> None:
        self.closed = True


class FakeProcess:
    """Stand-in for asyncio.subprocess.Process."""

    pid = 4242

    def __init__(
        self,
        stdout: list[bytes] | None = None,
        *,
        exit_code: int = 0,
        stderr: bytes = b"",
        hang: bool = False,
        stalled_stdin: bool = False,
    ) -> None:
        self._stopped = asyncio.Event()
        self.stdout = FakeStream(stdout or [], hang=self._stopped if hang else None)
        self.stderr = FakeStream([stderr] if stderr else [])
        self.stdin = FakeStdin(stalled=stalled_stdin)
        self._exit_code = exit_code
        self._hang = hang
        self.returncode: int | None = None
        self.terminated = False
        self.killed = False

    async def wait(self) -> int:
        if self._hang and not self._stopped.is_set():
            await self._stopped.wait()
        if self.returncode is None:
            self.returncode = self._exit_code
        return self.returncode

    def terminate(self) -> None:
        self.terminated = True
        self.returncode = -15
        self._stopped.set()

    def kill(self) -> None:
        self.killed = True
        self.returncode = -9
        self._stopped.set()


def chunked(data: bytes, size: int) -> list[bytes]:
    return [data[i:i + size] for i in range(0, len(data), size)]


def install_process(transport, proc_or_exc) -> list[list[str]]:
    """Replace ``transport._spawn`` with one returning *proc_or_exc*.

    Returns the list that collects the argv of every spawn.
    """
    calls: list[list[str]] = []

    async def fake_spawn(cmd, cwd):
        calls.append(list(cmd))
        if isinstance(proc_or_exc, BaseException):
            raise proc_or_exc
        return proc_or_exc() if callable(proc_or_exc) else proc_or_exc

    transport._spawn = fake_spawn
    return calls


@pytest.fixture
def stream_fixture() -> bytes:
    return (FIXTURES_DIR / "streams" / "stream_success.jsonl").read_bytes()


@pytest.fixture
def claude_home(tmp_path: Path) -> Path:
    """A ~/.claude layout holding the transcript fixtures under two projects."""
    home = tmp_path / ".claude"
    demo = home / "projects" / "-home-dev-demo"
    other = home / "projects" / "-home-dev-other"
    demo.mkdir(parents=True)
    other.mkdir(parents=True)
    transcripts = FIXTURES_DIR / "transcripts"
    shutil.copy(
        transcripts / "claude_session.jsonl",
        demo / "217df94b-a1f0-43b4-b457-764295a557ec.jsonl",
    )
    shutil.copy(
        transcripts / "pending_session.jsonl",
        other / "5b0c8e2a-9d1f-4c3e-8a7b-6f5e4d3c2b1a.jsonl",
    )
    return home
