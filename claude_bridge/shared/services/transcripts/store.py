"""Session store backed by the backend's JSONL transcripts.

Transcripts are append-only files owned by the backend process:

    <claude_home>/projects/<project_key>/<session-id>.jsonl

This module only reads them. Every line is parsed independently so one
corrupt entry never hides the rest of a session.
"""
from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from claude_bridge.shared.models.message import Message, MessageRole
from claude_bridge.shared.models.session import Session, SessionStatus, derive_title
from claude_bridge.shared.services.project import (
    candidate_project_keys,
    get_projects_root,
    project_dir_from_key,
)

from .normalize import entry_content, entry_role, parse_timestamp, render_content

logger = logging.getLogger(__name__)

TRANSCRIPT_SUFFIX = ".jsonl"
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _sort_key(session: Session) -> datetime:
    return session.updated_at or _EPOCH


def deduplicate_sessions(*session_lists: Iterable[Session]) -> list[Session]:
    """Merge session lists by id (first occurrence wins), newest first."""
    seen: set[str] = set()
    merged: list[Session] = []
    for sessions in session_lists:
        for session in sessions:
            if session.id in seen:
                continue
            seen.add(session.id)
            merged.append(session)
    merged.sort(key=_sort_key, reverse=True)
    return merged


def generate_session_id() -> str:
    return str(uuid.uuid4())


def fill_timestamps(
    stamps: list[datetime | None],
    fallback: datetime,
) -> list[datetime]:
    """Fill missing stamps from their neighbours and clamp to non-decreasing order.

    A gap takes the previous known stamp (the next known one when it leads
    the list); *fallback* is used only when no entry carries a timestamp.
    """
    known = [s for s in stamps if s is not None]
    current = known[0] if known else fallback
    filled: list[datetime] = []
    for stamp in stamps:
        if stamp is not None and stamp > current:
            current = stamp
        filled.append(current)
    return filled


def _first_value(entries: list[dict[str, Any]], key: str) -> Any:
    """First non-empty *key* (summary rows at the top of a file lack it)."""
    for entry in entries:
        value = entry.get(key)
        if value:
            return value
    return None


class SessionStore:
    """Read-only view over the backend's per-project transcripts."""

    def __init__(self, claude_home: str | Path | None = None) -> None:
        self.claude_home = Path(claude_home).expanduser() if claude_home else Path.home() / ".claude"
        self.projects_root = get_projects_root(self.claude_home)

    def project_dir(self, project_path: str | Path) -> Path | None:
        """Existing transcript directory for *project_path*, if any."""
        for key in candidate_project_keys(project_path):
            candidate = self.projects_root / key
            if candidate.is_dir():
                return candidate
        return None

    def _session_files(self, directory: Path) -> list[Path]:
        files = [p for p in directory.glob(f"*{TRANSCRIPT_SUFFIX}") if p.is_file()]
        files.sort(key=lambda p: p.stat().st_mtime, reverse=True)
        return files

    def list_sessions(self, project_path: str | Path) -> list[Session]:
        """Sessions for one project, most recently modified file first."""
        directory = self.project_dir(project_path)
        if directory is None:
            logger.debug("No transcript directory for %s under %s", project_path, self.projects_root)
            return []
        sessions: list[Session] = []
        for path in self._session_files(directory):
            session = self.parse_session_file(path)
            if session is not None:
                sessions.append(session)
        logger.info("Loaded %d session(s) from %s", len(sessions), directory)
        return sessions

    def get_session(
        self,
        session_id: str,
        project_path: str | Path | None = None,
    ) -> Session | None:
        """Load one session by id, searching every project when no path is given."""
        path = self._find_session_file(session_id, project_path)
        if path is None:
            return None
        session = self.parse_session_file(path)
        if session is not None and project_path is None:
            session.metadata["project_dir"] = project_dir_from_key(path.parent.name)
        return session

    def session_exists(self, session_id: str, project_path: str | Path | None = None) -> bool:
        return self._find_session_file(session_id, project_path) is not None

    def latest_session_id(self, project_path: str | Path) -> str | None:
        """Id of the most recently modified transcript for *project_path*."""
        directory = self.project_dir(project_path)
        if directory is None:
            return None
        files = self._session_files(directory)
        return files[0].stem if files else None

    def get_all_sessions(self) -> list[Session]:
        """Sessions across every project, tagged with their project dir."""
        if not self.projects_root.is_dir():
            return []
        sessions: list[Session] = []
        for directory in sorted(p for p in self.projects_root.iterdir() if p.is_dir()):
            for path in self._session_files(directory):
                session = self.parse_session_file(path)
                if session is None:
                    continue
                session.metadata["project_dir"] = project_dir_from_key(directory.name)
                sessions.append(session)
        sessions.sort(key=_sort_key, reverse=True)
        logger.info("Loaded %d total session(s) across all projects", len(sessions))
        return sessions

    def _find_session_file(
        self,
        session_id: str,
        project_path: str | Path | None,
    ) -> Path | None:
        if not session_id or "/" in session_id or session_id.startswith("."):
            return None
        filename = f"{session_id}{TRANSCRIPT_SUFFIX}"
        if project_path is not None:
            directory = self.project_dir(project_path)
            candidates = [directory / filename] if directory is not None else []
        elif self.projects_root.is_dir():
            candidates = [d / filename for d in self.projects_root.iterdir() if d.is_dir()]
        else:
            candidates = []
        for candidate in candidates:
            if candidate.is_file():
                return candidate
        return None

    # ── Parsing ──

    @staticmethod
    def read_entries(path: Path) -> list[dict[str, Any]]:
        """Decode every JSON object line in *path*, skipping bad lines."""
        try:
            lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
        except OSError as exc:
            logger.warning("Failed to read transcript %s: %s", path, exc)
            return []
        entries: list[dict[str, Any]] = []
        for line_no, raw in enumerate(lines, start=1):
            if not raw.strip():
                continue
            try:
                row = json.loads(raw)
            except json.JSONDecodeError:
                logger.debug("%s:%d: invalid json, skipping", path.name, line_no)
                continue
            if isinstance(row, dict):
                entries.append(row)
        return entries

    def parse_session_file(self, path: Path) -> Session | None:
        """Build a Session from one transcript, or None if nothing parses."""
        entries = self.read_entries(path)
        if not entries:
            return None

        session_id = path.stem
        fallback = self._mtime(path)
        rows = [(entry, entry_role(entry)) for entry in entries]
        rows = [(entry, role) for entry, role in rows if role is not None]
        stamps = fill_timestamps(
            [parse_timestamp(entry.get("timestamp")) for entry, _ in rows], fallback,
        )
        messages: list[Message] = []
        for (entry, role), timestamp in zip(rows, stamps):
            message = entry.get("message") if isinstance(entry.get("message"), dict) else {}
            messages.append(Message(
                id=str(entry.get("uuid") or uuid.uuid4()),
                role=MessageRole(role),
                content=render_content(entry_content(entry)),
                timestamp=timestamp,
                metadata={
                    "session_id": entry.get("sessionId"),
                    "request_id": entry.get("requestId") or message.get("id"),
                    "tool_use_result": entry.get("toolUseResult"),
                },
            ))

        first, last = entries[0], entries[-1]
        created_at = parse_timestamp(first.get("timestamp")) or (
            messages[0].timestamp if messages else fallback
        )
        updated_at = parse_timestamp(last.get("timestamp")) or (
            messages[-1].timestamp if messages else fallback
        )
        if messages:
            created_at = min(created_at, messages[0].timestamp)
            updated_at = max(updated_at, messages[-1].timestamp)
        updated_at = max(updated_at, created_at)

        return Session(
            id=session_id,
            title=derive_title(messages),
            status=(
                SessionStatus.PENDING
                if entry_role(last) == "user"
                else SessionStatus.COMPLETED
            ),
            messages=messages,
            created_at=created_at,
            updated_at=updated_at,
            metadata={
                "session_id": session_id,
                "cwd": _first_value(entries, "cwd"),
                "version": _first_value(entries, "version"),
                "git_branch": _first_value(entries, "gitBranch"),
            },
        )

    @staticmethod
    def _mtime(path: Path) -> datetime:
        try:
            return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
        except OSError:
            return _EPOCH
