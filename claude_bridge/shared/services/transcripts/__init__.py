"""Read-only access to backend session transcripts."""
from .normalize import parse_timestamp, render_content
from .store import SessionStore, deduplicate_sessions, generate_session_id

__all__ = [
    "SessionStore",
    "deduplicate_sessions",
    "generate_session_id",
    "parse_timestamp",
    "render_content",
]
