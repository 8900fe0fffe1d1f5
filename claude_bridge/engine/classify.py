"""Heuristic text classification shared by every stream consumer.

The CLI interleaves free-text lines with its JSON events. Lines that read
like the model narrating its own plan are surfaced as ``thinking``.
The cue list is a tunable policy, not a backend guarantee.
"""
from __future__ import annotations

import re
from pathlib import PurePath

THINKING_PHRASES: tuple[str, ...] = (
    "I need to",
    "Let me",
    "First, I",
    "First I",
    "I should",
    "I'll need to",
    "Looking at",
    "Based on",
    "To solve this",
    "I can see",
    # activity words
    "analyzing",
    "considering",
    "thinking",
    "examining",
    "planning",
    "preparing",
    "organizing",
    "structuring",
    # Portuguese
    "preciso",
    "vou",
    "primeiro",
    "analisando",
    "pensando",
)

THINKING_PREFIXES: tuple[str, ...] = ("🤔",)
THINKING_MARKERS: tuple[str, ...] = ("...", "…")

# Whole-word match so short cues ("vou") don't fire inside other words.
_THINKING_RE = re.compile(
    r"(?<!\w)(?:" + "|".join(re.escape(p) for p in THINKING_PHRASES) + r")(?!\w)",
    re.IGNORECASE,
)

LANGUAGE_BY_EXTENSION: dict[str, str] = {
    "js": "javascript",
    "ts": "typescript",
    "py": "python",
    "cs": "csharp",
    "java": "java",
    "cpp": "cpp",
    "c": "c",
    "html": "html",
    "css": "css",
    "json": "json",
    "xml": "xml",
}
DEFAULT_LANGUAGE = "code"


def is_thinking_content(content: str) -> bool:
    """Return True when *content* reads like reasoning rather than output."""
    if not content:
        return False
    stripped = content.lstrip()
    if stripped.startswith(THINKING_PREFIXES):
        return True
    if any(marker in content for marker in THINKING_MARKERS):
        return True
    return _THINKING_RE.search(content) is not None


def detect_language(file_path: str) -> str:
    """Map a file extension to a fenced-code language tag."""
    suffix = PurePath(file_path or "").suffix.lstrip(".").lower()
    return LANGUAGE_BY_EXTENSION.get(suffix, DEFAULT_LANGUAGE)
