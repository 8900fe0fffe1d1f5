"""Plain-text helpers for presenting messages."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass

from claude_bridge.shared.models.message import Message

_CODE_BLOCK_RE = re.compile(r"```(\w+)?\n([\s\S]*?)```")
_FILE_PATH_RE = re.compile(
    r"(?:^|\s)([A-Za-z0-9_\-./\\]+\.[A-Za-z0-9]+)(?=\s|$)", re.MULTILINE
)


@dataclass(frozen=True)
class CodeBlock:
    language: str
    code: str


def format_message_for_display(message: Message) -> str:
    """Message content followed by tool-call and file summaries."""
    formatted = message.content
    tool_calls = message.tool_calls
    if tool_calls:
        formatted += "\n\n**Tool Calls:**\n"
        for tool in tool_calls:
            params = json.dumps(tool.parameters, ensure_ascii=False, separators=(",", ":"))
            formatted += f"- {tool.name}({params}) - Status: {tool.status}\n"
    if message.files:
        formatted += "\n\n**Files:**\n"
        for path in message.files:
            formatted += f"- {path}\n"
    return formatted


def extract_code_blocks(content: str) -> list[CodeBlock]:
    """Fenced code blocks in *content*; untagged blocks are ``text``."""
    return [
        CodeBlock(language=match.group(1) or "text", code=match.group(2).strip())
        for match in _CODE_BLOCK_RE.finditer(content or "")
    ]


def extract_file_paths(content: str) -> list[str]:
    """Unique path-like tokens (``name.ext``) in order of appearance."""
    paths: list[str] = []
    for match in _FILE_PATH_RE.finditer(content or ""):
        path = match.group(1)
        if path and path not in paths:
            paths.append(path)
    return paths
