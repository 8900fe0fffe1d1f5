from __future__ import annotations

from claude_bridge.shared.formatters.message import (
    CodeBlock,
    extract_code_blocks,
    extract_file_paths,
    format_message_for_display,
)
from claude_bridge.shared.models.message import Message, MessageRole, ToolCall


def test_format_plain_message_is_unchanged() -> None:
    message = Message(role=MessageRole.ASSISTANT, content="Just text")

    assert format_message_for_display(message) == "Just text"


def test_format_appends_tool_calls_and_files() -> None:
    message = Message(
        role=MessageRole.ASSISTANT,
        content="Done",
        files=["src/util.py"],
        metadata={"tool_calls": [ToolCall(id="t1", name="Write", parameters={"file_path": "src/util.py"}, status="completed")]},
    )

    formatted = format_message_for_display(message)

    assert formatted == (
        "Done\n\n**Tool Calls:**\n"
        '- Write({"file_path":"src/util.py"}) - Status: completed\n'
        "\n\n**Files:**\n- src/util.py\n"
    )


def test_extract_code_blocks_defaults_language() -> None:
    content = "Here:\n```python\nprint('hi')\n```\nand\n```\nplain\n```"

    assert extract_code_blocks(content) == [
        CodeBlock("python", "print('hi')"),
        CodeBlock("text", "plain"),
    ]
    assert extract_code_blocks("") == []


def test_extract_file_paths_unique_in_order() -> None:
    content = "Edited src/app.py and tests/test_app.py\nthen src/app.py again. Version 2"

    assert extract_file_paths(content) == ["src/app.py", "tests/test_app.py"]
