"""Transcript text parsing for Lore.

Turns a conversation transcript into role-tagged text blocks plus the tool
calls made along the way. Two input shapes are accepted:

- JSONL, one entry per line, in the Claude Code transcript format (string
  content, content-block arrays, or a nested ``message.content``).
- Plain text with ``User:`` / ``Human:`` / ``Assistant:`` / ``Claude:``
  line prefixes. Text without any prefix is treated as assistant output.

Malformed JSONL lines are skipped, never fatal.
"""

import json
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

USER_PREFIXES = ("User:", "Human:")
ASSISTANT_PREFIXES = ("Assistant:", "Claude:")

# WHAT: Tools whose file_path input counts as a file change.
FILE_WRITE_TOOLS = {"Write": "created", "Edit": "modified", "MultiEdit": "modified"}

CHARS_PER_TOKEN = 4


@dataclass
class ToolCall:
    """A tool invocation seen in the transcript."""

    name: str
    input: dict = field(default_factory=dict)
    result: str | None = None


@dataclass
class ParsedTranscript:
    """Role-tagged messages and tool calls extracted from a transcript."""

    user_messages: list[str] = field(default_factory=list)
    assistant_messages: list[str] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    full_text: str = ""

    @property
    def is_empty(self) -> bool:
        return not (self.user_messages or self.assistant_messages or self.tool_calls)


def parse_transcript(path: str | Path) -> ParsedTranscript:
    """Parse a transcript file. A missing or unreadable file is empty."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Could not read transcript {path}: {e}")
        return ParsedTranscript()
    return parse_any(text)


def parse_any(text: str) -> ParsedTranscript:
    """Parse JSONL if the text looks like it, otherwise plain conversation."""
    if text.lstrip().startswith("{"):
        return parse_transcript_text(text)
    return parse_conversation_text(text)


def parse_transcript_text(text: str) -> ParsedTranscript:
    """Parse JSONL transcript text.

    Args:
        text: One JSON object per line.

    Returns:
        ParsedTranscript. Lines that are not valid JSON objects are skipped.
    """
    transcript = ParsedTranscript()
    parts: list[str] = []

    for line_no, line in enumerate(text.split("\n"), start=1):
        if not line.strip():
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            logger.debug(f"Skipping invalid JSON on transcript line {line_no}")
            continue
        if not isinstance(entry, dict):
            continue

        role = entry.get("type") or entry.get("role")
        if role in ("user", "assistant"):
            content = _extract_content(entry)
            if role == "assistant":
                transcript.tool_calls.extend(_extract_tool_uses(entry))
            if not content:
                continue
            if role == "user":
                transcript.user_messages.append(content)
                parts.append(f"User: {content}")
            else:
                transcript.assistant_messages.append(content)
                parts.append(f"Assistant: {content}")
        elif role == "tool_use":
            tool_input = entry.get("tool_input") or entry.get("input") or {}
            transcript.tool_calls.append(
                ToolCall(name=entry.get("tool_name") or entry.get("name") or "", input=tool_input)
            )
        elif role == "tool_result":
            if transcript.tool_calls and transcript.tool_calls[-1].result is None:
                transcript.tool_calls[-1].result = _extract_content(entry)

    transcript.full_text = "\n\n".join(parts)
    return transcript


def parse_conversation_text(text: str) -> ParsedTranscript:
    """Parse plain text with role prefixes into a transcript."""
    transcript = ParsedTranscript(full_text=text)
    role = "assistant"
    current: list[str] = []
    saw_prefix = False

    def flush() -> None:
        content = "\n".join(current).strip()
        if not content:
            return
        if role == "user":
            transcript.user_messages.append(content)
        else:
            transcript.assistant_messages.append(content)

    for line in text.split("\n"):
        prefix_role = None
        if line.startswith(USER_PREFIXES):
            prefix_role = "user"
        elif line.startswith(ASSISTANT_PREFIXES):
            prefix_role = "assistant"

        if prefix_role is None:
            current.append(line)
            continue

        saw_prefix = True
        flush()
        role = prefix_role
        current = [line.split(":", 1)[1].strip()]

    flush()

    if not saw_prefix and not transcript.assistant_messages and text.strip():
        transcript.assistant_messages.append(text)
    return transcript


def _extract_content(entry: dict) -> str:
    """Extract text from the content shapes a transcript entry can have."""
    content = entry.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return _text_from_blocks(content)

    message = entry.get("message")
    if isinstance(message, dict):
        nested = message.get("content")
        if isinstance(nested, str):
            return nested
        if isinstance(nested, list):
            return _text_from_blocks(nested)

    text = entry.get("text")
    return text if isinstance(text, str) else ""


def _text_from_blocks(blocks: list) -> str:
    parts: list[str] = []
    for block in blocks:
        if not isinstance(block, dict):
            continue
        if block.get("type") == "text" and isinstance(block.get("text"), str):
            parts.append(block["text"])
        elif block.get("type") == "tool_result":
            inner = block.get("content")
            if isinstance(inner, str):
                parts.append(inner)
            elif isinstance(inner, list):
                parts.extend(
                    b["text"] for b in inner if isinstance(b, dict) and b.get("type") == "text" and isinstance(b.get("text"), str)
                )
    return "\n".join(parts)


def _extract_tool_uses(entry: dict) -> list[ToolCall]:
    """Return tool_use blocks embedded in an assistant entry's content."""
    content = entry.get("content")
    if not isinstance(content, list):
        message = entry.get("message")
        content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, list):
        return []
    return [
        ToolCall(name=block.get("name", ""), input=block.get("input") or {})
        for block in content
        if isinstance(block, dict) and block.get("type") == "tool_use"
    ]


def modified_files(transcript: ParsedTranscript) -> list[tuple[str, str, str]]:
    """Return (path, action, tool_name) for each file written, first touch wins."""
    seen: dict[str, tuple[str, str, str]] = {}
    for call in transcript.tool_calls:
        action = FILE_WRITE_TOOLS.get(call.name)
        if action is None:
            continue
        path = call.input.get("file_path") or call.input.get("path")
        if isinstance(path, str) and path and path not in seen:
            seen[path] = (path, action, call.name)
    return list(seen.values())


def file_change_from_hook(payload: dict) -> tuple[str, str, str] | None:
    """Return (path, action, tool_name) for a PostToolUse write, else None.

    A Write whose tool_response says the file already existed counts as a
    modification.
    """
    if not isinstance(payload, dict) or payload.get("hook_event_name") != "PostToolUse":
        return None
    tool_name = payload.get("tool_name") or ""
    if tool_name not in FILE_WRITE_TOOLS:
        return None

    tool_input = payload.get("tool_input")
    if not isinstance(tool_input, dict):
        return None
    path = tool_input.get("file_path") or tool_input.get("path")
    if not isinstance(path, str) or not path:
        return None

    response = payload.get("tool_response")
    existed = isinstance(response, dict) and bool(response.get("existed"))
    action = "created" if tool_name == "Write" and not existed else "modified"
    return path, action, tool_name


def estimate_tokens(transcript: ParsedTranscript) -> int:
    """Rough token estimate: four characters per token."""
    return math.ceil(len(transcript.full_text) / CHARS_PER_TOKEN)
