"""Utilities shared by compaction and branch summarization."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from session_toolkit.compaction.models import CompactionDetails, FileOperations

if TYPE_CHECKING:
    from collections.abc import Iterable

READ_TOOLS = frozenset({"read", "read_file", "file_read"})
WRITE_TOOLS = frozenset({"write", "write_file", "file_write"})
EDIT_TOOLS = frozenset({"edit", "edit_file", "file_edit", "patch"})

SUMMARIZATION_SYSTEM_PROMPT = """You are a context summarization assistant. Your task is to read a conversation between a user and an AI coding assistant, then produce a structured summary following the exact format specified.

Do NOT continue the conversation. Do NOT respond to any questions in the conversation. ONLY output the structured summary."""


def _tool_input(part: dict[str, Any]) -> Any:
    return part.get("input", part.get("args"))


def _tool_calls(message: dict[str, Any]) -> Iterable[dict[str, Any]]:
    content = message.get("content")
    if not isinstance(content, list):
        return []
    return [part for part in content if isinstance(part, dict) and part.get("type") == "tool-call"]


def extract_file_ops_from_message(message: dict[str, Any], file_ops: FileOperations) -> None:
    """Record file paths from the tool calls of an assistant message."""
    if message.get("role") != "assistant":
        return
    for part in _tool_calls(message):
        tool_input = _tool_input(part)
        path = tool_input.get("path") if isinstance(tool_input, dict) else None
        if not isinstance(path, str) or not path:
            continue
        tool_name = part.get("toolName")
        if tool_name in READ_TOOLS:
            file_ops.read.add(path)
        elif tool_name in WRITE_TOOLS:
            file_ops.written.add(path)
        elif tool_name in EDIT_TOOLS:
            file_ops.edited.add(path)


def seed_file_ops(file_ops: FileOperations, details: Any) -> None:
    """Carry file lists recorded by an earlier summary into ``file_ops``."""
    previous = CompactionDetails.from_dict(details)
    file_ops.read.update(previous.read_files)
    file_ops.edited.update(previous.modified_files)


def compute_file_lists(file_ops: FileOperations) -> tuple[list[str], list[str]]:
    """Return ``(read_files, modified_files)``; read files exclude anything modified."""
    modified = file_ops.written | file_ops.edited
    read_files = sorted(file_ops.read - modified)
    return read_files, sorted(modified)


def format_file_operations(read_files: list[str], modified_files: list[str]) -> str:
    """Render non-empty file lists as XML-style blocks for a summary."""
    sections: list[str] = []
    if read_files:
        sections.append("<read-files>\n" + "\n".join(read_files) + "\n</read-files>")
    if modified_files:
        sections.append("<modified-files>\n" + "\n".join(modified_files) + "\n</modified-files>")
    if not sections:
        return ""
    return "\n\n" + "\n\n".join(sections)


def _joined_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    return "".join(
        str(part.get("text") or "")
        for part in content
        if isinstance(part, dict) and part.get("type") == "text"
    )


def _format_tool_call(part: dict[str, Any]) -> str:
    tool_input = _tool_input(part)
    if isinstance(tool_input, dict):
        args = ", ".join(
            f"{key}={json.dumps(value, ensure_ascii=False, default=str)}"
            for key, value in tool_input.items()
        )
    else:
        args = ""
    return f"{part.get('toolName', '')}({args})"


def _serialize_assistant(content: Any) -> list[str]:
    if isinstance(content, str):
        return [f"[Assistant]: {content}"] if content else []
    if not isinstance(content, list):
        return []

    text_parts: list[str] = []
    thinking_parts: list[str] = []
    tool_calls: list[str] = []
    for part in content:
        if not isinstance(part, dict):
            continue
        part_type = part.get("type")
        if part_type == "text":
            text_parts.append(str(part.get("text") or ""))
        elif part_type == "reasoning":
            thinking_parts.append(str(part.get("text") or ""))
        elif part_type == "tool-call":
            tool_calls.append(_format_tool_call(part))

    lines: list[str] = []
    if thinking_parts:
        lines.append("[Assistant thinking]: " + "\n".join(thinking_parts))
    if text_parts:
        lines.append("[Assistant]: " + "\n".join(text_parts))
    if tool_calls:
        lines.append("[Assistant tool calls]: " + "; ".join(tool_calls))
    return lines


def _serialize_tool_results(content: Any) -> list[str]:
    if not isinstance(content, list):
        return []
    results: list[str] = []
    for part in content:
        if not isinstance(part, dict) or part.get("type") != "tool-result":
            continue
        output = part.get("output")
        if isinstance(output, str):
            results.append(output)
        elif output is not None:
            results.append(json.dumps(output, ensure_ascii=False, default=str))
    return ["[Tool result]: " + "\n".join(results)] if results else []


def serialize_messages(messages: Iterable[dict[str, Any]]) -> str:
    """Flatten messages into a role-tagged transcript for the summarization model.

    Rendering the conversation as plain text keeps the model from treating it as
    a conversation to continue.
    """
    parts: list[str] = []
    for message in messages:
        role = message.get("role")
        content = message.get("content")
        if role == "user":
            text = _joined_text(content)
            if text:
                parts.append(f"[User]: {text}")
        elif role == "assistant":
            parts.extend(_serialize_assistant(content))
        elif role == "tool":
            parts.extend(_serialize_tool_results(content))
    return "\n\n".join(parts)
