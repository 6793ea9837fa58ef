"""Token estimation for conversation messages.

Uses a chars/4 heuristic that rounds up, so it tends to overestimate and
compaction triggers early rather than late.
"""

from __future__ import annotations

import json
import math
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from collections.abc import Iterable

CHARS_PER_TOKEN = 4


class _ThresholdSettings(Protocol):
    enabled: bool
    reserve_tokens: int


def compact_json(value: Any) -> str:
    """Encode a value the way it would be sent over the wire."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


def _text_chars(content: Any) -> int:
    if isinstance(content, str):
        return len(content)
    if not isinstance(content, list):
        return 0
    return sum(
        len(part.get("text") or "")
        for part in content
        if isinstance(part, dict) and part.get("type") == "text"
    )


def _assistant_chars(content: Any) -> int:
    if isinstance(content, str):
        return len(content)
    if not isinstance(content, list):
        return 0
    chars = 0
    for part in content:
        if not isinstance(part, dict):
            continue
        part_type = part.get("type")
        if part_type in ("text", "reasoning"):
            chars += len(part.get("text") or "")
        elif part_type == "tool-call":
            tool_input = part.get("input", part.get("args")) or {}
            chars += len(part.get("toolName") or "") + len(compact_json(tool_input))
    return chars


def _tool_result_chars(content: Any) -> int:
    if not isinstance(content, list):
        return 0
    chars = 0
    for part in content:
        if not isinstance(part, dict) or part.get("type") != "tool-result":
            continue
        output = part.get("output")
        if output is None:
            continue
        chars += len(output) if isinstance(output, str) else len(compact_json(output))
    return chars


def estimate_tokens(message: dict[str, Any]) -> int:
    """Estimate the token cost of a single message."""
    role = message.get("role")
    content = message.get("content")
    if role in ("user", "system"):
        chars = _text_chars(content)
    elif role == "assistant":
        chars = _assistant_chars(content)
    elif role == "tool":
        chars = _tool_result_chars(content)
    else:
        return 0
    return math.ceil(chars / CHARS_PER_TOKEN)


def estimate_context_tokens(messages: Iterable[dict[str, Any]]) -> int:
    """Estimate the total token cost of a message list."""
    return sum(estimate_tokens(message) for message in messages)


def should_compact(context_tokens: int, context_window: int, settings: _ThresholdSettings) -> bool:
    """Return True when compaction is enabled and the context eats into the reserve."""
    if not settings.enabled:
        return False
    return context_tokens > context_window - settings.reserve_tokens
