"""Build the model-facing message list from a root-to-leaf path."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, assert_never

from session_toolkit.session.models import (
    BranchSummaryEntry,
    CompactionEntry,
    ModelChangeEntry,
    SessionMessageEntry,
)

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from session_toolkit.session.models import SessionEntry


@dataclass(frozen=True)
class ModelInfo:
    """Provider and model identifier recorded by a model change."""

    provider: str
    model_id: str


@dataclass(frozen=True)
class SessionContext:
    """Messages to send to the model plus the active model, if any."""

    messages: list[dict[str, Any]] = field(default_factory=list)
    model: ModelInfo | None = None


def _user_text_message(text: str) -> dict[str, Any]:
    return {"role": "user", "content": [{"type": "text", "text": text}]}


def compaction_summary_message(summary: str, tokens_before: int) -> dict[str, Any]:
    """Wrap a compaction summary as a synthetic user message."""
    return _user_text_message(
        f'<summary type="compaction" tokens_before="{tokens_before}">\n{summary}\n</summary>'
    )


def branch_summary_message(summary: str) -> dict[str, Any]:
    """Wrap a branch summary as a synthetic user message."""
    return _user_text_message(f'<summary type="branch">\n{summary}\n</summary>')


def entry_to_message(entry: SessionEntry) -> dict[str, Any] | None:
    """Return the message an entry contributes to the context, if any."""
    if isinstance(entry, SessionMessageEntry):
        return entry.message
    if isinstance(entry, BranchSummaryEntry):
        return branch_summary_message(entry.summary) if entry.summary else None
    if isinstance(entry, CompactionEntry):
        return compaction_summary_message(entry.summary, entry.tokens_before)
    if isinstance(entry, ModelChangeEntry):
        return None
    assert_never(entry)


def _replayed(entry: SessionEntry) -> dict[str, Any] | None:
    # Compactions are only ever emitted as the leading summary.
    if isinstance(entry, CompactionEntry):
        return None
    return entry_to_message(entry)


def path_to_root(leaf: SessionEntry, by_id: Mapping[str, SessionEntry]) -> list[SessionEntry]:
    """Return the root-to-leaf path ending at ``leaf``.

    The walk stops at the first repeated id, so a parent cycle in loaded data
    ends the path instead of looping.
    """
    path: list[SessionEntry] = []
    seen: set[str] = set()
    current: SessionEntry | None = leaf
    while current is not None and current.id not in seen:
        seen.add(current.id)
        path.append(current)
        current = by_id.get(current.parent_id) if current.parent_id is not None else None
    path.reverse()
    return path


def build_session_context(
    entries: Sequence[SessionEntry],
    leaf_id: str | None = None,
    by_id: Mapping[str, SessionEntry] | None = None,
) -> SessionContext:
    """Build the session context by walking from the leaf back to the root.

    Args:
        entries: All entries in append order.
        leaf_id: Entry to start from. Falls back to the last entry when missing or unknown.
        by_id: Optional prebuilt id index over ``entries``.

    Returns:
        The linear message list for the model and the last model change on the path.
    """
    if by_id is None:
        by_id = {entry.id: entry for entry in entries}

    leaf = by_id.get(leaf_id) if leaf_id is not None else None
    if leaf is None:
        if not entries:
            return SessionContext()
        leaf = entries[-1]

    path = path_to_root(leaf, by_id)

    model: ModelInfo | None = None
    compaction: CompactionEntry | None = None
    compaction_index = -1
    for index, entry in enumerate(path):
        if isinstance(entry, ModelChangeEntry):
            model = ModelInfo(provider=entry.provider, model_id=entry.model_id)
        elif isinstance(entry, CompactionEntry):
            compaction = entry
            compaction_index = index

    messages: list[dict[str, Any]] = []

    def emit(entry: SessionEntry) -> None:
        message = _replayed(entry)
        if message is not None:
            messages.append(message)

    if compaction is None:
        for entry in path:
            emit(entry)
        return SessionContext(messages=messages, model=model)

    messages.append(compaction_summary_message(compaction.summary, compaction.tokens_before))

    found_first_kept = False
    for entry in path[:compaction_index]:
        if entry.id == compaction.first_kept_entry_id:
            found_first_kept = True
        if found_first_kept:
            emit(entry)

    for entry in path[compaction_index + 1 :]:
        emit(entry)

    return SessionContext(messages=messages, model=model)
