"""Session models for tree-based JSONL persistence."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Literal

CURRENT_SESSION_VERSION = 1
ROOT_SENTINEL = "root"

EntryType = Literal["message", "model_change", "compaction", "branch_summary"]


@dataclass(frozen=True)
class SessionHeader:
    """Header line of a session JSONL file. Written once, never mutated."""

    type: Literal["session"]
    version: int
    id: str
    timestamp: str
    cwd: str = ""
    parent_session: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize the header to a JSON-compatible dict."""
        data = asdict(self)
        parent_session = data.pop("parent_session")
        if parent_session is not None:
            data["parentSession"] = parent_session
        return data


@dataclass(frozen=True)
class SessionEntryBase:
    """Fields shared by every entry in the session tree."""

    type: EntryType
    id: str
    parent_id: str | None
    timestamp: str


@dataclass(frozen=True)
class SessionMessageEntry(SessionEntryBase):
    """Session entry that stores one conversation message."""

    message: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ModelChangeEntry(SessionEntryBase):
    """Session entry for a provider/model switch."""

    provider: str
    model_id: str


@dataclass(frozen=True)
class CompactionEntry(SessionEntryBase):
    """Checkpoint that replaces history before ``first_kept_entry_id`` with a summary."""

    summary: str
    first_kept_entry_id: str
    tokens_before: int
    details: dict[str, Any] | None = None


@dataclass(frozen=True)
class BranchSummaryEntry(SessionEntryBase):
    """Summary of a branch that was abandoned when the leaf moved away."""

    from_id: str
    summary: str
    details: dict[str, Any] | None = None


SessionEntry = SessionMessageEntry | ModelChangeEntry | CompactionEntry | BranchSummaryEntry


@dataclass
class SessionTreeNode:
    """Node of the reconstructed parent -> children tree."""

    entry: SessionEntry
    children: list[SessionTreeNode] = field(default_factory=list)
