"""Models for compaction and branch summarization."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from session_toolkit.session.models import SessionEntry


@dataclass
class FileOperations:
    """File paths touched by tool calls, grouped by operation."""

    read: set[str] = field(default_factory=set)
    written: set[str] = field(default_factory=set)
    edited: set[str] = field(default_factory=set)


@dataclass(frozen=True)
class CompactionSettings:
    """Token budgeting settings for compaction."""

    enabled: bool = True
    reserve_tokens: int = 16384
    keep_recent_tokens: int = 20000


DEFAULT_COMPACTION_SETTINGS = CompactionSettings()


@dataclass(frozen=True)
class CompactionDetails:
    """File lists stored alongside a compaction or branch summary."""

    read_files: list[str] = field(default_factory=list)
    modified_files: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the persisted ``details`` payload."""
        return {"readFiles": list(self.read_files), "modifiedFiles": list(self.modified_files)}

    @classmethod
    def from_dict(cls, data: Any) -> CompactionDetails:
        """Read a persisted ``details`` payload, ignoring anything malformed."""
        if not isinstance(data, dict):
            return cls()
        read_files = data.get("readFiles")
        modified_files = data.get("modifiedFiles")
        return cls(
            read_files=[f for f in read_files if isinstance(f, str)]
            if isinstance(read_files, list)
            else [],
            modified_files=[f for f in modified_files if isinstance(f, str)]
            if isinstance(modified_files, list)
            else [],
        )


@dataclass(frozen=True)
class CutPointResult:
    """Where a compaction cuts the path."""

    first_kept_entry_index: int
    turn_start_index: int
    is_split_turn: bool


@dataclass(frozen=True)
class CompactionPreparation:
    """Snapshot of everything a compaction needs, computed before the model call."""

    first_kept_entry_id: str
    messages_to_summarize: list[dict[str, Any]]
    turn_prefix_messages: list[dict[str, Any]]
    is_split_turn: bool
    tokens_before: int
    file_ops: FileOperations
    settings: CompactionSettings
    previous_summary: str | None = None


@dataclass(frozen=True)
class CompactionResult:
    """Summary output from compaction, ready to be appended to the session."""

    summary: str
    first_kept_entry_id: str
    tokens_before: int
    details: CompactionDetails | None = None


@dataclass(frozen=True)
class CollectEntriesResult:
    """Entries abandoned by a navigation and the ancestor both paths share."""

    entries: list[SessionEntry]
    common_ancestor_id: str | None


@dataclass(frozen=True)
class BranchSummaryResult:
    """Outcome of summarizing an abandoned branch."""

    summary: str | None = None
    read_files: list[str] = field(default_factory=list)
    modified_files: list[str] = field(default_factory=list)
    aborted: bool = False
    error: str | None = None

    @property
    def details(self) -> CompactionDetails:
        """File lists in the persisted ``details`` shape."""
        return CompactionDetails(read_files=self.read_files, modified_files=self.modified_files)
