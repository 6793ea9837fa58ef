"""Tree-based session persistence."""

from session_toolkit.session.context import (
    ModelInfo,
    SessionContext,
    branch_summary_message,
    build_session_context,
    compaction_summary_message,
    entry_to_message,
    path_to_root,
)
from session_toolkit.session.manager import (
    SessionManager,
    load_entries_from_file,
    parse_session_entries,
)
from session_toolkit.session.models import (
    CURRENT_SESSION_VERSION,
    ROOT_SENTINEL,
    BranchSummaryEntry,
    CompactionEntry,
    ModelChangeEntry,
    SessionEntry,
    SessionEntryBase,
    SessionHeader,
    SessionMessageEntry,
    SessionTreeNode,
)

__all__ = [
    "CURRENT_SESSION_VERSION",
    "ROOT_SENTINEL",
    "BranchSummaryEntry",
    "CompactionEntry",
    "ModelChangeEntry",
    "ModelInfo",
    "SessionContext",
    "SessionEntry",
    "SessionEntryBase",
    "SessionHeader",
    "SessionManager",
    "SessionMessageEntry",
    "SessionTreeNode",
    "branch_summary_message",
    "build_session_context",
    "compaction_summary_message",
    "entry_to_message",
    "load_entries_from_file",
    "parse_session_entries",
    "path_to_root",
]
