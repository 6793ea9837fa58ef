"""Compaction utilities and models."""

from session_toolkit.compaction.branch_summarization import (
    collect_entries_for_branch_summary,
    generate_branch_summary,
)
from session_toolkit.compaction.compaction import compact, find_cut_point, prepare_compaction
from session_toolkit.compaction.models import (
    DEFAULT_COMPACTION_SETTINGS,
    BranchSummaryResult,
    CollectEntriesResult,
    CompactionDetails,
    CompactionPreparation,
    CompactionResult,
    CompactionSettings,
    CutPointResult,
    FileOperations,
)
from session_toolkit.compaction.service import (
    CompactionConfig,
    CompactionService,
    StaleCompactionError,
)
from session_toolkit.compaction.summarizer import SummarizationAbortedError, generate_text
from session_toolkit.compaction.token_estimation import (
    estimate_context_tokens,
    estimate_tokens,
    should_compact,
)
from session_toolkit.compaction.utils import (
    compute_file_lists,
    extract_file_ops_from_message,
    format_file_operations,
    serialize_messages,
)

__all__ = [
    "DEFAULT_COMPACTION_SETTINGS",
    "BranchSummaryResult",
    "CollectEntriesResult",
    "CompactionConfig",
    "CompactionDetails",
    "CompactionPreparation",
    "CompactionResult",
    "CompactionService",
    "CompactionSettings",
    "CutPointResult",
    "FileOperations",
    "StaleCompactionError",
    "SummarizationAbortedError",
    "collect_entries_for_branch_summary",
    "compact",
    "compute_file_lists",
    "estimate_context_tokens",
    "estimate_tokens",
    "extract_file_ops_from_message",
    "find_cut_point",
    "format_file_operations",
    "generate_branch_summary",
    "generate_text",
    "prepare_compaction",
    "serialize_messages",
    "should_compact",
]
