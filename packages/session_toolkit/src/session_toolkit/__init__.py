from session_toolkit.compaction import (
    CompactionConfig,
    CompactionService,
    CompactionSettings,
    compact,
    estimate_context_tokens,
    estimate_tokens,
    generate_branch_summary,
    prepare_compaction,
    should_compact,
)
from session_toolkit.session import SessionContext, SessionManager, build_session_context

__all__ = [
    "CompactionConfig",
    "CompactionService",
    "CompactionSettings",
    "SessionContext",
    "SessionManager",
    "build_session_context",
    "compact",
    "estimate_context_tokens",
    "estimate_tokens",
    "generate_branch_summary",
    "prepare_compaction",
    "should_compact",
]
