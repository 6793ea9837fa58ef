"""Branch summarization for tree navigation.

When the leaf moves to a different point in the session tree, the entries being
left behind can be summarized so their context is not lost on the new branch.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from session_toolkit.compaction.models import (
    BranchSummaryResult,
    CollectEntriesResult,
    FileOperations,
)
from session_toolkit.compaction.summarizer import SummarizationAbortedError, generate_text
from session_toolkit.compaction.token_estimation import estimate_tokens
from session_toolkit.compaction.utils import (
    SUMMARIZATION_SYSTEM_PROMPT,
    compute_file_lists,
    extract_file_ops_from_message,
    format_file_operations,
    seed_file_ops,
    serialize_messages,
)
from session_toolkit.session.context import entry_to_message
from session_toolkit.session.models import (
    BranchSummaryEntry,
    CompactionEntry,
    SessionMessageEntry,
)

if TYPE_CHECKING:
    import asyncio
    from collections.abc import Mapping, Sequence

    from strands.models.model import Model

    from session_toolkit.session.manager import SessionManager
    from session_toolkit.session.models import SessionEntry

logger = logging.getLogger(__name__)

NO_CONTENT_SUMMARY = "No content to summarize"

BRANCH_SUMMARY_PREAMBLE = """The user explored a different conversation branch before returning here.
Summary of that exploration:

"""

BRANCH_SUMMARY_PROMPT = """Create a structured summary of this conversation branch for context when returning later.

Use this EXACT format:

## Goal
[What was the user trying to accomplish in this branch?]

## Constraints & Preferences
- [Any constraints, preferences, or requirements mentioned]
- [Or "(none)" if none were mentioned]

## Progress
### Done
- [x] [Completed tasks/changes]

### In Progress
- [ ] [Work that was started but not finished]

### Blocked
- [Issues preventing progress, if any]

## Key Decisions
- **[Decision]**: [Brief rationale]

## Next Steps
1. [What should happen next to continue this work]

Keep each section concise. Preserve exact file paths, function names, and error messages."""


def collect_entries_for_branch_summary(
    session: SessionManager,
    old_leaf_id: str | None,
    target_id: str,
) -> CollectEntriesResult:
    """Collect the entries abandoned when moving from ``old_leaf_id`` to ``target_id``.

    Returns the entries between the deepest common ancestor (exclusive) and the
    old leaf (inclusive), in root-to-leaf order.
    """
    if old_leaf_id is None:
        return CollectEntriesResult(entries=[], common_ancestor_id=None)

    old_branch = session.get_branch(old_leaf_id)
    old_path = {entry.id for entry in old_branch}
    common_ancestor_id = next(
        (entry.id for entry in reversed(session.get_branch(target_id)) if entry.id in old_path),
        None,
    )

    ancestor_index = next(
        (i for i, entry in enumerate(old_branch) if entry.id == common_ancestor_id),
        -1,
    )
    entries = old_branch[ancestor_index + 1 :]
    return CollectEntriesResult(entries=entries, common_ancestor_id=common_ancestor_id)


def _summary_message(entry: SessionEntry) -> dict[str, Any] | None:
    if isinstance(entry, SessionMessageEntry) and entry.message.get("role") == "tool":
        return None
    return entry_to_message(entry)


def _prepare_branch_messages(
    entries: Sequence[SessionEntry],
    token_budget: int,
) -> tuple[list[dict[str, Any]], FileOperations]:
    """Select messages newest-first until the budget is spent."""
    file_ops = FileOperations()
    for entry in entries:
        if isinstance(entry, BranchSummaryEntry) and entry.details:
            seed_file_ops(file_ops, entry.details)

    messages: list[dict[str, Any]] = []
    total_tokens = 0
    for entry in reversed(entries):
        message = _summary_message(entry)
        if message is None:
            continue
        extract_file_ops_from_message(message, file_ops)
        tokens = estimate_tokens(message)

        if token_budget > 0 and total_tokens + tokens > token_budget:
            # Older summaries are dense; squeeze one in if there is still room.
            if isinstance(entry, (CompactionEntry, BranchSummaryEntry)) and total_tokens < token_budget * 0.9:
                messages.append(message)
            break

        messages.append(message)
        total_tokens += tokens

    messages.reverse()
    return messages, file_ops


async def generate_branch_summary(
    entries: Sequence[SessionEntry],
    model: Model,
    *,
    signal: asyncio.Event | None = None,
    provider_options: Mapping[str, Any] | None = None,
    reserve_tokens: int = 16384,
    context_window: int = 128000,
) -> BranchSummaryResult:
    """Summarize abandoned branch entries.

    Model failures are returned as ``error`` and signal aborts as ``aborted``;
    neither is raised.
    """
    messages, file_ops = _prepare_branch_messages(entries, context_window - reserve_tokens)
    if not messages:
        return BranchSummaryResult(summary=NO_CONTENT_SUMMARY)

    prompt = f"<conversation>\n{serialize_messages(messages)}\n</conversation>\n\n{BRANCH_SUMMARY_PROMPT}"
    try:
        text = await generate_text(
            model,
            prompt,
            system_prompt=SUMMARIZATION_SYSTEM_PROMPT,
            provider_options=provider_options,
            signal=signal,
        )
    except SummarizationAbortedError:
        return BranchSummaryResult(aborted=True)
    except Exception as exc:
        logger.warning("Branch summarization failed: %s", exc)
        return BranchSummaryResult(error=str(exc) or "Summarization failed")

    read_files, modified_files = compute_file_lists(file_ops)
    summary = BRANCH_SUMMARY_PREAMBLE + text + format_file_operations(read_files, modified_files)
    return BranchSummaryResult(
        summary=summary,
        read_files=read_files,
        modified_files=modified_files,
    )
