"""Turn-aware compaction planning and summary generation."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from session_toolkit.compaction.models import (
    CompactionDetails,
    CompactionPreparation,
    CompactionResult,
    CompactionSettings,
    CutPointResult,
    FileOperations,
)
from session_toolkit.compaction.summarizer import generate_text
from session_toolkit.compaction.token_estimation import estimate_context_tokens, estimate_tokens
from session_toolkit.compaction.utils import (
    SUMMARIZATION_SYSTEM_PROMPT,
    compute_file_lists,
    extract_file_ops_from_message,
    format_file_operations,
    seed_file_ops,
    serialize_messages,
)
from session_toolkit.session.context import build_session_context, entry_to_message
from session_toolkit.session.models import (
    BranchSummaryEntry,
    CompactionEntry,
    SessionMessageEntry,
)

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from strands.models.model import Model

    from session_toolkit.session.models import SessionEntry

logger = logging.getLogger(__name__)

SPLIT_TURN_SEPARATOR = "\n\n---\n\n**Turn Context (split turn):**\n\n"
NO_PRIOR_HISTORY = "No prior history."

SUMMARIZATION_PROMPT = """The messages above are a conversation to summarize. Create a structured context checkpoint summary that another LLM will use to continue the work.

Use this EXACT format:

## Goal
[What is the user trying to accomplish? Can be multiple items if the session covers different tasks.]

## Constraints & Preferences
- [Any constraints, preferences, or requirements mentioned by user]
- [Or "(none)" if none were mentioned]

## Progress
### Done
- [x] [Completed tasks/changes]

### In Progress
- [ ] [Current work]

### Blocked
- [Issues preventing progress, if any]

## Key Decisions
- **[Decision]**: [Brief rationale]

## Next Steps
1. [Ordered list of what should happen next]

## Critical Context
- [Any data, examples, or references needed to continue]
- [Or "(none)" if not applicable]

Keep each section concise. Preserve exact file paths, function names, and error messages."""

UPDATE_SUMMARIZATION_PROMPT = """The messages above are NEW conversation messages to incorporate into the existing summary provided in <previous-summary> tags.

Update the existing structured summary with new information. RULES:
- PRESERVE all existing information from the previous summary
- ADD new progress, decisions, and context from the new messages
- UPDATE the Progress section: move items from "In Progress" to "Done" when completed
- UPDATE "Next Steps" based on what was accomplished
- PRESERVE exact file paths, function names, and error messages
- If something is no longer relevant, you may remove it

Use this EXACT format:

## Goal
[Preserve existing goals, add new ones if the task expanded]

## Constraints & Preferences
- [Preserve existing, add new ones discovered]

## Progress
### Done
- [x] [Include previously done items AND newly completed items]

### In Progress
- [ ] [Current work - update based on progress]

### Blocked
- [Current blockers - remove if resolved]

## Key Decisions
- **[Decision]**: [Brief rationale] (preserve all previous, add new)

## Next Steps
1. [Update based on current state]

## Critical Context
- [Preserve important context, add new if needed]

Keep each section concise. Preserve exact file paths, function names, and error messages."""

TURN_PREFIX_SUMMARIZATION_PROMPT = """This is the PREFIX of a turn that was too large to keep. The SUFFIX (recent work) is retained.

Summarize the prefix to provide context for the retained suffix:

## Original Request
[What did the user ask for in this turn?]

## Early Progress
- [Key decisions and work done in the prefix]

## Context for Suffix
- [Information needed to understand the retained recent work]

Be concise. Focus on what's needed to understand the kept suffix."""


# Cut point detection


def _is_turn_start(entry: SessionEntry) -> bool:
    if isinstance(entry, BranchSummaryEntry):
        return True
    return isinstance(entry, SessionMessageEntry) and entry.message.get("role") == "user"


def _is_valid_cut_point(entry: SessionEntry) -> bool:
    if isinstance(entry, BranchSummaryEntry):
        return True
    # Tool results must stay attached to the assistant call that produced them.
    return isinstance(entry, SessionMessageEntry) and entry.message.get("role") in (
        "user",
        "assistant",
    )


def _turn_tokens(entries: Sequence[SessionEntry], start: int, end: int) -> int:
    return sum(
        estimate_tokens(entry.message)
        for entry in entries[start:end]
        if isinstance(entry, SessionMessageEntry)
    )


def find_cut_point(
    entries: Sequence[SessionEntry],
    start_index: int,
    end_index: int,
    keep_recent_tokens: int,
) -> CutPointResult:
    """Find the first entry to keep so that roughly ``keep_recent_tokens`` stay verbatim.

    The boundary snaps back to the start of the turn where the budget is reached.
    A turn is split only when the part of it before the budget crossing already
    costs more than the budget; the cut then lands on the first valid cut point
    at or after the crossing.
    """
    keep_all = CutPointResult(first_kept_entry_index=start_index, turn_start_index=-1, is_split_turn=False)

    crossing = -1
    accumulated = 0
    for index in range(end_index - 1, start_index - 1, -1):
        entry = entries[index]
        if not isinstance(entry, SessionMessageEntry):
            continue
        accumulated += estimate_tokens(entry.message)
        if accumulated >= keep_recent_tokens:
            crossing = index
            break
    if crossing == -1:
        return keep_all

    turn_start = next(
        (i for i in range(crossing, start_index - 1, -1) if _is_turn_start(entries[i])),
        -1,
    )
    turn_end = next(
        (i for i in range(crossing + 1, end_index) if _is_turn_start(entries[i])),
        end_index,
    )
    turn_begin = turn_start if turn_start != -1 else start_index

    cut_index = turn_begin
    is_split_turn = False
    # Snapping keeps the head of the turn too; split only when that head alone is over budget.
    if _turn_tokens(entries, turn_begin, crossing) > keep_recent_tokens:
        split_at = next(
            (i for i in range(crossing, turn_end) if _is_valid_cut_point(entries[i])),
            -1,
        )
        if split_at > turn_begin:
            cut_index = split_at
            is_split_turn = True

    if not is_split_turn and turn_start == -1:
        return keep_all

    # Non-message entries right before the cut (model changes) stay with the kept side.
    while cut_index > start_index and not is_split_turn:
        previous = entries[cut_index - 1]
        if isinstance(previous, (SessionMessageEntry, CompactionEntry)):
            break
        cut_index -= 1

    return CutPointResult(
        first_kept_entry_index=cut_index,
        turn_start_index=turn_begin if is_split_turn else -1,
        is_split_turn=is_split_turn,
    )


# Compaction preparation


def _messages_between(entries: Sequence[SessionEntry], start: int, end: int) -> list[dict[str, Any]]:
    messages: list[dict[str, Any]] = []
    for entry in entries[start:end]:
        if isinstance(entry, CompactionEntry):
            continue
        message = entry_to_message(entry)
        if message is not None:
            messages.append(message)
    return messages


def prepare_compaction(
    path_entries: Sequence[SessionEntry],
    settings: CompactionSettings,
) -> CompactionPreparation | None:
    """Plan a compaction over a root-to-leaf path.

    Returns ``None`` when there is nothing old enough to summarize.
    """
    if not path_entries or isinstance(path_entries[-1], CompactionEntry):
        return None

    previous_index = next(
        (i for i in range(len(path_entries) - 1, -1, -1) if isinstance(path_entries[i], CompactionEntry)),
        -1,
    )
    boundary_start = previous_index + 1
    boundary_end = len(path_entries)

    cut = find_cut_point(path_entries, boundary_start, boundary_end, settings.keep_recent_tokens)
    if cut.first_kept_entry_index >= boundary_end:
        return None
    first_kept_entry_id = path_entries[cut.first_kept_entry_index].id
    history_end = cut.turn_start_index if cut.is_split_turn else cut.first_kept_entry_index

    file_ops = FileOperations()
    messages_to_summarize: list[dict[str, Any]] = []
    previous_summary: str | None = None
    if previous_index >= 0:
        previous = path_entries[previous_index]
        assert isinstance(previous, CompactionEntry)
        previous_summary = previous.summary
        seed_file_ops(file_ops, previous.details)
        # Messages the previous compaction kept verbatim are folded into the new summary.
        kept_start = next(
            (i for i in range(previous_index) if path_entries[i].id == previous.first_kept_entry_id),
            previous_index,
        )
        messages_to_summarize.extend(_messages_between(path_entries, kept_start, previous_index))
    messages_to_summarize.extend(_messages_between(path_entries, boundary_start, history_end))

    turn_prefix_messages: list[dict[str, Any]] = []
    if cut.is_split_turn:
        turn_prefix_messages = _messages_between(
            path_entries, cut.turn_start_index, cut.first_kept_entry_index
        )

    if not messages_to_summarize and not turn_prefix_messages:
        return None

    for message in (*messages_to_summarize, *turn_prefix_messages):
        extract_file_ops_from_message(message, file_ops)

    tokens_before = estimate_context_tokens(build_session_context(path_entries).messages)

    return CompactionPreparation(
        first_kept_entry_id=first_kept_entry_id,
        messages_to_summarize=messages_to_summarize,
        turn_prefix_messages=turn_prefix_messages,
        is_split_turn=cut.is_split_turn,
        tokens_before=tokens_before,
        file_ops=file_ops,
        settings=settings,
        previous_summary=previous_summary,
    )


# Summarization


def _conversation_block(messages: list[dict[str, Any]]) -> str:
    return f"<conversation>\n{serialize_messages(messages)}\n</conversation>\n\n"


async def _generate_summary(
    messages: list[dict[str, Any]],
    model: Model,
    file_block: str,
    provider_options: Mapping[str, Any] | None,
    signal: asyncio.Event | None,
    previous_summary: str | None,
) -> str:
    prompt = _conversation_block(messages)
    if file_block:
        prompt += f"<file-operations>{file_block}\n</file-operations>\n\n"
    if previous_summary:
        prompt += f"<previous-summary>\n{previous_summary}\n</previous-summary>\n\n"
        prompt += UPDATE_SUMMARIZATION_PROMPT
    else:
        prompt += SUMMARIZATION_PROMPT
    return await generate_text(
        model,
        prompt,
        system_prompt=SUMMARIZATION_SYSTEM_PROMPT,
        provider_options=provider_options,
        signal=signal,
    )


async def _generate_turn_prefix_summary(
    messages: list[dict[str, Any]],
    model: Model,
    provider_options: Mapping[str, Any] | None,
    signal: asyncio.Event | None,
) -> str:
    prompt = _conversation_block(messages) + TURN_PREFIX_SUMMARIZATION_PROMPT
    return await generate_text(
        model,
        prompt,
        system_prompt=SUMMARIZATION_SYSTEM_PROMPT,
        provider_options=provider_options,
        signal=signal,
    )


async def _no_prior_history() -> str:
    return NO_PRIOR_HISTORY


async def compact(
    preparation: CompactionPreparation,
    model: Model,
    provider_options: Mapping[str, Any] | None = None,
    signal: asyncio.Event | None = None,
) -> CompactionResult:
    """Summarize a prepared range. Nothing is written to the session here.

    Raises:
        SummarizationAbortedError: The signal was set during a model call.
    """
    read_files, modified_files = compute_file_lists(preparation.file_ops)
    file_block = format_file_operations(read_files, modified_files)

    if preparation.is_split_turn and preparation.turn_prefix_messages:
        history = (
            _generate_summary(
                preparation.messages_to_summarize,
                model,
                file_block,
                provider_options,
                signal,
                preparation.previous_summary,
            )
            if preparation.messages_to_summarize
            else _no_prior_history()
        )
        try:
            # A failed call cancels its sibling before the error propagates.
            async with asyncio.TaskGroup() as group:
                history_task = group.create_task(history)
                prefix_task = group.create_task(
                    _generate_turn_prefix_summary(
                        preparation.turn_prefix_messages, model, provider_options, signal
                    )
                )
        except BaseExceptionGroup as failures:
            raise failures.exceptions[0] from None
        summary = history_task.result() + SPLIT_TURN_SEPARATOR + prefix_task.result()
    else:
        summary = await _generate_summary(
            preparation.messages_to_summarize,
            model,
            file_block,
            provider_options,
            signal,
            preparation.previous_summary,
        )

    logger.debug(
        "Generated compaction summary of %d messages (split turn: %s)",
        len(preparation.messages_to_summarize),
        preparation.is_split_turn,
    )
    return CompactionResult(
        summary=summary + file_block,
        first_kept_entry_id=preparation.first_kept_entry_id,
        tokens_before=preparation.tokens_before,
        details=CompactionDetails(read_files=read_files, modified_files=modified_files),
    )
