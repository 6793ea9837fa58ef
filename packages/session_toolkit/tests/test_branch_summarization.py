from __future__ import annotations

import asyncio

import pytest

from session_toolkit.compaction import collect_entries_for_branch_summary, generate_branch_summary
from session_toolkit.compaction.branch_summarization import (
    BRANCH_SUMMARY_PREAMBLE,
    BRANCH_SUMMARY_PROMPT,
    NO_CONTENT_SUMMARY,
)
from session_toolkit.session import SessionManager
from utilities import (
    EntryChain,
    FakeModel,
    assistant_msg,
    assistant_tool_call_msg,
    tool_result_msg,
    user_msg,
)


def _forked_session() -> tuple[SessionManager, dict[str, str]]:
    session = SessionManager.in_memory()
    ids = {}
    ids["a"] = session.append_message(user_msg("a"))
    ids["b"] = session.append_message(assistant_msg("b"))
    ids["c"] = session.append_message(user_msg("c"))
    session.branch(ids["a"])
    ids["d"] = session.append_message(assistant_msg("d"))
    return session, ids


def test_collect_entries_between_common_ancestor_and_old_leaf() -> None:
    session, ids = _forked_session()

    collected = collect_entries_for_branch_summary(session, ids["c"], ids["d"])

    assert collected.common_ancestor_id == ids["a"]
    assert [entry.id for entry in collected.entries] == [ids["b"], ids["c"]]


def test_collect_entries_when_target_is_ancestor() -> None:
    session, ids = _forked_session()

    collected = collect_entries_for_branch_summary(session, ids["c"], ids["a"])

    assert collected.common_ancestor_id == ids["a"]
    assert [entry.id for entry in collected.entries] == [ids["b"], ids["c"]]


def test_collect_entries_without_old_leaf() -> None:
    session, ids = _forked_session()

    collected = collect_entries_for_branch_summary(session, None, ids["a"])

    assert collected.entries == []
    assert collected.common_ancestor_id is None


def test_collect_entries_across_separate_roots() -> None:
    session = SessionManager.in_memory()
    first = session.append_message(user_msg("first root"))
    session.reset_leaf()
    second = session.append_message(user_msg("second root"))

    collected = collect_entries_for_branch_summary(session, second, first)

    assert collected.common_ancestor_id is None
    assert [entry.id for entry in collected.entries] == [second]


@pytest.mark.asyncio
async def test_generate_branch_summary_wraps_model_text() -> None:
    chain = EntryChain()
    chain.message(user_msg("Refactor the parser"))
    chain.message(assistant_tool_call_msg("read", {"path": "parser.py"}))
    chain.message(tool_result_msg("tc-1", "read", "SECRET TOOL OUTPUT"))
    chain.message(assistant_tool_call_msg("edit", {"path": "parser.py"}, "tc-2"))
    model = FakeModel("## Goal\nRefactor")

    result = await generate_branch_summary(chain.entries, model)

    assert result.summary == (
        BRANCH_SUMMARY_PREAMBLE + "## Goal\nRefactor" + "\n\n<modified-files>\nparser.py\n</modified-files>"
    )
    assert result.read_files == []
    assert result.modified_files == ["parser.py"]
    assert result.details.to_dict() == {"readFiles": [], "modifiedFiles": ["parser.py"]}
    assert result.aborted is False
    assert result.error is None

    prompt = model.prompts[0]
    assert "SECRET TOOL OUTPUT" not in prompt
    assert prompt.startswith("<conversation>\n[User]: Refactor the parser")
    assert prompt.endswith(BRANCH_SUMMARY_PROMPT)


@pytest.mark.asyncio
async def test_generate_branch_summary_without_messages() -> None:
    chain = EntryChain()
    chain.model_change("openai", "gpt-4o")
    model = FakeModel()

    result = await generate_branch_summary(chain.entries, model)

    assert result.summary == NO_CONTENT_SUMMARY
    assert model.calls == []


@pytest.mark.asyncio
async def test_generate_branch_summary_keeps_newest_within_budget() -> None:
    chain = EntryChain()
    chain.message(user_msg("a" * 400))
    chain.message(user_msg("b" * 400))
    chain.message(user_msg("c" * 400))
    model = FakeModel()

    await generate_branch_summary(chain.entries, model, reserve_tokens=750, context_window=1000)

    prompt = model.prompts[0]
    assert "a" * 400 not in prompt
    assert "b" * 400 in prompt
    assert "c" * 400 in prompt


@pytest.mark.asyncio
async def test_generate_branch_summary_squeezes_in_older_summary() -> None:
    chain = EntryChain()
    chain.branch_summary("s" * 400, "root", details={"readFiles": ["notes.md"], "modifiedFiles": []})
    chain.message(user_msg("b" * 400))
    chain.message(user_msg("c" * 400))
    model = FakeModel()

    result = await generate_branch_summary(chain.entries, model, reserve_tokens=750, context_window=1000)

    assert "s" * 400 in model.prompts[0]
    assert result.read_files == ["notes.md"]


@pytest.mark.asyncio
async def test_generate_branch_summary_reports_abort() -> None:
    chain = EntryChain()
    chain.message(user_msg("hello"))
    signal = asyncio.Event()
    signal.set()

    result = await generate_branch_summary(chain.entries, FakeModel(), signal=signal)

    assert result.aborted is True
    assert result.summary is None


@pytest.mark.asyncio
async def test_generate_branch_summary_reports_model_error() -> None:
    chain = EntryChain()
    chain.message(user_msg("hello"))

    result = await generate_branch_summary(chain.entries, FakeModel(error=RuntimeError("provider down")))

    assert result.error == "provider down"
    assert result.summary is None
    assert result.aborted is False
