from __future__ import annotations

from session_toolkit.compaction import CompactionSettings, estimate_context_tokens, estimate_tokens, should_compact
from session_toolkit.compaction.token_estimation import compact_json
from utilities import assistant_msg, assistant_tool_call_msg, tool_result_msg, user_msg


def test_user_text_rounds_up() -> None:
    assert estimate_tokens(user_msg("hello world!!")) == 4
    assert estimate_tokens(user_msg("abcd")) == 1
    assert estimate_tokens(user_msg("")) == 0


def test_user_string_content_counts() -> None:
    assert estimate_tokens({"role": "user", "content": "abcdefgh"}) == 2


def test_assistant_counts_text_and_reasoning() -> None:
    message = {
        "role": "assistant",
        "content": [
            {"type": "reasoning", "text": "efgh"},
            {"type": "text", "text": "abcd"},
        ],
    }
    assert estimate_tokens(message) == 2


def test_assistant_tool_call_counts_name_and_compact_input() -> None:
    message = assistant_tool_call_msg("read", {"path": "a.txt"})
    # "read" + '{"path":"a.txt"}'
    assert estimate_tokens(message) == 5


def test_tool_call_accepts_legacy_args_key() -> None:
    message = {
        "role": "assistant",
        "content": [{"type": "tool-call", "toolName": "read", "args": {"path": "a.txt"}}],
    }
    assert estimate_tokens(message) == 5


def test_tool_result_counts_serialized_output() -> None:
    message = tool_result_msg("tc-1", "read", "abc")
    assert estimate_tokens(message) == 8

    string_output = {
        "role": "tool",
        "content": [{"type": "tool-result", "toolCallId": "tc-1", "toolName": "read", "output": "12345678"}],
    }
    assert estimate_tokens(string_output) == 2


def test_unknown_role_costs_nothing() -> None:
    assert estimate_tokens({"role": "custom", "content": "whatever"}) == 0


def test_context_tokens_sum_messages() -> None:
    messages = [user_msg("abcd"), assistant_msg("abcdefgh"), user_msg("a")]
    assert estimate_context_tokens(messages) == 4
    assert estimate_context_tokens([]) == 0


def test_compact_json_has_no_spaces() -> None:
    assert compact_json({"a": [1, 2], "b": "c"}) == '{"a":[1,2],"b":"c"}'


def test_should_compact_threshold_is_strict() -> None:
    settings = CompactionSettings(enabled=True, reserve_tokens=100, keep_recent_tokens=10)
    assert should_compact(901, 1000, settings) is True
    assert should_compact(900, 1000, settings) is False


def test_should_compact_respects_disabled() -> None:
    settings = CompactionSettings(enabled=False, reserve_tokens=100, keep_recent_tokens=10)
    assert should_compact(10_000, 1000, settings) is False
