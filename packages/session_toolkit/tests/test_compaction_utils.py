from __future__ import annotations

from session_toolkit.compaction import (
    CompactionDetails,
    FileOperations,
    compute_file_lists,
    extract_file_ops_from_message,
    format_file_operations,
    serialize_messages,
)
from session_toolkit.compaction.utils import seed_file_ops
from utilities import assistant_msg, assistant_tool_call_msg, tool_result_msg, user_msg


def test_extract_file_ops_groups_by_tool() -> None:
    ops = FileOperations()
    message = {
        "role": "assistant",
        "content": [
            {"type": "tool-call", "toolName": "file_read", "args": {"path": "a.txt"}},
            {"type": "tool-call", "toolName": "write", "input": {"path": "b.txt"}},
            {"type": "tool-call", "toolName": "edit", "input": {"path": "c.txt"}},
            {"type": "tool-call", "toolName": "bash", "input": {"command": "ls"}},
            {"type": "tool-call", "toolName": "read", "input": {"path": ""}},
        ],
    }

    extract_file_ops_from_message(message, ops)

    assert ops.read == {"a.txt"}
    assert ops.written == {"b.txt"}
    assert ops.edited == {"c.txt"}


def test_extract_file_ops_ignores_non_assistant_messages() -> None:
    ops = FileOperations()
    extract_file_ops_from_message(tool_result_msg("tc-1", "read", "a.txt"), ops)
    extract_file_ops_from_message(user_msg("read a.txt"), ops)
    assert ops == FileOperations()


def test_compute_file_lists_excludes_modified_from_read() -> None:
    ops = FileOperations(read={"b.py", "a.py"}, written={"a.py"}, edited={"c.py"})

    read_files, modified_files = compute_file_lists(ops)

    assert read_files == ["b.py"]
    assert modified_files == ["a.py", "c.py"]


def test_seed_file_ops_from_details() -> None:
    ops = FileOperations()
    seed_file_ops(ops, {"readFiles": ["r.py"], "modifiedFiles": ["m.py"]})
    seed_file_ops(ops, None)
    seed_file_ops(ops, {"readFiles": "not-a-list"})

    assert ops.read == {"r.py"}
    assert ops.edited == {"m.py"}


def test_compaction_details_round_trip_dict() -> None:
    details = CompactionDetails(read_files=["a"], modified_files=["b"])
    assert details.to_dict() == {"readFiles": ["a"], "modifiedFiles": ["b"]}
    assert CompactionDetails.from_dict(details.to_dict()) == details
    assert CompactionDetails.from_dict("garbage") == CompactionDetails()


def test_format_file_operations() -> None:
    assert format_file_operations([], []) == ""
    assert format_file_operations(["a"], []) == "\n\n<read-files>\na\n</read-files>"
    assert format_file_operations(["a"], ["b", "c"]) == (
        "\n\n<read-files>\na\n</read-files>\n\n<modified-files>\nb\nc\n</modified-files>"
    )


def test_serialize_messages_tags_roles() -> None:
    messages = [
        user_msg("Fix the bug"),
        {
            "role": "assistant",
            "content": [
                {"type": "reasoning", "text": "Look at main.py"},
                {"type": "text", "text": "Reading it now"},
                {"type": "tool-call", "toolName": "read", "input": {"path": "main.py", "limit": 10}},
            ],
        },
        tool_result_msg("tc-1", "read", "print('hi')"),
        assistant_msg("Done"),
    ]

    transcript = serialize_messages(messages)

    assert transcript.split("\n\n") == [
        "[User]: Fix the bug",
        "[Assistant thinking]: Look at main.py",
        "[Assistant]: Reading it now",
        '[Assistant tool calls]: read(path="main.py", limit=10)',
        '[Tool result]: {"type": "text", "value": "print(\'hi\')"}',
        "[Assistant]: Done",
    ]


def test_serialize_messages_skips_empty_content() -> None:
    messages = [user_msg(""), {"role": "assistant", "content": []}, assistant_tool_call_msg("bash", {})]
    assert serialize_messages(messages) == "[Assistant tool calls]: bash()"
