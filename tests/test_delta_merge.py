from __future__ import annotations

from typing import List

from rubrduck.core.delta_merge import ToolCallAccumulator, merge_tool_call_deltas
from rubrduck.llm.protocol import ToolCall, ToolCallFunction


def _delta(*, id: str = "", name: str = "", args: str = "") -> ToolCall:
    return ToolCall(id=id, function=ToolCallFunction(name=name, arguments=args))


def _summary(calls: List[ToolCall]) -> List[tuple]:
    return [(c.id, c.name, c.arguments) for c in calls]


def _shell_deltas() -> List[ToolCall]:
    return [
        _delta(id="c1", name="shell_execute"),
        _delta(args='{"comm'),
        _delta(args='and": "ls"'),
        _delta(args="}"),
    ]


def test_fragments_reassemble_single_call() -> None:
    calls = merge_tool_call_deltas([], _shell_deltas())
    assert _summary(calls) == [("c1", "shell_execute", '{"command": "ls"}')]
    assert calls[0].is_complete()


def test_merge_is_associative_across_batch_splits() -> None:
    deltas = _shell_deltas() + [_delta(id="c2", name="git_operations", args='{"operation": "status"}')]
    whole = merge_tool_call_deltas([], deltas)
    for split in range(len(deltas) + 1):
        step = merge_tool_call_deltas([], deltas[:split])
        step = merge_tool_call_deltas(step, deltas[split:])
        assert _summary(step) == _summary(whole), split


def test_interleaved_bare_arguments_attach_to_most_recent_call() -> None:
    acc = ToolCallAccumulator()
    acc.feed([_delta(id="a", name="file_operations"), _delta(args='{"type": ')])
    acc.feed([_delta(id="b", name="shell_execute"), _delta(args='{"command": "pwd"}')])
    acc.feed([_delta(id="a", args='"list"}')])

    assert _summary(acc.calls) == [
        ("a", "file_operations", '{"type": "list"}'),
        ("b", "shell_execute", '{"command": "pwd"}'),
    ]


def test_name_matches_existing_call_with_id() -> None:
    calls = merge_tool_call_deltas(
        [],
        [_delta(id="c1", name="shell_execute", args='{"command"'), _delta(name="shell_execute", args=': "ls"}')],
    )
    assert _summary(calls) == [("c1", "shell_execute", '{"command": "ls"}')]


def test_first_appearance_order_is_preserved() -> None:
    calls = merge_tool_call_deltas(
        [],
        [
            _delta(id="x", name="git_operations"),
            _delta(id="y", name="file_operations"),
            _delta(id="x", args="{}"),
            _delta(id="y", args="{}"),
        ],
    )
    assert [c.id for c in calls] == ["x", "y"]


def test_bare_arguments_without_prior_call_start_new_call() -> None:
    calls = merge_tool_call_deltas([], [_delta(args='{"a": 1}')])
    assert _summary(calls) == [("", "", '{"a": 1}')]
    assert not calls[0].is_complete()


def test_inputs_are_not_mutated() -> None:
    existing = [ToolCall(id="c1", function=ToolCallFunction(name="shell_execute", arguments="{"))]
    delta = _delta(args="}")
    merged = merge_tool_call_deltas(existing, [delta])
    assert merged[0].arguments == "{}"
    assert existing[0].arguments == "{"
    assert delta.arguments == "}"


def test_same_name_with_new_id_starts_new_call() -> None:
    calls = merge_tool_call_deltas(
        [],
        [
            _delta(id="c1", name="shell_execute", args='{"command": "ls"}'),
            _delta(id="c2", name="shell_execute", args='{"command": "pwd"}'),
        ],
    )
    assert _summary(calls) == [
        ("c1", "shell_execute", '{"command": "ls"}'),
        ("c2", "shell_execute", '{"command": "pwd"}'),
    ]
