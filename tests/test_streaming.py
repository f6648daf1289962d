"""Tool-call reassembly state machine."""

from __future__ import annotations

import json

from hypothesis import given
from hypothesis import strategies as st
import pytest

from switchboard.errors import ToolCallParseError
from switchboard.providers._streaming import StreamState, ToolCallAssembler
from switchboard.types import ToolCallPart

pytestmark = pytest.mark.unit


def _split(text: str, cuts: list[int]) -> list[str]:
    points = sorted({c % (len(text) + 1) for c in cuts} | {0, len(text)})
    return [text[a:b] for a, b in zip(points, points[1:])]


# =============================================================================
# State transitions
# =============================================================================


def test_states_follow_block_lifecycle() -> None:
    assembler = ToolCallAssembler()
    assert assembler.state is StreamState.IDLE

    assembler.open_block(0, id="call_a", name="ls")
    assert assembler.state is StreamState.BLOCK_OPEN

    assembler.append(0, '{"path"')
    assert assembler.state is StreamState.ACCUMULATING

    assembler.close_block(0)
    assert assembler.state is StreamState.IDLE

    assembler.finish()
    assert assembler.state is StreamState.FINISHED


def test_opening_a_block_after_finish_is_rejected() -> None:
    assembler = ToolCallAssembler()
    assembler.finish()

    with pytest.raises(RuntimeError):
        assembler.open_block(0, name="ls")


def test_fragmented_arguments_are_released_whole_on_close() -> None:
    assembler = ToolCallAssembler()
    assembler.open_block(1, id="toolu_1", name="read_file")
    for fragment in ['{"pat', 'h": "', '/src"}']:
        assembler.append(1, fragment)

    call = assembler.close_block(1)

    assert call == ToolCallPart(name="read_file", args={"path": "/src"}, id="toolu_1")
    assert len(assembler) == 0


def test_implicit_open_captures_id_and_name_from_first_delta() -> None:
    assembler = ToolCallAssembler()
    assembler.append(0, "", id="call_1", name="grep")
    assembler.append(0, '{"pattern": "x"}')

    (call,) = assembler.finish()

    assert call.id == "call_1"
    assert call.name == "grep"
    assert call.args == {"pattern": "x"}


def test_nameless_block_is_dropped() -> None:
    assembler = ToolCallAssembler()
    assembler.append(0, '{"a": 1}')
    assert assembler.close_block(0) is None


def test_close_of_unknown_index_returns_none() -> None:
    assert ToolCallAssembler().close_block(7) is None


def test_finish_closes_open_blocks_in_index_order() -> None:
    assembler = ToolCallAssembler()
    assembler.append(2, "{}", id="c2", name="second")
    assembler.append(0, "{}", id="c0", name="first")

    calls = assembler.finish()

    assert [c.name for c in calls] == ["first", "second"]
    assert assembler.open_indices == []


def test_missing_call_id_is_generated() -> None:
    assembler = ToolCallAssembler()
    assembler.open_block(0, name="ls")
    call = assembler.close_block(0)
    assert call is not None
    assert call.id and call.id.startswith("call_")


def test_finish_enters_terminal_state_even_when_parsing_fails() -> None:
    assembler = ToolCallAssembler()
    assembler.append(0, "[1, 2]", name="ls")

    with pytest.raises(ToolCallParseError):
        assembler.finish()

    assert assembler.state is StreamState.FINISHED
    assert len(assembler) == 0


def test_clear_discards_buffered_fragments() -> None:
    assembler = ToolCallAssembler()
    assembler.append(0, '{"a"', name="ls")
    assembler.clear()
    assert assembler.state is StreamState.IDLE
    assert assembler.finish() == []


# =============================================================================
# Properties
# =============================================================================

_ARGS = st.dictionaries(
    st.text(min_size=1, max_size=6),
    st.one_of(st.integers(), st.text(max_size=8), st.booleans()),
    max_size=4,
)


@given(_ARGS, st.lists(st.integers(min_value=0), max_size=8))
def test_any_fragmentation_reassembles_the_same_arguments(
    args: dict, cuts: list[int]
) -> None:
    text = json.dumps(args)
    assembler = ToolCallAssembler()
    assembler.open_block(0, id="c", name="tool")
    for fragment in _split(text, cuts):
        assembler.append(0, fragment)

    call = assembler.close_block(0)

    assert call is not None
    assert call.args == args


@given(_ARGS, _ARGS)
def test_concurrent_streams_do_not_share_state(left: dict, right: dict) -> None:
    first, second = ToolCallAssembler(), ToolCallAssembler()
    first.open_block(0, id="a", name="left")
    second.open_block(0, id="b", name="right")
    left_text, right_text = json.dumps(left), json.dumps(right)
    # Interleave fragments of both streams on the same block index.
    for i in range(max(len(left_text), len(right_text))):
        first.append(0, left_text[i : i + 1])
        second.append(0, right_text[i : i + 1])

    (left_call,) = first.finish()
    (right_call,) = second.finish()

    assert (left_call.name, left_call.args) == ("left", left)
    assert (right_call.name, right_call.args) == ("right", right)
