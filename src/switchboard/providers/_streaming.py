"""Tool-call reassembly for streamed responses.

Providers stream tool-call arguments as JSON fragments spread over many
events. ``ToolCallAssembler`` buffers them per provider block index and only
releases a call once its block closes, so callers never observe partial
arguments. Each stream owns one assembler; it is never shared between calls.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import logging

from switchboard.providers._utils import new_call_id, parse_tool_arguments
from switchboard.types import ToolCallPart

logger = logging.getLogger(__name__)


class StreamState(Enum):
    """Lifecycle of a streamed tool-call block."""

    IDLE = "idle"
    BLOCK_OPEN = "block_open"
    ACCUMULATING = "accumulating"
    BLOCK_CLOSED = "block_closed"
    FINISHED = "finished"


@dataclass
class ToolCallAccumulator:
    """Buffered fragments of one in-flight tool call."""

    index: int
    id: str | None = None
    name: str | None = None
    fragments: list[str] = field(default_factory=list)
    thought_signature: str | None = None
    state: StreamState = StreamState.BLOCK_OPEN

    @property
    def buffer(self) -> str:
        return "".join(self.fragments)


class ToolCallAssembler:
    """State machine turning argument fragments into complete tool calls.

    ``open_block`` -> ``append``* -> ``close_block`` per index, or ``finish``
    to close everything still open when the provider has no explicit block
    boundaries. ``finish`` is terminal.
    """

    def __init__(self) -> None:
        self._blocks: dict[int, ToolCallAccumulator] = {}
        self._finished = False

    @property
    def state(self) -> StreamState:
        if self._finished:
            return StreamState.FINISHED
        if not self._blocks:
            return StreamState.IDLE
        if any(b.state is StreamState.ACCUMULATING for b in self._blocks.values()):
            return StreamState.ACCUMULATING
        return StreamState.BLOCK_OPEN

    @property
    def open_indices(self) -> list[int]:
        return sorted(self._blocks)

    def __len__(self) -> int:
        return len(self._blocks)

    def open_block(
        self,
        index: int,
        *,
        id: str | None = None,
        name: str | None = None,
        thought_signature: str | None = None,
    ) -> ToolCallAccumulator:
        """Start buffering a tool call at *index*, capturing id/name if known."""
        if self._finished:
            raise RuntimeError("Cannot open a block on a finished stream")
        block = self._blocks.get(index)
        if block is None:
            block = ToolCallAccumulator(index=index)
            self._blocks[index] = block
        if id:
            block.id = id
        if name:
            block.name = name
        if thought_signature:
            block.thought_signature = thought_signature
        return block

    def append(
        self,
        index: int,
        fragment: str | None,
        *,
        id: str | None = None,
        name: str | None = None,
        thought_signature: str | None = None,
    ) -> None:
        """Buffer an argument fragment, opening the block implicitly if needed."""
        block = self.open_block(
            index, id=id, name=name, thought_signature=thought_signature
        )
        if fragment:
            block.fragments.append(fragment)
            block.state = StreamState.ACCUMULATING

    def close_block(self, index: int) -> ToolCallPart | None:
        """Finalize the call at *index*.

        Returns None when no such block exists or it never received a name.
        """
        block = self._blocks.pop(index, None)
        if block is None:
            return None
        block.state = StreamState.BLOCK_CLOSED
        if not block.name:
            logger.debug("Dropping nameless tool-call block at index %d", index)
            return None
        return ToolCallPart(
            name=block.name,
            args=parse_tool_arguments(block.buffer, tool_name=block.name),
            id=block.id or new_call_id(),
            thought_signature=block.thought_signature,
        )

    def finish(self) -> list[ToolCallPart]:
        """Close every open block in index order and enter the terminal state."""
        calls: list[ToolCallPart] = []
        try:
            for index in self.open_indices:
                call = self.close_block(index)
                if call is not None:
                    calls.append(call)
        finally:
            self._finished = True
            self._blocks.clear()
        return calls

    def clear(self) -> None:
        """Discard any buffered fragments."""
        self._blocks.clear()
