"""Flow tags, pending network tasks and per-flow chunk accounting."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

__all__ = ["FlowTag", "Task", "ChunkTracker"]


@dataclass
class FlowTag:
    """Identifies a flow of a collective; -1 marks fields not yet assigned."""

    channel_id: int = -1
    chunk_id: int = -1
    current_flow_id: int = -1
    child_flow_id: int = -1
    sender_node: int = -1
    receiver_node: int = -1
    flow_size: int = 0
    tag_id: int = -1
    nvls_on: bool = False
    tree_flow_list: List[int] = field(default_factory=list)


@dataclass
class Task:
    """A pending send (type 0), receive (type 1) or scheduled call (type 2)."""

    src: int = -1
    dest: int = -1
    type: int = 0
    count: int = 0
    arg: Any = None
    msg_handler: Optional[Callable[[Any], Any]] = None
    sch_time: float = 0.0


_Key = Tuple[int, int, int]


class ChunkTracker:
    """Counts the chunks a flow was split into and sums their sizes.

    :meth:`expect` is called once per chunk sent, :meth:`add` and
    :meth:`complete` once per chunk that finishes. When the last expected
    chunk completes, :meth:`complete` hands back the total size.
    """

    def __init__(self) -> None:
        self._waiting: Dict[_Key, int] = {}
        self._sizes: Dict[_Key, int] = {}

    def expect(self, flow_id: int, src: int, dst: int) -> int:
        """Expect one more chunk for the flow; return how many are outstanding."""
        key = (flow_id, src, dst)
        self._waiting[key] = self._waiting.get(key, 0) + 1
        return self._waiting[key]

    def add(self, flow_id: int, src: int, dst: int, size: int) -> int:
        """Add *size* bytes to the flow's total; return the running total."""
        key = (flow_id, src, dst)
        self._sizes[key] = self._sizes.get(key, 0) + size
        return self._sizes[key]

    def complete(self, flow_id: int, src: int, dst: int) -> Optional[int]:
        """Mark one chunk done; return the total size if it was the last, else None."""
        key = (flow_id, src, dst)
        if key not in self._waiting:
            return None
        self._waiting[key] -= 1
        if self._waiting[key] != 0:
            return None
        del self._waiting[key]
        return self._sizes.pop(key, 0)