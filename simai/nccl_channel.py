"""Per-rank view of the collective communication channels of a group."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, List, Optional, Protocol

__all__ = [
    "SingleFlow",
    "LoopState",
    "CollectiveType",
    "NcclTree",
    "NcclChannelNode",
    "MockNcclComm",
]


@dataclass
class SingleFlow:
    """One point-to-point flow of a collective and its dependencies."""

    flow_id: int = -1
    src: int = -1
    dest: int = -1
    flow_size: int = 0
    prev: List[int] = field(default_factory=list)
    parent_flow_id: List[int] = field(default_factory=list)
    child_flow_id: List[int] = field(default_factory=list)
    channel_id: int = -1
    chunk_id: int = -1
    chunk_count: int = 0
    conn_type: str = ""


class LoopState(Enum):
    FORWARD_PASS = auto()
    WEIGHT_GRADIENT = auto()
    INPUT_GRADIENT = auto()


class CollectiveType(Enum):
    NONE = auto()
    REDUCE_SCATTER = auto()
    ALL_GATHER = auto()
    ALL_REDUCE = auto()
    ALL_TO_ALL = auto()
    ALL_REDUCE_ALL_TO_ALL = auto()


@dataclass
class NcclTree:
    """A rank's position in a tree channel: its parent and children."""

    depth: int
    rank: int
    up: int
    down: List[int] = field(default_factory=list)


@dataclass(eq=False)
class NcclChannelNode:
    """A linked tree node; ``up`` refers to the parent node."""

    depth: int
    rank: int
    up: Optional["NcclChannelNode"] = field(default=None, repr=False)
    down: List["NcclChannelNode"] = field(default_factory=list)


RingChannels = Dict[int, Dict[int, List[int]]]
TreeChannels = Dict[int, Dict[int, NcclTree]]


class ChannelGroup(Protocol):
    """What a communicator needs from the group it belongs to."""

    def gen_ring_channels(self, rank: int, group_type: Any) -> RingChannels: ...

    def get_tree_channels(self, rank: int, group_type: Any) -> TreeChannels: ...

    def get_nvls_channels(self, rank: int, group_type: Any) -> TreeChannels: ...

    def get_flow_models(
        self,
        group_type: Any,
        rank: int,
        collective_type: Any,
        data_size: int,
        layer_num: int,
        loopstate: LoopState,
    ) -> Any: ...

    def get_algo_proto_info(
        self, group_type: Any, rank: int, collective_type: Any, data_size: int
    ) -> Any: ...


class MockNcclComm:
    """Channels and flow models of one rank inside a communication group."""

    def __init__(self, rank: int, group_type: Any, global_group: ChannelGroup):
        self.rank = rank
        self.type = group_type
        self.global_group = global_group
        self.ringchannels: RingChannels = global_group.gen_ring_channels(
            rank, group_type
        )
        self.treechannels: TreeChannels = global_group.get_tree_channels(
            rank, group_type
        )
        self.nvlschannels: TreeChannels = global_group.get_nvls_channels(
            rank, group_type
        )
        self.nvlstreechannels: Dict[int, Any] = {}

    def get_rings(self) -> Dict[int, Dict[int, List[int]]]:
        """Regroup ring channels by rank: ``result[rank][ring_id] = neighbours``."""
        result: Dict[int, Dict[int, List[int]]] = {}
        for ring_id in sorted(self.ringchannels):
            for rank, neighbours in sorted(self.ringchannels[ring_id].items()):
                result.setdefault(rank, {})[ring_id] = neighbours
        return {rank: result[rank] for rank in sorted(result)}

    def get_treechannels(self) -> TreeChannels:
        """Return the fixed single-switch tree: ranks 0-7 under node 8."""
        channel = {rank: NcclTree(-1, rank, 8, []) for rank in range(8)}
        channel[8] = NcclTree(-1, 8, -1, list(range(8)))
        return {0: channel}

    def get_nvls_channels(self) -> TreeChannels:
        return self.nvlschannels

    def get_nvls_tree_channels(self) -> Dict[int, Any]:
        return self.nvlstreechannels

    def get_flow_model(
        self,
        data_size: int,
        collective_type: Any,
        layer_num: int,
        loopstate: LoopState,
    ) -> Any:
        return self.global_group.get_flow_models(
            self.type, self.rank, collective_type, data_size, layer_num, loopstate
        )

    def get_algo_proto_info(self, data_size: int, collective_type: Any) -> Any:
        return self.global_group.get_algo_proto_info(
            self.type, self.rank, collective_type, data_size
        )