"""Plain records exchanged by the system layer: events, DMA requests, phases, data sets."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, ClassVar, List, Optional, Protocol, Tuple

__all__ = [
    "EventType",
    "BasicEventHandlerData",
    "DMARequest",
    "CollectivePhase",
    "DataSet",
]

_log = logging.getLogger(__name__)


class EventType(Enum):
    NONE = auto()
    GENERAL = auto()
    SEND_FINISHED = auto()
    REC_FINISHED = auto()
    PROCESSING_FINISHED = auto()
    CONSIDER_RETIRE = auto()
    CONSIDER_PROCESS = auto()
    CONSIDER_SEND_BACK = auto()
    MA_TO_NPU = auto()
    NPU_TO_MA = auto()
    PACKET_RECEIVED = auto()
    PACKET_SENT_FINISHED = auto()


class _Callable(Protocol):
    def call(self, event: EventType, data: Any) -> Any: ...


@dataclass
class BasicEventHandlerData:
    """Event payload naming the node, the event and the channel/flow involved."""

    node: Any = None
    event: Optional[EventType] = None
    channel_id: int = -1
    flow_id: int = -1


@dataclass
class DMARequest:
    """A DMA transfer request."""

    id: int
    slots: int
    latency: int
    bytes: int
    stream_owner: Any = None
    executed: bool = False


@dataclass
class CollectivePhase:
    """One phase of a collective, driven by an algorithm on a queue."""

    generator: Any = None
    queue_id: int = -1
    algorithm: Any = None
    initial_data_size: int = 0
    final_data_size: int = 0
    enabled: bool = True
    comm_type: Any = None

    @classmethod
    def from_algorithm(cls, generator: Any, queue_id: int, algorithm: Any) -> "CollectivePhase":
        """Build a phase taking its sizes, type and enabled flag from *algorithm*."""
        return cls(
            generator=generator,
            queue_id=queue_id,
            algorithm=algorithm,
            initial_data_size=algorithm.data_size,
            final_data_size=algorithm.final_data_size,
            enabled=algorithm.enabled,
            comm_type=algorithm.com_type,
        )

    def init(self, stream: Any) -> None:
        """Let the algorithm attach itself to *stream*."""
        if self.algorithm is not None:
            self.algorithm.init(stream)


class DataSet:
    """Tracks the streams of one collective and notifies a listener when all finish."""

    _ids: ClassVar[itertools.count] = itertools.count()

    def __init__(self, total_streams: int, clock: Callable[[], int] = lambda: 0):
        self.my_id: int = next(DataSet._ids)
        self.total_streams = total_streams
        self.finished_streams = 0
        self.finished = False
        self.finish_tick = 0
        self.active = True
        self.comm_start_tick = 0
        self.total_comm_time = 0
        self._clock = clock
        self.creation_tick = clock()
        self.notifier: Optional[Tuple[_Callable, EventType]] = None
        self.stream_stats: List[Any] = []

    def set_notifier(self, layer: _Callable, event: EventType) -> None:
        """Call ``layer.call(event, my_id)`` once every stream has finished."""
        self.notifier = (layer, event)

    def notify_stream_finished(self, data: Any = None) -> None:
        """Record one finished stream, with its statistics if given."""
        _log.debug(
            "notify_stream_finished id: %d finished_streams: %d total streams: %d",
            self.my_id,
            self.finished_streams + 1,
            self.total_streams,
        )
        self.finished_streams += 1
        if data is not None:
            self.stream_stats.append(data)
        if self.finished_streams != self.total_streams:
            return
        self.finished = True
        self.finish_tick = self._clock()
        if self.notifier is None:
            _log.error("notify_stream_finished: no notifier set for data set %d", self.my_id)
            return
        layer, event = self.notifier
        self.notifier = None
        layer.call(event, self.my_id)

    def call(self, event: EventType, data: Any) -> None:
        self.notify_stream_finished(data)

    def is_finished(self) -> bool:
        return self.finished