"""A LogGP model of the memory bus between an NPU and its memory agent."""

from __future__ import annotations

import itertools
from collections import deque
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, ClassVar, Deque, Optional, Protocol

from .records import EventType

__all__ = ["BusStats", "Transmission", "MemMovRequest", "LogGP", "MemBus"]


class _Generator(Protocol):
    """The system a bus belongs to: a clock and an event queue."""

    local_reduction_delay: int

    def boosted_tick(self) -> int: ...

    def register_event(self, callable: Any, event: EventType, data: Any, delay: int) -> None: ...


class _Callable(Protocol):
    def call(self, event: EventType, data: Any) -> Any: ...


@dataclass(eq=False)
class BusStats:
    """Accumulated delays spent on the shared bus and on the memory bus."""

    shared_transfer_queue_delay: int = 0
    shared_transfer_delay: int = 0
    shared_processing_queue_delay: int = 0
    shared_processing_delay: int = 0
    mem_transfer_queue_delay: int = 0
    mem_transfer_delay: int = 0
    mem_processing_queue_delay: int = 0
    mem_processing_delay: int = 0
    shared_request_counter: int = 0
    mem_request_counter: int = 0

    def update_shared(self, other: "BusStats") -> None:
        """Add the shared-bus delays of *other* to this record."""
        self.shared_transfer_queue_delay += other.shared_transfer_queue_delay
        self.shared_transfer_delay += other.shared_transfer_delay
        self.shared_processing_queue_delay += other.shared_processing_queue_delay
        self.shared_processing_delay += other.shared_processing_delay
        self.shared_request_counter += 1

    def update_mem(self, other: "BusStats") -> None:
        """Add the memory-bus delays of *other* to this record."""
        self.mem_transfer_queue_delay += other.mem_transfer_queue_delay
        self.mem_transfer_delay += other.mem_transfer_delay
        self.mem_processing_queue_delay += other.mem_processing_queue_delay
        self.mem_processing_delay += other.mem_processing_delay
        self.mem_request_counter += 1


class Transmission(Enum):
    FAST = auto()
    USUAL = auto()


class MemMovRequest(BusStats):
    """One transfer moving through a :class:`LogGP` side of the bus."""

    _ids: ClassVar[itertools.count] = itertools.count()

    def __init__(
        self,
        request_num: int,
        generator: _Generator,
        loggp: "LogGP",
        size: int,
        latency: int,
        callable: _Callable,
        processed: bool,
        send_back: bool,
    ):
        super().__init__()
        self.my_id = next(MemMovRequest._ids)
        self.request_num = request_num
        self.generator = generator
        self.loggp = loggp
        self.size = size
        self.latency = latency
        self.callable = callable
        self.processed = processed
        self.send_back = send_back
        self.mem_bus_finished = True
        self.call_event = EventType.GENERAL
        self.container: Optional[Deque["MemMovRequest"]] = None
        self.total_transfer_queue_time = 0
        self.total_transfer_time = 0
        self.total_processing_queue_time = 0
        self.total_processing_time = 0
        self.start_time = generator.boosted_tick()

    def wait_for_mem_bus(self, container: Deque["MemMovRequest"]) -> None:
        """Park this request in *container* until the attached memory bus answers."""
        self.mem_bus_finished = False
        self.container = container

    def call(self, event: EventType, data: BusStats) -> None:
        """Receive the memory bus's answer and hand control back to the owning LogGP."""
        self.update_mem(data)
        self.mem_transfer_delay += data.shared_transfer_delay
        self.mem_processing_delay += data.shared_processing_delay
        self.mem_processing_queue_delay += data.shared_processing_queue_delay
        self.mem_transfer_queue_delay += data.shared_transfer_queue_delay
        self.mem_request_counter = 1
        self.mem_bus_finished = True
        self.loggp.talking = self
        self.loggp.call(self.call_event, data)


class _State(Enum):
    FREE = auto()
    WAITING = auto()
    SENDING = auto()
    RECEIVING = auto()


class _ProcState(Enum):
    FREE = auto()
    PROCESSING = auto()


class LogGP:
    """One side of a LogGP-modelled link (latency L, overhead o, gap g, per-byte G)."""

    State = _State
    ProcState = _ProcState
    THRESHOLD = 8

    def __init__(
        self,
        name: str,
        generator: _Generator,
        L: int,
        o: int,
        g: int,
        G: float,
        trigger_event: EventType,
    ):
        self.name = name
        self.generator = generator
        self.L = L
        self.o = o
        self.g = g
        self.G = G
        self.trigger_event = trigger_event
        self.last_trans = 0
        self.cur_state = _State.FREE
        self.prev_state = _State.FREE
        self.processing_state = _ProcState.FREE
        self.subsequent_reads = 0
        self.request_num = 0
        self.local_reduction_delay = generator.local_reduction_delay
        self.sends: Deque[MemMovRequest] = deque()
        self.receives: Deque[MemMovRequest] = deque()
        self.processing: Deque[MemMovRequest] = deque()
        self.retirements: Deque[MemMovRequest] = deque()
        self.pre_send: Deque[MemMovRequest] = deque()
        self.pre_process: Deque[MemMovRequest] = deque()
        self.talking: Optional[MemMovRequest] = None
        self.partner: Optional[LogGP] = None
        self.npu_mem: Optional[MemBus] = None

    def _now(self) -> int:
        return self.generator.boosted_tick()

    def attach_mem_bus(
        self,
        generator: _Generator,
        L: int,
        o: int,
        g: int,
        G: float,
        model_shared_bus: bool,
        communication_delay: int,
    ) -> None:
        """Route requests through a memory bus between this side and its memory."""
        self.npu_mem = MemBus(
            "NPU2", "MEM2", generator, L, o, g, G,
            model_shared_bus, communication_delay, False,
        )

    def process_next_read(self) -> None:
        """Start sending the request at the head of the send queue."""
        now = self._now()
        if self.prev_state is _State.SENDING:
            if now < self.last_trans:
                raise RuntimeError("clock went backwards")
            elapsed = now - self.last_trans
            offset = self.o if self.o + elapsed > self.g else self.g - elapsed
        else:
            offset = self.o
        request = self.sends.popleft()
        request.total_transfer_queue_time += now - request.start_time
        self.partner.switch_to_receiver(request, offset)
        self.cur_state = _State.SENDING
        self.generator.register_event(
            self, EventType.SEND_FINISHED, None, int(offset + self.G * (request.size - 1))
        )

    def _partner_has_priority(self) -> bool:
        partner = self.partner
        if (
            self.subsequent_reads > self.THRESHOLD
            and partner.sends
            and partner.subsequent_reads <= self.THRESHOLD
        ):
            if partner.cur_state is _State.FREE:
                partner.call(EventType.GENERAL, None)
            return True
        return False

    def request_read(
        self, size: int, processed: bool, send_back: bool, callable: _Callable
    ) -> None:
        """Queue a transfer of *size* bytes whose completion is reported to *callable*."""
        request = MemMovRequest(
            self.request_num, self.generator, self, size, 0, callable, processed, send_back
        )
        self.request_num += 1
        if self.npu_mem is not None:
            request.call_event = EventType.CONSIDER_SEND_BACK
            self.pre_send.append(request)
            request.wait_for_mem_bus(self.pre_send)
            self.npu_mem.send_from_ma_to_npu(
                Transmission.USUAL, request.size, False, False, request
            )
            return
        self.sends.append(request)
        if self.cur_state is _State.FREE and not self._partner_has_priority():
            self.process_next_read()

    def switch_to_receiver(self, request: MemMovRequest, offset: int) -> None:
        """Accept *request* from the partner and schedule its arrival."""
        request.start_time = self._now()
        self.receives.append(request)
        self.prev_state = self.cur_state
        self.cur_state = _State.RECEIVING
        self.generator.register_event(
            self,
            EventType.REC_FINISHED,
            None,
            int(offset + (request.size - 1) * self.G + self.L + self.o),
        )
        self.subsequent_reads = 0

    def _processing_delay(self, request: MemMovRequest) -> int:
        return (request.size // 100) * self.local_reduction_delay + 50

    def _start_processing(self) -> None:
        if self.processing_state is _ProcState.FREE and self.processing:
            head = self.processing[0]
            now = self._now()
            head.total_processing_queue_time += now - head.start_time
            head.start_time = now
            self.generator.register_event(
                self, EventType.PROCESSING_FINISHED, None, self._processing_delay(head)
            )
            self.processing_state = _ProcState.PROCESSING

    def _through_mem_bus(
        self,
        request: MemMovRequest,
        queue: Deque[MemMovRequest],
        event: EventType,
        send_back: bool,
    ) -> None:
        request.loggp = self
        request.call_event = event
        queue.append(request)
        request.wait_for_mem_bus(queue)
        self.npu_mem.send_from_npu_to_ma(
            Transmission.USUAL, request.size, False, send_back, request
        )

    def _retire(self, request: MemMovRequest) -> None:
        if self.npu_mem is not None:
            self._through_mem_bus(request, self.retirements, EventType.CONSIDER_RETIRE, False)
        else:
            self._deliver(request, request)

    def _deliver(self, timing: MemMovRequest, request: MemMovRequest) -> None:
        stats = BusStats(
            shared_transfer_queue_delay=timing.total_transfer_queue_time,
            shared_transfer_delay=timing.total_transfer_time,
            shared_processing_queue_delay=timing.total_processing_queue_time,
            shared_processing_delay=timing.total_processing_time,
        )
        stats.update_mem(request)
        request.callable.call(self.trigger_event, stats)

    def _send_back(self, request: MemMovRequest) -> None:
        request.send_back = False
        if self.npu_mem is not None:
            self._through_mem_bus(request, self.pre_send, EventType.CONSIDER_SEND_BACK, True)
        else:
            self.sends.append(request)

    def _on_receive_finished(self) -> None:
        if not self.receives:
            raise RuntimeError("receive finished with nothing being received")
        now = self._now()
        request = self.receives[0]
        request.total_transfer_time += now - request.start_time
        request.start_time = now
        self.last_trans = now
        self.prev_state = self.cur_state
        if len(self.receives) < 2:
            self.cur_state = _State.FREE
        self.receives.popleft()
        if request.processed:
            request.processed = False
            if self.npu_mem is not None:
                self._through_mem_bus(
                    request, self.pre_process, EventType.CONSIDER_PROCESS, True
                )
            else:
                self.processing.append(request)
            self._start_processing()
        elif request.send_back:
            self._send_back(request)
        else:
            self._retire(request)

    def _on_processing_finished(self) -> None:
        if not self.processing:
            raise RuntimeError("processing finished with nothing being processed")
        now = self._now()
        request = self.processing.popleft()
        request.total_processing_time += now - request.start_time
        request.start_time = now
        self.processing_state = _ProcState.FREE
        if request.send_back:
            self._send_back(request)
        else:
            self._retire(request)
        self._start_processing()

    def call(self, event: EventType, data: Any) -> None:
        """React to a finished send, receive, processing step or memory-bus answer."""
        if event is EventType.SEND_FINISHED:
            self.last_trans = self._now()
            self.prev_state = self.cur_state
            self.cur_state = _State.FREE
            self.subsequent_reads += 1
        elif event is EventType.REC_FINISHED:
            self._on_receive_finished()
        elif event is EventType.PROCESSING_FINISHED:
            self._on_processing_finished()
        elif event is EventType.CONSIDER_RETIRE:
            request = self.talking
            self._deliver(self.retirements[0], request)
            self.retirements.remove(request)
        elif event is EventType.CONSIDER_PROCESS:
            request = self.talking
            self.processing.append(request)
            self.pre_process.remove(request)
            self._start_processing()
        elif event is EventType.CONSIDER_SEND_BACK:
            if not self.pre_send:
                raise RuntimeError("send-back answer with no request waiting")
            request = self.talking
            self.sends.append(request)
            self.pre_send.remove(request)
        if self.cur_state is _State.FREE and self.sends:
            if self._partner_has_priority():
                return
            self.process_next_read()


class MemBus:
    """A bus between an NPU and its memory agent, modelled by two LogGP sides."""

    def __init__(
        self,
        side1: str,
        side2: str,
        generator: _Generator,
        L: int,
        o: int,
        g: int,
        G: float,
        model_shared_bus: bool,
        communication_delay: int,
        attach: bool,
    ):
        self.npu_side = LogGP(side1, generator, L, o, g, G, EventType.MA_TO_NPU)
        self.ma_side = LogGP(side2, generator, L, o, g, G, EventType.NPU_TO_MA)
        self.npu_side.partner = self.ma_side
        self.ma_side.partner = self.npu_side
        self.generator = generator
        self.model_shared_bus = model_shared_bus
        self.communication_delay = communication_delay
        if attach:
            self.npu_side.attach_mem_bus(
                generator, L, o, g, 0.0038, model_shared_bus, communication_delay
            )

    def _send(
        self,
        side: LogGP,
        event: EventType,
        transmission: Transmission,
        size: int,
        processed: bool,
        send_back: bool,
        callable: _Callable,
    ) -> None:
        if self.model_shared_bus and transmission is Transmission.USUAL:
            side.request_read(size, processed, send_back, callable)
            return
        delay = 10 if transmission is Transmission.FAST else self.communication_delay
        self.generator.register_event(
            callable, event, BusStats(shared_transfer_delay=delay), delay
        )

    def send_from_npu_to_ma(
        self,
        transmission: Transmission,
        size: int,
        processed: bool,
        send_back: bool,
        callable: _Callable,
    ) -> None:
        """Move *size* bytes from the NPU to the memory agent."""
        self._send(
            self.npu_side, EventType.NPU_TO_MA, transmission,
            size, processed, send_back, callable,
        )

    def send_from_ma_to_npu(
        self,
        transmission: Transmission,
        size: int,
        processed: bool,
        send_back: bool,
        callable: _Callable,
    ) -> None:
        """Move *size* bytes from the memory agent to the NPU."""
        self._send(
            self.ma_side, EventType.MA_TO_NPU, transmission,
            size, processed, send_back, callable,
        )