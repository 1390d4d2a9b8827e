import heapq
import itertools

import pytest

from simai.memory import BusStats, LogGP, MemBus, MemMovRequest, Transmission
from simai.records import EventType


class FakeSys:
    def __init__(self, local_reduction_delay=1):
        self.tick = 0
        self.local_reduction_delay = local_reduction_delay
        self._events = []
        self._seq = itertools.count()

    def boosted_tick(self):
        return self.tick

    def register_event(self, target, event, data, delay):
        heapq.heappush(
            self._events, (self.tick + int(delay), next(self._seq), target, event, data)
        )

    def run(self):
        while self._events:
            time, _, target, event, data = heapq.heappop(self._events)
            self.tick = time
            target.call(event, data)


class Sink:
    def __init__(self, system):
        self.system = system
        self.received = []

    def call(self, event, data):
        self.received.append((self.system.tick, event, data))


def shared_bus(system, delay=5):
    return MemBus("NPU", "MA", system, 10, 2, 1, 1.0, True, delay, False)


def deliver_once(size=5, processed=False, send_back=False):
    system = FakeSys()
    bus = shared_bus(system)
    sink = Sink(system)
    bus.send_from_npu_to_ma(Transmission.USUAL, size, processed, send_back, sink)
    system.run()
    return sink.received


def test_shared_bus_one_way_delivery():
    received = deliver_once()
    assert len(received) == 1
    tick, event, stats = received[0]
    assert event is EventType.NPU_TO_MA
    assert tick == 18
    assert stats.shared_transfer_delay == tick


def test_shared_bus_ma_to_npu_uses_npu_trigger():
    system = FakeSys()
    bus = shared_bus(system)
    sink = Sink(system)
    bus.send_from_ma_to_npu(Transmission.USUAL, 5, False, False, sink)
    system.run()
    assert [event for _, event, _ in sink.received] == [EventType.MA_TO_NPU]


def test_processing_adds_reduction_delay():
    plain = deliver_once()[0][0]
    processed = deliver_once(processed=True)
    assert processed[0][0] - plain == 50
    assert processed[0][2].shared_processing_delay == 50


def test_send_back_returns_to_npu():
    plain = deliver_once()[0][0]
    received = deliver_once(send_back=True)
    assert len(received) == 1
    tick, event, _ = received[0]
    assert event is EventType.MA_TO_NPU
    assert tick > plain


def test_unshared_bus_uses_communication_delay():
    system = FakeSys()
    bus = MemBus("NPU", "MA", system, 10, 2, 1, 1.0, False, 7, False)
    sink = Sink(system)
    bus.send_from_npu_to_ma(Transmission.USUAL, 100, False, False, sink)
    system.run()
    tick, event, stats = sink.received[0]
    assert (tick, event) == (7, EventType.NPU_TO_MA)
    assert stats.shared_transfer_delay == 7


def test_fast_transmission_takes_ten_ticks():
    system = FakeSys()
    bus = shared_bus(system)
    sink = Sink(system)
    bus.send_from_ma_to_npu(Transmission.FAST, 100, False, False, sink)
    system.run()
    tick, event, stats = sink.received[0]
    assert (tick, event) == (10, EventType.MA_TO_NPU)
    assert stats.shared_transfer_delay == 10
    assert bus.ma_side.sends == type(bus.ma_side.sends)()


def test_requests_delivered_in_order():
    system = FakeSys()
    bus = shared_bus(system)
    first, second = Sink(system), Sink(system)
    bus.send_from_npu_to_ma(Transmission.USUAL, 5, False, False, first)
    bus.send_from_npu_to_ma(Transmission.USUAL, 5, False, False, second)
    system.run()
    assert len(first.received) == 1
    assert len(second.received) == 1
    assert first.received[0][0] < second.received[0][0]
    assert len(bus.npu_side.sends) == 0
    assert len(bus.ma_side.receives) == 0


def make_pair(system, attach_delay=None):
    sender = LogGP("A", system, 10, 2, 1, 1.0, EventType.MA_TO_NPU)
    receiver = LogGP("B", system, 10, 2, 1, 1.0, EventType.NPU_TO_MA)
    sender.partner, receiver.partner = receiver, sender
    if attach_delay is not None:
        sender.attach_mem_bus(system, 10, 2, 1, 1.0, False, attach_delay)
    return sender, receiver


def test_attached_mem_bus_delays_by_communication_delay():
    results = []
    for attach in (None, 7):
        system = FakeSys()
        sender, receiver = make_pair(system, attach)
        sink = Sink(system)
        sender.request_read(5, False, False, sink)
        system.run()
        results.append(sink.received)
        assert len(sender.pre_send) == 0
    plain, attached = results
    assert attached[0][0] - plain[0][0] == 7
    assert attached[0][1] is EventType.NPU_TO_MA


def test_mem_mov_request_ids_increase():
    system = FakeSys()
    sender, _ = make_pair(system)
    a = MemMovRequest(0, system, sender, 5, 0, None, False, False)
    b = MemMovRequest(1, system, sender, 5, 0, None, False, False)
    assert b.my_id > a.my_id
    assert a != b


def test_wait_for_mem_bus_clears_finished_flag():
    system = FakeSys()
    sender, _ = make_pair(system)
    request = MemMovRequest(0, system, sender, 5, 0, None, False, False)
    queue = sender.pre_send
    request.wait_for_mem_bus(queue)
    assert request.mem_bus_finished is False
    assert request.container is queue


def test_bus_stats_update_mem_accumulates():
    total = BusStats()
    other = BusStats(mem_transfer_delay=4, mem_processing_delay=2)
    total.update_mem(other)
    total.update_mem(other)
    assert total.mem_transfer_delay == 8
    assert total.mem_processing_delay == 4
    assert total.mem_request_counter == 2
    assert total.shared_transfer_delay == 0


def test_bus_stats_update_shared_accumulates():
    total = BusStats(shared_transfer_delay=1)
    total.update_shared(BusStats(shared_transfer_delay=3, shared_processing_queue_delay=2))
    assert total.shared_transfer_delay == 4
    assert total.shared_processing_queue_delay == 2
    assert total.shared_request_counter == 1


def test_processing_finished_without_work_raises():
    system = FakeSys()
    sender, _ = make_pair(system)
    with pytest.raises(RuntimeError):
        sender.call(EventType.PROCESSING_FINISHED, None)


def test_receive_finished_without_work_raises():
    system = FakeSys()
    _, receiver = make_pair(system)
    with pytest.raises(RuntimeError):
        receiver.call(EventType.REC_FINISHED, None)