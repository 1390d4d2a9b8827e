from simai.records import (
    BasicEventHandlerData,
    CollectivePhase,
    DataSet,
    DMARequest,
    EventType,
)


class _Recorder:
    def __init__(self):
        self.calls = []

    def call(self, event, data):
        self.calls.append((event, data))


class _Algorithm:
    def __init__(self):
        self.data_size = 1024
        self.final_data_size = 256
        self.enabled = False
        self.com_type = "all_reduce"
        self.streams = []

    def init(self, stream):
        self.streams.append(stream)


def test_event_handler_data_defaults():
    data = BasicEventHandlerData(node="sys", event=EventType.GENERAL)
    assert data.channel_id == -1
    assert data.flow_id == -1
    assert data.event is EventType.GENERAL


def test_event_handler_data_channel_and_flow():
    data = BasicEventHandlerData(channel_id=3, flow_id=9)
    assert (data.channel_id, data.flow_id) == (3, 9)
    assert data.node is None


def test_dma_request_defaults():
    req = DMARequest(id=1, slots=2, latency=3, bytes=4)
    assert req.executed is False
    assert req.stream_owner is None
    owned = DMARequest(1, 2, 3, 4, stream_owner="owner")
    assert owned.stream_owner == "owner"


def test_collective_phase_default():
    phase = CollectivePhase()
    assert phase.queue_id == -1
    assert phase.generator is None
    assert phase.algorithm is None


def test_collective_phase_from_algorithm_copies_fields():
    algo = _Algorithm()
    phase = CollectivePhase.from_algorithm("gen", 5, algo)
    assert phase.queue_id == 5
    assert phase.initial_data_size == algo.data_size
    assert phase.final_data_size == algo.final_data_size
    assert phase.enabled is False
    assert phase.comm_type == "all_reduce"


def test_collective_phase_init_forwards_stream():
    algo = _Algorithm()
    phase = CollectivePhase.from_algorithm(None, 0, algo)
    phase.init("stream")
    assert algo.streams == ["stream"]


def test_dataset_ids_increase():
    first = DataSet(1)
    second = DataSet(1)
    assert second.my_id == first.my_id + 1


def test_dataset_notifies_once_all_streams_finish():
    ticks = iter([5, 42])
    ds = DataSet(2, clock=lambda: next(ticks))
    assert ds.creation_tick == 5
    listener = _Recorder()
    ds.set_notifier(listener, EventType.GENERAL)
    ds.notify_stream_finished("stats-a")
    assert not ds.is_finished()
    assert listener.calls == []
    ds.call(EventType.GENERAL, "stats-b")
    assert ds.is_finished()
    assert ds.finish_tick == 42
    assert listener.calls == [(EventType.GENERAL, ds.my_id)]
    assert ds.notifier is None
    assert ds.stream_stats == ["stats-a", "stats-b"]


def test_dataset_without_notifier_still_finishes():
    ds = DataSet(1)
    ds.notify_stream_finished(None)
    assert ds.is_finished()
    assert ds.stream_stats == []