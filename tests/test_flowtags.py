from simai.flowtags import ChunkTracker, FlowTag, Task


def test_flow_tag_unassigned_defaults():
    tag = FlowTag()
    assert tag.current_flow_id == -1
    assert tag.child_flow_id == -1
    assert tag.tree_flow_list == []
    assert tag.nvls_on is False


def test_flow_tag_lists_are_independent():
    a, b = FlowTag(), FlowTag()
    a.tree_flow_list.append(1)
    assert b.tree_flow_list == []


def test_task_fields():
    task = Task(src=1, dest=2, type=1, count=100, arg="x", msg_handler=len)
    assert task.msg_handler(task.arg) == 1
    assert (task.src, task.dest, task.count) == (1, 2, 100)


def test_single_chunk_completes_with_its_size():
    tracker = ChunkTracker()
    assert tracker.expect(7, 0, 1) == 1
    assert tracker.add(7, 0, 1, 500) == 500
    assert tracker.complete(7, 0, 1) == 500


def test_multiple_chunks_return_total_on_last():
    tracker = ChunkTracker()
    tracker.expect(3, 2, 4)
    tracker.expect(3, 2, 4)
    tracker.add(3, 2, 4, 100)
    assert tracker.complete(3, 2, 4) is None
    tracker.add(3, 2, 4, 250)
    assert tracker.complete(3, 2, 4) == 350


def test_complete_without_expect_returns_none():
    tracker = ChunkTracker()
    tracker.add(1, 0, 1, 10)
    assert tracker.complete(1, 0, 1) is None


def test_completion_clears_state():
    tracker = ChunkTracker()
    tracker.expect(1, 0, 1)
    tracker.add(1, 0, 1, 10)
    assert tracker.complete(1, 0, 1) == 10
    assert tracker.complete(1, 0, 1) is None
    tracker.expect(1, 0, 1)
    tracker.add(1, 0, 1, 20)
    assert tracker.complete(1, 0, 1) == 20


def test_flows_are_keyed_by_direction():
    tracker = ChunkTracker()
    tracker.expect(1, 0, 1)
    tracker.expect(1, 1, 0)
    tracker.add(1, 0, 1, 10)
    tracker.add(1, 1, 0, 30)
    assert tracker.complete(1, 1, 0) == 30
    assert tracker.complete(1, 0, 1) == 10