from simai.nccl_channel import (
    CollectiveType,
    LoopState,
    MockNcclComm,
    NcclChannelNode,
    NcclTree,
    SingleFlow,
)


class FakeGroup:
    def __init__(self):
        self.calls = []
        self.rings = {
            0: {0: [1, 3], 1: [2, 0]},
            1: {0: [3, 1], 1: [0, 2]},
        }
        self.trees = {0: {0: NcclTree(0, 0, -1, [1])}}
        self.nvls = {0: {5: NcclTree(1, 5, 4, [])}}

    def gen_ring_channels(self, rank, group_type):
        self.calls.append(("rings", rank, group_type))
        return self.rings

    def get_tree_channels(self, rank, group_type):
        self.calls.append(("trees", rank, group_type))
        return self.trees

    def get_nvls_channels(self, rank, group_type):
        self.calls.append(("nvls", rank, group_type))
        return self.nvls

    def get_flow_models(self, group_type, rank, collective_type, data_size,
                        layer_num, loopstate):
        return ("flows", group_type, rank, collective_type, data_size,
                layer_num, loopstate)

    def get_algo_proto_info(self, group_type, rank, collective_type, data_size):
        return ("info", group_type, rank, collective_type, data_size)


def test_construction_queries_group():
    group = FakeGroup()
    comm = MockNcclComm(3, "TP", group)
    assert [name for name, _, _ in group.calls] == ["rings", "trees", "nvls"]
    assert all(rank == 3 and kind == "TP" for _, rank, kind in group.calls)
    assert comm.treechannels is group.trees
    assert comm.get_nvls_channels() is group.nvls
    assert comm.get_nvls_tree_channels() == {}


def test_get_rings_regroups_by_rank():
    group = FakeGroup()
    rings = MockNcclComm(0, "DP", group).get_rings()
    for ring_id, members in group.rings.items():
        for rank, neighbours in members.items():
            assert rings[rank][ring_id] == neighbours
    assert list(rings) == sorted(rings)
    assert sum(len(v) for v in rings.values()) == 4


def test_fixed_tree_channels():
    channel = MockNcclComm(0, "TP", FakeGroup()).get_treechannels()[0]
    assert channel[8].down == list(range(8))
    assert channel[8].up == -1
    assert all(channel[r].up == 8 and channel[r].down == [] for r in range(8))
    assert all(node.rank == rank for rank, node in channel.items())


def test_flow_model_and_info_forward_arguments():
    comm = MockNcclComm(2, "EP", FakeGroup())
    flows = comm.get_flow_model(1024, CollectiveType.ALL_REDUCE, 7,
                                LoopState.FORWARD_PASS)
    assert flows == ("flows", "EP", 2, CollectiveType.ALL_REDUCE, 1024, 7,
                     LoopState.FORWARD_PASS)
    info = comm.get_algo_proto_info(4096, CollectiveType.ALL_GATHER)
    assert info == ("info", "EP", 2, CollectiveType.ALL_GATHER, 4096)


def test_single_flow_defaults_are_independent():
    first = SingleFlow()
    second = SingleFlow(flow_id=1, src=0, dest=1, flow_size=64, prev=[0])
    first.prev.append(5)
    assert SingleFlow().prev == []
    assert second.prev == [0]
    assert second.flow_size == 64


def test_channel_node_links():
    root = NcclChannelNode(0, 8)
    leaf = NcclChannelNode(1, 0, up=root)
    root.down.append(leaf)
    assert leaf.up is root
    assert root.down[0].rank == 0
    assert "rank=0" in repr(root)