# simai

`simai` provides building blocks for modelling how collective communication
(all-reduce, all-gather, reduce-scatter, all-to-all) moves through a GPU
training cluster. It depends only on the Python standard library and
supports Python 3.10 and later.

## Modules

- **`simai.params`**: `UserParam` holds run-wide settings and
  `UserParam.parse_args(argv)` applies command-line style options
  (`-w/--workload`, `-g/--gpus`, `-g_p_s/--gpus-per-server`, `-r/--result`,
  `-busbw/--bus-bandwidth`, `-v/--visual`, and the `-dp_o`, `-tp_o`, `-ep_o`,
  `-pp_o` overlap ratios). It returns `False` after printing help for
  `-h/--help`, raises `ArgumentError` on a bad option or value, derives the
  node, switch and NVSwitch counts from the GPU count, and, when no result
  name is given or the result ends in `/`, builds one with
  `default_result_name`. `UserParam.get_instance()` returns a shared
  instance. `parse_busbw_yaml` reads TP / DP / EP bus bandwidths into a
  `NetworkParam`; `help_text()` returns the usage message.
- **`simai.bootstrap`**: `read_host_file(path)` maps ranks to addresses, one
  line per rank.
- **`simai.nccl_channel`**: `MockNcclComm` gives one rank's view of the ring,
  tree and NVLS channels of a group object that supplies them, and forwards
  flow-model and algorithm queries to it. Also defines `SingleFlow`,
  `NcclTree`, `NcclChannelNode`, `LoopState` and `CollectiveType`.
- **`simai.records`**: `EventType`, `BasicEventHandlerData`, `DMARequest`,
  `CollectivePhase` and `DataSet`, which counts finished streams and calls
  its notifier once all of them are done.
- **`simai.flowtags`**: `FlowTag`, `Task`, and `ChunkTracker`, which sums
  chunk sizes and reports the total once the last expected chunk of a flow
  completes.
- **`simai.memory`**: a LogGP model of the bus between an NPU and its memory
  agent: `LogGP`, `MemBus`, `MemMovRequest`, `BusStats` and `Transmission`.
- **`simai.netconf`**: `read_network_config` reads a `KEY value`
  configuration file into a `NetworkConfig`; `read_topology` reads a topology
  file into a `Topology` of `Link`s. `node_id_to_ip` and `ip_to_node_id`
  convert between node ids and addresses; `output_file_name` names monitor
  outputs; `QlenDistribution` is a queue-length histogram.
- **`simai.routing`**: `RoutingTables` computes breadth-first next hops over
  hosts, switches and NVSwitches (preferring paths through NVSwitches),
  per-pair delay and bandwidth, RTT and BDP via `pair_metrics()`, handles
  `take_down_link`, and formats the tables with `format_routing_entries()`.
- **`simai.flows`**: `FlowTracker` matches posted sends and receives to the
  data that arrives, splits flows over queue pairs with `start_flow`, and
  runs each handler once its message has fully arrived or left.
  `send_latency_ns` reads `AS_SEND_LAT` (microseconds, default 6000).

## Examples

Parse run options:

```python
from simai.params import UserParam

param = UserParam()
param.parse_args([
    "-w", "workload/llama_world_size16_tp8_pp1_ep1_gbs64_mbs1_seq2048.txt",
    "-g", "16",
    "-g_p_s", "8",
])
print(param.res)  # llama-tp8-pp1-dp2-ga32-ep1-NVL8-DP0-
```

Compute routes for a topology file:

```python
from simai.netconf import read_topology
from simai.routing import RoutingTables

tables = RoutingTables.from_topology(read_topology("topo.txt"), 1000)
max_rtt, max_bdp = tables.pair_metrics()
print(tables.format_routing_entries())
```

Match a receive with arriving data:

```python
from simai.flows import FlowTracker
from simai.flowtags import FlowTag

tracker = FlowTracker()
tracker.register_recv(tag=3, src=0, dst=1, count=100, msg_handler=print, arg="done")
tracker.notify_receiver_receive_data(0, 1, 100, FlowTag(tag_id=3))  # prints "done"
```

## What the package does not do

- It installs no command and has no program that runs a whole simulation;
  the pieces above are meant to be used from your own code.
- It has no event loop or clock. `LogGP`, `MemBus` and `DataSet` expect you
  to supply an object that keeps time and schedules their events.
- It does not simulate packets on the network: `FlowTracker` and
  `RoutingTables` do the bookkeeping and routing, but queue-pair completions
  must be reported to them by the caller.
- `MockNcclComm` does not build rings, trees or flow models itself; it reads
  them from the group object it is given.