"""Network configuration and topology files for the packet-level backend."""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Union

from .params import GPUType

__all__ = [
    "NetworkConfig",
    "Link",
    "Topology",
    "QlenDistribution",
    "read_network_config",
    "output_file_name",
    "read_topology",
    "node_id_to_ip",
    "ip_to_node_id",
]


@dataclass
class NetworkConfig:
    """Settings read from a network configuration file."""

    topology_file: str = ""
    cc_mode: int = 1
    enable_qcn: bool = True
    use_dynamic_pfc_threshold: bool = True
    packet_payload_size: int = 1000
    l2_chunk_size: int = 0
    l2_ack_interval: int = 0
    pause_time: float = 5.0
    simulator_stop_time: float = 3.01
    data_rate: str = ""
    link_delay: str = ""
    flow_file: str = ""
    trace_file: str = ""
    trace_output_file: str = ""
    fct_output_file: str = "fct.txt"
    pfc_output_file: str = "pfc.txt"
    send_output_file: str = "send.txt"
    alpha_resume_interval: float = 55.0
    rp_timer: float = 0.0
    ewma_gain: float = 0.0
    rate_decrease_interval: float = 4.0
    fast_recovery_times: int = 5
    rate_ai: str = ""
    rate_hai: str = ""
    min_rate: str = "100Mb/s"
    dctcp_rate_ai: str = "1000Mb/s"
    clamp_target_rate: bool = False
    l2_back_to_zero: bool = False
    error_rate_per_link: float = 0.0
    has_win: int = 1
    global_t: int = 1
    mi_thresh: int = 5
    var_win: bool = False
    fast_react: bool = True
    multi_rate: bool = True
    sample_feedback: bool = False
    pint_log_base: float = 1.05
    pint_prob: float = 1.0
    u_target: float = 0.95
    int_multi: int = 1
    rate_bound: bool = True
    nic_total_pause_time: int = 0
    ack_high_prio: int = 0
    link_down_time: int = 0
    link_down_a: int = 0
    link_down_b: int = 0
    enable_trace: int = 1
    buffer_size: int = 16
    qp_mon_interval: int = 100
    bw_mon_interval: int = 10000
    qlen_mon_interval: int = 10000
    mon_start: int = 0
    mon_end: int = 2100000000
    qlen_mon_file: str = ""
    bw_mon_file: str = ""
    rate_mon_file: str = ""
    cnp_mon_file: str = ""
    rate2kmax: Dict[int, int] = field(default_factory=dict)
    rate2kmin: Dict[int, int] = field(default_factory=dict)
    rate2pmax: Dict[int, float] = field(default_factory=dict)


def _flag(text: str) -> bool:
    return bool(int(text))


_SIMPLE_KEYS: Dict[str, tuple] = {
    "ENABLE_QCN": ("enable_qcn", _flag),
    "USE_DYNAMIC_PFC_THRESHOLD": ("use_dynamic_pfc_threshold", _flag),
    "CLAMP_TARGET_RATE": ("clamp_target_rate", _flag),
    "PAUSE_TIME": ("pause_time", float),
    "DATA_RATE": ("data_rate", str),
    "LINK_DELAY": ("link_delay", str),
    "PACKET_PAYLOAD_SIZE": ("packet_payload_size", int),
    "L2_CHUNK_SIZE": ("l2_chunk_size", int),
    "L2_ACK_INTERVAL": ("l2_ack_interval", int),
    "L2_BACK_TO_ZERO": ("l2_back_to_zero", _flag),
    "FLOW_FILE": ("flow_file", str),
    "TRACE_FILE": ("trace_file", str),
    "TRACE_OUTPUT_FILE": ("trace_output_file", str),
    "SIMULATOR_STOP_TIME": ("simulator_stop_time", float),
    "ALPHA_RESUME_INTERVAL": ("alpha_resume_interval", float),
    "RP_TIMER": ("rp_timer", float),
    "EWMA_GAIN": ("ewma_gain", float),
    "FAST_RECOVERY_TIMES": ("fast_recovery_times", int),
    "RATE_AI": ("rate_ai", str),
    "RATE_HAI": ("rate_hai", str),
    "ERROR_RATE_PER_LINK": ("error_rate_per_link", float),
    "CC_MODE": ("cc_mode", int),
    "RATE_DECREASE_INTERVAL": ("rate_decrease_interval", float),
    "MIN_RATE": ("min_rate", str),
    "FCT_OUTPUT_FILE": ("fct_output_file", str),
    "HAS_WIN": ("has_win", int),
    "MI_THRESH": ("mi_thresh", int),
    "VAR_WIN": ("var_win", _flag),
    "FAST_REACT": ("fast_react", _flag),
    "U_TARGET": ("u_target", float),
    "INT_MULTI": ("int_multi", int),
    "RATE_BOUND": ("rate_bound", _flag),
    "ACK_HIGH_PRIO": ("ack_high_prio", int),
    "DCTCP_RATE_AI": ("dctcp_rate_ai", str),
    "NIC_TOTAL_PAUSE_TIME": ("nic_total_pause_time", int),
    "PFC_OUTPUT_FILE": ("pfc_output_file", str),
    "ENABLE_TRACE": ("enable_trace", int),
    "BUFFER_SIZE": ("buffer_size", int),
    "MON_START": ("mon_start", int),
    "MON_END": ("mon_end", int),
    "QP_MON_INTERVAL": ("qp_mon_interval", int),
    "BW_MON_INTERVAL": ("bw_mon_interval", int),
    "QLEN_MON_INTERVAL": ("qlen_mon_interval", int),
    "MULTI_RATE": ("multi_rate", _flag),
    "SAMPLE_FEEDBACK": ("sample_feedback", _flag),
    "PINT_LOG_BASE": ("pint_log_base", float),
    "PINT_PROB": ("pint_prob", float),
}

_MONITOR_KEYS = {
    "QLEN_MON_FILE": "qlen_mon_file",
    "BW_MON_FILE": "bw_mon_file",
    "RATE_MON_FILE": "rate_mon_file",
    "CNP_MON_FILE": "cnp_mon_file",
}

_MAP_KEYS = {
    "KMAX_MAP": ("rate2kmax", int),
    "KMIN_MAP": ("rate2kmin", int),
    "PMAX_MAP": ("rate2pmax", float),
}


class _Tokens:
    """Whitespace-separated tokens with conversion and clear errors."""

    def __init__(self, text: str, source: str):
        self._iter: Iterator[str] = iter(text.split())
        self._source = source

    def __iter__(self) -> Iterator[str]:
        return self._iter

    def take(self, what: str, convert: Callable[[str], object] = str):
        token = next(self._iter, None)
        if token is None:
            raise ValueError(f"{self._source}: missing value for {what}")
        try:
            return convert(token)
        except ValueError as exc:
            raise ValueError(f"{self._source}: bad value {token!r} for {what}") from exc


def output_file_name(config_file: str, output_file: str) -> str:
    """Name a monitor output after its config file.

    The last four characters of *output_file* (its extension) are replaced by
    what follows the ``/config`` part of *config_file*'s final path component.
    """
    idx = config_file.rfind("/")
    start = idx + 7
    if start > len(config_file):
        raise ValueError(f"config file name too short: {config_file!r}")
    stem = output_file[: len(output_file) - 4] if len(output_file) >= 4 else output_file
    return stem + config_file[start:]


def read_network_config(
    topology_file: Union[str, Path], conf_file: Union[str, Path]
) -> NetworkConfig:
    """Read a ``KEY value`` configuration file; unknown words are skipped."""
    conf_name = str(conf_file)
    with open(conf_file, encoding="utf-8") as handle:
        tokens = _Tokens(handle.read(), conf_name)
    config = NetworkConfig(topology_file=str(topology_file))
    for key in tokens:
        if key in _SIMPLE_KEYS:
            attr, convert = _SIMPLE_KEYS[key]
            setattr(config, attr, tokens.take(key, convert))
        elif key in _MONITOR_KEYS:
            name = tokens.take(key)
            setattr(config, _MONITOR_KEYS[key], output_file_name(conf_name, name))
        elif key in _MAP_KEYS:
            attr, convert = _MAP_KEYS[key]
            table = getattr(config, attr)
            for _ in range(tokens.take(key, int)):
                rate = tokens.take(key, int)
                table[rate] = tokens.take(key, convert)
        elif key == "GLOBAL_T":
            tokens.take(key, int)
            config.global_t = 1
        elif key == "LINK_DOWN":
            config.link_down_time = tokens.take(key, int)
            config.link_down_a = tokens.take(key, int)
            config.link_down_b = tokens.take(key, int)
    return config


_RATE_UNITS = {
    "bps": 1, "b/s": 1,
    "kbps": 10**3, "kb/s": 10**3,
    "mbps": 10**6, "mb/s": 10**6,
    "gbps": 10**9, "gb/s": 10**9,
    "tbps": 10**12, "tb/s": 10**12,
    "kibps": 2**10, "kib/s": 2**10,
    "mibps": 2**20, "mib/s": 2**20,
    "gibps": 2**30, "gib/s": 2**30,
}

_TIME_UNITS = {
    "s": 10**9, "ms": 10**6, "us": 10**3, "ns": 1,
    "min": 60 * 10**9, "h": 3600 * 10**9,
}

_NUMBER_UNIT = re.compile(r"^([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)\s*([A-Za-z/]*)$")


def _split_quantity(text: str):
    match = _NUMBER_UNIT.match(text.strip())
    if match is None:
        raise ValueError(f"not a quantity: {text!r}")
    return float(match.group(1)), match.group(2)


@dataclass
class Link:
    """A link of the topology between two node ids."""

    src: int
    dst: int
    data_rate: str
    link_delay: str
    error_rate: float = 0.0

    @property
    def bandwidth_bps(self) -> int:
        """The data rate in bits per second."""
        value, unit = _split_quantity(self.data_rate)
        if unit.endswith("Bps") or unit.endswith("B/s"):
            factor = 8 * _RATE_UNITS[unit[:-3].lower() + "bps"]
        else:
            try:
                factor = _RATE_UNITS[(unit or "bps").lower()]
            except KeyError:
                raise ValueError(f"unknown rate unit in {self.data_rate!r}") from None
        return round(value * factor)

    @property
    def delay_ns(self) -> int:
        """The propagation delay in nanoseconds."""
        value, unit = _split_quantity(self.link_delay)
        try:
            factor = _TIME_UNITS[unit or "s"]
        except KeyError:
            raise ValueError(f"unknown time unit in {self.link_delay!r}") from None
        return round(value * factor)


@dataclass
class Topology:
    """Nodes and links of a cluster.

    ``node_types`` holds 0 for a host, 1 for a switch and 2 for an NVSwitch.
    """

    node_num: int
    gpus_per_server: int
    nvswitch_num: int
    switch_num: int
    link_num: int
    gpu_type: GPUType
    node_types: List[int] = field(default_factory=list)
    links: List[Link] = field(default_factory=list)

    @property
    def hosts(self) -> List[int]:
        return [node for node, kind in enumerate(self.node_types) if kind == 0]

    @property
    def switches(self) -> List[int]:
        return [node for node, kind in enumerate(self.node_types) if kind == 1]

    @property
    def nvswitches(self) -> List[int]:
        return [node for node, kind in enumerate(self.node_types) if kind == 2]


_GPU_TYPES = {
    "A100": GPUType.A100,
    "A800": GPUType.A800,
    "H100": GPUType.H100,
    "H800": GPUType.H800,
}


def read_topology(path: Union[str, Path]) -> Topology:
    """Read a topology file: header, NVSwitch ids, switch ids, then links."""
    with open(path, encoding="utf-8") as handle:
        tokens = _Tokens(handle.read(), str(path))
    node_num = tokens.take("node count", int)
    gpus_per_server = tokens.take("GPUs per server", int)
    nvswitch_num = tokens.take("NVSwitch count", int)
    switch_num = tokens.take("switch count", int)
    link_num = tokens.take("link count", int)
    gpu_type = _GPU_TYPES.get(tokens.take("GPU type"), GPUType.NONE)

    node_types = [0] * node_num
    for kind, count, what in ((2, nvswitch_num, "NVSwitch id"), (1, switch_num, "switch id")):
        for _ in range(count):
            node = tokens.take(what, int)
            if not 0 <= node < node_num:
                raise ValueError(f"{path}: {what} {node} out of range")
            node_types[node] = kind

    links = []
    for _ in range(link_num):
        src = tokens.take("link source", int)
        dst = tokens.take("link destination", int)
        for node in (src, dst):
            if not 0 <= node < node_num:
                raise ValueError(f"{path}: link endpoint {node} out of range")
        rate = tokens.take("link rate")
        delay = tokens.take("link delay")
        error_rate = tokens.take("link error rate", float)
        links.append(Link(src, dst, rate, delay, error_rate))

    return Topology(
        node_num=node_num,
        gpus_per_server=gpus_per_server,
        nvswitch_num=nvswitch_num,
        switch_num=switch_num,
        link_num=link_num,
        gpu_type=gpu_type,
        node_types=node_types,
        links=links,
    )


def node_id_to_ip(node_id: int) -> ipaddress.IPv4Address:
    """Return the address assigned to a node: 11.x.y.1 encoding the id."""
    if not 0 <= node_id <= 0xFFFF:
        raise ValueError(f"node id out of range: {node_id}")
    return ipaddress.IPv4Address(
        0x0B000001 + (node_id // 256) * 0x00010000 + (node_id % 256) * 0x00000100
    )


def ip_to_node_id(ip: Union[int, str, ipaddress.IPv4Address]) -> int:
    """Return the node id encoded in an address from :func:`node_id_to_ip`."""
    return (int(ipaddress.IPv4Address(ip)) >> 8) & 0xFFFF


@dataclass
class QlenDistribution:
    """Histogram of queue lengths in 1000-byte buckets."""

    cnt: List[int] = field(default_factory=list)

    def add(self, qlen: int) -> None:
        kb = qlen // 1000
        if len(self.cnt) < kb + 1:
            self.cnt.extend([0] * (kb + 1 - len(self.cnt)))
        self.cnt[kb] += 1