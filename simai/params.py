"""Command-line and bus-bandwidth parameters for the analytical simulator."""

from __future__ import annotations

import re
import sys
import threading
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Callable, ClassVar, Dict, List, Optional, Sequence

__all__ = [
    "ModeType",
    "GPUType",
    "NetworkParam",
    "UserParam",
    "ArgumentError",
    "parse_busbw_yaml",
    "help_text",
    "default_result_name",
]


class ArgumentError(Exception):
    """Raised when the command line cannot be understood."""


class ModeType(Enum):
    NONE = auto()
    ASTRA_SIM = auto()
    MOCKNCCL = auto()
    ANALYTICAL = auto()


class GPUType(Enum):
    NONE = auto()
    A100 = auto()
    A800 = auto()
    H100 = auto()
    H800 = auto()


@dataclass
class NetworkParam:
    """Network shape and per-collective bus bandwidths."""

    node_num: int = 0
    switch_num: int = 0
    link_num: int = 0
    trace_num: int = 0
    nvswitch_num: int = 0
    gpus_per_server: int = 0
    nics_per_server: int = 0
    nvlink_bw: int = 0
    nic_bw: int = 0
    gpu_type: GPUType = GPUType.NONE
    tp_ar: float = -1.0
    tp_ag: float = -1.0
    tp_rs: float = -1.0
    tp_ata: float = -1.0
    dp_ar: float = -1.0
    dp_ag: float = -1.0
    dp_rs: float = -1.0
    dp_ata: float = -1.0
    ep_ar: float = -1.0
    ep_ag: float = -1.0
    ep_rs: float = -1.0
    ep_ata: float = -1.0
    dp_overlap_ratio: float = 0.0
    tp_overlap_ratio: float = 0.0
    ep_overlap_ratio: float = 0.0
    pp_overlap_ratio: float = 0.0
    nvswitches: List[int] = field(default_factory=list)
    all_gpus: List[List[int]] = field(default_factory=list)
    visual: int = 0


_INT_PREFIX = re.compile(r"\s*[+-]?\d+")
_FLOAT_PREFIX = re.compile(
    r"\s*[+-]?(?:(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?|inf(?:inity)?|nan)",
    re.IGNORECASE,
)


def _leading_int(text: str) -> int:
    match = _INT_PREFIX.match(text)
    if match is None:
        raise ValueError(f"not an integer: {text!r}")
    return int(match.group(0))


def _leading_float(text: str) -> float:
    match = _FLOAT_PREFIX.match(text)
    if match is None:
        raise ValueError(f"not a number: {text!r}")
    return float(match.group(0))


_SECTION_PREFIX = {"TP": "tp", "DP": "dp", "EP": "ep"}
_KEY_SUFFIX = {
    "allreduce": "ar",
    "allgather": "ag",
    "reducescatter": "rs",
    "alltoall": "ata",
}


def parse_busbw_yaml(params: NetworkParam, filename: str | Path) -> None:
    """Read per-group bus bandwidths from a small YAML-like file into *params*.

    The first line of the file is ignored. Sections ``TP``, ``DP`` and ``EP``
    hold ``allreduce``, ``allgather``, ``reducescatter`` and ``alltoall``
    entries; ``null`` values leave the current setting alone.
    """
    with open(filename, encoding="utf-8") as handle:
        lines = handle.read().split("\n")
    section = ""
    for raw in lines[1:]:
        line = raw.strip(" ")
        if not line or line.startswith("#"):
            continue
        if line.endswith(":"):
            section = line[:-1]
            continue
        key, sep, rest = line.partition(":")
        tokens = rest.split()
        if not sep or not tokens:
            continue
        key = key.rstrip(" ").split(",", 1)[0]
        value_text = tokens[0]
        if value_text == "null":
            continue
        value = _leading_float(value_text)
        prefix = _SECTION_PREFIX.get(section)
        suffix = _KEY_SUFFIX.get(key)
        if prefix and suffix:
            setattr(params, f"{prefix}_{suffix}", value)


_BANNER = (
    " ____  _              _    ___        _                _       _   _           _ ",
    r"/ ___|(_)_ __ ___    / \  |_ _|      / \   _ __   __ _| |_   _| |_(_) ___ __ _| |",
    r"\___ \| | '_ ' _ \  / _ \  | |_____ / _ \ | '_ \ / _' | | | | | __| |/ __/ _' | |",
    r" ___) | | | | | | |/ ___ \ | |_____/ ___ \| | | | (_| | | |_| | |_| | (_| (_| | |",
    r"|____/|_|_| |_| |_/_/   \_\___|   /_/   \_\_| |_|\__,_|_|\__, |\__|_|\___\__,_|_|",
    "                                                           |___/                   ",
)

_OPTION_LINES = (
    "-w,       --workload            Workloads, must set",
    "-g,       --gpus                Number of GPUs, default 1",
    "-g_p_s,   --gpus-per-server     GPUs per server",
    "-r,       --result              Output results path, default: ./results/",
    "-busbw,   --bus-bandwidth       Bus bandwidth file, must set",
    "-v,       --visual              Enable visual output (Default disable)",
    "-dp_o,    --dp-overlap-ratio    DP overlap ratio [float: 0.0-1.0] (Default: 0.0)",
    "-ep_o,    --ep-overlap-ratio    EP overlap ratio [float: 0.0-1.0] (Default: 0.0)",
    "-tp_o,    --tp-overlap-ratio    TP overlap ratio [float: 0.0-1.0] (Default: 0.0)",
    "-pp_o,    --pp-overlap-ratio    PP overlap ratio [float: 0.0-1.0] (Default: 0.0)",
)


def help_text() -> str:
    """Return the usage message."""
    return "\n".join(_BANNER + _OPTION_LINES) + "\n"


_WORKLOAD_PARAM = re.compile(r"(world_size|tp|pp|ep|gbs|mbs|seq)(\d+)")


def default_result_name(
    workload: str, gpus_per_server: int, dp_overlap_ratio: float
) -> str:
    """Derive a result file prefix from the parameters encoded in a workload name."""
    model_info = workload.rsplit("/", 1)[-1]
    model_name = ""
    pos = model_info.find("world_size")
    if pos > 0:
        model_name = model_info[: pos - 1]
    elif pos == 0:
        model_name = model_info

    values: Dict[str, int] = dict.fromkeys(
        ("world_size", "tp", "pp", "ep", "gbs", "mbs", "seq"), 0
    )
    for match in _WORKLOAD_PARAM.finditer(model_info):
        values[match.group(1)] = int(match.group(2))

    if values["tp"] * values["pp"] == 0:
        raise ArgumentError(
            f"workload name {workload!r} does not give non-zero tp and pp"
        )
    dp = values["world_size"] // (values["tp"] * values["pp"])
    if dp * values["mbs"] == 0:
        raise ArgumentError(
            f"workload name {workload!r} does not give a usable dp and mbs"
        )
    ga = int(values["gbs"] / (dp * values["mbs"]))
    return (
        f"{model_name}-tp{values['tp']}-pp{values['pp']}-dp{dp}-ga{ga}"
        f"-ep{values['ep']}-NVL{gpus_per_server}-DP{dp_overlap_ratio:g}-"
    )


@dataclass
class UserParam:
    """Run-wide user settings, usually shared through :meth:`get_instance`."""

    thread: int = 1
    gpus: List[int] = field(default_factory=list)
    workload: str = ""
    res: str = "None"
    comm_scale: int = 1
    mode: ModeType = ModeType.MOCKNCCL
    network_param: NetworkParam = field(default_factory=NetworkParam)

    _instance: ClassVar[Optional["UserParam"]] = None
    _lock: ClassVar[threading.Lock] = threading.Lock()

    @classmethod
    def get_instance(cls) -> "UserParam":
        """Return the shared instance, creating it on first use."""
        with cls._lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    def _option_setters(self) -> Dict[str, Callable[[str], None]]:
        net = self.network_param

        def set_attr(target: object, name: str, convert: Callable[[str], object]):
            return lambda value: setattr(target, name, convert(value))

        table = {
            ("-w", "--workload"): set_attr(self, "workload", str),
            ("-g", "--gpus"): lambda value: self.gpus.append(_leading_int(value)),
            ("-r", "--result"): set_attr(self, "res", str),
            ("-g_p_s", "--gpus-per-server"): set_attr(
                net, "gpus_per_server", _leading_int
            ),
            ("-busbw", "--bus-bandwidth"): lambda value: parse_busbw_yaml(net, value),
            ("-dp_o", "--dp-overlap-ratio"): set_attr(
                net, "dp_overlap_ratio", _leading_float
            ),
            ("-tp_o", "--tp-overlap-ratio"): set_attr(
                net, "tp_overlap_ratio", _leading_float
            ),
            ("-ep_o", "--ep-overlap-ratio"): set_attr(
                net, "ep_overlap_ratio", _leading_float
            ),
            ("-pp_o", "--pp-overlap-ratio"): set_attr(
                net, "pp_overlap_ratio", _leading_float
            ),
            ("-v", "--visual"): set_attr(net, "visual", _leading_int),
        }
        return {name: setter for names, setter in table.items() for name in names}

    def parse_args(self, argv: Optional[Sequence[str]] = None) -> bool:
        """Apply command-line options (program name excluded).

        Returns False when help was requested and printed, True otherwise.
        Raises :class:`ArgumentError` on a missing value, an unknown option
        or a value that cannot be read.
        """
        if argv is None:
            argv = sys.argv[1:]
        setters = self._option_setters()
        args = iter(argv)
        for arg in args:
            if arg in ("-h", "--help"):
                print(help_text(), end="")
                return False
            setter = setters.get(arg)
            if setter is None:
                raise ArgumentError(f"Unknown option '{arg}'.")
            value = next(args, None)
            if value is None:
                raise ArgumentError(f"Missing value for argument '{arg}'.")
            try:
                setter(value)
            except ValueError as exc:
                raise ArgumentError(f"Invalid value for '{arg}': {value!r}") from exc

        net = self.network_param
        if self.gpus:
            if net.gpus_per_server == 0:
                raise ArgumentError("--gpus-per-server must be set to a non-zero value")
            net.nvswitch_num = self.gpus[0] // net.gpus_per_server
            net.switch_num = 120 + net.gpus_per_server
            net.node_num = net.nvswitch_num + net.switch_num + self.gpus[0]

        if self.res == "None" or self.res.endswith("/"):
            name = default_result_name(
                self.workload, net.gpus_per_server, net.dp_overlap_ratio
            )
            self.res = self.res + name if self.res.endswith("/") else name
        return True