"""Shortest-path routing tables over a topology of hosts, switches and NVSwitches."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from enum import IntEnum
from typing import Deque, Dict, List, Mapping, Tuple

from .netconf import Topology

__all__ = ["NodeKind", "Interface", "RoutingTables"]

_UNLIMITED_BW = 0xFFFFFFFFFFFFFFFF


class NodeKind(IntEnum):
    HOST = 0
    SWITCH = 1
    NVSWITCH = 2


_KIND_NAMES = {
    NodeKind.HOST: "HOST",
    NodeKind.SWITCH: "SWITCH",
    NodeKind.NVSWITCH: "NVSWITCH",
}


@dataclass
class Interface:
    """The port a node uses to reach one neighbour."""

    idx: int = 0
    up: bool = False
    delay: int = 0
    bw: int = 0


class RoutingTables:
    """Next hops, delays and bandwidths between every node and every host.

    Routes are found breadth-first from each host, only passing through
    switches. Where equal-length paths exist, a path through an NVSwitch
    replaces any path that does not use one.
    """

    def __init__(
        self, node_kinds: Mapping[int, NodeKind], packet_payload_size: int = 1000
    ):
        self.node_kinds: Dict[int, NodeKind] = {
            node: NodeKind(kind) for node, kind in node_kinds.items()
        }
        self.packet_payload_size = packet_payload_size
        self.nbr2if: Dict[int, Dict[int, Interface]] = {
            node: {} for node in self.node_kinds
        }
        self.next_hop: Dict[int, Dict[int, List[int]]] = {}
        self.pair_delay: Dict[int, Dict[int, int]] = {}
        self.pair_tx_delay: Dict[int, Dict[int, int]] = {}
        self.pair_bw: Dict[int, Dict[int, int]] = {}
        self.pair_rtt: Dict[Tuple[int, int], int] = {}
        self.pair_bdp: Dict[Tuple[int, int], int] = {}

    @classmethod
    def from_topology(
        cls, topology: Topology, packet_payload_size: int = 1000
    ) -> "RoutingTables":
        """Build tables for *topology* and compute every route.

        Each node numbers its ports from 1 in the order its links appear.
        """
        tables = cls(
            {node: NodeKind(kind) for node, kind in enumerate(topology.node_types)},
            packet_payload_size,
        )
        next_port = {node: 1 for node in tables.node_kinds}
        for link in topology.links:
            delay = link.delay_ns
            bandwidth = link.bandwidth_bps
            tables.add_link(link.src, link.dst, next_port[link.src], delay, bandwidth)
            next_port[link.src] += 1
            tables.add_link(link.dst, link.src, next_port[link.dst], delay, bandwidth)
            next_port[link.dst] += 1
        tables.calculate_routes()
        return tables

    def add_link(self, a: int, b: int, index: int, delay: int, bandwidth: int) -> None:
        """Record that *a* reaches *b* through port *index*; one direction only."""
        for node in (a, b):
            if node not in self.node_kinds:
                raise ValueError(f"unknown node {node}")
        if bandwidth <= 0:
            raise ValueError(f"bandwidth must be positive: {bandwidth}")
        self.nbr2if[a][b] = Interface(idx=index, up=True, delay=delay, bw=bandwidth)

    def _kind(self, node: int) -> NodeKind:
        return self.node_kinds[node]

    def calculate_route(self, host: int) -> None:
        """Find routes from every reachable node towards *host*."""
        queue: Deque[int] = deque([host])
        dis = {host: 0}
        delay = {host: 0}
        tx_delay = {host: 0}
        bw = {host: _UNLIMITED_BW}
        while queue:
            now = queue.popleft()
            d = dis[now]
            for nxt, iface in sorted(self.nbr2if[now].items()):
                if not iface.up:
                    continue
                if nxt not in dis:
                    dis[nxt] = d + 1
                    delay[nxt] = delay[now] + iface.delay
                    tx_delay[nxt] = tx_delay[now] + (
                        self.packet_payload_size * 1_000_000_000 * 8 // iface.bw
                    )
                    bw[nxt] = min(bw[now], iface.bw)
                    if self._kind(nxt) in (NodeKind.SWITCH, NodeKind.NVSWITCH):
                        queue.append(nxt)
                if d + 1 != dis[nxt]:
                    continue
                table = self.next_hop.setdefault(nxt, {})
                hops = table.setdefault(host, [])
                via_nvswitch = any(self._kind(x) is NodeKind.NVSWITCH for x in hops)
                now_is_nvswitch = self._kind(now) is NodeKind.NVSWITCH
                if not via_nvswitch:
                    if now_is_nvswitch:
                        hops.clear()
                    hops.append(now)
                elif now_is_nvswitch:
                    hops.append(now)
                if self._kind(nxt) is NodeKind.HOST and not table.get(now):
                    table[now] = [now]
                    self.pair_bw.setdefault(nxt, {})[now] = iface.bw
                    self.pair_bw.setdefault(now, {})[nxt] = iface.bw
        for node, value in delay.items():
            self.pair_delay.setdefault(node, {})[host] = value
        for node, value in tx_delay.items():
            self.pair_tx_delay.setdefault(node, {})[host] = value
        for node, value in bw.items():
            self.pair_bw.setdefault(node, {})[host] = value

    def calculate_routes(self) -> None:
        """Compute routes towards every host."""
        for node, kind in sorted(self.node_kinds.items()):
            if kind is NodeKind.HOST:
                self.calculate_route(node)

    def take_down_link(self, a: int, b: int) -> bool:
        """Mark the link between *a* and *b* down and recompute all routes.

        Returns False if the link was already down.
        """
        try:
            forward = self.nbr2if[a][b]
            backward = self.nbr2if[b][a]
        except KeyError:
            raise ValueError(f"no link between {a} and {b}") from None
        if not forward.up:
            return False
        forward.up = backward.up = False
        self.next_hop.clear()
        self.calculate_routes()
        return True

    def pair_metrics(self) -> Tuple[int, int]:
        """Fill ``pair_rtt`` and ``pair_bdp`` for every host pair.

        Returns the largest round-trip time and the largest bandwidth-delay product.
        """
        hosts = [n for n, k in sorted(self.node_kinds.items()) if k is NodeKind.HOST]
        max_rtt = max_bdp = 0
        for i in hosts:
            for j in hosts:
                delay = self.pair_delay.get(i, {}).get(j, 0)
                tx_delay = self.pair_tx_delay.get(i, {}).get(j, 0)
                rtt = delay * 2 + tx_delay
                bandwidth = self.pair_bw.get(i, {}).get(j, 0)
                bdp = rtt * bandwidth // 1_000_000_000 // 8
                self.pair_rtt[(i, j)] = rtt
                self.pair_bdp[(i, j)] = bdp
                max_rtt = max(max_rtt, rtt)
                max_bdp = max(max_bdp, bdp)
        return max_rtt, max_bdp

    def format_routing_entries(self) -> str:
        """Return the routing tables of switches, NVSwitches and hosts as text."""
        grouped: Dict[NodeKind, Dict[int, Dict[int, List[Tuple[int, int]]]]] = {
            kind: {} for kind in NodeKind
        }
        for src in sorted(self.next_hop):
            for dst in sorted(self.next_hop[src]):
                for hop in self.next_hop[src][dst]:
                    port = self.nbr2if.get(src, {}).get(hop, Interface()).idx
                    grouped[self._kind(src)].setdefault(src, {}).setdefault(
                        dst, []
                    ).append((hop, port))

        sections = (
            (NodeKind.SWITCH, "    PRINT SWITCH ROUTING TABLE    "),
            (NodeKind.NVSWITCH, "    PRINT NVSWITCH ROUTING TABLE    "),
            (NodeKind.HOST, "    HOST ROUTING TABLE    "),
        )
        stars = "*" * 21
        lines: List[str] = []
        for kind, title in sections:
            lines.append(f"{stars}{title}{stars}")
            lines.extend(["", "", ""][:2])
            lines.append("")
            for src, table in grouped[kind].items():
                lines.append(
                    f"{_KIND_NAMES[kind]}: {src}'s routing entries are as follows:"
                )
                for dst, entries in table.items():
                    for hop, port in entries:
                        lines.append(
                            f"To {dst}[{_KIND_NAMES[self._kind(dst)]}] "
                            f"via {hop}[{_KIND_NAMES[self._kind(hop)]}] "
                            f"from port: {port}"
                        )
        return "\n".join(lines) + "\n"