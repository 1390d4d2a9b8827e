"""Bookkeeping that matches network sends and receives to the flows that carry them."""

from __future__ import annotations

import logging
import os
import re
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .flowtags import ChunkTracker, FlowTag, Task

__all__ = ["FlowTracker", "send_latency_ns"]

_log = logging.getLogger(__name__)

_Handler = Callable[[Any], Any]
_Key = Tuple[int, int, int]

_FIRST_PORT = 10000
_DEFAULT_SEND_LATENCY = 6000
_LEADING_INT = re.compile(r"\s*[+-]?\d+")


def send_latency_ns(environ: Optional[Mapping[str, str]] = None) -> int:
    """Return the send start latency in nanoseconds.

    ``AS_SEND_LAT`` gives the latency in microseconds (6000 when unset).
    Raises :class:`ValueError` when it does not start with an integer.
    """
    if environ is None:
        environ = os.environ
    value = environ.get("AS_SEND_LAT")
    latency = _DEFAULT_SEND_LATENCY
    if value is not None:
        match = _LEADING_INT.match(value)
        if match is None:
            raise ValueError(f"AS_SEND_LAT is not an integer: {value!r}")
        latency = int(match.group(0))
    return latency * 1000


def _attach_tag(arg: Any, flow_tag: FlowTag) -> None:
    if arg is not None and hasattr(arg, "flow_tag"):
        arg.flow_tag = flow_tag


class FlowTracker:
    """Pairs posted sends and receives with the data the network delivers.

    Receives may be posted before or after their data arrives; data may
    arrive in pieces smaller or larger than a posted receive. Each flow is
    split into chunks, one per queue pair, and a handler runs only once every
    chunk of its flow has completed.
    """

    def __init__(self) -> None:
        self.sent: Dict[_Key, Task] = {}
        self.expected_recv: Dict[_Key, Task] = {}
        self.arrived: Dict[_Key, int] = {}
        self.node_bytes: Dict[Tuple[int, int], int] = {}
        self.receiver_pending: Dict[Tuple[Tuple[int, int], int], FlowTag] = {}
        self.sender_src_port: Dict[_Key, FlowTag] = {}
        self.port_number: Dict[Tuple[int, int], int] = {}
        self._send_chunks = ChunkTracker()
        self._recv_chunks = ChunkTracker()

    def register_send(
        self, tag: int, src: int, dst: int, count: int, msg_handler: _Handler, arg: Any = None
    ) -> Task:
        """Post a send whose handler runs when *count* bytes have left *src*."""
        task = Task(src=src, dest=dst, type=0, count=count, arg=arg, msg_handler=msg_handler)
        self.sent[(tag, src, dst)] = task
        return task

    def _take_pending(self, receiver: int, sender: int, tag: int, arg: Any) -> None:
        pending = self.receiver_pending.pop(((receiver, sender), tag), None)
        if pending is not None:
            _attach_tag(arg, pending)

    def register_recv(
        self, tag: int, src: int, dst: int, count: int, msg_handler: _Handler, arg: Any = None
    ) -> bool:
        """Post a receive of *count* bytes at *dst* from *src*.

        Returns True if data already arrived and the handler has run.
        """
        key = (tag, src, dst)
        task = Task(src=src, dest=dst, type=1, count=count, arg=arg, msg_handler=msg_handler)
        _log.debug("register receive src %d dst %d tag %d count %d", src, dst, tag, count)
        if key in self.arrived:
            available = self.arrived[key]
            if available >= count:
                if available == count:
                    del self.arrived[key]
                else:
                    self.arrived[key] = available - count
                self._take_pending(dst, src, tag, arg)
                msg_handler(arg)
                return True
            del self.arrived[key]
            task.count -= available
            self.expected_recv[key] = task
            return False
        if key not in self.expected_recv:
            self.expected_recv[key] = task
        else:
            _log.debug(
                "receive already posted src %d dst %d tag %d expected %d",
                src, dst, tag, self.expected_recv[key].count,
            )
        return False

    def start_flow(
        self, src: int, dst: int, size: int, flow_tag: FlowTag, qps_per_connection: int = 1
    ) -> List[Tuple[int, int]]:
        """Split a flow over queue pairs; return ``(port, chunk size)`` for each."""
        if qps_per_connection < 1:
            raise ValueError(f"qps_per_connection must be at least 1: {qps_per_connection}")
        per_qp = (size + qps_per_connection - 1) // qps_per_connection
        left = size
        chunks = []
        for _ in range(qps_per_connection):
            chunk = min(per_qp, left)
            left -= chunk
            port = self.port_number.get((src, dst), _FIRST_PORT)
            self.port_number[(src, dst)] = port + 1
            self.sender_src_port[(port, src, dst)] = flow_tag
            chunk = chunk or 1
            flow_id = flow_tag.current_flow_id
            self._send_chunks.expect(flow_id, src, dst)
            self._recv_chunks.expect(flow_id, src, dst)
            _log.debug(
                "send flow %d -> %d tag %d flow %d port %d size %d",
                src, dst, flow_tag.tag_id, flow_id, port, chunk,
            )
            chunks.append((port, chunk))
        return chunks

    def _count(self, node: int, direction: int, size: int) -> None:
        key = (node, direction)
        self.node_bytes[key] = self.node_bytes.get(key, 0) + size

    def notify_receiver_receive_data(
        self, sender: int, receiver: int, message_size: int, flow_tag: FlowTag
    ) -> bool:
        """Deliver *message_size* bytes; return True if a posted receive completed."""
        tag = flow_tag.tag_id
        key = (tag, sender, receiver)
        delivered = False
        task = self.expected_recv.get(key)
        if task is not None:
            if message_size >= task.count:
                if message_size > task.count:
                    self.arrived[key] = message_size - task.count
                del self.expected_recv[key]
                _attach_tag(task.arg, flow_tag)
                task.msg_handler(task.arg)
                delivered = True
            else:
                task.count -= message_size
        else:
            self.receiver_pending[((receiver, sender), tag)] = flow_tag
            self.arrived[key] = self.arrived.get(key, 0) + message_size
        self._count(receiver, 1, message_size)
        return delivered

    def notify_sender_sending_finished(
        self, sender: int, receiver: int, message_size: int, flow_tag: FlowTag
    ) -> bool:
        """Report *message_size* bytes sent; return True if the posted send completed."""
        key = (flow_tag.tag_id, sender, receiver)
        task = self.sent.get(key)
        if task is None:
            _log.error(
                "no send posted from %d to %d for %d bytes", sender, receiver, message_size
            )
            return False
        _attach_tag(task.arg, flow_tag)
        if task.count != message_size:
            _log.error(
                "send size mismatch from %d to %d: posted %d, sent %d",
                sender, receiver, task.count, message_size,
            )
            return False
        del self.sent[key]
        self._count(sender, 0, message_size)
        task.msg_handler(task.arg)
        return True

    def qp_finished(self, port: int, src: int, dst: int, size: int) -> bool:
        """A queue pair finished delivering *size* bytes at *dst*."""
        key = (port, src, dst)
        try:
            flow_tag = self.sender_src_port.pop(key)
        except KeyError:
            raise KeyError(f"no flow started on port {port} from {src} to {dst}") from None
        flow_id = flow_tag.current_flow_id
        self._recv_chunks.add(flow_id, src, dst, size)
        total = self._recv_chunks.complete(flow_id, src, dst)
        if total is None:
            return False
        return self.notify_receiver_receive_data(src, dst, total, flow_tag)

    def send_finished(self, port: int, src: int, dst: int, size: int) -> bool:
        """A queue pair finished sending *size* bytes from *src*."""
        flow_tag = self.sender_src_port.get((port, src, dst), FlowTag())
        flow_id = flow_tag.current_flow_id
        self._send_chunks.add(flow_id, src, dst, size)
        total = self._send_chunks.complete(flow_id, src, dst)
        if total is None:
            return False
        return self.notify_sender_sending_finished(src, dst, total, flow_tag)

    def summary(self) -> str:
        """Return the bytes sent and received by each node, one line each."""
        lines = []
        for (node, direction), total in sorted(self.node_bytes.items()):
            if direction == 0:
                lines.append(f"All data sent from node {node} is {total}")
            else:
                lines.append(f"All data received by node {node} is {total}")
        return "\n".join(lines) + ("\n" if lines else "")