"""Root-to-all broadcast of a packed CommBuffer.

Usage mirrors the two-pass buffer discipline:

    b = CommBroadcast(transport, root=0)
    if transport.rank == 0:
        b.send_buffer().pack("config-v1")   # sizing pass
    b.allocate_buffer()
    if transport.rank == 0:
        b.send_buffer().pack("config-v1")   # transfer pass
    b.communicate()
    value = b.recv_buffer().unpack(STRING)
"""
from __future__ import annotations

import enum

import numpy as np

from .core.buffer import BufferMode, CommBuffer
from .core.errors import PreconditionError
from .telemetry.logging import get_logger
from .telemetry.prom import Counter
from .transport.base import Transport


class BroadcastState(enum.Enum):
    SIZING = "sizing"
    ALLOCATED = "allocated"
    DONE = "done"


class CommBroadcast:
    def __init__(self, transport: Transport, root: int) -> None:
        if not 0 <= root < transport.size:
            raise PreconditionError(f"root rank {root} outside group of size {transport.size}")
        self._transport = transport
        self._root = int(root)
        self._send = CommBuffer()
        self._recv = CommBuffer()
        self._state = BroadcastState.SIZING
        self._log = get_logger("CommBroadcast", {"rank": transport.rank, "root": root})
        self._bytes = Counter("parcomm_bcast_bytes_total", "Bytes broadcast by CommBroadcast")

    @property
    def parallel_rank(self) -> int:
        return self._transport.rank

    @property
    def parallel_size(self) -> int:
        return self._transport.size

    @property
    def root_rank(self) -> int:
        return self._root

    @property
    def state(self) -> BroadcastState:
        return self._state

    @property
    def is_root(self) -> bool:
        return self._transport.rank == self._root

    def send_buffer(self) -> CommBuffer:
        """Buffer the root packs into; ignored on every other rank."""
        return self._send

    def recv_buffer(self) -> CommBuffer:
        return self._recv

    def allocate_buffer(self, local_flag: bool = False) -> bool:
        """Turn the sizing pass into real storage.

        By default the root's packed size is broadcast and every rank
        allocates that many bytes. With `local_flag` each rank trusts its own
        sizing pass on the receive buffer instead, and no size is broadcast.
        Returns True when a non-empty buffer was allocated.
        """
        if self._state is not BroadcastState.SIZING:
            raise PreconditionError(f"allocate_buffer called in state {self._state.value}")
        if self._send.mode is not BufferMode.SIZING or self._recv.mode is not BufferMode.SIZING:
            raise PreconditionError("broadcast buffers were attached before allocate_buffer")
        root_size = self._send.size if self.is_root else 0
        if local_flag:
            nbytes = root_size if self.is_root else self._recv.size
        else:
            size_msg = np.array([root_size], dtype=np.uint64)
            self._transport.bcast(size_msg.view(np.uint8), self._root)
            nbytes = int(size_msg[0])
        if self.is_root:
            self._send.allocate(root_size)
        self._recv.allocate(nbytes)
        self._state = BroadcastState.ALLOCATED
        self._log.debug("allocated %d byte broadcast buffer (local=%s)", nbytes, local_flag)
        return nbytes > 0

    def communicate(self) -> None:
        if self._state is not BroadcastState.ALLOCATED:
            raise PreconditionError(f"communicate called in state {self._state.value}")
        mem = self._recv.buffer()
        assert mem is not None
        if self.is_root:
            src = self._send.buffer()
            assert src is not None
            if len(src) != len(mem):
                raise PreconditionError(
                    f"root send buffer holds {len(src)} bytes but receive buffers hold {len(mem)}"
                )
            mem[:] = src
        self._transport.bcast(mem, self._root)
        self._recv.reset()
        self._bytes.inc(float(len(mem)))
        self._state = BroadcastState.DONE

    def restart(self) -> None:
        """Drop both buffers and start a new sizing pass."""
        self._send = CommBuffer()
        self._recv = CommBuffer()
        self._state = BroadcastState.SIZING
