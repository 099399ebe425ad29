"""Typed, aligned, bounds-checked communication buffer.

A CommBuffer lives in one of two modes:

- SIZING: no storage is attached; pack calls only advance the cursor so the
  caller learns how many bytes a message needs.
- TRANSFER: storage is attached; pack/unpack copy bytes and check bounds
  before touching memory.

The usual round is two passes over an identical sequence of pack calls:

    buf = CommBuffer()
    fill(buf)          # sizing pass
    buf.allocate()     # exactly buf.size bytes, cursor reset
    fill(buf)          # transfer pass
"""
from __future__ import annotations

import enum
from typing import Any, Callable, Optional

import numpy as np

from .errors import BufferOverflowError, NotSupportedError, PreconditionError
from .serialize import Codec, Record, Scalar, Serializable, infer_codec, reject_handle


class BufferMode(enum.Enum):
    SIZING = "sizing"
    TRANSFER = "transfer"


def align_pad(offset: int, size: int) -> int:
    """Bytes of padding so that `offset` becomes a multiple of `size`.

    Only power-of-two sizes are aligned; anything else is packed unaligned.
    """
    if size <= 1 or size & (size - 1):
        return 0
    r = offset % size
    return size - r if r else 0


class CommBuffer:
    __slots__ = ("_mem", "_ptr", "_end")

    def __init__(self, memory: Any = None) -> None:
        self._mem: Optional[memoryview] = None
        self._ptr = 0
        self._end = 0
        if memory is not None:
            self.attach(memory)

    # ---- state

    @property
    def mode(self) -> BufferMode:
        return BufferMode.SIZING if self._mem is None else BufferMode.TRANSFER

    @property
    def capacity(self) -> int:
        return self._end if self._mem is not None else 0

    @property
    def size(self) -> int:
        """Bytes consumed so far (attempted, when still sizing)."""
        return self._ptr

    @property
    def remaining(self) -> int:
        return self.capacity - self._ptr

    def buffer(self) -> Optional[memoryview]:
        return self._mem

    def getvalue(self) -> bytes:
        if self._mem is None:
            return b""
        return bytes(self._mem[: self._ptr])

    def attach(self, memory: Any, cursor: int = 0) -> "CommBuffer":
        mv = memoryview(memory)
        if mv.readonly:
            raise PreconditionError("CommBuffer storage must be writable")
        mv = mv.cast("B")
        if not 0 <= cursor <= len(mv):
            raise PreconditionError(f"cursor {cursor} outside storage of {len(mv)} bytes")
        self._mem = mv
        self._end = len(mv)
        self._ptr = int(cursor)
        return self

    def allocate(self, nbytes: Optional[int] = None) -> "CommBuffer":
        """Attach a zeroed block (default: the bytes consumed by the sizing pass)."""
        n = self._ptr if nbytes is None else int(nbytes)
        if n < 0:
            raise PreconditionError(f"cannot allocate {n} bytes")
        return self.attach(bytearray(n))

    def set_size(self, nbytes: int) -> None:
        """Drop any storage and place a sizing cursor at `nbytes`."""
        self._mem = None
        self._end = 0
        self._ptr = int(nbytes)

    def reset(self) -> None:
        self._ptr = 0

    # ---- aligned primitives

    def _reserve(self, itemsize: int, nbytes: int, direction: str) -> tuple[int, int]:
        pad = align_pad(self._ptr, itemsize)
        start = self._ptr + pad
        end = start + nbytes
        if self._mem is not None and end > self._end:
            raise BufferOverflowError(direction, end, self._end)
        return start, end

    def _require_storage(self, what: str) -> memoryview:
        if self._mem is None:
            raise PreconditionError(f"cannot {what} a CommBuffer that has no storage (sizing mode)")
        return self._mem

    def pack_array(self, values: Any, dtype: Any = None) -> "CommBuffer":
        """Pack `len(values)` contiguous values with one alignment pad, no count."""
        reject_handle(values)
        arr = np.ascontiguousarray(values, dtype=dtype)
        if arr.dtype.hasobject:
            raise PreconditionError("cannot pack an object array: elements are process-local references")
        start, end = self._reserve(arr.dtype.itemsize, arr.nbytes, "pack")
        if self._mem is not None:
            self._mem[self._ptr : start] = bytes(start - self._ptr)
            self._mem[start:end] = arr.tobytes()
        self._ptr = end
        return self

    def pack_bytes(self, data: bytes) -> "CommBuffer":
        start, end = self._reserve(1, len(data), "pack")
        if self._mem is not None:
            self._mem[start:end] = data
        self._ptr = end
        return self

    def unpack_array(self, dtype: Any, count: int) -> np.ndarray:
        dt = np.dtype(dtype)
        mem = self._require_storage("unpack")
        start, end = self._reserve(dt.itemsize, dt.itemsize * int(count), "unpack")
        if count:
            out = np.frombuffer(mem, dtype=dt, count=int(count), offset=start).copy()
        else:
            out = np.empty(0, dtype=dt)
        self._ptr = end
        return out

    def unpack_bytes(self, count: int) -> bytes:
        mem = self._require_storage("unpack")
        start, end = self._reserve(1, int(count), "unpack")
        self._ptr = end
        return bytes(mem[start:end])

    def peek_array(self, dtype: Any, count: int) -> np.ndarray:
        saved = self._ptr
        try:
            return self.unpack_array(dtype, count)
        finally:
            self._ptr = saved

    def skip_items(self, itemsize: int, count: int) -> "CommBuffer":
        _start, end = self._reserve(itemsize, itemsize * int(count), "unpack")
        self._ptr = end
        return self

    # ---- typed interface

    def pack(self, value: Any, codec: Optional[Codec] = None) -> "CommBuffer":
        if codec is None:
            if isinstance(value, np.ndarray):
                return self.pack_array(value)
            codec = infer_codec(value)
        codec.write(self, value)
        return self

    def unpack(self, codec: Any) -> Any:
        return _as_codec(codec).read(self)

    def peek(self, codec: Any) -> Any:
        codec = _as_codec(codec)
        if not codec.peekable:
            raise NotSupportedError(f"peek is not implemented for {codec!r}")
        saved = self._ptr
        try:
            return codec.read(self)
        finally:
            self._ptr = saved

    def skip(self, codec: Any, count: int = 1) -> "CommBuffer":
        _as_codec(codec).skip(self, count)
        return self

    def __repr__(self) -> str:
        return f"CommBuffer(mode={self.mode.value}, size={self.size}, capacity={self.capacity})"


def _as_codec(codec: Any) -> Codec:
    if isinstance(codec, Codec):
        return codec
    if isinstance(codec, type) and issubclass(codec, Serializable):
        return Record(codec)
    return Scalar(codec)


def pack_two_pass(fill: Callable[[CommBuffer], None], buf: Optional[CommBuffer] = None) -> CommBuffer:
    """Run `fill` as a sizing pass, allocate exactly, run it again for real.

    The returned buffer is reset so it can be read (or sent) from the start.
    """
    buf = buf if buf is not None else CommBuffer()
    if buf.mode is not BufferMode.SIZING:
        raise PreconditionError("pack_two_pass needs a buffer in sizing mode")
    buf.reset()
    fill(buf)
    nbytes = buf.size
    buf.allocate(nbytes)
    fill(buf)
    if buf.size != nbytes:
        raise PreconditionError(f"transfer pass packed {buf.size} bytes, sizing pass measured {nbytes}")
    buf.reset()
    return buf
