"""Common exceptions for parcomm."""
from __future__ import annotations


class ParcommError(Exception):
    pass


class PreconditionError(ParcommError):
    pass


class BufferOverflowError(ParcommError):
    """A pack/unpack/skip would have crossed the end of the buffer.

    Always means the sizing pass and the transfer pass diverged.
    """

    def __init__(self, direction: str, needed: int, capacity: int) -> None:
        self.direction = direction
        self.needed = int(needed)
        self.capacity = int(capacity)
        super().__init__(
            f"CommBuffer {direction} overflow: needs {self.needed} bytes, capacity {self.capacity}"
        )


class NotSupportedError(ParcommError):
    pass


class TransportError(ParcommError):
    pass
