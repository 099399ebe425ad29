"""Buffer and serialization core."""

from .buffer import BufferMode, CommBuffer, pack_two_pass
from .errors import (
    BufferOverflowError,
    NotSupportedError,
    ParcommError,
    PreconditionError,
    TransportError,
)

__all__ = [
    "BufferMode",
    "CommBuffer",
    "pack_two_pass",
    "ParcommError",
    "PreconditionError",
    "BufferOverflowError",
    "NotSupportedError",
    "TransportError",
]
