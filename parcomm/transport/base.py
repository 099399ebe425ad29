"""Transport base interfaces.

The exchange protocols only need point-to-point send, non-blocking receive,
wait, barrier and broadcast on contiguous byte buffers.
"""
from __future__ import annotations

from typing import Any, Protocol, Sequence


class Request(Protocol):
    """Handle for an in-flight non-blocking operation."""


class Transport(Protocol):
    """Protocol for a fixed process group."""

    @property
    def rank(self) -> int:
        ...

    @property
    def size(self) -> int:
        ...

    def send(self, buf: Any, dest: int, tag: int) -> None:
        ...

    def isend(self, buf: Any, dest: int, tag: int) -> Request:
        ...

    def irecv(self, buf: Any, source: int, tag: int) -> Request:
        ...

    def wait(self, req: Request) -> None:
        ...

    def wait_any(self, reqs: Sequence[Request]) -> int:
        """Wait for one active request; return its index (-1 if none is active)."""
        ...

    def wait_all(self, reqs: Sequence[Request]) -> None:
        ...

    def barrier(self) -> None:
        ...

    def bcast(self, buf: Any, root: int) -> None:
        ...
