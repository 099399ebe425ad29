"""Completion-order policies for draining outstanding receives."""
from __future__ import annotations

import enum
from typing import Any, Iterator, List, Sequence, Union

from ..transport.base import Transport


class CompletionOrder(enum.Enum):
    # Wait in partner-list order: reproducible, higher tail latency
    DETERMINISTIC = "deterministic"
    # Take whichever receive lands first: callbacks fire in arrival order
    FIRST_READY = "first_ready"

    @classmethod
    def from_flag(cls, deterministic: bool) -> "CompletionOrder":
        return cls.DETERMINISTIC if deterministic else cls.FIRST_READY

    @classmethod
    def coerce(cls, order: Union["CompletionOrder", bool, str]) -> "CompletionOrder":
        if isinstance(order, cls):
            return order
        if isinstance(order, bool):
            return cls.from_flag(order)
        return cls(order)


class PendingPool:
    """Outstanding receive requests, yielded as indices in completion order.

    Each index is yielded exactly once.
    """

    def __init__(self, transport: Transport, requests: Sequence[Any], order: CompletionOrder) -> None:
        self._transport = transport
        # wait_any may null out completed entries in place
        self._reqs: List[Any] = list(requests)
        self._order = order

    def __len__(self) -> int:
        return len(self._reqs)

    def __iter__(self) -> Iterator[int]:
        if self._order is CompletionOrder.DETERMINISTIC:
            for i, req in enumerate(self._reqs):
                self._transport.wait(req)
                yield i
            return
        for _ in range(len(self._reqs)):
            idx = self._transport.wait_any(self._reqs)
            if idx < 0:
                return
            yield idx
