"""In-process transport: a fixed group of ranks running on threads.

Messages are matched on (source, dest, tag) in posting order, the same
non-overtaking rule MPI uses. Sends are buffered, so a blocking send returns
as soon as the payload is queued or delivered into a posted receive.

Intended for tests, smoke runs and single-host tooling. Every blocking call
gives up after `timeout_s` so an unmatched exchange fails instead of hanging.
"""
from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, Tuple

from ..config import DEFAULT_CONFIG
from ..core.errors import PreconditionError, TransportError
from ..telemetry.logging import get_logger

_BCAST_TAG = -1

Key = Tuple[int, int, int]  # (source, dest, tag)


@dataclass(eq=False)
class LocalRequest:
    buf: Optional[memoryview] = None
    done: bool = False
    active: bool = True
    nbytes: int = 0
    error: Optional[str] = None

    def _fill(self, payload: bytes) -> None:
        if self.buf is not None:
            if len(payload) > len(self.buf):
                self.error = f"message of {len(payload)} bytes truncated into {len(self.buf)} byte receive"
            else:
                self.buf[: len(payload)] = payload
        self.nbytes = len(payload)
        self.done = True


@dataclass
class _Mailboxes:
    cond: threading.Condition = field(default_factory=threading.Condition)
    messages: Dict[Key, Deque[bytes]] = field(default_factory=dict)
    posted: Dict[Key, Deque[LocalRequest]] = field(default_factory=dict)
    aborted: bool = False


class LocalGroup:
    """A group of `size` ranks sharing in-memory mailboxes."""

    def __init__(self, size: int, timeout_s: Optional[float] = None) -> None:
        if size < 1:
            raise PreconditionError(f"group size must be >= 1, got {size}")
        self.size = int(size)
        self.timeout_s = float(timeout_s if timeout_s is not None else DEFAULT_CONFIG.local_timeout_s)
        self._boxes = _Mailboxes()
        self._barrier = threading.Barrier(self.size)
        self._transports = [LocalTransport(self, r) for r in range(self.size)]

    def transport(self, rank: int) -> "LocalTransport":
        return self._transports[rank]

    def abort(self) -> None:
        with self._boxes.cond:
            self._boxes.aborted = True
            self._boxes.cond.notify_all()
        self._barrier.abort()

    def run(self, fn: Callable[["LocalTransport"], Any]) -> List[Any]:
        """Run `fn(transport)` on every rank concurrently; return per-rank results."""
        results: List[Any] = [None] * self.size
        errors: List[Optional[BaseException]] = [None] * self.size

        def _target(rank: int) -> None:
            try:
                results[rank] = fn(self._transports[rank])
            except BaseException as e:  # noqa: BLE001 - re-raised on the caller thread
                errors[rank] = e
                self.abort()

        threads = [
            threading.Thread(target=_target, args=(r,), name=f"parcomm-rank-{r}", daemon=True)
            for r in range(self.size)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        failed = [e for e in errors if e is not None]
        if failed:
            # Prefer the root cause over the aborts it triggered on other ranks
            primary = [e for e in failed if not isinstance(e, TransportError)]
            raise (primary or failed)[0]
        return results


class LocalTransport:
    def __init__(self, group: LocalGroup, rank: int) -> None:
        self._group = group
        self._rank = rank
        self._log = get_logger("LocalTransport", {"rank": rank})

    @property
    def rank(self) -> int:
        return self._rank

    @property
    def size(self) -> int:
        return self._group.size

    def _check_peer(self, peer: int) -> None:
        if not 0 <= peer < self._group.size:
            raise TransportError(f"rank {peer} outside group of size {self._group.size}")

    def _deadline_wait(self, ready: Callable[[], bool], what: str) -> None:
        boxes = self._group._boxes
        deadline = time.monotonic() + self._group.timeout_s
        while not ready():
            if boxes.aborted:
                raise TransportError(f"group aborted while rank {self._rank} waited on {what}")
            left = deadline - time.monotonic()
            if left <= 0:
                raise TransportError(f"rank {self._rank} timed out waiting on {what}")
            boxes.cond.wait(left)

    def send(self, buf: Any, dest: int, tag: int) -> None:
        self._check_peer(dest)
        payload = bytes(memoryview(buf).cast("B"))
        key = (self._rank, dest, tag)
        boxes = self._group._boxes
        with boxes.cond:
            if boxes.aborted:
                raise TransportError("group aborted")
            posted = boxes.posted.get(key)
            if posted:
                posted.popleft()._fill(payload)
            else:
                boxes.messages.setdefault(key, deque()).append(payload)
            boxes.cond.notify_all()

    def isend(self, buf: Any, dest: int, tag: int) -> LocalRequest:
        self.send(buf, dest, tag)
        return LocalRequest(done=True)

    def irecv(self, buf: Any, source: int, tag: int) -> LocalRequest:
        self._check_peer(source)
        mv = memoryview(buf)
        if mv.readonly:
            raise TransportError("receive buffer is read-only")
        req = LocalRequest(buf=mv.cast("B"))
        key = (source, self._rank, tag)
        boxes = self._group._boxes
        with boxes.cond:
            queued = boxes.messages.get(key)
            if queued:
                req._fill(queued.popleft())
            else:
                boxes.posted.setdefault(key, deque()).append(req)
        return req

    def _complete(self, req: LocalRequest) -> None:
        req.active = False
        if req.error is not None:
            raise TransportError(req.error)

    def wait(self, req: LocalRequest) -> None:
        if not req.active:
            return
        with self._group._boxes.cond:
            self._deadline_wait(lambda: req.done, "receive")
        self._complete(req)

    def wait_any(self, reqs: Sequence[LocalRequest]) -> int:
        live = [i for i, r in enumerate(reqs) if r is not None and r.active]
        if not live:
            return -1
        found: List[int] = []

        def _ready() -> bool:
            found[:] = [i for i in live if reqs[i].done]
            return bool(found)

        with self._group._boxes.cond:
            self._deadline_wait(_ready, "any receive")
        idx = found[0]
        self._complete(reqs[idx])
        return idx

    def wait_all(self, reqs: Sequence[LocalRequest]) -> None:
        for r in reqs:
            if r is not None:
                self.wait(r)

    def barrier(self) -> None:
        try:
            self._group._barrier.wait(self._group.timeout_s)
        except threading.BrokenBarrierError as e:
            raise TransportError(f"barrier broken on rank {self._rank}") from e

    def bcast(self, buf: Any, root: int) -> None:
        self._check_peer(root)
        if self._rank == root:
            for dest in range(self._group.size):
                if dest != root:
                    self.send(buf, dest, _BCAST_TAG)
        else:
            self.wait(self.irecv(buf, root, _BCAST_TAG))
