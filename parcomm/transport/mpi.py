"""mpi4py-backed transport.

Buffers are passed as raw bytes (MPI.BYTE); typing is the caller's concern.
"""
from __future__ import annotations

from typing import Any, Optional, Sequence

try:  # optional
    from mpi4py import MPI  # type: ignore
except ImportError:  # pragma: no cover - optional dependency
    MPI = None  # type: ignore

from ..core.errors import TransportError
from ..telemetry.logging import get_logger


class MPITransport:
    def __init__(self, comm: Optional[object] = None) -> None:
        if MPI is None:
            raise TransportError("mpi4py is required for MPITransport (pip install parcomm[mpi])")
        self._comm = comm if comm is not None else MPI.COMM_WORLD
        self._rank = int(self._comm.Get_rank())
        self._size = int(self._comm.Get_size())
        self._log = get_logger("MPITransport", {"rank": self._rank})
        self._log.debug("attached to communicator of size %d", self._size)

    @property
    def rank(self) -> int:
        return self._rank

    @property
    def size(self) -> int:
        return self._size

    @property
    def comm(self) -> object:
        return self._comm

    def send(self, buf: Any, dest: int, tag: int) -> None:
        self._comm.Send([buf, MPI.BYTE], dest=dest, tag=tag)

    def isend(self, buf: Any, dest: int, tag: int) -> Any:
        return self._comm.Isend([buf, MPI.BYTE], dest=dest, tag=tag)

    def irecv(self, buf: Any, source: int, tag: int) -> Any:
        return self._comm.Irecv([buf, MPI.BYTE], source=source, tag=tag)

    def wait(self, req: Any) -> None:
        req.Wait()

    def wait_any(self, reqs: Sequence[Any]) -> int:
        # Waitany nulls out the completed request in place
        idx = MPI.Request.Waitany(reqs)
        return -1 if idx == MPI.UNDEFINED else int(idx)

    def wait_all(self, reqs: Sequence[Any]) -> None:
        MPI.Request.Waitall(reqs)

    def barrier(self) -> None:
        self._comm.Barrier()

    def bcast(self, buf: Any, root: int) -> None:
        self._comm.Bcast([buf, MPI.BYTE], root=root)
