from __future__ import annotations

from types import SimpleNamespace

import numpy as np
import pytest

import parcomm.transport.mpi as mt
from parcomm.core.errors import TransportError


class _FakeRequest:
    def __init__(self) -> None:
        self.waited = False

    def Wait(self) -> None:  # noqa: N802
        self.waited = True


class _FakeComm:
    def __init__(self, rank: int = 1, size: int = 3) -> None:
        self._rank = rank
        self._size = size
        self.calls: list[tuple] = []

    def Get_rank(self) -> int:  # noqa: N802
        return self._rank

    def Get_size(self) -> int:  # noqa: N802
        return self._size

    def Send(self, spec, dest, tag):  # noqa: N802, ANN001
        self.calls.append(("Send", spec[1], dest, tag))

    def Isend(self, spec, dest, tag):  # noqa: N802, ANN001
        self.calls.append(("Isend", spec[1], dest, tag))
        return _FakeRequest()

    def Irecv(self, spec, source, tag):  # noqa: N802, ANN001
        self.calls.append(("Irecv", spec[1], source, tag))
        return _FakeRequest()

    def Barrier(self) -> None:  # noqa: N802
        self.calls.append(("Barrier",))

    def Bcast(self, spec, root):  # noqa: N802, ANN001
        self.calls.append(("Bcast", spec[1], root))


class _FakeRequestStatics:
    @staticmethod
    def Waitany(reqs):  # noqa: N802, ANN001
        return -32766

    @staticmethod
    def Waitall(reqs):  # noqa: N802, ANN001
        for r in reqs:
            r.Wait()


def _fake_mpi(comm: _FakeComm) -> SimpleNamespace:
    return SimpleNamespace(COMM_WORLD=comm, BYTE="BYTE", UNDEFINED=-32766, Request=_FakeRequestStatics)


def test_mpi_transport_requires_mpi4py(monkeypatch):
    monkeypatch.setattr(mt, "MPI", None)
    with pytest.raises(TransportError):
        mt.MPITransport()


def test_mpi_transport_forwards_byte_buffers(monkeypatch):
    comm = _FakeComm()
    monkeypatch.setattr(mt, "MPI", _fake_mpi(comm))
    t = mt.MPITransport()
    assert (t.rank, t.size) == (1, 3)

    buf = np.zeros(4, dtype=np.uint8)
    req = t.irecv(buf, 0, 10242)
    t.barrier()
    t.send(buf, 2, 10242)
    t.wait_all([req])
    t.bcast(buf, 0)
    assert req.waited
    assert comm.calls == [
        ("Irecv", "BYTE", 0, 10242),
        ("Barrier",),
        ("Send", "BYTE", 2, 10242),
        ("Bcast", "BYTE", 0),
    ]
    assert t.wait_any([]) == -1
