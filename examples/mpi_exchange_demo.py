"""Irregular all-to-all over MPI.

Run with: mpiexec -n 4 python examples/mpi_exchange_demo.py
"""
from __future__ import annotations

import numpy as np

from parcomm import CommBroadcast, parallel_data_exchange
from parcomm.core.serialize import STRING
from parcomm.transport.mpi import MPITransport


def main() -> None:
    t = MPITransport()
    # rank r sends r+d copies of r to rank d
    sends = [np.full(t.rank + d, t.rank, dtype=np.int64) for d in range(t.size)]
    recv = parallel_data_exchange(sends, t)
    counts = [int(a.size) for a in recv]

    b = CommBroadcast(t, root=0)
    if b.is_root:
        b.send_buffer().pack("config-v1", STRING)
    b.allocate_buffer()
    if b.is_root:
        b.send_buffer().pack("config-v1", STRING)
    b.communicate()
    print(f"[rank {t.rank}] received counts={counts} config={b.recv_buffer().unpack(STRING)!r}")


if __name__ == "__main__":
    main()
