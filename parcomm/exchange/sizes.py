"""Receive-size resolution.

Each rank knows how many items it will send to every other rank; this turns
those rows into the matching column: how many items each rank will receive.
"""
from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

import numpy as np

from ..config import DEFAULT_CONFIG, ExchangeConfig
from ..core.errors import PreconditionError
from ..telemetry.logging import get_logger
from ..transport.base import Transport


def validate_partners(partners: Iterable[int], nprocs: int) -> List[int]:
    out = [int(p) for p in partners]
    for p in out:
        if not 0 <= p < nprocs:
            raise PreconditionError(f"partner rank {p} outside group of size {nprocs}")
    if len(set(out)) != len(out):
        raise PreconditionError(f"partner list has duplicates: {out}")
    return out


def compute_receive_list(
    send_sizes: Sequence[int],
    transport: Transport,
    partners: Optional[Iterable[int]] = None,
    config: Optional[ExchangeConfig] = None,
) -> List[int]:
    """Return, for the calling rank, the item count each rank will send to it.

    With `partners=None` every rank exchanges a scalar count with every other
    rank (zero counts included), so ranks that talk to nobody still complete.
    With an explicit partner list the count round is restricted to those
    ranks; the partner relation must be symmetric across the group and every
    nonzero send must target a partner.
    """
    cfg = config or DEFAULT_CONFIG
    nprocs = transport.size
    me = transport.rank
    if len(send_sizes) != nprocs:
        raise PreconditionError(f"send_sizes has {len(send_sizes)} entries for a group of {nprocs}")
    counts = np.asarray(send_sizes, dtype=np.int64).reshape(-1)
    if (counts < 0).any():
        raise PreconditionError("send sizes must be non-negative")

    if partners is None:
        peers = [q for q in range(nprocs) if q != me]
    else:
        plist = validate_partners(partners, nprocs)
        allowed = set(plist)
        stray = [q for q in range(nprocs) if counts[q] and q != me and q not in allowed]
        if stray:
            raise PreconditionError(f"nonzero send sizes to non-partner ranks {stray}")
        peers = [q for q in plist if q != me]

    recv = np.zeros(nprocs, dtype=np.int64)
    recv[me] = counts[me]
    reqs = [transport.irecv(recv[q : q + 1].view(np.uint8), q, cfg.size_tag) for q in peers]
    transport.barrier()
    for q in peers:
        transport.send(counts[q : q + 1].view(np.uint8), q, cfg.size_tag)
    transport.wait_all(reqs)

    log = get_logger("parcomm.sizes", {"rank": me})
    log.debug("resolved receive sizes over %d peers: send=%d recv=%d", len(peers), int(counts.sum()), int(recv.sum()))
    return [int(x) for x in recv]
