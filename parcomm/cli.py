"""parcomm CLI."""
from __future__ import annotations

import argparse
import json
from typing import Any, Dict, List

import numpy as np

from .broadcast import CommBroadcast
from .core.serialize import STRING
from .exchange import (
    CompletionOrder,
    parallel_data_exchange,
    parallel_data_exchange_nonsym_known_sizes,
    parallel_data_exchange_sym,
    parallel_data_exchange_sym_pack_unpack,
    parallel_data_exchange_sym_unknown_size,
)
from .telemetry.logging import get_logger
from .telemetry.metrics import Timer
from .telemetry.prom import start_http_server
from .transport.base import Transport


def _ring(rank: int, size: int) -> List[int]:
    return sorted({(rank - 1) % size, (rank + 1) % size})


def _pair_count(src: int, dst: int) -> int:
    return (src + 2 * dst) % 3


def smoke_rank(transport: Transport, payload: str = "config-v1") -> Dict[str, Any]:
    """Run every protocol once on this rank and report per-protocol success."""
    me, nprocs = transport.rank, transport.size
    checks: Dict[str, bool] = {}

    with Timer("smoke") as t:
        sends = [np.full(_pair_count(me, d), me, dtype=np.int64) for d in range(nprocs)]
        got = parallel_data_exchange(sends, transport)
        checks["exchange"] = all(
            got[s].size == _pair_count(s, me) and (got[s] == s).all() for s in range(nprocs)
        )

        sends = [np.array([me * 100 + d, d], dtype=np.int32) for d in range(nprocs)]
        got = parallel_data_exchange_sym(sends, transport)
        checks["exchange_sym"] = all(got[s].tolist() == [s * 100 + me, me] for s in range(nprocs))

        scounts = [_pair_count(me, d) for d in range(nprocs)]
        rcounts = [_pair_count(s, me) for s in range(nprocs)]
        soff = np.concatenate(([0], np.cumsum(scounts))).astype(np.int64)
        roff = np.concatenate(([0], np.cumsum(rcounts))).astype(np.int64)
        sdata = np.concatenate([np.full(c, me * 10 + d, dtype=np.float64) for d, c in enumerate(scounts)])
        rdata = np.zeros(int(roff[-1]), dtype=np.float64)
        parallel_data_exchange_nonsym_known_sizes(soff, sdata, roff, rdata, transport)
        checks["exchange_offsets"] = all(
            (rdata[roff[s] : roff[s + 1]] == s * 10 + me).all() for s in range(nprocs)
        )

        partners = _ring(me, nprocs)
        sends = [
            np.arange(me + 1, dtype=np.int64) if d in partners else np.empty(0, dtype=np.int64)
            for d in range(nprocs)
        ]
        got = parallel_data_exchange_sym_unknown_size(sends, transport, partners)
        checks["exchange_sym_unknown"] = all(got[s].tolist() == list(range(s + 1)) for s in partners)

        seen: Dict[int, int] = {}
        parallel_data_exchange_sym_pack_unpack(
            transport,
            partners,
            lambda p: [me],
            lambda p, data: seen.__setitem__(p, int(data[0])),
            np.int64,
            order=CompletionOrder.FIRST_READY,
        )
        checks["exchange_pack_unpack"] = seen == {p: p for p in partners}

        bc = CommBroadcast(transport, root=0)
        if bc.is_root:
            bc.send_buffer().pack(payload)
        bc.allocate_buffer()
        if bc.is_root:
            bc.send_buffer().pack(payload)
        bc.communicate()
        checks["broadcast"] = bc.recv_buffer().unpack(STRING) == payload

    return {"rank": me, "checks": checks, "ok": all(checks.values()), "seconds": t.elapsed}


def _cmd_smoke(args: argparse.Namespace) -> int:
    log = get_logger("parcomm.cli")
    if args.metrics_port:
        start_http_server(args.metrics_port)
    if args.mpi:
        from .transport.mpi import MPITransport

        transport = MPITransport()
        result = smoke_rank(transport)
        results = [result]
        if transport.rank != 0:
            return 0 if result["ok"] else 1
    else:
        from .transport.local import LocalGroup

        group = LocalGroup(args.ranks, timeout_s=args.timeout)
        results = group.run(smoke_rank)
    ok = all(r["ok"] for r in results)
    if not ok:
        log.warning("smoke run failed: %s", [r["rank"] for r in results if not r["ok"]])
    print(json.dumps({"ok": ok, "results": results}, indent=2))
    return 0 if ok else 1


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="parcomm", description="parcomm exchange utilities")
    sub = p.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("smoke", help="Run every exchange protocol and a broadcast once")
    sp.add_argument("--ranks", type=int, default=4, help="Group size for the in-process transport")
    sp.add_argument("--mpi", action="store_true", help="Use MPI.COMM_WORLD (run under mpiexec)")
    sp.add_argument("--timeout", type=float, default=None, help="Per-wait timeout for the in-process transport (s)")
    sp.add_argument("--metrics-port", type=int, default=0, help="Expose Prometheus metrics on this port (0 disables)")
    sp.set_defaults(func=_cmd_smoke)

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return int(args.func(args))


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
