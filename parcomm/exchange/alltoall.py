"""All-to-all exchange protocols with per-rank varying payload sizes.

Every protocol runs the same motion:

1. post a non-blocking receive for each rank with a nonzero receive size
2. barrier, so all receives exist before any send departs
3. blocking send to each rank with a nonzero send size
4. wait on the posted receives

They differ in what is known up front (sizes, partner set) and, for the
pack/unpack variant, in the order received payloads are handed back.
Payloads are numpy arrays of one dtype, moved as raw bytes.
"""
from __future__ import annotations

from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from ..config import DEFAULT_CONFIG, ExchangeConfig
from ..core.buffer import BufferMode, CommBuffer
from ..core.errors import PreconditionError
from ..telemetry.logging import get_logger
from ..telemetry.metrics import Timer
from ..telemetry.prom import Counter, Histogram
from ..transport.base import Transport
from .completion import CompletionOrder, PendingPool
from .sizes import compute_receive_list, validate_partners

_CALLS = Counter("parcomm_exchange_calls_total", "Exchange protocol invocations")
_BYTES_SENT = Counter("parcomm_exchange_bytes_sent_total", "Payload bytes sent by exchanges")
_BYTES_RECV = Counter("parcomm_exchange_bytes_recv_total", "Payload bytes received by exchanges")
_SECONDS = Histogram("parcomm_exchange_seconds", "Wall time of one exchange call")


def _byte_view(arr: np.ndarray) -> np.ndarray:
    return arr.reshape(-1).view(np.uint8)


def _check_group(lists: Sequence[Any], nprocs: int, what: str) -> None:
    if len(lists) != nprocs:
        raise PreconditionError(f"{what} has {len(lists)} entries for a group of {nprocs}")


def _payloads(send_lists: Sequence[Any], dtype: Any) -> Tuple[List[np.ndarray], np.dtype]:
    if dtype is None:
        dtypes = {a.dtype for a in send_lists if isinstance(a, np.ndarray)}
        if len(dtypes) != 1 or not all(isinstance(a, np.ndarray) for a in send_lists):
            raise PreconditionError("dtype is required unless every send list is an ndarray of one dtype")
        dt = dtypes.pop()
    else:
        dt = np.dtype(dtype)
    if dt.hasobject:
        raise PreconditionError(f"dtype {dt} holds object references and cannot be exchanged")
    return [np.ascontiguousarray(a, dtype=dt).reshape(-1) for a in send_lists], dt


def _run_motion(
    transport: Transport,
    sends: Iterable[Tuple[int, np.ndarray]],
    recvs: Iterable[Tuple[int, np.ndarray]],
    tag: int,
    label: str,
) -> None:
    log = get_logger("parcomm.exchange", {"rank": transport.rank})
    sends = [(r, _byte_view(a)) for r, a in sends if a.size > 0]
    recvs = [(r, _byte_view(a)) for r, a in recvs if a.size > 0]
    with Timer(label, _SECONDS) as t:
        reqs = [transport.irecv(view, src, tag) for src, view in recvs]
        transport.barrier()
        for dest, view in sends:
            transport.send(view, dest, tag)
        transport.wait_all(reqs)
    nsent = sum(v.nbytes for _, v in sends)
    nrecv = sum(v.nbytes for _, v in recvs)
    _CALLS.inc()
    _BYTES_SENT.inc(float(nsent))
    _BYTES_RECV.inc(float(nrecv))
    log.debug(
        "%s: sent %d bytes to %d ranks, received %d bytes from %d ranks in %.3fms",
        label, nsent, len(sends), nrecv, len(recvs), t.ms,
    )


def parallel_data_exchange(
    send_lists: Sequence[Any],
    transport: Transport,
    dtype: Any = None,
    config: Optional[ExchangeConfig] = None,
) -> List[np.ndarray]:
    """Exchange when receive sizes are unknown.

    `send_lists[i]` goes to rank i. Returns the receive lists indexed by
    source rank.
    """
    cfg = config or DEFAULT_CONFIG
    _check_group(send_lists, transport.size, "send_lists")
    payloads, dt = _payloads(send_lists, dtype)
    recv_counts = compute_receive_list([a.size for a in payloads], transport, config=cfg)
    recv_lists = [np.empty(n, dtype=dt) for n in recv_counts]
    _run_motion(transport, enumerate(payloads), enumerate(recv_lists), cfg.data_tag, "exchange")
    return recv_lists


def parallel_data_exchange_sym(
    send_lists: Sequence[Any],
    transport: Transport,
    dtype: Any = None,
    config: Optional[ExchangeConfig] = None,
) -> List[np.ndarray]:
    """Exchange when each rank receives exactly as many items as it sends to that rank."""
    cfg = config or DEFAULT_CONFIG
    _check_group(send_lists, transport.size, "send_lists")
    payloads, dt = _payloads(send_lists, dtype)
    recv_lists = [np.empty(a.size, dtype=dt) for a in payloads]
    _run_motion(transport, enumerate(payloads), enumerate(recv_lists), cfg.data_tag, "exchange_sym")
    return recv_lists


def _check_offsets(offsets: Any, nprocs: int, what: str) -> np.ndarray:
    off = np.asarray(offsets, dtype=np.int64).reshape(-1)
    if off.size != nprocs + 1:
        raise PreconditionError(f"{what} has {off.size} entries, expected {nprocs + 1}")
    if off[0] < 0 or (np.diff(off) < 0).any():
        raise PreconditionError(f"{what} must be a non-decreasing prefix sum")
    return off


def parallel_data_exchange_nonsym_known_sizes(
    send_offsets: Any,
    send_data: np.ndarray,
    recv_offsets: Any,
    recv_data: np.ndarray,
    transport: Transport,
    config: Optional[ExchangeConfig] = None,
) -> np.ndarray:
    """Exchange slices of flat arrays; both sides already know every size.

    Rank i's outgoing items are `send_data[send_offsets[i]:send_offsets[i+1]]`;
    items from rank i land in `recv_data[recv_offsets[i]:recv_offsets[i+1]]`,
    written in place.
    """
    cfg = config or DEFAULT_CONFIG
    nprocs = transport.size
    soff = _check_offsets(send_offsets, nprocs, "send_offsets")
    roff = _check_offsets(recv_offsets, nprocs, "recv_offsets")
    send_data = np.ascontiguousarray(send_data)
    if not isinstance(recv_data, np.ndarray) or recv_data.ndim != 1 or not recv_data.flags["C_CONTIGUOUS"]:
        raise PreconditionError("recv_data must be a contiguous 1-D ndarray")
    if not recv_data.flags["WRITEABLE"]:
        raise PreconditionError("recv_data must be writable")
    if send_data.dtype != recv_data.dtype:
        raise PreconditionError(f"dtype mismatch: send {send_data.dtype}, recv {recv_data.dtype}")
    if soff[-1] > send_data.size or roff[-1] > recv_data.size:
        raise PreconditionError("offsets run past the end of the data arrays")
    flat = send_data.reshape(-1)
    sends = ((i, flat[soff[i] : soff[i + 1]]) for i in range(nprocs))
    recvs = ((i, recv_data[roff[i] : roff[i + 1]]) for i in range(nprocs))
    _run_motion(transport, sends, recvs, cfg.offset_tag, "exchange_offsets")
    return recv_data


def parallel_data_exchange_sym_unknown_size(
    send_lists: Sequence[Any],
    transport: Transport,
    partners: Iterable[int],
    dtype: Any = None,
    config: Optional[ExchangeConfig] = None,
) -> List[np.ndarray]:
    """Exchange with a known, symmetric partner set but unknown sizes.

    A scalar count round restricted to `partners` runs before the data round.
    Non-partners get empty receive lists.
    """
    cfg = config or DEFAULT_CONFIG
    _check_group(send_lists, transport.size, "send_lists")
    payloads, dt = _payloads(send_lists, dtype)
    recv_counts = compute_receive_list(
        [a.size for a in payloads], transport, partners=partners, config=cfg
    )
    recv_lists = [np.empty(n, dtype=dt) for n in recv_counts]
    _run_motion(transport, enumerate(payloads), enumerate(recv_lists), cfg.data_tag, "exchange_sym_unknown")
    return recv_lists


def parallel_data_exchange_sym_pack_unpack(
    transport: Transport,
    partners: Iterable[int],
    pack_msg: Callable[[int], Any],
    unpack_msg: Callable[[int, np.ndarray], None],
    dtype: Any,
    order: Union[CompletionOrder, bool] = CompletionOrder.DETERMINISTIC,
    config: Optional[ExchangeConfig] = None,
) -> None:
    """Exchange payloads produced by `pack_msg(partner)` with each partner.

    Sizes are symmetric: the payload received from a partner has the length
    of the payload sent to it. `unpack_msg(partner, payload)` fires once per
    partner, in partner-list order for DETERMINISTIC (or True) and in arrival
    order for FIRST_READY (or False). All sends complete before returning.
    """
    cfg = config or DEFAULT_CONFIG
    policy = CompletionOrder.coerce(order)
    plist = validate_partners(partners, transport.size)
    dt = np.dtype(dtype)
    log = get_logger("parcomm.exchange", {"rank": transport.rank})

    send_data: List[np.ndarray] = []
    recv_data: List[np.ndarray] = []
    recv_reqs: List[Any] = []
    send_reqs: List[Any] = []
    with Timer("exchange_pack_unpack", _SECONDS) as t:
        for proc in plist:
            out = np.ascontiguousarray(pack_msg(proc), dtype=dt).reshape(-1)
            inbox = np.empty(out.size, dtype=dt)
            send_data.append(out)
            recv_data.append(inbox)
            recv_reqs.append(transport.irecv(_byte_view(inbox), proc, cfg.data_tag))
            send_reqs.append(transport.isend(_byte_view(out), proc, cfg.data_tag))

        for idx in PendingPool(transport, recv_reqs, policy):
            unpack_msg(plist[idx], recv_data[idx])

        transport.wait_all(send_reqs)

    nbytes = sum(a.nbytes for a in send_data)
    _CALLS.inc()
    _BYTES_SENT.inc(float(nbytes))
    _BYTES_RECV.inc(float(sum(a.nbytes for a in recv_data)))
    log.debug("exchange_pack_unpack (%s): %d partners, %d bytes each way", policy.value, len(plist), nbytes)


def exchange_buffers(
    send_buffers: Sequence[CommBuffer],
    transport: Transport,
    config: Optional[ExchangeConfig] = None,
) -> List[CommBuffer]:
    """Exchange the storage of one allocated CommBuffer per destination rank.

    A buffer still in sizing mode with nothing packed sends nothing.

    Returns one receive buffer per source rank, attached and positioned at
    the start so it can be unpacked with the same calls used to pack it.
    """
    _check_group(send_buffers, transport.size, "send_buffers")
    payloads = []
    for dest, buf in enumerate(send_buffers):
        if buf.mode is BufferMode.SIZING:
            if buf.size:
                raise PreconditionError(f"send buffer for rank {dest} was sized but never allocated")
            payloads.append(np.empty(0, dtype=np.uint8))
        else:
            mem = buf.buffer()
            payloads.append(np.frombuffer(mem, dtype=np.uint8) if len(mem) else np.empty(0, dtype=np.uint8))
    received = parallel_data_exchange(payloads, transport, dtype=np.uint8, config=config)
    return [CommBuffer(arr) for arr in received]
