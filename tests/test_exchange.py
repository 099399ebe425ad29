from __future__ import annotations

import time

import numpy as np
import pytest

from parcomm.core.buffer import CommBuffer, pack_two_pass
from parcomm.core.errors import PreconditionError
from parcomm.core.serialize import INT64, STRING, Pair
from parcomm.exchange import (
    CompletionOrder,
    compute_receive_list,
    exchange_buffers,
    parallel_data_exchange,
    parallel_data_exchange_nonsym_known_sizes,
    parallel_data_exchange_sym,
    parallel_data_exchange_sym_pack_unpack,
    parallel_data_exchange_sym_unknown_size,
)
from parcomm.transport.local import LocalGroup


def _count(src: int, dst: int) -> int:
    # Irregular matrix with zero entries and a fully silent row for rank 1
    if src == 1:
        return 0
    return (3 * src + dst) % 4


def _payload(src: int, dst: int) -> np.ndarray:
    return np.arange(_count(src, dst), dtype=np.int64) + 1000 * src + 10 * dst


def test_compute_receive_list_dense():
    group = LocalGroup(4)

    def body(t):
        return compute_receive_list([_count(t.rank, d) for d in range(t.size)], t)

    results = group.run(body)
    for me, recv in enumerate(results):
        assert recv == [_count(s, me) for s in range(4)]


def test_compute_receive_list_all_zero():
    results = LocalGroup(3).run(lambda t: compute_receive_list([0, 0, 0], t))
    assert results == [[0, 0, 0]] * 3


def test_compute_receive_list_partners_only():
    partners = {0: [2], 1: [], 2: [0], 3: []}

    def body(t):
        sizes = [0] * t.size
        if t.rank == 0:
            sizes[2] = 5
        return compute_receive_list(sizes, t, partners=partners[t.rank])

    results = LocalGroup(4).run(body)
    assert results[2] == [5, 0, 0, 0]
    assert results[0] == [0, 0, 0, 0]


def test_compute_receive_list_rejects_stray_send():
    t = LocalGroup(3).transport(0)
    with pytest.raises(PreconditionError):
        compute_receive_list([0, 4, 0], t, partners=[2])
    with pytest.raises(PreconditionError):
        compute_receive_list([0, 0], t)
    with pytest.raises(PreconditionError):
        compute_receive_list([0, 0, 0], t, partners=[1, 1])


def test_unknown_size_exchange_conserves_items():
    group = LocalGroup(4)

    def body(t):
        sends = [_payload(t.rank, d) for d in range(t.size)]
        recv = parallel_data_exchange(sends, t)
        return sum(a.size for a in sends), recv

    results = group.run(body)
    total_sent = sum(sent for sent, _ in results)
    total_recv = sum(sum(a.size for a in recv) for _, recv in results)
    assert total_sent == total_recv
    for me, (_, recv) in enumerate(results):
        for src in range(4):
            np.testing.assert_array_equal(recv[src], _payload(src, me))


def test_unknown_size_exchange_accepts_lists_with_dtype():
    def body(t):
        sends = [[t.rank] * d for d in range(t.size)]
        return parallel_data_exchange(sends, t, dtype=np.int32)

    results = LocalGroup(3).run(body)
    for me, recv in enumerate(results):
        for src in range(3):
            assert recv[src].dtype == np.int32
            assert recv[src].tolist() == [src] * me


def test_exchange_needs_dtype_for_plain_lists():
    t = LocalGroup(2).transport(0)
    with pytest.raises(PreconditionError):
        parallel_data_exchange([[1], [2]], t)
    with pytest.raises(PreconditionError):
        parallel_data_exchange([np.zeros(1)], t)


def test_symmetric_known_size_exchange():
    def body(t):
        sends = [np.array([t.rank, d, t.rank * d], dtype=np.float64) for d in range(t.size)]
        return parallel_data_exchange_sym(sends, t)

    results = LocalGroup(3).run(body)
    for me, recv in enumerate(results):
        for src in range(3):
            assert recv[src].tolist() == [src, me, src * me]


def test_offset_based_exchange_fills_in_place():
    nprocs = 4

    def body(t):
        scounts = [_count(t.rank, d) for d in range(nprocs)]
        rcounts = [_count(s, t.rank) for s in range(nprocs)]
        soff = np.concatenate(([0], np.cumsum(scounts)))
        roff = np.concatenate(([0], np.cumsum(rcounts)))
        sdata = np.concatenate([_payload(t.rank, d) for d in range(nprocs)])
        rdata = np.full(int(roff[-1]), -1, dtype=np.int64)
        out = parallel_data_exchange_nonsym_known_sizes(soff, sdata, roff, rdata, t)
        assert out is rdata
        return int(sdata.size), roff, rdata

    results = LocalGroup(nprocs).run(body)
    assert sum(r[0] for r in results) == sum(r[2].size for r in results)
    for me, (_, roff, rdata) in enumerate(results):
        for src in range(nprocs):
            np.testing.assert_array_equal(rdata[roff[src] : roff[src + 1]], _payload(src, me))


def test_offset_based_exchange_preconditions():
    t = LocalGroup(2).transport(0)
    data = np.zeros(2, dtype=np.int64)
    with pytest.raises(PreconditionError):
        parallel_data_exchange_nonsym_known_sizes([0, 1], data, [0, 1, 2], data.copy(), t)
    with pytest.raises(PreconditionError):
        parallel_data_exchange_nonsym_known_sizes([0, 2, 1], data, [0, 1, 2], data.copy(), t)
    with pytest.raises(PreconditionError):
        parallel_data_exchange_nonsym_known_sizes(
            [0, 1, 2], data, [0, 1, 2], np.zeros(2, dtype=np.int32), t
        )


def test_symmetric_unknown_size_scenario():
    partners = {0: [2], 1: [], 2: [0], 3: []}

    def body(t):
        sends = [np.empty(0, dtype=np.int32) for _ in range(t.size)]
        if t.rank == 0:
            sends[2] = np.array([7, -1, 42], dtype=np.int32)
        return parallel_data_exchange_sym_unknown_size(sends, t, partners[t.rank])

    results = LocalGroup(4).run(body)
    got = results[2][0]
    assert len(got) == 3
    assert got.tolist() == [7, -1, 42]
    assert all(a.size == 0 for a in results[0])
    assert all(a.size == 0 for r in (1, 3) for a in results[r])


def test_symmetric_unknown_size_ring():
    def body(t):
        partners = sorted({(t.rank - 1) % t.size, (t.rank + 1) % t.size})
        sends = [
            np.full(t.rank + 1, t.rank, dtype=np.int64) if d in partners else np.empty(0, dtype=np.int64)
            for d in range(t.size)
        ]
        return partners, parallel_data_exchange_sym_unknown_size(sends, t, partners)

    for me, (partners, recv) in enumerate(LocalGroup(5).run(body)):
        for src in range(5):
            expect = [src] * (src + 1) if src in partners else []
            assert recv[src].tolist() == expect


def _pairwise_scalars(order, nprocs=3):
    def body(t):
        partners = [p for p in range(t.size) if p != t.rank]
        fired = []
        parallel_data_exchange_sym_pack_unpack(
            t,
            partners,
            lambda p: np.array([100 * t.rank + p], dtype=np.int64),
            lambda p, data: fired.append((p, int(data[0]))),
            np.int64,
            order=order,
        )
        return partners, fired

    return LocalGroup(nprocs).run(body)


def test_pack_unpack_first_ready_fires_once_per_partner():
    for _ in range(10):
        for me, (partners, fired) in enumerate(_pairwise_scalars(CompletionOrder.FIRST_READY)):
            assert sorted(p for p, _ in fired) == partners
            assert dict(fired) == {p: 100 * p + me for p in partners}


def test_pack_unpack_first_ready_serves_early_partner_first():
    def body(t):
        if t.rank == 1:
            # rank 0 lists this partner first, but its reply arrives last
            time.sleep(0.3)
        partners = [p for p in range(t.size) if p != t.rank]
        fired = []
        parallel_data_exchange_sym_pack_unpack(
            t,
            partners,
            lambda p: np.array([t.rank], dtype=np.int64),
            lambda p, data: fired.append((p, int(data[0]))),
            np.int64,
            order=CompletionOrder.FIRST_READY,
        )
        return fired

    results = LocalGroup(3).run(body)
    assert results[0] == [(2, 2), (1, 1)]
    for me, fired in enumerate(results):
        assert sorted(fired) == [(p, p) for p in range(3) if p != me]


def test_pack_unpack_deterministic_keeps_partner_order():
    for me, (partners, fired) in enumerate(_pairwise_scalars(True, nprocs=4)):
        assert [p for p, _ in fired] == partners
        assert [v for _, v in fired] == [100 * p + me for p in partners]


def test_pack_unpack_variable_lengths_and_self():
    def body(t):
        partners = list(range(t.size))
        got = {}
        parallel_data_exchange_sym_pack_unpack(
            t,
            partners,
            # symmetric length: depends on the unordered pair only
            lambda p: np.full(t.rank + p, t.rank, dtype=np.float32),
            lambda p, data: got.__setitem__(p, data.tolist()),
            np.float32,
            order=False,
        )
        return got

    for me, got in enumerate(LocalGroup(3).run(body)):
        assert got == {p: [float(p)] * (me + p) for p in range(3)}


def test_completion_order_coercion():
    assert CompletionOrder.from_flag(True) is CompletionOrder.DETERMINISTIC
    assert CompletionOrder.from_flag(False) is CompletionOrder.FIRST_READY
    assert CompletionOrder.coerce("first_ready") is CompletionOrder.FIRST_READY
    assert CompletionOrder.coerce(CompletionOrder.DETERMINISTIC) is CompletionOrder.DETERMINISTIC


def test_exchange_buffers_moves_typed_payloads():
    codec = Pair(STRING, INT64)

    def body(t):
        sends = []
        for d in range(t.size):
            if d == t.rank:
                sends.append(CommBuffer())
                continue
            value = (f"from-{t.rank}-to-{d}", t.rank * d)
            sends.append(pack_two_pass(lambda b, v=value: b.pack(v, codec)))
        recv = exchange_buffers(sends, t)
        return [buf.unpack(codec) if buf.capacity else None for buf in recv]

    for me, got in enumerate(LocalGroup(3).run(body)):
        for src in range(3):
            if src == me:
                assert got[src] is None
            else:
                assert got[src] == (f"from-{src}-to-{me}", src * me)


def test_exchange_buffers_rejects_unallocated_sized_buffer():
    t = LocalGroup(1).transport(0)
    buf = CommBuffer()
    buf.pack(1, INT64)
    with pytest.raises(PreconditionError):
        exchange_buffers([buf], t)


def test_length_mismatch_is_reported_before_transport():
    t = LocalGroup(3).transport(1)
    with pytest.raises(PreconditionError):
        parallel_data_exchange_sym([np.zeros(1)] * 2, t)
    with pytest.raises(PreconditionError):
        parallel_data_exchange_sym_pack_unpack(t, [5], lambda p: [], lambda p, d: None, np.int64)
