from __future__ import annotations

import pytest

from parcomm.telemetry.metrics import Timer


class _Hist:
    def __init__(self) -> None:
        self.values: list[float] = []

    def observe(self, val: float) -> None:
        self.values.append(val)


def test_timer_records_into_histogram_even_on_error():
    h = _Hist()
    with Timer("ok", h) as t:
        pass
    assert h.values == [t.elapsed]
    assert t.ms == pytest.approx(t.elapsed * 1000.0)

    with pytest.raises(RuntimeError):
        with Timer("boom", h):
            raise RuntimeError("boom")
    assert len(h.values) == 2
