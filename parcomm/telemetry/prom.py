"""Prometheus metric wrappers.

Metrics are cached by name so constructing a wrapper twice (one exchange
helper per call, repeated test runs) never hits a duplicate registration.
"""
from __future__ import annotations

from typing import Optional

from prometheus_client import Counter as _PCounter, Histogram as _PHist, start_http_server as _p_start


_COUNTERS: dict[str, _PCounter] = {}
_HISTS: dict[str, _PHist] = {}


class Counter:
    def __init__(self, name: str, desc: str = "") -> None:
        self._name = name
        if name in _COUNTERS:
            self._c = _COUNTERS[name]
        else:
            self._c = _PCounter(name, desc)
            _COUNTERS[name] = self._c

    def inc(self, amt: float = 1.0) -> None:
        self._c.inc(amt)


class Histogram:
    def __init__(self, name: str, desc: str = "", buckets: Optional[list[float]] = None) -> None:
        self._name = name
        if name in _HISTS:
            self._h = _HISTS[name]
        else:
            if buckets is not None:
                self._h = _PHist(name, desc, buckets=buckets)
            else:
                self._h = _PHist(name, desc)
            _HISTS[name] = self._h

    def observe(self, val: float) -> None:
        self._h.observe(val)


def start_http_server(port: int = 9099) -> None:
    _p_start(port)
