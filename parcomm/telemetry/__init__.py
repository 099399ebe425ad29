"""Telemetry subpackage (lightweight).

Exposes timers, Prometheus wrappers and the logger factory.
"""

from .logging import get_logger
from .metrics import Timer
from .prom import Counter, Histogram

__all__ = [
    "get_logger",
    "Timer",
    "Counter",
    "Histogram",
]
