"""Wall-clock timing for exchange calls."""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class Timer:
    """Context manager measuring one block.

    When `hist` is given (anything with `observe(float)`), the elapsed time is
    recorded there on exit, including when the block raised.
    """

    name: str
    hist: Optional[Any] = None
    start: float | None = None
    elapsed: float = 0.0

    @property
    def ms(self) -> float:
        return self.elapsed * 1000.0

    def __enter__(self):  # noqa: ANN001
        self.start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb):  # noqa: ANN001, ANN201
        self.elapsed = time.perf_counter() - (self.start or time.perf_counter())
        if self.hist is not None:
            self.hist.observe(self.elapsed)
        return False
