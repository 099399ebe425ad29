"""Logger setup shared by every parcomm module.

``PARCOMM_LOG_LEVEL`` (DEBUG, INFO, WARNING or ERROR; default WARNING) sets
the root level the first time any parcomm logger is requested. Loggers built
with a context dict prefix each message with ``[key=value ...]`` so lines from
several ranks writing to one terminal stay attributable.
"""
from __future__ import annotations

import logging
import os
from typing import Dict, Optional

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_configured = False


def _env_level() -> int:
    name = os.getenv("PARCOMM_LOG_LEVEL", "WARNING").strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.WARNING


def _ensure_configured() -> None:
    global _configured
    if not _configured:
        logging.basicConfig(level=_env_level(), format=_FORMAT)
        _configured = True


class RankAdapter(logging.LoggerAdapter):
    """Prefixes messages with the bound context, e.g. ``[rank=3 root=0]``."""

    def process(self, msg, kwargs):  # type: ignore[override]
        prefix = " ".join(f"{k}={v}" for k, v in self.extra.items())
        return f"[{prefix}] {msg}", kwargs


def get_logger(name: str, context: Optional[Dict[str, object]] = None) -> logging.Logger:
    _ensure_configured()
    logger = logging.getLogger(name)
    if not context:
        return logger
    return RankAdapter(logger, dict(context))  # type: ignore[return-value]
