"""Configuration for parcomm exchanges.

Tag values are fixed per protocol family so unrelated traffic on the same
communicator is never matched against an exchange.
"""
from __future__ import annotations

from dataclasses import dataclass

from .utils.env import env_float, env_int


DATA_TAG = 10242
OFFSET_TAG = 10243
SIZE_TAG = 10241


@dataclass(slots=True)
class ExchangeConfig:
    data_tag: int = DATA_TAG
    offset_tag: int = OFFSET_TAG
    size_tag: int = SIZE_TAG
    # Only used by the in-process LocalGroup transport
    local_timeout_s: float = 60.0

    @classmethod
    def from_env(cls) -> "ExchangeConfig":
        return cls(
            data_tag=env_int("PARCOMM_DATA_TAG", DATA_TAG, minimum=0),
            offset_tag=env_int("PARCOMM_OFFSET_TAG", OFFSET_TAG, minimum=0),
            size_tag=env_int("PARCOMM_SIZE_TAG", SIZE_TAG, minimum=0),
            local_timeout_s=env_float("PARCOMM_LOCAL_TIMEOUT_S", 60.0, minimum=0.1),
        )


DEFAULT_CONFIG = ExchangeConfig()
