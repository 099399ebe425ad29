"""parcomm: typed buffers and all-to-all exchange protocols for process groups."""

from .broadcast import CommBroadcast
from .config import DEFAULT_CONFIG, ExchangeConfig
from .core.buffer import BufferMode, CommBuffer, pack_two_pass
from .core.errors import (
    BufferOverflowError,
    NotSupportedError,
    ParcommError,
    PreconditionError,
    TransportError,
)
from .exchange import (
    CompletionOrder,
    compute_receive_list,
    exchange_buffers,
    parallel_data_exchange,
    parallel_data_exchange_nonsym_known_sizes,
    parallel_data_exchange_sym,
    parallel_data_exchange_sym_pack_unpack,
    parallel_data_exchange_sym_unknown_size,
)

__version__ = "0.1.0"

__all__ = [
    "CommBuffer",
    "BufferMode",
    "pack_two_pass",
    "CommBroadcast",
    "ExchangeConfig",
    "DEFAULT_CONFIG",
    "CompletionOrder",
    "compute_receive_list",
    "parallel_data_exchange",
    "parallel_data_exchange_sym",
    "parallel_data_exchange_nonsym_known_sizes",
    "parallel_data_exchange_sym_unknown_size",
    "parallel_data_exchange_sym_pack_unpack",
    "exchange_buffers",
    "ParcommError",
    "PreconditionError",
    "BufferOverflowError",
    "NotSupportedError",
    "TransportError",
]
