"""All-to-all exchange protocols and receive-size resolution."""

from .alltoall import (
    exchange_buffers,
    parallel_data_exchange,
    parallel_data_exchange_nonsym_known_sizes,
    parallel_data_exchange_sym,
    parallel_data_exchange_sym_pack_unpack,
    parallel_data_exchange_sym_unknown_size,
)
from .completion import CompletionOrder, PendingPool
from .sizes import compute_receive_list

__all__ = [
    "compute_receive_list",
    "parallel_data_exchange",
    "parallel_data_exchange_sym",
    "parallel_data_exchange_nonsym_known_sizes",
    "parallel_data_exchange_sym_unknown_size",
    "parallel_data_exchange_sym_pack_unpack",
    "exchange_buffers",
    "CompletionOrder",
    "PendingPool",
]
