"""Transport subpackage.

Provides the backends the exchange protocols run on:
- MPI: mpi4py communicator (optional dependency)
- Local: in-process thread group for tests and single-host runs
"""

from .base import Request, Transport
from .local import LocalGroup, LocalTransport
from .mpi import MPITransport

__all__ = [
    "Request",
    "Transport",
    "LocalGroup",
    "LocalTransport",
    "MPITransport",
]
