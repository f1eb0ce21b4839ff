"""
Source polling module.

One poller per active source, kept in line with the registry by
the supervisor.
"""
from .poller import Poller, PollerState
from .supervisor import ReconcileResult, Supervisor

__all__ = [
    "Poller",
    "PollerState",
    "ReconcileResult",
    "Supervisor",
]
