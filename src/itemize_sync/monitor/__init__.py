"""Monitor module for network connectivity tracking."""

from itemize_sync.monitor.network import (
    ConnectionType,
    ConnectivitySnapshot,
    NetworkMonitor,
    NetworkState,
)
from itemize_sync.monitor.probe import ReachabilityProbe

__all__ = [
    "ConnectionType",
    "ConnectivitySnapshot",
    "NetworkMonitor",
    "NetworkState",
    "ReachabilityProbe",
]
