"""Network state tracking with an edge-triggered connectivity-restored signal."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable

from itemize_sync.logging import log_state_change

logger = logging.getLogger(__name__)


class ConnectionType(str, Enum):
    """Transport reported by the connectivity source."""

    UNKNOWN = "unknown"
    NONE = "none"
    WIFI = "wifi"
    CELLULAR = "cellular"
    ETHERNET = "ethernet"
    OTHER = "other"


@dataclass(frozen=True)
class ConnectivitySnapshot:
    """Raw reading from the platform or a reachability probe.

    ``is_internet_reachable`` is None when reachability is not known yet.
    """

    is_connected: bool | None
    is_internet_reachable: bool | None = None
    connection_type: ConnectionType = ConnectionType.UNKNOWN


@dataclass(frozen=True)
class NetworkState:
    """Current process-wide view of connectivity."""

    is_online: bool = True
    connection_type: ConnectionType | None = None
    last_online_at: datetime | None = field(default_factory=lambda: datetime.now(timezone.utc))
    is_internet_reachable: bool | None = None


def is_online(snapshot: ConnectivitySnapshot) -> bool:
    """Connected transport that is not explicitly unreachable.

    A connected but unreachable transport (captive portal) counts as offline.
    """
    return snapshot.is_connected is True and snapshot.is_internet_reachable is not False


ConnectivitySource = Callable[[], Awaitable[ConnectivitySnapshot]]


class NetworkMonitor:
    """Observes connectivity and signals offline-to-online transitions.

    State is recomputed for every snapshot fed to ``handle_change`` (platform
    connectivity events) and on ``handle_foreground``. Restored callbacks fire
    once per offline-to-online edge, never on repeated online readings.

    Example:
        monitor = NetworkMonitor(source=ReachabilityProbe(url))
        monitor.on_connectivity_restored(lambda: print("back online"))
        await monitor.refresh()
    """

    def __init__(self, source: ConnectivitySource | None = None) -> None:
        """Initialize the monitor.

        Args:
            source: Async callable returning the current snapshot, used by
                refresh(), handle_foreground() and watch()
        """
        self._source = source
        self._state = NetworkState()
        self._was_offline = False

        self._restored_callbacks: list[Callable[[], None]] = []
        self._state_callbacks: list[Callable[[NetworkState], None]] = []

    @property
    def state(self) -> NetworkState:
        return self._state

    @property
    def is_online(self) -> bool:
        return self._state.is_online

    def on_connectivity_restored(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback for the offline-to-online edge.

        Returns:
            Function that unregisters the callback
        """
        self._restored_callbacks.append(callback)
        return lambda: self._discard(self._restored_callbacks, callback)

    def on_state_change(self, callback: Callable[[NetworkState], None]) -> Callable[[], None]:
        """Register a callback for every recomputed state.

        Returns:
            Function that unregisters the callback
        """
        self._state_callbacks.append(callback)
        return lambda: self._discard(self._state_callbacks, callback)

    @staticmethod
    def _discard(callbacks: list, callback: Callable) -> None:
        if callback in callbacks:
            callbacks.remove(callback)

    def handle_change(self, snapshot: ConnectivitySnapshot) -> NetworkState:
        """Recompute state from a connectivity snapshot.

        Args:
            snapshot: Latest connectivity reading

        Returns:
            The new network state
        """
        previous = self._state
        now_online = is_online(snapshot)

        self._state = NetworkState(
            is_online=now_online,
            connection_type=snapshot.connection_type,
            last_online_at=datetime.now(timezone.utc) if now_online else previous.last_online_at,
            is_internet_reachable=snapshot.is_internet_reachable,
        )

        restored = now_online and self._was_offline
        self._was_offline = not now_online

        if previous.is_online != now_online:
            log_state_change(
                logger,
                "online" if previous.is_online else "offline",
                "online" if now_online else "offline",
                trigger=snapshot.connection_type.value,
            )

        for callback in list(self._state_callbacks):
            try:
                callback(self._state)
            except Exception:
                logger.exception("Network state callback failed")

        if restored:
            for callback in list(self._restored_callbacks):
                try:
                    callback()
                except Exception:
                    logger.exception("Connectivity restored callback failed")

        return self._state

    async def refresh(self) -> NetworkState:
        """Fetch a snapshot from the source and recompute state."""
        if self._source is None:
            return self._state
        return self.handle_change(await self._source())

    async def handle_foreground(self) -> NetworkState:
        """Recompute state when the app returns to the foreground."""
        return await self.refresh()

    async def watch(self, interval: float) -> None:
        """Poll the source until cancelled.

        Args:
            interval: Seconds between snapshots
        """
        while True:
            try:
                await self.refresh()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Connectivity check failed: %s", e)

            await asyncio.sleep(interval)
