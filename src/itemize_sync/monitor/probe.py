"""HTTP reachability probe used as a connectivity source off-device."""

import httpx

from itemize_sync.monitor.network import ConnectionType, ConnectivitySnapshot


class ReachabilityProbe:
    """Turns a lightweight HEAD request into a connectivity snapshot.

    - any HTTP response: connected and reachable
    - connection refused / DNS failure: not connected
    - timeout or other transport error: connected but unreachable
    """

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(timeout), transport=transport)

    async def __call__(self) -> ConnectivitySnapshot:
        try:
            await self._client.head(self.url)
        except httpx.ConnectError:
            return ConnectivitySnapshot(
                is_connected=False,
                is_internet_reachable=False,
                connection_type=ConnectionType.NONE,
            )
        except httpx.HTTPError:
            return ConnectivitySnapshot(
                is_connected=True,
                is_internet_reachable=False,
                connection_type=ConnectionType.UNKNOWN,
            )
        return ConnectivitySnapshot(
            is_connected=True,
            is_internet_reachable=True,
            connection_type=ConnectionType.UNKNOWN,
        )

    async def close(self) -> None:
        await self._client.aclose()
