"""Publishes a running coordinator on the local network via mDNS.

Listeners browse for SERVICE_TYPE and read the TXT record to find the
WebSocket path. The record also carries the protocol version, the
heartbeat interval and the size of the track list at startup, so a
listener can tell coordinators apart before connecting.
"""

from __future__ import annotations

import logging
import socket

from zeroconf import IPVersion
from zeroconf.asyncio import AsyncServiceInfo, AsyncZeroconf

from tandem import __version__
from tandem.coordinator import Coordinator

logger = logging.getLogger(__name__)

SERVICE_TYPE = "_tandem._tcp.local."
DEFAULT_PORT = 8930
DEFAULT_PATH = "/ws"


def service_properties(coordinator: Coordinator, path: str = DEFAULT_PATH) -> dict[str, str]:
    """Build the TXT record describing coordinator."""
    return {
        "path": path,
        "version": __version__,
        "heartbeat": f"{coordinator.heartbeat_interval:g}",
        "tracks": str(len(coordinator.catalog.list_tracks())),
    }


class CoordinatorAdvertisement:
    """mDNS registration of one coordinator."""

    def __init__(
        self,
        coordinator: Coordinator,
        *,
        port: int = DEFAULT_PORT,
        path: str = DEFAULT_PATH,
        name: str | None = None,
    ) -> None:
        """Initialize the advertisement.

        Args:
            coordinator: Coordinator whose settings go into the TXT record.
            port: Port the coordinator's HTTP server listens on.
            path: WebSocket endpoint path.
            name: Instance name, defaults to the hostname.
        """
        self._coordinator = coordinator
        self._port = port
        self._path = path
        self._name = name
        self._zeroconf: AsyncZeroconf | None = None
        self._info: AsyncServiceInfo | None = None

    @property
    def registered(self) -> bool:
        return self._info is not None

    def build_info(self) -> AsyncServiceInfo:
        hostname = socket.gethostname()
        instance = self._name or hostname
        return AsyncServiceInfo(
            SERVICE_TYPE,
            f"{instance}.{SERVICE_TYPE}",
            port=self._port,
            properties=service_properties(self._coordinator, self._path),
            server=f"{hostname}.local.",
        )

    async def start(self) -> None:
        """Register the service; OSError propagates when multicast is unavailable."""
        if self.registered:
            return
        info = self.build_info()
        zc = AsyncZeroconf(ip_version=IPVersion.All)
        try:
            await zc.async_register_service(info)
        except Exception:
            await zc.async_close()
            raise
        self._zeroconf = zc
        self._info = info
        logger.info("Advertising %s on port %d", info.name, self._port)

    async def stop(self) -> None:
        """Unregister the service and close the zeroconf instance."""
        zc, info = self._zeroconf, self._info
        self._zeroconf = None
        self._info = None
        if zc is None:
            return
        if info is not None:
            try:
                await zc.async_unregister_service(info)
            except Exception:
                logger.exception("Error unregistering %s", info.name)
        await zc.async_close()
        logger.debug("Advertisement stopped")
