"""mDNS discovery of Tandem coordinators."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from zeroconf import ServiceStateChange
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

from tandem.serve.advertisement import DEFAULT_PATH, SERVICE_TYPE
from tandem.utils import create_task

logger = logging.getLogger(__name__)

RESOLVE_TIMEOUT_MS = 3000


@dataclass(frozen=True, slots=True)
class DiscoveredServer:
    """A coordinator seen on the network."""

    name: str
    host: str
    port: int
    path: str = DEFAULT_PATH
    version: str | None = None
    heartbeat_interval: float | None = None

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}{self.path}"


def _decode_properties(properties: dict[bytes, bytes | None]) -> dict[str, str]:
    decoded: dict[str, str] = {}
    for key, value in properties.items():
        if value is None:
            continue
        try:
            decoded[key.decode("utf-8")] = value.decode("utf-8").strip()
        except UnicodeDecodeError:
            logger.debug("Skipping undecodable TXT entry %r", key)
    return decoded


def server_from_txt(
    name: str, host: str, port: int, properties: dict[bytes, bytes | None]
) -> DiscoveredServer:
    """Build a DiscoveredServer from a resolved service and its TXT record."""
    txt = _decode_properties(properties)
    heartbeat: float | None
    try:
        heartbeat = float(txt["heartbeat"])
    except (KeyError, ValueError):
        heartbeat = None
    return DiscoveredServer(
        name=name,
        host=host,
        port=port,
        path=txt.get("path") or DEFAULT_PATH,
        version=txt.get("version"),
        heartbeat_interval=heartbeat,
    )


class ServiceDiscovery:
    """Browses for coordinators and keeps the currently visible set."""

    def __init__(self) -> None:
        self._zeroconf: AsyncZeroconf | None = None
        self._browser: AsyncServiceBrowser | None = None
        self._servers: dict[str, DiscoveredServer] = {}
        self._found = asyncio.Event()
        self._tasks: set[asyncio.Task[None]] = set()

    async def start(self) -> None:
        """Start browsing for coordinators."""
        if self._zeroconf is not None:
            return
        self._zeroconf = AsyncZeroconf()
        self._browser = AsyncServiceBrowser(
            self._zeroconf.zeroconf, SERVICE_TYPE, handlers=[self._on_service_state_change]
        )
        logger.debug("Browsing for %s", SERVICE_TYPE)

    async def stop(self) -> None:
        """Stop browsing and release resources."""
        if self._browser is not None:
            await self._browser.async_cancel()
            self._browser = None
        for task in list(self._tasks):
            task.cancel()
        if self._zeroconf is not None:
            await self._zeroconf.async_close()
            self._zeroconf = None
        self._servers.clear()
        self._found.clear()

    def _on_service_state_change(self, **kwargs: Any) -> None:
        name: str = kwargs["name"]
        state_change: ServiceStateChange = kwargs["state_change"]
        if state_change is ServiceStateChange.Removed:
            if self._servers.pop(name, None) is not None:
                logger.info("Coordinator %s went away", name)
            if not self._servers:
                self._found.clear()
            return
        task = create_task(self._resolve(kwargs["service_type"], name))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _resolve(self, service_type: str, name: str) -> None:
        if self._zeroconf is None:
            return
        info = AsyncServiceInfo(service_type, name)
        if not await info.async_request(self._zeroconf.zeroconf, RESOLVE_TIMEOUT_MS):
            logger.debug("Failed to resolve %s", name)
            return
        addresses = info.parsed_addresses()
        if not addresses or info.port is None:
            return
        server = server_from_txt(name, addresses[0], int(info.port), info.properties or {})
        self._servers[name] = server
        self._found.set()
        logger.info(
            "Discovered coordinator %s at %s (version %s)", name, server.url, server.version
        )

    def get_servers(self) -> list[DiscoveredServer]:
        return sorted(self._servers.values(), key=lambda s: s.name)

    def current_url(self) -> str | None:
        """Return the URL of the first visible coordinator, if any."""
        servers = self.get_servers()
        return servers[0].url if servers else None

    async def wait_for_first_server(self) -> str:
        """Wait until a coordinator is visible and return its URL."""
        while True:
            await self._found.wait()
            url = self.current_url()
            if url is not None:
                return url
            self._found.clear()
