"""HTTP and WebSocket front end of the Tandem coordinator."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from dataclasses import dataclass
from pathlib import Path

from aiohttp import WSMsgType, web

from tandem.catalog import DirectoryCatalog
from tandem.coordinator import DEFAULT_HEARTBEAT_INTERVAL, Coordinator
from tandem.protocol import ProtocolError, StateMessage, decode_intent
from tandem.serve.advertisement import DEFAULT_PATH, DEFAULT_PORT, CoordinatorAdvertisement
from tandem.utils import create_task

logger = logging.getLogger(__name__)


class CoordinatorServer:
    """Serves the coordinator to WebSocket clients.

    Every connection receives an evaluated snapshot as soon as it opens and
    from then on every broadcast and heartbeat. Frames received from a
    connection are decoded as intents and applied in arrival order.
    """

    def __init__(
        self,
        coordinator: Coordinator,
        *,
        path: str = DEFAULT_PATH,
        music_dir: Path | None = None,
    ) -> None:
        """Initialize the server.

        Args:
            coordinator: Coordinator owning the playback state.
            path: WebSocket endpoint path.
            music_dir: Directory served under /music, if any.
        """
        self._coordinator = coordinator
        self._path = path
        self._music_dir = music_dir
        self._sockets: set[web.WebSocketResponse] = set()
        self._send_tasks: set[asyncio.Task[None]] = set()
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None
        coordinator.add_broadcast_listener(self._on_broadcast)

    @property
    def client_count(self) -> int:
        return len(self._sockets)

    def create_app(self) -> web.Application:
        """Create the aiohttp application."""
        app = web.Application()
        app.router.add_get(self._path, self._handle_websocket)
        app.router.add_get("/tracks", self._handle_tracks)
        app.router.add_get("/api/state", self._handle_state)
        app.router.add_get("/api/clients", self._handle_clients)
        if self._music_dir is not None:
            app.router.add_static("/music", self._music_dir)
        app.on_startup.append(self._on_startup)
        app.on_shutdown.append(self._on_shutdown)
        app.on_cleanup.append(self._on_cleanup)
        return app

    async def _on_startup(self, app: web.Application) -> None:
        self._heartbeat_task = create_task(self._coordinator.run_heartbeat(), name="heartbeat")

    async def _on_shutdown(self, app: web.Application) -> None:
        for ws in list(self._sockets):
            await ws.close(code=1001, message=b"Coordinator shutting down")

    async def _on_cleanup(self, app: web.Application) -> None:
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._heartbeat_task
            self._heartbeat_task = None

    async def start(self, host: str = "0.0.0.0", port: int = DEFAULT_PORT) -> None:
        """Start listening on host:port."""
        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, host, port)
        await self._site.start()
        logger.info("Coordinator listening on %s:%d%s", host, port, self._path)

    async def stop(self) -> None:
        """Stop the server and close every connection."""
        if self._site is not None:
            await self._site.stop()
            self._site = None
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

    def _on_broadcast(self, message: StateMessage) -> None:
        text = message.encode()
        for ws in list(self._sockets):
            if ws.closed:
                continue
            task = create_task(self._send(ws, text))
            self._send_tasks.add(task)
            task.add_done_callback(self._send_tasks.discard)

    async def _send(self, ws: web.WebSocketResponse, text: str) -> None:
        try:
            await ws.send_str(text)
        except ConnectionResetError as e:
            logger.debug("Dropping frame for closing connection: %s", e)

    def _handle_frame(self, raw: str, peer: str) -> None:
        try:
            intent = decode_intent(raw)
        except ProtocolError as e:
            logger.warning("Invalid frame from %s: %s", peer, e)
            return
        logger.debug("Intent %s from %s", intent.type.value, peer)
        self._coordinator.handle_intent(intent)

    async def _handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(heartbeat=30)
        await ws.prepare(request)

        peer = request.remote or "unknown"
        logger.info("Client connected from %s", peer)
        self._sockets.add(ws)

        try:
            await ws.send_str(self._coordinator.snapshot().encode())
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    self._handle_frame(msg.data, peer)
                elif msg.type == WSMsgType.ERROR:
                    logger.warning("Connection from %s failed: %s", peer, ws.exception())
        except asyncio.CancelledError:
            logger.debug("Connection handler cancelled")
        except Exception:
            logger.exception("Error in connection handler")
        finally:
            self._sockets.discard(ws)
            if not ws.closed:
                await ws.close()
            logger.info("Client disconnected from %s", peer)

        return ws

    async def _handle_tracks(self, request: web.Request) -> web.Response:
        tracks = self._coordinator.catalog.list_tracks()
        return web.json_response([track.to_dict() for track in tracks])

    async def _handle_state(self, request: web.Request) -> web.Response:
        return web.json_response(self._coordinator.snapshot().state.to_payload())

    async def _handle_clients(self, request: web.Request) -> web.Response:
        return web.json_response({"clients": self.client_count})


@dataclass
class ServerConfig:
    """Configuration for the coordinator process."""

    music_dir: Path
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    name: str | None = None
    heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL
    repeat: bool = False
    advertise: bool = True


async def run_server(config: ServerConfig) -> int:
    """Run a coordinator until SIGINT or SIGTERM."""
    if not config.music_dir.is_dir():
        logger.error("Music directory %s does not exist", config.music_dir)
        return 1

    catalog = DirectoryCatalog(config.music_dir, repeat=config.repeat)
    coordinator = Coordinator(catalog, heartbeat_interval=config.heartbeat_interval)
    server = CoordinatorServer(coordinator, music_dir=config.music_dir)
    advertisement = CoordinatorAdvertisement(
        coordinator, port=config.port, path=DEFAULT_PATH, name=config.name
    )

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    # Signal handlers aren't supported on this platform (e.g., Windows)
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, shutdown_event.set)
        loop.add_signal_handler(signal.SIGTERM, shutdown_event.set)

    await server.start(config.host, config.port)
    try:
        if config.advertise:
            try:
                await advertisement.start()
            except OSError as e:
                logger.warning("mDNS advertisement unavailable: %s", e)
        logger.info("Serving %d tracks from %s", len(catalog.list_tracks()), config.music_dir)
        await shutdown_event.wait()
    finally:
        with contextlib.suppress(NotImplementedError):
            loop.remove_signal_handler(signal.SIGINT)
            loop.remove_signal_handler(signal.SIGTERM)
        await advertisement.stop()
        await server.stop()
        logger.info("Coordinator stopped")
    return 0
