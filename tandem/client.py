"""WebSocket client connecting a local player to a Tandem coordinator."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

import aiohttp
from aiohttp import ClientSession, ClientWebSocketResponse, WSMsgType

from tandem.controls import LocalControls
from tandem.player import MediaPlayer
from tandem.protocol import Intent, ProtocolError, decode_state_message
from tandem.reconciler import Reconciler, ReconcilerListener
from tandem.suppressor import DEFAULT_EPSILON, DEFAULT_SUPPRESS_WINDOW, LoopbackSuppressor
from tandem.utils import create_task

logger = logging.getLogger(__name__)


class SyncClient:
    """Keeps a local player in step with a coordinator over one WebSocket.

    Each connection gets a fresh reconciler, suppressor and controls, so a
    reconnect always starts from INITIALIZING and is bootstrapped by the
    snapshot the coordinator sends on connect.
    """

    def __init__(
        self,
        player: MediaPlayer,
        *,
        clock: Callable[[], float] = time.time,
        epsilon: float = DEFAULT_EPSILON,
        suppress_window: float = DEFAULT_SUPPRESS_WINDOW,
        session: ClientSession | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            player: Local playback engine.
            clock: Wall-clock source used to timestamp received messages.
            epsilon: Drift in seconds tolerated before a hard seek.
            suppress_window: Seconds an untagged echo is attributed to a local action.
            session: Optional aiohttp session; one is created and owned otherwise.
        """
        self._player = player
        self._clock = clock
        self._epsilon = epsilon
        self._suppress_window = suppress_window
        self._session = session
        self._owns_session = session is None
        self._ws: ClientWebSocketResponse | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._send_tasks: set[asyncio.Task[None]] = set()
        self._listeners: list[ReconcilerListener] = []
        self._disconnect_listener: Callable[[], None] | None = None
        self._synced = asyncio.Event()
        self._reset_shadow()

    def _reset_shadow(self) -> None:
        suppressor = LoopbackSuppressor(window=self._suppress_window, epsilon=self._epsilon)
        reconciler = Reconciler(self._player, suppressor=suppressor, epsilon=self._epsilon)
        for listener in self._listeners:
            reconciler.add_listener(listener)
        self.reconciler = reconciler
        self.controls = LocalControls(
            self._player,
            suppressor,
            self._send_intent,
            shadow=lambda: reconciler.snapshot,
            clock=self._clock,
        )
        self._synced.clear()

    @property
    def player(self) -> MediaPlayer:
        return self._player

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    def add_listener(self, listener: ReconcilerListener) -> None:
        """Register a reconciler listener that survives reconnects."""
        self._listeners.append(listener)
        self.reconciler.add_listener(listener)

    def set_disconnect_listener(self, listener: Callable[[], None] | None) -> None:
        self._disconnect_listener = listener

    async def connect(self, url: str) -> None:
        """Open the WebSocket and start reconciling incoming snapshots."""
        if self.connected:
            logger.debug("Already connected")
            return
        if self._session is None or self._session.closed:
            self._session = ClientSession()
            self._owns_session = True

        self._ws = await self._session.ws_connect(url, heartbeat=30)
        self._reset_shadow()
        self._reader_task = create_task(self._reader_loop(self._ws), name="tandem-reader")

    async def wait_synced(self, timeout: float | None = None) -> None:
        """Wait until the first snapshot of the current connection was applied."""
        await asyncio.wait_for(self._synced.wait(), timeout=timeout)

    async def _reader_loop(self, ws: ClientWebSocketResponse) -> None:
        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    self.handle_frame(msg.data, self._clock())
                elif msg.type == WSMsgType.ERROR:
                    logger.warning("WebSocket error: %s", ws.exception())
                    break
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Error in reader loop")
        finally:
            logger.info("Connection closed")
            if self._disconnect_listener is not None:
                self._disconnect_listener()

    def handle_frame(self, raw: str, received_at: float) -> None:
        """Decode one coordinator frame and hand it to the reconciler."""
        try:
            message = decode_state_message(raw)
        except ProtocolError as e:
            logger.warning("Ignoring invalid frame: %s", e)
            return
        if self.reconciler.apply(message, received_at):
            self._synced.set()

    def _send_intent(self, intent: Intent) -> None:
        ws = self._ws
        if ws is None or ws.closed:
            logger.debug("Not connected, dropping %s intent", intent.type.value)
            return
        task = create_task(self._send(ws, intent.encode()))
        self._send_tasks.add(task)
        task.add_done_callback(self._send_tasks.discard)

    async def _send(self, ws: ClientWebSocketResponse, text: str) -> None:
        try:
            await ws.send_str(text)
        except (ConnectionResetError, aiohttp.ClientError) as e:
            logger.debug("Failed to send intent: %s", e)

    async def disconnect(self) -> None:
        """Close the connection and release the session if owned."""
        if self._reader_task is not None and not self._reader_task.done():
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
        self._reader_task = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
