"""Headless listening client: follows a coordinator with a clock-driven player."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from functools import partial

import aiohttp
from aiohttp import ClientError

from tandem.client import SyncClient
from tandem.discovery import ServiceDiscovery
from tandem.hooks import hook_environment, run_hook
from tandem.player import ClockPlayer
from tandem.state import PlaybackState
from tandem.suppressor import DEFAULT_EPSILON, DEFAULT_SUPPRESS_WINDOW
from tandem.utils import create_task, http_url, resolve_identity

logger = logging.getLogger(__name__)

# How often the player is polled for a learned duration or the end of its track
PLAYER_POLL_INTERVAL = 0.25

INITIAL_BACKOFF = 1.0
MAX_BACKOFF = 300.0


@dataclass
class DaemonConfig:
    """Configuration for the listening daemon."""

    url: str | None = None
    client_id: str | None = None
    client_name: str | None = None
    epsilon: float = DEFAULT_EPSILON
    suppress_window: float = DEFAULT_SUPPRESS_WINDOW
    hook: str | None = None


class ListenDaemon:
    """Keeps a ClockPlayer in step with a coordinator, reconnecting as needed."""

    def __init__(self, config: DaemonConfig, *, clock: Callable[[], float] = time.time) -> None:
        """Initialize the daemon.

        Args:
            config: Daemon configuration.
            clock: Wall-clock source shared by the player and the client.
        """
        self._config = config
        self._durations: dict[str, float | None] = {}
        self._player = ClockPlayer(clock=clock, durations=self._durations.get)
        self.client = SyncClient(
            self._player,
            clock=clock,
            epsilon=config.epsilon,
            suppress_window=config.suppress_window,
        )
        self.client.add_listener(self._on_applied)
        self._discovery = ServiceDiscovery()
        self._shutdown_event = asyncio.Event()
        self._hook_tasks: set[asyncio.Task[None]] = set()
        self._client_id = config.client_id
        self._duration_reported_for: str | None = None
        self.connected_url: str | None = None

    @property
    def player(self) -> ClockPlayer:
        return self._player

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    def update_durations(self, durations: Mapping[str, float | None]) -> None:
        """Replace the known track durations used by the player."""
        self._durations.clear()
        self._durations.update(durations)

    async def run(self) -> int:
        """Run the daemon until interrupted."""
        config = self._config

        identity = resolve_identity(config.client_id, config.client_name)
        if identity is None:
            logger.error("Unable to determine hostname. Please specify --id and/or --name")
            return 1
        self._client_id, client_name = identity
        logger.info("Starting Tandem listener %s (%s)", self._client_id, client_name)

        await self._discovery.start()

        try:
            url = config.url
            if url is None:
                logger.info("Waiting for mDNS discovery of a Tandem coordinator...")
                try:
                    url = await self._discovery.wait_for_first_server()
                    logger.info("Discovered coordinator at %s", url)
                except asyncio.CancelledError:
                    return 1

            loop = asyncio.get_running_loop()

            def signal_handler() -> None:
                logger.debug("Received interrupt signal, shutting down...")
                self.request_shutdown()

            # Signal handlers aren't supported on this platform (e.g., Windows)
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(signal.SIGINT, signal_handler)
                loop.add_signal_handler(signal.SIGTERM, signal_handler)

            watcher = create_task(self._watch_player(), name="player-watch")
            try:
                await self._connection_loop(url)
            finally:
                with contextlib.suppress(NotImplementedError):
                    loop.remove_signal_handler(signal.SIGINT)
                    loop.remove_signal_handler(signal.SIGTERM)
                watcher.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await watcher
                await self.client.disconnect()
                logger.info("Listener stopped")
        finally:
            await self._discovery.stop()

        return 0

    async def _load_catalog(self, url: str) -> None:
        """Fetch track durations so the player can report them and detect track ends."""
        tracks_url = http_url(url, "/tracks")
        try:
            async with aiohttp.ClientSession() as session, session.get(tracks_url) as resp:
                resp.raise_for_status()
                tracks = await resp.json()
            durations = {str(track["id"]): track.get("duration") for track in tracks}
        except (ClientError, TimeoutError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("Failed to fetch track list from %s: %s", tracks_url, e)
            return
        self.update_durations(durations)
        logger.debug("Fetched %d tracks", len(self._durations))

    def _on_applied(self, event: str, snapshot: PlaybackState) -> None:
        logger.info("Applied %s: track=%s", event, snapshot.track_id)
        if not self._config.hook:
            return
        variables = hook_environment(
            event, snapshot, server_url=self.connected_url, client_id=self._client_id
        )
        task = create_task(run_hook(self._config.hook, variables))
        self._hook_tasks.add(task)
        task.add_done_callback(self._hook_tasks.discard)

    def poll_player(self) -> None:
        """Report what the local player learned since the last poll.

        Runs from the watcher task, never while a snapshot is being applied,
        so these reports are never a reaction to a broadcast.
        """
        player = self._player
        track_id = player.track_id
        if track_id is None:
            return
        controls = self.client.controls
        snapshot = self.client.reconciler.snapshot
        if (
            player.duration is not None
            and snapshot is not None
            and snapshot.track_id == track_id
            and snapshot.duration != player.duration
            and self._duration_reported_for != track_id
        ):
            self._duration_reported_for = track_id
            controls.report_duration(track_id, player.duration)
        if player.check_ended():
            logger.info("Track %s ended", track_id)
            controls.track_ended(track_id)

    async def _watch_player(self) -> None:
        while True:
            await asyncio.sleep(PLAYER_POLL_INTERVAL)
            self.poll_player()

    async def _wait_backoff(self, delay: float) -> bool:
        """Wait delay seconds, returning True if shutdown was requested meanwhile."""
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=delay)
        except TimeoutError:
            return False
        return True

    async def _connection_loop(self, initial_url: str) -> None:
        """Run the connection loop with automatic reconnection."""
        client = self.client
        url = initial_url
        error_backoff = INITIAL_BACKOFF

        while not self._shutdown_event.is_set():
            try:
                logger.info("Connecting to %s", url)
                await self._load_catalog(url)
                await client.connect(url)
                self.connected_url = url
                logger.info("Connected to %s", url)
                error_backoff = INITIAL_BACKOFF

                disconnect_event = asyncio.Event()
                client.set_disconnect_listener(partial(asyncio.Event.set, disconnect_event))

                shutdown_task = create_task(self._shutdown_event.wait())
                disconnect_task = create_task(disconnect_event.wait())

                done, pending = await asyncio.wait(
                    {shutdown_task, disconnect_task},
                    return_when=asyncio.FIRST_COMPLETED,
                )

                for task in pending:
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task

                client.set_disconnect_listener(None)
                self.connected_url = None

                if shutdown_task in done:
                    break

                logger.info("Disconnected from coordinator")
                await client.disconnect()

                new_url = self._discovery.current_url()
                if new_url:
                    url = new_url

                if self._config.url is None and not self._discovery.current_url():
                    logger.info("Coordinator offline, waiting for rediscovery...")
                    while not self._shutdown_event.is_set():
                        new_url = self._discovery.current_url()
                        if new_url:
                            url = new_url
                            break
                        await asyncio.sleep(1.0)

                if self._shutdown_event.is_set():
                    break

                logger.info("Reconnecting to %s", url)

            except (TimeoutError, OSError, ClientError) as e:
                logger.warning(
                    "Connection error (%s), retrying in %.0fs",
                    type(e).__name__,
                    error_backoff,
                )

                if await self._wait_backoff(error_backoff):
                    break

                new_url = self._discovery.current_url()
                if new_url and new_url != url:
                    logger.info("Coordinator URL changed to %s", new_url)
                    url = new_url
                    error_backoff = INITIAL_BACKOFF
                else:
                    error_backoff = min(error_backoff * 2, MAX_BACKOFF)

            except Exception:
                logger.exception("Unexpected error during connection")
                if await self._wait_backoff(error_backoff):
                    break
                error_backoff = min(error_backoff * 2, MAX_BACKOFF)
