"""Command line entry point for Tandem."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from tandem.daemon.daemon import DaemonConfig, ListenDaemon
from tandem.serve.server import ServerConfig, run_server
from tandem.settings import ClientSettings, ServeSettings, get_settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tandem", description="Keep media players in lockstep across clients"
    )
    parser.add_argument("--log-level", help="Logging level (DEBUG, INFO, WARNING, ERROR)")
    parser.add_argument("--config-dir", help="Directory for settings (default ~/.config/tandem)")
    parser.add_argument("--name", help="Friendly name advertised or reported")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the coordinator")
    serve.add_argument("--host", default="0.0.0.0", help="Address to listen on")
    serve.add_argument("--port", type=int, help="Port to listen on (default 8930)")
    serve.add_argument("--music-dir", help="Directory with the tracks to serve (default ./music)")
    serve.add_argument(
        "--heartbeat-interval", type=float, help="Seconds between heartbeats (default 1.0)"
    )
    serve.add_argument(
        "--repeat",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Wrap around at the end of the track list",
    )
    serve.add_argument(
        "--no-advertise", action="store_true", help="Do not advertise the coordinator via mDNS"
    )

    listen = subparsers.add_parser("listen", help="Follow a coordinator with a headless player")
    listen.add_argument("--url", help="Coordinator WebSocket URL (discovered via mDNS if omitted)")
    listen.add_argument("--id", dest="client_id", help="Client identifier")
    listen.add_argument("--epsilon-ms", type=float, help="Drift tolerated before seeking")
    listen.add_argument(
        "--suppress-window-ms", type=float, help="Window attributing echoes to local actions"
    )
    listen.add_argument("--hook", help="Shell command run on applied track/play/pause changes")
    return parser


def _configure_logging(level_name: str | None) -> None:
    level = getattr(logging, (level_name or "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def _serve(args: argparse.Namespace, settings: ServeSettings) -> int:
    settings.update(
        name=args.name,
        log_level=args.log_level,
        listen_port=args.port,
        music_dir=args.music_dir,
        heartbeat_interval=args.heartbeat_interval,
        repeat=args.repeat,
    )
    config = ServerConfig(
        music_dir=Path(settings.music_dir).expanduser(),
        host=args.host,
        port=settings.listen_port,
        name=settings.name,
        heartbeat_interval=settings.heartbeat_interval,
        repeat=settings.repeat,
        advertise=not args.no_advertise,
    )
    try:
        return await run_server(config)
    finally:
        await settings.flush()


async def _listen(args: argparse.Namespace, settings: ClientSettings) -> int:
    settings.update(
        name=args.name,
        log_level=args.log_level,
        client_id=args.client_id,
        epsilon_ms=args.epsilon_ms,
        suppress_window_ms=args.suppress_window_ms,
        hook=args.hook,
    )
    config = DaemonConfig(
        url=args.url,
        client_id=settings.client_id,
        client_name=settings.name,
        epsilon=settings.epsilon_ms / 1000,
        suppress_window=settings.suppress_window_ms / 1000,
        hook=settings.hook,
    )
    try:
        return await ListenDaemon(config).run()
    finally:
        await settings.flush()


async def _run(args: argparse.Namespace) -> int:
    settings = await get_settings(args.command, args.config_dir)
    _configure_logging(args.log_level or settings.log_level)
    if isinstance(settings, ServeSettings):
        return await _serve(args, settings)
    return await _listen(args, settings)


def main(argv: Sequence[str] | None = None) -> int:
    """Parse arguments and run the selected mode."""
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
