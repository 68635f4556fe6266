"""User hooks run when the listener applies a track, play or pause change.

The hook is a shell command. It learns what happened through TANDEM_*
environment variables built from the applied snapshot.
"""

from __future__ import annotations

import asyncio
import logging
import os

from tandem.state import PlaybackState

logger = logging.getLogger(__name__)


def hook_environment(
    event: str,
    snapshot: PlaybackState,
    *,
    server_url: str | None = None,
    client_id: str | None = None,
) -> dict[str, str]:
    """Return the TANDEM_* variables describing an applied change."""
    env = {
        "TANDEM_EVENT": event,
        "TANDEM_PLAYING": "1" if snapshot.is_playing else "0",
        "TANDEM_POSITION": f"{snapshot.anchor_position:.3f}",
        "TANDEM_REVISION": str(snapshot.revision),
    }
    if snapshot.track_id is not None:
        env["TANDEM_TRACK_ID"] = snapshot.track_id
    if server_url:
        env["TANDEM_SERVER_URL"] = server_url
    if client_id:
        env["TANDEM_CLIENT_ID"] = client_id
    return env


async def run_hook(command: str, variables: dict[str, str]) -> None:
    """Run command through the shell with variables added to the environment.

    A failing hook is logged and otherwise ignored.
    """
    event = variables.get("TANDEM_EVENT", "?")
    logger.debug("Hook for %s: %s", event, command)
    try:
        proc = await asyncio.create_subprocess_shell(
            command,
            env={**os.environ, **variables},
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await proc.communicate()
    except Exception:
        logger.exception("Could not start hook for %s: %s", event, command)
        return

    if proc.returncode != 0:
        logger.warning(
            "Hook for %s exited with %d: %s (%s)",
            event,
            proc.returncode,
            command,
            stderr.decode(errors="replace").strip() or "no stderr",
        )
    elif stdout:
        logger.debug("Hook output: %s", stdout.decode(errors="replace").strip())
