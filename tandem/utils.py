"""Utility functions for Tandem."""

from __future__ import annotations

import asyncio
import inspect
import socket
import sys
from collections.abc import Coroutine
from typing import TypeVar
from urllib.parse import urlsplit, urlunsplit

_T = TypeVar("_T")

# Check if eager_start is supported (Python 3.12+)
_SUPPORTS_EAGER_START = sys.version_info >= (3, 12) and "eager_start" in inspect.signature(
    asyncio.create_task
).parameters


def create_task(
    coro: Coroutine[None, None, _T],
    *,
    name: str | None = None,
    eager_start: bool = True,
) -> asyncio.Task[_T]:
    """Create an asyncio task, starting it eagerly where supported.

    Eager tasks run up to their first suspension point immediately, so a
    broadcast fanned out as one task per connection is written in the order
    the broadcasts were produced.

    Args:
        coro: The coroutine to run as a task.
        name: Optional name for the task (for debugging).
        eager_start: Whether to start the task eagerly (Python 3.12+ only).

    Returns:
        The created asyncio Task.
    """
    kwargs = {"name": name} if name is not None else {}
    if _SUPPORTS_EAGER_START:
        kwargs["eager_start"] = eager_start
    return asyncio.create_task(coro, **kwargs)


def resolve_identity(client_id: str | None, client_name: str | None) -> tuple[str, str] | None:
    """Fill in a missing client id and name from the hostname.

    Returns:
        (client_id, client_name), or None if the hostname is unavailable.
    """
    if client_id is not None and client_name is not None:
        return client_id, client_name
    hostname = socket.gethostname()
    if not hostname:
        return None
    return client_id or f"tandem-{hostname}", client_name or hostname


def http_url(ws_url: str, path: str) -> str:
    """Return the HTTP URL for path on the host serving ws_url."""
    parts = urlsplit(ws_url)
    scheme = {"ws": "http", "wss": "https"}.get(parts.scheme, parts.scheme)
    return urlunsplit((scheme, parts.netloc, path, "", ""))
