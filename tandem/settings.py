"""Settings persistence for Tandem.

Settings are loaded from disk on startup and saved with debouncing, so a
burst of changes results in a single write.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, ClassVar, Literal

logger = logging.getLogger(__name__)

# Debounce delay for saving settings
SAVE_DEBOUNCE_SECONDS = 60.0

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "tandem"


@dataclass
class BaseSettings:
    """Base class for settings with persistence support.

    Changes are debounced and saved after 60 seconds of inactivity,
    or immediately on flush().
    """

    name: str | None = None
    log_level: str | None = None

    # Internal state (not serialized)
    _settings_file: Path | None = field(default=None, repr=False, compare=False)
    _debounce_save_handle: asyncio.TimerHandle | None = field(
        default=None, repr=False, compare=False
    )

    _internal_fields: ClassVar[set[str]] = {"_settings_file", "_debounce_save_handle"}

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to a dictionary for serialization."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name not in self._internal_fields
        }

    def update(self, **updates: Any) -> None:
        """Update fields; None values are ignored and only changes trigger a save."""
        changed = False
        for field_name, value in updates.items():
            if field_name in self._internal_fields or not hasattr(self, field_name):
                raise AttributeError(f"Unknown setting: {field_name}")
            if value is not None and getattr(self, field_name) != value:
                setattr(self, field_name, value)
                changed = True
        if changed:
            self._schedule_save()

    async def load(self) -> None:
        """Load settings from disk."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._load)

    async def flush(self) -> None:
        """Immediately save any pending changes to disk."""
        if self._debounce_save_handle is not None:
            self._debounce_save_handle.cancel()
            self._debounce_save_handle = None
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._save)

    def _schedule_save(self) -> None:
        """Schedule a debounced save operation."""
        if self._debounce_save_handle is not None:
            self._debounce_save_handle.cancel()

        loop = asyncio.get_running_loop()
        self._debounce_save_handle = loop.call_later(
            SAVE_DEBOUNCE_SECONDS, self._debounced_save, loop
        )

    def _debounced_save(self, loop: asyncio.AbstractEventLoop) -> None:
        """Called by the timer to save settings in executor."""
        self._debounce_save_handle = None
        loop.run_in_executor(None, self._save)

    def _load(self) -> None:
        """Load settings from the settings file (blocking I/O)."""
        if self._settings_file is None or not self._settings_file.exists():
            logger.debug("Settings file does not exist: %s", self._settings_file)
            return

        try:
            data = json.loads(self._settings_file.read_text())
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Failed to load settings from %s: %s", self._settings_file, e)
            return

        if not isinstance(data, dict):
            logger.warning("Ignoring malformed settings file %s", self._settings_file)
            return
        for f in fields(self):
            if f.name in self._internal_fields or f.name not in data:
                continue
            setattr(self, f.name, data[f.name])
        logger.info("Loaded settings from %s", self._settings_file)

    def _save(self) -> None:
        """Save settings to the settings file (blocking I/O)."""
        if self._settings_file is None:
            return
        try:
            self._settings_file.parent.mkdir(parents=True, exist_ok=True)
            self._settings_file.write_text(json.dumps(self.to_dict(), indent=2) + "\n")
            logger.debug("Saved settings to %s", self._settings_file)
        except OSError as e:
            logger.warning("Failed to save settings to %s: %s", self._settings_file, e)


@dataclass
class ServeSettings(BaseSettings):
    """Settings for the coordinator (serve mode)."""

    listen_port: int = 8930
    music_dir: str = "music"
    heartbeat_interval: float = 1.0
    repeat: bool = False


@dataclass
class ClientSettings(BaseSettings):
    """Settings for the listening client."""

    client_id: str | None = None
    epsilon_ms: float = 300.0
    suppress_window_ms: float = 500.0
    hook: str | None = None


async def get_settings(
    mode: Literal["serve", "listen"], config_dir: str | None = None
) -> ServeSettings | ClientSettings:
    """Create and load settings for the given mode.

    Args:
        mode: "serve" for the coordinator, "listen" for the client.
        config_dir: Optional directory to store settings. Defaults to ~/.config/tandem.

    Returns:
        Settings instance with values loaded from disk.
    """
    config_path = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
    settings_file = config_path / f"settings-{mode}.json"
    settings: ServeSettings | ClientSettings
    if mode == "serve":
        settings = ServeSettings(_settings_file=settings_file)
    else:
        settings = ClientSettings(_settings_file=settings_file)
    await settings.load()
    return settings
