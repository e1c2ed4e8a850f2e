from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from roombridge.errors import InvalidArgumentError

DEFAULT_PORT = 3066
DEFAULT_HOST_URL = "https://www.haxball.com/headless"


@dataclass(frozen=True, slots=True)
class Viewport:
    width: int = 400
    height: int = 500


@dataclass(frozen=True, slots=True)
class HostSettings:
    # Remote-debugging port of the host process. Do not expose it outside your LAN.
    port: int = DEFAULT_PORT
    viewport: Viewport = field(default_factory=Viewport)
    no_sandbox: bool = False
    headless: bool = True
    user_data_dir: Path = field(default_factory=lambda: Path.cwd() / "user-data-dir")
    # Seconds handed to RoomOpener.open.
    open_timeout: float = 15.0
    host_url: str = DEFAULT_HOST_URL
    launch_on_startup: bool = False
    redis_url: str | None = None

    def __post_init__(self) -> None:
        if self.port == 0:
            raise InvalidArgumentError("INVALID_PORT: 0")
        if self.open_timeout <= 0:
            raise InvalidArgumentError("open_timeout must be positive")

    @property
    def endpoint(self) -> str:
        return f"http://localhost:{self.port}"


def _flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def parse_viewport(raw: str) -> Viewport:
    try:
        w, h = raw.lower().split("x", 1)
        return Viewport(width=int(w), height=int(h))
    except ValueError as e:
        raise InvalidArgumentError(f"Viewport must look like WIDTHxHEIGHT, got {raw!r}") from e


def settings_from_env() -> HostSettings:
    user_data_dir = os.environ.get("ROOMBRIDGE_USER_DATA_DIR")
    viewport = os.environ.get("ROOMBRIDGE_VIEWPORT")
    return HostSettings(
        port=int(os.environ.get("ROOMBRIDGE_PORT", DEFAULT_PORT)),
        viewport=parse_viewport(viewport) if viewport else Viewport(),
        no_sandbox=_flag("ROOMBRIDGE_NO_SANDBOX", False),
        headless=_flag("ROOMBRIDGE_HEADLESS", True),
        user_data_dir=Path(user_data_dir) if user_data_dir else Path.cwd() / "user-data-dir",
        open_timeout=float(os.environ.get("ROOMBRIDGE_OPEN_TIMEOUT", 15)),
        host_url=os.environ.get("ROOMBRIDGE_HOST_URL", DEFAULT_HOST_URL),
        launch_on_startup=_flag("ROOMBRIDGE_LAUNCH_ON_STARTUP", False),
        # When set, session notifications are mirrored to Redis Streams.
        redis_url=os.environ.get("REDIS_URL") or None,
    )
