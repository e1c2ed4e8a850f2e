from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Literal, Protocol

from roombridge.models import RoomInfo

ContextEventCategory = Literal["pageerror", "crash", "console", "close"]

# Inbound remote events arrive as plain JSON-ish dicts, tagged by "kind".
InboundHandler = Callable[[Mapping[str, Any]], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class ConsoleMessage:
    """One console line raised by a RemoteContext.

    `level` follows the browser's naming ("log", "error", "warning", ...).
    """

    level: str
    text: str


class RemoteContext(Protocol):
    """One isolated script sandbox reachable only through call/response."""

    async def execute(self, source: str, args: Sequence[Any]) -> Mapping[str, Any]:  # pragma: no cover
        """Run `source` with `args`; always returns `{"ok": bool, "payload": ...}`."""
        ...

    def on(self, category: ContextEventCategory, handler: Callable[[Any], None]) -> None:  # pragma: no cover
        ...


class RoomOpener(Protocol):
    async def open(self, config: Mapping[str, Any], timeout: float) -> RoomInfo:  # pragma: no cover
        ...

    async def close(self) -> None:  # pragma: no cover
        ...


# Builds the opener for a context; the opener delivers remote events to the handler.
RoomOpenerFactory = Callable[[RemoteContext, InboundHandler], RoomOpener]


class HostProcess(Protocol):
    async def default_context(self) -> RemoteContext:  # pragma: no cover
        ...

    async def new_context(self) -> RemoteContext:  # pragma: no cover
        ...

    async def close(self) -> None:  # pragma: no cover
        """Terminate the process."""
        ...

    async def detach(self) -> None:  # pragma: no cover
        """Drop the control connection, leaving the process running."""
        ...


class HostLauncher(Protocol):
    async def attach(self, port: int) -> HostProcess | None:  # pragma: no cover
        ...

    async def spawn(self) -> HostProcess:  # pragma: no cover
        ...
