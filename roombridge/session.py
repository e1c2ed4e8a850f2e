from __future__ import annotations

import logging
from collections.abc import Mapping
from enum import StrEnum
from typing import Any

from pydantic import ValidationError

from roombridge import rpc
from roombridge.contracts import ConsoleMessage, RemoteContext, RoomOpenerFactory
from roombridge.core.bus import Handler, NotificationBus, Unsubscribe
from roombridge.core.events import PLUGIN_EVENT_NAMES, SECRET_CONFIG_KEYS, EventName, SessionEvent
from roombridge.errors import (
    AlreadyOpeningError,
    InvalidArgumentError,
    NotRunningError,
    RoomCloseError,
    RoomOpenError,
    UnusableError,
)
from roombridge.models import PluginManagerEvent, RoomHandlerEvent, RoomInfo, SessionId, inbound_event_adapter
from roombridge.plugins import PluginManagement
from roombridge.rpc import RemoteMethod

logger = logging.getLogger(__name__)
remote_log = logging.getLogger("roombridge.remote")

DEFAULT_OPEN_TIMEOUT = 15.0

# Plugin loading queries every repository; their 404s are expected noise.
RESOURCE_404_PREFIX = "Failed to load resource: the server responded with a status of 404 (Not Found)"


class SessionPhase(StrEnum):
    idle = "idle"
    opening = "opening"
    running = "running"
    closing = "closing"
    unusable = "unusable"


def validate_session_id(session_id: Any) -> SessionId:
    # 0 is a valid identifier; None and "" are not.
    if session_id is None or session_id == "" or isinstance(session_id, bool):
        raise InvalidArgumentError("Missing required argument: session_id")
    if not isinstance(session_id, (str, int)):
        raise InvalidArgumentError("session_id must be a string or an integer")
    return session_id


def _require_player_id(player_id: Any) -> int:
    if player_id is None or isinstance(player_id, bool) or not isinstance(player_id, int):
        raise InvalidArgumentError("Missing required argument: player_id")
    return player_id


class Session(PluginManagement):
    """State machine and RPC facade bound 1:1 to one RemoteContext.

    Phases: idle -> opening -> running -> closing -> idle, plus the terminal
    `unusable` phase entered when the context reports closed or crashed.
    Only `open_room` is mutually exclusive with itself; callers serialize the
    rest of their usage per session if they need stronger guarantees.

    Notifications (see `roombridge.core.events.EventName`) are observed with
    `subscribe(name, handler)`, which returns an unsubscribe handle.
    """

    def __init__(
        self,
        *,
        session_id: SessionId,
        context: RemoteContext,
        opener_factory: RoomOpenerFactory,
        open_timeout: float = DEFAULT_OPEN_TIMEOUT,
    ) -> None:
        if context is None:
            raise InvalidArgumentError("Missing required argument: context")
        self.id = validate_session_id(session_id)
        self.context = context
        self.open_timeout = open_timeout

        self._usable = True
        self.room_info: RoomInfo | None = None
        self._open_lock = False
        self._closing = 0

        self._bus = NotificationBus()
        self._opener = opener_factory(context, self.handle_remote_event)
        self._register_context_listeners()

    def __repr__(self) -> str:
        return f"<Session id={self.id!r} phase={self.phase.value}>"

    @property
    def usable(self) -> bool:
        return self._usable

    @property
    def running(self) -> bool:
        return self.room_info is not None

    @property
    def opening(self) -> bool:
        return self._open_lock

    @property
    def phase(self) -> SessionPhase:
        if not self._usable:
            return SessionPhase.unusable
        if self._open_lock:
            return SessionPhase.opening
        if self._closing:
            return SessionPhase.closing
        if self.room_info is not None:
            return SessionPhase.running
        return SessionPhase.idle

    # ---- notifications ----

    def subscribe(self, name: EventName, handler: Handler) -> Unsubscribe:
        return self._bus.subscribe(name, handler)

    def subscribe_all(self, handler: Handler) -> Unsubscribe:
        return self._bus.subscribe_all(handler)

    def _emit(self, name: EventName, payload: Any = None) -> None:
        self._bus.emit(SessionEvent.now(type=name, session_id=self.id, payload=payload))

    def _mark_unusable(self) -> None:
        self._usable = False
        self.room_info = None

    def _register_context_listeners(self) -> None:
        self.context.on("pageerror", self._on_page_error)
        self.context.on("crash", self._on_crash)
        self.context.on("console", self._on_console)
        self.context.on("close", self._on_close)

    def _on_page_error(self, error: Any) -> None:
        remote_log.error("[BROWSER] %s: %s", self.id, error)
        self._emit("page-error", error if isinstance(error, BaseException) else str(error))

    def _on_crash(self, error: Any) -> None:
        self._mark_unusable()
        remote_log.error("[BROWSER] %s crashed: %s", self.id, error)
        self._emit("page-crash", error if isinstance(error, BaseException) else str(error))

    def _on_console(self, msg: ConsoleMessage) -> None:
        remote_log.debug("[BROWSER] %s: %s", self.id, msg.text)

        if msg.level == "error":
            if msg.text.startswith(RESOURCE_404_PREFIX):
                return
            self._emit("error-logged", msg.text)
            remote_log.error("%s", msg.text)
        elif msg.level in ("warning", "warn"):
            self._emit("warning-logged", msg.text)
            remote_log.warning("%s", msg.text)

    def _on_close(self, _payload: Any = None) -> None:
        self._mark_unusable()
        self._emit("page-closed")

    async def handle_remote_event(self, raw: Mapping[str, Any]) -> None:
        """Inbound entry point for events raised inside the remote context.

        `kind: "room"` events are forwarded verbatim as `room-event`;
        `kind: "plugin"` events are demultiplexed by their `eventType`.
        """

        try:
            event = inbound_event_adapter.validate_python(raw)
        except ValidationError as e:
            logger.warning("Dropping malformed remote event for session %s: %s", self.id, e)
            return

        if isinstance(event, RoomHandlerEvent):
            self._emit("room-event", event.to_event_args())
        elif isinstance(event, PluginManagerEvent):
            self._emit(PLUGIN_EVENT_NAMES[event.event_type], event.plugin_data)

    # ---- guards ----

    def _require_usable(self) -> None:
        if not self._usable:
            raise UnusableError()

    def _require_running(self) -> None:
        self._require_usable()
        if not self.running:
            raise NotRunningError()

    async def _invoke(self, method: RemoteMethod, *args: Any) -> Any:
        return await rpc.invoke(self.context, method, *args)

    # ---- room lifecycle ----

    async def open_room(self, config: Mapping[str, Any]) -> RoomInfo:
        """Open a room in this session's context.

        Emits `open-room-start`, then either `open-room-stop` with the RoomInfo or
        `open-room-error` with the failure. A failure is also raised to the caller
        as `RoomOpenError`, or as `UnusableError` when the context closed or
        crashed before the opener answered.
        """

        self._require_usable()
        if self._open_lock:
            raise AlreadyOpeningError()
        if not isinstance(config, Mapping):
            raise InvalidArgumentError("Missing required argument: config")

        logger.debug("Session.open_room %s: %s", self.id, {k: v for k, v in config.items() if k not in SECRET_CONFIG_KEYS})
        self._emit("open-room-start", config)
        self._open_lock = True
        try:
            try:
                info = await self._opener.open(config, self.open_timeout)
            finally:
                self._open_lock = False
        except Exception as e:
            self._emit("open-room-error", e)
            raise RoomOpenError(f"Failed to open room: {e}") from e

        if not self._usable:
            # The context died while the opener was still working.
            err = UnusableError("Session became unusable while the room was opening.")
            self._emit("open-room-error", err)
            raise err

        self.room_info = info
        self._emit("open-room-stop", info)
        return info

    async def close_room(self) -> None:
        # No lock: a close racing an in-flight open is the caller's concern.
        self._require_usable()
        logger.debug("Session.close_room %s", self.id)
        self._closing += 1
        try:
            await self._opener.close()
        except Exception as e:
            raise RoomCloseError(f"Failed to close room: {e}") from e
        finally:
            self._closing -= 1
        self.room_info = None
        self._emit("close-room")

    async def call_room(self, fn: str, *args: Any) -> Any:
        """Call a function of the remote room object and return its result."""

        self._require_running()
        if not fn or not isinstance(fn, str):
            raise InvalidArgumentError("Missing required argument: fn")
        logger.debug("Session.call_room %s: fn=%s args=%s", self.id, fn, args)
        return await self._invoke(RemoteMethod.call_room, fn, list(args))

    async def evaluate(self, source: str) -> Any:
        """Evaluate raw script source inside the remote context."""

        self._require_running()
        if not source or not isinstance(source, str):
            raise InvalidArgumentError("Missing required argument: source")
        return await rpc.evaluate(self.context, source)

    # ---- moderation ----

    async def kick(self, player_id: int) -> None:
        self._require_running()
        await self._invoke(RemoteMethod.kick, _require_player_id(player_id))

    async def ban(self, player_id: int) -> None:
        self._require_running()
        await self._invoke(RemoteMethod.ban, _require_player_id(player_id))

    async def unban(self, player_id: int) -> None:
        self._require_running()
        await self._invoke(RemoteMethod.unban, _require_player_id(player_id))

    async def banned_players(self) -> list[dict[str, Any]]:
        self._require_running()
        return list(await self._invoke(RemoteMethod.banned_players) or [])
