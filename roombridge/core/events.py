from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal, get_args

from roombridge.models import PluginData, RoomEventArgs, RoomInfo, SessionId

EventName = Literal[
    "page-closed",
    "page-crash",
    "page-error",
    "error-logged",
    "warning-logged",
    "open-room-start",
    "open-room-stop",
    "open-room-error",
    "close-room",
    "room-event",
    "plugin-loaded",
    "plugin-removed",
    "plugin-enabled",
    "plugin-disabled",
]

EVENT_NAMES: frozenset[str] = frozenset(get_args(EventName))

# Payload shape per notification; None means the notification carries no payload.
PAYLOAD_TYPES: dict[str, tuple[type, ...] | None] = {
    "page-closed": None,
    "page-crash": (BaseException, str),
    "page-error": (BaseException, str),
    "error-logged": (str,),
    "warning-logged": (str,),
    "open-room-start": (Mapping,),
    "open-room-stop": (RoomInfo,),
    "open-room-error": (BaseException,),
    "close-room": None,
    "room-event": (RoomEventArgs,),
    "plugin-loaded": (PluginData,),
    "plugin-removed": (PluginData,),
    "plugin-enabled": (PluginData,),
    "plugin-disabled": (PluginData,),
}

# Room config keys never rendered outside the process.
SECRET_CONFIG_KEYS = frozenset({"token", "hostPassword", "adminPassword"})

PLUGIN_EVENT_NAMES: dict[str, EventName] = {
    "pluginLoaded": "plugin-loaded",
    "pluginRemoved": "plugin-removed",
    "pluginEnabled": "plugin-enabled",
    "pluginDisabled": "plugin-disabled",
}


def check_payload(name: str, payload: Any) -> None:
    if name not in PAYLOAD_TYPES:
        raise ValueError(f"Unknown notification: {name}")
    expected = PAYLOAD_TYPES[name]
    if expected is None:
        if payload is not None:
            raise TypeError(f"Notification '{name}' carries no payload")
        return
    if not isinstance(payload, expected):
        names = ",".join(t.__name__ for t in expected)
        raise TypeError(f"Notification '{name}' expects payload of type {names}, got {type(payload).__name__}")


@dataclass(frozen=True, slots=True)
class SessionEvent:
    type: EventName
    session_id: SessionId
    payload: Any
    ts: datetime

    @staticmethod
    def now(*, type: EventName, session_id: SessionId, payload: Any = None) -> "SessionEvent":
        check_payload(type, payload)
        return SessionEvent(type=type, session_id=session_id, payload=payload, ts=datetime.now(timezone.utc))

    def payload_for_wire(self) -> Any:
        """JSON-friendly rendering of the payload (exceptions become their message)."""

        p = self.payload
        if p is None:
            return None
        if isinstance(p, BaseException):
            return {"error": type(p).__name__, "message": str(p)}
        if hasattr(p, "model_dump"):
            return p.model_dump(mode="json", by_alias=True)
        if isinstance(p, Mapping):
            return {k: ("***" if k in SECRET_CONFIG_KEYS else v) for k, v in p.items()}
        return p
