from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

SessionId = str | int

# Repositories are either a plain URL or a structured descriptor understood remotely.
Repository = str | dict[str, Any]

RoomHandlerName = Literal[
    "onPlayerJoin",
    "onPlayerLeave",
    "onTeamVictory",
    "onPlayerChat",
    "onTeamGoal",
    "onGameStart",
    "onGameStop",
    "onPlayerAdminChange",
    "onPlayerTeamChange",
    "onPlayerKicked",
    "onGamePause",
    "onGameUnpause",
    "onPositionsReset",
    "onStadiumChange",
]

PluginEventType = Literal["pluginLoaded", "pluginRemoved", "pluginEnabled", "pluginDisabled"]


class _WireModel(BaseModel):
    """Remote side speaks camelCase; accept both spellings on input."""

    model_config = ConfigDict(populate_by_name=True)


class RoomInfo(_WireModel):
    # The opener returns the config the room was started with plus the link.
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    room_link: str = Field(..., alias="roomLink", min_length=1)


class PluginData(_WireModel):
    id: int
    name: str
    is_enabled: bool = Field(..., alias="isEnabled")
    spec: dict[str, Any] | None = Field(default=None, alias="pluginSpec")


class PluginDef(_WireModel):
    """Plugin source text. ``name`` can be overridden by the plugin's own spec."""

    name: str | None = None
    content: str = Field(..., min_length=1)


class RoomEventArgs(_WireModel):
    handler_name: RoomHandlerName = Field(..., alias="handlerName")
    args: list[Any] = Field(default_factory=list)


class CallEnvelope(BaseModel):
    ok: bool
    payload: Any = None


class RoomHandlerEvent(_WireModel):
    kind: Literal["room"]
    handler_name: RoomHandlerName = Field(..., alias="handlerName")
    args: list[Any] = Field(default_factory=list)

    def to_event_args(self) -> RoomEventArgs:
        return RoomEventArgs(handler_name=self.handler_name, args=list(self.args))


class PluginManagerEvent(_WireModel):
    kind: Literal["plugin"]
    event_type: PluginEventType = Field(..., alias="eventType")
    plugin_data: PluginData = Field(..., alias="pluginData")


InboundEvent = Annotated[RoomHandlerEvent | PluginManagerEvent, Field(discriminator="kind")]

inbound_event_adapter: TypeAdapter[RoomHandlerEvent | PluginManagerEvent] = TypeAdapter(InboundEvent)
