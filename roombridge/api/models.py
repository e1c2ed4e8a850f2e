from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from roombridge.models import PluginData, PluginDef, Repository, RoomInfo


class OpenRoomRequest(BaseModel):
    # Any extra keys are handed to the room opener untouched.
    model_config = ConfigDict(extra="allow")

    token: str = Field(..., min_length=1)
    roomName: str | None = None
    playerName: str | None = None
    maxPlayers: int | None = Field(default=None, ge=1, le=30)
    public: bool | None = None


class CallRoomRequest(BaseModel):
    fn: str = Field(..., min_length=1)
    args: list[Any] = Field(default_factory=list)


class CallRoomResponse(BaseModel):
    result: Any = None


class PlayerIdRequest(BaseModel):
    player_id: int = Field(..., ge=0)


class SessionResponse(BaseModel):
    session_id: str
    usable: bool
    running: bool
    phase: str
    room_info: RoomInfo | None = None


class HostResponse(BaseModel):
    endpoint: str
    running: bool
    sessions: list[str] = Field(default_factory=list)


class PluginListResponse(BaseModel):
    plugins: list[PluginData]


class PluginToggleResponse(BaseModel):
    name: str
    ok: bool


class DisablePluginsRequest(BaseModel):
    names: list[str] = Field(..., min_length=1)


class AddPluginRequest(PluginDef):
    pass


class AddPluginResponse(BaseModel):
    plugin_id: int


class RepositoryRequest(BaseModel):
    repository: Repository
    append: bool = False


class RepositoryListResponse(BaseModel):
    repositories: list[Repository]


class PluginConfigRequest(BaseModel):
    config: dict[str, Any]
    plugin_name: str | None = None
