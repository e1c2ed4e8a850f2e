from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status

from roombridge.api.deps import get_registry
from roombridge.api.models import (
    AddPluginRequest,
    AddPluginResponse,
    CallRoomRequest,
    CallRoomResponse,
    DisablePluginsRequest,
    HostResponse,
    OpenRoomRequest,
    PlayerIdRequest,
    PluginConfigRequest,
    PluginListResponse,
    PluginToggleResponse,
    RepositoryListResponse,
    RepositoryRequest,
    SessionResponse,
)
from roombridge.errors import (
    AlreadyOpeningError,
    AlreadyRunningError,
    BridgeError,
    InvalidArgumentError,
    NotRunningError,
    RemoteExecutionError,
    ResolutionError,
    RoomCloseError,
    RoomOpenError,
    UnusableError,
)
from roombridge.models import PluginData, RoomInfo
from roombridge.registry import SessionRegistry
from roombridge.session import Session
from roombridge.websocket_hub import hub

router = APIRouter()

STATUS_BY_ERROR: tuple[tuple[type[BridgeError], int], ...] = (
    (InvalidArgumentError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (UnusableError, status.HTTP_410_GONE),
    (NotRunningError, status.HTTP_409_CONFLICT),
    (AlreadyOpeningError, status.HTTP_409_CONFLICT),
    (AlreadyRunningError, status.HTTP_409_CONFLICT),
    (RemoteExecutionError, status.HTTP_502_BAD_GATEWAY),
    (ResolutionError, status.HTTP_404_NOT_FOUND),
    (RoomOpenError, status.HTTP_502_BAD_GATEWAY),
    (RoomCloseError, status.HTTP_502_BAD_GATEWAY),
)


def http_error(e: BridgeError) -> HTTPException:
    for err_type, code in STATUS_BY_ERROR:
        if isinstance(e, err_type):
            return HTTPException(status_code=code, detail=str(e))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


def _session_response(session: Session) -> SessionResponse:
    return SessionResponse(
        session_id=str(session.id),
        usable=session.usable,
        running=session.running,
        phase=session.phase.value,
        room_info=session.room_info,
    )


async def _session(registry: SessionRegistry, session_id: str) -> Session:
    try:
        return await registry.get_session(session_id)
    except BridgeError as e:
        raise http_error(e) from e


@router.websocket("/ws/sessions/{session_id}")
async def session_events_ws(websocket: WebSocket, session_id: str) -> None:
    await hub.connect(session_id, websocket)

    try:
        # Keep the socket open; client can optionally send pings.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        await hub.disconnect(session_id, websocket)
    except Exception:
        await hub.disconnect(session_id, websocket)
        raise


@router.get("/healthcheck")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/host", response_model=HostResponse)
async def ensure_host_route(registry: SessionRegistry = Depends(get_registry)) -> HostResponse:
    try:
        await registry.ensure_host_process()
    except BridgeError as e:
        raise http_error(e) from e
    return HostResponse(
        endpoint=registry.settings.endpoint,
        running=registry.host_running,
        sessions=[str(sid) for sid in registry.sessions],
    )


@router.post("/sessions/{session_id}", response_model=SessionResponse)
async def create_session_route(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> SessionResponse:
    return _session_response(await _session(registry, session_id))


@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session_route(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> SessionResponse:
    # Lookup only; a new tab is created by POST or by the first room operation.
    try:
        session = registry.find_session(session_id)
    except BridgeError as e:
        raise http_error(e) from e
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return _session_response(session)


@router.post("/sessions/{session_id}/room", response_model=RoomInfo)
async def open_room_route(
    session_id: str,
    payload: OpenRoomRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> RoomInfo:
    session = await _session(registry, session_id)
    try:
        return await session.open_room(payload.model_dump(exclude_none=True))
    except BridgeError as e:
        raise http_error(e) from e


@router.delete("/sessions/{session_id}/room", response_model=SessionResponse)
async def close_room_route(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> SessionResponse:
    session = await _session(registry, session_id)
    try:
        await session.close_room()
    except BridgeError as e:
        raise http_error(e) from e
    return _session_response(session)


@router.post("/sessions/{session_id}/room/call", response_model=CallRoomResponse)
async def call_room_route(
    session_id: str,
    payload: CallRoomRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> CallRoomResponse:
    session = await _session(registry, session_id)
    try:
        result = await session.call_room(payload.fn, *payload.args)
    except BridgeError as e:
        raise http_error(e) from e
    return CallRoomResponse(result=result)


@router.post("/sessions/{session_id}/room/{action}", status_code=status.HTTP_204_NO_CONTENT)
async def moderation_route(
    session_id: str,
    action: str,
    payload: PlayerIdRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> None:
    if action not in {"kick", "ban", "unban"}:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown action: {action}")
    session = await _session(registry, session_id)
    try:
        await getattr(session, action)(payload.player_id)
    except BridgeError as e:
        raise http_error(e) from e


@router.get("/sessions/{session_id}/plugins", response_model=PluginListResponse)
async def list_plugins_route(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> PluginListResponse:
    session = await _session(registry, session_id)
    try:
        return PluginListResponse(plugins=await session.get_plugins())
    except BridgeError as e:
        raise http_error(e) from e


@router.post("/sessions/{session_id}/plugins", response_model=AddPluginResponse, status_code=status.HTTP_201_CREATED)
async def add_plugin_route(
    session_id: str,
    payload: AddPluginRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> AddPluginResponse:
    session = await _session(registry, session_id)
    try:
        return AddPluginResponse(plugin_id=await session.add_plugin(payload))
    except BridgeError as e:
        raise http_error(e) from e


@router.post("/sessions/{session_id}/plugins/disable", response_model=PluginToggleResponse)
async def disable_plugins_route(
    session_id: str,
    payload: DisablePluginsRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> PluginToggleResponse:
    session = await _session(registry, session_id)
    try:
        ok = await session.disable_plugin(payload.names)
    except BridgeError as e:
        raise http_error(e) from e
    return PluginToggleResponse(name=",".join(payload.names), ok=ok)


@router.get("/sessions/{session_id}/plugins/{name:path}/dependents", response_model=PluginListResponse)
async def dependent_plugins_route(
    session_id: str,
    name: str,
    registry: SessionRegistry = Depends(get_registry),
) -> PluginListResponse:
    session = await _session(registry, session_id)
    try:
        return PluginListResponse(plugins=await session.get_plugins_that_depend_on(name))
    except BridgeError as e:
        raise http_error(e) from e


@router.post("/sessions/{session_id}/plugins/{name:path}/{toggle}", response_model=PluginToggleResponse)
async def toggle_plugin_route(
    session_id: str,
    name: str,
    toggle: str,
    registry: SessionRegistry = Depends(get_registry),
) -> PluginToggleResponse:
    if toggle not in {"enable", "disable"}:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown action: {toggle}")
    session = await _session(registry, session_id)
    try:
        ok = await (session.enable_plugin(name) if toggle == "enable" else session.disable_plugin(name))
    except BridgeError as e:
        raise http_error(e) from e
    return PluginToggleResponse(name=name, ok=ok)


@router.get("/sessions/{session_id}/plugins/{name:path}", response_model=PluginData)
async def get_plugin_route(session_id: str, name: str, registry: SessionRegistry = Depends(get_registry)) -> PluginData:
    session = await _session(registry, session_id)
    try:
        plugin = await session.get_plugin(name)
    except BridgeError as e:
        raise http_error(e) from e
    if plugin is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Plugin not found")
    return plugin


@router.get("/sessions/{session_id}/repositories", response_model=RepositoryListResponse)
async def list_repositories_route(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> RepositoryListResponse:
    session = await _session(registry, session_id)
    try:
        return RepositoryListResponse(repositories=await session.get_repositories())
    except BridgeError as e:
        raise http_error(e) from e


@router.post("/sessions/{session_id}/repositories", response_model=RepositoryListResponse)
async def add_repository_route(
    session_id: str,
    payload: RepositoryRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> RepositoryListResponse:
    session = await _session(registry, session_id)
    try:
        await session.add_repository(payload.repository, append=payload.append)
        return RepositoryListResponse(repositories=await session.get_repositories())
    except BridgeError as e:
        raise http_error(e) from e


@router.delete("/sessions/{session_id}/repositories", status_code=status.HTTP_204_NO_CONTENT)
async def clear_repositories_route(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> None:
    session = await _session(registry, session_id)
    try:
        await session.clear_repositories()
    except BridgeError as e:
        raise http_error(e) from e


@router.get("/sessions/{session_id}/plugin-config")
async def get_plugin_config_route(
    session_id: str,
    plugin_name: str | None = None,
    registry: SessionRegistry = Depends(get_registry),
) -> dict[str, Any]:
    session = await _session(registry, session_id)
    try:
        return await session.get_plugin_config(plugin_name)
    except BridgeError as e:
        raise http_error(e) from e


@router.put("/sessions/{session_id}/plugin-config", status_code=status.HTTP_204_NO_CONTENT)
async def set_plugin_config_route(
    session_id: str,
    payload: PluginConfigRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> None:
    session = await _session(registry, session_id)
    try:
        await session.set_plugin_config(payload.config, payload.plugin_name)
    except BridgeError as e:
        raise http_error(e) from e
