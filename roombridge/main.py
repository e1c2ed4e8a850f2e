import logging

from fastapi import FastAPI

from roombridge.api.routes import router
from roombridge.config import settings_from_env
from roombridge.host.playwright_host import PlaywrightLauncher, make_room_opener_factory
from roombridge.registry import SessionRegistry
from roombridge.websocket_hub import hub

app = FastAPI(title="roombridge", version="0.1.0")
app.include_router(router)
# Configure logging
logging.basicConfig(level=logging.DEBUG)
logger = logging.getLogger(__name__)


def build_registry() -> SessionRegistry:
    settings = settings_from_env()
    registry = SessionRegistry(
        launcher=PlaywrightLauncher(settings),
        opener_factory=make_room_opener_factory(settings),
        settings=settings,
        session_hooks=[hub.attach],
    )

    if settings.redis_url:
        from roombridge.infra.redis_client import create_redis
        from roombridge.streams import attach_event_stream

        r = create_redis(settings.redis_url)
        registry.add_session_hook(lambda session: attach_event_stream(r=r, session=session))
    return registry


@app.on_event("startup")
async def _startup() -> None:
    # Tests install their own registry before the app starts.
    if getattr(app.state, "registry", None) is None:
        app.state.registry = build_registry()

    registry = app.state.registry
    if registry.settings.launch_on_startup:
        await registry.ensure_host_process()


@app.on_event("shutdown")
async def _shutdown() -> None:
    registry = getattr(app.state, "registry", None)
    if registry is not None:
        await registry.terminate()


@app.get("/info")
async def info() -> dict[str, str]:
    return {"name": "roombridge", "version": "0.1.0"}
