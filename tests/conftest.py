from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from typing import Any

import pytest

from roombridge.config import HostSettings
from roombridge.contracts import InboundHandler, RemoteContext
from roombridge.core.events import SessionEvent
from roombridge.models import RoomInfo
from roombridge.registry import SessionRegistry
from roombridge.rpc import DISPATCH_SOURCE, EVALUATE_SOURCE
from roombridge.session import Session


@pytest.fixture(scope="session", autouse=True)
def _load_dotenv_for_tests() -> None:
    """Load repo .env for local runs.

    In CI, we *don't* auto-load `.env` by default.
    Opt-in locally with: ROOMBRIDGE_LOAD_DOTENV_FOR_TESTS=1
    """

    if os.environ.get("CI") and os.environ.get("ROOMBRIDGE_LOAD_DOTENV_FOR_TESTS") != "1":
        return

    env_path = Path(__file__).resolve().parents[1] / ".env"
    if env_path.exists():
        from dotenv import load_dotenv

        load_dotenv(dotenv_path=env_path, override=False)


class FakeRemoteBridge:
    """In-memory stand-in for the remote `window.hroomie` object."""

    def __init__(self) -> None:
        self._next_id = 0
        self.plugins: dict[str, dict[str, Any]] = {}
        # Plugins that can be auto-loaded by name from the repositories.
        self.available: set[str] = set()
        self.repositories: list[Any] = []
        self.room_functions: dict[str, Callable[..., Any]] = {"getPlayerList": lambda: []}
        self.failing_disable: set[str] = set()
        self.banned: list[dict[str, Any]] = []
        self.calls: list[tuple[str, list[Any]]] = []

    def load(self, name: str, *, enabled: bool = True, config: dict[str, Any] | None = None) -> int:
        pid = self._next_id
        self._next_id += 1
        self.plugins[name] = {
            "id": pid,
            "name": name,
            "isEnabled": enabled,
            "pluginSpec": {"name": name, "dependencies": []},
            "config": dict(config or {}),
        }
        return pid

    def _data(self, name: str) -> dict[str, Any]:
        p = self.plugins[name]
        return {"id": p["id"], "name": name, "isEnabled": p["isEnabled"], "pluginSpec": p["pluginSpec"]}

    def callRoom(self, fn: str, args: list[Any]) -> Any:
        if fn not in self.room_functions:
            raise RuntimeError(f"room.{fn} is not a function")
        return self.room_functions[fn](*args)

    def getPlugins(self) -> list[dict[str, Any]]:
        return [self._data(n) for n in self.plugins]

    def getPlugin(self, name: str) -> dict[str, Any] | None:
        return self._data(name) if name in self.plugins else None

    def enablePlugin(self, name: str) -> bool:
        if name not in self.plugins:
            return False
        self.plugins[name]["isEnabled"] = True
        return True

    def disablePlugin(self, name: str) -> bool:
        if name not in self.plugins or name in self.failing_disable:
            return False
        self.plugins[name]["isEnabled"] = False
        return True

    def hasPlugin(self, name: str) -> bool:
        return name in self.plugins

    def addPlugin(self, plugin: dict[str, Any]) -> int:
        if "throw" in plugin["content"]:
            return -1
        return self.load(plugin.get("name") or f"plugin-{self._next_id}")

    def getDependentPlugins(self, name: str) -> list[dict[str, Any]]:
        return [self._data(n) for n, p in self.plugins.items() if name in p["pluginSpec"]["dependencies"]]

    def addRepository(self, repository: Any, append: bool) -> bool:
        if append:
            self.repositories.append(repository)
        else:
            self.repositories.insert(0, repository)
        return True

    def getRepositories(self) -> list[Any]:
        return list(self.repositories)

    def clearRepositories(self) -> None:
        self.repositories = []

    def setPluginConfig(self, name: str, config: dict[str, Any]) -> int:
        if name not in self.plugins:
            if name not in self.available:
                return -1
            self.load(name)
        self.plugins[name]["config"].update(config)
        return self.plugins[name]["id"]

    def getPluginConfig(self, name: str) -> dict[str, Any] | None:
        return dict(self.plugins[name]["config"]) if name in self.plugins else None

    def getPluginConfigs(self) -> dict[str, Any]:
        return {n: dict(p["config"]) for n, p in self.plugins.items()}

    def kick(self, player_id: int) -> None:
        return None

    def ban(self, player_id: int) -> None:
        self.banned.append({"id": player_id, "name": f"player-{player_id}"})

    def unban(self, player_id: int) -> None:
        self.banned = [p for p in self.banned if p["id"] != player_id]

    def bannedPlayers(self) -> list[dict[str, Any]]:
        return list(self.banned)


class FakeRemoteContext:
    def __init__(self, name: str = "tab") -> None:
        self.name = name
        self.bridge = FakeRemoteBridge()
        self.listeners: dict[str, list[Callable[[Any], None]]] = {}
        self.executed: list[tuple[str, list[Any]]] = []
        self.eval_results: dict[str, Any] = {}

    def on(self, category: str, handler: Callable[[Any], None]) -> None:
        self.listeners.setdefault(category, []).append(handler)

    def fire(self, category: str, payload: Any = None) -> None:
        for handler in self.listeners.get(category, []):
            handler(payload)

    async def execute(self, source: str, args: Sequence[Any]) -> Mapping[str, Any]:
        await asyncio.sleep(0)
        if source == DISPATCH_SOURCE:
            method, method_args = args
            self.executed.append((method, list(method_args)))
            self.bridge.calls.append((method, list(method_args)))
            fn = getattr(self.bridge, method, None)
            if fn is None:
                return {"ok": False, "payload": f"Unknown remote method: {method}"}
            try:
                return {"ok": True, "payload": fn(*method_args)}
            except Exception as e:
                return {"ok": False, "payload": str(e)}
        if source == EVALUATE_SOURCE:
            (code,) = args
            self.executed.append(("evaluate", [code]))
            if code not in self.eval_results:
                return {"ok": False, "payload": f"ReferenceError: {code} is not defined"}
            return {"ok": True, "payload": self.eval_results[code]}
        return {"ok": False, "payload": "unexpected source"}


class FakeRoomOpener:
    def __init__(self, context: RemoteContext, on_event: InboundHandler) -> None:
        self.context = context
        self.on_event = on_event
        self.opened: list[tuple[dict[str, Any], float]] = []
        self.closed = 0
        self.fail_with: BaseException | None = None
        # When set, open() waits on it before answering.
        self.gate: asyncio.Event | None = None

    async def open(self, config: Mapping[str, Any], timeout: float) -> RoomInfo:
        self.opened.append((dict(config), timeout))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            raise self.fail_with
        return RoomInfo(roomLink="https://www.haxball.com/play?c=abc123", roomName=config.get("roomName"))

    async def close(self) -> None:
        await asyncio.sleep(0)
        self.closed += 1


class OpenerFactory:
    def __init__(self) -> None:
        self.openers: list[FakeRoomOpener] = []

    def __call__(self, context: RemoteContext, on_event: InboundHandler) -> FakeRoomOpener:
        opener = FakeRoomOpener(context, on_event)
        self.openers.append(opener)
        return opener


class FakeHost:
    def __init__(self) -> None:
        self.contexts: list[FakeRemoteContext] = [FakeRemoteContext("default")]
        self.default_requests = 0
        self.new_requests = 0
        self.closed = False
        self.detached = False

    async def default_context(self) -> FakeRemoteContext:
        self.default_requests += 1
        return self.contexts[0]

    async def new_context(self) -> FakeRemoteContext:
        self.new_requests += 1
        ctx = FakeRemoteContext(f"tab-{len(self.contexts)}")
        self.contexts.append(ctx)
        return ctx

    async def close(self) -> None:
        self.closed = True
        for ctx in self.contexts:
            ctx.fire("close")

    async def detach(self) -> None:
        self.detached = True


class FakeLauncher:
    def __init__(self, foreign: FakeHost | None = None) -> None:
        self.foreign = foreign
        self.spawned: list[FakeHost] = []

    async def attach(self, port: int) -> FakeHost | None:
        return self.foreign

    async def spawn(self) -> FakeHost:
        host = FakeHost()
        self.spawned.append(host)
        return host


class EventRecorder:
    def __init__(self) -> None:
        self.events: list[SessionEvent] = []

    def __call__(self, event: SessionEvent) -> None:
        self.events.append(event)

    @property
    def types(self) -> list[str]:
        return [e.type for e in self.events]

    def of(self, name: str) -> list[SessionEvent]:
        return [e for e in self.events if e.type == name]


@pytest.fixture()
def context() -> FakeRemoteContext:
    return FakeRemoteContext()


@pytest.fixture()
def opener_factory() -> OpenerFactory:
    return OpenerFactory()


@pytest.fixture()
def session(context: FakeRemoteContext, opener_factory: OpenerFactory) -> Session:
    return Session(session_id="room-1", context=context, opener_factory=opener_factory, open_timeout=5.0)


@pytest.fixture()
def opener(session: Session, opener_factory: OpenerFactory) -> FakeRoomOpener:
    return opener_factory.openers[-1]


@pytest.fixture()
def recorder(session: Session) -> EventRecorder:
    rec = EventRecorder()
    session.subscribe_all(rec)
    return rec


@pytest.fixture()
def launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture()
def registry(launcher: FakeLauncher, opener_factory: OpenerFactory) -> SessionRegistry:
    return SessionRegistry(
        launcher=launcher,
        opener_factory=opener_factory,
        settings=HostSettings(port=3077, open_timeout=5.0),
    )


@pytest.fixture()
def foreign_launcher() -> FakeLauncher:
    # Something else already listens on the control endpoint.
    return FakeLauncher(foreign=FakeHost())
