from __future__ import annotations

import asyncio

import pytest

from roombridge.config import HostSettings
from roombridge.errors import AlreadyRunningError, InvalidArgumentError, NotRunningError
from roombridge.registry import SessionRegistry
from roombridge.session import Session


@pytest.mark.asyncio
async def test_get_session_requires_host(registry: SessionRegistry) -> None:
    with pytest.raises(NotRunningError):
        await registry.get_session("a")


@pytest.mark.asyncio
async def test_ensure_host_process_is_idempotent(registry: SessionRegistry, launcher) -> None:
    assert registry.host_running is False
    host = await registry.ensure_host_process()
    again = await registry.ensure_host_process()

    assert host is again
    assert len(launcher.spawned) == 1
    assert registry.host_running is True


@pytest.mark.asyncio
async def test_foreign_host_on_endpoint_is_refused(foreign_launcher, opener_factory) -> None:
    foreign = foreign_launcher.foreign
    registry = SessionRegistry(
        launcher=foreign_launcher,
        opener_factory=opener_factory,
        settings=HostSettings(port=3077),
    )

    with pytest.raises(AlreadyRunningError, match="BROWSER_RUNNING: http://localhost:3077"):
        await registry.ensure_host_process()
    assert foreign.detached is True
    assert foreign.closed is False
    assert registry.host is None


@pytest.mark.asyncio
async def test_session_identity_and_context_binding(registry: SessionRegistry, launcher) -> None:
    await registry.ensure_host_process()
    host = launcher.spawned[0]

    first = await registry.get_session("a")
    assert await registry.get_session("a") is first
    second = await registry.get_session(0)
    third = await registry.get_session("0")

    assert first.context is host.contexts[0]
    assert host.default_requests == 1
    assert host.new_requests == 2
    assert len({id(s.context) for s in (first, second, third)}) == 3
    assert second is not third
    assert len(registry) == 3
    assert "a" in registry and 0 in registry


@pytest.mark.asyncio
@pytest.mark.parametrize("bad_id", [None, ""])
async def test_get_session_rejects_invalid_ids(registry: SessionRegistry, bad_id) -> None:
    await registry.ensure_host_process()
    with pytest.raises(InvalidArgumentError):
        await registry.get_session(bad_id)
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_concurrent_get_session_creates_one(registry: SessionRegistry, launcher) -> None:
    await registry.ensure_host_process()
    sessions = await asyncio.gather(*(registry.get_session("same") for _ in range(5)))

    assert all(s is sessions[0] for s in sessions)
    assert launcher.spawned[0].new_requests == 0


@pytest.mark.asyncio
async def test_unusable_sessions_are_not_replaced(registry: SessionRegistry) -> None:
    await registry.ensure_host_process()
    session = await registry.get_session("a")
    session.context.fire("crash", "Page crashed")

    assert session.usable is False
    assert await registry.get_session("a") is session


@pytest.mark.asyncio
async def test_session_hooks_run_once_per_session(registry: SessionRegistry) -> None:
    seen: list[Session] = []
    registry.add_session_hook(seen.append)
    await registry.ensure_host_process()

    a = await registry.get_session("a")
    await registry.get_session("a")
    b = await registry.get_session("b")

    assert seen == [a, b]


@pytest.mark.asyncio
async def test_terminate_closes_host_and_marks_sessions_unusable(registry: SessionRegistry, launcher) -> None:
    await registry.ensure_host_process()
    a = await registry.get_session("a")
    b = await registry.get_session("b")
    closed: list[str] = []
    b.subscribe("page-closed", lambda e: closed.append(str(e.session_id)))

    await registry.terminate()

    assert launcher.spawned[0].closed is True
    assert registry.host is None
    assert registry.host_running is False
    assert len(registry) == 0
    assert a.usable is False and b.usable is False
    assert closed == ["b"]
    with pytest.raises(NotRunningError):
        await registry.get_session("a")

    # Terminating twice is a no-op; a new host can be spawned afterwards.
    await registry.terminate()
    await registry.ensure_host_process()
    assert len(launcher.spawned) == 2


def test_settings_validation() -> None:
    with pytest.raises(InvalidArgumentError, match="INVALID_PORT"):
        HostSettings(port=0)
    with pytest.raises(InvalidArgumentError):
        HostSettings(open_timeout=0)
    assert HostSettings().endpoint == "http://localhost:3066"


@pytest.mark.asyncio
async def test_find_session_never_creates(registry: SessionRegistry) -> None:
    with pytest.raises(NotRunningError):
        registry.find_session("a")

    host = await registry.ensure_host_process()
    assert registry.find_session("a") is None
    assert host.default_requests == 0
    assert len(registry) == 0

    session = await registry.get_session("a")
    assert registry.find_session("a") is session
    with pytest.raises(InvalidArgumentError):
        registry.find_session("")
