from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping
from types import MappingProxyType

from roombridge.config import HostSettings
from roombridge.contracts import HostLauncher, HostProcess, RemoteContext, RoomOpenerFactory
from roombridge.errors import AlreadyRunningError, NotRunningError
from roombridge.fsm import HostFSM
from roombridge.models import SessionId
from roombridge.session import Session, validate_session_id

logger = logging.getLogger(__name__)

# Called once for every newly created Session, before it is handed out.
SessionHook = Callable[[Session], object]


class SessionRegistry:
    """Owns the shared host process and hands out exactly one Session per identifier.

    State is explicit: the host handle is set by `ensure_host_process()` and cleared
    by `terminate()`. Pass the registry to whatever needs session lookup.
    """

    def __init__(
        self,
        *,
        launcher: HostLauncher,
        opener_factory: RoomOpenerFactory,
        settings: HostSettings | None = None,
        session_hooks: Iterable[SessionHook] = (),
    ) -> None:
        self.settings = settings or HostSettings()
        self._launcher = launcher
        self._opener_factory = opener_factory
        self._hooks: list[SessionHook] = list(session_hooks)
        self._host: HostProcess | None = None
        self._sessions: dict[SessionId, Session] = {}
        self._lock = asyncio.Lock()
        self._fsm = HostFSM(self.settings.endpoint)

    @property
    def host(self) -> HostProcess | None:
        return self._host

    @property
    def host_running(self) -> bool:
        return self._fsm.is_running

    @property
    def sessions(self) -> Mapping[SessionId, Session]:
        return MappingProxyType(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def add_session_hook(self, hook: SessionHook) -> None:
        self._hooks.append(hook)

    async def ensure_host_process(self) -> HostProcess:
        """Spawn the host process, or return the one this registry already spawned.

        A host found on the control endpoint that this registry did not create is an
        error: use another port or close that process.
        """

        async with self._lock:
            if self._host is not None:
                return self._host

            foreign = await self._launcher.attach(self.settings.port)
            if foreign is not None:
                await foreign.detach()
                raise AlreadyRunningError(
                    f"BROWSER_RUNNING: {self.settings.endpoint}. Use another port or close the browser."
                )

            logger.info("Spawning host process on %s", self.settings.endpoint)
            self._host = await self._launcher.spawn()
            self._fsm.spawned()
            return self._host

    async def terminate(self) -> None:
        async with self._lock:
            if self._host is None:
                return
            host = self._host
            self._host = None
            self._sessions.clear()
            self._fsm.terminated()
        await host.close()

    async def get_session(self, session_id: SessionId) -> Session:
        """Return the Session for `session_id`, creating it on first reference.

        The first Session of a registry binds to the host's default context; every
        later new identifier gets a fresh context. An existing Session is returned
        as-is, usable or not.
        """

        if self._host is None:
            raise NotRunningError("Host process is not running.")
        sid = validate_session_id(session_id)

        async with self._lock:
            existing = self._sessions.get(sid)
            if existing is not None:
                return existing

            host = self._host
            if host is None:
                raise NotRunningError("Host process is not running.")
            if not self._sessions:
                context = await host.default_context()
            else:
                context = await host.new_context()
            session = self._create_session(sid, context)
            for hook in self._hooks:
                hook(session)
            self._sessions[sid] = session
            logger.debug("Created session %r (%d total)", sid, len(self._sessions))
        return session

    def find_session(self, session_id: SessionId) -> Session | None:
        """Return the existing Session for `session_id` without creating one."""

        if self._host is None:
            raise NotRunningError("Host process is not running.")
        return self._sessions.get(validate_session_id(session_id))

    def _create_session(self, session_id: SessionId, context: RemoteContext) -> Session:
        return Session(
            session_id=session_id,
            context=context,
            opener_factory=self._opener_factory,
            open_timeout=self.settings.open_timeout,
        )
