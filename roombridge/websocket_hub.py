from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

from fastapi import WebSocket

from roombridge.core.bus import Unsubscribe
from roombridge.core.events import SessionEvent
from roombridge.session import Session

logger = logging.getLogger(__name__)


class SessionWebSocketHub:
    """In-process WebSocket pub/sub keyed by session id.

    Contract:
      - assign a connection to a session via `connect(session_id, websocket)`.
      - `attach(session)` forwards every notification of that session to its sockets.

    Payloads are `{type, session_id, ts, payload}` JSON objects.
    """

    def __init__(self) -> None:
        self._by_session: dict[str, set[WebSocket]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def connect(self, session_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._by_session[session_id].add(websocket)

    async def disconnect(self, session_id: str, websocket: WebSocket) -> None:
        async with self._lock:
            conns = self._by_session.get(session_id)
            if not conns:
                return
            conns.discard(websocket)
            if not conns:
                self._by_session.pop(session_id, None)

    def connection_count(self, session_id: str) -> int:
        return len(self._by_session.get(session_id, ()))

    async def broadcast(self, session_id: str, payload: dict[str, object]) -> None:
        async with self._lock:
            conns = list(self._by_session.get(session_id, set()))

        if not conns:
            return

        dead: list[WebSocket] = []
        for ws in conns:
            try:
                await ws.send_json(payload)
            except Exception:
                logger.debug("Dropping dead websocket for session %s", session_id)
                dead.append(ws)

        if dead:
            async with self._lock:
                for ws in dead:
                    self._by_session.get(session_id, set()).discard(ws)

    def attach(self, session: Session) -> Unsubscribe:
        sid = str(session.id)

        def _forward(event: SessionEvent):
            return self.broadcast(
                sid,
                {
                    "type": event.type,
                    "session_id": sid,
                    "ts": event.ts.isoformat(),
                    "payload": event.payload_for_wire(),
                },
            )

        return session.subscribe_all(_forward)


hub = SessionWebSocketHub()
