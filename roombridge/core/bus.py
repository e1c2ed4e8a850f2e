from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from roombridge.core.events import EVENT_NAMES, EventName, SessionEvent
from roombridge.errors import InvalidArgumentError

logger = logging.getLogger(__name__)

Handler = Callable[[SessionEvent], Any]
Unsubscribe = Callable[[], None]


class NotificationBus:
    """Per-session publish/subscribe.

    Contract:
      - `subscribe(name, handler)` registers for one notification name and returns
        an unsubscribe handle; `subscribe_all(handler)` receives every notification.
      - `emit(event)` delivers synchronously, in subscription order, named
        subscribers before firehose subscribers.
      - A coroutine returned by a handler is scheduled as a task on the running loop.
      - A failing handler is logged and does not stop delivery to the others.
    """

    def __init__(self) -> None:
        self._by_name: dict[str, list[Handler]] = defaultdict(list)
        self._all: list[Handler] = []
        self._tasks: set[asyncio.Task[Any]] = set()

    def subscribe(self, name: EventName, handler: Handler) -> Unsubscribe:
        if name not in EVENT_NAMES:
            raise InvalidArgumentError(f"Unknown notification: {name}")
        handlers = self._by_name[name]
        handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return _unsubscribe

    def subscribe_all(self, handler: Handler) -> Unsubscribe:
        self._all.append(handler)

        def _unsubscribe() -> None:
            if handler in self._all:
                self._all.remove(handler)

        return _unsubscribe

    def subscriber_count(self, name: EventName | None = None) -> int:
        if name is None:
            return len(self._all)
        return len(self._by_name.get(name, []))

    def emit(self, event: SessionEvent) -> None:
        for handler in [*self._by_name.get(event.type, []), *self._all]:
            try:
                result = handler(event)
            except Exception:
                logger.exception("Subscriber for '%s' failed (session %s)", event.type, event.session_id)
                continue
            if inspect.isawaitable(result):
                self._schedule(event, result)

    def _schedule(self, event: SessionEvent, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error("No running loop for async subscriber of '%s' (session %s)", event.type, event.session_id)
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return
        task = asyncio.ensure_future(awaitable, loop=loop)
        self._tasks.add(task)

        def _done(t: asyncio.Task[Any]) -> None:
            self._tasks.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.error(
                    "Async subscriber for '%s' failed (session %s)",
                    event.type,
                    event.session_id,
                    exc_info=t.exception(),
                )

        task.add_done_callback(_done)
