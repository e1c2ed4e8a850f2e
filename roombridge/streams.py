from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Mapping, cast

import redis

from roombridge.core.bus import Unsubscribe
from roombridge.core.events import SessionEvent
from roombridge.models import SessionId
from roombridge.session import Session


@dataclass(frozen=True, slots=True)
class EventStream:
    session_id: SessionId

    @property
    def key(self) -> str:
        return f"session:{self.session_id}:events"


def event_fields(event: SessionEvent) -> dict[str, str]:
    return {
        "type": event.type,
        "session_id": str(event.session_id),
        "ts": event.ts.isoformat(),
        "payload": json.dumps(event.payload_for_wire(), default=str),
    }


def publish_event(*, r: redis.Redis, stream: EventStream, fields: Mapping[str, str]) -> str:
    """Append one notification to a session's event stream."""

    # redis-py stubs expect field/value unions; we only write string fields/values.
    stream_id = r.xadd(stream.key, {str(k): str(v) for k, v in fields.items()})
    return cast(str, stream_id)


def attach_event_stream(*, r: redis.Redis, session: Session) -> Unsubscribe:
    """Mirror every notification of `session` into its Redis stream."""

    stream = EventStream(session_id=session.id)

    def _publish(event: SessionEvent) -> None:
        publish_event(r=r, stream=stream, fields=event_fields(event))

    return session.subscribe_all(_publish)
