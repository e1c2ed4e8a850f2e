from __future__ import annotations

import json

import fakeredis
import pytest

from roombridge.contracts import ConsoleMessage
from roombridge.core.events import SessionEvent
from roombridge.infra.redis_client import create_redis
from roombridge.session import Session
from roombridge.streams import EventStream, attach_event_stream, event_fields, publish_event


def test_stream_key_naming() -> None:
    assert EventStream(session_id="lobby").key == "session:lobby:events"
    assert EventStream(session_id=0).key == "session:0:events"


def test_publish_event_appends_string_fields() -> None:
    r = fakeredis.FakeRedis(decode_responses=True)
    stream = EventStream(session_id="s1")
    event = SessionEvent.now(type="warning-logged", session_id="s1", payload="careful")

    publish_event(r=r, stream=stream, fields=event_fields(event))

    entries = r.xrange(stream.key)
    assert len(entries) == 1
    _, fields = entries[0]
    assert fields["type"] == "warning-logged"
    assert fields["session_id"] == "s1"
    assert json.loads(fields["payload"]) == "careful"


@pytest.mark.asyncio
async def test_session_notifications_are_mirrored_in_order(session: Session, context) -> None:
    r = fakeredis.FakeRedis(decode_responses=True)
    unsubscribe = attach_event_stream(r=r, session=session)

    await session.open_room({"token": "thr1.secret", "roomName": "mirrored"})
    context.fire("console", ConsoleMessage(level="error", text="uh oh"))
    unsubscribe()
    await session.close_room()

    entries = r.xrange("session:room-1:events")
    assert [f["type"] for _, f in entries] == ["open-room-start", "open-room-stop", "error-logged"]

    start = json.loads(entries[0][1]["payload"])
    assert start == {"token": "***", "roomName": "mirrored"}
    stop = json.loads(entries[1][1]["payload"])
    assert stop["roomLink"].startswith("https://www.haxball.com/play")


def test_create_redis_decodes_responses() -> None:
    # from_url does not connect until the first command.
    r = create_redis("redis://localhost:6379/0")
    assert r.connection_pool.connection_kwargs["decode_responses"] is True
