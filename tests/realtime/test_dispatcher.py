import asyncio

import pytest
from pydantic import ValidationError

from chatterbox.core.errors import NotFoundError
from chatterbox.realtime.connection import Connection
from chatterbox.realtime.dispatcher import EventDispatcher, parse_payload
from chatterbox.schemas.events import RoomPayload
from tests.helpers import Recorder


@pytest.mark.asyncio
async def test_unknown_event_is_reported():
    recorder = Recorder()
    conn = Connection(recorder)
    conn.start()
    dispatcher = EventDispatcher()

    assert dispatcher.dispatch(conn, {"event": "dance", "data": {}}) is None
    assert dispatcher.dispatch(conn, {"data": {}}) is None
    await conn.close()

    assert recorder.of("error") == [{"message": "Unknown event: dance"}, {"message": "Malformed frame"}]


@pytest.mark.asyncio
async def test_handler_errors_become_error_events():
    recorder = Recorder()
    conn = Connection(recorder)
    conn.start()
    dispatcher = EventDispatcher()

    async def missing(connection, data):
        raise NotFoundError("Room not found")

    async def invalid(connection, data):
        parse_payload(RoomPayload, data)

    async def crash(connection, data):
        raise KeyError("boom")

    dispatcher.on("missing", missing)
    dispatcher.on("invalid", invalid)
    dispatcher.on("crash", crash)

    for event in ("missing", "invalid", "crash"):
        await dispatcher.dispatch(conn, {"event": event, "data": {}})
    await conn.close()

    assert recorder.of("error") == [
        {"message": "Room not found"},
        {"message": "Invalid payload for invalid"},
        {"message": "Internal server error"},
    ]


@pytest.mark.asyncio
async def test_slow_handler_does_not_block_later_frames():
    recorder = Recorder()
    conn = Connection(recorder)
    conn.start()
    dispatcher = EventDispatcher()
    release = asyncio.Event()

    async def slow(connection, data):
        await release.wait()
        connection.emit("slow-done", {})

    async def fast(connection, data):
        connection.emit("fast-done", {})
        release.set()

    dispatcher.on("slow", slow)
    dispatcher.on("fast", fast)

    dispatcher.dispatch(conn, {"event": "slow"})
    dispatcher.dispatch(conn, {"event": "fast"})
    await dispatcher.drain()
    await conn.close()

    assert [frame["event"] for frame in recorder.frames] == ["fast-done", "slow-done"]


def test_room_payload_accepts_bare_identifier():
    assert parse_payload(RoomPayload, "room-1").room_id == "room-1"
    assert parse_payload(RoomPayload, {"roomId": "room-2"}).room_id == "room-2"
    with pytest.raises(ValidationError):
        parse_payload(RoomPayload, {})
