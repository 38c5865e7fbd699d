import asyncio
import json
import threading
import uuid

import pytest

from framedjson.logic import LogicSystem
from framedjson.protocol import (
    HEADER_LENGTH,
    MAX_SENDQUE,
    Message,
    MsgId,
    decode_header,
    encode_frame,
)
from framedjson.session import Session


class _Writer:
    def __init__(self, block=False):
        self.data = bytearray()
        self.closed = False
        self._gate = asyncio.Event()
        if not block:
            self._gate.set()

    def write(self, chunk):
        self.data += chunk

    async def drain(self):
        await self._gate.wait()

    def close(self):
        self.closed = True

    def is_closing(self):
        return self.closed


class _RecordingLogic:
    def __init__(self):
        self.posted = []

    def post(self, session, message):
        self.posted.append((session, message))


async def _until(predicate, timeout=5.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


def _make(reader=None, writer=None, logic=None):
    closed_ids = []
    session = Session(
        reader or asyncio.StreamReader(),
        writer or _Writer(),
        logic or _RecordingLogic(),
        closed_ids.append,
    )
    return session, closed_ids


@pytest.mark.asyncio
async def test_run_posts_received_message_and_closes_at_eof():
    reader = asyncio.StreamReader()
    payload = b'{"name": "Client"}'
    reader.feed_data(encode_frame(MsgId.HELLO_WORLD, payload))
    reader.feed_eof()
    logic = _RecordingLogic()
    writer = _Writer()
    session, closed_ids = _make(reader, writer, logic)

    await session.run()

    assert logic.posted == [(session, Message(MsgId.HELLO_WORLD, payload))]
    assert session.closed
    assert writer.closed
    assert closed_ids == [session.session_id]


@pytest.mark.asyncio
async def test_run_posts_several_messages_in_order():
    reader = asyncio.StreamReader()
    reader.feed_data(encode_frame(1, b"a") + encode_frame(2, b"") + encode_frame(3, "ccc"))
    reader.feed_eof()
    logic = _RecordingLogic()
    session, _ = _make(reader, logic=logic)

    await session.run()

    assert [message for _, message in logic.posted] == [
        Message(1, b"a"),
        Message(2, b""),
        Message(3, b"ccc"),
    ]


@pytest.mark.asyncio
async def test_invalid_header_closes_without_posting():
    reader = asyncio.StreamReader()
    reader.feed_data(encode_frame(5000, b"x"))
    logic = _RecordingLogic()
    session, closed_ids = _make(reader, logic=logic)

    await asyncio.wait_for(session.run(), timeout=5)

    assert logic.posted == []
    assert session.closed
    assert closed_ids == [session.session_id]


@pytest.mark.asyncio
async def test_truncated_payload_closes_without_posting():
    reader = asyncio.StreamReader()
    reader.feed_data(encode_frame(MsgId.HELLO_WORLD, b"abcdef")[:-2])
    reader.feed_eof()
    logic = _RecordingLogic()
    session, _ = _make(reader, logic=logic)

    await session.run()

    assert logic.posted == []
    assert session.closed


@pytest.mark.asyncio
async def test_send_writes_frame():
    writer = _Writer()
    session, _ = _make(writer=writer)

    assert session.send("hi", MsgId.HELLO_WORLD) is True
    await _until(lambda: len(writer.data) == HEADER_LENGTH + 2)

    assert bytes(writer.data) == encode_frame(MsgId.HELLO_WORLD, b"hi")
    session.close()


@pytest.mark.asyncio
async def test_send_preserves_order():
    writer = _Writer()
    session, _ = _make(writer=writer)
    expected = b"".join(encode_frame(i, f"msg{i}") for i in range(10))

    for i in range(10):
        session.send(f"msg{i}", i)
    await _until(lambda: len(writer.data) == len(expected))

    assert bytes(writer.data) == expected
    session.close()


@pytest.mark.asyncio
async def test_send_from_another_thread():
    writer = _Writer()
    session, _ = _make(writer=writer)
    results = []
    thread = threading.Thread(
        target=lambda: results.append(session.send(b"threaded", 7))
    )
    thread.start()
    thread.join()

    expected = encode_frame(7, b"threaded")
    await _until(lambda: len(writer.data) == len(expected))

    assert results == [True]
    assert bytes(writer.data) == expected
    session.close()


@pytest.mark.asyncio
async def test_send_after_close_is_dropped():
    writer = _Writer()
    session, _ = _make(writer=writer)
    session.close()

    assert session.send("late", MsgId.HELLO_WORLD) is False
    await asyncio.sleep(0.05)
    assert bytes(writer.data) == b""


@pytest.mark.asyncio
async def test_full_send_queue_drops_messages():
    writer = _Writer(block=True)
    session, _ = _make(writer=writer)

    accepted = [session.send(b"x", 1) for _ in range(MAX_SENDQUE + 10)]

    assert sum(accepted) == MAX_SENDQUE + 1
    assert accepted[-1] is False
    session.close()


@pytest.mark.asyncio
async def test_close_is_idempotent():
    writer = _Writer()
    session, closed_ids = _make(writer=writer)

    session.close()
    session.close()

    assert closed_ids == [session.session_id]
    assert session.closed
    assert writer.closed


@pytest.mark.asyncio
async def test_session_ids_are_unique_uuids():
    first, _ = _make()
    second, _ = _make()

    assert str(uuid.UUID(first.session_id)) == first.session_id
    assert first.session_id != second.session_id
    assert first.closed is False


@pytest.mark.asyncio
async def test_hello_world_round_trip_through_logic_system():
    reader = asyncio.StreamReader()
    writer = _Writer()
    logic = LogicSystem()
    try:
        session, _ = _make(reader, writer, logic)
        task = asyncio.ensure_future(session.run())
        reader.feed_data(
            encode_frame(MsgId.HELLO_WORLD, json.dumps({"name": "Client"}))
        )
        await _until(lambda: len(writer.data) >= HEADER_LENGTH)
        header = decode_header(bytes(writer.data[:HEADER_LENGTH]))
        await _until(lambda: len(writer.data) == HEADER_LENGTH + header.length)
        reader.feed_eof()
        await asyncio.wait_for(task, timeout=5)
    finally:
        logic.stop()

    assert header.msg_id == MsgId.HELLO_WORLD
    reply = json.loads(bytes(writer.data[HEADER_LENGTH:]).decode("utf-8"))
    assert reply["name"] == "Server"
    assert session.closed