# framedjson

`framedjson` is a small asyncio TCP server for a simple framed protocol.
Every message starts with a 4-byte header, and the payload follows it:

| bytes | meaning                                      |
|-------|----------------------------------------------|
| 0–1   | message id, unsigned 16-bit, big-endian      |
| 2–3   | payload length, unsigned 16-bit, big-endian  |
| 4–…   | payload                                      |

If a frame's id or length is larger than 2048, the server closes the
connection. It also closes the connection when the peer disconnects in the
middle of a frame.

## Installation

```
pip install .
```

## Running the server

```
framedjson
framedjson --port 9000
```

The server listens on all interfaces. The default port is 12345. It prints
`Server started on port <port>` once it is listening. On SIGINT or SIGTERM
it stops, closes every session and exits.

## The built-in handler

Message id `1001` (`MsgId.HELLO_WORLD`) is handled by
`framedjson.logic.hello_world`. The payload must be a JSON object, or
`null`, which is treated as an empty object. The handler logs the object's
`name` field and sets `name` to `"Server"`. It then sends the object back
under the same id. The reply is pretty-printed with an indent of 3 and
sorted keys, and ends in a newline. If the payload is not valid JSON, or is
a JSON value other than an object, the handler logs an error and sends
nothing.

The server ignores messages whose id has no handler.

## Using it from code

### Protocol (`framedjson.protocol`)

```python
from framedjson.protocol import MsgId, encode_frame, decode_header

frame = encode_frame(MsgId.HELLO_WORLD, b'{"name": "Client"}')
header = decode_header(frame[:4])  # Header(msg_id=1001, length=18)
```

- `encode_frame(msg_id, payload)` builds a frame. A `str` payload is encoded
  as UTF-8. It raises `ProtocolError`, a subclass of `ValueError`, if the id
  or the length does not fit in 16 bits.
- `decode_header(data)` takes exactly 4 bytes and returns a `Header` with
  `msg_id` and `length`. It raises `ProtocolError` if the data is the wrong
  size, or if the id or length is over `MAX_LENGTH` (2048).
- `Message(msg_id, data)` holds a received message. Its `text` property is
  the payload decoded as UTF-8, with undecodable bytes replaced.

### Handlers (`framedjson.logic`)

`LogicSystem` queues received messages. A single worker thread handles them
in the order they arrive. `hello_world` is already registered for id 1001.

- `register(msg_id, handler)` adds a handler. It raises `ValueError` if the
  id already has one. The handler is called as
  `handler(session, msg_id, text)`. If a handler raises, the exception is
  logged and the worker moves on to the next message.
- `post(session, message)` queues a message. It raises `RuntimeError` once
  the system is stopped.
- `stop()` handles every message still queued, then ends the worker.

### Sessions (`framedjson.session`)

A `Session` serves one connection. `session_id` is a random UUID string,
and `closed` reports whether the session has been closed.
`send(data, msg_id)` may be called from any thread. Frames are written in
order. `send` returns `False` if the frame was dropped, either because the
session is closed or because the send queue already holds more than 1000
frames. `close()` closes the connection and may be called more than once.

### Event loop pool (`framedjson.pool`)

`LoopPool(size)` runs `size` event loops, each on its own thread. The
default size is the number of CPUs. `next_loop()` returns the loops in
round-robin order. `stop()` stops them all and joins their threads. The
pool can be used as a context manager. `default_pool()` returns a single
pool shared by the whole process.

### Server (`framedjson.server`)

```python
import asyncio
from framedjson.logic import LogicSystem
from framedjson.pool import LoopPool
from framedjson.server import Server

async def serve():
    with LoopPool(2) as pool:
        logic = LogicSystem()
        server = Server(0, logic, pool)
        await server.start()
        print("listening on", server.port)
        await asyncio.sleep(60)
        await server.close()
        logic.stop()

asyncio.run(serve())
```

`Server(port, logic=None, pool=None)` accepts connections on the running
event loop. It hands each connection to a loop from the pool. Without a
`logic`, the server creates its own and stops it on `close()`. Without a
`pool`, it uses `default_pool()`. Port 0 picks a free port, and the `port`
property reports the port in use. `sessions()` returns a snapshot of the
live sessions by id. `clear_session(session_id)` removes one from the
table.

## What it does not do

The package has no client and no load-testing command. To talk to the
server, open a TCP connection and exchange frames built with
`encode_frame` and read with `decode_header`.

## Tests

```
pip install .[test]
pytest
```