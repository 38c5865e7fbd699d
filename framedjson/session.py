"""One client connection: reads framed messages and writes framed replies."""

from __future__ import annotations

import asyncio
import collections
import logging
import threading
import uuid
from typing import Any, Callable, Optional

from .protocol import (
    HEADER_LENGTH,
    MAX_SENDQUE,
    Message,
    ProtocolError,
    decode_header,
    encode_frame,
)

logger = logging.getLogger(__name__)


class Session:
    """A connected client served on the event loop that created it.

    Received frames are posted to the logic system; ``send`` may be called
    from any thread and queues frames that are written in order.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: Any,
        logic: Any,
        on_close: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._logic = logic
        self._on_close = on_close
        self._loop = asyncio.get_running_loop()
        self._session_id = str(uuid.uuid4())
        self._send_lock = threading.Lock()
        self._send_queue: collections.deque[bytes] = collections.deque()
        self._writing = False
        self._write_task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def session_id(self) -> str:
        """The unique identifier of this session."""
        return self._session_id

    @property
    def closed(self) -> bool:
        """Whether the session has been closed."""
        return self._closed

    async def run(self) -> None:
        """Read frames until the peer disconnects or sends a bad header."""
        try:
            while not self._closed:
                header = decode_header(await self._reader.readexactly(HEADER_LENGTH))
                data = (
                    await self._reader.readexactly(header.length)
                    if header.length
                    else b""
                )
                message = Message(header.msg_id, data)
                logger.debug("recv data: %s", message.text)
                self._logic.post(self, message)
        except asyncio.IncompleteReadError:
            logger.info("session %s: peer disconnected", self._session_id)
        except ProtocolError as exc:
            logger.warning("session %s: %s", self._session_id, exc)
        except (ConnectionError, OSError) as exc:
            logger.warning("session %s: read error: %s", self._session_id, exc)
        except RuntimeError as exc:
            logger.warning("session %s: %s", self._session_id, exc)
        finally:
            self.close()

    def send(self, data: bytes | str, msg_id: int) -> bool:
        """Queue a frame for sending; return False if it was dropped."""
        frame = encode_frame(msg_id, data)
        with self._send_lock:
            if self._closed:
                return False
            if len(self._send_queue) > MAX_SENDQUE:
                logger.warning("session %s: send queue is full", self._session_id)
                return False
            self._send_queue.append(frame)
            if self._writing:
                return True
            self._writing = True
        self._call_in_loop(self._start_writer)
        return True

    def close(self) -> None:
        """Close the connection and tell the owner; safe to call repeatedly."""
        with self._send_lock:
            if self._closed:
                return
            self._closed = True
            self._send_queue.clear()
        self._call_in_loop(self._shutdown)
        if self._on_close is not None:
            self._on_close(self._session_id)

    def _call_in_loop(self, func: Callable[[], None]) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            func()
            return
        try:
            self._loop.call_soon_threadsafe(func)
        except RuntimeError:
            logger.debug("session %s: loop already closed", self._session_id)

    def _start_writer(self) -> None:
        if self._closed:
            return
        self._write_task = self._loop.create_task(self._write_all())

    async def _write_all(self) -> None:
        try:
            while True:
                with self._send_lock:
                    if self._closed or not self._send_queue:
                        self._writing = False
                        return
                    frame = self._send_queue[0]
                self._writer.write(frame)
                await self._writer.drain()
                with self._send_lock:
                    if self._send_queue:
                        self._send_queue.popleft()
        except (ConnectionError, OSError) as exc:
            logger.warning("session %s: send error: %s", self._session_id, exc)
            self.close()

    def _shutdown(self) -> None:
        task = self._write_task
        if task is not None and not task.done():
            try:
                current = asyncio.current_task()
            except RuntimeError:
                current = None
            if task is not current:
                task.cancel()
        try:
            self._writer.close()
        except Exception as exc:  # noqa: BLE001 - closing must not fail the caller
            logger.debug("session %s: close error: %s", self._session_id, exc)