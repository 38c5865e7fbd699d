"""Message dispatch on a single worker thread."""

from __future__ import annotations

import json
import logging
import queue
import threading
from typing import Any, Callable

from .protocol import Message, MsgId

logger = logging.getLogger(__name__)

Handler = Callable[[Any, int, str], None]

_STOP = object()


class LogicSystem:
    """Queues received messages and runs their handlers on a worker thread."""

    def __init__(self) -> None:
        self._queue: queue.Queue = queue.Queue()
        self._handlers: dict[int, Handler] = {}
        self._lock = threading.Lock()
        self._running = True
        self.register(MsgId.HELLO_WORLD, hello_world)
        self._worker = threading.Thread(
            target=self._deal, name="logic-system", daemon=True
        )
        self._worker.start()

    def register(self, msg_id: int, handler: Handler) -> None:
        """Register the handler for a message id; an id may be registered once."""
        if msg_id in self._handlers:
            raise ValueError(f"handler already registered for message id {msg_id}")
        self._handlers[msg_id] = handler

    def post(self, session: Any, message: Message) -> None:
        """Queue a message received on a session for handling."""
        with self._lock:
            if not self._running:
                raise RuntimeError("logic system is stopped")
            self._queue.put((session, message))

    def stop(self) -> None:
        """Handle every queued message, then stop the worker."""
        with self._lock:
            if not self._running:
                return
            self._running = False
            self._queue.put(_STOP)
        if self._worker is not threading.current_thread():
            self._worker.join()

    def _deal(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            self._dispatch(*item)

    def _dispatch(self, session: Any, message: Message) -> None:
        text = message.text
        logger.info("recv msg id %s: %s", message.msg_id, text)
        handler = self._handlers.get(message.msg_id)
        if handler is None:
            return
        try:
            handler(session, message.msg_id, text)
        except Exception:
            logger.exception("handler for message id %s failed", message.msg_id)


def _styled(value: Any) -> str:
    return json.dumps(
        value, indent=3, separators=(",", " : "), sort_keys=True, ensure_ascii=False
    ) + "\n"


def _as_string(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value)


def hello_world(session: Any, msg_id: int, data: str) -> None:
    """Answer a JSON object with the same object, its name set to "Server"."""
    try:
        payload = json.loads(data)
    except (json.JSONDecodeError, TypeError, UnicodeDecodeError):
        logger.error("Invalid JSON data.")
        return
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        logger.error("Invalid JSON data.")
        return
    logger.info("HelloWorld!, I am %s!", _as_string(payload.get("name")))
    payload["name"] = "Server"
    session.send(_styled(payload), MsgId.HELLO_WORLD)