"""TCP server that accepts clients and serves each on a pooled event loop."""

from __future__ import annotations

import argparse
import asyncio
import concurrent.futures
import contextlib
import logging
import signal
import socket
import sys
import threading
from typing import Optional

from .logic import LogicSystem
from .pool import LoopPool, default_pool
from .session import Session

logger = logging.getLogger(__name__)

DEFAULT_PORT = 12345


class Server:
    """Accepts connections on the running loop and hands each to a pool loop."""

    def __init__(
        self,
        port: int,
        logic: Optional[LogicSystem] = None,
        pool: Optional[LoopPool] = None,
    ) -> None:
        self._requested_port = port
        self._owns_logic = logic is None
        self._logic = logic if logic is not None else LogicSystem()
        self._pool = pool if pool is not None else default_pool()
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()
        self._connections: set[concurrent.futures.Future] = set()
        self._sock: Optional[socket.socket] = None
        self._accept_task: Optional[asyncio.Task] = None

    @property
    def port(self) -> int:
        """The port the server listens on, once started."""
        if self._sock is None:
            return self._requested_port
        return self._sock.getsockname()[1]

    async def start(self) -> None:
        """Bind the listening socket and begin accepting clients."""
        if self._sock is not None:
            raise RuntimeError("server already started")
        sock = socket.create_server(("0.0.0.0", self._requested_port))
        sock.setblocking(False)
        self._sock = sock
        self._accept_task = asyncio.get_running_loop().create_task(self._accept())

    def sessions(self) -> dict[str, Session]:
        """A snapshot of the live sessions by id."""
        with self._lock:
            return dict(self._sessions)

    def clear_session(self, session_id: str) -> None:
        """Forget a session; unknown ids are ignored."""
        with self._lock:
            self._sessions.pop(session_id, None)

    async def close(self) -> None:
        """Stop accepting, close every session and wait for their handlers."""
        task = self._accept_task
        self._accept_task = None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if self._sock is not None:
            self._sock.close()
        for session in self.sessions().values():
            session.close()
        with self._lock:
            pending = list(self._connections)
        if pending:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(
                    asyncio.gather(
                        *(asyncio.wrap_future(future) for future in pending),
                        return_exceptions=True,
                    ),
                    timeout=5,
                )
        if self._owns_logic:
            self._logic.stop()

    async def _accept(self) -> None:
        loop = asyncio.get_running_loop()
        assert self._sock is not None
        while True:
            try:
                conn, _ = await loop.sock_accept(self._sock)
            except asyncio.CancelledError:
                raise
            except OSError as exc:
                logger.error("Accept error: %s", exc)
                if self._sock.fileno() == -1:
                    return
                continue
            try:
                target = self._pool.next_loop()
                future = asyncio.run_coroutine_threadsafe(self._serve(conn), target)
            except RuntimeError as exc:
                logger.error("Accept error: %s", exc)
                conn.close()
                continue
            with self._lock:
                self._connections.add(future)
            future.add_done_callback(self._forget_connection)

    def _forget_connection(self, future: concurrent.futures.Future) -> None:
        with self._lock:
            self._connections.discard(future)

    async def _serve(self, conn: socket.socket) -> None:
        try:
            reader, writer = await asyncio.open_connection(sock=conn)
        except OSError as exc:
            logger.error("connection setup failed: %s", exc)
            conn.close()
            return
        session = Session(reader, writer, self._logic, self.clear_session)
        with self._lock:
            self._sessions[session.session_id] = session
        await session.run()


async def _serve_until_signal(port: int, logic: LogicSystem, pool: LoopPool) -> None:
    server = Server(port, logic, pool)
    await server.start()
    print(f"Server started on port {server.port}", flush=True)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()

    def on_signal(signum: int) -> None:
        print(f"Signal received: {signum}", flush=True)
        stop.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(signum, on_signal, int(signum))
    try:
        await stop.wait()
    finally:
        await server.close()


def _port(value: str) -> int:
    port = int(value)
    if not 0 <= port <= 0xFFFF:
        raise argparse.ArgumentTypeError(f"port out of range: {value}")
    return port


def main(argv: Optional[list[str]] = None) -> int:
    """Run the server until SIGINT or SIGTERM."""
    parser = argparse.ArgumentParser(
        prog="framedjson", description="Serve framed JSON messages over TCP."
    )
    parser.add_argument("--port", type=_port, default=DEFAULT_PORT)
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(message)s")

    pool = default_pool()
    logic = LogicSystem()
    try:
        asyncio.run(_serve_until_signal(args.port, logic, pool))
    except KeyboardInterrupt:
        pass
    except OSError as exc:
        print(f"Error: {exc}", file=sys.stderr)
    finally:
        pool.stop()
        logic.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())