# src/vdh/server/control_server.py

from __future__ import annotations

"""
Unix-socket control server.

One command per connection, one reply, then the connection is closed.
A command ends at a newline, at EOF, or when the client goes quiet for
idle_timeout after sending data. Commands over MAX_COMMAND_BYTES are rejected.
The accept loop is single-threaded: a connection is read, dispatched and answered
before the next accept, so concurrent clients wait in the OS backlog.
"""

import contextlib
import logging
import socket
import threading
from pathlib import Path

from .protocol import CommandRegistry, ControlContext, Reply, build_registry

logger = logging.getLogger(__name__)

MAX_COMMAND_BYTES = 64 * 1024
RECV_CHUNK = 4096

TOO_LONG_REPLY = Reply("ERROR: Failed to add task\n")


class ControlServer:
    def __init__(
        self,
        socket_path: str | Path,
        ctx: ControlContext,
        registry: CommandRegistry | None = None,
        *,
        backlog: int = 5,
        accept_timeout: float = 0.5,
        read_timeout: float = 5.0,
        idle_timeout: float = 0.1,
    ) -> None:
        self._path = Path(socket_path).expanduser()
        self._ctx = ctx
        self._registry = registry or build_registry()
        self._backlog = backlog
        self._accept_timeout = accept_timeout
        self._read_timeout = read_timeout
        self._idle_timeout = idle_timeout

        self._sock: socket.socket | None = None
        self._stop = threading.Event()
        self._ready = threading.Event()

    def bind(self) -> None:
        """Bind and listen. A stale socket file from a previous run is removed first."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with contextlib.suppress(FileNotFoundError):
            self._path.unlink()

        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.bind(str(self._path))
            sock.listen(self._backlog)
        except OSError:
            sock.close()
            raise
        sock.settimeout(self._accept_timeout)
        self._sock = sock
        self._ready.set()
        logger.info("Socket server listening on %s", self._path)

    def wait_ready(self, timeout: float | None = None) -> bool:
        return self._ready.wait(timeout)

    def stop(self) -> None:
        """Ask the accept loop to exit; it notices within accept_timeout."""
        self._stop.set()

    def serve_forever(self) -> None:
        if self._sock is None:
            self.bind()
        sock = self._sock
        assert sock is not None

        try:
            while not self._stop.is_set():
                try:
                    conn, _ = sock.accept()
                except TimeoutError:
                    continue
                except OSError:
                    if self._stop.is_set():
                        break
                    logger.exception("Failed to accept connection")
                    continue

                with conn:
                    logger.debug("Client connected")
                    self._handle(conn)
        finally:
            self._close()

    def _close(self) -> None:
        if self._sock is not None:
            with contextlib.suppress(OSError):
                self._sock.close()
            self._sock = None
        with contextlib.suppress(FileNotFoundError):
            self._path.unlink()
        self._ready.clear()
        logger.info("Server stopped and resources cleaned up")

    def _read_command(self, conn: socket.socket) -> bytes | None:
        """
        Read one command line.

        The first byte may take up to read_timeout; once data has arrived, a pause of
        idle_timeout also ends the command. Stops early once the buffer passes the cap.
        """
        buf = bytearray()
        while len(buf) <= MAX_COMMAND_BYTES:
            try:
                chunk = conn.recv(RECV_CHUNK)
            except TimeoutError:
                break
            except OSError:
                logger.exception("Failed to read from client socket")
                return None
            if not chunk:
                break
            buf += chunk
            if b"\n" in chunk:
                break
            conn.settimeout(self._idle_timeout)
        return bytes(buf)

    def _handle(self, conn: socket.socket) -> None:
        conn.settimeout(self._read_timeout)

        data = self._read_command(conn)
        if data is None:
            return

        line = data.split(b"\n", 1)[0]
        if len(line) > MAX_COMMAND_BYTES:
            logger.warning("Rejected command over %d bytes (read %d)", MAX_COMMAND_BYTES, len(data))
            self._discard_input(conn)
            self._send(conn, TOO_LONG_REPLY)
            return

        try:
            text = line.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning("Failed to decode received data (%d bytes); ignoring", len(data))
            return

        try:
            reply = self._registry.handle(self._ctx, text)
        except Exception:
            logger.exception("Command handler crashed command=%r", text.strip())
            reply = Reply("ERROR: Internal server error\n")

        if reply is None:
            return

        self._send(conn, reply)
        if reply.shutdown:
            self.stop()

    def _discard_input(self, conn: socket.socket, limit: int = 16 * MAX_COMMAND_BYTES) -> None:
        """Consume what the client is still sending, so closing does not reset its read."""
        conn.settimeout(self._idle_timeout)
        dropped = 0
        while dropped < limit:
            try:
                chunk = conn.recv(RECV_CHUNK)
            except OSError:
                return
            if not chunk:
                return
            dropped += len(chunk)

    @staticmethod
    def _send(conn: socket.socket, reply: Reply) -> None:
        try:
            conn.sendall(reply.text.encode("utf-8"))
        except OSError:
            logger.warning("Failed to send reply to client", exc_info=True)
