# src/vdh/client.py

from __future__ import annotations

import logging
import socket
from pathlib import Path

from .exceptions import ControlClientError

logger = logging.getLogger(__name__)


def send_command(socket_path: str | Path, message: str, timeout: float = 5.0) -> str:
    """
    Send one command to the daemon and return its reply (trailing whitespace stripped).

    An empty reply is valid: the server answers nothing to an empty command.
    Raises ControlClientError if the socket cannot be reached or the exchange fails.
    """
    path = str(Path(socket_path).expanduser())
    payload = (message.strip() + "\n").encode("utf-8")

    try:
        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
            sock.settimeout(timeout)
            sock.connect(path)
            sock.sendall(payload)
            sock.shutdown(socket.SHUT_WR)

            chunks: list[bytes] = []
            while True:
                chunk = sock.recv(4096)
                if not chunk:
                    break
                chunks.append(chunk)
    except OSError as e:
        logger.debug("Control exchange failed path=%s", path, exc_info=True)
        raise ControlClientError(f"Failed to talk to server at {path}: {e}") from e

    return b"".join(chunks).decode("utf-8", errors="replace").rstrip()


def is_server_running(socket_path: str | Path, timeout: float = 1.0) -> bool:
    """True if something accepts connections on the control socket."""
    try:
        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
            sock.settimeout(timeout)
            sock.connect(str(Path(socket_path).expanduser()))
    except OSError:
        return False
    return True
