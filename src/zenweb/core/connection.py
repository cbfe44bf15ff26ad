"""
=============================================================================
CLIENT CONNECTION
=============================================================================

Wraps one accepted TCP socket and frames HTTP/1.1 requests out of it.

    recv() chunks        buffer                        complete request
    ─────────────►   ┌─────────────────────────┐   ───────────────────►
                     │ headers \\r\\n\\r\\n body... │   headers + exactly
                     └─────────────────────────┘   Content-Length bytes

Bytes beyond the current request stay in the buffer; with keep-alive they
are the beginning of the next (pipelined) request.

Timeouts:
    first request       socket_timeout       → TimeoutError (answered 408)
    later requests      keep_alive_timeout   → quiet close

=============================================================================
"""

import logging
import socket
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from ..errors import HTTPParseError


logger = logging.getLogger(__name__)

HEADER_TERMINATOR = b"\r\n\r\n"


class ConnectionState(Enum):
    NEW = "new"
    READING = "reading"
    PROCESSING = "processing"
    WRITING = "writing"
    KEEP_ALIVE = "keep_alive"
    CLOSED = "closed"


@dataclass
class Connection:
    """
    An accepted client socket.

    Usage:
        with Connection(sock, addr) as conn:
            data = conn.read_request()
            conn.send_response(payload)
    """

    socket: socket.socket
    address: Tuple[str, int]
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    state: ConnectionState = ConnectionState.NEW
    requests_handled: int = 0
    last_activity: float = field(default_factory=time.monotonic)

    buffer_size: int = 8192
    timeout: Optional[float] = 30.0
    keep_alive_timeout: float = 5.0
    max_request_size: int = 10 * 1024 * 1024

    _buffer: bytes = field(default=b"", repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)
        self.socket.settimeout(self.timeout)

    @property
    def client_ip(self) -> str:
        return self.address[0]

    def read_request(self) -> Optional[bytes]:
        """
        Read one complete request.

        Returns:
            Raw request bytes, or None when the peer closed the connection
            (or went idle past the keep-alive timeout).

        Raises:
            TimeoutError: first request not received in time.
            HTTPParseError: request larger than max_request_size (413).
        """
        self.state = ConnectionState.READING
        if self.requests_handled > 0:
            self.socket.settimeout(self.keep_alive_timeout)

        try:
            while HEADER_TERMINATOR not in self._buffer:
                if not self._fill():
                    return None

            header_end = self._buffer.find(HEADER_TERMINATOR)
            body_start = header_end + len(HEADER_TERMINATOR)
            content_length = self._content_length(self._buffer[:header_end])

            while len(self._buffer) - body_start < content_length:
                if not self._fill():
                    break

            request_end = body_start + content_length
            data, self._buffer = self._buffer[:request_end], self._buffer[request_end:]
            self.requests_handled += 1
            return data

        except socket.timeout:
            if self.requests_handled > 0:
                logger.debug(f"[{self.id}] keep-alive timeout")
                return None
            raise TimeoutError("request read timeout") from None
        finally:
            self.socket.settimeout(self.timeout)

    def _fill(self) -> bool:
        """Append one recv() chunk to the buffer. False when the peer is gone."""
        try:
            chunk = self.socket.recv(self.buffer_size)
        except (ConnectionResetError, BrokenPipeError):
            return False
        if not chunk:
            return False
        self._buffer += chunk
        self.last_activity = time.monotonic()
        if len(self._buffer) > self.max_request_size:
            raise HTTPParseError(f"Request too large: {len(self._buffer)} bytes", status_code=413)
        return True

    @staticmethod
    def _content_length(raw_headers: bytes) -> int:
        # Needed before full parsing, so only this one header is looked at.
        for line in raw_headers.decode("latin-1").lower().split("\r\n"):
            if line.startswith("content-length:"):
                try:
                    return max(0, int(line.split(":", 1)[1].strip()))
                except ValueError:
                    return 0
        return 0

    def send_response(self, data: bytes) -> bool:
        """sendall() the payload. False if the peer disconnected."""
        self.state = ConnectionState.WRITING
        try:
            self.socket.sendall(data)
        except OSError as e:
            logger.warning(f"[{self.id}] send failed: {e}")
            return False
        self.last_activity = time.monotonic()
        return True

    def set_keep_alive(self) -> None:
        self.state = ConnectionState.KEEP_ALIVE

    def close(self) -> None:
        """Half-close, drain briefly, release the descriptor."""
        if self.state == ConnectionState.CLOSED:
            return
        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass
        try:
            self.socket.settimeout(0.5)
            while self.socket.recv(1024):
                pass
        except OSError:
            pass
        try:
            self.socket.close()
        except OSError:
            pass
        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] closed after {self.requests_handled} request(s)")

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
