"""
=============================================================================
TCP HOST LOOP
=============================================================================

Accepts TCP connections and hands each one to a worker thread, which runs
the HTTP/1.1 keep-alive loop against an application callable:

    app: Callable[[HTTPRequest], HTTPResponse]      (Engine.handle)

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        SERVING MODEL                                │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                     │
    │   main thread                 ThreadPoolExecutor (max_workers)      │
    │   ───────────                 ───────────────────────────────────   │
    │   accept() ──► Connection ──► worker: read → parse → app → send     │
    │   accept() ──► Connection ──► worker: read → parse → app → send     │
    │      ...                         (repeat while keep-alive)          │
    │                                                                     │
    └─────────────────────────────────────────────────────────────────────┘

One request is served by one worker thread from start to finish, so the
handler chain never needs to be thread-safe. Only shared collaborators
(the rate limiter) are.

The loop polls accept() with a 1 s timeout so shutdown() from another
thread takes effect promptly. No signal handlers are installed here:
Engine.run() treats KeyboardInterrupt as the stop request, and embedding
applications call shutdown() from their own lifecycle code.

=============================================================================
INTERVIEW QUESTIONS
=============================================================================

Q: "What do SO_REUSEADDR and TCP_NODELAY do?"
A: "SO_REUSEADDR lets a restarted server bind while old sockets sit in
   TIME_WAIT. TCP_NODELAY disables Nagle's algorithm so small responses
   are sent immediately instead of being held back to coalesce."

Q: "What happens during graceful shutdown?"
A: "Stop accepting, let in-flight requests finish, then release the
   worker threads. Keep-alive loops check the running flag between
   requests."

=============================================================================
"""

import logging
import socket
import threading
from concurrent.futures import ThreadPoolExecutor
from http import HTTPStatus
from typing import Callable, Optional, Tuple

from ..config import EngineConfig
from ..errors import HTTPParseError
from ..http.request import HTTPRequest, RequestParser
from ..http.response import HTTPResponse, error_response
from .connection import Connection, ConnectionState


logger = logging.getLogger(__name__)

App = Callable[[HTTPRequest], HTTPResponse]


class SocketServer:
    """
    Blocking TCP server for an application callable.

    Usage:
        server = SocketServer(config, engine.handle)
        server.start()              # blocks until shutdown()
    """

    def __init__(self, config: EngineConfig, app: App):
        self.config = config
        self.app = app
        self._parser = RequestParser(max_request_size=config.max_request_size)
        self._socket: Optional[socket.socket] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._running = False
        self._ready = threading.Event()
        self.server_address: Tuple[str, int] = (config.host, config.port)

    @property
    def is_running(self) -> bool:
        return self._running

    def wait_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the socket is listening (useful with port 0)."""
        return self._ready.wait(timeout)

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        sock.settimeout(1.0)
        return sock

    def start(self) -> None:
        """Bind, listen and run the accept loop. Blocks until shutdown()."""
        self._socket = self._create_socket()
        try:
            self._socket.bind((self.config.host, self.config.port))
        except OSError as e:
            logger.error(f"failed to bind to {self.config.host}:{self.config.port}: {e}")
            self._socket.close()
            self._socket = None
            raise

        self._socket.listen(self.config.backlog)
        self.server_address = self._socket.getsockname()[:2]
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="zen-worker",
        )
        self._running = True
        self._ready.set()
        logger.info(f"listening on http://{self.server_address[0]}:{self.server_address[1]}")

        try:
            self._accept_loop()
        finally:
            self._cleanup()

    def _accept_loop(self) -> None:
        while self._running:
            try:
                client_socket, client_address = self._socket.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self._running:
                    logger.error(f"accept error: {e}")
                break

            conn = Connection(
                socket=client_socket,
                address=client_address[:2],
                buffer_size=self.config.buffer_size,
                timeout=self.config.socket_timeout,
                keep_alive_timeout=self.config.keep_alive_timeout,
                max_request_size=self.config.max_request_size,
            )
            logger.debug(f"[{conn.id}] accepted {conn.client_ip}")
            self._executor.submit(self.serve_connection, conn)

    def serve_connection(self, conn: Connection) -> None:
        """
        HTTP/1.1 keep-alive loop for one connection (worker thread).

            read → parse → app(request) → send → (keep-alive ? repeat : close)
        """
        with conn:
            while self._running and conn.requests_handled < self.config.max_keep_alive_requests:
                try:
                    raw = conn.read_request()
                except TimeoutError:
                    self._send_error(conn, HTTPStatus.REQUEST_TIMEOUT)
                    return
                except HTTPParseError as e:
                    self._send_error(conn, e.status_code, str(e))
                    return
                if raw is None:
                    return

                try:
                    request = self._parser.parse(raw, conn.address)
                except HTTPParseError as e:
                    logger.debug(f"[{conn.id}] parse error: {e}")
                    self._send_error(conn, e.status_code, str(e))
                    return

                conn.state = ConnectionState.PROCESSING
                response = self.app(request)

                keep_alive = (
                    self.config.keep_alive
                    and request.is_keep_alive
                    and conn.requests_handled < self.config.max_keep_alive_requests
                )
                if keep_alive:
                    response.headers.setdefault("Connection", "keep-alive")
                    response.headers.setdefault("Keep-Alive", f"timeout={int(self.config.keep_alive_timeout)}")
                else:
                    response.headers["Connection"] = "close"

                payload = response.to_bytes(self.config.server_name, include_body=request.method != "HEAD")
                if not conn.send_response(payload) or not keep_alive:
                    return
                conn.set_keep_alive()

    def _send_error(self, conn: Connection, status: int, message: Optional[str] = None) -> None:
        conn.send_response(error_response(status, message).to_bytes(self.config.server_name))

    def shutdown(self) -> None:
        """Stop accepting. Safe to call from any thread, more than once."""
        if self._running:
            logger.info("shutting down")
        self._running = False

    def _cleanup(self) -> None:
        if self._socket is not None:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        self._ready.clear()
        logger.info("server stopped")
