"""
=============================================================================
HTTP SERVER
=============================================================================

Ties the pieces together: listener, accept stream, worker pool, protocol
selection and the handler behind its middleware.

=============================================================================
ARCHITECTURE
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   SocketServer ──accept──► ConnectionStream ──► HTTPServer.run()    │
    │   (listener)               (acceptor thread,     for conn in stream │
    │                             TLS handshakes on      pool.submit(...) │
    │                             the pool)                    │          │
    │                                                          ▼          │
    │                                        ┌──── _process_connection ─┐ │
    │                                        │  ALPN "h2" or h2c        │ │
    │                                        │  preface?                │ │
    │                                        │    yes → H2Session       │ │
    │                                        │    no  → keep-alive loop │ │
    │                                        └────────────┬─────────────┘ │
    │                                                     ▼               │
    │                       LoggingMiddleware → ErrorMiddleware → handler │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
ONE POOL, TWO KINDS OF WORK
=============================================================================

Handshakes and connection sessions share the ThreadPool. A session holds
its worker until the client leaves or the connection goes idle
(keep_alive_timeout for HTTP/1.1, timeout for HTTP/2). The pool grows a
worker for every job that finds none idle, so clients that connect and say
nothing tie up their own threads and nobody else's.

=============================================================================
SHUTDOWN
=============================================================================

    SIGINT / SIGTERM / shutdown()
        └── listener.close()
              └── acceptor thread ends, stream iteration ends
                    └── run() leaves its loop
                          └── pool.shutdown(): sessions finish their
                              current request and are dropped

=============================================================================
"""

import logging
import threading
from typing import Callable, Optional

from .config import ServerConfig
from .content import ContentBlob
from .core.accept_stream import ConnectionStream
from .core.connection import Connection, ConnectionState, MalformedRequest
from .core.socket_server import SocketServer
from .core.thread_pool import ThreadPool
from .handlers.static import StaticContentHandler
from .http.h2 import H2_PREFACE, H2Session
from .http.request import HTTPParseError, HTTPRequest, RequestParser
from .http.response import HTTPResponse, error_response, internal_error
from .http.status_codes import HTTPStatus
from .middleware.base import ErrorMiddleware, MiddlewarePipeline
from .middleware.logging import LoggingMiddleware
from .tls.context import TlsServerConfig
from .tls.handshake import TlsHandshakeFilter


logger = logging.getLogger(__name__)


Handler = Callable[[HTTPRequest], HTTPResponse]


class HTTPServer:
    """
    HTTP/1.1 + HTTP/2 server, plain or TLS.

    Usage:
        server = HTTPServer(config, StaticContentHandler(blob), tls=tls_config)
        server.run()          # blocks until SIGINT/SIGTERM or shutdown()

    From another thread (tests):
        thread = threading.Thread(target=server.run)
        thread.start()
        server.ready.wait()
        host, port = server.server_address
        ...
        server.shutdown()
    """

    SHUTDOWN_TIMEOUT = 10.0

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        handler: Optional[Handler] = None,
        tls: Optional[TlsServerConfig] = None,
    ):
        """
        Args:
            config: Server configuration (validated here, fail-fast).
            handler: Request handler; wrapped in the middleware pipeline.
            tls: TLS material. None serves plain HTTP.

        Raises:
            AddressError: If the configured address is invalid.
            ValueError: For any other invalid configuration value.
        """
        if handler is None:
            raise ValueError("A request handler is required")

        self.config = config or ServerConfig()
        self.config.validate()

        self.handler = handler
        self.tls = tls

        self._listener = SocketServer(self.config.address, backlog=self.config.backlog)
        self._pool = ThreadPool(
            min_workers=self.config.min_workers,
            max_workers=self.config.max_workers,
        )
        self._parser = RequestParser(max_request_size=self.config.max_request_size)

        self._middleware = MiddlewarePipeline()
        self._middleware.use(LoggingMiddleware(), ErrorMiddleware())

        self._wrapped_handler: Optional[Handler] = None
        self._stream: Optional[ConnectionStream] = None
        self._running = False

        self.ready = threading.Event()

    # =========================================================================
    # CONFIGURATION
    # =========================================================================

    @property
    def is_tls(self) -> bool:
        return self.tls is not None

    @property
    def server_address(self) -> tuple:
        """(host, port) actually bound; resolves port 0."""
        return self._listener.bound_address

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def run(self):
        """
        Serve until the listener is closed.

        Raises:
            CredentialError: If OpenSSL rejects the TLS material.
            OSError: If binding fails, or accepting fails while running.
        """
        handshake = None
        if self.tls is not None:
            handshake = TlsHandshakeFilter(
                self.tls.create_context(),
                timeout=self.config.handshake_timeout,
            )

        logger.info(f"Binding TCP on {self.config.address}...")
        self._listener.bind()

        self._wrapped_handler = self._middleware.wrap(self.handler)
        self._listener.install_signal_handlers()
        self._pool.start()

        self._stream = ConnectionStream(
            self._listener,
            self._pool,
            handshake=handshake,
            connection_options={
                "buffer_size": self.config.buffer_size,
                "timeout": self.config.timeout,
                "keep_alive_timeout": self.config.keep_alive_timeout,
                "max_request_size": self.config.max_request_size,
            },
        )
        self._running = True

        if handshake is not None:
            logger.info("Starting HTTPS server...")
        else:
            logger.info("Starting HTTP server...")
        self.ready.set()

        try:
            for conn in self._stream:
                self._dispatch(conn)
        except OSError as e:
            logger.error(f"Server error: {e}")
            raise
        finally:
            self._shutdown()

    def shutdown(self):
        """Stop accepting; run() returns once in-flight work is wound down."""
        self._running = False
        self._listener.close()

    def _shutdown(self):
        logger.info("Shutting down server...")
        self._running = False
        self._listener.close()
        self._listener.restore_signal_handlers()
        self._pool.shutdown(wait=True, timeout=self.SHUTDOWN_TIMEOUT)
        logger.info("Server stopped")

    # =========================================================================
    # CONNECTION HANDLING
    # =========================================================================

    def _dispatch(self, conn: Connection):
        """Hand a live connection to a worker."""
        try:
            submitted = self._pool.submit(
                self._process_connection,
                args=(conn,),
                queue_timeout=self.config.timeout,
                label="session",
            )
        except RuntimeError as e:
            logger.debug(f"[{conn.id}] Dropping connection: {e}")
            conn.close()
            return

        if not submitted:
            logger.warning(f"[{conn.id}] Thread pool full, rejecting connection")
            if conn.alpn_protocol != "h2":
                self._send_error(conn, HTTPStatus.SERVICE_UNAVAILABLE, "Server overloaded")
            conn.close()

    def _process_connection(self, conn: Connection):
        """Serve one connection to completion (worker thread)."""
        with conn:
            try:
                if self._wants_h2(conn):
                    H2Session(conn, self._wrapped_handler, self.config.server_name).run()
                else:
                    self._serve_http1(conn)
            except Exception as e:
                logger.exception(f"[{conn.id}] Connection error: {e}")

    def _wants_h2(self, conn: Connection) -> bool:
        if conn.alpn_protocol == "h2":
            return True
        if conn.is_tls:
            return False
        return conn.sniff(H2_PREFACE)

    def _serve_http1(self, conn: Connection):
        """
        HTTP/1.1 keep-alive loop.

        1. Read one request
        2. Parse it (errors: send the parser's status, close)
        3. Run it through middleware + handler
        4. Send head, then body
        5. Keep-alive: go again; otherwise close
        """
        while self._running:
            try:
                raw_request = conn.read_request()
                if raw_request is None:
                    break

                try:
                    request = self._parser.parse(raw_request, conn.address)
                except HTTPParseError as e:
                    logger.debug(f"[{conn.id}] Bad request: {e}")
                    self._send_error(conn, e.status_code, str(e))
                    break

                conn.state = ConnectionState.PROCESSING

                try:
                    response = self._wrapped_handler(request)
                except Exception as e:
                    logger.exception(f"[{conn.id}] Handler error: {e}")
                    response = internal_error()

                keep_alive = (
                    request.is_keep_alive
                    and self.config.keep_alive
                    and response.headers.get("Connection") != "close"
                )
                if keep_alive:
                    response.headers.setdefault("Connection", "keep-alive")
                    response.headers.setdefault(
                        "Keep-Alive",
                        f"timeout={int(self.config.keep_alive_timeout)}"
                    )
                else:
                    response.headers["Connection"] = "close"

                # HEAD gets the same head (Content-Length included), no body
                body = b"" if request.method == "HEAD" else response.body
                if not conn.send_response(response.head_bytes(self.config.server_name), body):
                    break

                if not keep_alive:
                    break

                conn.set_keep_alive()

            except TimeoutError:
                self._send_error(conn, HTTPStatus.REQUEST_TIMEOUT, "Request timeout")
                break

            except MalformedRequest as e:
                logger.debug(f"[{conn.id}] Bad framing: {e}")
                self._send_error(conn, HTTPStatus.BAD_REQUEST, str(e))
                break

            except ValueError as e:
                logger.debug(f"[{conn.id}] {e}")
                self._send_error(conn, HTTPStatus.PAYLOAD_TOO_LARGE)
                break

    def _send_error(self, conn: Connection, status: int, message: Optional[str] = None):
        """Error response for failures before the handler runs."""
        response = error_response(status, message)
        conn.send_response(response.to_bytes(self.config.server_name))


def create_server(
    content: ContentBlob,
    config: Optional[ServerConfig] = None,
    tls: Optional[TlsServerConfig] = None,
) -> HTTPServer:
    """
    Server answering every GET with `content`.

        server = create_server(ContentBlob(b"hello"), ServerConfig(port=0))
        server.run()
    """
    return HTTPServer(config, StaticContentHandler(content), tls=tls)
