"""
=============================================================================
CONNECTION ACCEPT STREAM
=============================================================================

Turns a bound listener into an endless iterator of ready-to-use Connection
objects. For HTTPS, "ready" means the TLS handshake has completed; clients
whose handshake fails simply never show up in the stream.

=============================================================================
PIPELINE
=============================================================================

    ┌───────────────┐   raw socket   ┌───────────────────────┐
    │ acceptor      │───────────────►│ pool worker           │
    │ thread        │  pool.submit() │ TlsHandshakeFilter    │
    │ (one, owns    │                │ (many in parallel)    │
    │  the listener)│                └──────────┬────────────┘
    └──────┬────────┘                           │ success only
           │ plain HTTP: no handshake           ▼
           └───────────────────────────►  [ queue.Queue ]
                                                │
                                                ▼
                                   for conn in stream: ...

The acceptor never waits for a handshake: it hands the socket to the pool
and goes straight back to accept(). A client that stalls its handshake
therefore delays nobody but itself. Connections come out in the order
their handshakes finished, which is not necessarily accept order.

=============================================================================
HOW THE STREAM ENDS
=============================================================================

    listener closed (shutdown, signal)   → iteration ends normally
    accept() fails while still running   → ERROR logged, the OSError is
                                           re-raised from the iterator
    handshake fails                      → logged by the filter; the
                                           stream carries on

Connections that complete after the stream has ended are closed on arrival.

=============================================================================
"""

import logging
import queue
import threading
from typing import Iterator, Optional

from .connection import Connection
from .socket_server import SocketServer
from .thread_pool import ThreadPool
from ..tls.handshake import TlsHandshakeFilter


logger = logging.getLogger(__name__)


class _Failure:
    """Queue marker carrying a listener-fatal error to the consumer."""

    def __init__(self, error: BaseException):
        self.error = error


_END = object()


class ConnectionStream:
    """
    Iterable source of live connections.

    Usage:
        stream = ConnectionStream(listener, pool, handshake=tls_filter)
        for conn in stream:
            pool.submit(serve, args=(conn,))
    """

    def __init__(
        self,
        listener: SocketServer,
        pool: ThreadPool,
        handshake: Optional[TlsHandshakeFilter] = None,
        connection_options: Optional[dict] = None,
    ):
        """
        Args:
            listener: A bound SocketServer. The stream's acceptor thread
                      becomes the only caller of listener.accept().
            pool: Worker pool that runs the handshakes.
            handshake: TLS filter; None for plain HTTP.
            connection_options: Extra keyword arguments for every Connection
                                (buffer size, timeouts, request size limit).
        """
        self.listener = listener
        self.pool = pool
        self.handshake = handshake
        self.connection_options = connection_options or {}

        self._queue: queue.Queue = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False
        self._thread: Optional[threading.Thread] = None

    @property
    def is_tls(self) -> bool:
        return self.handshake is not None

    def start(self):
        """Start the acceptor thread. Iterating starts it implicitly."""
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._accept_loop, name="acceptor", daemon=True)
        self._thread.start()

    # =========================================================================
    # PRODUCER SIDE
    # =========================================================================

    def _accept_loop(self):
        try:
            while self.listener.is_running:
                accepted = self.listener.accept()
                if accepted is None:
                    continue

                sock, address = accepted
                if self.handshake is None:
                    self._deliver(Connection(socket=sock, address=address, **self.connection_options))
                else:
                    self._submit_handshake(sock, address)

        except OSError as e:
            logger.error(f"Accept error: {e}")
            self._queue.put(_Failure(e))
            return

        self._queue.put(_END)

    def _submit_handshake(self, sock, address):
        try:
            self.pool.submit(self._run_handshake, args=(sock, address), label="handshake")
        except RuntimeError as e:
            # Pool is gone; the server is on its way down
            logger.debug(f"Dropping connection from {address[0]}:{address[1]}: {e}")
            sock.close()

    def _run_handshake(self, sock, address):
        tls_socket = self.handshake(sock, address)
        if tls_socket is None:
            return
        self._deliver(Connection.from_tls_socket(tls_socket, address, **self.connection_options))

    def _deliver(self, conn: Connection):
        with self._lock:
            if not self._closed:
                self._queue.put(conn)
                return
        conn.close()

    # =========================================================================
    # CONSUMER SIDE
    # =========================================================================

    def __iter__(self) -> Iterator[Connection]:
        """
        Yield connections until the listener closes.

        Raises:
            OSError: If the listener failed while running.
        """
        self.start()
        try:
            while True:
                item = self._queue.get()
                if item is _END:
                    return
                if isinstance(item, _Failure):
                    raise item.error
                yield item
        finally:
            self._finish()

    def _finish(self):
        """Stop delivering and close anything nobody will consume."""
        with self._lock:
            self._closed = True

        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            if isinstance(item, Connection):
                item.close()

    def close(self):
        """Close the listener; iteration ends within one poll interval."""
        self.listener.close()

    def join(self, timeout: Optional[float] = None):
        """Wait for the acceptor thread to exit."""
        if self._thread is not None:
            self._thread.join(timeout)
