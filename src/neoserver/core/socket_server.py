"""
=============================================================================
TCP LISTENER
=============================================================================

This module owns the listening socket. It binds, listens and accepts raw
client sockets; it knows nothing about TLS or HTTP. Everything above it
(the accept stream, the handshake filter, the protocol multiplexer) only
ever sees the raw sockets it hands out.

=============================================================================
LISTENER LIFECYCLE
=============================================================================

    1. bind()      Create the socket, set options, bind, listen
                   └─ Bind failures are startup-fatal and propagate

    2. accept()    Return one raw client socket
                   └─ Waits at most POLL_INTERVAL seconds
                   └─ Returns None on a poll timeout or after close()

    3. close()     Stop accepting and release the file descriptor
                   └─ Idempotent, callable from any thread

                    ┌───────────────────────┐
                    │   Listening Socket    │ ◄── Created once at startup
                    │   (SocketServer)      │     Never sends/receives data
                    └───────────┬───────────┘
                                │ accept()
        ┌───────────────────────┼───────────────────────┐
        ▼                       ▼                       ▼
    ┌───────────┐         ┌───────────┐         ┌───────────┐
    │ raw sock  │         │ raw sock  │         │ raw sock  │
    └───────────┘         └───────────┘         └───────────┘

=============================================================================
POLLING ACCEPT
=============================================================================

accept() on a blocking socket cannot be interrupted from another thread.
The listener therefore has a 1-second timeout, and the caller loops:

    while listener.is_running:
        accepted = listener.accept()    # None after ~1s of silence
        if accepted is None:
            continue

A closed listener makes accept() return None too, so the loop above ends on
its own once close() has been called.

=============================================================================
SIGNAL HANDLING FOR GRACEFUL SHUTDOWN
=============================================================================

SIGINT (Ctrl+C) and SIGTERM (docker stop, systemd stop) close the listener.
Python only lets the main thread install signal handlers, so when the server
runs on a background thread (as in the test-suite) the handlers are skipped
and shutdown must be requested programmatically.

=============================================================================
"""

import socket
import signal
import logging
import threading
from typing import Optional

from ..config import ServerAddress


logger = logging.getLogger(__name__)


POLL_INTERVAL = 1.0
"""Seconds accept() blocks before giving the caller a chance to stop."""


class SocketServer:
    """
    Bound TCP listener.

    Usage:
        listener = SocketServer(ServerAddress.parse("127.0.0.1", 0))
        listener.bind()
        while listener.is_running:
            accepted = listener.accept()
            if accepted:
                sock, addr = accepted
                ...
        listener.close()
    """

    def __init__(self, address: ServerAddress, backlog: int = 128):
        """
        Initialize the listener.

        Args:
            address: Parsed bind address.
            backlog: Maximum number of queued, not-yet-accepted connections.

        Note: The socket is created lazily in bind().
        """
        self.address = address
        self.backlog = backlog

        self._socket: Optional[socket.socket] = None
        self._running = False
        self._closed_event = threading.Event()
        self._original_handlers: dict = {}

    @property
    def is_running(self) -> bool:
        """True between a successful bind() and close()."""
        return self._running

    @property
    def bound_address(self) -> tuple:
        """
        The address the OS actually bound (resolves port 0).

        Raises:
            RuntimeError: If the listener is not bound.
        """
        if self._socket is None:
            raise RuntimeError("Listener is not bound")
        return self._socket.getsockname()[:2]

    def _create_socket(self) -> socket.socket:
        """Create the listening socket with the options an HTTP server wants."""
        sock = socket.socket(self.address.family, socket.SOCK_STREAM)

        # Avoid "Address already in use" while old sockets sit in TIME_WAIT
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        # Accepted sockets inherit this; responses go out without Nagle delay
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        sock.settimeout(POLL_INTERVAL)
        return sock

    def bind(self):
        """
        Create, bind and start listening.

        Raises:
            OSError: If the address cannot be bound (in use, no permission,
                     not a local interface).
        """
        sock = self._create_socket()

        try:
            sock.bind(self.address.as_tuple())
            sock.listen(self.backlog)
        except OSError as e:
            sock.close()
            logger.error(f"Failed to bind to {self.address}: {e}")
            raise

        self._socket = sock
        self._running = True
        self._closed_event.clear()

        host, port = self.bound_address
        logger.info(f"Listening on {host}:{port}")

    def accept(self) -> Optional[tuple]:
        """
        Accept one client.

        Returns:
            (client_socket, client_address), or None when the poll interval
            elapsed or the listener has been closed.

        Raises:
            OSError: When accepting fails while the listener is still
                     running. The listener cannot recover from this.
        """
        sock = self._socket
        if sock is None or not self._running:
            return None

        try:
            client_socket, client_address = sock.accept()
        except socket.timeout:
            return None
        except OSError:
            if not self._running:
                return None
            raise

        # Accepted sockets inherit the listener's poll timeout
        client_socket.settimeout(None)
        logger.debug(f"Accepted connection from {client_address[0]}:{client_address[1]}")
        return client_socket, client_address

    # =========================================================================
    # SIGNALS
    # =========================================================================

    def install_signal_handlers(self):
        """
        Close the listener on SIGINT/SIGTERM.

        Only possible on the main thread; elsewhere this is a no-op.
        """
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread, skipping signal handlers")
            return

        def shutdown_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            logger.info(f"Received {signal_name}, initiating shutdown...")
            self.close()

        self._original_handlers[signal.SIGTERM] = signal.signal(signal.SIGTERM, shutdown_handler)
        self._original_handlers[signal.SIGINT] = signal.signal(signal.SIGINT, shutdown_handler)

    def restore_signal_handlers(self):
        """Restore whatever handlers were installed before us."""
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    # =========================================================================
    # SHUTDOWN
    # =========================================================================

    def close(self):
        """
        Stop accepting and release the socket.

        Safe to call multiple times and from any thread, including a
        signal handler. A blocked accept() notices within POLL_INTERVAL.
        """
        if not self._running and self._socket is None:
            return

        self._running = False
        sock, self._socket = self._socket, None
        if sock is not None:
            try:
                sock.close()
            except OSError:
                pass
            logger.info("Listener closed")
        self._closed_event.set()

    def wait_closed(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for close() to be called.

        Returns:
            True if the listener closed, False on timeout.
        """
        return self._closed_event.wait(timeout)
