"""
=============================================================================
TLS HANDSHAKE FILTER
=============================================================================

Every accepted socket on an HTTPS listener passes through here before any
HTTP byte is read. The filter's one promise: whatever a client does during
the handshake, the listener keeps running.

    raw socket ──► wrap + do_handshake() ──┬──► SSLSocket  (success)
                                           │
                                           └──► None       (failure: logged,
                                                            socket closed)

=============================================================================
CLASSIFYING FAILURES
=============================================================================

Handshake failures are everyday events on a public port: scanners, plain
HTTP sent to the TLS port, clients that do not trust a self-signed
certificate. They are sorted into two buckets:

    ┌─────────────┬──────────────────────────────────────┬──────────────┐
    │ Outcome     │ Error                                │ Log level    │
    ├─────────────┼──────────────────────────────────────┼──────────────┤
    │ BENIGN      │ peer sent a bad_certificate alert    │ DEBUG        │
    │             │ (our certificate was rejected)       │              │
    │ NOTEWORTHY  │ anything else: other TLS errors,     │ WARNING      │
    │             │ resets, timeouts, EOF mid-handshake  │              │
    └─────────────┴──────────────────────────────────────┴──────────────┘

OpenSSL reports a received alert through the SSLError `reason` attribute,
e.g. "SSLV3_ALERT_BAD_CERTIFICATE" for the bad_certificate alert.

=============================================================================
TIMEOUTS
=============================================================================

A client that opens a connection and never speaks would otherwise pin a
worker forever. The handshake runs with a socket timeout (10 s by default);
expiry is a NOTEWORTHY failure like any other.

=============================================================================
"""

import logging
import socket
import ssl
from enum import Enum
from typing import Optional


logger = logging.getLogger(__name__)


BAD_CERTIFICATE_REASONS = frozenset({
    "SSLV3_ALERT_BAD_CERTIFICATE",
})


class HandshakeOutcome(Enum):
    """How a failed handshake should be reported."""
    BENIGN = "benign"
    NOTEWORTHY = "noteworthy"


def classify_handshake_error(error: BaseException) -> HandshakeOutcome:
    """
    Decide whether a handshake failure deserves operator attention.

    Only a bad_certificate alert received from the peer is BENIGN.
    """
    if isinstance(error, ssl.SSLError):
        if getattr(error, "reason", None) in BAD_CERTIFICATE_REASONS:
            return HandshakeOutcome.BENIGN
    return HandshakeOutcome.NOTEWORTHY


class TlsHandshakeFilter:
    """
    Performs server-side TLS handshakes on accepted sockets.

    Usage:
        handshake = TlsHandshakeFilter(context, timeout=10.0)
        tls_socket = handshake(raw_socket, address)
        if tls_socket is None:
            ...  # already logged and closed

    Thread-safe: the shared SSLContext is only read.
    """

    def __init__(self, context: ssl.SSLContext, timeout: float = 10.0):
        self.context = context
        self.timeout = timeout

    def __call__(self, sock: socket.socket, address: tuple) -> Optional[ssl.SSLSocket]:
        """
        Handshake `sock`. Never raises for per-connection failures.

        Returns:
            The TLS socket (blocking, no timeout) or None on failure.
        """
        tls_socket = None
        try:
            sock.settimeout(self.timeout)
            tls_socket = self.context.wrap_socket(
                sock, server_side=True, do_handshake_on_connect=False
            )
            tls_socket.do_handshake()
        except OSError as e:
            self.report(e, address)
            _close_quietly(tls_socket if tls_socket is not None else sock)
            return None

        tls_socket.settimeout(None)
        logger.debug(
            f"TLS handshake with {address[0]}:{address[1]} complete: "
            f"{tls_socket.version()}, ALPN={tls_socket.selected_alpn_protocol()!r}"
        )
        return tls_socket

    def report(self, error: BaseException, address: Optional[tuple] = None) -> HandshakeOutcome:
        """Log a handshake failure at the level its classification calls for."""
        outcome = classify_handshake_error(error)
        peer = f" from {address[0]}:{address[1]}" if address else ""

        if outcome is HandshakeOutcome.BENIGN:
            logger.debug(f"TLS error (ignored){peer}: {error}")
        else:
            logger.warning(f"TLS error{peer}: {_describe(error)}")
        return outcome


def _describe(error: BaseException) -> str:
    if isinstance(error, socket.timeout):
        return "handshake timed out"
    return str(error) or type(error).__name__


def _close_quietly(sock: socket.socket):
    try:
        sock.close()
    except OSError:
        pass
