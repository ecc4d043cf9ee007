"""
=============================================================================
ACCEPTED CONNECTIONS
=============================================================================

A Connection is a live client socket that has made it through the accept
pipeline: for plain HTTP straight from accept(), for HTTPS only after a
completed TLS handshake. From here on the socket may be an ssl.SSLSocket or
a plain socket.socket; both expose the same recv/sendall API, so the code
below does not care which.

=============================================================================
OWNERSHIP
=============================================================================

    accept stream ──► queue ──► server loop ──► pool.submit(...)
                                                     │
                                                     ▼
                                          one worker owns the Connection
                                          until the protocol session ends,
                                          then closes it (context manager)

Exactly one worker touches a Connection at a time, so nothing here locks.

=============================================================================
TCP IS A BYTE STREAM
=============================================================================

recv() returns whatever the kernel has, not whatever the client sent in one
write. Everything read is appended to an internal buffer and consumed from
there:

    read_request()      Cut one HTTP/1.1 request off the buffer
                        (headers up to \\r\\n\\r\\n, then Content-Length bytes
                        or a chunked body up to its last-chunk and trailers).
                        Extra bytes stay for the next pipelined request.

    sniff(prefix)       Look at the first bytes WITHOUT consuming them.
                        Used to recognise the HTTP/2 client preface on
                        plain connections.

    take_buffered()     Hand the buffered bytes to someone else (the HTTP/2
                        session) and forget them.

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    NEW ──────► READING ──────► PROCESSING ──────► WRITING ────────┐
     │             │                                    │           │
     │             │                                    │           ▼
     │             │                                    │      KEEP_ALIVE
     │             ▼                                    │           │
     └──────────► CLOSING ◄─────────────────────────────┴───────────┘
                    │
                    ▼
                  CLOSED

=============================================================================
"""

import itertools
import logging
import re
import socket
import ssl
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


logger = logging.getLogger(__name__)


_HEAD_END = b"\r\n\r\n"
_CONTENT_LENGTH = re.compile(rb"^content-length[ \t]*:[ \t]*(\d+)[ \t]*\r?$", re.IGNORECASE | re.MULTILINE)
_TRANSFER_ENCODING = re.compile(rb"^transfer-encoding[ \t]*:(.*)$", re.IGNORECASE | re.MULTILINE)
_CHUNK_SIZE = re.compile(rb"[0-9A-Fa-f]{1,16}")

_ids = itertools.count(1)


class ConnectionState(Enum):
    """Where a connection is in its life; drives logging and close()."""
    NEW = "new"
    READING = "reading"
    PROCESSING = "processing"
    WRITING = "writing"
    KEEP_ALIVE = "keep_alive"
    CLOSING = "closing"
    CLOSED = "closed"


class _PeerGone(Exception):
    """The client closed or reset the stream."""


class MalformedRequest(Exception):
    """The byte stream cannot be cut into requests; answer 400 and close."""


@dataclass
class Connection:
    """
    A live, ready-to-speak-HTTP client connection.

    Attributes:
        socket: Plain or TLS client socket.
        address: Peer (ip, port).
        is_tls: The socket went through a TLS handshake.
        alpn_protocol: "h2", "http/1.1", or None when ALPN did not happen.
        id: Short tag for log lines, unique per process.
        requests_handled: HTTP/1.1 requests read, or HTTP/2 streams answered.
        timeout: Socket timeout while a request is expected.
        keep_alive_timeout: Socket timeout between HTTP/1.1 requests.
        max_request_size: Ceiling for one HTTP/1.1 request, head and body.
    """

    socket: socket.socket
    address: tuple

    is_tls: bool = False
    alpn_protocol: Optional[str] = None

    id: str = field(default_factory=lambda: f"c{next(_ids):06d}")
    state: ConnectionState = ConnectionState.NEW
    opened_at: float = field(default_factory=time.monotonic)
    requests_handled: int = 0

    buffer_size: int = 8192
    timeout: Optional[float] = 30.0
    keep_alive_timeout: float = 5.0
    max_request_size: int = 1024 * 1024

    _pending: bytearray = field(default_factory=bytearray, repr=False)

    def __post_init__(self):
        self.socket.settimeout(self.timeout)

    @classmethod
    def from_tls_socket(cls, tls_socket: ssl.SSLSocket, address: tuple, **options) -> "Connection":
        """Wrap a socket whose TLS handshake has completed."""
        return cls(
            socket=tls_socket,
            address=address,
            is_tls=True,
            alpn_protocol=tls_socket.selected_alpn_protocol(),
            **options,
        )

    @property
    def is_closed(self) -> bool:
        return self.state is ConnectionState.CLOSED

    @property
    def age(self) -> float:
        """Seconds since accept."""
        return time.monotonic() - self.opened_at

    # =========================================================================
    # READING
    # =========================================================================

    def _pull(self) -> None:
        """Append one recv() worth of bytes to the buffer, or raise _PeerGone."""
        chunk = self._recv()
        if not chunk:
            raise _PeerGone()
        self._pending += chunk

    def read_request(self) -> Optional[bytes]:
        """
        Cut one complete HTTP/1.1 request off the stream.

            1. pull until the head terminator shows up
            2. pull until the body follows it (Content-Length bytes, or
               chunks up to the last-chunk and trailers)
            3. slice the request off; pipelined leftovers stay buffered

        Between requests on a kept-alive connection the shorter
        keep_alive_timeout applies, and running out of it is a normal end.

        Returns:
            The raw request, or None when the client went away or idled out
            between requests.

        Raises:
            TimeoutError: The first request did not arrive in time.
            ValueError: The request is larger than max_request_size.
            MalformedRequest: A chunked body that cannot be followed.
        """
        self.state = ConnectionState.READING
        between_requests = self.requests_handled > 0
        if between_requests:
            self.socket.settimeout(self.keep_alive_timeout)

        try:
            head_end = self._pending.find(_HEAD_END)
            while head_end < 0:
                if len(self._pending) > self.max_request_size:
                    raise ValueError(f"Request too large: {len(self._pending)} bytes")
                self._pull()
                head_end = self._pending.find(_HEAD_END)

            body_start = head_end + len(_HEAD_END)
            codings = self._transfer_codings(head_end)
            if codings:
                # Transfer-Encoding wins over Content-Length. Anything but a
                # final "chunked" has no framing we can follow: hand on the
                # head alone and let the parser refuse it.
                if codings[-1] == b"chunked":
                    total = self._chunked_end(body_start)
                else:
                    total = body_start
            else:
                match = _CONTENT_LENGTH.search(self._pending, 0, head_end)
                total = body_start + (int(match.group(1)) if match else 0)
                if total > self.max_request_size:
                    raise ValueError(f"Request too large: {total} bytes")

                # A body cut short by EOF is handed on as is; the parser rejects it
                try:
                    self._fill(total)
                except _PeerGone:
                    total = len(self._pending)

        except _PeerGone:
            return None
        except socket.timeout:
            if between_requests:
                logger.debug(f"[{self.id}] Keep-alive timeout")
                return None
            raise TimeoutError("Request read timeout")
        finally:
            if not self.is_closed:
                self.socket.settimeout(self.timeout)

        request = bytes(self._pending[:total])
        del self._pending[:total]

        self.requests_handled += 1
        self.state = ConnectionState.PROCESSING
        return request

    def _fill(self, end: int) -> None:
        while len(self._pending) < end:
            self._pull()

    def _line_end(self, start: int) -> int:
        """Offset of the CRLF ending the line at `start`, pulling as needed."""
        end = self._pending.find(b"\r\n", start)
        while end < 0:
            if len(self._pending) > self.max_request_size:
                raise ValueError(f"Request too large: {len(self._pending)} bytes")
            self._pull()
            end = self._pending.find(b"\r\n", start)
        return end

    def _transfer_codings(self, head_end: int) -> list:
        """Transfer codings named in the head, lowercased, in order."""
        values = _TRANSFER_ENCODING.findall(self._pending, 0, head_end)
        return [
            coding.strip().lower()
            for value in values
            for coding in value.split(b",")
            if coding.strip()
        ]

    def _chunked_end(self, start: int) -> int:
        """
        Offset just past a chunked body that begins at `start`.

            size[;ext] CRLF  data CRLF  ...  0 CRLF  trailers  CRLF

        Chunk data is skipped, never copied out; the body is not used.
        """
        pos = start
        while True:
            line_end = self._line_end(pos)
            size_field = bytes(self._pending[pos:line_end]).split(b";", 1)[0].strip()
            if not _CHUNK_SIZE.fullmatch(size_field):
                raise MalformedRequest(f"Invalid chunk size: {size_field[:20]!r}")

            size = int(size_field, 16)
            pos = line_end + 2
            if size == 0:
                break

            pos += size + 2
            if pos > self.max_request_size:
                raise ValueError(f"Request too large: {pos} bytes")
            self._fill(pos)
            if self._pending[pos - 2:pos] != b"\r\n":
                raise MalformedRequest("Chunk data not followed by CRLF")

        # Trailer fields, if any, up to an empty line
        while True:
            line_end = self._line_end(pos)
            empty = line_end == pos
            pos = line_end + 2
            if empty:
                return pos

    def sniff(self, prefix: bytes) -> bool:
        """
        True when the stream starts with `prefix`; nothing is consumed.

        Reading stops as soon as the buffered bytes stop matching, so a
        short HTTP/1.1 request is never waited on for len(prefix) bytes.
        """
        try:
            while len(self._pending) < len(prefix) and prefix.startswith(self._pending):
                self._pull()
        except (_PeerGone, socket.timeout):
            pass
        return self._pending.startswith(prefix)

    def take_buffered(self) -> bytes:
        """Hand over everything read but not consumed, and forget it."""
        data = bytes(self._pending)
        self._pending.clear()
        return data

    def recv(self) -> bytes:
        """
        One raw read for sessions that frame bytes themselves.

        Returns:
            The bytes read, b"" once the peer is gone.

        Raises:
            socket.timeout: If nothing arrives within the current timeout.
        """
        return self._recv()

    def _recv(self) -> bytes:
        try:
            return self.socket.recv(self.buffer_size)
        except (ConnectionResetError, BrokenPipeError, ssl.SSLEOFError):
            return b""

    # =========================================================================
    # WRITING
    # =========================================================================

    def send_response(self, *parts: bytes) -> bool:
        """
        Write each part with its own sendall(), so a large body is sent
        from the shared blob instead of a concatenated copy.

        Returns:
            False if the client went away part way.
        """
        self.state = ConnectionState.WRITING
        try:
            for part in parts:
                if part:
                    self.socket.sendall(part)
        except OSError as e:
            logger.warning(f"[{self.id}] Send failed: {e}")
            return False
        return True

    def set_keep_alive(self):
        self.state = ConnectionState.KEEP_ALIVE

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self):
        """
        Half-close, drain, release. Idempotent.

        Sending our FIN first and briefly reading what the client still had
        in flight keeps the kernel from answering those bytes with a reset
        that could destroy the response. TLS sockets skip the drain.
        """
        if self.state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
            return
        self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
            if not self.is_tls:
                self.socket.settimeout(0.5)
                while self.socket.recv(1024):
                    pass
        except OSError:
            pass
        finally:
            try:
                self.socket.close()
            except OSError:
                pass

        self.state = ConnectionState.CLOSED
        logger.debug(
            f"[{self.id}] Closed after {self.requests_handled} requests, {self.age:.2f}s"
        )

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
