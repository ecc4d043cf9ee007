"""
=============================================================================
HTTP/2 SESSION
=============================================================================

Serves one HTTP/2 connection on a worker thread. Framing, HPACK and flow
control bookkeeping come from the `h2` library; this module only moves
bytes between the socket and h2's state machine and turns complete
request streams into handler calls.

=============================================================================
HOW A CONNECTION GETS HERE
=============================================================================

    TLS + ALPN "h2"                    plain TCP, client preface first
    ──────────────────                 ──────────────────────────────────
    conn.alpn_protocol == "h2"         conn.sniff(H2_PREFACE) is True
                  │                                 │
                  └───────────────┬─────────────────┘
                                  ▼
                        H2Session(conn, handler).run()

The preface bytes sniffed off a plain connection are still in the
connection buffer; run() feeds them to h2 before reading the socket.

=============================================================================
EVENT LOOP
=============================================================================

    ┌────────────────────────────────────────────────────────────────────┐
    │  recv() ──► h2.receive_data() ──► events                           │
    │                                                                     │
    │  RequestReceived   remember the request headers for the stream     │
    │  DataReceived      acknowledge so the peer's window reopens        │
    │  StreamEnded       call the handler, send HEADERS, queue the body  │
    │  WindowUpdated     (queued bodies are retried after every batch)   │
    │  StreamReset       forget the stream                               │
    │  ConnectionTerminated / ProtocolError  end the session             │
    │                                                                     │
    │  after each batch: send queued DATA within the flow-control        │
    │  window, then write h2.data_to_send() to the socket                │
    └────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

import socket
import logging
from typing import Callable, Dict

from h2.config import H2Configuration
from h2.connection import H2Connection
from h2.events import (
    ConnectionTerminated,
    DataReceived,
    RequestReceived,
    StreamEnded,
    StreamReset,
)
from h2.exceptions import ProtocolError, StreamClosedError

from .request import HTTPRequest
from .response import DEFAULT_SERVER_NAME, HTTPResponse, internal_error
from ..core.connection import Connection, ConnectionState


logger = logging.getLogger(__name__)


# Client connection preface (RFC 9113, section 3.4)
H2_PREFACE = b"PRI * HTTP/2.0\r\n\r\nSM\r\n\r\n"


class H2Session:
    """
    One HTTP/2 connection.

    Streams are answered as soon as their request ends, in the order the
    requests end. Bodies larger than the peer's window are sent in pieces
    as WINDOW_UPDATE frames arrive.

    Args:
        conn: Connection whose next bytes are the client preface.
        handler: Request handler, already wrapped in middleware.
        server_name: Value of the server header.
    """

    def __init__(
        self,
        conn: Connection,
        handler: Callable[[HTTPRequest], HTTPResponse],
        server_name: str = DEFAULT_SERVER_NAME,
    ):
        self.conn = conn
        self.handler = handler
        self.server_name = server_name

        self._h2 = H2Connection(
            config=H2Configuration(client_side=False, header_encoding="utf-8")
        )
        self._requests: Dict[int, HTTPRequest] = {}
        self._pending: Dict[int, memoryview] = {}
        self._terminated = False

    def run(self):
        """Serve the connection until either side ends it."""
        logger.debug(f"[{self.conn.id}] HTTP/2 session started")

        self._h2.initiate_connection()
        if not self._send():
            return

        buffered = self.conn.take_buffered()
        if buffered and not self._receive(buffered):
            return

        while not self._terminated:
            try:
                data = self.conn.recv()
            except socket.timeout:
                logger.debug(f"[{self.conn.id}] HTTP/2 idle timeout")
                self._h2.close_connection()
                self._send()
                break

            if not data:
                break

            if not self._receive(data):
                break

        logger.debug(
            f"[{self.conn.id}] HTTP/2 session ended after "
            f"{self.conn.requests_handled} requests"
        )

    def _receive(self, data: bytes) -> bool:
        """Feed bytes to h2 and react. Returns False once the session is over."""
        try:
            events = self._h2.receive_data(data)
        except ProtocolError as e:
            logger.warning(f"[{self.conn.id}] HTTP/2 protocol error: {e}")
            self._send()
            return False

        for event in events:
            if isinstance(event, RequestReceived):
                self._requests[event.stream_id] = HTTPRequest.from_h2_headers(
                    event.headers,
                    stream_id=event.stream_id,
                    client_address=self.conn.address,
                )
            elif isinstance(event, DataReceived):
                self._h2.acknowledge_received_data(
                    event.flow_controlled_length, event.stream_id
                )
            elif isinstance(event, StreamEnded):
                request = self._requests.pop(event.stream_id, None)
                if request is not None:
                    self._respond(request)
            elif isinstance(event, StreamReset):
                self._requests.pop(event.stream_id, None)
                self._pending.pop(event.stream_id, None)
            elif isinstance(event, ConnectionTerminated):
                logger.debug(
                    f"[{self.conn.id}] Peer sent GOAWAY (error code {event.error_code})"
                )
                self._terminated = True

        self._send_pending()
        return self._send() and not self._terminated

    def _respond(self, request: HTTPRequest):
        self.conn.requests_handled += 1
        self.conn.state = ConnectionState.PROCESSING

        try:
            response = self.handler(request)
        except Exception as e:
            logger.exception(f"[{self.conn.id}] Handler error: {e}")
            response = internal_error()

        stream_id = request.stream_id
        headers = response.h2_headers(self.server_name)

        if not response.body or request.method == "HEAD":
            self._h2.send_headers(stream_id, headers, end_stream=True)
            return

        self._h2.send_headers(stream_id, headers, end_stream=False)
        self._pending[stream_id] = memoryview(response.body)

    def _send_pending(self):
        """
        Send as much queued body data as flow control allows.

        Each DATA frame is bounded by the stream window (which h2 already
        caps at the connection window) and the peer's max frame size.
        """
        for stream_id, view in list(self._pending.items()):
            try:
                while view:
                    window = self._h2.local_flow_control_window(stream_id)
                    size = min(window, self._h2.max_outbound_frame_size, len(view))
                    if size <= 0:
                        break
                    self._h2.send_data(stream_id, bytes(view[:size]))
                    view = view[size:]

                if view:
                    self._pending[stream_id] = view
                else:
                    self._h2.end_stream(stream_id)
                    del self._pending[stream_id]

            except StreamClosedError:
                del self._pending[stream_id]

    def _send(self) -> bool:
        data = self._h2.data_to_send()
        if not data:
            return True
        return self.conn.send_response(data)
