"""
=============================================================================
HTTP RESPONSE BUILDER
=============================================================================

One response type serves both protocols. HTTP/1.1 needs a status line and
header block in front of the body; HTTP/2 needs a header list with a
:status pseudo-header. The body is the same bytes object in both cases.

=============================================================================
TWO SERIALIZATIONS, ONE RESPONSE
=============================================================================

    HTTPResponse(status=200, body=blob.data)
        │
        ├── head_bytes()   ──► b"HTTP/1.1 200 OK\\r\\n"
        │                      b"Content-Length: 12\\r\\n"
        │                      b"Date: ...\\r\\n"
        │                      b"Server: neoserver/1.0\\r\\n\\r\\n"
        │                      (sent, then the body is sent as-is)
        │
        └── h2_headers()   ──► [(":status", "200"),
                                ("content-length", "12"),
                                ("date", "..."),
                                ("server", "neoserver/1.0")]

=============================================================================
THE BODY IS NEVER COPIED
=============================================================================

The served blob can be large and is shared by every connection. to_bytes()
(head + body in one bytes object) exists for small error responses and
tests; the connection loop sends head_bytes() and body separately, and the
HTTP/2 session slices the body through a memoryview.

=============================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Union

from .status_codes import HTTPStatus


DEFAULT_SERVER_NAME = "neoserver/1.0"


@dataclass
class HTTPResponse:
    """
    A response ready to be serialized for either protocol.

    Attributes:
        status: HTTP status code.
        headers: Extra response headers (Content-Length, Date and Server
                 are added on serialization unless already present).
        body: Response body, shared by reference.
        version: Status-line version for HTTP/1.x.
    """

    status: HTTPStatus = HTTPStatus.OK
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    version: str = "HTTP/1.1"

    @property
    def status_line(self) -> str:
        return f"{self.version} {int(self.status)} {self.status.phrase}"

    def set_header(self, name: str, value: str) -> "HTTPResponse":
        self.headers[name] = value
        return self

    def _final_headers(self, server_name: str) -> Dict[str, str]:
        response_headers = dict(self.headers)
        present = {name.lower() for name in response_headers}

        if "content-length" not in present:
            response_headers["Content-Length"] = str(len(self.body))
        if "date" not in present:
            response_headers["Date"] = format_http_date(datetime.now(timezone.utc))
        if "server" not in present:
            response_headers["Server"] = server_name

        return response_headers

    def head_bytes(self, server_name: str = DEFAULT_SERVER_NAME) -> bytes:
        """Status line and headers, terminated by the empty line."""
        lines = [self.status_line]
        for name, value in self._final_headers(server_name).items():
            lines.append(f"{name}: {value}")
        lines.append("")
        return ("\r\n".join(lines) + "\r\n").encode("latin-1")

    def to_bytes(self, server_name: str = DEFAULT_SERVER_NAME) -> bytes:
        """Complete HTTP/1.x response in one bytes object."""
        return self.head_bytes(server_name) + bytes(self.body)

    def h2_headers(self, server_name: str = DEFAULT_SERVER_NAME) -> list:
        """
        Header list for h2's send_headers().

        HTTP/2 forbids connection-specific headers, so Connection and
        Keep-Alive are dropped.
        """
        headers = [(":status", str(int(self.status)))]
        for name, value in self._final_headers(server_name).items():
            name = name.lower()
            if name in ("connection", "keep-alive", "transfer-encoding"):
                continue
            headers.append((name, value))
        return headers


class ResponseBuilder:
    """
    Fluent builder for HTTPResponse.

        response = (ResponseBuilder()
            .status(HTTPStatus.NOT_FOUND)
            .text("No such resource")
            .build())
    """

    def __init__(self):
        self._status = HTTPStatus.OK
        self._headers: Dict[str, str] = {}
        self._body: bytes = b""

    def status(self, status: HTTPStatus) -> "ResponseBuilder":
        self._status = HTTPStatus(status)
        return self

    def body(self, body: Union[str, bytes]) -> "ResponseBuilder":
        """Set the body; strings are UTF-8 encoded, bytes kept as-is."""
        if isinstance(body, str):
            self._body = body.encode("utf-8")
        else:
            self._body = body
        return self

    def text(self, text: str, content_type: Optional[str] = None) -> "ResponseBuilder":
        """Plain text body, with a Content-Type only when one is asked for."""
        self._body = text.encode("utf-8")
        if content_type:
            self._headers["Content-Type"] = content_type
        return self

    def close_connection(self) -> "ResponseBuilder":
        """Tell an HTTP/1.x client this is the last response."""
        self._headers["Connection"] = "close"
        return self

    def build(self) -> HTTPResponse:
        return HTTPResponse(
            status=self._status,
            headers=self._headers,
            body=self._body,
        )


def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an RFC 7231 HTTP-date.

    Example: Wed, 01 Jan 2026 12:00:00 GMT
    """
    days = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

    return (
        f"{days[dt.weekday()]}, "
        f"{dt.day:02d} {months[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def ok(body: bytes) -> HTTPResponse:
    """200 OK carrying `body` unchanged."""
    return ResponseBuilder().status(HTTPStatus.OK).body(body).build()


def not_found(message: str = "No such resource") -> HTTPResponse:
    """404 Not Found with a plain-text message."""
    return ResponseBuilder().status(HTTPStatus.NOT_FOUND).text(message).build()


def error_response(status: Union[HTTPStatus, int], message: Optional[str] = None) -> HTTPResponse:
    """
    Error response that also closes an HTTP/1.x connection.

    Used for parse failures, timeouts and handler crashes.
    """
    status = HTTPStatus(status)
    return (ResponseBuilder()
        .status(status)
        .text(message or status.phrase, "text/plain; charset=utf-8")
        .close_connection()
        .build())


def internal_error() -> HTTPResponse:
    """500 Internal Server Error without internal details."""
    return error_response(HTTPStatus.INTERNAL_SERVER_ERROR)
