"""
=============================================================================
HTTP REQUEST PARSER
=============================================================================

Parses raw HTTP/1.1 request bytes into HTTPRequest objects, and builds the
same HTTPRequest from the header list of an HTTP/2 stream, so the handler
never needs to know which protocol a request arrived on.

=============================================================================
HTTP/1.1 REQUEST ANATOMY
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │  GET /any/path?x=1 HTTP/1.1\r\n          ← request line             │
    │  Host: example.com\r\n                   ← headers                  │
    │  User-Agent: curl/8.5.0\r\n                                          │
    │  \r\n                                    ← end of headers           │
    │  (body: Content-Length bytes or chunked) ← read, never interpreted  │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
WHAT IS (AND IS NOT) AN ERROR
=============================================================================

    ┌──────────────────────────────────────┬──────────────────────────────┐
    │ Input                                │ Result                       │
    ├──────────────────────────────────────┼──────────────────────────────┤
    │ Any method token (GET, POST, BREW)   │ parsed; the handler decides  │
    │ Any path, including ".."             │ parsed; nothing touches disk │
    │ Garbage request line                 │ HTTPParseError(400)          │
    │ HTTP/2.0 or HTTP/3.0 request line    │ HTTPParseError(505)          │
    │ Over max_request_size                │ HTTPParseError(413)          │
    │ Non-numeric Content-Length           │ HTTPParseError(400)          │
    │ Transfer-Encoding + Content-Length   │ HTTPParseError(400)          │
    │ Transfer-Encoding not ending chunked │ HTTPParseError(400)          │
    └──────────────────────────────────────┴──────────────────────────────┘

The server answers every non-GET method with 404, so the parser must not
reject unknown methods: they are valid requests with a defined answer.

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Optional, Dict, Iterable
import re


class HTTPParseError(Exception):
    """
    Raised when HTTP request parsing fails.

    Carries the status code to send back before closing the connection:

        400 Bad Request                - Malformed request syntax
        413 Payload Too Large          - Request exceeds size limit
        505 HTTP Version Not Supported - Unknown HTTP version
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class HTTPRequest:
    """
    A parsed request, from either protocol.

    Attributes:
        method: Request method token, case preserved ("GET", "POST", ...).
        path: Request target as sent, query string included.
        version: "HTTP/1.0", "HTTP/1.1" or "HTTP/2".
        headers: Header name → value, names lowercased.
        body: Raw body bytes (read to keep framing, never used).
        client_address: (ip, port) of the peer.
        stream_id: HTTP/2 stream the request arrived on, None for HTTP/1.x.
    """

    method: str
    path: str
    version: str = "HTTP/1.1"
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    client_address: tuple = ("", 0)
    stream_id: Optional[int] = None

    @property
    def host(self) -> str:
        """Host header, or the :authority pseudo-header on HTTP/2."""
        return self.headers.get("host", "")

    @property
    def user_agent(self) -> str:
        return self.headers.get("user-agent", "")

    @property
    def is_keep_alive(self) -> bool:
        """
        Whether the connection may carry another request afterwards.

            HTTP/1.1:  open unless "Connection: close"
            HTTP/1.0:  closed unless "Connection: keep-alive"
        """
        tokens = {t.strip() for t in self.headers.get("connection", "").lower().split(",")}

        if self.version == "HTTP/1.0":
            return "keep-alive" in tokens
        return "close" not in tokens

    def get_header(self, name: str, default: str = "") -> str:
        """Case-insensitive header lookup."""
        return self.headers.get(name.lower(), default)

    @classmethod
    def from_h2_headers(
        cls,
        headers: Iterable[tuple],
        stream_id: int,
        client_address: tuple = ("", 0),
    ) -> "HTTPRequest":
        """
        Build a request from an HTTP/2 header block.

        Pseudo-headers map onto the HTTP/1.1 shape:

            :method     → method
            :path       → path
            :authority  → headers["host"]
        """
        method = "GET"
        path = "/"
        fields: Dict[str, str] = {}

        for name, value in headers:
            if isinstance(name, bytes):
                name = name.decode("latin-1")
            if isinstance(value, bytes):
                value = value.decode("latin-1")

            if name == ":method":
                method = value
            elif name == ":path":
                path = value
            elif name == ":authority":
                fields.setdefault("host", value)
            elif not name.startswith(":"):
                name = name.lower()
                if name in fields:
                    fields[name] += ", " + value
                else:
                    fields[name] = value

        return cls(
            method=method,
            path=path,
            version="HTTP/2",
            headers=fields,
            client_address=client_address,
            stream_id=stream_id,
        )


class RequestParser:
    """
    Parses raw HTTP/1.x request bytes into HTTPRequest objects.

    REQUEST_LINE_PATTERN: ^(token) (target) (HTTP/d.d)$

        token   - RFC 7230 tchar sequence; any method name matches
        target  - anything without a space
        version - HTTP/X.Y, only 1.0 and 1.1 are accepted afterwards

    HEADER_PATTERN: ^([^:]+):\\s*(.*)$
    """

    REQUEST_LINE_PATTERN = re.compile(r"^([!#$%&'*+\-.^_`|~0-9A-Za-z]+) ([^ ]+) (HTTP/\d\.\d)$")
    HEADER_PATTERN = re.compile(r"^([^:]+):\s*(.*)$")

    SUPPORTED_VERSIONS = ("HTTP/1.0", "HTTP/1.1")

    def __init__(self, max_request_size: int = 1024 * 1024):
        self.max_request_size = max_request_size

    def parse(
        self,
        data: bytes,
        client_address: tuple = ("", 0)
    ) -> HTTPRequest:
        """
        Parse one complete request.

        Args:
            data: Raw request bytes, as returned by Connection.read_request().
            client_address: Client's (ip, port) tuple.

        Returns:
            Parsed HTTPRequest object.

        Raises:
            HTTPParseError: If the request is malformed.
        """
        if len(data) > self.max_request_size:
            raise HTTPParseError(f"Request too large: {len(data)} bytes", status_code=413)

        header_end = data.find(b"\r\n\r\n")
        if header_end == -1:
            raise HTTPParseError("Incomplete request: no header terminator")

        # Header bytes outside ASCII are kept verbatim, never rejected
        header_section = data[:header_end].decode("latin-1")
        body = data[header_end + 4:]

        lines = header_section.split("\r\n")

        # RFC 7230 section 3.5: ignore empty lines before the request line
        while lines and not lines[0]:
            lines.pop(0)
        if not lines:
            raise HTTPParseError("Empty request")

        method, path, version = self._parse_request_line(lines[0])
        headers = self._parse_headers(lines[1:])

        if "transfer-encoding" in headers:
            self._check_transfer_encoding(headers)
            # Chunked framing was followed by the connection; nothing to keep
            body, content_length = b"", 0
        else:
            content_length = self._content_length(headers)

        if len(body) < content_length:
            raise HTTPParseError(
                f"Incomplete body: expected {content_length} bytes, got {len(body)}"
            )

        return HTTPRequest(
            method=method,
            path=path,
            version=version,
            headers=headers,
            body=body[:content_length],
            client_address=client_address,
        )

    def _parse_request_line(self, line: str) -> tuple:
        """
        Split "METHOD SP TARGET SP VERSION".

        Raises:
            HTTPParseError: 400 for syntax, 505 for the version.
        """
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line[:100]!r}")

        method, target, version = match.groups()

        if version not in self.SUPPORTED_VERSIONS:
            raise HTTPParseError(f"Unsupported HTTP version: {version}", status_code=505)

        return method, target, version

    def _parse_headers(self, lines: list) -> Dict[str, str]:
        """
        Parse "Name: Value" lines into a dict with lowercase names.

        Obsolete line folding continues the previous header; repeated
        headers are joined with ", ".
        """
        headers: Dict[str, str] = {}
        current_name = None

        for line in lines:
            if not line:
                continue

            if line[0] in (" ", "\t"):
                if current_name is not None:
                    headers[current_name] += " " + line.strip()
                continue

            match = self.HEADER_PATTERN.match(line)
            if not match:
                raise HTTPParseError(f"Malformed header line: {line[:100]!r}")

            name, value = match.groups()
            name = name.strip().lower()
            value = value.strip()
            current_name = name

            if name in headers:
                headers[name] += ", " + value
            else:
                headers[name] = value

        return headers

    def _check_transfer_encoding(self, headers: Dict[str, str]) -> None:
        """
        RFC 7230 section 3.3.3: a request that carries both framing headers,
        or whose last coding is not chunked, cannot be delimited safely.
        """
        if "content-length" in headers:
            raise HTTPParseError("Both Transfer-Encoding and Content-Length present")

        value = headers["transfer-encoding"]
        codings = [c.strip().lower() for c in value.split(",") if c.strip()]
        if not codings or codings[-1] != "chunked":
            raise HTTPParseError(f"Unsupported Transfer-Encoding: {value!r}")

    def _content_length(self, headers: Dict[str, str]) -> int:
        raw = headers.get("content-length")
        if raw is None:
            return 0

        # Repeated identical values ("5, 5") are allowed by RFC 7230
        values = {v.strip() for v in raw.split(",")}
        if len(values) != 1:
            raise HTTPParseError("Conflicting Content-Length headers")

        value = values.pop()
        if not value.isdigit():
            raise HTTPParseError(f"Invalid Content-Length: {value!r}")
        return int(value)


def parse_request(
    data: bytes,
    client_address: tuple = ("", 0),
    max_size: int = 1024 * 1024
) -> HTTPRequest:
    """Parse one request with a throwaway RequestParser."""
    return RequestParser(max_request_size=max_size).parse(data, client_address)
