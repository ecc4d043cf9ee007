"""
=============================================================================
HTTP PROTOCOL LAYER
=============================================================================

Turns bytes from a live connection into HTTPRequest objects and
HTTPResponse objects back into bytes, for both protocol versions.

    ┌─────────────────────────────────────────────────────────────────────┐
    │ request.py       HTTP/1.x request parsing, HTTPRequest              │
    │                  (HTTP/2 requests are built from header blocks)     │
    │ response.py      HTTPResponse, ResponseBuilder, ok / not_found      │
    │ h2.py            H2Session: one HTTP/2 connection on top of `h2`    │
    │ status_codes.py  the status codes this server sends                 │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
SAME HANDLER, TWO WIRE FORMATS
=============================================================================

    HTTP/1.1                                 HTTP/2
    ────────                                 ──────
    GET / HTTP/1.1\\r\\n                       HEADERS (stream 1)
    Host: example.com\\r\\n                      :method  GET
    \\r\\n                                       :path    /
                                               :authority example.com
            │                                        │
            ▼                                        ▼
      RequestParser.parse()            HTTPRequest.from_h2_headers()
            │                                        │
            └────────────► HTTPRequest ◄─────────────┘
                               │
                            handler
                               │
            ┌────────────── HTTPResponse ─────────────┐
            ▼                                         ▼
      head_bytes() + body                   h2_headers() + DATA frames

=============================================================================
"""

from .request import HTTPRequest, RequestParser, HTTPParseError, parse_request
from .response import (
    HTTPResponse,
    ResponseBuilder,
    ok,
    not_found,
    error_response,
    internal_error,
)
from .status_codes import HTTPStatus
from .h2 import H2Session, H2_PREFACE

__all__ = [
    "HTTPRequest",
    "RequestParser",
    "HTTPParseError",
    "parse_request",
    "HTTPResponse",
    "ResponseBuilder",
    "ok",
    "not_found",
    "error_response",
    "internal_error",
    "HTTPStatus",
    "H2Session",
    "H2_PREFACE",
]
