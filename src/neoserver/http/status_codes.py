"""
=============================================================================
HTTP STATUS CODES
=============================================================================

The handful of status codes this server can produce.

    ┌────────┬──────────────────────────────────┬──────────────────────────┐
    │ Code   │ Phrase                           │ Sent when                │
    ├────────┼──────────────────────────────────┼──────────────────────────┤
    │ 200    │ OK                               │ any GET                  │
    │ 400    │ Bad Request                      │ unparsable HTTP/1.x      │
    │ 404    │ Not Found                        │ any non-GET method       │
    │ 408    │ Request Timeout                  │ first request too slow   │
    │ 413    │ Payload Too Large                │ over max_request_size    │
    │ 500    │ Internal Server Error            │ handler raised           │
    │ 503    │ Service Unavailable              │ server shutting down     │
    │ 505    │ HTTP Version Not Supported       │ HTTP/2.0 request line    │
    └────────┴──────────────────────────────────┴──────────────────────────┘

=============================================================================
"""

from enum import IntEnum


class HTTPStatus(IntEnum):
    """
    HTTP status codes with reason phrases.

        >>> HTTPStatus.OK == 200
        True
        >>> HTTPStatus.NOT_FOUND.phrase
        'Not Found'
    """

    OK = 200

    BAD_REQUEST = 400
    NOT_FOUND = 404
    REQUEST_TIMEOUT = 408
    PAYLOAD_TOO_LARGE = 413

    INTERNAL_SERVER_ERROR = 500
    SERVICE_UNAVAILABLE = 503
    HTTP_VERSION_NOT_SUPPORTED = 505

    @property
    def phrase(self) -> str:
        """Reason phrase for the HTTP/1.x status line."""
        return _STATUS_PHRASES[self]

    @property
    def is_success(self) -> bool:
        return 200 <= self < 300

    @property
    def is_error(self) -> bool:
        """4xx or 5xx; the access log uses this to pick a level."""
        return self >= 400


_STATUS_PHRASES = {
    HTTPStatus.OK: "OK",
    HTTPStatus.BAD_REQUEST: "Bad Request",
    HTTPStatus.NOT_FOUND: "Not Found",
    HTTPStatus.REQUEST_TIMEOUT: "Request Timeout",
    HTTPStatus.PAYLOAD_TOO_LARGE: "Payload Too Large",
    HTTPStatus.INTERNAL_SERVER_ERROR: "Internal Server Error",
    HTTPStatus.SERVICE_UNAVAILABLE: "Service Unavailable",
    HTTPStatus.HTTP_VERSION_NOT_SUPPORTED: "HTTP Version Not Supported",
}
