"""
=============================================================================
ACCESS LOG MIDDLEWARE
=============================================================================

One line per request on the "neoserver.access" logger, in a format close
to the Apache common log so the usual tools can read it:

    127.0.0.1 - - [17/Oct/2026:12:00:00 +0000] "GET / HTTP/2" 200 12 0.41ms

The access logger is separate from the module loggers, so it can be
silenced or routed to its own file without touching the rest:

    logging.getLogger("neoserver.access").setLevel(logging.WARNING)

=============================================================================
LEVELS
=============================================================================

    2xx / 404   INFO      (a 404 is this server's normal answer to non-GET)
    other 4xx   WARNING
    5xx         ERROR

=============================================================================
"""

import time
import logging
from dataclasses import dataclass

from .base import Middleware, NextHandler
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse
from ..http.status_codes import HTTPStatus


logger = logging.getLogger("neoserver.access")


@dataclass
class RequestLog:
    """One access-log entry."""

    method: str
    path: str
    version: str
    client_ip: str
    status_code: int
    content_length: int
    duration_ms: float
    timestamp: str

    def to_text(self) -> str:
        return (
            f'{self.client_ip or "-"} - - [{self.timestamp}] '
            f'"{self.method} {self.path} {self.version}" {self.status_code} '
            f'{self.content_length} {self.duration_ms:.2f}ms'
        )


class LoggingMiddleware(Middleware):
    """
    Times each request and writes the access-log line.

    Should be first in the pipeline so that requests turned into 500s by
    ErrorMiddleware are logged too.
    """

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        start_time = time.perf_counter()
        response = next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        entry = RequestLog(
            method=request.method,
            path=request.path,
            version=request.version,
            client_ip=request.client_address[0],
            status_code=int(response.status),
            content_length=len(response.body),
            duration_ms=duration_ms,
            timestamp=time.strftime("%d/%b/%Y:%H:%M:%S %z"),
        )
        logger.log(level_for(response.status), entry.to_text())

        return response


def level_for(status: int) -> int:
    """Log level for a response status."""
    if status >= 500:
        return logging.ERROR
    if status >= 400 and status != HTTPStatus.NOT_FOUND:
        return logging.WARNING
    return logging.INFO
