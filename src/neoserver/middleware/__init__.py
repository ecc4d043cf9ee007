"""
=============================================================================
MIDDLEWARE
=============================================================================

    base.py      Middleware ABC, MiddlewarePipeline, ErrorMiddleware
    logging.py   LoggingMiddleware (access log on "neoserver.access")

Default pipeline built by HTTPServer:

    LoggingMiddleware → ErrorMiddleware → handler

=============================================================================
"""

from .base import ErrorMiddleware, Middleware, MiddlewarePipeline, NextHandler
from .logging import LoggingMiddleware

__all__ = [
    "Middleware",
    "MiddlewarePipeline",
    "NextHandler",
    "ErrorMiddleware",
    "LoggingMiddleware",
]
