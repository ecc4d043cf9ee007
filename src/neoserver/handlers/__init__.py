"""
=============================================================================
HANDLERS
=============================================================================

A handler is any callable taking an HTTPRequest and returning an
HTTPResponse. The server wraps it in middleware and calls it for every
request on every protocol.

    static.py    StaticContentHandler: GET → 200 blob, else 404

=============================================================================
"""

from .static import NOT_FOUND_BODY, StaticContentHandler

__all__ = [
    "StaticContentHandler",
    "NOT_FOUND_BODY",
]
