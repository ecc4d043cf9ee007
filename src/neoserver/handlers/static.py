"""
=============================================================================
STATIC CONTENT HANDLER
=============================================================================

Answers every request from one in-memory blob:

    ┌──────────────────────────────┬──────────────────────────────────────┐
    │ Request                      │ Response                             │
    ├──────────────────────────────┼──────────────────────────────────────┤
    │ GET <any path>               │ 200, body = the blob, byte for byte  │
    │ anything else                │ 404, body = "No such resource"       │
    └──────────────────────────────┴──────────────────────────────────────┘

No routing, no content negotiation, no Content-Type. Path, query string,
headers and request body are ignored. The blob's bytes object is handed to
every response as-is; nothing is copied per request.

=============================================================================
"""

import logging

from ..content import ContentBlob
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, not_found, ok


logger = logging.getLogger(__name__)


NOT_FOUND_BODY = "No such resource"


class StaticContentHandler:
    """
    Serves a ContentBlob to GET requests.

        handler = StaticContentHandler(ContentBlob(b"hello world"))
        handler(HTTPRequest("GET", "/anything")).body   # b"hello world"
        handler(HTTPRequest("POST", "/")).status        # 404
    """

    def __init__(self, content: ContentBlob):
        if not isinstance(content, ContentBlob):
            raise TypeError(f"content must be a ContentBlob, got {type(content).__name__}")
        self.content = content

    def __call__(self, request: HTTPRequest) -> HTTPResponse:
        if request.method == "GET":
            return ok(self.content.data)
        return not_found(NOT_FOUND_BODY)
