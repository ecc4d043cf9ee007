"""
=============================================================================
NEOSERVER
=============================================================================

A small HTTP(S) server that serves one fixed blob of content: every GET
gets the blob, every other method gets 404.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   content.py      load the blob (file or STDIN, once, at startup)   │
    │   config.py       ServerConfig, ServerAddress                       │
    │   tls/            PEM parsing, credentials, SSLContext, handshake   │
    │                   filter (BENIGN / NOTEWORTHY failures)             │
    │   core/           listener, accept stream, connections, pool        │
    │   http/           HTTP/1.1 parser, responses, HTTP/2 session        │
    │   middleware/     access log, 500 on handler errors                 │
    │   handlers/       StaticContentHandler                              │
    │   server.py       HTTPServer: protocol selection per connection     │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Embedding:

    from neoserver import ContentBlob, ServerConfig, create_server

    server = create_server(ContentBlob(b"hello"), ServerConfig(port=8080))
    server.run()

=============================================================================
"""

__version__ = "1.0.0"

from .config import ServerConfig, ServerAddress, AddressError
from .content import ContentBlob, ContentError, load_content
from .server import HTTPServer, create_server

__all__ = [
    "HTTPServer",
    "create_server",
    "ServerConfig",
    "ServerAddress",
    "AddressError",
    "ContentBlob",
    "ContentError",
    "load_content",
    "__version__",
]
