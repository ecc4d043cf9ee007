"""
=============================================================================
CORE SERVER COMPONENTS
=============================================================================

The networking plumbing underneath the HTTP layer:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         SOCKET SERVER                                │
    │  • Binds the TCP listener and accepts raw sockets                   │
    │  • Closes on SIGINT/SIGTERM (main thread only)                      │
    └─────────────────────────────────────────────────────────────────────┘
                                    │ raw sockets
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                       CONNECTION STREAM                              │
    │  • One acceptor thread drives the listener                          │
    │  • TLS handshakes run on the pool, failures are filtered out        │
    │  • Yields ready Connection objects                                  │
    └─────────────────────────────────────────────────────────────────────┘
                                    │ live connections
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                          THREAD POOL                                 │
    │  • Shared by handshakes and protocol sessions                       │
    │  • Bounded queue, scales between min and max workers                │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .socket_server import SocketServer
from .connection import Connection, ConnectionState
from .thread_pool import ThreadPool
from .accept_stream import ConnectionStream

__all__ = [
    "SocketServer",
    "Connection",
    "ConnectionState",
    "ThreadPool",
    "ConnectionStream",
]
