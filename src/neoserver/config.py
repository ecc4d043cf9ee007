"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration management for the content server.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m neoserver --port 3000                           │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── PORT=3000 python -m neoserver                             │
    │                                                                      │
    │   3. Default values (in this dataclass)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The bind address gets its own small value type, ServerAddress. It is parsed
eagerly at startup: a server that cannot tell where to listen must never get
as far as reading content or loading TLS material.

=============================================================================
TLS OR PLAIN?
=============================================================================

TLS is switched on by the presence of BOTH file paths:

    tls_cert_path   tls_key_path    Mode
    ─────────────   ────────────    ──────────
    None            None            plain HTTP
    "cert.pem"      None            plain HTTP
    None            "key.pem"       plain HTTP
    "cert.pem"      "key.pem"       HTTPS

=============================================================================
"""

import ipaddress
import os
import socket
from dataclasses import dataclass
from typing import Optional, Union


class AddressError(ValueError):
    """Raised when a host/port pair is not a bindable network address."""


@dataclass(frozen=True)
class ServerAddress:
    """
    A resolved, immutable host + port pair.

    The host must be an IP literal ("127.0.0.1", "0.0.0.0", "::1").
    Hostnames are rejected on purpose: we bind to exactly what we are told
    and never consult a resolver at startup.
    """

    host: str
    port: int

    @classmethod
    def parse(cls, host: str, port: Union[int, str]) -> "ServerAddress":
        """
        Validate a host/port pair.

        Raises:
            AddressError: If the host is not an IP literal or the port
                          is outside 0-65535.
        """
        try:
            ip = ipaddress.ip_address(host.strip().strip("[]"))
        except ValueError:
            raise AddressError(f"Invalid host: {host!r} is not an IP address")

        try:
            port_number = int(port)
        except (TypeError, ValueError):
            raise AddressError(f"Invalid port: {port!r}")

        if not 0 <= port_number <= 65535:
            raise AddressError(f"Invalid port: {port_number}. Must be 0-65535.")

        return cls(host=str(ip), port=port_number)

    @property
    def family(self) -> int:
        """Socket address family matching the host (AF_INET or AF_INET6)."""
        if ipaddress.ip_address(self.host).version == 6:
            return socket.AF_INET6
        return socket.AF_INET

    def as_tuple(self) -> tuple[str, int]:
        return (self.host, self.port)

    def __str__(self) -> str:
        if self.family == socket.AF_INET6:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


@dataclass
class ServerConfig:
    """
    Configuration for the content server.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK SETTINGS
    - host, port, backlog, buffer_size, timeout

    HTTP SETTINGS
    - keep_alive, keep_alive_timeout, max_request_size

    TLS SETTINGS
    - tls_cert_path, tls_key_path, handshake_timeout

    CONTENT
    - file_path, stdin_read_timeout

    THREADING SETTINGS
    - min_workers, max_workers

    LOGGING
    - log_level

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "127.0.0.1"
    """
    The IP address to bind to.
    - "127.0.0.1" - Localhost only (development)
    - "0.0.0.0" - All network interfaces (containers)
    """

    port: int = 5000
    """The port number to listen on. 0 lets the OS pick one."""

    backlog: int = 128
    """Maximum number of queued connections."""

    buffer_size: int = 8192
    """Size of the receive buffer in bytes (8 KB default)."""

    timeout: Optional[float] = 30.0
    """
    Socket timeout in seconds for reading the first request.
    None = blocking (infinite wait, dangerous in production!)
    """

    # ─────────────────────────────────────────────────────────────────────
    # HTTP SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    keep_alive: bool = True
    """Allow multiple requests on the same connection."""

    keep_alive_timeout: float = 5.0
    """Idle time in seconds before a persistent connection is closed."""

    max_request_size: int = 1024 * 1024  # 1 MB
    """
    Maximum allowed request size in bytes.
    Bodies are never used, so this stays small.
    """

    # ─────────────────────────────────────────────────────────────────────
    # TLS SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    tls_cert_path: Optional[str] = None
    """PEM file holding the certificate chain (leaf first)."""

    tls_key_path: Optional[str] = None
    """PEM file holding the private key. The last key block wins."""

    handshake_timeout: float = 10.0
    """
    Seconds a client gets to finish the TLS handshake.
    A client that connects and goes silent only costs us this long.
    """

    # ─────────────────────────────────────────────────────────────────────
    # CONTENT
    # ─────────────────────────────────────────────────────────────────────

    file_path: Optional[str] = None
    """File to serve. When unset, content is read from standard input."""

    stdin_read_timeout: float = 60.0
    """Seconds to wait for standard input to be fully read."""

    # ─────────────────────────────────────────────────────────────────────
    # THREAD POOL SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    min_workers: int = 4
    """Worker threads created at startup and kept warm."""

    max_workers: Optional[int] = None
    """
    Upper bound on worker threads; None means no bound.
    Every live connection holds one worker, even while idle, so any bound
    here is also a bound on concurrent clients.
    """

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)."""

    # ─────────────────────────────────────────────────────────────────────
    # SERVER IDENTITY
    # ─────────────────────────────────────────────────────────────────────

    server_name: str = "neoserver/1.0"
    """Value of the Server response header."""

    @property
    def tls_enabled(self) -> bool:
        """True only when both the certificate and the key path are set."""
        return bool(self.tls_cert_path) and bool(self.tls_key_path)

    @property
    def address(self) -> ServerAddress:
        """
        The parsed bind address.

        Raises:
            AddressError: If host/port do not form a valid address.
        """
        return ServerAddress.parse(self.host, self.port)

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        HOST                        Bind host (default: 127.0.0.1)
        PORT                        Bind port (default: 5000)
        FILE                        File to serve (default: read STDIN)
        STDIN_READ_TIMEOUT_SECONDS  STDIN wait (default: 60)
        TLS_CERT                    Certificate chain PEM file
        TLS_KEY                     Private key PEM file
        WORKERS                     Warm worker threads (default: 4)
        LOG_LEVEL                   Logging level (default: INFO)

        =====================================================================
        """
        return cls(
            host=os.getenv("HOST", "127.0.0.1"),
            port=int(os.getenv("PORT", "5000")),
            file_path=os.getenv("FILE") or None,
            stdin_read_timeout=float(os.getenv("STDIN_READ_TIMEOUT_SECONDS", "60")),
            tls_cert_path=os.getenv("TLS_CERT") or None,
            tls_key_path=os.getenv("TLS_KEY") or None,
            min_workers=int(os.getenv("WORKERS", "4")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        We validate at startup, not at first use (fail-fast).

        Raises:
            AddressError: For an unusable host/port.
            ValueError: For any other out-of-range value.
        """
        ServerAddress.parse(self.host, self.port)

        if self.min_workers < 1:
            raise ValueError("min_workers must be >= 1")

        if self.max_workers is not None and self.max_workers < self.min_workers:
            raise ValueError("max_workers must be >= min_workers")

        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")

        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0")

        if self.handshake_timeout <= 0:
            raise ValueError("handshake_timeout must be > 0")

        if self.stdin_read_timeout <= 0:
            raise ValueError("stdin_read_timeout must be > 0")
