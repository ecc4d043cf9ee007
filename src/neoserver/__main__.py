"""
=============================================================================
NEOSERVER CLI ENTRY POINT
=============================================================================

    # Serve a file on 127.0.0.1:5000
    python -m neoserver --file ./index.html

    # Serve whatever arrives on STDIN
    echo "hello world" | neoserver --port 8080

    # HTTPS (HTTP/2 via ALPN, HTTP/1.1 fallback)
    neoserver -f ./index.html --tls-cert chain.pem --tls-key key.pem

Every option falls back to an environment variable, then to a default:

    ┌──────────────────────────────────┬────────────────────────────┬────────────┐
    │ Option                           │ Environment                │ Default    │
    ├──────────────────────────────────┼────────────────────────────┼────────────┤
    │ -H, --host                       │ HOST                       │ 127.0.0.1  │
    │ -p, --port                       │ PORT                       │ 5000       │
    │ -f, --file                       │ FILE                       │ (STDIN)    │
    │ --stdin-read-timeout-seconds     │ STDIN_READ_TIMEOUT_SECONDS │ 60         │
    │ --tls-cert                       │ TLS_CERT                   │ (none)     │
    │ --tls-key                        │ TLS_KEY                    │ (none)     │
    │ -w, --workers                    │ WORKERS                    │ 4          │
    │ -l, --log-level                  │ LOG_LEVEL                  │ INFO       │
    └──────────────────────────────────┴────────────────────────────┴────────────┘

TLS is on only when both --tls-cert and --tls-key are given.

=============================================================================
EXIT STATUS
=============================================================================

    0   stopped by SIGINT / SIGTERM
    1   bad address, no content, bad TLS material, bind failure,
        or the listener failed while running

=============================================================================
"""

import argparse
import logging
import os
import sys
from typing import Optional, Sequence

from . import __version__
from .config import AddressError, ServerAddress, ServerConfig
from .content import ContentError, load_content
from .server import create_server
from .tls.credentials import CredentialError
from .tls.context import TlsServerConfig


logger = logging.getLogger("neoserver")


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="neoserver",
        description="Serve one blob of content over HTTP/1.1 and HTTP/2, optionally over TLS",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  neoserver --file ./index.html                       # Serve a file
  echo hello | neoserver --port 8080                  # Serve STDIN
  neoserver -f page.html --tls-cert c.pem --tls-key k.pem   # HTTPS
        """
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--host", "-H",
        default=os.getenv("HOST", "127.0.0.1"),
        help="IP address to bind to (default: 127.0.0.1, env: HOST)"
    )

    # Kept as a string so a bad value fails address parsing with exit 1
    parser.add_argument(
        "--port", "-p",
        default=os.getenv("PORT", "5000"),
        help="Port to listen on (default: 5000, env: PORT)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # CONTENT
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--file", "-f",
        default=os.getenv("FILE") or None,
        help="File to serve; read STDIN when omitted (env: FILE)"
    )

    # Numeric options stay strings here and are checked in main(), so a bad
    # environment value is an ERROR line and exit 1 like any other bad input
    parser.add_argument(
        "--stdin-read-timeout-seconds",
        default=os.getenv("STDIN_READ_TIMEOUT_SECONDS", "60"),
        help="How long to wait for STDIN (default: 60, env: STDIN_READ_TIMEOUT_SECONDS)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # TLS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--tls-cert",
        default=os.getenv("TLS_CERT") or None,
        help="PEM certificate chain, leaf first (env: TLS_CERT)"
    )

    parser.add_argument(
        "--tls-key",
        default=os.getenv("TLS_KEY") or None,
        help="PEM private key, RSA or PKCS8 (env: TLS_KEY)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # RUNTIME
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--workers", "-w",
        default=os.getenv("WORKERS", "4"),
        help="Worker threads kept warm; more are started per connection as needed (default: 4, env: WORKERS)"
    )

    parser.add_argument(
        "--log-level", "-l",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=os.getenv("LOG_LEVEL", "INFO").upper(),
        help="Logging level (default: INFO, env: LOG_LEVEL)"
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"neoserver {__version__}"
    )

    return parser


def setup_logging(level: str):
    """Configure the root logger once for the whole process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
    )
    # HPACK logs every header field at DEBUG
    logging.getLogger("hpack").setLevel(logging.WARNING)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Run the server.

    Returns:
        Process exit status.
    """
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    try:
        address = ServerAddress.parse(args.host, args.port)
    except AddressError as e:
        logger.error(f"Failed to parse server address: {e}")
        return 1

    logger.info(f"Server configured to run @ [{address}]")

    try:
        workers = int(args.workers)
        stdin_read_timeout = float(args.stdin_read_timeout_seconds)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    config = ServerConfig(
        host=address.host,
        port=address.port,
        file_path=args.file,
        stdin_read_timeout=stdin_read_timeout,
        tls_cert_path=args.tls_cert,
        tls_key_path=args.tls_key,
        min_workers=workers,
        log_level=args.log_level,
    )

    try:
        config.validate()
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    try:
        content = load_content(config.file_path, config.stdin_read_timeout)
    except ContentError as e:
        logger.error(str(e))
        return 1

    tls = None
    if config.tls_enabled:
        try:
            tls = TlsServerConfig.from_files(config.tls_cert_path, config.tls_key_path)
        except CredentialError as e:
            logger.error(f"Failed to load TLS credentials: {e}")
            return 1
    elif config.tls_cert_path or config.tls_key_path:
        logger.warning("TLS needs both --tls-cert and --tls-key; serving plain HTTP")

    server = create_server(content, config, tls=tls)

    try:
        server.run()
    except CredentialError as e:
        logger.error(f"Failed to build TLS configuration: {e}")
        return 1
    except OSError:
        # Already logged by the listener or the accept loop
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
