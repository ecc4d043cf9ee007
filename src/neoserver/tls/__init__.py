"""
=============================================================================
TLS TERMINATION
=============================================================================

    pem.py          PEM block reader (CERTIFICATE, RSA PRIVATE KEY, PRIVATE KEY)
    credentials.py  Certificate chain and private key loading
    context.py      TlsServerConfig → ssl.SSLContext (ALPN h2, http/1.1)
    handshake.py    Per-connection handshake with failure classification

=============================================================================
"""

from .pem import PEMError, PemItem, PemKind, read_pem_items
from .credentials import CertificateChain, CredentialError, PrivateKey, load_certs, load_private_key
from .context import TlsServerConfig
from .handshake import HandshakeOutcome, TlsHandshakeFilter, classify_handshake_error

__all__ = [
    "PEMError",
    "PemItem",
    "PemKind",
    "read_pem_items",
    "CertificateChain",
    "CredentialError",
    "PrivateKey",
    "load_certs",
    "load_private_key",
    "TlsServerConfig",
    "HandshakeOutcome",
    "TlsHandshakeFilter",
    "classify_handshake_error",
]
