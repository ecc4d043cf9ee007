"""
=============================================================================
TLS SERVER CONTEXT
=============================================================================

TlsServerConfig bundles everything the listener needs to terminate TLS and
turns it into one ssl.SSLContext at startup. The context is never mutated
afterwards, and every handshake on every worker shares it.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                       SSLContext SETTINGS                            │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   protocol          PROTOCOL_TLS_SERVER                              │
    │   minimum_version   TLS 1.2                                          │
    │   ALPN              h2, http/1.1   (server preference order)        │
    │   client certs      never requested, never verified (CERT_NONE)     │
    │   cert chain        leaf first, from --tls-cert                      │
    │   private key       last key block from --tls-key                    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
LOADING THE CHAIN
=============================================================================

The stdlib ssl module only loads certificates and keys from files. The
credentials have already been parsed and validated, so they are re-encoded
into a private temporary directory, loaded, and the directory is removed
before create_context() returns.

=============================================================================
"""

import logging
import os
import ssl
import tempfile
from dataclasses import dataclass

from .credentials import CertificateChain, CredentialError, PrivateKey, load_certs, load_private_key


logger = logging.getLogger(__name__)


DEFAULT_ALPN_PROTOCOLS = ("h2", "http/1.1")


@dataclass(frozen=True)
class TlsServerConfig:
    """
    Certificate chain, private key and ALPN preferences for the listener.

    Usage:
        tls = TlsServerConfig.from_files("cert.pem", "key.pem")
        context = tls.create_context()
    """

    chain: CertificateChain
    key: PrivateKey
    alpn_protocols: tuple = DEFAULT_ALPN_PROTOCOLS

    @classmethod
    def from_files(cls, cert_path: str, key_path: str) -> "TlsServerConfig":
        """
        Load credentials from PEM files.

        Raises:
            CredentialError: If either file is unusable.
        """
        logger.info(
            f"Building TLS configuration with key [{key_path}] "
            f"and (CA) certs [{cert_path}] ..."
        )
        return cls(chain=load_certs(cert_path), key=load_private_key(key_path))

    def create_context(self) -> ssl.SSLContext:
        """
        Build the server-side SSLContext.

        Raises:
            CredentialError: If OpenSSL rejects the pair (for example a key
                             that does not match the leaf certificate).
        """
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.minimum_version = ssl.TLSVersion.TLSv1_2
        context.verify_mode = ssl.CERT_NONE
        context.set_alpn_protocols(list(self.alpn_protocols))

        with tempfile.TemporaryDirectory(prefix="neoserver-tls-") as tmpdir:
            cert_file = os.path.join(tmpdir, "chain.pem")
            key_file = os.path.join(tmpdir, "key.pem")

            with open(cert_file, "wb") as f:
                f.write(self.chain.to_pem())

            fd = os.open(key_file, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(self.key.to_pem())

            try:
                context.load_cert_chain(certfile=cert_file, keyfile=key_file)
            except ssl.SSLError as e:
                raise CredentialError(f"Failed setting cert for use: {e}") from e

        subject = self.chain.leaf.subject.rfc4514_string()
        logger.debug(f"TLS context ready: subject={subject!r}, chain length={len(self.chain)}")
        return context
