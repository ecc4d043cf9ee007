"""
=============================================================================
TLS CREDENTIAL LOADER
=============================================================================

Turns the two files named by --tls-cert and --tls-key into structured,
validated credentials:

    --tls-cert  ──► load_certs()        ──► CertificateChain
    --tls-key   ──► load_private_key()  ──► PrivateKey

=============================================================================
FILE RULES
=============================================================================

    Certificate file:
        CERTIFICATE blocks  → appended to the chain, in file order
        key blocks          → warning, discarded
        zero certificates   → CredentialError

    Key file:
        RSA / PKCS8 blocks  → each one replaces the previous candidate,
                              so the LAST key in the file wins
        CERTIFICATE blocks  → warning, discarded
        zero keys           → CredentialError

Every block is parsed with `cryptography` as soon as it is read, so a
truncated certificate or a garbled key is reported against the file that
holds it instead of surfacing later as an opaque OpenSSL error.

=============================================================================
"""

import logging
from dataclasses import dataclass
from typing import Union

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed448, ed25519, rsa

from .pem import PEMError, PemItem, PemKind, encode_pem, read_pem_items


logger = logging.getLogger(__name__)


class CredentialError(Exception):
    """Raised when certificate or key material cannot be loaded."""


PrivateKeyTypes = Union[
    rsa.RSAPrivateKey,
    ec.EllipticCurvePrivateKey,
    dsa.DSAPrivateKey,
    ed25519.Ed25519PrivateKey,
    ed448.Ed448PrivateKey,
]


@dataclass(frozen=True)
class CertificateChain:
    """
    Ordered DER certificates, leaf first.

    Attributes:
        certificates: Parsed certificates, same order as `der`.
        der: Raw DER bytes of each certificate.
    """

    certificates: tuple
    der: tuple

    def __len__(self) -> int:
        return len(self.der)

    @property
    def leaf(self) -> x509.Certificate:
        return self.certificates[0]

    def to_pem(self) -> bytes:
        """The chain as one PEM bundle, the format ssl.load_cert_chain reads."""
        return b"".join(encode_pem(PemKind.X509_CERTIFICATE, der) for der in self.der)


@dataclass(frozen=True)
class PrivateKey:
    """One private key and the PEM label it was found under."""

    kind: PemKind
    der: bytes
    key: PrivateKeyTypes

    def to_pem(self) -> bytes:
        """The key as unencrypted PKCS#8 PEM."""
        return self.key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )


def _read_items(path: str) -> list[PemItem]:
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as e:
        raise CredentialError(f"failed to open {path}: {e}") from e

    try:
        return read_pem_items(data)
    except PEMError as e:
        raise CredentialError(f"failed to parse {path}: {e}") from e


def load_certs(path: str) -> CertificateChain:
    """
    Load a PEM certificate chain.

    Raises:
        CredentialError: If the file cannot be read, holds a malformed
                         block, or contains no certificate.
    """
    certificates = []
    ders = []

    for item in _read_items(path):
        if item.kind.is_key:
            logger.warning(f"Unexpected {item.kind.description} in TLS certificate file")
            continue

        try:
            certificates.append(x509.load_der_x509_certificate(item.der))
        except ValueError as e:
            raise CredentialError(f"invalid certificate in {path}: {e}") from e
        ders.append(item.der)

    if not ders:
        raise CredentialError(f"no certificates found in {path}")

    logger.debug(f"Loaded {len(ders)} certificate(s) from {path}")
    return CertificateChain(certificates=tuple(certificates), der=tuple(ders))


def load_private_key(path: str) -> PrivateKey:
    """
    Load the last private key in a PEM file.

    Raises:
        CredentialError: If the file cannot be read, holds a malformed
                         block, or contains no RSA or PKCS8 key.
    """
    candidate = None

    for item in _read_items(path):
        if not item.kind.is_key:
            logger.warning(f"Unexpected {item.kind.description} in TLS key file")
            continue
        candidate = item

    if candidate is None:
        raise CredentialError(f"failed to parse a single RSA private key from {path}")

    try:
        key = serialization.load_der_private_key(candidate.der, password=None)
    except (ValueError, TypeError) as e:
        raise CredentialError(f"invalid private key in {path}: {e}") from e

    return PrivateKey(kind=candidate.kind, der=candidate.der, key=key)
