"""
=============================================================================
PEM READER
=============================================================================

PEM is base64-encoded DER between two delimiter lines:

    -----BEGIN CERTIFICATE-----
    MIIDazCCAlOgAwIBAgIUe...          ← base64, usually 64 chars per line
    ...
    -----END CERTIFICATE-----

A single file may hold any number of blocks; anything outside a block
(comments, "Bag Attributes" from openssl pkcs12, blank lines) is ignored.

=============================================================================
RECOGNISED LABELS
=============================================================================

    ┌────────────────────────┬──────────────────────────────────────────┐
    │ BEGIN label            │ PemKind                                  │
    ├────────────────────────┼──────────────────────────────────────────┤
    │ CERTIFICATE            │ X509_CERTIFICATE                         │
    │ RSA PRIVATE KEY        │ RSA_KEY      (PKCS#1)                    │
    │ PRIVATE KEY            │ PKCS8_KEY    (PKCS#8, unencrypted)       │
    │ anything else          │ skipped (block is still checked)         │
    └────────────────────────┴──────────────────────────────────────────┘

A block whose base64 does not decode, whose END label does not match its
BEGIN label, or that never ends raises PEMError. Malformed input is never
skipped silently.

=============================================================================
"""

import base64
import binascii
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Optional


class PEMError(ValueError):
    """Raised for a malformed PEM block."""


class PemKind(Enum):
    X509_CERTIFICATE = "CERTIFICATE"
    RSA_KEY = "RSA PRIVATE KEY"
    PKCS8_KEY = "PRIVATE KEY"

    @property
    def is_key(self) -> bool:
        return self is not PemKind.X509_CERTIFICATE

    @property
    def description(self) -> str:
        """Human name used in log messages."""
        return {
            PemKind.X509_CERTIFICATE: "X509Certificate",
            PemKind.RSA_KEY: "RSAKey",
            PemKind.PKCS8_KEY: "PKCS8Key",
        }[self]


@dataclass(frozen=True)
class PemItem:
    """One decoded PEM block: its kind and its DER bytes."""
    kind: PemKind
    der: bytes


_BEGIN = re.compile(r"^-----BEGIN ([A-Z0-9 ]+)-----\s*$")
_END = re.compile(r"^-----END ([A-Z0-9 ]+)-----\s*$")

_LABELS = {kind.value: kind for kind in PemKind}


def _decode_body(label: str, lines: list[str], line_number: int) -> bytes:
    body = "".join(line.strip() for line in lines)
    try:
        return base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as e:
        raise PEMError(f"Invalid base64 in {label} block starting at line {line_number}: {e}") from e


def iter_pem_items(text: str) -> Iterator[PemItem]:
    """
    Yield recognised blocks from PEM text, in file order.

    Raises:
        PEMError: On the first malformed block.
    """
    label: Optional[str] = None
    start_line = 0
    body: list[str] = []

    for number, line in enumerate(text.splitlines(), start=1):
        if label is None:
            match = _BEGIN.match(line)
            if match:
                label = match.group(1)
                start_line = number
                body = []
            continue

        end = _END.match(line)
        if end:
            if end.group(1) != label:
                raise PEMError(
                    f"Mismatched PEM delimiters: BEGIN {label} (line {start_line}) "
                    f"closed by END {end.group(1)} (line {number})"
                )
            der = _decode_body(label, body, start_line)
            kind = _LABELS.get(label)
            if kind is not None:
                yield PemItem(kind=kind, der=der)
            label = None
            continue

        if _BEGIN.match(line):
            raise PEMError(f"BEGIN {label} at line {start_line} has no END line")

        # RFC 1421 style headers ("Proc-Type: 4,ENCRYPTED") are not base64
        if ":" in line:
            raise PEMError(f"Encrypted or annotated {label} block at line {start_line} is not supported")

        body.append(line)

    if label is not None:
        raise PEMError(f"BEGIN {label} at line {start_line} has no END line")


def read_pem_items(data: bytes) -> list[PemItem]:
    """
    Decode every recognised block in `data`.

    Raises:
        PEMError: If the data is not text or any block is malformed.
    """
    try:
        text = data.decode("ascii")
    except UnicodeDecodeError as e:
        raise PEMError(f"PEM data is not ASCII text: {e}") from e
    return list(iter_pem_items(text))


def encode_pem(kind: PemKind, der: bytes) -> bytes:
    """Encode DER bytes as one PEM block (64-character lines)."""
    encoded = base64.b64encode(der).decode("ascii")
    lines = [encoded[i:i + 64] for i in range(0, len(encoded), 64)]
    return (
        f"-----BEGIN {kind.value}-----\n"
        + "\n".join(lines)
        + f"\n-----END {kind.value}-----\n"
    ).encode("ascii")
