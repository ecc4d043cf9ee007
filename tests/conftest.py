"""
pytest configuration and fixtures.
"""

import datetime
import ipaddress
import socket
import ssl
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Generator, Optional

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID
from h2.config import H2Configuration
from h2.connection import H2Connection
from h2.events import DataReceived, ResponseReceived, StreamEnded, StreamReset

# Add src to path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from neoserver import ContentBlob, HTTPServer, ServerConfig, create_server
from neoserver.tls import TlsServerConfig


CONTENT = b"hello world\n"


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request."""
    return (
        b"GET /index.html?lang=en HTTP/1.1\r\n"
        b"Host: localhost:5000\r\n"
        b"User-Agent: pytest\r\n"
        b"Accept: */*\r\n"
        b"Connection: keep-alive\r\n"
        b"\r\n"
    )


@pytest.fixture
def sample_post_request() -> bytes:
    """Sample HTTP POST request with a body."""
    body = b'{"name": "John"}'
    return (
        b"POST /upload HTTP/1.1\r\n"
        b"Host: localhost:5000\r\n"
        b"Content-Type: application/json\r\n"
        + f"Content-Length: {len(body)}\r\n".encode()
        + b"Connection: close\r\n"
        b"\r\n"
    ) + body


@pytest.fixture
def blob() -> ContentBlob:
    return ContentBlob(CONTENT, source="<test>")


@pytest.fixture
def config() -> ServerConfig:
    """Test server configuration on an ephemeral port."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,
        min_workers=2,
        timeout=5.0,
        keep_alive_timeout=1.0,
        handshake_timeout=2.0,
    )


# =============================================================================
# TLS MATERIAL
# =============================================================================

@dataclass
class TlsFiles:
    cert_path: Path
    key_path: Path
    rsa_key_path: Path
    ca_path: Path
    cert_pem: bytes
    ca_pem: bytes
    key_pem: bytes
    rsa_key_pem: bytes


def _make_ca(common_name: str = "neoserver test CA"):
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.datetime.now(datetime.timezone.utc)

    cert = (
        x509.CertificateBuilder()
        .subject_name(name).issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True, content_commitment=False, key_encipherment=False,
                data_encipherment=False, key_agreement=False, key_cert_sign=True,
                crl_sign=True, encipher_only=False, decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
        .sign(key, hashes.SHA256())
    )
    return key, cert


def _make_leaf(ca_key, ca_cert, host: str = "localhost"):
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    now = datetime.datetime.now(datetime.timezone.utc)

    cert = (
        x509.CertificateBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, host)]))
        .issuer_name(ca_cert.subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .add_extension(
            x509.SubjectAlternativeName([
                x509.DNSName(host),
                x509.IPAddress(ipaddress.ip_address("127.0.0.1")),
            ]),
            critical=False,
        )
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_key.public_key()),
            critical=False,
        )
        .sign(ca_key, hashes.SHA256())
    )
    return key, cert


@pytest.fixture(scope="session")
def tls_files(tmp_path_factory) -> TlsFiles:
    """
    A test CA and a leaf for localhost / 127.0.0.1.

    cert.pem holds the chain (leaf, then CA); the leaf key is written
    both as PKCS8 and as a traditional RSA key.
    """
    ca_key, ca_cert = _make_ca()
    key, cert = _make_leaf(ca_key, ca_cert)
    directory = tmp_path_factory.mktemp("tls")

    ca_pem = ca_cert.public_bytes(serialization.Encoding.PEM)
    cert_pem = cert.public_bytes(serialization.Encoding.PEM) + ca_pem
    key_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )
    rsa_key_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.TraditionalOpenSSL,
        serialization.NoEncryption(),
    )

    files = TlsFiles(
        cert_path=directory / "cert.pem",
        key_path=directory / "key.pem",
        rsa_key_path=directory / "rsa_key.pem",
        ca_path=directory / "ca.pem",
        cert_pem=cert_pem,
        ca_pem=ca_pem,
        key_pem=key_pem,
        rsa_key_pem=rsa_key_pem,
    )
    files.cert_path.write_bytes(cert_pem)
    files.ca_path.write_bytes(ca_pem)
    files.key_path.write_bytes(key_pem)
    files.rsa_key_path.write_bytes(rsa_key_pem)
    return files


@pytest.fixture(scope="session")
def other_key_pem() -> bytes:
    """An unrelated PKCS8 key, for last-key-wins checks."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )


@pytest.fixture
def tls_config(tls_files: TlsFiles) -> TlsServerConfig:
    return TlsServerConfig.from_files(str(tls_files.cert_path), str(tls_files.key_path))


def client_context(alpn: Optional[list] = None, cafile: Optional[Path] = None) -> ssl.SSLContext:
    """
    TLS client context.

    Without `cafile` nothing is verified. With it, the chain must lead to
    that CA and the hostname must match.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    if cafile is None:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    else:
        context.load_verify_locations(cafile=str(cafile))
    if alpn:
        context.set_alpn_protocols(alpn)
    return context


# =============================================================================
# RUNNING SERVERS
# =============================================================================

class TestServer:
    """Runs an HTTPServer on a background thread."""

    __test__ = False

    def __init__(self, server: HTTPServer):
        self.server = server
        self.error: Optional[BaseException] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def address(self) -> tuple:
        return self.server.server_address

    def _run(self):
        try:
            self.server.run()
        except BaseException as e:
            self.error = e

    def start(self) -> "TestServer":
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

        if not self.server.ready.wait(timeout=10.0):
            raise RuntimeError(f"Server failed to start: {self.error!r}")
        return self

    def stop(self):
        self.server.shutdown()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=15.0)


@pytest.fixture
def plain_server(config: ServerConfig, blob: ContentBlob) -> Generator[TestServer, None, None]:
    test_srv = TestServer(create_server(blob, config)).start()
    yield test_srv
    test_srv.stop()


@pytest.fixture
def tls_server(
    config: ServerConfig,
    blob: ContentBlob,
    tls_config: TlsServerConfig,
) -> Generator[TestServer, None, None]:
    test_srv = TestServer(create_server(blob, config, tls=tls_config)).start()
    yield test_srv
    test_srv.stop()


# =============================================================================
# CLIENT HELPERS
# =============================================================================

def recv_all(sock: socket.socket) -> bytes:
    """Read until the peer closes."""
    chunks = []
    while True:
        try:
            chunk = sock.recv(65536)
        except (ConnectionResetError, ssl.SSLEOFError):
            break
        if not chunk:
            break
        chunks.append(chunk)
    return b"".join(chunks)


def split_response(raw: bytes) -> tuple:
    """Split a single HTTP/1.x response into (status, headers, body)."""
    head, _, body = raw.partition(b"\r\n\r\n")
    lines = head.decode("latin-1").split("\r\n")
    status = int(lines[0].split(" ")[1])
    headers = {}
    for line in lines[1:]:
        name, _, value = line.partition(":")
        headers[name.strip().lower()] = value.strip()
    return status, headers, body


class H2Client:
    """Minimal blocking HTTP/2 client on top of h2, for tests."""

    def __init__(self, sock: socket.socket, preface: bool = True):
        self.sock = sock
        self.conn = H2Connection(config=H2Configuration(client_side=True, header_encoding="utf-8"))
        self.conn.initiate_connection()
        if preface:
            self.flush()

    def flush(self):
        data = self.conn.data_to_send()
        if data:
            self.sock.sendall(data)

    def request(self, method: str = "GET", path: str = "/", authority: str = "localhost") -> int:
        stream_id = self.conn.get_next_available_stream_id()
        self.conn.send_headers(
            stream_id,
            [
                (":method", method),
                (":path", path),
                (":scheme", "https"),
                (":authority", authority),
            ],
            end_stream=True,
        )
        self.flush()
        return stream_id

    def responses(self, stream_ids, timeout: float = 5.0) -> dict:
        """Wait for the given streams; returns {stream_id: (status, headers, body)}."""
        pending = set(stream_ids)
        headers = {sid: {} for sid in stream_ids}
        bodies = {sid: b"" for sid in stream_ids}
        self.sock.settimeout(timeout)

        while pending:
            data = self.sock.recv(65536)
            if not data:
                break

            for event in self.conn.receive_data(data):
                if isinstance(event, ResponseReceived):
                    headers[event.stream_id] = dict(event.headers)
                elif isinstance(event, DataReceived):
                    bodies[event.stream_id] += event.data
                    self.conn.acknowledge_received_data(event.flow_controlled_length, event.stream_id)
                elif isinstance(event, (StreamEnded, StreamReset)):
                    pending.discard(event.stream_id)

            self.flush()

        return {
            sid: (int(headers[sid].get(":status", 0)), headers[sid], bodies[sid])
            for sid in stream_ids
        }

    def get(self, path: str = "/", method: str = "GET") -> tuple:
        stream_id = self.request(method, path)
        return self.responses([stream_id])[stream_id]

    def close(self):
        self.conn.close_connection()
        try:
            self.flush()
        except OSError:
            pass
        self.sock.close()
