"""
Unit tests for Connection framing over a socket pair.
"""

import socket

import pytest

from neoserver.core.connection import Connection, ConnectionState, MalformedRequest
from neoserver.http.h2 import H2_PREFACE

from conftest import recv_all


@pytest.fixture
def pair():
    server_sock, client = socket.socketpair()
    conn = Connection(socket=server_sock, address=("127.0.0.1", 40000), timeout=2.0, keep_alive_timeout=0.2)
    yield conn, client
    conn.close()
    client.close()


class TestReadRequest:

    def test_request_split_across_writes(self, pair, sample_get_request):
        conn, client = pair
        client.sendall(sample_get_request[:10])
        client.sendall(sample_get_request[10:])

        assert conn.read_request() == sample_get_request
        assert conn.requests_handled == 1
        assert conn.state is ConnectionState.PROCESSING

    def test_body_follows_content_length(self, pair, sample_post_request):
        conn, client = pair
        client.sendall(sample_post_request)

        assert conn.read_request() == sample_post_request

    def test_pipelined_requests_stay_buffered(self, pair):
        conn, client = pair
        first = b"POST /a HTTP/1.1\r\ncontent-length: 3\r\n\r\nabc"
        second = b"GET /b HTTP/1.1\r\n\r\n"
        client.sendall(first + second)

        assert conn.read_request() == first
        assert conn.read_request() == second

    def test_eof_before_request(self, pair):
        conn, client = pair
        client.shutdown(socket.SHUT_WR)

        assert conn.read_request() is None

    def test_first_request_timeout(self):
        server_sock, client = socket.socketpair()
        conn = Connection(socket=server_sock, address=("127.0.0.1", 40001), timeout=0.2)
        try:
            with pytest.raises(TimeoutError):
                conn.read_request()
        finally:
            conn.close()
            client.close()

    def test_keep_alive_idle_is_not_an_error(self, pair, sample_get_request):
        conn, client = pair
        client.sendall(sample_get_request)
        conn.read_request()

        assert conn.read_request() is None

    def test_oversized_request(self):
        server_sock, client = socket.socketpair()
        conn = Connection(socket=server_sock, address=("127.0.0.1", 40002), max_request_size=64)
        try:
            client.sendall(b"POST / HTTP/1.1\r\nContent-Length: 1000\r\n\r\n")
            with pytest.raises(ValueError, match="too large"):
                conn.read_request()
        finally:
            conn.close()
            client.close()


class TestChunkedBodies:

    def test_chunked_body_is_consumed(self, pair):
        conn, client = pair
        first = (
            b"POST /a HTTP/1.1\r\nTransfer-Encoding: chunked\r\n\r\n"
            b"5;name=value\r\nhello\r\n"
            b"1A\r\n" + b"x" * 26 + b"\r\n"
            b"0\r\n"
            b"X-Trailer: yes\r\n"
            b"\r\n"
        )
        second = b"GET /b HTTP/1.1\r\n\r\n"
        client.sendall(first + second)

        assert conn.read_request() == first
        assert conn.read_request() == second

    def test_request_line_inside_chunk_is_body(self, pair):
        conn, client = pair
        hidden = b"GET /hidden HTTP/1.1\r\nHost: x\r\n\r\n"
        first = (
            b"POST / HTTP/1.1\r\nTransfer-Encoding: chunked\r\n\r\n"
            + f"{len(hidden):x}\r\n".encode() + hidden + b"\r\n0\r\n\r\n"
        )
        client.sendall(first + b"GET /next HTTP/1.1\r\n\r\n")

        assert conn.read_request() == first
        assert conn.read_request().startswith(b"GET /next ")

    def test_chunks_split_across_writes(self, pair):
        conn, client = pair
        request = b"POST / HTTP/1.1\r\nTransfer-Encoding: chunked\r\n\r\n3\r\nabc\r\n0\r\n\r\n"
        for i in range(0, len(request), 7):
            client.sendall(request[i:i + 7])

        assert conn.read_request() == request

    @pytest.mark.parametrize("body", [b"zz\r\n", b"0x5\r\nhello\r\n0\r\n\r\n", b"3\r\nabcdef\r\n"])
    def test_malformed_chunks(self, pair, body):
        conn, client = pair
        client.sendall(b"POST / HTTP/1.1\r\nTransfer-Encoding: chunked\r\n\r\n" + body)

        with pytest.raises(MalformedRequest):
            conn.read_request()

    def test_oversized_chunked_body(self):
        server_sock, client = socket.socketpair()
        conn = Connection(socket=server_sock, address=("127.0.0.1", 40003), max_request_size=128)
        try:
            client.sendall(b"POST / HTTP/1.1\r\nTransfer-Encoding: chunked\r\n\r\nFFFF\r\n")
            with pytest.raises(ValueError, match="too large"):
                conn.read_request()
        finally:
            conn.close()
            client.close()

    def test_unknown_coding_hands_on_head_only(self, pair):
        conn, client = pair
        head = b"POST / HTTP/1.1\r\nTransfer-Encoding: gzip\r\n\r\n"
        client.sendall(head + b"\x1f\x8b")

        assert conn.read_request() == head


class TestSniff:

    def test_h2_preface_is_left_in_place(self, pair):
        conn, client = pair
        client.sendall(H2_PREFACE + b"\x00\x00\x00\x04\x00\x00\x00\x00\x00")

        assert conn.sniff(H2_PREFACE)
        assert conn.take_buffered().startswith(H2_PREFACE)
        assert conn.take_buffered() == b""

    def test_http1_request_is_not_waited_on(self, pair):
        """One byte that differs from the preface is enough to answer."""
        conn, client = pair
        client.sendall(b"GET / HTTP/1.1\r\n\r\n")

        assert conn.sniff(H2_PREFACE) is False
        assert conn.read_request() == b"GET / HTTP/1.1\r\n\r\n"


class TestWriteAndClose:

    def test_send_parts_in_order(self, pair):
        conn, client = pair

        assert conn.send_response(b"head\r\n\r\n", b"", b"body")
        conn.close()

        assert recv_all(client) == b"head\r\n\r\nbody"

    def test_send_after_peer_closed(self, pair):
        conn, client = pair
        client.close()

        assert conn.send_response(b"x" * 1024 * 1024) is False

    def test_close_is_idempotent(self, pair):
        conn, _ = pair

        with conn:
            pass
        conn.close()

        assert conn.is_closed

    def test_ids_are_unique(self):
        a, b = socket.socketpair()
        try:
            first = Connection(socket=a, address=("", 0))
            second = Connection(socket=b, address=("", 0))
            assert first.id != second.id
        finally:
            a.close()
            b.close()
