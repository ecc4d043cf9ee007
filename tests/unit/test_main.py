"""
Unit tests for the command line entry point (startup failures only).
"""

import io
import logging
import sys

import pytest

from neoserver.__main__ import build_parser, main


class TestBuildParser:

    def test_defaults(self, monkeypatch):
        for name in ("HOST", "PORT", "FILE", "TLS_CERT", "TLS_KEY", "LOG_LEVEL", "WORKERS",
                     "STDIN_READ_TIMEOUT_SECONDS"):
            monkeypatch.delenv(name, raising=False)

        args = build_parser().parse_args([])

        assert args.host == "127.0.0.1"
        assert args.port == "5000"
        assert args.file is None
        assert args.stdin_read_timeout_seconds == "60"
        assert args.workers == "4"
        assert args.tls_cert is None and args.tls_key is None
        assert args.log_level == "INFO"

    def test_environment_fallback(self, monkeypatch):
        monkeypatch.setenv("HOST", "::1")
        monkeypatch.setenv("PORT", "8443")
        monkeypatch.setenv("FILE", "/srv/index.html")

        args = build_parser().parse_args([])

        assert (args.host, args.port, args.file) == ("::1", "8443", "/srv/index.html")

    def test_flags_beat_environment(self, monkeypatch):
        monkeypatch.setenv("PORT", "8443")

        args = build_parser().parse_args(["-p", "9000", "-l", "debug"])

        assert args.port == "9000"
        assert args.log_level == "DEBUG"


class TestMainFailures:

    def test_bad_host(self, caplog):
        with caplog.at_level(logging.ERROR):
            assert main(["-H", "localhost", "-p", "0", "-f", "unused"]) == 1

        assert "Failed to parse server address" in caplog.text

    @pytest.mark.parametrize("port", ["http", "-1", "70000"])
    def test_bad_port(self, port):
        assert main(["-H", "127.0.0.1", "-p", port, "-f", "unused"]) == 1

    def test_missing_file(self, tmp_path, caplog):
        with caplog.at_level(logging.ERROR):
            assert main(["-H", "127.0.0.1", "-p", "0", "-f", str(tmp_path / "nope")]) == 1

        assert "Failed to read" in caplog.text

    def test_empty_stdin(self, monkeypatch):
        monkeypatch.delenv("FILE", raising=False)
        monkeypatch.setattr(sys, "stdin", io.TextIOWrapper(io.BytesIO(b"")))

        assert main(["-H", "127.0.0.1", "-p", "0", "--stdin-read-timeout-seconds", "5"]) == 1

    def test_bad_tls_material(self, tmp_path, caplog):
        page = tmp_path / "index.html"
        page.write_bytes(b"hi")
        cert = tmp_path / "cert.pem"
        cert.write_text("not a certificate\n")
        key = tmp_path / "key.pem"
        key.write_text("not a key\n")

        with caplog.at_level(logging.ERROR):
            code = main([
                "-H", "127.0.0.1", "-p", "0", "-f", str(page),
                "--tls-cert", str(cert), "--tls-key", str(key),
            ])

        assert code == 1
        assert "Failed to load TLS credentials" in caplog.text

    def test_bind_failure(self, tmp_path):
        page = tmp_path / "index.html"
        page.write_bytes(b"hi")

        # 192.0.2.0/24 is TEST-NET-1, never assigned to a local interface
        assert main(["-H", "192.0.2.1", "-p", "0", "-f", str(page)]) == 1

    def test_bad_workers_from_environment(self, monkeypatch, caplog):
        monkeypatch.setenv("WORKERS", "many")

        with caplog.at_level(logging.ERROR):
            assert main(["-H", "127.0.0.1", "-p", "0", "-f", "unused"]) == 1

        assert "Invalid configuration" in caplog.text

    def test_bad_stdin_timeout(self, caplog):
        with caplog.at_level(logging.ERROR):
            assert main(["-H", "127.0.0.1", "-p", "0", "--stdin-read-timeout-seconds", "soon"]) == 1

        assert "Invalid configuration" in caplog.text
