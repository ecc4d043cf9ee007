"""
Unit tests for the middleware pipeline.
"""

import logging

from neoserver.http.request import HTTPRequest
from neoserver.http.response import HTTPResponse, not_found, ok
from neoserver.http.status_codes import HTTPStatus
from neoserver.middleware import (
    ErrorMiddleware,
    LoggingMiddleware,
    Middleware,
    MiddlewarePipeline,
)
from neoserver.middleware.logging import RequestLog, level_for


class Recorder(Middleware):
    def __init__(self, label, calls):
        self.label = label
        self.calls = calls

    def __call__(self, request, next):
        self.calls.append(f"{self.label}:before")
        response = next(request)
        self.calls.append(f"{self.label}:after")
        return response


def request(method="GET", path="/", version="HTTP/1.1") -> HTTPRequest:
    return HTTPRequest(method=method, path=path, version=version, client_address=("127.0.0.1", 5555))


class TestMiddlewarePipeline:

    def test_first_added_is_outermost(self):
        calls = []
        pipeline = MiddlewarePipeline().use(Recorder("a", calls), Recorder("b", calls))

        def handler(req):
            calls.append("handler")
            return ok(b"x")

        pipeline.wrap(handler)(request())

        assert calls == ["a:before", "b:before", "handler", "b:after", "a:after"]

    def test_empty_pipeline_is_the_handler(self):
        def handler(req):
            return ok(b"x")

        assert MiddlewarePipeline().wrap(handler) is handler

    def test_len_and_iter(self):
        first, second = ErrorMiddleware(), LoggingMiddleware()
        pipeline = MiddlewarePipeline().use(first).use(second)

        assert len(pipeline) == 2
        assert list(pipeline) == [first, second]
        assert first.name == "ErrorMiddleware"


class TestErrorMiddleware:

    def test_exception_becomes_500(self, caplog):
        def broken(req):
            raise RuntimeError("boom")

        with caplog.at_level(logging.ERROR, logger="neoserver.middleware.base"):
            response = ErrorMiddleware()(request(), broken)

        assert response.status == HTTPStatus.INTERNAL_SERVER_ERROR
        assert b"boom" not in response.body
        assert "boom" in caplog.text

    def test_passes_responses_through(self):
        expected = ok(b"fine")
        assert ErrorMiddleware()(request(), lambda req: expected) is expected


class TestLoggingMiddleware:

    def test_access_line(self, caplog):
        with caplog.at_level(logging.INFO, logger="neoserver.access"):
            LoggingMiddleware()(request(path="/x", version="HTTP/2"), lambda req: ok(b"12345"))

        record = caplog.records[0]
        assert record.name == "neoserver.access"
        assert record.levelno == logging.INFO
        assert '"GET /x HTTP/2" 200 5' in record.getMessage()
        assert record.getMessage().startswith("127.0.0.1 - - [")

    def test_not_found_is_info(self, caplog):
        with caplog.at_level(logging.INFO, logger="neoserver.access"):
            LoggingMiddleware()(request(method="POST"), lambda req: not_found())

        assert caplog.records[0].levelno == logging.INFO

    def test_server_error_is_error(self, caplog):
        with caplog.at_level(logging.INFO, logger="neoserver.access"):
            LoggingMiddleware()(request(), lambda req: HTTPResponse(status=HTTPStatus.INTERNAL_SERVER_ERROR))

        assert caplog.records[0].levelno == logging.ERROR

    def test_levels(self):
        assert level_for(200) == logging.INFO
        assert level_for(404) == logging.INFO
        assert level_for(400) == logging.WARNING
        assert level_for(503) == logging.ERROR

    def test_request_log_text(self):
        entry = RequestLog(
            method="GET",
            path="/",
            version="HTTP/1.1",
            client_ip="",
            status_code=200,
            content_length=12,
            duration_ms=1.234,
            timestamp="17/Oct/2026:12:00:00 +0000",
        )

        assert entry.to_text() == '- - - [17/Oct/2026:12:00:00 +0000] "GET / HTTP/1.1" 200 12 1.23ms'
