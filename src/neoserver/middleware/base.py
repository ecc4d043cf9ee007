"""
=============================================================================
BASE MIDDLEWARE INTERFACE
=============================================================================

Middleware wraps the request handler so cross-cutting work (access logging,
turning handler crashes into 500s) stays out of the handler itself. Both
protocol sessions call the same wrapped handler, so every middleware sees
HTTP/1.1 and HTTP/2 requests alike.

=============================================================================
CHAIN OF RESPONSIBILITY
=============================================================================

    Request ──────────────────────────────────────────────►

    ┌───────────┐     ┌───────────┐     ┌──────────────────────┐
    │  Logging  │────►│  Errors   │────►│ StaticContentHandler │
    └─────┬─────┘     └─────┬─────┘     └──────────┬───────────┘
          │ [before]        │ [before]             │ [exec]
          │ start timer     │ try:                 │ GET → 200
          │                 │                      │ else → 404
          │ [after]         │ [after]              │
          │ access line     │ except → 500         │

    ◄────────────────────────────────────────────── Response

=============================================================================
"""

import functools
import logging
from abc import ABC, abstractmethod
from typing import Callable, Iterator, List

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, internal_error


logger = logging.getLogger(__name__)


NextHandler = Callable[[HTTPRequest], HTTPResponse]


class Middleware(ABC):
    """
    One link of the chain. Subclasses implement __call__:

        class MyMiddleware(Middleware):
            def __call__(self, request, next):
                # before the handler
                response = next(request)
                # after the handler
                return response
    """

    @abstractmethod
    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        """
        Handle `request`, normally by calling `next(request)` and returning
        its response, annotated or replaced.
        """

    @property
    def name(self) -> str:
        return self.__class__.__name__


class ErrorMiddleware(Middleware):
    """
    Turns any exception from further down the chain into a 500.

    The traceback is logged here; the client gets no internal detail.
    """

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        try:
            return next(request)
        except Exception as e:
            logger.exception(f"Handler error for {request.method} {request.path}: {e}")
            return internal_error()


class MiddlewarePipeline:
    """
    Chains middleware around a final handler.

    First added = outermost:

        pipeline = MiddlewarePipeline()
        pipeline.use(LoggingMiddleware())   # sees every request, incl. 500s
        pipeline.use(ErrorMiddleware())
        handler = pipeline.wrap(StaticContentHandler(blob))
    """

    def __init__(self):
        self._chain: List[Middleware] = []

    def use(self, *middleware: Middleware) -> "MiddlewarePipeline":
        self._chain.extend(middleware)
        logger.debug(f"Middleware chain: {[m.name for m in self._chain]}")
        return self

    def wrap(self, handler: NextHandler) -> NextHandler:
        """
        Wrap `handler` with every middleware in the pipeline.

        Given [MW1, MW2] the result calls MW1 → MW2 → handler; wrapping
        happens in reverse so the first-added middleware ends up outermost.
        """
        return functools.reduce(
            lambda inner, middleware: functools.partial(middleware, next=inner),
            reversed(self._chain),
            handler,
        )

    def __len__(self) -> int:
        return len(self._chain)

    def __iter__(self) -> Iterator[Middleware]:
        return iter(self._chain)
