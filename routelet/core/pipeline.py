"""
Routelet Request Pipeline
=========================

Compiles one dispatch branch: a middleware snapshot, a terminal handler
and the router's error handler.

The pipeline:
1. Builds a fresh ``Context`` for the request
2. Runs the middleware chain
3. On a middleware failure, returns the error handler's response
4. Otherwise returns the handler's response

Handler exceptions are not intercepted; they propagate to the caller of
``run`` (ultimately the ASGI server).
"""

from __future__ import annotations

from typing import (
    TYPE_CHECKING,
    Awaitable,
    Callable,
    Dict,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from routelet.core.context import Context
from routelet.core.middleware import Middleware, invoke, run_middlewares
from routelet.core.response import Response

if TYPE_CHECKING:
    from routelet.core.request import ConnectionInfo, Request
    from routelet.utils.logger import Logger


Handler = Callable[[Context], Union[Response, Awaitable[Response]]]
ErrorHandler = Callable[[Context, Exception], Union[Response, Awaitable[Response]]]


class Pipeline:
    """
    A compiled dispatch branch.

    The middleware sequence is copied at construction, so later changes
    to the list it came from do not reach this pipeline. The error
    handler is resolved on every failure through *error_handler*.

    Example:
        pipeline = Pipeline(
            [auth, audit],
            show_user,
            error_handler=lambda: router.error_handler,
            logger=log,
        )
        response = await pipeline.run(request, {"id": "42"}, info)
    """

    __slots__ = ("_middleware", "_handler", "_error_handler", "_logger")

    def __init__(
        self,
        middleware: Sequence[Middleware],
        handler: Handler,
        *,
        error_handler: Callable[[], ErrorHandler],
        logger: "Logger",
    ) -> None:
        self._middleware: Tuple[Middleware, ...] = tuple(middleware)
        self._handler = handler
        self._error_handler = error_handler
        self._logger = logger

    @property
    def middleware(self) -> Tuple[Middleware, ...]:
        return self._middleware

    @property
    def handler(self) -> Handler:
        return self._handler

    async def run(
        self,
        request: "Request",
        params: Optional[Dict[str, str]] = None,
        info: Optional["ConnectionInfo"] = None,
    ) -> Response:
        """Run the request through the pipeline and return its response."""
        ctx = Context(request=request, log=self._logger, params=params, info=info)

        result = await run_middlewares(ctx, self._middleware)
        if not result.ok:
            self._logger.warn(
                "Middleware failed",
                method=request.method,
                path=request.path,
                error=repr(result.error),
            )
            response = await invoke(self._error_handler(), ctx, result.error)
            return _checked(response, "error handler")

        return _checked(await invoke(self._handler, ctx), "handler")


def _checked(response: object, what: str) -> Response:
    if not isinstance(response, Response):
        raise TypeError(
            f"{what} returned {type(response).__name__}, expected a Response"
        )
    return response
