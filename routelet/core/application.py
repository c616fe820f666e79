"""
Routelet Router
===============

The root object applications talk to. A Router owns:
- the route table
- the global middleware list
- the error handler (used when a middleware raises)
- the compiled not-found pipeline

and exposes a single dispatch coroutine plus an ASGI adapter, which is
what the server (uvicorn) is given.

Example:
    from routelet import Router

    router = Router()

    async def timing(ctx):
        ctx.user_data.set("started", time.perf_counter())

    router.use(timing)

    async def show_user(ctx):
        return ctx.json(200, {"id": ctx.params["id"]})

    router.get("/users/:id", show_user)

    listener = router.listen({"port": 8080})
    listener.join()

Snapshots:
    A route's pipeline copies the global middleware list when the route
    is registered, and ``on_not_found`` copies it when called. ``use``
    therefore only affects routes (and not-found handlers) registered
    after it. The error handler is looked up at dispatch time, so
    ``on_error`` applies to every route.

Errors:
    Middleware failures go to the error handler. Handler failures are
    not intercepted: they propagate out of ``dispatch`` to the server.
"""

from __future__ import annotations

import asyncio
import threading
from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Tuple,
    Union,
)

import uvicorn

from routelet.core.config import ListenConfig, logger_from_env
from routelet.core.context import Context
from routelet.core.middleware import Middleware, ensure_callable
from routelet.core.pipeline import ErrorHandler, Handler, Pipeline
from routelet.core.request import ConnectionInfo, Request
from routelet.core.response import Response
from routelet.core.router import Route, RouteTable
from routelet.utils.env import Env
from routelet.utils.logger import Logger


Scope = Dict[str, Any]
Receive = Callable[[], Awaitable[Dict[str, Any]]]
Send = Callable[[Dict[str, Any]], Awaitable[None]]


class RouterState(str, Enum):
    """Lifecycle of a Router. There is no stopped state."""

    UNCONFIGURED = "unconfigured"
    CONFIGURED = "configured"
    LISTENING = "listening"


def _error_message(error: Exception) -> str:
    # str(KeyError("k")) is "'k'"; a lone argument is the message itself.
    if len(error.args) == 1:
        return str(error.args[0])
    return str(error)


def default_error_handler(ctx: Context, error: Exception) -> Response:
    return ctx.text(500, f"Error: {_error_message(error)}")


def default_not_found_handler(ctx: Context) -> Response:
    return ctx.text(404, "Not Found")


class _Server(uvicorn.Server):
    """uvicorn server reporting the bound address once sockets are open."""

    def __init__(
        self,
        config: uvicorn.Config,
        on_listen: Callable[[str, int], None],
    ) -> None:
        super().__init__(config)
        self._on_listen = on_listen

    async def startup(self, sockets: Optional[List[Any]] = None) -> None:
        await super().startup(sockets=sockets)
        if self.should_exit:
            return

        host, port = self.config.host, self.config.port
        for server in getattr(self, "servers", []):
            for sock in server.sockets or ():
                address = sock.getsockname()
                if isinstance(address, tuple):
                    host, port = address[0], address[1]
                    break
        self._on_listen(host, port)


class Listener:
    """
    Handle on a running server.

    ``start`` serves from a background thread; ``serve`` runs inside an
    already running event loop instead. Cancelling or timing out
    individual requests is left to uvicorn.
    """

    def __init__(self, app: "Router", config: ListenConfig, logger: Logger) -> None:
        self.config = config
        self.host = config.host
        self.port = config.port
        self._logger = logger
        self._started = threading.Event()
        self._stopped = threading.Event()
        self._exit_code: Any = None
        self._thread: Optional[threading.Thread] = None

        options = dict(config.server_options)
        options.setdefault("log_level", logger.level.name.lower())
        self._server = _Server(
            uvicorn.Config(app, host=config.host, port=config.port, **options),
            on_listen=self._on_listen,
        )

    def _on_listen(self, host: str, port: int) -> None:
        self.host, self.port = host, port
        self._logger.info(f"Listening to {host}:{port}")
        self._started.set()

    @property
    def started(self) -> bool:
        return self._started.is_set()

    @property
    def server(self) -> uvicorn.Server:
        return self._server

    def _run(self) -> None:
        # uvicorn reports startup failures (bind errors, lifespan
        # failures) with sys.exit; keep the code for start().
        try:
            self._server.run()
        except SystemExit as e:
            self._exit_code = e.code
        finally:
            self._stopped.set()

    def start(self) -> "Listener":
        """
        Serve from a daemon thread.

        Returns once the sockets are bound.

        Raises:
            RuntimeError: If the server stopped before it started listening
        """
        if self._thread is not None:
            raise RuntimeError("Listener already started")
        self._thread = threading.Thread(
            target=self._run,
            name=f"routelet-{self.config.host}:{self.config.port}",
            daemon=True,
        )
        self._thread.start()

        while not self._started.wait(0.05):
            if self._stopped.is_set():
                self._thread.join()
                self._logger.error(
                    "Server failed to start",
                    host=self.config.host,
                    port=self.config.port,
                    exit_code=self._exit_code,
                )
                raise RuntimeError(
                    f"Could not listen on {self.config.host}:{self.config.port} "
                    f"(exit code {self._exit_code})"
                )
        return self

    async def serve(self) -> None:
        """Serve in the current event loop until shut down."""
        await self._server.serve()

    def wait_started(self, timeout: Optional[float] = None) -> bool:
        """Block until the sockets are bound. Returns False on timeout."""
        return self._started.wait(timeout)

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Ask the server to exit and wait for the thread, if any."""
        self._server.should_exit = True
        self.join(timeout)

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def __repr__(self) -> str:
        return f"<Listener {self.host}:{self.port} started={self.started}>"


class Router:
    """
    HTTP request dispatcher.

    Attributes:
        log: Logger handed to every request context
        table: The route table, in registration order
    """

    def __init__(
        self,
        logger: Optional[Logger] = None,
        env: Optional[Env] = None,
    ) -> None:
        self._env = env or Env()
        self.log = logger or logger_from_env(self._env)
        self.table = RouteTable()

        self._middleware: List[Middleware] = []
        self._error_handler: ErrorHandler = default_error_handler
        self._not_found = self._compile(default_not_found_handler, ())
        self._configured = False
        self._listener: Optional[Listener] = None

    # Configuration

    @property
    def state(self) -> RouterState:
        if self._listener is not None:
            return RouterState.LISTENING
        if self._configured:
            return RouterState.CONFIGURED
        return RouterState.UNCONFIGURED

    @property
    def middleware(self) -> Tuple[Middleware, ...]:
        """Global middleware, in ``use`` order."""
        return tuple(self._middleware)

    @property
    def error_handler(self) -> ErrorHandler:
        return self._error_handler

    @property
    def not_found(self) -> Pipeline:
        return self._not_found

    @property
    def routes(self) -> Tuple[Route, ...]:
        return self.table.routes

    def _compile(self, handler: Handler, middleware: Iterable[Middleware]) -> Pipeline:
        return Pipeline(
            tuple(middleware),
            handler,
            error_handler=lambda: self._error_handler,
            logger=self.log,
        )

    def use(self, *middlewares: Middleware) -> None:
        """Append global middleware. Affects routes registered afterwards."""
        for middleware in middlewares:
            ensure_callable(middleware, "middleware")
        self._middleware.extend(middlewares)
        self._configured = True

    def on_error(self, handler: ErrorHandler) -> None:
        """Replace the handler used when a middleware raises."""
        ensure_callable(handler, "error handler")
        self._error_handler = handler
        self._configured = True

    def on_not_found(self, handler: Handler) -> None:
        """
        Replace the not-found handler.

        The current global middleware list is copied now; later ``use``
        calls do not reach this handler.
        """
        ensure_callable(handler, "not-found handler")
        self._not_found = self._compile(handler, self._middleware)
        self._configured = True

    def route(
        self,
        methods: Union[str, Iterable[str]],
        pattern: str,
        handler: Optional[Handler] = None,
        *middlewares: Middleware,
    ) -> Any:
        """
        Register *handler* for *methods* on *pattern*.

        Without a handler, returns a decorator:

            @router.route(["GET", "HEAD"], "/health")
            def health(ctx):
                return ctx.text(200, "ok")
        """
        if handler is None:
            def decorator(func: Handler) -> Handler:
                return self.route(methods, pattern, func, *middlewares)
            return decorator

        ensure_callable(handler, "handler")
        for middleware in middlewares:
            ensure_callable(middleware, "middleware")

        pipeline = self._compile(handler, [*self._middleware, *middlewares])
        self.table.register(methods, pattern, handler, middlewares, pipeline)
        self._configured = True
        return handler

    def get(self, pattern: str, handler: Optional[Handler] = None, *middlewares: Middleware) -> Any:
        return self.route("GET", pattern, handler, *middlewares)

    def post(self, pattern: str, handler: Optional[Handler] = None, *middlewares: Middleware) -> Any:
        return self.route("POST", pattern, handler, *middlewares)

    def put(self, pattern: str, handler: Optional[Handler] = None, *middlewares: Middleware) -> Any:
        return self.route("PUT", pattern, handler, *middlewares)

    def delete(self, pattern: str, handler: Optional[Handler] = None, *middlewares: Middleware) -> Any:
        return self.route("DELETE", pattern, handler, *middlewares)

    def patch(self, pattern: str, handler: Optional[Handler] = None, *middlewares: Middleware) -> Any:
        return self.route("PATCH", pattern, handler, *middlewares)

    # Dispatch

    async def dispatch(
        self,
        request: Request,
        info: Optional[ConnectionInfo] = None,
    ) -> Response:
        """
        Resolve one request to one response.

        Routes are matched against the encoded ``raw_path`` and looked up
        live, so routes registered after ``listen`` serve subsequent
        requests. Handler exceptions propagate.
        """
        match = self.table.match(request.method, request.raw_path)

        if match is None:
            self.log.debug(
                "No route matched",
                method=request.method,
                path=request.raw_path,
                allowed=sorted(self.table.allowed_methods(request.raw_path)),
            )
            return await self._not_found.run(request, None, info)

        return await match.route.pipeline.run(request, match.params, info)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI application interface."""
        if scope["type"] == "http":
            request = Request.from_scope(scope, receive)
            response = await self.dispatch(request, ConnectionInfo.from_scope(scope))
            await response.send(send)
        elif scope["type"] == "lifespan":
            await self._handle_lifespan(receive, send)
        else:
            raise ValueError(f"Unsupported scope type: {scope['type']}")

    async def _handle_lifespan(self, receive: Receive, send: Send) -> None:
        while True:
            message = await receive()
            if message["type"] == "lifespan.startup":
                await send({"type": "lifespan.startup.complete"})
            elif message["type"] == "lifespan.shutdown":
                await send({"type": "lifespan.shutdown.complete"})
                return

    # Serving

    def listen(
        self,
        options: Union[ListenConfig, Mapping[str, Any], None] = None,
    ) -> Listener:
        """
        Start serving in the background and return the Listener.

        Blocks until the sockets are bound. ``LISTEN_HOST`` and ``PORT``
        provide defaults; *options* win.

        Raises:
            RuntimeError: If the server could not start (e.g. the port
                is already in use)
        """
        config = ListenConfig.from_env(self._env).merged(options)
        listener = Listener(self, config, self.log).start()
        self._listener = listener
        return listener

    def create_listener(
        self,
        options: Union[ListenConfig, Mapping[str, Any], None] = None,
    ) -> Listener:
        """
        Build a Listener without starting it, for ``await listener.serve()``.
        """
        config = ListenConfig.from_env(self._env).merged(options)
        self._listener = Listener(self, config, self.log)
        return self._listener

    def run(self, options: Union[ListenConfig, Mapping[str, Any], None] = None) -> None:
        """Serve in the foreground until interrupted."""
        listener = self.create_listener(options)
        asyncio.run(listener.serve())
