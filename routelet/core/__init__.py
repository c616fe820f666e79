"""
Routelet Core Module
====================

The dispatch pipeline:
- Router: root object, route registration and ASGI entry point
- RouteTable: ordered route lookup with path patterns
- Pipeline: middleware chain plus terminal handler
- Context/UserData: per-request state
- Request/Response: HTTP message abstractions
- ListenConfig/Listener: serving through uvicorn
"""

from routelet.core.response import (
    HTMLResponse,
    JSONResponse,
    PlainTextResponse,
    Response,
    ResponseEncodeError,
    html,
    json,
    text,
)
from routelet.core.request import ConnectionInfo, Headers, QueryParams, Request
from routelet.core.context import MISSING, Context, UserData
from routelet.core.middleware import ChainResult, Middleware, run_middlewares
from routelet.core.pipeline import ErrorHandler, Handler, Pipeline
from routelet.core.router import (
    PathPattern,
    PatternError,
    Route,
    RouteMatch,
    RouteTable,
)
from routelet.core.config import ListenConfig, log_level_from_env
from routelet.core.application import Listener, Router, RouterState

__all__ = [
    "Router",
    "RouterState",
    "Listener",
    "ListenConfig",
    "log_level_from_env",
    "RouteTable",
    "Route",
    "RouteMatch",
    "PathPattern",
    "PatternError",
    "Pipeline",
    "Handler",
    "ErrorHandler",
    "Middleware",
    "ChainResult",
    "run_middlewares",
    "Context",
    "UserData",
    "MISSING",
    "Request",
    "Headers",
    "QueryParams",
    "ConnectionInfo",
    "Response",
    "PlainTextResponse",
    "HTMLResponse",
    "JSONResponse",
    "ResponseEncodeError",
    "json",
    "text",
    "html",
]
