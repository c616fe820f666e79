"""
Routelet - Minimal HTTP Request Dispatch
========================================

Register path patterns with handlers, run an ordered middleware chain
before the matched handler, and answer with JSON, text or HTML.

Quick Start:
    from routelet import Router

    router = Router()

    @router.get("/hello/:name")
    def hello(ctx):
        return ctx.text(200, f"Hello, {ctx.params['name']}")

    router.run({"port": 8000})
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

from routelet.core.application import Listener, Router, RouterState
from routelet.core.config import ListenConfig
from routelet.core.context import MISSING, Context, UserData
from routelet.core.request import ConnectionInfo, Request
from routelet.core.response import (
    HTMLResponse,
    JSONResponse,
    PlainTextResponse,
    Response,
    ResponseEncodeError,
)
from routelet.core.router import PatternError
from routelet.utils.logger import Logger, LogLevel

__all__ = [
    "__version__",
    "Router",
    "RouterState",
    "Listener",
    "ListenConfig",
    "Context",
    "UserData",
    "MISSING",
    "Request",
    "ConnectionInfo",
    "Response",
    "PlainTextResponse",
    "HTMLResponse",
    "JSONResponse",
    "ResponseEncodeError",
    "PatternError",
    "Logger",
    "LogLevel",
]
