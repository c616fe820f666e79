"""
Routelet Middleware Chain
=========================

A middleware is any callable taking the request context and returning
nothing (sync or ``async``). It may inspect or mutate the context and
aborts the chain by raising.

Chain semantics:
    Middleware run strictly one after another, each one awaited before
    the next starts. The first raise stops the chain; nothing after it
    runs. ``run_middlewares`` reports the outcome as a ``ChainResult``
    rather than letting the exception escape, so the pipeline decides
    what happens next.

Example:
    async def require_token(ctx):
        if "authorization" not in ctx.request.headers:
            raise PermissionError("missing token")

    def tag_request(ctx):
        ctx.user_data.set("request_id", uuid.uuid4().hex)
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Optional,
    Sequence,
    Union,
)

if TYPE_CHECKING:
    from routelet.core.context import Context


Middleware = Callable[["Context"], Union[None, Awaitable[None]]]


async def invoke(func: Callable[..., Any], *args: Any) -> Any:
    """Call *func* and await the result if it is awaitable."""
    result = func(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


@dataclass(frozen=True)
class ChainResult:
    """
    Outcome of running a middleware chain.

    Attributes:
        error: The exception raised by the failing middleware, if any
        failed_at: Index of the failing middleware in the chain
        completed: Number of middleware that finished
    """

    error: Optional[Exception] = None
    failed_at: Optional[int] = None
    completed: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


async def run_middlewares(
    ctx: "Context",
    middlewares: Sequence[Middleware],
) -> ChainResult:
    """
    Run *middlewares* against *ctx* in order, stopping at the first failure.
    """
    for index, middleware in enumerate(middlewares):
        try:
            await invoke(middleware, ctx)
        except Exception as e:
            return ChainResult(error=e, failed_at=index, completed=index)
    return ChainResult(completed=len(middlewares))


def ensure_callable(obj: Any, what: str) -> None:
    """Reject non-callable handlers and middleware at registration."""
    if not callable(obj):
        raise TypeError(f"{what} must be callable, got {type(obj).__name__}")
