"""
Routelet Request Context
========================

One ``Context`` is created per dispatched request and handed, in turn,
to every middleware and finally to the handler. It bundles:

- the immutable ``Request``
- ``params``: captures from the matched route pattern (``None`` on the
  not-found path)
- ``info``: transport metadata from the server, when available
- ``user_data``: a per-request key/value store
- ``log``: the router's logger
- the ``json``, ``text`` and ``html`` response helpers

A context is owned by the single dispatch that created it and is never
shared between requests, so nothing here is locked.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional, Type, TypeVar, Union

from routelet.core import response as _response
from routelet.core.request import ConnectionInfo, Request
from routelet.utils.logger import Logger

T = TypeVar("T")


class _Missing:
    """Marker type for an absent user-data key."""

    _instance: Optional["_Missing"] = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()
"""Returned by ``UserData.get`` for keys that were never set."""


class UserData:
    """
    Per-request key/value store shared by middleware and handler.

    Values are opaque. A key set to ``None`` is present; a key never set
    (or deleted) yields ``MISSING``.

    Example:
        async def auth(ctx):
            ctx.user_data.set("user", await load_user(ctx.request))

        async def profile(ctx):
            user = ctx.user_data.get_typed("user", User)
            if user is MISSING:
                return ctx.text(401, "Unauthorized")
            return ctx.json(200, user.to_dict())
    """

    __slots__ = ("_store",)

    def __init__(self) -> None:
        self._store: Dict[str, Any] = {}

    def set(self, key: str, value: Any) -> None:
        self._store[key] = value

    def get(self, key: str, default: Any = MISSING) -> Any:
        """Return the value for *key*, or *default* (``MISSING``) if absent."""
        return self._store.get(key, default)

    def get_typed(self, key: str, expected_type: Type[T]) -> Union[T, _Missing]:
        """
        Return the value for *key*, checked against *expected_type*.

        Raises:
            TypeError: If the stored value has another type
        """
        value = self._store.get(key, MISSING)
        if value is MISSING:
            return MISSING
        if not isinstance(value, expected_type):
            raise TypeError(
                f"user data {key!r} is {type(value).__name__}, "
                f"expected {expected_type.__name__}"
            )
        return value

    def delete(self, key: str) -> bool:
        """Remove *key*. Returns True if it was present."""
        if key in self._store:
            del self._store[key]
            return True
        return False

    def has(self, key: str) -> bool:
        return key in self._store

    def keys(self) -> Iterator[str]:
        return iter(list(self._store))

    def __contains__(self, key: object) -> bool:
        return key in self._store

    def __len__(self) -> int:
        return len(self._store)

    def __repr__(self) -> str:
        return f"<UserData {self._store!r}>"


@dataclass
class Context:
    """Per-request bag handed to middleware and handlers."""

    request: Request
    log: Logger
    params: Optional[Dict[str, str]] = None
    info: Optional[ConnectionInfo] = None
    user_data: UserData = field(default_factory=UserData)

    def param(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """A captured path parameter, or *default*."""
        if self.params is None:
            return default
        return self.params.get(name, default)

    def json(self, status: int, body: Any) -> _response.JSONResponse:
        return _response.json(status, body)

    def text(self, status: int, body: str) -> _response.PlainTextResponse:
        return _response.text(status, body)

    def html(self, status: int, body: str) -> _response.HTMLResponse:
        return _response.html(status, body)
