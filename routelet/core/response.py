"""
Routelet Response Objects
=========================

HTTP responses and the three builder helpers handed to every request
context:

- ``json(status, body)``  -> ``application/json``
- ``text(status, body)``  -> ``text/plain``
- ``html(status, body)``  -> ``text/html``

Builders are pure functions. Bodies given to ``text`` and ``html`` are
used verbatim, no escaping is performed.

All response classes implement the ASGI send interface.
"""

from __future__ import annotations

import dataclasses
from http import HTTPStatus
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Set,
    Tuple,
)

import orjson


# Largest integer a JSON consumer decoding numbers as IEEE-754 doubles
# can represent exactly.
MAX_SAFE_INTEGER = 2**53 - 1

HTTP_STATUS_PHRASES = {s.value: s.phrase for s in HTTPStatus}

_JSON_OPTIONS = orjson.OPT_NON_STR_KEYS | orjson.OPT_PASSTHROUGH_DATACLASS


class ResponseEncodeError(TypeError):
    """Raised when a response body cannot be encoded."""


def _prepare_key(key: Any) -> Any:
    if isinstance(key, int) and not isinstance(key, bool):
        if not -MAX_SAFE_INTEGER <= key <= MAX_SAFE_INTEGER:
            return str(key)
    return key


def _prepare_json(value: Any, active: Set[int]) -> Any:
    """
    Copy *value* into a structure orjson can encode.

    Integers outside the safe range become decimal strings, as values
    and as dict keys. Dataclass instances are walked field by field.
    Containers already on the current path raise ``ResponseEncodeError``.
    """
    if isinstance(value, bool) or value is None:
        return value

    if isinstance(value, int):
        if -MAX_SAFE_INTEGER <= value <= MAX_SAFE_INTEGER:
            return value
        return str(value)

    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        marker = id(value)
        if marker in active:
            raise ResponseEncodeError("Circular reference detected in JSON body")
        active.add(marker)
        try:
            return {
                f.name: _prepare_json(getattr(value, f.name), active)
                for f in dataclasses.fields(value)
            }
        finally:
            active.discard(marker)

    if isinstance(value, (dict, list, tuple)):
        marker = id(value)
        if marker in active:
            raise ResponseEncodeError("Circular reference detected in JSON body")
        active.add(marker)
        try:
            if isinstance(value, dict):
                return {
                    _prepare_key(key): _prepare_json(item, active)
                    for key, item in value.items()
                }
            return [_prepare_json(item, active) for item in value]
        finally:
            active.discard(marker)

    return value


def _json_dumps(obj: Any) -> bytes:
    return orjson.dumps(_prepare_json(obj, set()), option=_JSON_OPTIONS)


def _body_allowed(status: int) -> bool:
    # 1xx, 204 and 304 responses never carry a body.
    return not (100 <= status < 200 or status in (204, 304))


class Response:
    """
    Base HTTP Response class.

    Example:
        return Response("Hello, World!")
        return Response("Not Found", status_code=404)

        response = Response("OK")
        response.headers["X-Custom"] = "value"
    """

    media_type: Optional[str] = None
    charset: str = "utf-8"

    def __init__(
        self,
        content: Any = None,
        status_code: int = 200,
        headers: Optional[Dict[str, str]] = None,
        media_type: Optional[str] = None,
    ) -> None:
        self.status_code = status_code
        self.headers: Dict[str, str] = dict(headers or {})

        if media_type:
            self.media_type = media_type

        self.body = self._render_content(content)

        if self.media_type and self.header("content-type") is None:
            self.headers["Content-Type"] = self.media_type

    def _render_content(self, content: Any) -> bytes:
        if content is None:
            return b""
        if isinstance(content, bytes):
            return content
        if isinstance(content, str):
            return content.encode(self.charset)
        return str(content).encode(self.charset)

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return default

    @property
    def text(self) -> str:
        """Body decoded as text."""
        return self.body.decode(self.charset)

    @property
    def status_phrase(self) -> str:
        return HTTP_STATUS_PHRASES.get(self.status_code, "Unknown")

    def _get_headers(self, body: bytes) -> List[Tuple[bytes, bytes]]:
        """Headers as ASGI byte pairs, with a computed content-length."""
        headers = [
            (k.lower().encode("latin-1"), v.encode("latin-1"))
            for k, v in self.headers.items()
            if k.lower() != "content-length"
        ]
        headers.append((b"content-length", str(len(body)).encode("latin-1")))
        return headers

    async def send(
        self,
        send: Callable[[Dict[str, Any]], Awaitable[None]],
    ) -> None:
        """Send response via ASGI interface."""
        body = self.body if _body_allowed(self.status_code) else b""

        await send({
            "type": "http.response.start",
            "status": self.status_code,
            "headers": self._get_headers(body),
        })
        await send({
            "type": "http.response.body",
            "body": body,
        })

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.status_code} {self.status_phrase}>"


class PlainTextResponse(Response):
    """Plain text response."""

    media_type = "text/plain"


class HTMLResponse(Response):
    """
    HTML content response.

    Example:
        return HTMLResponse("<h1>Hello, World!</h1>")
    """

    media_type = "text/html"


class JSONResponse(Response):
    """
    JSON content response, serialized with orjson.

    Integers beyond ``MAX_SAFE_INTEGER`` are written as decimal strings
    so that no consumer silently rounds them.

    Example:
        return JSONResponse({"message": "Hello"})
        return JSONResponse({"error": "Not found"}, status_code=404)

    Raises:
        ResponseEncodeError: For circular structures
        orjson.JSONEncodeError: For values orjson cannot serialize
    """

    media_type = "application/json"

    def _render_content(self, content: Any) -> bytes:
        return _json_dumps(content)


# Builder helpers

def json(status: int, body: Any) -> JSONResponse:
    """Serialize *body* as JSON with the given status."""
    return JSONResponse(body, status_code=status)


def text(status: int, body: str) -> PlainTextResponse:
    """Wrap *body* verbatim as ``text/plain``."""
    return PlainTextResponse(body, status_code=status)


def html(status: int, body: str) -> HTMLResponse:
    """Wrap *body* verbatim as ``text/html``."""
    return HTMLResponse(body, status_code=status)
