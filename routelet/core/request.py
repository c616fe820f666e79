"""
Routelet Request Object
=======================

The inbound request handed to middleware and handlers through the
context. Metadata is frozen at creation; the body is read lazily from
the ASGI ``receive`` callable and cached.

``ConnectionInfo`` carries the transport metadata supplied by the
server (peer and local addresses, scheme, HTTP version).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Tuple,
)
from urllib.parse import parse_qs, quote

import orjson


Receive = Callable[[], Awaitable[Dict[str, Any]]]

# Characters left unescaped when re-encoding a decoded path.
_PATH_SAFE = "/:@!$&'()*+,;=-._~"


async def _empty_receive() -> Dict[str, Any]:
    return {"type": "http.request", "body": b"", "more_body": False}


class Headers(Mapping[str, str]):
    """
    Immutable, case-insensitive HTTP headers.

    Example:
        headers["Content-Type"]  # application/json
        headers["content-type"]  # application/json (same)
        headers.get_list("accept")
    """

    __slots__ = ("_raw", "_index")

    def __init__(self, raw_headers: Iterable[Tuple[Any, Any]] = ()) -> None:
        raw: List[Tuple[str, str]] = []
        index: Dict[str, List[str]] = {}

        for key, value in raw_headers:
            if isinstance(key, bytes):
                key = key.decode("latin-1")
            if isinstance(value, bytes):
                value = value.decode("latin-1")
            raw.append((key, value))
            index.setdefault(key.lower(), []).append(value)

        self._raw = tuple(raw)
        self._index = index

    def __getitem__(self, key: str) -> str:
        return self._index[key.lower()][0]

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.lower() in self._index

    def __iter__(self) -> Iterator[str]:
        return iter(self._index)

    def __len__(self) -> int:
        return len(self._index)

    def get_list(self, key: str) -> List[str]:
        """All values for *key*, in arrival order."""
        return list(self._index.get(key.lower(), []))

    @property
    def raw(self) -> Tuple[Tuple[str, str], ...]:
        return self._raw

    def __repr__(self) -> str:
        return f"Headers({dict((k, self[k]) for k in self)!r})"


class QueryParams(Mapping[str, str]):
    """
    Query string parameters.

    - Single values: ?name=value -> params["name"] == "value"
    - Multiple values: ?tag=a&tag=b -> params.get_list("tag") == ["a", "b"]
    """

    __slots__ = ("_data",)

    def __init__(self, query_string: str = "") -> None:
        self._data: Dict[str, List[str]] = parse_qs(
            query_string, keep_blank_values=True
        )

    def __getitem__(self, key: str) -> str:
        return self._data[key][0]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def get_list(self, key: str) -> List[str]:
        return list(self._data.get(key, []))

    def get_int(self, key: str, default: int = 0) -> int:
        value = self.get(key)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            return default


@dataclass(frozen=True)
class ConnectionInfo:
    """
    Transport metadata for one request.

    Attributes:
        remote_addr: (host, port) of the peer, if known
        local_addr: (host, port) the server accepted on, if known
        scheme: "http" or "https"
        http_version: e.g. "1.1"
    """

    remote_addr: Optional[Tuple[str, int]] = None
    local_addr: Optional[Tuple[str, int]] = None
    scheme: str = "http"
    http_version: str = "1.1"

    @property
    def client_ip(self) -> Optional[str]:
        return self.remote_addr[0] if self.remote_addr else None

    @classmethod
    def from_scope(cls, scope: Mapping[str, Any]) -> "ConnectionInfo":
        client = scope.get("client")
        server = scope.get("server")
        return cls(
            remote_addr=(client[0], client[1]) if client else None,
            local_addr=(server[0], server[1]) if server else None,
            scheme=scope.get("scheme", "http"),
            http_version=scope.get("http_version", "1.1"),
        )


def _raw_path(scope: Mapping[str, Any]) -> Optional[str]:
    """The still-encoded request path, without the query string."""
    raw = scope.get("raw_path")
    if not raw:
        return None
    if isinstance(raw, bytes):
        raw = raw.decode("latin-1")
    return raw.split("?", 1)[0]


@dataclass(frozen=True)
class Request:
    """
    Immutable HTTP request.

    ``path`` is percent-decoded; ``raw_path`` keeps the encoding the
    client sent (re-encoded from ``path`` when the server gives none)
    and is what routes are matched against, so an escaped ``%2F`` stays
    inside one segment.

    Body data is read on first access and cached; ``body()``, ``text()``
    and ``json()`` may be awaited any number of times, from middleware
    and handler alike.

    Example:
        async def create_user(ctx):
            data = await ctx.request.json()
            return ctx.json(201, {"created": data["name"]})
    """

    method: str
    path: str
    query_string: str = ""
    raw_path: Optional[str] = None
    headers: Headers = field(default_factory=Headers)
    _receive: Receive = field(default=_empty_receive, repr=False, compare=False)
    _cache: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())
        if self.raw_path is None:
            object.__setattr__(self, "raw_path", quote(self.path, safe=_PATH_SAFE))

    @classmethod
    def from_scope(cls, scope: Mapping[str, Any], receive: Receive) -> "Request":
        """Build a Request from an ASGI HTTP scope."""
        return cls(
            method=scope["method"],
            path=scope["path"],
            query_string=scope.get("query_string", b"").decode("latin-1"),
            raw_path=_raw_path(scope),
            headers=Headers(scope.get("headers", ())),
            _receive=receive,
        )

    @classmethod
    def build(
        cls,
        method: str,
        path: str,
        *,
        query_string: str = "",
        raw_path: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
        body: bytes = b"",
    ) -> "Request":
        """Build a Request directly, without a server."""

        async def receive() -> Dict[str, Any]:
            return {"type": "http.request", "body": body, "more_body": False}

        return cls(
            method=method,
            path=path,
            query_string=query_string,
            raw_path=raw_path,
            headers=Headers((headers or {}).items()),
            _receive=receive,
        )

    @property
    def query(self) -> QueryParams:
        if "query" not in self._cache:
            self._cache["query"] = QueryParams(self.query_string)
        return self._cache["query"]

    @property
    def url(self) -> str:
        """Path plus query string."""
        if self.query_string:
            return f"{self.path}?{self.query_string}"
        return self.path

    @property
    def content_type(self) -> Optional[str]:
        return self.headers.get("content-type")

    async def body(self) -> bytes:
        """Read the full request body."""
        if "body" in self._cache:
            return self._cache["body"]

        chunks: List[bytes] = []
        while True:
            message = await self._receive()
            if message.get("type") == "http.disconnect":
                break
            chunks.append(message.get("body", b""))
            if not message.get("more_body", False):
                break

        body = b"".join(chunks)
        self._cache["body"] = body
        return body

    async def text(self, encoding: str = "utf-8") -> str:
        return (await self.body()).decode(encoding)

    async def json(self) -> Any:
        return orjson.loads(await self.body())

    def __repr__(self) -> str:
        return f"<Request {self.method} {self.url}>"
