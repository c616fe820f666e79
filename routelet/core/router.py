"""
Routelet Route Table
====================

An ordered, append-only table of routes. Registration order is match
precedence: the first route whose method set contains the request
method and whose pattern matches the path wins, even when a later
route would be more specific.

Route Patterns:
    /users                  - Static path
    /users/:id              - Named segment
    /users/:id(\\d+)         - Named segment with a custom regex
    /books/:id?             - Optional segment (matches /books and /books/7)
    /files/:path+           - One or more segments, captured as "a/b/c"
    /files/:path*           - Zero or more segments
    /static/*               - Wildcard, captured under "0"

Example:
    table = RouteTable()
    table.register({"GET"}, "/users/:id", show_user, [], pipeline)

    match = table.match("GET", "/users/42")
    match.route.handler    # show_user
    match.params           # {"id": "42"}
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    FrozenSet,
    Iterable,
    Iterator,
    List,
    Optional,
    Pattern,
    Sequence,
    Tuple,
)

from routelet.core.middleware import Middleware

if TYPE_CHECKING:
    from routelet.core.pipeline import Pipeline


_NAME_START = re.compile(r"[A-Za-z_]")
_NAME_CHAR = re.compile(r"\w")
_SEGMENT = "[^/]+"
_MODIFIERS = "?+*"


class PatternError(ValueError):
    """Raised for a malformed route pattern."""


def _read_regex(pattern: str, start: int) -> Tuple[str, int]:
    """Read a parenthesised regex starting at ``pattern[start] == "("``."""
    depth = 0
    i = start
    while i < len(pattern):
        ch = pattern[i]
        if ch == "\\":
            i += 2
            continue
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                body = pattern[start + 1:i]
                if not body:
                    raise PatternError(f"Empty regex group in pattern {pattern!r}")
                return body, i + 1
        i += 1
    raise PatternError(f"Unbalanced parenthesis in pattern {pattern!r}")


def _group(group: str, regex: str, modifier: str, prefix: str) -> str:
    if modifier == "":
        return f"{prefix}(?P<{group}>{regex})"
    if modifier == "?":
        return f"(?:{prefix}(?P<{group}>{regex}))?"

    if prefix:
        repeated = f"{prefix}(?P<{group}>(?:{regex})(?:{prefix}(?:{regex}))*)"
    else:
        repeated = f"(?P<{group}>(?:{regex})+)"
    if modifier == "+":
        return repeated
    return f"(?:{repeated})?"


def compile_pattern(pattern: str) -> Tuple[Pattern[str], Tuple[Tuple[str, str], ...]]:
    """
    Compile a route pattern to a regex.

    Returns:
        The compiled regex and ``(group, key)`` pairs mapping regex group
        names to the keys reported in match params.

    Raises:
        PatternError: If the pattern is malformed
    """
    parts: List[str] = []
    groups: List[Tuple[str, str]] = []
    seen: set = set()
    unnamed = 0
    i = 0

    while i < len(pattern):
        ch = pattern[i]

        if ch == "\\":
            if i + 1 >= len(pattern):
                raise PatternError(f"Trailing backslash in pattern {pattern!r}")
            parts.append(re.escape(pattern[i + 1]))
            i += 2
            continue

        if ch == ")":
            raise PatternError(f"Unbalanced parenthesis in pattern {pattern!r}")

        if ch not in ":(*":
            parts.append(re.escape(ch))
            i += 1
            continue

        if ch == ":":
            j = i + 1
            if j >= len(pattern) or not _NAME_START.match(pattern[j]):
                raise PatternError(f"Missing parameter name in pattern {pattern!r}")
            while j < len(pattern) and _NAME_CHAR.match(pattern[j]):
                j += 1
            key = pattern[i + 1:j]
            if key in seen:
                raise PatternError(f"Duplicate parameter {key!r} in pattern {pattern!r}")
            regex = _SEGMENT
            if j < len(pattern) and pattern[j] == "(":
                regex, j = _read_regex(pattern, j)
            group = f"p_{key}"
            i = j
        elif ch == "(":
            regex, i = _read_regex(pattern, i)
            key = str(unnamed)
            unnamed += 1
            group = f"u_{key}"
        else:
            regex = ".*"
            key = str(unnamed)
            unnamed += 1
            group = f"u_{key}"
            i += 1

        modifier = ""
        if ch != "*" and i < len(pattern) and pattern[i] in _MODIFIERS:
            modifier = pattern[i]
            i += 1

        # A slash right before an optional or repeated group belongs to it.
        prefix = ""
        if modifier and parts and parts[-1] == "/":
            parts.pop()
            prefix = "/"

        seen.add(key)
        groups.append((group, key))
        parts.append(_group(group, regex, modifier, prefix))

    try:
        compiled = re.compile("".join(parts))
    except re.error as e:
        raise PatternError(f"Invalid regex in pattern {pattern!r}: {e}") from e

    return compiled, tuple(groups)


class PathPattern:
    """
    A compiled route pattern.

    Patterns match the whole path, case-sensitively; a trailing slash
    is significant.
    """

    __slots__ = ("source", "_regex", "_groups")

    def __init__(self, source: str) -> None:
        self.source = source
        self._regex, self._groups = compile_pattern(source)

    @property
    def keys(self) -> Tuple[str, ...]:
        return tuple(key for _, key in self._groups)

    def match(self, path: str) -> Optional[Dict[str, str]]:
        """
        Match *path* against this pattern.

        Returns the captured params if matched, None otherwise. Optional
        groups that did not participate are left out.
        """
        found = self._regex.fullmatch(path)
        if found is None:
            return None

        params: Dict[str, str] = {}
        for group, key in self._groups:
            value = found.group(group)
            if value is not None:
                params[key] = value
        return params

    def __eq__(self, other: object) -> bool:
        return isinstance(other, PathPattern) and other.source == self.source

    def __hash__(self) -> int:
        return hash(self.source)

    def __repr__(self) -> str:
        return f"PathPattern({self.source!r})"


def normalize_methods(methods: Iterable[str]) -> FrozenSet[str]:
    """Upper-case *methods*; an empty collection is rejected."""
    if isinstance(methods, str):
        methods = [methods]
    normalized = frozenset(m.strip().upper() for m in methods)
    if not normalized or "" in normalized:
        raise ValueError("A route needs at least one HTTP method")
    return normalized


@dataclass(frozen=True)
class Route:
    """
    A registered route. Immutable once created.

    Attributes:
        methods: Upper-cased HTTP methods the route answers
        pattern: Compiled path pattern
        handler: Terminal handler
        middlewares: Route-specific middleware, in registration order
        pipeline: Compiled dispatch branch (global snapshot + route
            middleware + handler)
    """

    methods: FrozenSet[str]
    pattern: PathPattern
    handler: Callable[..., Any]
    middlewares: Tuple[Middleware, ...] = ()
    pipeline: Optional["Pipeline"] = field(default=None, compare=False, repr=False)

    def matches(self, method: str, path: str) -> Optional[Dict[str, str]]:
        if method not in self.methods:
            return None
        return self.pattern.match(path)


@dataclass(frozen=True)
class RouteMatch:
    """Result of a successful route lookup."""

    route: Route
    params: Dict[str, str]


class RouteTable:
    """
    Ordered, append-only route table.

    Writers take a lock and publish a new tuple; readers scan whichever
    tuple is current without locking.
    """

    def __init__(self) -> None:
        self._routes: Tuple[Route, ...] = ()
        self._lock = threading.Lock()

    def register(
        self,
        methods: Iterable[str],
        pattern: str,
        handler: Callable[..., Any],
        middlewares: Sequence[Middleware] = (),
        pipeline: Optional["Pipeline"] = None,
    ) -> Route:
        """
        Append a route.

        Raises:
            ValueError: If *methods* is empty
            PatternError: If *pattern* is malformed
        """
        route = Route(
            methods=normalize_methods(methods),
            pattern=PathPattern(pattern),
            handler=handler,
            middlewares=tuple(middlewares),
            pipeline=pipeline,
        )
        with self._lock:
            self._routes = self._routes + (route,)
        return route

    def match(self, method: str, path: str) -> Optional[RouteMatch]:
        """
        First route, in registration order, matching *method* and *path*.

        Returns None on a miss.
        """
        method = method.upper()
        for route in self._routes:
            params = route.matches(method, path)
            if params is not None:
                return RouteMatch(route=route, params=params)
        return None

    def allowed_methods(self, path: str) -> FrozenSet[str]:
        """Union of the methods of every route whose pattern matches *path*."""
        allowed: set = set()
        for route in self._routes:
            if route.pattern.match(path) is not None:
                allowed |= route.methods
        return frozenset(allowed)

    @property
    def routes(self) -> Tuple[Route, ...]:
        return self._routes

    def __iter__(self) -> Iterator[Route]:
        return iter(self._routes)

    def __len__(self) -> int:
        return len(self._routes)
