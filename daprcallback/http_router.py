"""A small HTTP request router with path parameters and CORS preflight support."""

from __future__ import annotations

import re
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, Mapping, Optional, Union

HeaderValues = Union[str, Iterable[str]]
HeaderSource = Optional[Mapping[str, HeaderValues]]

_PARAM = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


def _canonical(key: str) -> str:
    return "-".join(part[:1].upper() + part[1:].lower() for part in key.split("-"))


class _Headers(MutableMapping[str, str]):
    """Case-insensitive HTTP headers; each name may hold several values."""

    def __init__(self, source: HeaderSource = None) -> None:
        self._values: dict[str, list[str]] = {}
        for key, value in (source or {}).items():
            if isinstance(value, str):
                self[key] = value
            else:
                self._values[_canonical(key)] = list(value)

    def __getitem__(self, key: str) -> str:
        values = self._values[_canonical(key)]
        if not values:
            raise KeyError(key)
        return values[0]

    def __setitem__(self, key: str, value: str) -> None:
        self._values[_canonical(key)] = [value]

    def __delitem__(self, key: str) -> None:
        canonical = _canonical(key)
        if canonical not in self._values:
            raise KeyError(key)
        self._values.pop(canonical)

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def add(self, key: str, value: str) -> None:
        """Append a value to those already stored under ``key``."""
        self._values.setdefault(_canonical(key), []).append(value)

    def get_all(self, key: str) -> list[str]:
        """Return every value stored under ``key``."""
        return list(self._values.get(_canonical(key), ()))

    def __repr__(self) -> str:
        return f"Headers({self._values!r})"


def _as_headers(source: Union[_Headers, HeaderSource]) -> _Headers:
    if isinstance(source, _Headers):
        return source
    return _Headers(source)


@dataclass
class Request:
    """An inbound HTTP request; a query string in ``path`` is split off."""

    method: str
    path: str
    body: Optional[bytes] = None
    headers: Union[_Headers, HeaderSource] = None
    query: str = ""
    path_params: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        if "?" in self.path:
            self.path, _, query = self.path.partition("?")
            if not self.query:
                self.query = query
        if isinstance(self.body, str):
            self.body = self.body.encode("utf-8")
        self.headers = _as_headers(self.headers)


@dataclass
class Response:
    """An HTTP response produced by a handler."""

    status: int = 200
    body: bytes = b""
    headers: Union[_Headers, HeaderSource] = None

    def __post_init__(self) -> None:
        self.headers = _as_headers(self.headers)

    @classmethod
    def error(cls, message: str, status: int) -> "Response":
        """Build a plain-text error response carrying ``message``."""
        response = cls(status=status, body=(message + "\n").encode("utf-8"))
        response.headers["Content-Type"] = "text/plain; charset=utf-8"
        response.headers["X-Content-Type-Options"] = "nosniff"
        return response


Handler = Callable[[Request], Response]


@dataclass
class _Route:
    pattern: str
    regex: "re.Pattern[str]"
    dynamic: bool
    methods: dict[Optional[str], Handler] = field(default_factory=dict)


def _compile(pattern: str) -> tuple["re.Pattern[str]", bool]:
    if not pattern.startswith("/"):
        raise ValueError(f"routing pattern must begin with '/' in '{pattern}'")
    parts = []
    pos = 0
    dynamic = False
    for match in _PARAM.finditer(pattern):
        dynamic = True
        parts.append(re.escape(pattern[pos : match.start()]))
        parts.append(f"(?P<{match.group(1)}>[^/]+)")
        pos = match.end()
    parts.append(re.escape(pattern[pos:]))
    return re.compile("".join(parts) + r"\Z"), dynamic


class Router:
    """Dispatches requests to handlers by path and method.

    Patterns may hold ``{name}`` segments, captured into ``path_params``.
    Static patterns win over patterns with parameters.
    """

    def __init__(self) -> None:
        self._routes: dict[str, _Route] = {}

    def _add(self, path: str, method: Optional[str], handler: Handler) -> None:
        route = self._routes.get(path)
        if route is None:
            regex, dynamic = _compile(path)
            route = _Route(path, regex, dynamic)
            self._routes[path] = route
        route.methods[method] = handler

    def handle(self, path: str, handler: Handler) -> None:
        """Serve ``path`` with ``handler`` for every method."""
        self._add(path, None, handler)

    def get(self, path: str, handler: Handler) -> None:
        """Serve GET requests for ``path`` with ``handler``."""
        self._add(path, "GET", handler)

    def _match(self, path: str) -> tuple[Optional[_Route], dict[str, str]]:
        route = self._routes.get(path)
        if route is not None and not route.dynamic:
            return route, {}
        for route in self._routes.values():
            if not route.dynamic:
                continue
            found = route.regex.match(path)
            if found is not None:
                return route, found.groupdict()
        return None, {}

    def dispatch(self, request: Request) -> Response:
        """Run the matching handler; 404 if no path matches, 405 if no method does."""
        route, params = self._match(request.path)
        if route is None:
            return Response.error("404 page not found", 404)
        handler = route.methods.get(request.method) or route.methods.get(None)
        if handler is None:
            return Response(status=405)
        request.path_params = params
        return handler(request)


def set_options(response: Response) -> Response:
    """Set the CORS preflight headers on ``response`` and return it."""
    response.headers["Access-Control-Allow-Origin"] = "*"
    response.headers["Access-Control-Allow-Methods"] = "POST,OPTIONS"
    response.headers["Access-Control-Allow-Headers"] = (
        "authorization, origin, content-type, accept"
    )
    response.headers["Allow"] = "POST,OPTIONS"
    return response


def options_handler(handler: Handler) -> Handler:
    """Wrap ``handler`` so that OPTIONS requests get the preflight answer."""

    def wrapper(request: Request) -> Response:
        if request.method == "OPTIONS":
            return set_options(Response())
        return handler(request)

    return wrapper