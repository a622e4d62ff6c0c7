"""URL routing over a fixed, ordered route table.

Patterns never build regular expressions or split the request path: they walk
it by index and record ``(name, start, length)`` spans into a caller-owned
:class:`RouteValues` buffer.  Values stay raw (still percent-encoded) until a
caller asks for a decoded string.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol
from urllib.parse import unquote

if TYPE_CHECKING:
    from collections.abc import Iterator

    from badgesmith._types import RouteHandler

ROUTE_VALUES_CAPACITY = 8


class RouteValuesOverflow(IndexError):
    """A pattern captured more parameters than the buffer can hold."""


class RouteValues:
    """Fixed-capacity buffer of captured spans into one request path."""

    __slots__ = ("_count", "_names", "_path", "_spans")

    def __init__(self, path: str, capacity: int = ROUTE_VALUES_CAPACITY) -> None:
        self._path = path
        self._names: list[str | None] = [None] * capacity
        self._spans: list[tuple[int, int]] = [(0, 0)] * capacity
        self._count = 0

    @property
    def path(self) -> str:
        return self._path

    def __len__(self) -> int:
        return self._count

    def __contains__(self, name: object) -> bool:
        return self._index(name) >= 0

    def __iter__(self) -> Iterator[str]:
        for i in range(self._count):
            yield self._names[i]  # type: ignore[misc]

    def set(self, name: str, start: int, length: int) -> None:
        if self._count >= len(self._names):
            msg = f"Route values buffer full ({len(self._names)}); cannot capture {name!r}"
            raise RouteValuesOverflow(msg)
        self._names[self._count] = name
        self._spans[self._count] = (start, length)
        self._count += 1

    def mark(self) -> int:
        return self._count

    def rollback(self, mark: int) -> None:
        """Drop every value captured after *mark*."""
        self._count = mark

    def reset(self, path: str) -> None:
        self._path = path
        self._count = 0

    def get_span(self, name: str) -> str | None:
        """Return the raw, undecoded segment captured for *name*."""
        i = self._index(name)
        if i < 0:
            return None
        start, length = self._spans[i]
        return self._path[start : start + length]

    def get_string(self, name: str) -> str | None:
        """Return the captured segment for *name*, percent-decoded."""
        raw = self.get_span(name)
        if raw is None:
            return None
        return unquote(raw) if "%" in raw else raw

    def to_dict(self) -> dict[str, str]:
        return {name: self.get_string(name) or "" for name in self}

    def _index(self, name: object) -> int:
        for i in range(self._count):
            if self._names[i] == name:
                return i
        return -1

    def __repr__(self) -> str:
        pairs = ", ".join(f"{name}={self.get_span(name)!r}" for name in self)
        return f"RouteValues({pairs})"


class RoutePattern(Protocol):
    def match(self, path: str, values: RouteValues) -> bool: ...


class ExactPattern:
    """Matches one literal path, ignoring case."""

    __slots__ = ("_folded", "literal")

    def __init__(self, literal: str) -> None:
        self.literal = literal
        self._folded = literal.casefold()

    def match(self, path: str, values: RouteValues) -> bool:
        return len(path) == len(self.literal) and path.casefold() == self._folded

    def __repr__(self) -> str:
        return f"ExactPattern({self.literal!r})"


class TemplatePattern:
    """Matches ``/a/{b}/c`` style templates segment by segment.

    Literal segments compare case-sensitively.  A ``{name}`` segment matches
    any non-empty run of characters other than ``/``.  Segment counts must be
    equal, so a trailing slash never matches.
    """

    __slots__ = ("_keys", "_literals", "template")

    def __init__(self, template: str) -> None:
        self.template = template
        parts = template[1:].split("/") if template.startswith("/") else template.split("/")
        self._keys: list[str | None] = []
        self._literals: list[str] = []
        seen: set[str] = set()

        for part in parts:
            if len(part) >= 2 and part[0] == "{" and part[-1] == "}":
                name = part[1:-1]
                if not name:
                    msg = f"Empty placeholder name in template {template!r}"
                    raise ValueError(msg)
                if name in seen:
                    msg = f"Duplicate placeholder {name!r} in template {template!r}"
                    raise ValueError(msg)
                seen.add(name)
                self._keys.append(name)
                self._literals.append("")
            else:
                self._keys.append(None)
                self._literals.append(part)

    @property
    def parameter_names(self) -> tuple[str, ...]:
        return tuple(k for k in self._keys if k is not None)

    def match(self, path: str, values: RouteValues) -> bool:
        mark = values.mark()
        if not self._match(path, values):
            values.rollback(mark)
            return False
        return True

    def _match(self, path: str, values: RouteValues) -> bool:
        end_of_path = len(path)
        pos = 1 if path.startswith("/") else 0
        last = len(self._keys) - 1

        for i, key in enumerate(self._keys):
            slash = path.find("/", pos)
            end = end_of_path if slash < 0 else slash

            if key is None:
                literal = self._literals[i]
                if end - pos != len(literal) or not path.startswith(literal, pos):
                    return False
            else:
                if end == pos:
                    return False
                values.set(key, pos, end - pos)

            if slash < 0:
                return i == last
            pos = slash + 1

        # Template exhausted but the path still has a separator left.
        return False

    def __repr__(self) -> str:
        return f"TemplatePattern({self.template!r})"


@dataclass(frozen=True)
class RouteDescriptor:
    """Static binding of a route name and method to a handler and pattern."""

    name: str
    method: str
    handler: RouteHandler
    pattern: RoutePattern
    requires_auth: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())


@dataclass(frozen=True)
class RouteMatch:
    route: RouteDescriptor
    values: RouteValues


class RouteResolver:
    """Ordered route table with first-match-wins lookup."""

    __slots__ = ("routes",)

    def __init__(self, routes: tuple[RouteDescriptor, ...] | list[RouteDescriptor]) -> None:
        self.routes: tuple[RouteDescriptor, ...] = tuple(routes)

    def resolve(self, method: str, path: str) -> RouteMatch | None:
        """Return the first route matching *method* and *path*, or ``None``.

        ``HEAD`` requests resolve to ``GET`` routes.
        """
        if not path:
            return None
        method = _normalize_method(method)
        values = RouteValues(path)
        for route in self.routes:
            if route.method != method:
                continue
            if route.pattern.match(path, values):
                return RouteMatch(route, values)
        return None

    def get_allowed_methods(self, path: str) -> tuple[str, ...]:
        """Every method routable for *path*, plus ``OPTIONS`` (and ``HEAD`` with ``GET``)."""
        methods = {"OPTIONS"}
        values = RouteValues(path)
        for route in self.routes:
            if route.pattern.match(path, values):
                methods.add(route.method)
            values.reset(path)
        if "GET" in methods:
            methods.add("HEAD")
        return tuple(sorted(methods, key=str.casefold))


def _normalize_method(method: str) -> str:
    method = method.upper()
    return "GET" if method == "HEAD" else method
