"""ASGI request wrapper."""

from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import parse_qsl

if TYPE_CHECKING:
    from badgesmith._types import Receive, Scope


class Request:
    """Thin wrapper around an ASGI *scope* and *receive* callable."""

    __slots__ = ("_body", "_headers", "_receive", "_scope")

    def __init__(self, scope: Scope, receive: Receive) -> None:
        self._scope = scope
        self._receive = receive
        self._body: bytes | None = None
        self._headers: dict[str, str] | None = None

    @property
    def method(self) -> str:
        return self._scope["method"].upper()

    @property
    def path(self) -> str:
        """Request path with percent-escapes intact when the server provides them.

        Unescaped non-ASCII bytes in ``raw_path`` are read as UTF-8.
        """
        raw = self._scope.get("raw_path")
        if raw:
            return raw.decode("utf-8", errors="replace").split("?", 1)[0]
        return self._scope["path"]

    @property
    def query_string(self) -> bytes:
        return self._scope.get("query_string", b"")

    @property
    def query_params(self) -> dict[str, str]:
        """Query parameters, last value wins, keys lower-cased."""
        return {k.lower(): v for k, v in parse_qsl(self.query_string.decode("latin-1"), keep_blank_values=True)}

    @property
    def headers(self) -> dict[str, str]:
        """Headers as a lowercase-keyed dict (last value wins for dupes)."""
        if self._headers is None:
            self._headers = {
                k.decode("latin-1").lower(): v.decode("latin-1") for k, v in self._scope.get("headers", [])
            }
        return self._headers

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())

    async def body(self) -> bytes:
        """Read and cache the full request body."""
        if self._body is not None:
            return self._body
        chunks: list[bytes] = []
        while True:
            message = await self._receive()
            chunk = message.get("body", b"")
            if chunk:
                chunks.append(chunk)
            if not message.get("more_body", False):
                break
        self._body = b"".join(chunks)
        return self._body
