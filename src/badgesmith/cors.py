"""CORS preflight negotiation and response annotation.

Allowed methods come from the route table itself, so a preflight for a path
only ever advertises what that path can actually serve.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, MutableMapping

    from badgesmith.routing import RouteResolver

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_REQUEST_HEADERS = frozenset(
    {
        "content-type",
        "authorization",
        "x-signature",
        "x-repo-secret",
        "x-timestamp",
        "x-nonce",
    }
)


@dataclass(frozen=True)
class CorsOptions:
    """Origin policy for preflight and actual responses.

    Parameters
    ----------
    allow_credentials:
        When ``True`` the literal origin is echoed (never ``*``) and only for
        origins accepted by *allowed_origins* or *origin_allowed*.
    max_age_seconds:
        Value of ``Access-Control-Max-Age`` on preflight responses.
    use_wildcard_when_no_credentials:
        Without credentials, answer ``*`` instead of echoing the origin.
    allowed_origins:
        Explicit origin allow-set (case-sensitive).  Takes precedence over
        *origin_allowed*.
    origin_allowed:
        Predicate consulted when no allow-set is configured.
    allowed_request_headers:
        Request headers a preflight may be granted (case-insensitive).
    expose_headers:
        ``Access-Control-Expose-Headers`` on actual responses.
    """

    allow_credentials: bool = False
    max_age_seconds: int = 3600
    use_wildcard_when_no_credentials: bool = True
    allowed_origins: frozenset[str] | None = None
    origin_allowed: Callable[[str], bool] | None = None
    allowed_request_headers: frozenset[str] = DEFAULT_ALLOWED_REQUEST_HEADERS
    expose_headers: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "allowed_request_headers",
            frozenset(h.strip().lower() for h in self.allowed_request_headers),
        )


class CorsNegotiator:
    __slots__ = ("_options", "_resolver")

    def __init__(self, resolver: RouteResolver, options: CorsOptions | None = None) -> None:
        self._resolver = resolver
        self._options = options or CorsOptions()

    @property
    def options(self) -> CorsOptions:
        return self._options

    def preflight_headers(
        self,
        path: str,
        *,
        origin: str | None = None,
        request_method: str | None = None,
        request_headers: str | None = None,
    ) -> dict[str, str]:
        """Build the headers of a ``204`` preflight response for *path*."""
        origin = _clean(origin)
        request_method = _clean(request_method)
        request_headers = _clean(request_headers)
        logger.debug(
            "CORS preflight: path=%s origin=%s method=%s headers=%s", path, origin, request_method, request_headers
        )

        headers: dict[str, str] = {}
        self._apply_origin(headers, origin)

        allowed = self._resolver.get_allowed_methods(path)
        if request_method and request_method.upper() in allowed:
            headers["Access-Control-Allow-Methods"] = request_method.upper()
        else:
            headers["Access-Control-Allow-Methods"] = ", ".join(allowed)
        append_vary(headers, "Access-Control-Request-Method")

        allow_headers = self._filter_request_headers(request_headers)
        if allow_headers:
            headers["Access-Control-Allow-Headers"] = allow_headers
            append_vary(headers, "Access-Control-Request-Headers")

        headers["Access-Control-Max-Age"] = str(self._options.max_age_seconds)
        return headers

    def apply_response_headers(self, headers: MutableMapping[str, str], origin: str | None) -> None:
        """Annotate an actual (non-preflight) response with CORS headers."""
        self._apply_origin(headers, _clean(origin))
        if self._options.expose_headers:
            headers["Access-Control-Expose-Headers"] = ", ".join(self._options.expose_headers)

    def is_origin_allowed(self, origin: str) -> bool:
        opts = self._options
        if opts.allowed_origins:
            return origin in opts.allowed_origins
        if opts.origin_allowed is not None:
            return opts.origin_allowed(origin)
        return True

    def _apply_origin(self, headers: MutableMapping[str, str], origin: str | None) -> None:
        opts = self._options
        if opts.allow_credentials:
            if origin and self.is_origin_allowed(origin):
                headers["Access-Control-Allow-Origin"] = origin
                headers["Access-Control-Allow-Credentials"] = "true"
                append_vary(headers, "Origin")
            elif origin:
                # No header at all: the browser blocks the call.
                logger.info("CORS origin rejected: %s", origin)
            return

        if opts.use_wildcard_when_no_credentials:
            headers["Access-Control-Allow-Origin"] = "*"
        elif origin:
            headers["Access-Control-Allow-Origin"] = origin
            append_vary(headers, "Origin")

    def _filter_request_headers(self, requested: str | None) -> str | None:
        if not requested:
            return None
        accepted = [
            part
            for part in (p.strip() for p in requested.split(","))
            if part and part.lower() in self._options.allowed_request_headers
        ]
        return ", ".join(accepted) if accepted else None


def append_vary(headers: MutableMapping[str, str], token: str) -> None:
    """Add *token* to ``Vary`` unless already listed (case-insensitive)."""
    key = next((k for k in headers if k.lower() == "vary"), "Vary")
    current = headers.get(key, "").strip()
    if not current:
        headers[key] = token
        return
    parts = [p.strip().lower() for p in current.split(",")]
    if token.lower() not in parts:
        headers[key] = f"{current}, {token}"


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None
