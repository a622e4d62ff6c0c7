"""HTTP responses and the cache-header helpers handlers build them with."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from email.utils import format_datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from badgesmith.models import ErrorResponse

if TYPE_CHECKING:
    from datetime import datetime

    from badgesmith._types import Send
    from badgesmith.results import Failure

JSON_CONTENT_TYPE = "application/json; charset=utf-8"
NO_CACHE = "no-cache, no-store, must-revalidate"


class Response:
    """A complete, buffered HTTP response."""

    __slots__ = ("body", "headers", "status_code")

    media_type: str | None = None

    def __init__(
        self,
        content: bytes | str = b"",
        status_code: int = 200,
        headers: dict[str, str] | None = None,
        media_type: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.body = content.encode("utf-8") if isinstance(content, str) else content
        self.headers: dict[str, str] = dict(headers or {})
        media_type = media_type or self.media_type
        if media_type and self.body and not self._has_header("content-type"):
            self.headers["Content-Type"] = media_type

    def _has_header(self, name: str) -> bool:
        return any(k.lower() == name for k in self.headers)

    async def send(self, send: Send, *, include_body: bool = True) -> None:
        raw_headers = [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in self.headers.items()]
        if not self._has_header("content-length") and self.status_code not in (204, 304):
            raw_headers.append((b"content-length", str(len(self.body)).encode("latin-1")))
        await send({"type": "http.response.start", "status": self.status_code, "headers": raw_headers})
        await send({"type": "http.response.body", "body": self.body if include_body else b""})

    def __repr__(self) -> str:
        return f"{type(self).__name__}(status_code={self.status_code})"


class JSONResponse(Response):
    """Serialises dicts, lists and pydantic models (by alias, ``None`` fields dropped)."""

    __slots__ = ()

    media_type = JSON_CONTENT_TYPE

    def __init__(self, content: Any, status_code: int = 200, headers: dict[str, str] | None = None) -> None:
        super().__init__(render_json(content), status_code=status_code, headers=headers)


def render_json(content: Any) -> bytes:
    if isinstance(content, BaseModel):
        content = content.model_dump(mode="json", by_alias=True, exclude_none=True)
    return json.dumps(content, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


# ------------------------------------------------------------------
# Cache-aware builders
# ------------------------------------------------------------------


@dataclass(frozen=True)
class CacheSettings:
    """``Cache-Control`` lifetimes: shared cache, browser, SWR, stale-if-error."""

    s_max_age: int = 600
    max_age: int = 300
    stale_while_revalidate: int = 1200
    stale_if_error: int = 3600

    def header(self) -> str:
        return (
            f"public, max-age={self.max_age}, s-maxage={self.s_max_age}, "
            f"stale-while-revalidate={self.stale_while_revalidate}, stale-if-error={self.stale_if_error}"
        )


BADGE_CACHE = CacheSettings()
PACKAGE_BADGE_CACHE = CacheSettings(s_max_age=300, max_age=60, stale_while_revalidate=900, stale_if_error=3600)


def etag_for(body: bytes) -> str:
    return '"' + hashlib.sha256(body).hexdigest()[:32] + '"'


def _etag_matches(if_none_match: str | None, etag: str) -> bool:
    if not if_none_match:
        return False
    candidates = [c.strip() for c in if_none_match.split(",")]
    return "*" in candidates or any(c.removeprefix("W/") == etag for c in candidates)


def ok_cached(
    content: Any,
    *,
    if_none_match: str | None = None,
    cache: CacheSettings = BADGE_CACHE,
    last_modified: datetime | None = None,
) -> Response:
    """``200`` JSON with ``ETag``/``Cache-Control``, or ``304`` when the client copy is current."""
    body = render_json(content)
    etag = etag_for(body)
    headers = {"Cache-Control": cache.header(), "ETag": etag}
    if last_modified is not None:
        headers["Last-Modified"] = format_datetime(last_modified, usegmt=True)
    if _etag_matches(if_none_match, etag):
        return Response(status_code=304, headers=headers)
    return Response(body, headers=headers, media_type=JSON_CONTENT_TYPE)


def no_cache(content: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(content, status_code=status_code, headers={"Cache-Control": NO_CACHE})


def redirect(location: str, *, cache: CacheSettings | None = None) -> Response:
    if not location or not location.strip():
        msg = "Location cannot be empty"
        raise ValueError(msg)
    headers = {"Location": location}
    if cache is not None:
        headers["Cache-Control"] = cache.header()
    return Response(status_code=302, headers=headers)


def error_response(status_code: int, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(ErrorResponse(message=message), status_code=status_code, headers=headers)


def failure_response(failure: Failure, status_code: int) -> JSONResponse:
    """Render a failure; 401 and 5xx never reveal which check failed."""
    if status_code == 401:
        return error_response(401, "Unauthorized")
    if status_code >= 500:
        return error_response(status_code, "Internal Server Error")
    return JSONResponse(failure.to_error_response(), status_code=status_code)
