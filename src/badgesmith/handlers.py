"""Route handlers.

Each handler takes a :class:`RouteContext` and returns a :class:`Response`;
expected failures are rendered here, unexpected exceptions are left to the
dispatcher.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from pydantic import ValidationError

from badgesmith.models import HealthCheckResponse, ShieldsBadge, TestResultIngestionResponse, TestResultPayload
from badgesmith.response import (
    BADGE_CACHE,
    PACKAGE_BADGE_CACHE,
    failure_response,
    no_cache,
    ok_cached,
    redirect,
)
from badgesmith.results import Failure, InvalidTestPayload, ValidationFailure, status_for
from badgesmith.test_results import TestResultStored

if TYPE_CHECKING:
    from collections.abc import Callable

    from badgesmith.packages import PackageVersionSource
    from badgesmith.request import Request
    from badgesmith.response import Response
    from badgesmith.results import AuthenticatedRequest
    from badgesmith.routing import RouteValues
    from badgesmith.test_results import TestResultEntity, TestResultStore

logger = logging.getLogger(__name__)


@dataclass
class RouteContext:
    """What a handler sees of the request it serves."""

    request: Request
    values: RouteValues
    body: bytes = b""
    auth: AuthenticatedRequest | None = None
    headers: dict[str, str] = field(init=False)
    query_params: dict[str, str] = field(init=False)

    def __post_init__(self) -> None:
        self.headers = self.request.headers
        self.query_params = self.request.query_params

    def value(self, name: str) -> str:
        """Decoded route value, ``""`` when the route has no such placeholder."""
        return self.values.get_string(name) or ""


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _flag(value: str | None) -> bool:
    return value is not None and value.strip().lower() == "true"


def _respond_failure(failure: Failure) -> Response:
    return failure_response(failure, status_for(failure))


class Handlers:
    """The service's handlers, bound to their collaborators.

    Parameters
    ----------
    nuget:
        Version source for ``/badges/packages/nuget/{package}``.
    github:
        Version source for ``/badges/packages/github/{org}/{package}``.
    test_results:
        Store behind ingestion, the tests badge and the redirect.
    clock:
        Returns the current UTC time; used by ``health``.
    """

    def __init__(
        self,
        nuget: PackageVersionSource,
        github: PackageVersionSource,
        test_results: TestResultStore,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._nuget = nuget
        self._github = github
        self._test_results = test_results
        self._clock = clock

    async def health(self, ctx: RouteContext) -> Response:
        return no_cache(HealthCheckResponse(status="Healthy", time_stamp=self._clock()))

    # ------------------------------------------------------------------
    # Package badges
    # ------------------------------------------------------------------

    async def nuget_package_badge(self, ctx: RouteContext) -> Response:
        if ctx.value("provider").lower() != "nuget":
            return _respond_failure(_unsupported_provider(ctx.value("provider"), "nuget"))
        package = ctx.value("package")
        logger.info("Processing NuGet badge request for package: %s", package)
        result = await self._nuget.latest_version(
            package,
            include_prerelease=_flag(ctx.query_params.get("prerelease")),
            version_range=ctx.query_params.get("version"),
        )
        if isinstance(result, Failure):
            return _respond_failure(result)
        color = "orange" if result.is_prerelease else "blue"
        badge = ShieldsBadge(label="nuget", message=result.version, color=color, named_logo="nuget")
        return ok_cached(badge, if_none_match=ctx.headers.get("if-none-match"), cache=PACKAGE_BADGE_CACHE)

    async def github_package_badge(self, ctx: RouteContext) -> Response:
        if ctx.value("provider").lower() != "github":
            return _respond_failure(_unsupported_provider(ctx.value("provider"), "github"))
        org, package = ctx.value("org"), ctx.value("package")
        logger.info("Processing GitHub badge request for package: %s/%s", org, package)
        result = await self._github.latest_version(
            package,
            org=org,
            include_prerelease=_flag(ctx.query_params.get("prerelease")),
            version_range=ctx.query_params.get("version"),
        )
        if isinstance(result, Failure):
            return _respond_failure(result)
        color = "orange" if result.is_prerelease else "green"
        badge = ShieldsBadge(label="github", message=result.version, color=color, named_logo="github")
        return ok_cached(badge, if_none_match=ctx.headers.get("if-none-match"), cache=PACKAGE_BADGE_CACHE)

    # ------------------------------------------------------------------
    # Test results
    # ------------------------------------------------------------------

    async def tests_badge(self, ctx: RouteContext) -> Response:
        result = await self._latest(ctx)
        if isinstance(result, Failure):
            return _respond_failure(result)
        return ok_cached(
            result.to_badge(),
            if_none_match=ctx.headers.get("if-none-match"),
            cache=BADGE_CACHE,
            last_modified=result.created_at,
        )

    async def test_result_redirect(self, ctx: RouteContext) -> Response:
        result = await self._latest(ctx)
        if isinstance(result, Failure):
            return _respond_failure(result)
        return redirect(result.url_html, cache=BADGE_CACHE)

    async def test_result_ingestion(self, ctx: RouteContext) -> Response:
        owner, repo = ctx.value("owner"), ctx.value("repo")
        try:
            payload = TestResultPayload.model_validate_json(ctx.body)
        except ValidationError as exc:
            logger.warning("Invalid test result payload for %s/%s: %d error(s)", owner, repo, exc.error_count())
            return _respond_failure(InvalidTestPayload(_first_error(exc)))

        result = await self._test_results.store(owner, repo, ctx.value("platform"), ctx.value("branch"), payload)
        if not isinstance(result, TestResultStored):
            return _respond_failure(result)
        body = TestResultIngestionResponse(
            test_result_id=result.test_result_id,
            repository=f"{owner}/{repo}".lower(),
            timestamp=result.stored_at,
        )
        return no_cache(body, status_code=201)

    async def _latest(self, ctx: RouteContext) -> TestResultEntity | Failure:
        return await self._test_results.latest(
            ctx.value("owner"), ctx.value("repo"), ctx.value("platform"), ctx.value("branch")
        )


def _unsupported_provider(provider: str, expected: str) -> ValidationFailure:
    return ValidationFailure(
        f"Unsupported package provider '{provider}', expected '{expected}'",
        code="UNSUPPORTED_PROVIDER",
        property_name="provider",
    )


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(part) for part in err.get("loc", ()))
    return f"Invalid request body: {loc}: {err['msg']}" if loc else f"Invalid request body: {err['msg']}"
