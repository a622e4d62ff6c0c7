"""The service's fixed route table."""

from __future__ import annotations

from typing import TYPE_CHECKING

from badgesmith.routing import ExactPattern, RouteDescriptor, TemplatePattern

if TYPE_CHECKING:
    from badgesmith.handlers import Handlers


def build_routes(handlers: Handlers) -> tuple[RouteDescriptor, ...]:
    """Bind *handlers* to their routes, in match order.

    The two package-badge templates differ only in segment count, so their
    relative order does not matter; everything else is disjoint by prefix.
    """
    return (
        RouteDescriptor("health", "GET", handlers.health, ExactPattern("/health")),
        RouteDescriptor(
            "nuget_package_badge",
            "GET",
            handlers.nuget_package_badge,
            TemplatePattern("/badges/packages/{provider}/{package}"),
        ),
        RouteDescriptor(
            "github_package_badge",
            "GET",
            handlers.github_package_badge,
            TemplatePattern("/badges/packages/{provider}/{org}/{package}"),
        ),
        RouteDescriptor(
            "tests_badge",
            "GET",
            handlers.tests_badge,
            TemplatePattern("/badges/tests/{platform}/{owner}/{repo}/{branch}"),
        ),
        RouteDescriptor(
            "test_result_ingestion",
            "POST",
            handlers.test_result_ingestion,
            TemplatePattern("/tests/results/{owner}/{repo}/{platform}/{branch}"),
            requires_auth=True,
        ),
        RouteDescriptor(
            "test_result_redirect",
            "GET",
            handlers.test_result_redirect,
            TemplatePattern("/redirect/test-results/{platform}/{owner}/{repo}/{branch}"),
        ),
    )


def describe(pattern: object) -> str:
    """Printable template or literal of a route pattern."""
    if isinstance(pattern, TemplatePattern):
        return pattern.template
    if isinstance(pattern, ExactPattern):
        return pattern.literal
    return repr(pattern)
