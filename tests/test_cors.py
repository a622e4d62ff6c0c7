"""Tests for CORS preflight negotiation and response annotation."""

from __future__ import annotations

from badgesmith.cors import CorsNegotiator, CorsOptions, append_vary
from badgesmith.routing import ExactPattern, RouteDescriptor, RouteResolver, TemplatePattern


async def _noop(ctx):  # pragma: no cover - never dispatched here
    raise AssertionError


RESOLVER = RouteResolver(
    [
        RouteDescriptor("health", "GET", _noop, ExactPattern("/health")),
        RouteDescriptor("nuget", "GET", _noop, TemplatePattern("/badges/packages/{provider}/{package}")),
        RouteDescriptor(
            "ingest", "POST", _noop, TemplatePattern("/tests/results/{owner}/{repo}/{platform}/{branch}")
        ),
    ]
)


def _negotiator(**options) -> CorsNegotiator:
    return CorsNegotiator(RESOLVER, CorsOptions(**options))


class TestPreflight:
    def test_requested_allowed_method_is_the_only_one_disclosed(self) -> None:
        headers = _negotiator().preflight_headers(
            "/badges/packages/nuget/x", origin="https://example.com", request_method="GET"
        )
        assert headers["Access-Control-Allow-Methods"] == "GET"

    def test_full_set_without_request_method(self) -> None:
        headers = _negotiator().preflight_headers("/badges/packages/nuget/x", origin="https://example.com")
        assert headers["Access-Control-Allow-Methods"] == "GET, HEAD, OPTIONS"

    def test_full_set_when_requested_method_not_allowed(self) -> None:
        headers = _negotiator().preflight_headers("/badges/packages/nuget/x", request_method="DELETE")
        assert headers["Access-Control-Allow-Methods"] == "GET, HEAD, OPTIONS"

    def test_post_route(self) -> None:
        headers = _negotiator().preflight_headers("/tests/results/a/b/c/d", request_method="post")
        assert headers["Access-Control-Allow-Methods"] == "POST"

    def test_request_headers_filtered_against_allow_list(self) -> None:
        headers = _negotiator().preflight_headers(
            "/tests/results/a/b/c/d",
            request_method="POST",
            request_headers="Content-Type, X-Signature, X-Evil, x-nonce",
        )
        assert headers["Access-Control-Allow-Headers"] == "Content-Type, X-Signature, x-nonce"
        assert headers["Vary"] == "Access-Control-Request-Method, Access-Control-Request-Headers"

    def test_no_allow_headers_when_nothing_accepted(self) -> None:
        headers = _negotiator().preflight_headers("/health", request_method="GET", request_headers="X-Evil")
        assert "Access-Control-Allow-Headers" not in headers
        assert headers["Vary"] == "Access-Control-Request-Method"

    def test_max_age(self) -> None:
        headers = _negotiator(max_age_seconds=120).preflight_headers("/health")
        assert headers["Access-Control-Max-Age"] == "120"

    def test_wildcard_without_credentials(self) -> None:
        headers = _negotiator().preflight_headers("/health", origin="https://example.com")
        assert headers["Access-Control-Allow-Origin"] == "*"
        assert "Access-Control-Allow-Credentials" not in headers

    def test_wildcard_even_without_origin(self) -> None:
        headers = _negotiator().preflight_headers("/health")
        assert headers["Access-Control-Allow-Origin"] == "*"

    def test_echo_origin_when_wildcard_disabled(self) -> None:
        headers = _negotiator(use_wildcard_when_no_credentials=False).preflight_headers(
            "/health", origin="https://example.com"
        )
        assert headers["Access-Control-Allow-Origin"] == "https://example.com"
        assert "Origin" in headers["Vary"]

    def test_credentials_echo_allowed_origin(self) -> None:
        negotiator = _negotiator(allow_credentials=True, allowed_origins=frozenset({"https://ok.example"}))
        headers = negotiator.preflight_headers("/health", origin="https://ok.example", request_method="GET")
        assert headers["Access-Control-Allow-Origin"] == "https://ok.example"
        assert headers["Access-Control-Allow-Credentials"] == "true"
        assert headers["Vary"] == "Origin, Access-Control-Request-Method"

    def test_credentials_reject_unknown_origin_silently(self) -> None:
        negotiator = _negotiator(allow_credentials=True, allowed_origins=frozenset({"https://ok.example"}))
        headers = negotiator.preflight_headers("/health", origin="https://evil.example", request_method="GET")
        assert "Access-Control-Allow-Origin" not in headers
        assert "Access-Control-Allow-Credentials" not in headers
        assert headers["Access-Control-Allow-Methods"] == "GET"

    def test_credentials_never_wildcard(self) -> None:
        negotiator = _negotiator(allow_credentials=True)
        headers = negotiator.preflight_headers("/health", origin="https://any.example")
        assert headers["Access-Control-Allow-Origin"] == "https://any.example"

    def test_origin_predicate(self) -> None:
        negotiator = _negotiator(allow_credentials=True, origin_allowed=lambda o: o.endswith(".acme.dev"))
        assert negotiator.is_origin_allowed("https://app.acme.dev")
        assert not negotiator.is_origin_allowed("https://acme.dev.evil.com")

    def test_unknown_path_only_offers_options(self) -> None:
        headers = _negotiator().preflight_headers("/nope")
        assert headers["Access-Control-Allow-Methods"] == "OPTIONS"


class TestResponseAnnotation:
    def test_expose_headers(self) -> None:
        headers: dict[str, str] = {}
        _negotiator(expose_headers=("ETag", "Location")).apply_response_headers(headers, "https://x.example")
        assert headers["Access-Control-Allow-Origin"] == "*"
        assert headers["Access-Control-Expose-Headers"] == "ETag, Location"

    def test_existing_vary_kept(self) -> None:
        headers = {"vary": "Accept-Encoding"}
        _negotiator(use_wildcard_when_no_credentials=False).apply_response_headers(headers, "https://x.example")
        assert headers["vary"] == "Accept-Encoding, Origin"


class TestAppendVary:
    def test_adds_to_empty(self) -> None:
        headers: dict[str, str] = {}
        append_vary(headers, "Origin")
        assert headers == {"Vary": "Origin"}

    def test_deduplicates_case_insensitively(self) -> None:
        headers = {"Vary": "origin"}
        append_vary(headers, "Origin")
        assert headers == {"Vary": "origin"}

    def test_appends_new_token(self) -> None:
        headers = {"Vary": "Origin"}
        append_vary(headers, "Access-Control-Request-Method")
        assert headers == {"Vary": "Origin, Access-Control-Request-Method"}
