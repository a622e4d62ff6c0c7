"""BadgeSmith ASGI application."""

from __future__ import annotations

import asyncio
import logging
import traceback
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import TYPE_CHECKING, Any

import httpx

from badgesmith.auth import AuthContext, HmacAuthenticator
from badgesmith.caching import MemoryCache
from badgesmith.config import Settings
from badgesmith.cors import CorsNegotiator
from badgesmith.handlers import Handlers, RouteContext
from badgesmith.log import configure_logging
from badgesmith.nonces import InMemoryNonceStore, SqliteNonceStore
from badgesmith.packages import GitHubPackagesClient, NuGetClient
from badgesmith.request import Request
from badgesmith.response import JSONResponse, Response, error_response, failure_response
from badgesmith.results import AuthenticatedRequest, status_for
from badgesmith.route_table import build_routes
from badgesmith.routing import RouteResolver
from badgesmith.secret_store import CachedSecretStore, EnvironmentSecretBackend
from badgesmith.test_results import InMemoryTestResultStore, SqliteTestResultStore

if TYPE_CHECKING:
    from badgesmith._types import ASGIApp, Receive, Scope, Send
    from badgesmith.nonces import NonceStore
    from badgesmith.secret_store import SecretBackend
    from badgesmith.test_results import TestResultStore

logger = logging.getLogger(__name__)

ShutdownHook = Callable[[], Awaitable[None] | None]


class BadgeSmith:
    """ASGI 3.0 application dispatching to a fixed route table.

    Parameters
    ----------
    resolver:
        Route table lookup.
    authenticator:
        Validates requests to routes flagged ``requires_auth``.
    cors:
        Answers preflights and annotates every other response.
    debug:
        When ``True``, 500 responses include the full traceback.
    request_timeout:
        Deadline in seconds for the whole pipeline; expiry yields a 500.
    """

    def __init__(
        self,
        resolver: RouteResolver,
        authenticator: HmacAuthenticator,
        cors: CorsNegotiator,
        *,
        debug: bool = False,
        request_timeout: float = 28.0,
    ) -> None:
        self.resolver = resolver
        self.authenticator = authenticator
        self.cors = cors
        self.debug = debug
        self.request_timeout = request_timeout
        self._middleware: list[Callable[[ASGIApp], ASGIApp]] = []
        self._shutdown_hooks: list[ShutdownHook] = []
        self._app: ASGIApp | None = None

    # ------------------------------------------------------------------
    # Middleware and lifecycle
    # ------------------------------------------------------------------

    def add_middleware(self, middleware: Callable[[ASGIApp], ASGIApp]) -> None:
        """Register a middleware that wraps the ASGI app.

        Called as ``middleware(app)`` and must return an ASGI callable.
        """
        self._middleware.append(middleware)
        self._app = None  # invalidate cached chain

    def on_shutdown(self, hook: ShutdownHook) -> None:
        """Run *hook* (sync or async) when the server shuts down."""
        self._shutdown_hooks.append(hook)

    def _build_app(self) -> ASGIApp:
        app: ASGIApp = self._handle
        for mw in reversed(self._middleware):
            app = mw(app)
        return app

    async def shutdown(self) -> None:
        for hook in self._shutdown_hooks:
            try:
                result = hook()
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Shutdown hook %r failed", hook)

    # ------------------------------------------------------------------
    # ASGI interface
    # ------------------------------------------------------------------

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "lifespan":
            await self._handle_lifespan(receive, send)
            return

        if self._app is None:
            self._app = self._build_app()
        await self._app(scope, receive, send)

    async def _handle(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            return

        request = Request(scope, receive)
        try:
            response = await asyncio.wait_for(self.dispatch(request), timeout=self.request_timeout)
        except TimeoutError:
            logger.error("%s %s exceeded the %.1fs deadline", request.method, request.path, self.request_timeout)
            response = error_response(500, "Internal Server Error")
        except Exception:
            logger.exception("Unhandled error for %s %s", request.method, request.path)
            body: dict[str, Any] = {"message": "Internal Server Error"}
            if self.debug:
                body["traceback"] = traceback.format_exc()
            response = JSONResponse(body, status_code=500)

        if request.method != "OPTIONS":
            self.cors.apply_response_headers(response.headers, request.header("origin"))
        await response.send(send, include_body=request.method != "HEAD")

    async def dispatch(self, request: Request) -> Response:
        """Route, authenticate and run the handler for one request."""
        method, path = request.method, request.path
        if method == "OPTIONS":
            return self._preflight(request, path)

        match = self.resolver.resolve(method, path)
        if match is None:
            allowed = self.resolver.get_allowed_methods(path) if path else ()
            if any(m != "OPTIONS" for m in allowed):
                logger.info("Method %s not allowed for %s", method, path)
                return error_response(405, "Method Not Allowed", headers={"Allow": ", ".join(allowed)})
            logger.info("No route for %s %s", method, path)
            return error_response(404, "Not Found")

        route = match.route
        body = await request.body()
        auth: AuthenticatedRequest | None = None
        if route.requires_auth:
            ctx = AuthContext.from_request(match.values.to_dict(), request.headers, body)
            result = await self.authenticator.validate(ctx)
            if not isinstance(result, AuthenticatedRequest):
                return failure_response(result, status_for(result))
            auth = result

        logger.debug("Dispatching %s %s to %s", method, path, route.name)
        return await route.handler(RouteContext(request, match.values, body, auth))

    def _preflight(self, request: Request, path: str) -> Response:
        headers = self.cors.preflight_headers(
            path,
            origin=request.header("origin"),
            request_method=request.header("access-control-request-method"),
            request_headers=request.header("access-control-request-headers"),
        )
        return Response(status_code=204, headers=headers)

    async def _handle_lifespan(self, receive: Receive, send: Send) -> None:
        while True:
            message = await receive()
            if message["type"] == "lifespan.startup":
                await send({"type": "lifespan.startup.complete"})
            elif message["type"] == "lifespan.shutdown":
                await self.shutdown()
                await send({"type": "lifespan.shutdown.complete"})
                return


# ------------------------------------------------------------------
# Wiring
# ------------------------------------------------------------------


def create_app(
    settings: Settings | None = None,
    *,
    secret_backend: SecretBackend | None = None,
    nonce_store: NonceStore | None = None,
    test_results: TestResultStore | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> BadgeSmith:
    """Build the service from *settings* (``Settings.from_env()`` by default).

    Any collaborator passed explicitly replaces the one *settings* would
    select and is not closed on shutdown.
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    cache = MemoryCache()
    closers: list[ShutdownHook] = []

    secrets = CachedSecretStore(
        secret_backend or EnvironmentSecretBackend(settings.secret_env_prefix),
        cache,
        ttl=settings.secret_cache_ttl_seconds,
    )

    nonce_ttl = timedelta(seconds=settings.nonce_ttl_seconds)
    if nonce_store is None:
        if settings.nonce_db_path:
            sqlite_nonces = SqliteNonceStore(settings.nonce_db_path, ttl=nonce_ttl, cache=cache)
            closers.append(sqlite_nonces.close)
            nonce_store = sqlite_nonces
        else:
            nonce_store = InMemoryNonceStore(ttl=nonce_ttl)

    if test_results is None:
        if settings.test_results_db_path:
            sqlite_results = SqliteTestResultStore(settings.test_results_db_path)
            closers.append(sqlite_results.close)
            test_results = sqlite_results
        else:
            test_results = InMemoryTestResultStore()

    if http_client is None:
        http_client = httpx.AsyncClient(timeout=settings.http_timeout, follow_redirects=True)
        closers.append(http_client.aclose)

    handlers = Handlers(
        NuGetClient(http_client, settings.nuget_base_url),
        GitHubPackagesClient(http_client, secrets, cache, settings.github_base_url),
        test_results,
    )
    resolver = RouteResolver(build_routes(handlers))
    app = BadgeSmith(
        resolver,
        HmacAuthenticator(nonce_store, secrets),
        CorsNegotiator(resolver, settings.cors_options()),
        debug=settings.debug,
        request_timeout=settings.request_timeout,
    )
    for closer in closers:
        app.on_shutdown(closer)
    logger.info("BadgeSmith ready with %d routes", len(resolver.routes))
    return app
