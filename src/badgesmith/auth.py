"""HMAC request authentication with timestamp-window and nonce replay checks.

Checks run cheapest first and stop at the first failure:

1. auth headers present
2. timestamp parses as ISO-8601
3. timestamp within ``[now - 5 min, now + 1 min]``
4. nonce marked unused for the scope (nonce store)
5. signing secret resolved for the scope (secret store)
6. ``sha256=<hex>`` signature over the raw body, compared in constant time

A flood of stale or malformed requests therefore never reaches the nonce
store or the secret manager.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from badgesmith.results import (
    AuthenticatedRequest,
    Error,
    InvalidSignature,
    InvalidTimestamp,
    MissingAuthHeaders,
    NonceAlreadyUsed,
    RepoSecretNotFound,
    SecretNotFound,
)
from badgesmith.secret_store import TokenType
from badgesmith.signing import NONCE_HEADER, SIGNATURE_HEADER, TIMESTAMP_HEADER, verify_signature

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from badgesmith.nonces import NonceStore
    from badgesmith.secret_store import SecretStore

logger = logging.getLogger(__name__)

MAX_TIMESTAMP_AGE = timedelta(minutes=5)
MAX_TIMESTAMP_SKEW = timedelta(minutes=1)

AuthResult = (
    AuthenticatedRequest
    | MissingAuthHeaders
    | InvalidTimestamp
    | NonceAlreadyUsed
    | RepoSecretNotFound
    | InvalidSignature
    | Error
)


@dataclass(frozen=True)
class AuthContext:
    """Everything needed to authenticate one signed request."""

    owner: str
    repo: str
    platform: str
    branch: str
    signature: str
    timestamp: str
    nonce: str
    body: bytes = field(repr=False, default=b"")

    @property
    def scope(self) -> str:
        return f"{self.owner}/{self.repo}".lower()

    @classmethod
    def from_request(
        cls,
        route_values: Mapping[str, str],
        headers: Mapping[str, str],
        body: bytes,
    ) -> AuthContext:
        """Assemble a context from decoded route values and lower-cased headers."""
        return cls(
            owner=route_values.get("owner", ""),
            repo=route_values.get("repo", ""),
            platform=route_values.get("platform", ""),
            branch=route_values.get("branch", ""),
            signature=headers.get(SIGNATURE_HEADER, "").strip(),
            timestamp=headers.get(TIMESTAMP_HEADER, "").strip(),
            nonce=headers.get(NONCE_HEADER, "").strip(),
            body=body,
        )


def _utcnow() -> datetime:
    return datetime.now(UTC)


def parse_timestamp(value: str) -> datetime | None:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class HmacAuthenticator:
    """Stateless validator; per-request state lives in :class:`AuthContext`."""

    def __init__(
        self,
        nonce_store: NonceStore,
        secret_store: SecretStore,
        *,
        clock: Callable[[], datetime] = _utcnow,
        max_age: timedelta = MAX_TIMESTAMP_AGE,
        max_skew: timedelta = MAX_TIMESTAMP_SKEW,
    ) -> None:
        self._nonces = nonce_store
        self._secrets = secret_store
        self._clock = clock
        self._max_age = max_age
        self._max_skew = max_skew

    async def validate(self, ctx: AuthContext) -> AuthResult:
        missing = _missing_header(ctx)
        if missing is not None:
            logger.warning("Rejected request for %s: %s header missing", ctx.scope, missing)
            return MissingAuthHeaders(f"{missing} header is required")
        if not ctx.owner or not ctx.repo:
            return MissingAuthHeaders("Repository scope is required")

        timestamp = parse_timestamp(ctx.timestamp)
        if timestamp is None:
            logger.warning("Rejected request for %s: unparsable timestamp %r", ctx.scope, ctx.timestamp)
            return InvalidTimestamp(f"Invalid timestamp format: {ctx.timestamp}. Expected ISO 8601 format.")

        window_error = self._check_window(timestamp)
        if window_error is not None:
            logger.warning("Rejected request for %s: %s", ctx.scope, window_error.reason)
            return window_error

        nonce_result = await self._nonces.validate_and_mark(ctx.nonce, ctx.scope, timestamp)
        if isinstance(nonce_result, NonceAlreadyUsed | Error):
            return nonce_result

        secret = await self._secrets.get(ctx.scope, TokenType.HMAC)
        if isinstance(secret, SecretNotFound):
            return RepoSecretNotFound(secret.reason)
        if isinstance(secret, Error):
            return secret

        if not verify_signature(ctx.signature, ctx.body, secret):
            logger.warning("Invalid HMAC signature for repository %s", ctx.scope)
            return InvalidSignature("HMAC signature verification failed")

        logger.info("Authenticated request for repository %s", ctx.scope)
        return AuthenticatedRequest(ctx.scope, timestamp)

    def _check_window(self, timestamp: datetime) -> InvalidTimestamp | None:
        now = self._clock()
        age = now - timestamp
        if age > self._max_age:
            return InvalidTimestamp(
                f"Request timestamp is too old. Age: {age.total_seconds() / 60:.1f} minutes, "
                f"max allowed: {self._max_age.total_seconds() / 60:g} minutes."
            )
        skew = timestamp - now
        if skew > self._max_skew:
            return InvalidTimestamp(
                f"Request timestamp is too far in the future. Skew: {skew.total_seconds() / 60:.1f} minutes, "
                f"max allowed: {self._max_skew.total_seconds() / 60:g} minutes."
            )
        return None


def _missing_header(ctx: AuthContext) -> str | None:
    if not ctx.signature:
        return "X-Signature"
    if not ctx.timestamp:
        return "X-Timestamp"
    if not ctx.nonce:
        return "X-Nonce"
    return None
