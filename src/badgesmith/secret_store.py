"""Secret lookup with a TTL cache in front of a slower backing manager."""

from __future__ import annotations

import enum
import logging
import os
import re
from typing import TYPE_CHECKING, Protocol

from badgesmith.results import Error, SecretNotFound

if TYPE_CHECKING:
    from collections.abc import Mapping

    from badgesmith.caching import MemoryCache

logger = logging.getLogger(__name__)

SECRET_CACHE_TTL = 15 * 60.0

SecretResult = str | SecretNotFound | Error


class TokenType(enum.StrEnum):
    HMAC = "hmac"
    GITHUB = "github"


class SecretBackendError(Exception):
    """The backing secret manager could not answer."""


class SecretBackend(Protocol):
    async def fetch(self, scope_key: str, token_type: TokenType) -> str | None:
        """Return the secret, ``None`` when absent; raise :class:`SecretBackendError` on failure."""
        ...


class SecretStore(Protocol):
    async def get(self, scope_key: str, token_type: TokenType) -> SecretResult: ...


class StaticSecretBackend:
    """Secrets held in memory, keyed by ``(scope_key, token_type)``."""

    def __init__(self, secrets: Mapping[tuple[str, TokenType], str] | None = None) -> None:
        self._secrets = {(k.lower(), TokenType(t)): v for (k, t), v in (secrets or {}).items()}
        self.calls = 0

    def put(self, scope_key: str, token_type: TokenType, secret: str) -> None:
        self._secrets[(scope_key.lower(), token_type)] = secret

    async def fetch(self, scope_key: str, token_type: TokenType) -> str | None:
        self.calls += 1
        return self._secrets.get((scope_key.lower(), token_type))


_ENV_KEY_RE = re.compile(r"[^A-Z0-9]+")


class EnvironmentSecretBackend:
    """Secrets read from ``<PREFIX>_<TYPE>_<SCOPE>`` environment variables.

    The scope key is upper-cased and every run of non-alphanumerics becomes
    ``_``, so ``acme/widgets`` with type ``hmac`` reads
    ``BADGESMITH_SECRET_HMAC_ACME_WIDGETS``.
    """

    def __init__(self, prefix: str = "BADGESMITH_SECRET", environ: Mapping[str, str] | None = None) -> None:
        self._prefix = prefix
        self._environ = environ if environ is not None else os.environ

    def variable_name(self, scope_key: str, token_type: TokenType) -> str:
        scope = _ENV_KEY_RE.sub("_", scope_key.upper()).strip("_")
        return f"{self._prefix}_{token_type.value.upper()}_{scope}"

    async def fetch(self, scope_key: str, token_type: TokenType) -> str | None:
        value = self._environ.get(self.variable_name(scope_key, token_type))
        return value or None


class CachedSecretStore:
    """Resolve secrets through *backend*, caching hits for *ttl* seconds."""

    def __init__(self, backend: SecretBackend, cache: MemoryCache, *, ttl: float = SECRET_CACHE_TTL) -> None:
        self._backend = backend
        self._cache = cache
        self._ttl = ttl

    async def get(self, scope_key: str, token_type: TokenType) -> SecretResult:
        if not scope_key or not scope_key.strip():
            msg = "scope_key must be a non-empty string"
            raise ValueError(msg)

        key = scope_key.lower()
        cache_key = f"secret:{token_type.value}:{key}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        try:
            secret = await self._backend.fetch(key, token_type)
        except SecretBackendError as exc:
            logger.error("Failed to retrieve %s secret for %s", token_type.value, key, exc_info=True)
            return Error(f"Failed to retrieve {token_type.value} secret for '{key}': {exc}")

        if secret is None:
            logger.warning("No %s secret found for %s", token_type.value, key)
            return SecretNotFound(f"No {token_type.value} secret found for '{key}'")

        self._cache.set(cache_key, secret, self._ttl)
        return secret
