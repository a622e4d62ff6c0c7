"""Runtime settings, read from ``BADGESMITH_*`` environment variables."""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, field_validator

from badgesmith.cors import DEFAULT_ALLOWED_REQUEST_HEADERS, CorsOptions

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

ENV_PREFIX = "BADGESMITH_"


# ------------------------------------------------------------------
# Env helpers
# ------------------------------------------------------------------


def _env_str(environ: Mapping[str, str], name: str, default: str) -> str:
    raw = environ.get(ENV_PREFIX + name)
    if raw is None:
        return default
    return raw.strip()


def _env_bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(ENV_PREFIX + name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(ENV_PREFIX + name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s%s=%r, using %s", ENV_PREFIX, name, raw, default)
        return default


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(ENV_PREFIX + name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s%s=%r, using %s", ENV_PREFIX, name, raw, default)
        return default


def _env_list(environ: Mapping[str, str], name: str) -> list[str] | None:
    raw = environ.get(ENV_PREFIX + name)
    if raw is None or not raw.strip():
        return None
    return [item.strip() for item in raw.split(",") if item.strip()]


# ------------------------------------------------------------------
# Settings
# ------------------------------------------------------------------


class Settings(BaseModel):
    """Service configuration.

    Empty database paths select the in-memory stores, which is what tests
    and ``badgesmith dev`` use.
    """

    log_level: str = "INFO"
    debug: bool = False
    request_timeout: float = Field(default=28.0, gt=0)

    nonce_ttl_seconds: int = Field(default=45 * 60, gt=0)
    secret_cache_ttl_seconds: int = Field(default=15 * 60, ge=0)
    nonce_db_path: str = ""
    test_results_db_path: str = ""
    secret_env_prefix: str = "BADGESMITH_SECRET"

    cors_allow_credentials: bool = False
    cors_allowed_origins: list[str] | None = None
    cors_max_age_seconds: int = Field(default=3600, ge=0)
    cors_use_wildcard: bool = True
    cors_allowed_headers: list[str] = Field(default_factory=lambda: sorted(DEFAULT_ALLOWED_REQUEST_HEADERS))
    cors_expose_headers: list[str] = Field(default_factory=list)

    nuget_base_url: str = "https://api.nuget.org/v3-flatcontainer"
    github_base_url: str = "https://api.github.com"
    http_timeout: float = Field(default=10.0, gt=0)

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        value = value.strip().upper()
        if value not in logging.getLevelNamesMapping():
            msg = f"Unknown log level: {value!r}"
            raise ValueError(msg)
        return value

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = environ if environ is not None else os.environ
        defaults = cls()
        return cls(
            log_level=_env_str(env, "LOG_LEVEL", defaults.log_level) or defaults.log_level,
            debug=_env_bool(env, "DEBUG", defaults.debug),
            request_timeout=_env_float(env, "REQUEST_TIMEOUT", defaults.request_timeout),
            nonce_ttl_seconds=_env_int(env, "NONCE_TTL", defaults.nonce_ttl_seconds),
            secret_cache_ttl_seconds=_env_int(env, "SECRET_CACHE_TTL", defaults.secret_cache_ttl_seconds),
            nonce_db_path=_env_str(env, "NONCE_DB", defaults.nonce_db_path),
            test_results_db_path=_env_str(env, "TEST_RESULTS_DB", defaults.test_results_db_path),
            secret_env_prefix=_env_str(env, "SECRET_ENV_PREFIX", defaults.secret_env_prefix)
            or defaults.secret_env_prefix,
            cors_allow_credentials=_env_bool(env, "CORS_ALLOW_CREDENTIALS", defaults.cors_allow_credentials),
            cors_allowed_origins=_env_list(env, "CORS_ALLOWED_ORIGINS"),
            cors_max_age_seconds=_env_int(env, "CORS_MAX_AGE", defaults.cors_max_age_seconds),
            cors_use_wildcard=_env_bool(env, "CORS_USE_WILDCARD", defaults.cors_use_wildcard),
            cors_allowed_headers=_env_list(env, "CORS_ALLOWED_HEADERS") or defaults.cors_allowed_headers,
            cors_expose_headers=_env_list(env, "CORS_EXPOSE_HEADERS") or defaults.cors_expose_headers,
            nuget_base_url=_env_str(env, "NUGET_BASE_URL", defaults.nuget_base_url) or defaults.nuget_base_url,
            github_base_url=_env_str(env, "GITHUB_BASE_URL", defaults.github_base_url) or defaults.github_base_url,
            http_timeout=_env_float(env, "HTTP_TIMEOUT", defaults.http_timeout),
        )

    def cors_options(self) -> CorsOptions:
        return CorsOptions(
            allow_credentials=self.cors_allow_credentials,
            max_age_seconds=self.cors_max_age_seconds,
            use_wildcard_when_no_credentials=self.cors_use_wildcard,
            allowed_origins=frozenset(self.cors_allowed_origins) if self.cors_allowed_origins else None,
            allowed_request_headers=frozenset(self.cors_allowed_headers),
            expose_headers=tuple(self.cors_expose_headers),
        )
