"""Latest-version lookup for NuGet packages on nuget.org and GitHub Packages."""

from __future__ import annotations

import functools
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import httpx

from badgesmith.results import Error, InvalidVersionRange, PackageNotFound, SecretNotFound, ValidationFailure
from badgesmith.secret_store import TokenType

if TYPE_CHECKING:
    from collections.abc import Iterable

    from badgesmith.caching import MemoryCache
    from badgesmith.secret_store import SecretStore

logger = logging.getLogger(__name__)

GITHUB_CACHE_TTL = 5 * 60.0
USER_AGENT = "BadgeSmith/1.0"

_VERSION_RE = re.compile(
    r"^v?(?P<release>\d+(?:\.\d+){0,3})"
    r"(?:-(?P<pre>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?$"
)


# ------------------------------------------------------------------
# Versions
# ------------------------------------------------------------------


@functools.total_ordering
@dataclass(frozen=True, eq=False)
class Version:
    """A NuGet/SemVer 2 version; build metadata is ignored for ordering."""

    text: str
    release: tuple[int, int, int, int]
    prerelease: tuple[str, ...] = ()

    @classmethod
    def parse(cls, text: str) -> Version | None:
        m = _VERSION_RE.match(text.strip())
        if m is None:
            return None
        parts = [int(p) for p in m.group("release").split(".")]
        parts += [0] * (4 - len(parts))
        pre = tuple(m.group("pre").split(".")) if m.group("pre") else ()
        return cls(text.strip(), (parts[0], parts[1], parts[2], parts[3]), pre)

    @property
    def is_prerelease(self) -> bool:
        return bool(self.prerelease)

    def _key(self) -> tuple:
        # A release sorts after every prerelease of the same number.
        pre = tuple((0, int(p), "") if p.isdigit() else (1, 0, p.lower()) for p in self.prerelease)
        return (self.release, not self.prerelease, pre)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other: Version) -> bool:
        return self._key() < other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class VersionRange:
    """NuGet version range: ``1.0`` (minimum), ``[1.0]``, ``[1.0,2.0)``, ``(,2.0]``..."""

    minimum: Version | None = None
    min_inclusive: bool = True
    maximum: Version | None = None
    max_inclusive: bool = False

    @classmethod
    def parse(cls, text: str) -> VersionRange:
        text = text.strip()
        if not text:
            msg = "Version range cannot be empty"
            raise ValueError(msg)
        if text[0] not in "[(":
            minimum = _parse_bound(text)
            return cls(minimum=minimum, min_inclusive=True)
        if len(text) < 3 or text[-1] not in "])":
            msg = f"Invalid version range format: {text}"
            raise ValueError(msg)
        min_inclusive = text[0] == "["
        max_inclusive = text[-1] == "]"
        inner = text[1:-1]
        if "," not in inner:
            if not (min_inclusive and max_inclusive):
                msg = f"Invalid version range format: {text}"
                raise ValueError(msg)
            exact = _parse_bound(inner)
            return cls(exact, True, exact, True)
        low, _, high = (part.strip() for part in inner.partition(","))
        if "," in high:
            msg = f"Invalid version range format: {text}"
            raise ValueError(msg)
        return cls(
            minimum=_parse_bound(low) if low else None,
            min_inclusive=min_inclusive,
            maximum=_parse_bound(high) if high else None,
            max_inclusive=max_inclusive,
        )

    def satisfies(self, version: Version) -> bool:
        if self.minimum is not None:
            if version < self.minimum or (version == self.minimum and not self.min_inclusive):
                return False
        if self.maximum is not None:
            if version > self.maximum or (version == self.maximum and not self.max_inclusive):
                return False
        return True


def _parse_bound(text: str) -> Version:
    version = Version.parse(text)
    if version is None:
        msg = f"Invalid version in range: {text!r}"
        raise ValueError(msg)
    return version


def select_latest(
    candidates: Iterable[str],
    *,
    include_prerelease: bool = False,
    version_range: VersionRange | None = None,
) -> Version | None:
    """Highest parseable version passing the prerelease and range filters."""
    best: Version | None = None
    for raw in candidates:
        version = Version.parse(raw)
        if version is None:
            continue
        if version.is_prerelease and not include_prerelease:
            continue
        if version_range is not None and not version_range.satisfies(version):
            continue
        if best is None or version > best:
            best = version
    return best


def _criteria(version_range: str | None, include_prerelease: bool) -> str:
    parts = [f"version range '{version_range}'"] if version_range else []
    parts.append("including prerelease" if include_prerelease else "stable versions only")
    return ", ".join(parts)


# ------------------------------------------------------------------
# Sources
# ------------------------------------------------------------------


@dataclass(frozen=True)
class PackageInfo:
    name: str
    version: str
    is_prerelease: bool


PackageResult = PackageInfo | PackageNotFound | ValidationFailure | Error


class PackageVersionSource(Protocol):
    async def latest_version(
        self,
        package: str,
        *,
        org: str | None = None,
        include_prerelease: bool = False,
        version_range: str | None = None,
    ) -> PackageResult: ...


def _parse_range(version_range: str | None) -> VersionRange | InvalidVersionRange | None:
    if not version_range or not version_range.strip():
        return None
    try:
        return VersionRange.parse(version_range)
    except ValueError as exc:
        return InvalidVersionRange(str(exc))


class NuGetClient:
    """Versions from the nuget.org v3 flat container (``{"versions": [...]}``)."""

    def __init__(self, client: httpx.AsyncClient, base_url: str = "https://api.nuget.org/v3-flatcontainer") -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    async def latest_version(
        self,
        package: str,
        *,
        org: str | None = None,
        include_prerelease: bool = False,
        version_range: str | None = None,
    ) -> PackageResult:
        if not package.strip():
            msg = "package cannot be empty"
            raise ValueError(msg)
        parsed_range = _parse_range(version_range)
        if isinstance(parsed_range, InvalidVersionRange):
            return parsed_range

        url = f"{self._base_url}/{package.lower()}/index.json"
        logger.info("Fetching NuGet package versions for %s", package)
        try:
            response = await self._client.get(url, headers={"User-Agent": USER_AGENT})
        except httpx.HTTPError:
            logger.error("Network error retrieving NuGet package %s", package, exc_info=True)
            return Error(f"Network error retrieving NuGet package {package}")

        if response.status_code == 404:
            logger.info("NuGet package not found: %s", package)
            return PackageNotFound(f"Package '{package}' not found")
        if response.is_error:
            logger.warning("NuGet API returned %d for package %s", response.status_code, package)
            return Error(f"NuGet API error: {response.status_code}")

        try:
            versions = response.json().get("versions") or []
        except (ValueError, AttributeError):
            logger.error("Failed to parse NuGet API response for package %s", package, exc_info=True)
            return Error("Invalid response from NuGet API")
        if not versions:
            return PackageNotFound(f"No versions found for package '{package}'")

        latest = select_latest(versions, include_prerelease=include_prerelease, version_range=parsed_range)
        if latest is None:
            criteria = _criteria(version_range, include_prerelease)
            return PackageNotFound(f"No versions found for package '{package}' matching criteria: {criteria}")
        logger.info("Found NuGet package %s version %s", package, latest)
        return PackageInfo(package, str(latest), latest.is_prerelease)


class GitHubPackagesClient:
    """NuGet packages published to an organisation's GitHub Packages feed.

    The bearer token is looked up per organisation in the secret store
    (token type ``github``); results are cached for five minutes.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        secrets: SecretStore,
        cache: MemoryCache,
        base_url: str = "https://api.github.com",
        *,
        ttl: float = GITHUB_CACHE_TTL,
    ) -> None:
        self._client = client
        self._secrets = secrets
        self._cache = cache
        self._base_url = base_url.rstrip("/")
        self._ttl = ttl

    async def latest_version(
        self,
        package: str,
        *,
        org: str | None = None,
        include_prerelease: bool = False,
        version_range: str | None = None,
    ) -> PackageResult:
        if not org or not org.strip() or not package.strip():
            msg = "org and package are required"
            raise ValueError(msg)
        org, package = org.lower(), package.lower()
        parsed_range = _parse_range(version_range)
        if isinstance(parsed_range, InvalidVersionRange):
            return parsed_range

        cache_key = f"github_package:{org}:{package}:{version_range or 'latest'}:{include_prerelease}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            logger.debug("Retrieved cached GitHub package info for %s/%s", org, package)
            return cached

        token = await self._secrets.get(org, TokenType.GITHUB)
        if isinstance(token, SecretNotFound):
            logger.error("No GitHub token configured for organization %s", org)
            return Error(f"GitHub token not configured for organization '{org}'")
        if isinstance(token, Error):
            return token

        url = f"{self._base_url}/orgs/{org}/packages/nuget/{package}/versions"
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": USER_AGENT,
        }
        try:
            response = await self._client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            logger.error("HTTP error while fetching GitHub package %s/%s", org, package, exc_info=True)
            return Error(f"Failed to fetch package information: {exc}")

        if response.status_code in (403, 404):
            logger.warning("GitHub package %s/%s not accessible (%d)", org, package, response.status_code)
            return PackageNotFound(f"Package '{package}' not found in organization '{org}'")
        if response.is_error:
            logger.warning("GitHub API returned %d for package %s/%s", response.status_code, org, package)
            return Error(f"GitHub API error: {response.status_code}")

        try:
            names = [item["name"] for item in response.json()]
        except (ValueError, TypeError, KeyError):
            logger.error("Failed to parse GitHub API response for package %s/%s", org, package, exc_info=True)
            return Error("Invalid response from GitHub API")
        if not names:
            return PackageNotFound(f"Package '{package}' not found in organization '{org}'")

        latest = select_latest(names, include_prerelease=include_prerelease, version_range=parsed_range)
        if latest is None:
            criteria = _criteria(version_range, include_prerelease)
            return PackageNotFound(f"No versions found for package '{package}' matching criteria: {criteria}")

        info = PackageInfo(package, str(latest), latest.is_prerelease)
        self._cache.set(cache_key, info, self._ttl)
        logger.info("Found GitHub package %s/%s version %s", org, package, latest)
        return info
