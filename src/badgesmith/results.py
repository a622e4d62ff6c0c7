"""Failure taxonomy shared by the routing, auth and storage layers.

Expected failures are returned, not raised.  Every concrete failure derives
from one of three kinds (validation, not-found, generic error) which decides
its default HTTP status.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from badgesmith.models import ErrorDetail, ErrorResponse


@dataclass(frozen=True)
class Failure:
    reason: str

    def to_error_response(self) -> ErrorResponse:
        return ErrorResponse(message=self.reason)


@dataclass(frozen=True)
class ValidationFailure(Failure):
    code: str = "VALIDATION_FAILED"
    property_name: str = ""

    def to_error_response(self) -> ErrorResponse:
        return ErrorResponse(
            message=self.reason,
            error_details=[ErrorDetail(error_code=self.code, property_name=self.property_name)],
        )


@dataclass(frozen=True)
class NotFoundFailure(Failure):
    pass


@dataclass(frozen=True)
class Error(Failure):
    pass


# -- Authentication ------------------------------------------------------


@dataclass(frozen=True)
class MissingAuthHeaders(ValidationFailure):
    code: str = "MISSING_AUTH_HEADERS"
    property_name: str = "headers"


@dataclass(frozen=True)
class InvalidTimestamp(ValidationFailure):
    code: str = "INVALID_TIMESTAMP"
    property_name: str = "timestamp"


@dataclass(frozen=True)
class NonceAlreadyUsed(ValidationFailure):
    code: str = "NONCE_ALREADY_USED"
    property_name: str = "nonce"


@dataclass(frozen=True)
class InvalidSignature(ValidationFailure):
    code: str = "INVALID_SIGNATURE"
    property_name: str = "signature"


@dataclass(frozen=True)
class SecretNotFound(NotFoundFailure):
    pass


@dataclass(frozen=True)
class RepoSecretNotFound(SecretNotFound):
    pass


@dataclass(frozen=True)
class AuthenticatedRequest:
    scope: str
    timestamp: datetime


@dataclass(frozen=True)
class ValidNonce:
    nonce: str
    marked_at: datetime


# -- Test results and packages -------------------------------------------


@dataclass(frozen=True)
class InvalidTestPayload(ValidationFailure):
    code: str = "INVALID_TEST_PAYLOAD"
    property_name: str = "payload"


@dataclass(frozen=True)
class DuplicateTestResult(ValidationFailure):
    code: str = "DUPLICATE_TEST_RESULT"
    property_name: str = "run_id"


@dataclass(frozen=True)
class TestResultNotFound(NotFoundFailure):
    __test__ = False


@dataclass(frozen=True)
class PackageNotFound(NotFoundFailure):
    pass


@dataclass(frozen=True)
class InvalidVersionRange(ValidationFailure):
    code: str = "VERSION_RANGE_INVALID"
    property_name: str = "version"


# Failures that surface to the caller as a bare 401, whichever check failed.
UNAUTHORIZED_FAILURES: tuple[type[Failure], ...] = (MissingAuthHeaders, InvalidSignature, SecretNotFound)


def status_for(failure: Failure) -> int:
    """Map a failure onto the HTTP status the dispatcher reports."""
    if isinstance(failure, UNAUTHORIZED_FAILURES):
        return 401
    if isinstance(failure, DuplicateTestResult):
        return 409
    if isinstance(failure, ValidationFailure):
        return 400
    if isinstance(failure, NotFoundFailure):
        return 404
    return 500
