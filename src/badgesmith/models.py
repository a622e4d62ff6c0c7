"""Wire models for request payloads and JSON responses."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

# SQLite INTEGER is a signed 64-bit value.
MAX_TEST_COUNT = 2**63 - 1


class ErrorDetail(BaseModel):
    error_code: str
    property_name: str


class ErrorResponse(BaseModel):
    message: str
    error_details: list[ErrorDetail] | None = None


class HealthCheckResponse(BaseModel):
    status: str
    time_stamp: datetime


class ShieldsBadge(BaseModel):
    """Shields.io endpoint badge (https://shields.io/badges/endpoint-badge)."""

    model_config = ConfigDict(populate_by_name=True)

    schema_version: int = Field(default=1, alias="schemaVersion")
    label: str
    message: str
    color: str | None = None
    label_color: str | None = Field(default=None, alias="labelColor")
    is_error: bool | None = Field(default=None, alias="isError")
    named_logo: str | None = Field(default=None, alias="namedLogo")


class TestResultPayload(BaseModel):
    """Body of ``POST /tests/results/...`` as sent by CI."""

    __test__ = False

    platform: str
    passed: int = Field(ge=0, le=MAX_TEST_COUNT)
    failed: int = Field(ge=0, le=MAX_TEST_COUNT)
    skipped: int = Field(ge=0, le=MAX_TEST_COUNT)
    total: int = Field(ge=0, le=MAX_TEST_COUNT)
    url_html: str
    timestamp: datetime
    commit: str
    run_id: str
    workflow_run_url: str

    @field_validator("timestamp")
    @classmethod
    def timestamp_as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        try:
            return value.astimezone(UTC)
        except OverflowError:
            msg = "timestamp is out of range once converted to UTC"
            raise ValueError(msg) from None


class TestResultIngestionResponse(BaseModel):
    __test__ = False

    test_result_id: str
    repository: str
    timestamp: datetime
