from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ExternalAlert(BaseModel):
    """Alert as served by the upstream alert source."""

    source: str = Field(..., description="Origin label reported by the upstream")
    severity: str = Field(..., description="Severity label reported by the upstream")
    description: str = Field("", description="Free-form alert description")
    created_at: datetime = Field(..., description="Event time at the source")

    @field_validator("created_at")
    @classmethod
    def _normalise_created_at(cls, value: datetime) -> datetime:
        return _ensure_utc(value)


class ExternalAlertsEnvelope(BaseModel):
    alerts: list[ExternalAlert] = Field(default_factory=list)

    @field_validator("alerts", mode="before")
    @classmethod
    def _null_as_empty(cls, value: object) -> object:
        # The upstream serialises an empty result as ``null``.
        return [] if value is None else value


class AlertRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, ser_json_bytes="base64")

    id: str
    source: str
    severity: str
    description: str
    raw_event: bytes
    enrichment_type: str | None
    origin_address: str | None
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _normalise_created_at(cls, value: datetime) -> datetime:
        return _ensure_utc(value)


class AlertsResponse(BaseModel):
    alerts: list[AlertRead]


class AlertResponse(BaseModel):
    alert: AlertRead


class ErrorResponse(BaseModel):
    error: str


class SyncAccepted(BaseModel):
    message: str = "Sync triggered successfully"
    status: str = "pending"


__all__ = [
    "AlertRead",
    "AlertResponse",
    "AlertsResponse",
    "ErrorResponse",
    "ExternalAlert",
    "ExternalAlertsEnvelope",
    "SyncAccepted",
]
