"""Environment configuration for the alert sync service."""

from __future__ import annotations

import functools
import math
import re
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from libs.env import build_database_url, default_database_host

DEFAULT_SYNC_INTERVAL_SECONDS = 60.0

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: str) -> float:
    """Parse a duration such as ``90s``, ``1m30s`` or ``-250ms`` into seconds.

    Every number needs a unit; ``"0"`` is the only bare number accepted.
    Raises ``ValueError`` when the value is not a valid duration.
    """

    text = value
    sign = 1.0
    if text[:1] in ("-", "+"):
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]
    if text == "0":
        return 0.0
    if not text:
        raise ValueError(f"invalid duration {value!r}")
    position = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if position != len(text):
        raise ValueError(f"invalid duration {value!r}")
    return sign * total


class AlertSyncSettings(BaseSettings):
    """Settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    service_name: str = Field("alert-sync", description="Service identifier used in logs and metrics")
    database_url_override: str | None = Field(
        None,
        alias="DATABASE_URL",
        description="Full SQLAlchemy URL; takes precedence over the DB_* parameters",
        repr=False,
    )
    db_host: str = Field(default_factory=default_database_host, alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD", repr=False)
    db_name: str = Field("alerts_db", alias="DB_NAME")
    upstream_url: str = Field(
        "http://localhost:8081",
        alias="UPSTREAM_URL",
        description="Base URL of the upstream alert source",
    )
    sync_interval_seconds: float = Field(
        DEFAULT_SYNC_INTERVAL_SECONDS,
        alias="SYNC_INTERVAL",
        description="Delay between scheduled sync passes",
    )
    sync_timeout_seconds: float = Field(300.0, alias="SYNC_TIMEOUT_SECONDS")
    shutdown_grace_seconds: float = Field(30.0, alias="SHUTDOWN_GRACE_SECONDS")
    http_timeout_seconds: float = Field(10.0, alias="HTTP_TIMEOUT_SECONDS")
    retry_max: int = Field(3, ge=0, alias="RETRY_MAX")
    retry_wait_min_seconds: float = Field(1.0, ge=0.0, alias="RETRY_WAIT_MIN_SECONDS")
    retry_wait_max_seconds: float = Field(30.0, ge=0.0, alias="RETRY_WAIT_MAX_SECONDS")
    exclusive_passes: bool = Field(
        False,
        alias="EXCLUSIVE_PASSES",
        description="Drop scheduled passes while another pass is still running",
    )
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    host: str = Field("0.0.0.0", alias="HOST")
    port: int = Field(8080, alias="PORT")

    @field_validator("sync_interval_seconds", mode="before")
    @classmethod
    def _parse_interval(cls, value: Any) -> float:
        try:
            seconds = parse_duration(value) if isinstance(value, str) else float(value)
        except (TypeError, ValueError):
            return DEFAULT_SYNC_INTERVAL_SECONDS
        if not math.isfinite(seconds) or seconds <= 0:
            return DEFAULT_SYNC_INTERVAL_SECONDS
        return seconds

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        return build_database_url(
            host=self.db_host,
            port=self.db_port,
            user=self.db_user,
            password=self.db_password,
            name=self.db_name,
        )

    def describe_database(self) -> str:
        """Return a loggable description of the database target without secrets."""

        if self.database_url_override:
            return self.database_url_override.split("@")[-1]
        return f"{self.db_user}@{self.db_host}:{self.db_port}/{self.db_name}"


@functools.lru_cache
def get_settings() -> AlertSyncSettings:
    return AlertSyncSettings()


__all__ = ["AlertSyncSettings", "DEFAULT_SYNC_INTERVAL_SECONDS", "get_settings", "parse_duration"]
