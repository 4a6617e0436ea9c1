from __future__ import annotations


class AlertSyncError(Exception):
    """Base class for errors raised by the alert sync service."""


class SyncCancelled(AlertSyncError):
    """Raised when a pass observes its cancellation signal or deadline."""

    def __init__(self, reason: str = "cancelled") -> None:
        super().__init__(f"sync pass cancelled: {reason}")
        self.reason = reason


class SyncFailedError(AlertSyncError):
    """Raised when a pass cannot fetch upstream data and has to abort."""


class UpstreamError(AlertSyncError):
    """Raised when the upstream alert source cannot serve a request."""


class UpstreamUnavailableError(UpstreamError):
    """Raised when the upstream health check fails."""


class UpstreamRequestError(UpstreamError):
    """Raised for non-retryable client errors returned by the upstream."""

    def __init__(self, status_code: int, body: str = "") -> None:
        message = f"upstream returned status {status_code}"
        if body:
            message = f"{message}: {body}"
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class UpstreamRetriesExhausted(UpstreamError):
    """Raised once every retry attempt against the upstream has failed."""

    def __init__(
        self,
        attempts: int,
        *,
        status_code: int | None = None,
        last_error: Exception | None = None,
    ) -> None:
        detail = f"status {status_code}" if status_code is not None else repr(last_error)
        super().__init__(f"giving up after {attempts} attempt(s): {detail}")
        self.attempts = attempts
        self.status_code = status_code
        self.last_error = last_error


class UpstreamResponseError(UpstreamError):
    """Raised when the upstream payload does not match the alerts envelope."""


class AlertNotFoundError(AlertSyncError, LookupError):
    """Raised when no alert exists for the requested identifier."""

    def __init__(self, alert_id: str) -> None:
        super().__init__(f"alert {alert_id!r} not found")
        self.alert_id = alert_id


class InvalidWindowError(AlertSyncError, ValueError):
    """Raised when a recency window is not a positive number of days."""


__all__ = [
    "AlertNotFoundError",
    "AlertSyncError",
    "InvalidWindowError",
    "SyncCancelled",
    "SyncFailedError",
    "UpstreamError",
    "UpstreamRequestError",
    "UpstreamResponseError",
    "UpstreamRetriesExhausted",
    "UpstreamUnavailableError",
]
