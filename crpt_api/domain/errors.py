from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class DomainError(Exception):
    code: str
    message: str
    details: dict[str, Any] | None = None
    retry_after_ms: int | None = None

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "ok": False,
            "error": {
                "code": self.code,
                "message": self.message,
            },
        }
        if self.details is not None:
            payload["error"]["details"] = self.details
        if self.retry_after_ms is not None:
            payload["error"]["retry_after_ms"] = self.retry_after_ms
        return payload


class ConfigurationError(DomainError):
    """Invalid limiter/client configuration; raised at construction."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(code="CONFIGURATION_ERROR", message=message, details=details)


class CancellationError(DomainError):
    """A blocked acquire() was cancelled through its CancellationToken."""

    def __init__(self, message: str = "Admission wait was cancelled.", details: dict[str, Any] | None = None) -> None:
        super().__init__(code="CANCELLED", message=message, details=details)


class AdmissionTimeoutError(DomainError):
    def __init__(self, message: str, *, retry_after_ms: int | None = None, details: dict[str, Any] | None = None) -> None:
        super().__init__(code="RATE_LIMITED", message=message, details=details, retry_after_ms=retry_after_ms)


class EncodingError(DomainError):
    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(code="ENCODING_ERROR", message=message, details=details)


class TransportError(DomainError):
    """Connectivity-level failure (connect, timeout, protocol). Usually retryable."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(code="TRANSPORT_ERROR", message=message, details=details)


class RemoteRejectionError(DomainError):
    """The endpoint answered with a non-success status."""

    def __init__(self, message: str, *, status_code: int, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            code="REMOTE_REJECTED",
            message=message,
            details={"status_code": status_code, **(details or {})},
        )

    @property
    def status_code(self) -> int:
        assert self.details is not None
        return int(self.details["status_code"])


def ok(data: dict[str, Any] | None = None) -> dict[str, Any]:
    return {"ok": True, **(data or {})}
