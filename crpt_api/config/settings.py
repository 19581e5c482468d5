from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic.config import ConfigDict

DEFAULT_ENDPOINT = "https://ismp.crpt.ru/api/v3/lk/documents/create"

TimeUnit = Literal["MILLISECONDS", "SECONDS", "MINUTES", "HOURS", "DAYS"]

_UNIT_MS: dict[str, int] = {
    "MILLISECONDS": 1,
    "SECONDS": 1_000,
    "MINUTES": 60_000,
    "HOURS": 3_600_000,
    "DAYS": 86_400_000,
}


def window_to_ms(time_unit: TimeUnit, amount: int = 1) -> int:
    return _UNIT_MS[time_unit] * amount


class ApiSettings(BaseModel):
    endpoint: str = DEFAULT_ENDPOINT
    # Bearer token; may also come from --token
    token: str | None = None
    timeout_s: float = Field(30.0, gt=0)

    # Fixed tags of the "create document" payload
    document_format: str = "MANUAL"
    document_type: str = "LP_INTRODUCE_GOODS"

    @field_validator("endpoint")
    @classmethod
    def _http_endpoint(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("endpoint must be an http(s) URL")
        return v


class RateLimitSettings(BaseModel):
    time_unit: TimeUnit = "SECONDS"
    window_amount: int = Field(1, ge=0)

    # Range is checked by the limiter itself so misconfiguration surfaces as
    # ConfigurationError rather than a pydantic error.
    request_limit: int = 10

    poll_interval_ms: int = Field(100, ge=1, le=60_000)

    @property
    def window_ms(self) -> int:
        return window_to_ms(self.time_unit, self.window_amount)


class LoggingSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    json_logs: bool = Field(True, alias="json")


class Settings(BaseModel):
    api: ApiSettings = Field(default_factory=ApiSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
