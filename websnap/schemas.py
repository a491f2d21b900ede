"""Pydantic DTOs for the capture request/response contract."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from websnap.capture import CaptureResult
from websnap.errors import ErrorOutcome


class CaptureRequestPayload(BaseModel):
    """Body an HTTP layer forwards to the capture core."""

    model_config = ConfigDict(extra="ignore")

    url: str | None = Field(default=None, description="Address to capture; scheme optional")
    device: str | None = Field(default="desktop", description="desktop, tablet or mobile")
    quality: str | None = Field(default="medium", description="high, medium or low")


class StageOutcomeModel(BaseModel):
    """One readiness probe outcome."""

    stage: str
    status: str
    elapsed_ms: int = Field(ge=0)
    budget_ms: int = Field(ge=0)
    detail: str | None = None


class CaptureMetadata(BaseModel):
    """Metadata echoed next to the encoded image."""

    request_id: str
    url: str
    device: str
    quality: str
    format: Literal["jpeg"] = "jpeg"
    width: int = Field(ge=1)
    height: int = Field(ge=1)
    encoding_quality_used: int = Field(ge=1, le=100)
    elapsed_ms: int = Field(ge=0)
    complexity_tier: str
    document_height: int = Field(ge=0)
    height_clamped: bool
    size_kb: int = Field(ge=0)
    framework: str | None = None
    loading_strategy: str
    readiness: list[StageOutcomeModel] = Field(default_factory=list)
    blocked_requests: dict[str, int] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CaptureResponse(BaseModel):
    """Successful capture: a JPEG data URI plus metadata."""

    success: Literal[True] = True
    image: str = Field(description="data:image/jpeg;base64 URI")
    metadata: CaptureMetadata

    @classmethod
    def from_result(cls, result: CaptureResult) -> "CaptureResponse":
        metadata = CaptureMetadata(
            request_id=result.request_id,
            url=result.url,
            device=result.device,
            quality=result.quality,
            width=result.width,
            height=result.height,
            encoding_quality_used=result.encoding_quality_used,
            elapsed_ms=result.elapsed_ms,
            complexity_tier=result.complexity_tier,
            document_height=result.document_height,
            height_clamped=result.height_clamped,
            size_kb=result.size_kb,
            framework=result.framework,
            loading_strategy=result.readiness.loading_strategy,
            readiness=[StageOutcomeModel(**outcome.to_dict()) for outcome in result.readiness.outcomes],
            blocked_requests=dict(result.blocked_requests),
        )
        return cls(image=result.to_data_uri(), metadata=metadata)


class ErrorResponse(BaseModel):
    """Classified failure; ``status_code`` is a transport hint for the caller."""

    success: Literal[False] = False
    category: str
    message: str
    retryable: bool
    detail: str
    status_code: int
    request_id: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_outcome(cls, outcome: ErrorOutcome, *, request_id: str | None = None) -> "ErrorResponse":
        return cls(
            category=outcome.category.value,
            message=outcome.user_message,
            retryable=outcome.retryable,
            detail=outcome.detail,
            status_code=outcome.status_code,
            request_id=request_id,
        )


class ServiceDescription(BaseModel):
    """Health and capability summary."""

    status: Literal["healthy", "degraded"]
    version: str
    engine: str
    playwright_version: str | None = None
    devices: list[str]
    qualities: dict[str, int]
    request_budget_ms: int
    memory: dict[str, object] | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
