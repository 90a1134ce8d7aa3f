"""Shared Pydantic response models for the StaySync API.

Successful responses are wrapped as ``{"data": T, "meta": {...}}`` and
errors as ``{"error": {"code": ..., "message": ..., "details": ...}}``.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class ApiMeta(BaseModel):
    """Extensible metadata bag attached to every API response."""

    model_config = {"extra": "allow"}


class ApiResponse[T](BaseModel):
    """Generic API response wrapper."""

    data: T
    meta: ApiMeta = Field(default_factory=ApiMeta)


class ErrorDetail(BaseModel):
    """Structured error payload."""

    code: str
    message: str
    details: dict | None = None


class ErrorResponse(BaseModel):
    """Standard error response envelope."""

    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
