"""Pydantic response schemas for the webhook listener."""

from __future__ import annotations

from pydantic import BaseModel, Field


class WebhookAck(BaseModel):
    status: str = "ok"
    event_type: str


class ErrorResponse(BaseModel):
    detail: str
    event_type: str | None = None


class HealthResponse(BaseModel):
    status: str
    pending_results: int | None = Field(None, description="Outstanding webhook waiters")
