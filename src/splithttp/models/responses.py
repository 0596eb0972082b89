"""
Pydantic models for API responses.

The tunnel endpoints themselves exchange raw bytes; only the operational
endpoints return JSON.
"""

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response body of the health endpoint."""

    status: str = Field(default="ok", description="Server status")
    version: str = Field(..., description="Server version")
    active_sessions: int = Field(..., ge=0, description="Live tunnel sessions")
