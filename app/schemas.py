"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Liveness payload reporting the loaded key directory size."""

    status: str = Field(default="ok")
    keys_loaded: int = Field(..., ge=0, description="Number of Torque keys in the directory.")
    failure_policy: str = Field(..., description="How forwarding failures are handled.")
