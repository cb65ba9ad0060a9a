"""Response schemas for the UEF and health endpoints."""

from pydantic import BaseModel, Field


class AccessTokenResponse(BaseModel):
    """Bearer token handed to the bridging page."""

    ok: bool = True
    token: str = Field(..., repr=False)


class HealthResponse(BaseModel):
    status: str = "healthy"
    service: str
