"""Pydantic schemas for API responses."""

from launchbridge.schemas.uef import AccessTokenResponse, HealthResponse

__all__ = ["AccessTokenResponse", "HealthResponse"]
