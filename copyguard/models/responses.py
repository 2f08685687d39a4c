"""
Pydantic models for HTTP request and response bodies.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Error response model."""
    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Overall service status")
    version: str = Field(..., description="API version")
    components: Dict[str, Any] = Field(..., description="Component health status")


class IndexPassResponse(BaseModel):
    attempted: int = Field(..., description="Records picked up by the pass")
    indexed: int = Field(..., description="Records fully indexed after the pass")
    incomplete: int = Field(..., description="Records still missing a fingerprint or embedding")


class RefineRequest(BaseModel):
    suggestion: str = Field(..., min_length=1, description="Modification suggestion from an assessment result")


class RefineResponse(BaseModel):
    prompt: str = Field(..., description="Rewritten generation prompt, empty when the oracle failed")
