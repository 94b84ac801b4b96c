"""
API models and schemas for the FastAPI application.

Vehicle and booking documents are schema-free and pass through as plain
dictionaries; only the envelopes around them are modelled here.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class AuthenticatedUser(BaseModel):
    """Identity decoded from a verified bearer token."""
    uid: str = Field(..., description="Identity provider user id")
    email: str = Field(..., description="Verified email address")
    name: Optional[str] = Field(None, description="Display name, when present")
    claims: Dict[str, Any] = Field(default_factory=dict, description="Raw token claims")


class InsertResponse(BaseModel):
    """Result of a document insertion."""
    insertedId: str = Field(..., description="Store-assigned document identifier")
    acknowledged: bool = Field(True, description="Write acknowledged by the store")


class UpdateResponse(BaseModel):
    """Result summary of a partial update."""
    matchedCount: int = Field(..., description="Documents matched by the filter")
    modifiedCount: int = Field(..., description="Documents actually changed")
    acknowledged: bool = Field(True, description="Write acknowledged by the store")


class DeleteResponse(BaseModel):
    """Confirmation of a deletion."""
    message: str = Field(..., description="Human-readable confirmation")
    deletedCount: int = Field(..., description="Documents removed")


class LivenessResponse(BaseModel):
    """Liveness response model."""
    message: str = Field(..., description="Status message")
    timestamp: datetime = Field(..., description="Current server time")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(..., description="Current timestamp")
    version: str = Field(..., description="API version")
    database_status: str = Field(..., description="Database connection status")


class ErrorResponse(BaseModel):
    """Error response model."""
    error: str = Field(..., description="Error message")
    detail: Optional[str] = Field(None, description="Additional error details")
    status_code: int = Field(..., description="HTTP status code")
