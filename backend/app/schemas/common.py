"""
Affirmly Backend — Shared Pydantic Schemas
===========================================

What:  Base model and response shapes shared by every route module.
Why:   The mobile/web clients expect camelCase JSON (`sessionId`,
       `hasSubscription`) while the Python side stays snake_case.
How:   `ApiModel` applies `to_camel` aliases; FastAPI serializes response
       models by alias, and requests accept either spelling.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class MessageResponse(ApiModel):
    success: bool = True
    message: str


class Pagination(ApiModel):
    total: int = Field(description="Total items matching the query")
    page: int = Field(description="Current page (1-based)")
    pages: int = Field(description="Total number of pages")
    limit: int = Field(description="Page size")


class ErrorResponse(BaseModel):
    """
    Uniform error body returned by every exception handler.

    Example:
        {
            "success": false,
            "error": "validation_error",
            "message": "Invalid plan type. Must be \\"monthly\\" or \\"yearly\\"",
            "request_id": "1a2b3c4d"
        }
    """
    success: bool = Field(default=False)
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    scheduler: str = Field(description="Broadcast scheduler: running, stopped, disabled")
    uptime_seconds: float = Field(description="Seconds since service started")
