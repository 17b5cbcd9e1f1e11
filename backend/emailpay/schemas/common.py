"""
Common Pydantic schemas
"""

from typing import Optional
from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Health check response"""
    status: str


class ReadyResponse(BaseModel):
    """Readiness check response"""
    status: str
    database: str
    redis: str


class ErrorBody(BaseModel):
    code: str
    message: str
    trace_id: Optional[str] = None


class ErrorResponse(BaseModel):
    """Error envelope returned by every endpoint"""
    error: ErrorBody
