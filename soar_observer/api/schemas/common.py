"""
Common Pydantic schemas for API responses.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ErrorDetail(BaseModel):
    """Body of ``HTTPException.detail`` raised by the routers."""
    error: str
    message: str


class HealthCheckResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    timestamp: datetime = Field(default_factory=_utcnow)
    version: str
    services: Dict[str, str] = Field(default_factory=dict)
    ingestion: Optional[Dict[str, Any]] = None
