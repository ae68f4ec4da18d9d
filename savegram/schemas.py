"""
Shared Pydantic schemas for the API.
"""
from typing import List, Optional

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    error: str
    reasons: Optional[List[str]] = None


class HealthResponse(BaseModel):
    status: str
    timestamp: int
