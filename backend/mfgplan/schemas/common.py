"""
Common API Response Schemas

Standard error shape and small shared request/response models.
"""
from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    Error body returned by every exception handler.

    Error Codes:
        - VALIDATION_ERROR: Request validation failed (400)
        - UNIT_CONVERSION_ERROR: Units cannot be converted (400)
        - NOT_FOUND / BOM_NOT_FOUND / WORK_CENTER_NOT_FOUND / MRP_RUN_NOT_FOUND (404)
        - INVALID_STATE: Transition not allowed from the current status (409)
        - CYCLIC_BOM / CYCLIC_PRODUCT_DEPENDENCY: Structural cycle (422)
        - DATABASE_ERROR / INTERNAL_ERROR (500)

    Example:
        {
            "error": "CYCLIC_BOM",
            "message": "Circular BOM reference detected: 3 -> 7 -> 3",
            "details": {"path": [3, 7, 3], "rule": "bom_acyclic"},
            "timestamp": "2026-01-05T10:30:00Z"
        }
    """
    error: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error context")
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class MessageResponse(BaseModel):
    message: str


class CountResponse(BaseModel):
    count: int
    message: Optional[str] = None
