"""
Bill of Materials Pydantic Schemas
"""
from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Any, Dict, List, Optional
from datetime import datetime, date
from decimal import Decimal


# ============================================================================
# BOM Line Schemas
# ============================================================================

class BOMLineBase(BaseModel):
    """Base BOM line fields"""
    component_id: int = Field(..., description="Component product ID")
    quantity: Decimal = Field(..., gt=0, description="Quantity per BOM base quantity")
    unit: Optional[str] = Field(None, max_length=20, description="Defaults to the component's unit")
    sequence: Optional[int] = Field(None, description="Line sequence/order")
    scrap_factor: Decimal = Field(Decimal("0"), ge=0, le=100, description="Scrap percentage")
    is_optional: bool = False
    is_phantom: bool = False
    notes: Optional[str] = Field(None, max_length=1000)


class BOMLineCreate(BOMLineBase):
    """Create a new BOM line"""
    pass


class BOMLineUpdate(BaseModel):
    """Update an existing BOM line"""
    quantity: Optional[Decimal] = Field(None, gt=0)
    unit: Optional[str] = Field(None, max_length=20)
    sequence: Optional[int] = None
    scrap_factor: Optional[Decimal] = Field(None, ge=0, le=100)
    is_optional: Optional[bool] = None
    is_phantom: Optional[bool] = None
    notes: Optional[str] = Field(None, max_length=1000)


class BOMLineResponse(BOMLineBase):
    id: int
    bom_id: int
    sequence: int

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# BOM Schemas
# ============================================================================

class BOMCreate(BaseModel):
    product_id: int
    base_quantity: Decimal = Field(Decimal("1"), gt=0)
    unit: Optional[str] = Field(None, max_length=20)
    code: Optional[str] = Field(None, max_length=50)
    name: Optional[str] = Field(None, max_length=255)
    version: int = Field(1, ge=1)
    effective_date: Optional[date] = None
    expiry_date: Optional[date] = None
    notes: Optional[str] = None
    lines: List[BOMLineCreate] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_dates(self):
        if self.effective_date and self.expiry_date and self.expiry_date < self.effective_date:
            raise ValueError("expiry_date must not be before effective_date")
        return self


class BOMResponse(BaseModel):
    id: int
    product_id: int
    code: Optional[str] = None
    name: Optional[str] = None
    version: int
    revision: Optional[str] = None
    base_quantity: Decimal
    unit: str
    status: str
    is_default: bool
    effective_date: Optional[date] = None
    expiry_date: Optional[date] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    lines: List[BOMLineResponse] = []

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Explosion Schemas
# ============================================================================

class ExplosionRequest(BaseModel):
    """
    Explosion parameters.

    ``as_tree`` / ``aggregate_by_product`` left unset lets the server pick:
    a tree for multi-level BOMs, an aggregated flat list otherwise.
    """
    quantity: Decimal = Field(Decimal("1"), gt=0)
    unit: Optional[str] = Field(None, max_length=20)
    include_optional: bool = False
    explode_all_levels: bool = True
    aggregate_by_product: Optional[bool] = None
    as_tree: Optional[bool] = None
    max_depth: Optional[int] = Field(None, ge=1, le=50)


class ExplosionResponse(BaseModel):
    bom_id: int
    product_id: int
    quantity: float
    unit: str
    structure: str = Field(..., description="tree | flat")
    aggregated: bool
    truncated: bool
    max_level: int
    warnings: List[str] = []
    nodes: Optional[List[Dict[str, Any]]] = None
    items: Optional[List[Dict[str, Any]]] = None


class StructureResponse(BaseModel):
    bom_id: int
    is_multi_level: bool


class CacheInvalidationResponse(BaseModel):
    bom_ids: List[int]
    entries_removed: int
