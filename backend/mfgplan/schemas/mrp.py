"""
MRP (Material Requirements Planning) Pydantic Schemas

Schemas for:
- MRP run submission and responses
- Run progress polling
- Recommendations and their state transitions
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Literal, Optional
from datetime import datetime, date
from decimal import Decimal


# ============================================================================
# MRP Run Schemas
# ============================================================================

class MRPRunRequest(BaseModel):
    """Run submission. ``run_async`` unset falls back to the server default."""
    name: Optional[str] = Field(None, max_length=200)
    planning_horizon_start: Optional[date] = None
    planning_horizon_end: Optional[date] = None
    include_safety_stock: bool = True
    respect_lead_times: bool = True
    consider_wip: bool = True
    net_change: bool = False
    product_ids: Optional[List[int]] = None
    category_ids: Optional[List[int]] = None
    make_or_buy: Optional[Literal["make", "buy"]] = None
    warehouse_ids: Optional[List[int]] = None
    exclude_warehouse_ids: Optional[List[int]] = None
    run_async: Optional[bool] = None
    created_by: Optional[str] = Field(None, max_length=100)


class MRPRunResponse(BaseModel):
    id: int
    run_number: str
    name: Optional[str] = None
    status: str
    planning_horizon_start: date
    planning_horizon_end: date
    include_safety_stock: bool
    respect_lead_times: bool
    consider_wip: bool
    net_change: bool
    product_filters: Optional[Dict[str, Any]] = None
    warehouse_filters: Optional[Dict[str, Any]] = None
    products_total: int = 0
    products_processed: int = 0
    progress_percentage: float = 0.0
    recommendations_generated: int = 0
    warnings_count: int = 0
    warnings_summary: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class MRPRunListResponse(BaseModel):
    items: List[MRPRunResponse]
    total: int


class MRPProgressResponse(BaseModel):
    run_id: int
    run_number: str
    status: str
    products_total: int
    products_processed: int
    percentage: float
    current_product_id: Optional[int] = None
    recommendations_generated: int
    warnings_count: int
    updated_at: Optional[datetime] = None
    error_message: Optional[str] = None


# ============================================================================
# Recommendation Schemas
# ============================================================================

class RecommendationResponse(BaseModel):
    id: int
    mrp_run_id: int
    product_id: int
    warehouse_id: Optional[int] = None
    recommendation_type: str
    required_date: date
    suggested_date: date
    due_date: Optional[date] = None
    gross_requirement: Decimal
    net_requirement: Decimal
    suggested_quantity: Decimal
    current_stock: Optional[Decimal] = None
    projected_stock: Optional[Decimal] = None
    demand_source_type: Optional[str] = None
    demand_source_id: Optional[int] = None
    priority: str
    is_urgent: bool
    urgency_reason: Optional[str] = None
    status: str
    is_overdue: bool = False
    status_changed_at: Optional[datetime] = None
    status_changed_by: Optional[str] = None
    actioned_at: Optional[datetime] = None
    actioned_by: Optional[str] = None
    action_reference_type: Optional[str] = None
    action_reference_id: Optional[int] = None
    action_notes: Optional[str] = None
    calculation_details: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(from_attributes=True)


class RecommendationListResponse(BaseModel):
    items: List[RecommendationResponse]
    total: int


class RejectRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=2000)
    user: Optional[str] = Field(None, max_length=100)


class ActionRequest(BaseModel):
    reference_type: Literal["purchase_order", "production_order", "work_order"]
    reference_id: Optional[int] = None
    notes: Optional[str] = Field(None, max_length=2000)
    user: Optional[str] = Field(None, max_length=100)


class BulkRecommendationRequest(BaseModel):
    ids: List[int] = Field(..., min_length=1, max_length=1000)
    notes: Optional[str] = Field(None, max_length=2000)
    user: Optional[str] = Field(None, max_length=100)


class TransitionResponse(BaseModel):
    success: bool
    recommendation: Optional[RecommendationResponse] = None
    message: Optional[str] = None


class BulkTransitionResponse(BaseModel):
    requested: int
    updated: int
    skipped: int


class ExpireStaleRequest(BaseModel):
    before: Optional[date] = None


class MRPStatisticsResponse(BaseModel):
    total_runs: int
    last_completed_run: Optional[Dict[str, Any]] = None
    pending_recommendations: int
    urgent_recommendations: int
    overdue_recommendations: int
    pending_by_type: Dict[str, int]
