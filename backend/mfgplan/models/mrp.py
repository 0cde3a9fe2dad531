"""
MRP models: runs, recommendations and the product change log

An MRPRun owns the recommendations it emits. The change log feeds
net-change runs with the products whose demand or stock moved.
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, DateTime, Date, ForeignKey, Text, JSON,
)
from sqlalchemy.orm import relationship
from datetime import datetime, date

from mfgplan.db.base import Base
from mfgplan.core.status_config import RECOMMENDATION_FINAL_STATUSES, MRP_RUN_TERMINAL_STATUSES


class MRPRun(Base):
    """
    A planning execution.

    Status Flow:
    pending -> running -> completed
                       -> failed
    pending | running -> cancelled
    """
    __tablename__ = "mrp_runs"

    id = Column(Integer, primary_key=True, index=True)
    run_number = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=True)

    # Horizon (inclusive)
    planning_horizon_start = Column(Date, nullable=False)
    planning_horizon_end = Column(Date, nullable=False)

    # Options
    include_safety_stock = Column(Boolean, default=True, nullable=False)
    respect_lead_times = Column(Boolean, default=True, nullable=False)
    consider_wip = Column(Boolean, default=True, nullable=False)
    net_change = Column(Boolean, default=False, nullable=False)
    product_filters = Column(JSON, nullable=True)  # product_ids, category_ids, make_or_buy
    warehouse_filters = Column(JSON, nullable=True)  # warehouse_ids, exclude_warehouse_ids

    status = Column(String(20), default="pending", nullable=False, index=True)
    error_message = Column(Text, nullable=True)

    # Progress
    products_total = Column(Integer, default=0, nullable=False)
    products_processed = Column(Integer, default=0, nullable=False)
    current_product_id = Column(Integer, nullable=True)
    progress_updated_at = Column(DateTime, nullable=True)

    # Results
    recommendations_generated = Column(Integer, default=0, nullable=False)
    warnings_count = Column(Integer, default=0, nullable=False)
    warnings_summary = Column(JSON, nullable=True)

    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    recommendations = relationship(
        "MRPRecommendation", back_populates="mrp_run", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<MRPRun {self.run_number} ({self.status})>"

    @property
    def is_terminal(self) -> bool:
        return self.status in MRP_RUN_TERMINAL_STATUSES

    @property
    def progress_percentage(self) -> float:
        if not self.products_total:
            return 100.0 if self.status == "completed" else 0.0
        return round(self.products_processed / self.products_total * 100, 1)

    @property
    def horizon_days(self) -> int:
        return (self.planning_horizon_end - self.planning_horizon_start).days + 1


class MRPRecommendation(Base):
    """
    One suggested purchase order or work order.

    Status Flow:
    pending -> approved -> actioned
    pending | approved -> rejected
    pending | approved -> expired
    """
    __tablename__ = "mrp_recommendations"

    id = Column(Integer, primary_key=True, index=True)
    mrp_run_id = Column(Integer, ForeignKey("mrp_runs.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    warehouse_id = Column(Integer, ForeignKey("inventory_locations.id"), nullable=True)

    recommendation_type = Column(String(20), nullable=False, index=True)  # purchase_order, work_order

    required_date = Column(Date, nullable=False, index=True)
    suggested_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=True)

    gross_requirement = Column(Numeric(18, 4), default=0, nullable=False)
    net_requirement = Column(Numeric(18, 4), default=0, nullable=False)
    suggested_quantity = Column(Numeric(18, 4), nullable=False)
    current_stock = Column(Numeric(18, 4), nullable=True)
    projected_stock = Column(Numeric(18, 4), nullable=True)

    demand_source_type = Column(String(30), nullable=True)  # sales_order, dependent, safety_stock
    demand_source_id = Column(Integer, nullable=True)

    priority = Column(String(20), default="medium", nullable=False, index=True)
    is_urgent = Column(Boolean, default=False, nullable=False)
    urgency_reason = Column(String(255), nullable=True)

    status = Column(String(20), default="pending", nullable=False, index=True)
    status_changed_at = Column(DateTime, nullable=True)
    status_changed_by = Column(String(100), nullable=True)
    actioned_at = Column(DateTime, nullable=True)
    actioned_by = Column(String(100), nullable=True)
    action_reference_type = Column(String(30), nullable=True)
    action_reference_id = Column(Integer, nullable=True)
    action_notes = Column(Text, nullable=True)

    calculation_details = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    mrp_run = relationship("MRPRun", back_populates="recommendations")
    product = relationship("Product")

    def __repr__(self):
        return (
            f"<MRPRecommendation {self.recommendation_type} product={self.product_id} "
            f"qty={self.suggested_quantity} ({self.status})>"
        )

    @property
    def is_final(self) -> bool:
        return self.status in RECOMMENDATION_FINAL_STATUSES

    @property
    def is_overdue(self) -> bool:
        return self.required_date < date.today() and not self.is_final

    @property
    def days_until_required(self) -> int:
        return (self.required_date - date.today()).days

    def summary(self) -> str:
        label = "Purchase Order" if self.recommendation_type == "purchase_order" else "Work Order"
        name = self.product.name if self.product else "Unknown"
        return f"{label}: {float(self.suggested_quantity):,.2f} {name} by {self.suggested_date.isoformat()}"

    def to_action_dict(self) -> dict:
        """Payload for the flow that turns this into a real PO or WO."""
        return {
            "recommendation_id": self.id,
            "type": self.recommendation_type,
            "product_id": self.product_id,
            "warehouse_id": self.warehouse_id,
            "quantity": float(self.suggested_quantity),
            "required_date": self.required_date.isoformat(),
            "suggested_date": self.suggested_date.isoformat(),
        }


class MRPChangeLog(Base):
    """
    Products whose demand or stock changed since they were last planned.

    Rows are consumed (``processed_at`` set) by the net-change run that
    planned them.
    """
    __tablename__ = "mrp_change_log"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    reason = Column(String(50), nullable=True)  # sales_order, stock, purchase_order, bom
    changed_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    processed_at = Column(DateTime, nullable=True, index=True)
    processed_by_run_id = Column(Integer, ForeignKey("mrp_runs.id", ondelete="SET NULL"), nullable=True)

    def __repr__(self):
        return f"<MRPChangeLog product={self.product_id} reason={self.reason}>"
