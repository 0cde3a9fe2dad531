"""
Production Order models

Read-only inputs for planning: released/in-progress orders are WIP supply,
and their open operations load work-center capacity.
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Date, ForeignKey, Text
from sqlalchemy.orm import relationship
from datetime import datetime
from decimal import Decimal

from mfgplan.db.base import Base


class ProductionOrder(Base):
    """
    Production Order (work order) - manufacturing instruction for a quantity of product.

    Status Flow:
    draft -> released -> in_progress -> complete
                      -> cancelled
    """
    __tablename__ = "production_orders"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, nullable=False, index=True)

    product_id = Column(Integer, ForeignKey('products.id'), nullable=False, index=True)
    bom_id = Column(Integer, ForeignKey('boms.id'), nullable=True, index=True)
    location_id = Column(Integer, ForeignKey('inventory_locations.id'), nullable=True, index=True)

    quantity_ordered = Column(Numeric(18, 4), nullable=False)
    quantity_completed = Column(Numeric(18, 4), default=0, nullable=False)
    quantity_scrapped = Column(Numeric(18, 4), default=0, nullable=False)

    status = Column(String(50), default='draft', nullable=False, index=True)

    due_date = Column(Date, nullable=True, index=True)
    scheduled_start = Column(DateTime, nullable=True)
    scheduled_end = Column(DateTime, nullable=True)

    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    operations = relationship(
        "ProductionOrderOperation",
        back_populates="production_order",
        cascade="all, delete-orphan",
        order_by="ProductionOrderOperation.sequence",
    )

    def __repr__(self):
        return f"<ProductionOrder {self.code}: {self.quantity_ordered} of product {self.product_id} ({self.status})>"

    @property
    def quantity_remaining(self) -> Decimal:
        ordered = Decimal(str(self.quantity_ordered or 0))
        done = Decimal(str(self.quantity_completed or 0)) + Decimal(str(self.quantity_scrapped or 0))
        return max(Decimal("0"), ordered - done)


class ProductionOrderOperation(Base):
    """One routing step of a production order, executed at a work center."""
    __tablename__ = "production_order_operations"

    id = Column(Integer, primary_key=True, index=True)
    production_order_id = Column(
        Integer, ForeignKey('production_orders.id', ondelete='CASCADE'), nullable=False, index=True
    )
    work_center_id = Column(Integer, ForeignKey('work_centers.id'), nullable=False, index=True)

    sequence = Column(Integer, nullable=False)
    operation_code = Column(String(50), nullable=True)
    operation_name = Column(String(200), nullable=True)

    # pending, queued, running, complete, skipped
    status = Column(String(50), default='pending', nullable=False, index=True)

    planned_setup_minutes = Column(Numeric(10, 2), default=0, nullable=False)
    planned_run_minutes = Column(Numeric(10, 2), nullable=False)

    scheduled_start = Column(DateTime, nullable=True)
    scheduled_end = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    production_order = relationship("ProductionOrder", back_populates="operations")
    work_center = relationship("WorkCenter", back_populates="operations")

    def __repr__(self):
        return f"<ProductionOrderOperation {self.sequence} wc={self.work_center_id} ({self.status})>"

    @property
    def planned_hours(self) -> Decimal:
        setup = Decimal(str(self.planned_setup_minutes or 0))
        run = Decimal(str(self.planned_run_minutes or 0))
        return (setup + run) / Decimal("60")
