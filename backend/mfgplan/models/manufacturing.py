"""
Routing models

A routing lists the work-center operations that make one unit of a product.
MRP reads it to check that a suggested work order fits the calendars of the
work centers involved.
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Date, Boolean, ForeignKey, Text
from sqlalchemy.orm import relationship
from datetime import datetime
from decimal import Decimal

from mfgplan.db.base import Base


class Routing(Base):
    """
    Manufacturing routing of a product.

    Several versions can exist; planning uses the newest active one whose
    effective date has been reached.
    """
    __tablename__ = "routings"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    code = Column(String(50), nullable=False, index=True)
    name = Column(String(200), nullable=True)

    version = Column(Integer, default=1, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    effective_date = Column(Date, nullable=True)

    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    operations = relationship(
        "RoutingOperation",
        back_populates="routing",
        cascade="all, delete-orphan",
        order_by="RoutingOperation.sequence",
    )

    def __repr__(self):
        return f"<Routing {self.code} v{self.version} product={self.product_id}>"

    def hours_by_work_center(self, quantity: Decimal) -> dict:
        """Setup plus run hours per work center to make ``quantity`` units."""
        hours: dict = {}
        for op in self.operations:
            if not op.is_active:
                continue
            hours[op.work_center_id] = hours.get(op.work_center_id, Decimal("0")) + op.hours_for(quantity)
        return hours


class RoutingOperation(Base):
    """One step of a routing. Run time is per unit; setup is per order."""
    __tablename__ = "routing_operations"

    id = Column(Integer, primary_key=True, index=True)
    routing_id = Column(Integer, ForeignKey("routings.id", ondelete="CASCADE"), nullable=False, index=True)
    work_center_id = Column(Integer, ForeignKey("work_centers.id"), nullable=False, index=True)

    sequence = Column(Integer, nullable=False)
    operation_code = Column(String(50), nullable=True)  # 'CUT', 'WELD', 'ASSEMBLE'
    operation_name = Column(String(200), nullable=True)

    setup_time_minutes = Column(Numeric(10, 2), default=0, nullable=False)
    run_time_minutes = Column(Numeric(10, 2), nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    routing = relationship("Routing", back_populates="operations")
    work_center = relationship("WorkCenter")

    def __repr__(self):
        return f"<RoutingOperation {self.sequence} wc={self.work_center_id}>"

    def hours_for(self, quantity: Decimal) -> Decimal:
        setup = Decimal(str(self.setup_time_minutes or 0))
        run = Decimal(str(self.run_time_minutes or 0)) * Decimal(str(quantity))
        return (setup + run) / Decimal("60")
