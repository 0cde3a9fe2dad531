"""
Purchase Order models - scheduled receipts for MRP
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Date, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
from decimal import Decimal

from mfgplan.db.base import Base


class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"

    id = Column(Integer, primary_key=True, index=True)
    po_number = Column(String(50), unique=True, nullable=False, index=True)
    # draft, ordered, partially_received, received, closed, cancelled
    status = Column(String(50), default="draft", nullable=False, index=True)
    location_id = Column(Integer, ForeignKey("inventory_locations.id"), nullable=True, index=True)
    expected_date = Column(Date, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    lines = relationship("PurchaseOrderLine", back_populates="purchase_order", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<PurchaseOrder {self.po_number} ({self.status})>"


class PurchaseOrderLine(Base):
    __tablename__ = "purchase_order_lines"

    id = Column(Integer, primary_key=True, index=True)
    purchase_order_id = Column(
        Integer, ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    quantity_ordered = Column(Numeric(18, 4), nullable=False)
    quantity_received = Column(Numeric(18, 4), default=0, nullable=False)
    expected_date = Column(Date, nullable=True)  # falls back to header expected_date

    purchase_order = relationship("PurchaseOrder", back_populates="lines")

    @property
    def open_quantity(self) -> Decimal:
        return max(
            Decimal("0"),
            Decimal(str(self.quantity_ordered or 0)) - Decimal(str(self.quantity_received or 0)),
        )
