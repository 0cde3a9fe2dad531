"""
Sales Order models - independent demand for MRP
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Date, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
from decimal import Decimal

from mfgplan.db.base import Base


class SalesOrder(Base):
    __tablename__ = "sales_orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(50), unique=True, nullable=False, index=True)
    # draft, pending, confirmed, in_production, shipped, completed, cancelled
    status = Column(String(50), default="draft", nullable=False, index=True)
    location_id = Column(Integer, ForeignKey("inventory_locations.id"), nullable=True, index=True)
    requested_date = Column(Date, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    lines = relationship("SalesOrderLine", back_populates="sales_order", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<SalesOrder {self.order_number} ({self.status})>"


class SalesOrderLine(Base):
    __tablename__ = "sales_order_lines"

    id = Column(Integer, primary_key=True, index=True)
    sales_order_id = Column(Integer, ForeignKey("sales_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    quantity = Column(Numeric(18, 4), nullable=False)
    shipped_quantity = Column(Numeric(18, 4), default=0, nullable=False)
    due_date = Column(Date, nullable=True, index=True)  # falls back to order requested_date

    sales_order = relationship("SalesOrder", back_populates="lines")

    @property
    def open_quantity(self) -> Decimal:
        return max(
            Decimal("0"),
            Decimal(str(self.quantity or 0)) - Decimal(str(self.shipped_quantity or 0)),
        )
