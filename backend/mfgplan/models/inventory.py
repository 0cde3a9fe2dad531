"""
Inventory models
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, Boolean, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
from decimal import Decimal

from mfgplan.db.base import Base


class InventoryLocation(Base):
    """Warehouse / stocking location"""
    __tablename__ = "inventory_locations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    code = Column(String(50), nullable=True)
    type = Column(String(50), nullable=True)  # warehouse, shelf, bin, etc.
    active = Column(Boolean, default=True, nullable=True)

    inventory_items = relationship("Inventory", back_populates="location")

    def __repr__(self):
        return f"<InventoryLocation {self.code}: {self.name}>"


class Inventory(Base):
    """On-hand balance of one product at one location"""
    __tablename__ = "inventory"
    __table_args__ = (
        UniqueConstraint("product_id", "location_id", name="uq_inventory_product_location"),
    )

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey('products.id'), nullable=False, index=True)
    location_id = Column(Integer, ForeignKey('inventory_locations.id'), nullable=False, index=True)

    on_hand_quantity = Column(Numeric(18, 4), default=0, nullable=False)
    allocated_quantity = Column(Numeric(18, 4), default=0, nullable=False)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    location = relationship("InventoryLocation", back_populates="inventory_items")

    def __repr__(self):
        return f"<Inventory product={self.product_id} location={self.location_id} on_hand={self.on_hand_quantity}>"

    @property
    def available_quantity(self) -> Decimal:
        return Decimal(str(self.on_hand_quantity or 0)) - Decimal(str(self.allocated_quantity or 0))
