"""
Product and unit-of-measure models

Products are the nodes of the planning graph: finished goods, sub-assemblies
and purchased components. Planning only reads them.
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Boolean, Text, ForeignKey, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from datetime import datetime

from mfgplan.db.base import Base


class Product(Base):
    """
    Unified item model for everything that can appear on a BOM or an MRP
    recommendation:
    - finished_good: Products sold to customers
    - component: Parts used in BOMs (bought or made)
    - supply: Consumables
    """
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    sku = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    unit = Column(String(20), default='EA', nullable=False)

    # Item classification
    item_type = Column(String(20), default='finished_good', nullable=False)  # finished_good, component, supply
    procurement_type = Column(String(20), default='buy', nullable=False)  # 'make', 'buy', 'make_or_buy'
    category_id = Column(Integer, nullable=True, index=True)

    # Purchasing & Inventory Management
    lead_time_days = Column(Integer, nullable=True)  # Supplier or manufacturing lead time
    min_order_qty = Column(Numeric(18, 4), nullable=True)
    reorder_point = Column(Numeric(18, 4), nullable=True)
    safety_stock = Column(Numeric(18, 4), default=0)  # MRP safety stock buffer

    active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    boms = relationship("BOM", back_populates="product", foreign_keys="BOM.product_id")
    uom_conversions = relationship(
        "ProductUomConversion", back_populates="product", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Product {self.sku}: {self.name}>"

    @property
    def can_be_manufactured(self) -> bool:
        """Make-items need this flag AND an active default BOM to be planned as work orders."""
        return self.procurement_type in ("make", "make_or_buy")

    @property
    def can_be_purchased(self) -> bool:
        return self.procurement_type in ("buy", "make_or_buy")


class UnitOfMeasure(Base):
    """
    Configured units. Each unit belongs to a class (mass, length, ...) and
    converts to the class base unit by ``to_base_factor``.
    """
    __tablename__ = "units_of_measure"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(20), unique=True, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    uom_class = Column(String(20), nullable=False)  # quantity, mass, length, volume, time
    base_unit_code = Column(String(20), nullable=False)
    to_base_factor = Column(Numeric(20, 10), nullable=False, default=1)
    active = Column(Boolean, default=True, nullable=False)

    def __repr__(self):
        return f"<UnitOfMeasure {self.code} ({self.uom_class})>"


class ProductUomConversion(Base):
    """
    Product-specific conversion, e.g. 1 BOX of this screw = 250 EA.

    ``1 from_unit = factor × to_unit``. The reverse direction uses 1/factor.
    """
    __tablename__ = "product_uom_conversions"
    __table_args__ = (
        UniqueConstraint("product_id", "from_unit", "to_unit", name="uq_product_uom_conversion"),
    )

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    from_unit = Column(String(20), nullable=False)
    to_unit = Column(String(20), nullable=False)
    factor = Column(Numeric(20, 10), nullable=False)

    product = relationship("Product", back_populates="uom_conversions")

    def __repr__(self):
        return f"<ProductUomConversion product={self.product_id} 1 {self.from_unit} = {self.factor} {self.to_unit}>"
