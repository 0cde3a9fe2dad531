"""
Bill of Materials models
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, DateTime, Text, Date, ForeignKey
)
from sqlalchemy.orm import relationship
from datetime import datetime, date
from typing import Optional

from mfgplan.db.base import Base


class BOM(Base):
    """
    A bill of materials: the recipe for ``base_quantity`` units of a make-item.

    A product may have several BOMs (versions, alternates). At most one
    active BOM per product carries ``is_default``; BomService enforces this
    when a BOM is activated or made default.
    """
    __tablename__ = "boms"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    code = Column(String(50), nullable=True, index=True)
    name = Column(String(255), nullable=True)

    # Version control
    version = Column(Integer, default=1, nullable=False)
    revision = Column(String(20), default="1.0", nullable=True)

    # Quantity this BOM produces
    base_quantity = Column(Numeric(18, 4), default=1, nullable=False)
    unit = Column(String(20), default="EA", nullable=False)

    # Lifecycle: draft, active, obsolete
    status = Column(String(20), default="draft", nullable=False, index=True)
    is_default = Column(Boolean, default=False, nullable=False)

    # Validity window (inclusive). NULL means unbounded.
    effective_date = Column(Date, nullable=True)
    expiry_date = Column(Date, nullable=True)

    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    product = relationship("Product", back_populates="boms", foreign_keys=[product_id])
    lines = relationship(
        "BOMLine",
        back_populates="bom",
        cascade="all, delete-orphan",
        order_by="BOMLine.sequence",
        foreign_keys="BOMLine.bom_id",
    )

    def __repr__(self):
        return f"<BOM {self.code or self.id} product={self.product_id} v{self.version} ({self.status})>"

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def is_effective_on(self, on_date: Optional[date] = None) -> bool:
        """True when ``on_date`` (default today) falls inside the validity window."""
        on_date = on_date or date.today()
        if self.effective_date and on_date < self.effective_date:
            return False
        if self.expiry_date and on_date > self.expiry_date:
            return False
        return True


class BOMLine(Base):
    """
    One component row of a BOM.

    ``quantity`` is per ``bom.base_quantity`` units of the parent.
    ``scrap_factor`` is a percentage applied multiplicatively.
    """
    __tablename__ = "bom_lines"

    id = Column(Integer, primary_key=True, index=True)
    bom_id = Column(Integer, ForeignKey("boms.id", ondelete="CASCADE"), nullable=False, index=True)
    component_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    sequence = Column(Integer, default=10, nullable=False)

    quantity = Column(Numeric(18, 6), nullable=False)
    unit = Column(String(20), nullable=True)  # NULL means the component's own unit
    scrap_factor = Column(Numeric(5, 2), default=0, nullable=False)  # percent

    is_optional = Column(Boolean, default=False, nullable=False)
    is_phantom = Column(Boolean, default=False, nullable=False)

    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    bom = relationship("BOM", back_populates="lines", foreign_keys=[bom_id])
    component = relationship("Product", foreign_keys=[component_id])

    def __repr__(self):
        return f"<BOMLine bom={self.bom_id} component={self.component_id} qty={self.quantity}>"
