"""
BOM lookup helpers shared by the explosion engine, BomService and MRP.
"""
from datetime import date
from typing import List, Optional
from sqlalchemy import or_
from sqlalchemy.orm import Session

from mfgplan.exceptions import BomNotFoundError
from mfgplan.models.bom import BOM, BOMLine


def get_bom_or_raise(db: Session, bom_id: int) -> BOM:
    bom = db.get(BOM, bom_id)
    if bom is None:
        raise BomNotFoundError(bom_id)
    return bom


def get_default_bom(db: Session, product_id: int, on_date: Optional[date] = None) -> Optional[BOM]:
    """
    The active default BOM of a product whose validity window contains ``on_date``.

    If stored data violates the single-default rule, the newest version wins.
    """
    on_date = on_date or date.today()
    return db.query(BOM).filter(
        BOM.product_id == product_id,
        BOM.status == "active",
        BOM.is_default == True,  # noqa: E712
        or_(BOM.effective_date.is_(None), BOM.effective_date <= on_date),
        or_(BOM.expiry_date.is_(None), BOM.expiry_date >= on_date),
    ).order_by(BOM.version.desc(), BOM.id.desc()).first()


def get_parent_bom_ids(db: Session, product_id: int, phantom_only: bool = False) -> List[int]:
    """Ids of BOMs that list ``product_id`` as a component."""
    query = db.query(BOMLine.bom_id).filter(BOMLine.component_id == product_id)
    if phantom_only:
        query = query.filter(BOMLine.is_phantom == True)  # noqa: E712
    return sorted({row[0] for row in query.all()})
