"""
BOM Lifecycle Service

Creates and edits BOMs and keeps the rules that explosion and MRP rely on:
- Status transitions (draft -> active -> obsolete -> draft)
- At most one active default BOM per product
- No circular references between products through default BOMs
- Explosion cache invalidation whenever a structure changes
"""
from datetime import date
from decimal import Decimal
from typing import List, Optional, Set

from sqlalchemy.orm import Session

from mfgplan.core.status_config import BomStatus, get_allowed_bom_transitions, is_valid_bom_transition
from mfgplan.exceptions import (
    CyclicBomError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from mfgplan.logging_config import get_logger
from mfgplan.models.bom import BOM, BOMLine
from mfgplan.models.product import Product
from mfgplan.services.bom_helpers import get_bom_or_raise, get_default_bom, get_parent_bom_ids
from mfgplan.services.explosion_cache import ExplosionCache, get_explosion_cache
from mfgplan.services.uom_service import UnitConverter, normalize_unit

logger = get_logger(__name__)


class BomService:
    def __init__(self, db: Session, cache: Optional[ExplosionCache] = None):
        self.db = db
        self.cache = cache or get_explosion_cache()
        self.converter = UnitConverter(db)

    # ========================================================================
    # Creation and line editing
    # ========================================================================

    def create_bom(
        self,
        product_id: int,
        base_quantity: Decimal = Decimal("1"),
        unit: Optional[str] = None,
        code: Optional[str] = None,
        name: Optional[str] = None,
        version: int = 1,
        effective_date: Optional[date] = None,
        expiry_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> BOM:
        """Create a draft BOM for a product."""
        product = self.db.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product", product_id)
        if Decimal(str(base_quantity)) <= 0:
            raise ValidationError("Base quantity must be positive", field="base_quantity", value=base_quantity)
        if effective_date and expiry_date and expiry_date < effective_date:
            raise ValidationError("Expiry date is before effective date", field="expiry_date")

        bom = BOM(
            product_id=product_id,
            base_quantity=base_quantity,
            unit=normalize_unit(unit or product.unit),
            code=code or f"BOM-{product.sku}-V{version}",
            name=name or product.name,
            version=version,
            status=BomStatus.DRAFT.value,
            is_default=False,
            effective_date=effective_date,
            expiry_date=expiry_date,
            notes=notes,
        )
        self.db.add(bom)
        self.db.commit()
        self.db.refresh(bom)
        logger.info("BOM created", extra={"bom_id": bom.id, "product_id": product_id})
        return bom

    def add_line(
        self,
        bom_id: int,
        component_id: int,
        quantity: Decimal,
        unit: Optional[str] = None,
        scrap_factor: Decimal = Decimal("0"),
        is_optional: bool = False,
        is_phantom: bool = False,
        sequence: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> BOMLine:
        """
        Add a component line.

        Raises:
            BomNotFoundError / NotFoundError: Unknown BOM or component
            ValidationError: Non-positive quantity or scrap outside 0-100
            CyclicBomError: The component (through its default BOMs) already uses this BOM's product
            UnitConversionError: Line unit does not convert to the component's unit
        """
        bom = get_bom_or_raise(self.db, bom_id)
        component = self.db.get(Product, component_id)
        if component is None:
            raise NotFoundError("Product", component_id)

        qty = Decimal(str(quantity))
        if qty <= 0:
            raise ValidationError("Quantity must be positive", field="quantity", value=quantity)
        scrap = Decimal(str(scrap_factor or 0))
        if scrap < 0 or scrap > 100:
            raise ValidationError("Scrap factor must be between 0 and 100", field="scrap_factor", value=scrap)

        self.validate_no_circular_reference(bom, component_id)

        line_unit = normalize_unit(unit or component.unit)
        # Raises UnitConversionError when the units cannot meet
        self.converter.get_conversion_factor(line_unit, component.unit or "EA", product_id=component_id)

        if sequence is None:
            sequence = (max((ln.sequence or 0) for ln in bom.lines) + 10) if bom.lines else 10

        line = BOMLine(
            bom_id=bom.id,
            component_id=component_id,
            quantity=qty,
            unit=line_unit,
            scrap_factor=scrap,
            is_optional=is_optional,
            is_phantom=is_phantom,
            sequence=sequence,
            notes=notes,
        )
        self.db.add(line)
        self.db.commit()
        self.db.refresh(line)
        self.invalidate_structure(bom)
        logger.info(
            "BOM line added",
            extra={"bom_id": bom.id, "component_id": component_id, "is_phantom": is_phantom},
        )
        return line

    def update_line(self, line_id: int, **changes) -> BOMLine:
        """Update quantity, scrap, flags, unit, sequence or notes of a line."""
        line = self.db.get(BOMLine, line_id)
        if line is None:
            raise NotFoundError("BOM line", line_id)

        allowed = {"quantity", "unit", "scrap_factor", "is_optional", "is_phantom", "sequence", "notes"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        if "quantity" in changes and Decimal(str(changes["quantity"])) <= 0:
            raise ValidationError("Quantity must be positive", field="quantity", value=changes["quantity"])
        if "scrap_factor" in changes:
            scrap = Decimal(str(changes["scrap_factor"] or 0))
            if scrap < 0 or scrap > 100:
                raise ValidationError("Scrap factor must be between 0 and 100", field="scrap_factor")
            changes["scrap_factor"] = scrap
        if changes.get("unit"):
            changes["unit"] = normalize_unit(changes["unit"])
            component = self.db.get(Product, line.component_id)
            self.converter.get_conversion_factor(
                changes["unit"], component.unit or "EA", product_id=line.component_id
            )

        for key, value in changes.items():
            setattr(line, key, value)
        self.db.commit()
        self.db.refresh(line)
        self.invalidate_structure(line.bom)
        return line

    def remove_line(self, line_id: int) -> None:
        line = self.db.get(BOMLine, line_id)
        if line is None:
            raise NotFoundError("BOM line", line_id)
        bom = line.bom
        self.db.delete(line)
        self.db.commit()
        self.db.refresh(bom)
        self.invalidate_structure(bom)
        logger.info("BOM line removed", extra={"bom_id": bom.id, "line_id": line_id})

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def _transition(self, bom: BOM, new_status: BomStatus) -> None:
        if not is_valid_bom_transition(bom.status, new_status.value):
            raise InvalidStateError(
                f"Cannot change BOM from {bom.status} to {new_status.value}",
                current_state=bom.status,
                allowed_states=get_allowed_bom_transitions(bom.status),
            )
        bom.status = new_status.value

    def activate(self, bom_id: int) -> BOM:
        """Activate a BOM. It also becomes the default if the product has none."""
        bom = get_bom_or_raise(self.db, bom_id)
        if not bom.lines:
            raise ValidationError("Cannot activate a BOM without lines", details={"bom_id": bom_id})
        for line in bom.lines:
            self.validate_no_circular_reference(bom, line.component_id)

        self._transition(bom, BomStatus.ACTIVE)
        has_default = self.db.query(BOM).filter(
            BOM.product_id == bom.product_id,
            BOM.id != bom.id,
            BOM.status == BomStatus.ACTIVE.value,
            BOM.is_default == True,  # noqa: E712
        ).first()
        if has_default is None:
            self._make_default(bom)
        self.db.commit()
        self.db.refresh(bom)
        self.invalidate_structure(bom)
        logger.info("BOM activated", extra={"bom_id": bom.id, "is_default": bom.is_default})
        return bom

    def set_default(self, bom_id: int) -> BOM:
        """Make an active BOM the product's single default."""
        bom = get_bom_or_raise(self.db, bom_id)
        if bom.status != BomStatus.ACTIVE.value:
            raise InvalidStateError(
                "Only active BOMs can be the default",
                current_state=bom.status,
                allowed_states=[BomStatus.ACTIVE.value],
            )
        for line in bom.lines:
            self.validate_no_circular_reference(bom, line.component_id)
        self._make_default(bom)
        self.db.commit()
        self.db.refresh(bom)
        self.invalidate_structure(bom)
        return bom

    def obsolete(self, bom_id: int) -> BOM:
        bom = get_bom_or_raise(self.db, bom_id)
        self._transition(bom, BomStatus.OBSOLETE)
        bom.is_default = False
        self.db.commit()
        self.db.refresh(bom)
        self.invalidate_structure(bom)
        logger.info("BOM obsoleted", extra={"bom_id": bom.id})
        return bom

    def revert_to_draft(self, bom_id: int) -> BOM:
        bom = get_bom_or_raise(self.db, bom_id)
        self._transition(bom, BomStatus.DRAFT)
        bom.is_default = False
        self.db.commit()
        self.db.refresh(bom)
        self.invalidate_structure(bom)
        return bom

    def _make_default(self, bom: BOM) -> None:
        # Same transaction as the caller's commit
        self.db.query(BOM).filter(
            BOM.product_id == bom.product_id,
            BOM.id != bom.id,
            BOM.is_default == True,  # noqa: E712
        ).update({BOM.is_default: False}, synchronize_session="fetch")
        bom.is_default = True

    # ========================================================================
    # Validation
    # ========================================================================

    def validate_no_circular_reference(self, bom: BOM, component_id: int) -> None:
        """
        Reject a component that is, or (through default BOMs) contains, the BOM's product.

        Raises:
            CyclicBomError: with the chain of BOM ids that closes the loop
        """
        target = bom.product_id
        if component_id == target:
            raise CyclicBomError([bom.id, bom.id], message="A BOM cannot contain its own product")

        seen: Set[int] = set()

        def visit(product_id: int, path: List[int]) -> None:
            if product_id in seen:
                return
            seen.add(product_id)
            sub = get_default_bom(self.db, product_id)
            if sub is None or sub.id == bom.id:
                return
            for line in sub.lines:
                if line.component_id == target:
                    raise CyclicBomError(path + [sub.id, bom.id])
                visit(line.component_id, path + [sub.id])

        visit(component_id, [bom.id])

    # ========================================================================
    # Cache invalidation
    # ========================================================================

    def affected_bom_ids(self, bom: BOM) -> List[int]:
        """
        BOMs whose cached explosion may contain ``bom``: the BOM itself plus
        every BOM that reaches its product through phantom lines.
        """
        affected: Set[int] = {bom.id}
        frontier = [bom.product_id]
        visited_products: Set[int] = set()
        while frontier:
            product_id = frontier.pop()
            if product_id in visited_products:
                continue
            visited_products.add(product_id)
            for parent_bom_id in get_parent_bom_ids(self.db, product_id, phantom_only=True):
                if parent_bom_id in affected:
                    continue
                affected.add(parent_bom_id)
                parent = self.db.get(BOM, parent_bom_id)
                if parent is not None:
                    frontier.append(parent.product_id)
        return sorted(affected)

    def invalidate_structure(self, bom: BOM) -> List[int]:
        ids = self.affected_bom_ids(bom)
        for bom_id in ids:
            self.cache.invalidate(bom_id)
        return ids
