"""
BOM Explosion Engine

Expands a BOM into its component requirements:
1. Walk BOM -> BOMLine depth-first
2. Inline phantom lines whose component has an active default BOM
3. Detect cycles with the set of BOM ids on the current path
4. Bound recursion with max_depth (truncation, not failure)
5. Shape the output as a tree, a flat list, or a flat list aggregated by product

Quantities are Decimal and are only rounded when serialized.
"""
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy.orm import Session

from mfgplan.core.settings import Settings, get_settings
from mfgplan.exceptions import CyclicBomError, MaxDepthExceededError
from mfgplan.logging_config import get_logger
from mfgplan.models.bom import BOM, BOMLine
from mfgplan.models.product import Product
from mfgplan.services.bom_helpers import get_bom_or_raise, get_default_bom
from mfgplan.services.uom_service import UnitConverter, normalize_unit

logger = get_logger(__name__)

STRUCTURE_TREE = "tree"
STRUCTURE_FLAT = "flat"


# ============================================================================
# Options
# ============================================================================

@dataclass(frozen=True)
class ExplosionOptions:
    """Settings an explosion needs, resolved once per call."""
    max_depth: int = 10
    quantity_decimals: int = 4
    on_date: Optional[date] = None  # which BOM versions are effective; None = today

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ExplosionOptions":
        settings = settings or get_settings()
        return cls(
            max_depth=settings.BOM_EXPLOSION_MAX_DEPTH,
            quantity_decimals=settings.BOM_QUANTITY_DECIMALS,
        )


# ============================================================================
# Result types
# ============================================================================

def _round(value: Decimal, decimals: int) -> float:
    return float(value.quantize(Decimal(1).scaleb(-decimals)))


@dataclass
class ExplosionNode:
    """One BOM line occurrence in an explosion."""
    product_id: int
    product_sku: str
    product_name: str
    level: int
    quantity: Decimal
    unit: str
    source_bom_id: int
    bom_line_id: int
    parent_product_id: int
    scrap_factor: Decimal = Decimal("0")
    is_optional: bool = False
    is_phantom: bool = False
    exploded: bool = False  # phantom replaced by its sub-BOM; not itself a requirement
    children: List["ExplosionNode"] = field(default_factory=list)

    def scaled(self, factor: Decimal) -> "ExplosionNode":
        return replace(
            self,
            quantity=self.quantity * factor,
            children=[child.scaled(factor) for child in self.children],
        )

    def iter_requirements(self) -> Iterator["ExplosionNode"]:
        """Nodes that are real requirements: everything except inlined phantoms."""
        if self.exploded:
            for child in self.children:
                yield from child.iter_requirements()
        else:
            yield self

    def to_dict(self, decimals: int = 4) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "product_sku": self.product_sku,
            "product_name": self.product_name,
            "level": self.level,
            "quantity": _round(self.quantity, decimals),
            "unit": self.unit,
            "scrap_factor": float(self.scrap_factor),
            "is_optional": self.is_optional,
            "is_phantom": self.is_phantom,
            "source_bom_id": self.source_bom_id,
            "bom_line_id": self.bom_line_id,
            "parent_product_id": self.parent_product_id,
            "children": [child.to_dict(decimals) for child in self.children],
        }


@dataclass
class AggregatedRequirement:
    """All occurrences of one component summed over every path and level."""
    product_id: int
    product_sku: str
    product_name: str
    total_quantity: Decimal
    unit: str
    min_level: int
    sources: List[Dict[str, Any]] = field(default_factory=list)

    def scaled(self, factor: Decimal) -> "AggregatedRequirement":
        return replace(
            self,
            total_quantity=self.total_quantity * factor,
            sources=[{**s, "quantity": s["quantity"] * factor} for s in self.sources],
        )

    def to_dict(self, decimals: int = 4) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "product_sku": self.product_sku,
            "product_name": self.product_name,
            "total_quantity": _round(self.total_quantity, decimals),
            "unit": self.unit,
            "level": self.min_level,
            "sources": [{**s, "quantity": _round(s["quantity"], decimals)} for s in self.sources],
        }


@dataclass
class ExplosionResult:
    """
    Output of one explosion.

    Exactly one of ``nodes`` (tree, or flat non-aggregated) and ``items``
    (flat aggregated) is populated.
    """
    bom_id: int
    product_id: int
    quantity: Decimal
    unit: str
    structure: str
    aggregated: bool = False
    truncated: bool = False
    max_level: int = 0
    nodes: List[ExplosionNode] = field(default_factory=list)
    items: List[AggregatedRequirement] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def scaled(self, target_quantity: Decimal) -> "ExplosionResult":
        """Copy with every quantity multiplied by ``target_quantity / self.quantity``."""
        target = Decimal(str(target_quantity))
        factor = target / self.quantity if self.quantity else target
        return replace(
            self,
            quantity=target,
            nodes=[node.scaled(factor) for node in self.nodes],
            items=[item.scaled(factor) for item in self.items],
            warnings=list(self.warnings),
        )

    def requirements(self) -> List[ExplosionNode]:
        """Leaf requirements regardless of shape (empty for aggregated results)."""
        out: List[ExplosionNode] = []
        for node in self.nodes:
            out.extend(node.iter_requirements())
        return out

    def totals_by_product(self) -> Dict[int, Decimal]:
        """Total required quantity per component product."""
        if self.aggregated:
            return {item.product_id: item.total_quantity for item in self.items}
        totals: Dict[int, Decimal] = {}
        for node in self.requirements():
            totals[node.product_id] = totals.get(node.product_id, Decimal("0")) + node.quantity
        return totals

    def to_dict(self, decimals: int = 4) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "bom_id": self.bom_id,
            "product_id": self.product_id,
            "quantity": float(self.quantity),
            "unit": self.unit,
            "structure": self.structure,
            "aggregated": self.aggregated,
            "truncated": self.truncated,
            "max_level": self.max_level,
            "warnings": list(self.warnings),
        }
        if self.aggregated:
            data["items"] = [item.to_dict(decimals) for item in self.items]
        else:
            data["nodes"] = [node.to_dict(decimals) for node in self.nodes]
        return data


# ============================================================================
# Engine
# ============================================================================

@dataclass
class _Walk:
    """Mutable state of one explosion."""
    include_optional: bool
    explode_all_levels: bool
    max_depth: int
    truncated: bool = False
    max_level: int = 0
    warnings: List[str] = field(default_factory=list)


class BomExplosionEngine:
    """
    Explodes BOMs. Holds no state between calls apart from per-instance
    product/BOM lookup caches, so one engine per request or MRP run.
    """

    def __init__(
        self,
        db: Session,
        converter: Optional[UnitConverter] = None,
        options: Optional[ExplosionOptions] = None,
    ):
        self.db = db
        self.converter = converter or UnitConverter(db)
        self.options = options or ExplosionOptions.from_settings()
        self._products: Dict[int, Optional[Product]] = {}
        self._default_boms: Dict[int, Optional[BOM]] = {}

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _product(self, product_id: int) -> Optional[Product]:
        if product_id not in self._products:
            self._products[product_id] = self.db.get(Product, product_id)
        return self._products[product_id]

    def _explodable_bom(self, product_id: int) -> Optional[BOM]:
        """Active default BOM of a component, i.e. what a phantom line inlines."""
        if product_id not in self._default_boms:
            self._default_boms[product_id] = get_default_bom(self.db, product_id, self.options.on_date)
        return self._default_boms[product_id]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def explode(
        self,
        bom_id: int,
        quantity: Decimal = Decimal("1"),
        max_depth: Optional[int] = None,
        include_optional: bool = False,
        explode_all_levels: bool = True,
        aggregate_by_product: bool = False,
        as_tree: bool = False,
        unit: Optional[str] = None,
    ) -> ExplosionResult:
        """
        Explode a BOM for ``quantity`` units of its product.

        Args:
            bom_id: BOM to explode
            quantity: Parent quantity, in ``unit`` (defaults to the BOM's unit)
            max_depth: Recursion bound; defaults to the configured bound
            include_optional: Include lines flagged optional
            explode_all_levels: Inline phantom sub-BOMs; False returns level 0 only
            aggregate_by_product: Sum flat results per component (ignored when as_tree)
            as_tree: Keep parent/child nesting

        Returns:
            ExplosionResult. ``truncated`` is set when max_depth stopped the walk.

        Raises:
            BomNotFoundError: Unknown BOM id
            CyclicBomError: A BOM appears on its own ancestor path
            UnitConversionError: A line's unit does not convert to its component's unit
        """
        bom = get_bom_or_raise(self.db, bom_id)
        depth = max_depth if max_depth is not None else self.options.max_depth
        walk = _Walk(
            include_optional=include_optional,
            explode_all_levels=explode_all_levels,
            max_depth=max(1, depth),
        )

        bom_unit = normalize_unit(bom.unit)
        qty = Decimal(str(quantity))
        if unit is not None and normalize_unit(unit) != bom_unit:
            qty = self.converter.convert(qty, unit, bom_unit, product_id=bom.product_id)

        nodes = self._explode_bom(bom, qty, level=0, path=[bom.id], walk=walk)

        structure = STRUCTURE_TREE if as_tree else STRUCTURE_FLAT
        result = ExplosionResult(
            bom_id=bom.id,
            product_id=bom.product_id,
            quantity=qty,
            unit=bom_unit,
            structure=structure,
            truncated=walk.truncated,
            max_level=walk.max_level,
            warnings=walk.warnings,
        )

        if as_tree:
            result.nodes = nodes
        else:
            flat: List[ExplosionNode] = []
            for node in nodes:
                flat.extend(replace(n, children=[]) for n in node.iter_requirements())
            if aggregate_by_product:
                result.aggregated = True
                result.items = self._aggregate(flat)
            else:
                result.nodes = flat

        if walk.truncated:
            logger.warning(
                "BOM explosion truncated at max depth",
                extra={"bom_id": bom.id, "max_depth": walk.max_depth},
            )
        logger.debug(
            "BOM exploded",
            extra={
                "bom_id": bom.id,
                "quantity": str(qty),
                "structure": structure,
                "aggregated": result.aggregated,
                "max_level": walk.max_level,
            },
        )
        return result

    def has_sub_levels(self, bom_id: int) -> bool:
        """
        True when a full explosion of this BOM would reach level 1 or deeper,
        i.e. some line (optional ones included) is an explodable phantom.
        """
        bom = get_bom_or_raise(self.db, bom_id)
        for line in bom.lines:
            if line.is_phantom and self._explodable_bom(line.component_id) is not None:
                return True
        return False

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    def _explode_bom(
        self,
        bom: BOM,
        parent_qty: Decimal,
        level: int,
        path: List[int],
        walk: _Walk,
    ) -> List[ExplosionNode]:
        """Explode one BOM's lines at ``level``. ``path`` holds the ancestor BOM ids, ``bom`` included."""
        if level >= walk.max_depth:
            raise MaxDepthExceededError(walk.max_depth, bom.id)

        walk.max_level = max(walk.max_level, level)
        base_qty = Decimal(str(bom.base_quantity or 1))
        if base_qty <= 0:
            base_qty = Decimal("1")
        multiplier = parent_qty / base_qty

        nodes: List[ExplosionNode] = []
        for line in sorted(bom.lines, key=lambda ln: (ln.sequence or 0, ln.id or 0)):
            if line.is_optional and not walk.include_optional:
                continue
            node = self._line_node(bom, line, multiplier, level)
            nodes.append(node)

            if not (walk.explode_all_levels and line.is_phantom):
                continue
            sub_bom = self._explodable_bom(line.component_id)
            if sub_bom is None:
                # Phantom without an explodable BOM behaves as a normal leaf
                continue
            if sub_bom.id in path:
                raise CyclicBomError(path[path.index(sub_bom.id):] + [sub_bom.id])

            sub_qty = node.quantity
            sub_unit = normalize_unit(sub_bom.unit)
            if sub_unit != node.unit:
                sub_qty = self.converter.convert(sub_qty, node.unit, sub_unit, product_id=line.component_id)

            try:
                node.children = self._explode_bom(sub_bom, sub_qty, level + 1, path + [sub_bom.id], walk)
                node.exploded = True
            except MaxDepthExceededError:
                # Still fail on a cycle hidden beyond the bound
                self._assert_acyclic(sub_bom, path + [sub_bom.id])
                walk.truncated = True
                warning = (
                    f"Max depth {walk.max_depth} reached at BOM {sub_bom.id} "
                    f"(component {line.component_id}); sub-levels not exploded"
                )
                if warning not in walk.warnings:
                    walk.warnings.append(warning)
        return nodes

    def _line_node(self, bom: BOM, line: BOMLine, multiplier: Decimal, level: int) -> ExplosionNode:
        component = self._product(line.component_id)
        component_unit = normalize_unit(component.unit if component else None)
        line_unit = normalize_unit(line.unit, default=component_unit)

        scrap = Decimal(str(line.scrap_factor or 0))
        qty = Decimal(str(line.quantity)) * multiplier * (Decimal("1") + scrap / Decimal("100"))
        if line_unit != component_unit:
            qty = self.converter.convert(qty, line_unit, component_unit, product_id=line.component_id)

        return ExplosionNode(
            product_id=line.component_id,
            product_sku=component.sku if component else f"#{line.component_id}",
            product_name=component.name if component else "Unknown",
            level=level,
            quantity=qty,
            unit=component_unit,
            source_bom_id=bom.id,
            bom_line_id=line.id,
            parent_product_id=bom.product_id,
            scrap_factor=scrap,
            is_optional=bool(line.is_optional),
            is_phantom=bool(line.is_phantom),
        )

    def _assert_acyclic(self, bom: BOM, path: List[int]) -> None:
        """Depth-unbounded phantom walk used once the depth bound has cut exploration short."""
        done = set()

        def visit(current: BOM, current_path: List[int]) -> None:
            for line in current.lines:
                if not line.is_phantom:
                    continue
                sub = self._explodable_bom(line.component_id)
                if sub is None:
                    continue
                if sub.id in current_path:
                    raise CyclicBomError(current_path[current_path.index(sub.id):] + [sub.id])
                if sub.id in done:
                    continue
                visit(sub, current_path + [sub.id])
                done.add(sub.id)

        visit(bom, path)

    # ------------------------------------------------------------------
    # Shaping
    # ------------------------------------------------------------------

    @staticmethod
    def _aggregate(flat: List[ExplosionNode]) -> List[AggregatedRequirement]:
        grouped: "OrderedDict[int, AggregatedRequirement]" = OrderedDict()
        for node in flat:
            item = grouped.get(node.product_id)
            if item is None:
                item = AggregatedRequirement(
                    product_id=node.product_id,
                    product_sku=node.product_sku,
                    product_name=node.product_name,
                    total_quantity=Decimal("0"),
                    unit=node.unit,
                    min_level=node.level,
                )
                grouped[node.product_id] = item
            item.total_quantity += node.quantity
            item.min_level = min(item.min_level, node.level)
            item.sources.append({
                "bom_id": node.source_bom_id,
                "bom_line_id": node.bom_line_id,
                "parent_product_id": node.parent_product_id,
                "level": node.level,
                "quantity": node.quantity,
            })
        return list(grouped.values())
