"""
Unit of Measure (UOM) Service

Converts quantities between units of measure:

1. Product-specific conversions (ProductUomConversion), forward or reverse
2. Configured units (units_of_measure table), same class only
3. Standard conversion table for common units when the table has no entry

All arithmetic is Decimal.
"""
from decimal import Decimal
from typing import Dict, Optional, Tuple
from sqlalchemy import func
from sqlalchemy.orm import Session

from mfgplan.exceptions import UnitConversionError
from mfgplan.logging_config import get_logger
from mfgplan.models.product import UnitOfMeasure, ProductUomConversion

logger = get_logger(__name__)

# Maximum decimal places for quantity formatting
MAX_DECIMAL_PLACES = 10


# ============================================================================
# Standard conversions (used when the units_of_measure table has no entry)
# ============================================================================

STANDARD_UOM_CONVERSIONS: Dict[str, Dict[str, object]] = {
    # Mass (base G)
    'MG': {'base': 'G', 'factor': Decimal('0.001')},
    'G': {'base': 'G', 'factor': Decimal('1')},
    'KG': {'base': 'G', 'factor': Decimal('1000')},
    'T': {'base': 'G', 'factor': Decimal('1000000')},
    'LB': {'base': 'G', 'factor': Decimal('453.592')},
    'OZ': {'base': 'G', 'factor': Decimal('28.3495')},
    # Length (base M)
    'MM': {'base': 'M', 'factor': Decimal('0.001')},
    'CM': {'base': 'M', 'factor': Decimal('0.01')},
    'M': {'base': 'M', 'factor': Decimal('1')},
    'KM': {'base': 'M', 'factor': Decimal('1000')},
    'IN': {'base': 'M', 'factor': Decimal('0.0254')},
    'FT': {'base': 'M', 'factor': Decimal('0.3048')},
    # Volume (base L)
    'ML': {'base': 'L', 'factor': Decimal('0.001')},
    'L': {'base': 'L', 'factor': Decimal('1')},
    'M3': {'base': 'L', 'factor': Decimal('1000')},
    'GAL': {'base': 'L', 'factor': Decimal('3.78541')},
    # Count (base EA)
    'EA': {'base': 'EA', 'factor': Decimal('1')},
    'PCS': {'base': 'EA', 'factor': Decimal('1')},
    'PR': {'base': 'EA', 'factor': Decimal('2')},
    'DZ': {'base': 'EA', 'factor': Decimal('12')},
    # Time (base HR)
    'MIN': {'base': 'HR', 'factor': Decimal('1') / Decimal('60')},
    'HR': {'base': 'HR', 'factor': Decimal('1')},
}


def normalize_unit(unit: Optional[str], default: str = 'EA') -> str:
    return (unit or default).upper().strip()


class UnitConverter:
    """
    Converts quantities between units, honouring product-specific overrides.

    One converter is meant to live for one request or one MRP run: lookups
    are memoized on the instance, so configuration edits made while it is
    alive are not seen.

    Example:
        >>> converter = UnitConverter(db)
        >>> converter.convert(Decimal("2.5"), "KG", "G")
        Decimal("2500.0")
        >>> converter.convert(Decimal("2"), "BOX", "EA", product_id=7)  # 1 BOX = 250 EA for product 7
        Decimal("500")
    """

    def __init__(self, db: Optional[Session] = None):
        self.db = db
        self._unit_cache: Dict[str, Optional[Tuple[str, Decimal]]] = {}
        self._product_cache: Dict[int, Dict[Tuple[str, str], Decimal]] = {}

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _unit_info(self, code: str) -> Optional[Tuple[str, Decimal]]:
        """(base/class key, factor to base) for a unit, or None if unknown."""
        if code in self._unit_cache:
            return self._unit_cache[code]

        info: Optional[Tuple[str, Decimal]] = None
        if self.db is not None:
            uom = self.db.query(UnitOfMeasure).filter(
                func.upper(UnitOfMeasure.code) == code,
                UnitOfMeasure.active == True,  # noqa: E712
            ).first()
            if uom is not None:
                info = (uom.base_unit_code.upper(), Decimal(str(uom.to_base_factor)))

        if info is None and code in STANDARD_UOM_CONVERSIONS:
            entry = STANDARD_UOM_CONVERSIONS[code]
            info = (str(entry['base']), entry['factor'])  # type: ignore[assignment]

        self._unit_cache[code] = info
        return info

    def _product_conversions(self, product_id: int) -> Dict[Tuple[str, str], Decimal]:
        if product_id not in self._product_cache:
            rows = []
            if self.db is not None:
                rows = self.db.query(ProductUomConversion).filter(
                    ProductUomConversion.product_id == product_id
                ).all()
            self._product_cache[product_id] = {
                (normalize_unit(r.from_unit), normalize_unit(r.to_unit)): Decimal(str(r.factor))
                for r in rows
            }
        return self._product_cache[product_id]

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def get_conversion_factor(
        self,
        from_unit: str,
        to_unit: str,
        product_id: Optional[int] = None,
    ) -> Decimal:
        """
        Factor to multiply a ``from_unit`` quantity by to express it in ``to_unit``.

        Raises:
            UnitConversionError: unknown unit, or units of different classes
                with no product-specific conversion linking them
        """
        src = normalize_unit(from_unit)
        dst = normalize_unit(to_unit)
        if src == dst:
            return Decimal('1')

        if product_id is not None:
            overrides = self._product_conversions(product_id)
            if (src, dst) in overrides:
                return overrides[(src, dst)]
            if (dst, src) in overrides:
                reverse = overrides[(dst, src)]
                if reverse.is_zero():
                    raise UnitConversionError(
                        src, dst, product_id=product_id, reason="product conversion factor is zero"
                    )
                return Decimal('1') / reverse

        src_info = self._unit_info(src)
        dst_info = self._unit_info(dst)
        if src_info is None:
            raise UnitConversionError(src, dst, product_id=product_id, reason=f"unknown unit {src}")
        if dst_info is None:
            raise UnitConversionError(src, dst, product_id=product_id, reason=f"unknown unit {dst}")
        if src_info[0] != dst_info[0]:
            raise UnitConversionError(
                src, dst, product_id=product_id,
                reason=f"incompatible bases {src_info[0]} and {dst_info[0]}",
            )
        if dst_info[1].is_zero():
            raise UnitConversionError(src, dst, product_id=product_id, reason=f"{dst} factor is zero")

        # e.g., KG -> G: 1000 / 1 = 1000
        return src_info[1] / dst_info[1]

    def convert(
        self,
        quantity: Decimal,
        from_unit: str,
        to_unit: str,
        product_id: Optional[int] = None,
    ) -> Decimal:
        """
        Convert a quantity from one unit to another.

        Raises:
            UnitConversionError: If units are unknown or incompatible
        """
        qty = Decimal(str(quantity))
        if normalize_unit(from_unit) == normalize_unit(to_unit):
            return qty
        return qty * self.get_conversion_factor(from_unit, to_unit, product_id)

    def convert_safe(
        self,
        quantity: Decimal,
        from_unit: str,
        to_unit: str,
        product_id: Optional[int] = None,
    ) -> Tuple[Decimal, bool]:
        """
        Convert, returning the original quantity on failure.

        Returns:
            Tuple of (converted_quantity, was_successful). Same-unit
            conversions are a success.
        """
        try:
            return self.convert(quantity, from_unit, to_unit, product_id), True
        except UnitConversionError as e:
            logger.debug(
                "UOM conversion failed, keeping original quantity",
                extra={"from_unit": from_unit, "to_unit": to_unit, "product_id": product_id, "error": e.message},
            )
            return Decimal(str(quantity)), False

    def are_compatible(self, unit1: str, unit2: str, product_id: Optional[int] = None) -> bool:
        try:
            self.get_conversion_factor(unit1, unit2, product_id)
        except UnitConversionError:
            return False
        return True


def format_quantity_with_unit(quantity: Decimal, unit: str) -> str:
    """
    Format a quantity with its unit symbol, e.g. '2.5 kg'.

    Uses fixed-point notation and strips trailing zeros.
    """
    qty_str = format(Decimal(str(quantity)), f'.{MAX_DECIMAL_PLACES}f')
    if '.' in qty_str:
        qty_str = qty_str.rstrip('0').rstrip('.')
    return f"{qty_str} {unit.lower()}"
