"""
Read-side collaborators of the MRP engine.

Each source is a small class over the ORM so the engine can be handed a
different implementation (a fixture in tests, a reporting replica, ...):
- StockSource: on-hand, scheduled receipts and work in progress (quantity and open orders)
- DemandSource: open sales-order lines inside the horizon
- ChangeLogSource: products marked dirty since they were last planned
"""
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Protocol, Set

from sqlalchemy import func
from sqlalchemy.orm import Session

from mfgplan.core.status_config import (
    PRODUCTION_ORDER_WIP_STATUSES,
    PURCHASE_ORDER_OPEN_STATUSES,
    SALES_ORDER_DEMAND_STATUSES,
)
from mfgplan.logging_config import get_logger
from mfgplan.models.inventory import Inventory
from mfgplan.models.mrp import MRPChangeLog
from mfgplan.models.production_order import ProductionOrder
from mfgplan.models.purchase_order import PurchaseOrder, PurchaseOrderLine
from mfgplan.models.sales_order import SalesOrder, SalesOrderLine

logger = get_logger(__name__)

ZERO = Decimal("0")


# ============================================================================
# Warehouse scope
# ============================================================================

@dataclass(frozen=True)
class WarehouseScope:
    """Which inventory locations a run plans for. ``include_ids=None`` means all."""
    include_ids: Optional[frozenset] = None
    exclude_ids: frozenset = frozenset()

    @classmethod
    def from_filters(cls, filters: Optional[dict]) -> "WarehouseScope":
        filters = filters or {}
        include = filters.get("warehouse_ids")
        return cls(
            include_ids=frozenset(include) if include else None,
            exclude_ids=frozenset(filters.get("exclude_warehouse_ids") or []),
        )

    @property
    def is_unrestricted(self) -> bool:
        return self.include_ids is None and not self.exclude_ids

    @property
    def single_warehouse_id(self) -> Optional[int]:
        if self.include_ids and len(self.include_ids) == 1:
            return next(iter(self.include_ids))
        return None

    def apply(self, query, column):
        """Restrict ``query`` on a location ``column``. Rows without a location only pass an unrestricted scope."""
        if self.include_ids is not None:
            query = query.filter(column.in_(self.include_ids))
        if self.exclude_ids:
            query = query.filter(column.is_(None) | column.notin_(self.exclude_ids))
        return query


# ============================================================================
# Stock
# ============================================================================

@dataclass(frozen=True)
class WipOrder:
    """An open production order whose components are still to be consumed."""
    id: int
    product_id: int
    bom_id: Optional[int]
    quantity_remaining: Decimal
    start_date: Optional[date]


class StockSource(Protocol):
    def get_on_hand(self, product_id: int, scope: WarehouseScope) -> Decimal: ...

    def get_on_order(self, product_id: int, scope: WarehouseScope, by_date: date) -> Decimal: ...

    def get_scheduled_receipts(
        self, product_id: int, scope: WarehouseScope, start: date, end: date
    ) -> Dict[date, Decimal]: ...

    def get_wip(self, product_id: int, scope: WarehouseScope) -> Decimal: ...

    def get_wip_orders(self, scope: WarehouseScope) -> List[WipOrder]: ...


class SqlStockSource:
    """Point-in-time stock figures read straight from the inventory tables."""

    def __init__(self, db: Session):
        self.db = db

    def get_on_hand(self, product_id: int, scope: WarehouseScope) -> Decimal:
        query = self.db.query(func.sum(Inventory.on_hand_quantity)).filter(
            Inventory.product_id == product_id
        )
        query = scope.apply(query, Inventory.location_id)
        return Decimal(str(query.scalar() or 0))

    def _open_po_lines(self, product_id: int, scope: WarehouseScope) -> List[tuple]:
        query = self.db.query(PurchaseOrderLine, PurchaseOrder).join(
            PurchaseOrder, PurchaseOrderLine.purchase_order_id == PurchaseOrder.id
        ).filter(
            PurchaseOrderLine.product_id == product_id,
            PurchaseOrder.status.in_(PURCHASE_ORDER_OPEN_STATUSES),
        )
        query = scope.apply(query, PurchaseOrder.location_id)
        return query.all()

    def get_on_order(self, product_id: int, scope: WarehouseScope, by_date: date) -> Decimal:
        """Open purchase quantity expected on or before ``by_date`` (undated lines count)."""
        total = ZERO
        for line, po in self._open_po_lines(product_id, scope):
            expected = line.expected_date or po.expected_date
            if expected is None or expected <= by_date:
                total += line.open_quantity
        return total

    def get_scheduled_receipts(
        self, product_id: int, scope: WarehouseScope, start: date, end: date
    ) -> Dict[date, Decimal]:
        """
        Open purchase quantity bucketed by expected date.

        Past-due and undated receipts land on ``start``; receipts after
        ``end`` are left out.
        """
        receipts: Dict[date, Decimal] = defaultdict(lambda: ZERO)
        for line, po in self._open_po_lines(product_id, scope):
            qty = line.open_quantity
            if qty <= 0:
                continue
            expected = line.expected_date or po.expected_date
            if expected is None or expected < start:
                expected = start
            if expected > end:
                continue
            receipts[expected] += qty
        return dict(receipts)

    def get_wip(self, product_id: int, scope: WarehouseScope) -> Decimal:
        """Remaining quantity of released or in-progress production orders."""
        query = self.db.query(ProductionOrder).filter(
            ProductionOrder.product_id == product_id,
            ProductionOrder.status.in_(PRODUCTION_ORDER_WIP_STATUSES),
        )
        query = scope.apply(query, ProductionOrder.location_id)
        return sum((order.quantity_remaining for order in query.all()), ZERO)

    def get_wip_orders(self, scope: WarehouseScope) -> List[WipOrder]:
        """Released or in-progress production orders with quantity still to make."""
        query = self.db.query(ProductionOrder).filter(
            ProductionOrder.status.in_(PRODUCTION_ORDER_WIP_STATUSES),
        )
        query = scope.apply(query, ProductionOrder.location_id)
        orders = []
        for order in query.order_by(ProductionOrder.id).all():
            remaining = order.quantity_remaining
            if remaining <= 0:
                continue
            start = order.scheduled_start.date() if order.scheduled_start else order.due_date
            orders.append(WipOrder(
                id=order.id,
                product_id=order.product_id,
                bom_id=order.bom_id,
                quantity_remaining=remaining,
                start_date=start,
            ))
        return orders


# ============================================================================
# Demand
# ============================================================================

@dataclass
class DemandEntry:
    product_id: int
    due_date: date
    quantity: Decimal
    source_type: str
    source_id: Optional[int] = None
    original_due_date: Optional[date] = None

    def to_dict(self) -> dict:
        return {
            "source_type": self.source_type,
            "source_id": self.source_id,
            "due_date": self.due_date.isoformat(),
            "original_due_date": self.original_due_date.isoformat() if self.original_due_date else None,
            "quantity": str(self.quantity),
        }


class DemandSource(Protocol):
    def independent_demand(
        self, start: date, end: date, scope: WarehouseScope, product_ids: Optional[Iterable[int]] = None
    ) -> Dict[int, List[DemandEntry]]: ...


class SqlDemandSource:
    """Confirmed sales-order lines with an unshipped quantity."""

    def __init__(self, db: Session):
        self.db = db

    def independent_demand(
        self,
        start: date,
        end: date,
        scope: WarehouseScope,
        product_ids: Optional[Iterable[int]] = None,
    ) -> Dict[int, List[DemandEntry]]:
        query = self.db.query(SalesOrderLine, SalesOrder).join(
            SalesOrder, SalesOrderLine.sales_order_id == SalesOrder.id
        ).filter(SalesOrder.status.in_(SALES_ORDER_DEMAND_STATUSES))
        if product_ids is not None:
            query = query.filter(SalesOrderLine.product_id.in_(list(product_ids)))
        query = scope.apply(query, SalesOrder.location_id)

        demand: Dict[int, List[DemandEntry]] = defaultdict(list)
        for line, order in query.all():
            qty = line.open_quantity
            if qty <= 0:
                continue
            due = line.due_date or order.requested_date or start
            if due > end:
                continue
            demand[line.product_id].append(DemandEntry(
                product_id=line.product_id,
                due_date=max(due, start),
                quantity=qty,
                source_type="sales_order",
                source_id=order.id,
                original_due_date=due,
            ))
        for entries in demand.values():
            entries.sort(key=lambda e: (e.due_date, e.source_id or 0))
        return dict(demand)


# ============================================================================
# Change log
# ============================================================================

class ChangeLogSource:
    """Dirty-product flags consumed by net-change runs."""

    def __init__(self, db: Session):
        self.db = db

    def has_entries(self) -> bool:
        return self.db.query(MRPChangeLog.id).first() is not None

    def pending_entries(self) -> List[MRPChangeLog]:
        return self.db.query(MRPChangeLog).filter(
            MRPChangeLog.processed_at.is_(None)
        ).order_by(MRPChangeLog.id).all()

    def dirty_product_ids(self) -> Set[int]:
        return {entry.product_id for entry in self.pending_entries()}

    def mark_dirty(self, product_id: int, reason: Optional[str] = None) -> MRPChangeLog:
        entry = MRPChangeLog(product_id=product_id, reason=reason)
        self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)
        logger.debug("Product marked dirty for MRP", extra={"product_id": product_id, "reason": reason})
        return entry

    def mark_processed(self, entry_ids: Iterable[int], run_id: int) -> int:
        ids = list(entry_ids)
        if not ids:
            return 0
        updated = self.db.query(MRPChangeLog).filter(
            MRPChangeLog.id.in_(ids),
            MRPChangeLog.processed_at.is_(None),
        ).update(
            {MRPChangeLog.processed_at: datetime.utcnow(), MRPChangeLog.processed_by_run_id: run_id},
            synchronize_session="fetch",
        )
        return updated
