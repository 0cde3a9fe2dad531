"""
Recommendation Ledger

State machine over MRP recommendations:

    pending -> approved -> actioned
    pending | approved -> rejected
    pending | approved -> expired

Single-item transitions return False on an invalid move instead of
raising; bulk variants apply them one by one and report how many succeeded.
Actioning re-checks the recommendation against current data first: the
product must still be active (with a BOM for work orders) and the shortage
must not have been covered by supply that appeared after the run.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from mfgplan.core.status_config import (
    PRIORITY_RANK,
    PRODUCTION_ORDER_WIP_STATUSES,
    PURCHASE_ORDER_OPEN_STATUSES,
    RecommendationStatus,
    RecommendationType,
    is_valid_recommendation_transition,
)
from mfgplan.logging_config import get_logger
from mfgplan.models.mrp import MRPRecommendation, MRPRun
from mfgplan.models.product import Product
from mfgplan.models.production_order import ProductionOrder
from mfgplan.models.purchase_order import PurchaseOrder, PurchaseOrderLine
from mfgplan.services.bom_helpers import get_default_bom
from mfgplan.services.mrp_sources import SqlStockSource, StockSource, WarehouseScope

logger = get_logger(__name__)

ZERO = Decimal("0")
SUPPLY_SNAPSHOT_KEYS = ("on_hand", "wip", "on_order_by_required_date")


class RecommendationLedger:
    def __init__(self, db: Session, stock_source: Optional[StockSource] = None):
        self.db = db
        self.stock = stock_source or SqlStockSource(db)
        self.last_refusal: Optional[str] = None

    def get(self, recommendation_id: int) -> Optional[MRPRecommendation]:
        return self.db.get(MRPRecommendation, recommendation_id)

    def _apply(
        self,
        recommendation_id: int,
        new_status: RecommendationStatus,
        user: Optional[str] = None,
        notes: Optional[str] = None,
        reference_type: Optional[str] = None,
        reference_id: Optional[int] = None,
        commit: bool = True,
    ) -> bool:
        rec = self.get(recommendation_id)
        if rec is None:
            logger.info("Recommendation not found", extra={"recommendation_id": recommendation_id})
            return False
        if not is_valid_recommendation_transition(rec.status, new_status.value):
            logger.info(
                "Recommendation transition refused",
                extra={
                    "recommendation_id": recommendation_id,
                    "from_status": rec.status,
                    "to_status": new_status.value,
                },
            )
            return False

        now = datetime.utcnow()
        rec.status = new_status.value
        rec.status_changed_at = now
        rec.status_changed_by = user
        if new_status == RecommendationStatus.ACTIONED:
            rec.actioned_at = now
            rec.actioned_by = user
        if notes is not None:
            rec.action_notes = notes
        if reference_type is not None:
            rec.action_reference_type = reference_type
            rec.action_reference_id = reference_id
        if commit:
            self.db.commit()
        return True

    # ========================================================================
    # Feasibility
    # ========================================================================

    def _referenced_supply(self, rec: MRPRecommendation, reference_type: str, reference_id: Optional[int]) -> Decimal:
        """Open quantity of the order the recommendation is being actioned with."""
        if reference_id is None:
            return ZERO
        if reference_type == "purchase_order":
            rows = self.db.query(PurchaseOrderLine, PurchaseOrder).join(
                PurchaseOrder, PurchaseOrderLine.purchase_order_id == PurchaseOrder.id
            ).filter(
                PurchaseOrder.id == reference_id,
                PurchaseOrderLine.product_id == rec.product_id,
                PurchaseOrder.status.in_(PURCHASE_ORDER_OPEN_STATUSES),
            ).all()
            return sum(
                (
                    line.open_quantity
                    for line, po in rows
                    if (line.expected_date or po.expected_date) is None
                    or (line.expected_date or po.expected_date) <= rec.required_date
                ),
                ZERO,
            )
        order = self.db.get(ProductionOrder, reference_id)
        if order is None or order.product_id != rec.product_id or order.status not in PRODUCTION_ORDER_WIP_STATUSES:
            return ZERO
        return order.quantity_remaining

    def check_feasibility(
        self,
        rec: MRPRecommendation,
        reference_type: Optional[str] = None,
        reference_id: Optional[int] = None,
    ) -> Optional[str]:
        """
        Why ``rec`` should no longer be actioned, or None when it still stands.

        Supply is compared with the snapshot stored on the recommendation;
        the order it is being actioned with does not count as new supply.
        Recommendations without a snapshot only get the product checks.
        """
        product = self.db.get(Product, rec.product_id)
        if product is None or not product.active:
            return "Product is no longer active"
        if rec.recommendation_type == RecommendationType.WORK_ORDER.value:
            if not product.can_be_manufactured or get_default_bom(self.db, product.id) is None:
                return "Product no longer has an active BOM"

        details = rec.calculation_details or {}
        if not all(key in details for key in SUPPLY_SNAPSHOT_KEYS):
            return None

        run = self.db.get(MRPRun, rec.mrp_run_id)
        scope = WarehouseScope.from_filters(run.warehouse_filters if run else None)
        on_hand = self.stock.get_on_hand(product.id, scope)
        on_order = self.stock.get_on_order(product.id, scope, rec.required_date)
        if reference_type is not None:
            on_order -= self._referenced_supply(rec, reference_type, reference_id)
        added = (on_hand - Decimal(details["on_hand"])) + (on_order - Decimal(details["on_order_by_required_date"]))
        if run is None or run.consider_wip:
            wip = self.stock.get_wip(product.id, scope)
            if reference_type is not None and reference_type != "purchase_order":
                wip -= self._referenced_supply(rec, reference_type, reference_id)
            added += wip - Decimal(details["wip"])

        net = Decimal(str(rec.net_requirement or 0))
        if added >= net:
            return f"Shortage already covered: {added.normalize():f} units of new supply since the run"
        return None

    # ========================================================================
    # Single transitions
    # ========================================================================

    def approve(self, recommendation_id: int, user: Optional[str] = None) -> bool:
        return self._apply(recommendation_id, RecommendationStatus.APPROVED, user=user)

    def reject(self, recommendation_id: int, notes: Optional[str] = None, user: Optional[str] = None) -> bool:
        return self._apply(recommendation_id, RecommendationStatus.REJECTED, user=user, notes=notes)

    def mark_actioned(
        self,
        recommendation_id: int,
        reference_type: str,
        reference_id: Optional[int],
        notes: Optional[str] = None,
        user: Optional[str] = None,
        revalidate: bool = True,
    ) -> bool:
        """
        Record that an approved recommendation became a real order (``reference_type``/``reference_id``).

        With ``revalidate`` the recommendation is checked against current
        data first. A failed check leaves the status alone, stores the reason
        in ``action_notes`` and ``last_refusal``, and returns False.
        """
        self.last_refusal = None
        rec = self.get(recommendation_id)
        if revalidate and rec is not None and rec.status == RecommendationStatus.APPROVED.value:
            reason = self.check_feasibility(rec, reference_type, reference_id)
            if reason is not None:
                self.last_refusal = reason
                rec.action_notes = reason
                self.db.commit()
                logger.warning(
                    "Recommendation no longer feasible",
                    extra={"recommendation_id": recommendation_id, "product_id": rec.product_id, "reason": reason},
                )
                return False
        return self._apply(
            recommendation_id,
            RecommendationStatus.ACTIONED,
            user=user,
            notes=notes,
            reference_type=reference_type,
            reference_id=reference_id,
        )

    def expire(self, recommendation_id: int) -> bool:
        return self._apply(recommendation_id, RecommendationStatus.EXPIRED)

    # ========================================================================
    # Bulk transitions
    # ========================================================================

    def _bulk(self, ids: Iterable[int], new_status: RecommendationStatus, **kwargs) -> int:
        count = 0
        for recommendation_id in dict.fromkeys(ids):
            if self._apply(recommendation_id, new_status, commit=False, **kwargs):
                count += 1
        self.db.commit()
        logger.info(
            "Bulk recommendation update",
            extra={"to_status": new_status.value, "updated": count},
        )
        return count

    def bulk_approve(self, ids: Iterable[int], user: Optional[str] = None) -> int:
        return self._bulk(ids, RecommendationStatus.APPROVED, user=user)

    def bulk_reject(self, ids: Iterable[int], notes: Optional[str] = None, user: Optional[str] = None) -> int:
        return self._bulk(ids, RecommendationStatus.REJECTED, user=user, notes=notes)

    def bulk_expire(self, ids: Iterable[int]) -> int:
        return self._bulk(ids, RecommendationStatus.EXPIRED)

    def expire_stale(self, before: Optional[date] = None) -> int:
        """Time-based sweep: expire open recommendations whose required date is before ``before`` (default today)."""
        before = before or date.today()
        ids = [
            row[0]
            for row in self.db.query(MRPRecommendation.id).filter(
                MRPRecommendation.status.in_(
                    [RecommendationStatus.PENDING.value, RecommendationStatus.APPROVED.value]
                ),
                MRPRecommendation.required_date < before,
            ).all()
        ]
        return self.bulk_expire(ids)

    # ========================================================================
    # Queries
    # ========================================================================

    def list(
        self,
        mrp_run_id: Optional[int] = None,
        status: Optional[str] = None,
        recommendation_type: Optional[str] = None,
        priority: Optional[str] = None,
        urgent_only: bool = False,
        product_id: Optional[int] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[MRPRecommendation]:
        """Filtered recommendations, most urgent priority first, then by required date."""
        query = self.db.query(MRPRecommendation)
        if mrp_run_id is not None:
            query = query.filter(MRPRecommendation.mrp_run_id == mrp_run_id)
        if status:
            query = query.filter(MRPRecommendation.status == status)
        if recommendation_type:
            query = query.filter(MRPRecommendation.recommendation_type == recommendation_type)
        if priority:
            query = query.filter(MRPRecommendation.priority == priority)
        if urgent_only:
            query = query.filter(MRPRecommendation.is_urgent == True)  # noqa: E712
        if product_id is not None:
            query = query.filter(MRPRecommendation.product_id == product_id)

        priority_rank = case(PRIORITY_RANK, value=MRPRecommendation.priority, else_=len(PRIORITY_RANK))
        return query.order_by(
            priority_rank,
            MRPRecommendation.required_date,
            MRPRecommendation.id,
        ).offset(offset).limit(limit).all()

    def counts_by_status(self, mrp_run_id: Optional[int] = None) -> Dict[str, Any]:
        query = self.db.query(MRPRecommendation.status, func.count(MRPRecommendation.id))
        if mrp_run_id is not None:
            query = query.filter(MRPRecommendation.mrp_run_id == mrp_run_id)
        return dict(query.group_by(MRPRecommendation.status).all())
