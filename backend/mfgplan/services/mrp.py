"""
MRP (Material Requirements Planning) Engine

Time-phased planning over a horizon of days:
1. Order products by low-level code so parents are planned before components
2. Net gross demand (sales orders, dependent demand, components of open
   production orders) day by day against on-hand, scheduled receipts and WIP,
   keeping stock at or above max(safety stock, reorder point)
3. Emit a purchase-order or work-order recommendation for every shortfall,
   offsetting lead times over working days and checking work orders against
   the work-center calendars of their routing
4. Explode work-order recommendations into dependent demand for components

A run can be executed inline or handed to a background task; the engine only
sees the run id, a cancellation flag on the run row and a progress callback.
"""
from collections import defaultdict
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mfgplan.core.settings import Settings, get_settings
from mfgplan.core.status_config import (
    MrpRunStatus,
    PRIORITY_RANK,
    RecommendationPriority,
    RecommendationStatus,
    RecommendationType,
    is_valid_mrp_run_transition,
)
from mfgplan.db.session import SessionLocal
from mfgplan.exceptions import (
    CyclicBomError,
    CyclicProductDependencyError,
    InvalidStateError,
    MrpRunNotFoundError,
    PlanningException,
    ValidationError,
)
from mfgplan.logging_config import get_logger
from mfgplan.models.bom import BOM
from mfgplan.models.manufacturing import Routing
from mfgplan.models.mrp import MRPChangeLog, MRPRecommendation, MRPRun
from mfgplan.models.product import Product
from mfgplan.services.bom_explosion import BomExplosionEngine
from mfgplan.services.bom_helpers import get_default_bom
from mfgplan.services.capacity_calendar import CapacityCalendar
from mfgplan.services.explosion_cache import ExplosionCache, get_explosion_cache
from mfgplan.services.mrp_sources import (
    ChangeLogSource,
    DemandEntry,
    DemandSource,
    SqlDemandSource,
    SqlStockSource,
    StockSource,
    WarehouseScope,
)
from mfgplan.services.uom_service import UnitConverter, normalize_unit

logger = get_logger(__name__)

ZERO = Decimal("0")

ProgressCallback = Callable[["ProgressInfo"], None]


# ============================================================================
# Options, config and progress
# ============================================================================

@dataclass(frozen=True)
class MrpOptions:
    default_horizon_days: int = 30
    max_horizon_days: int = 365
    urgent_window_days: int = 3
    medium_window_days: int = 7
    progress_every: int = 1
    warning_examples: int = 3
    default_warehouse_id: Optional[int] = None
    working_day_lead_times: bool = True
    check_capacity: bool = True
    run_number_attempts: int = 3

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "MrpOptions":
        settings = settings or get_settings()
        return cls(
            default_horizon_days=settings.MRP_DEFAULT_HORIZON_DAYS,
            max_horizon_days=settings.MRP_MAX_HORIZON_DAYS,
            urgent_window_days=settings.MRP_URGENT_WINDOW_DAYS,
            medium_window_days=settings.MRP_MEDIUM_WINDOW_DAYS,
            progress_every=settings.MRP_PROGRESS_EVERY_N_PRODUCTS,
            warning_examples=settings.MRP_WARNING_EXAMPLES,
            default_warehouse_id=settings.MRP_DEFAULT_WAREHOUSE_ID,
            working_day_lead_times=settings.MRP_WORKING_DAY_LEAD_TIMES,
            check_capacity=settings.MRP_CHECK_CAPACITY,
        )


def _int_list(values: Optional[Iterable[Any]], field_name: str) -> Optional[List[int]]:
    if values is None:
        return None
    try:
        return [int(v) for v in values]
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be a list of integers", field=field_name, value=values)


@dataclass
class MrpRunConfig:
    """Parameters of one run, as submitted by a caller."""
    planning_horizon_start: Optional[date] = None
    planning_horizon_end: Optional[date] = None
    name: Optional[str] = None
    include_safety_stock: bool = True
    respect_lead_times: bool = True
    consider_wip: bool = True
    net_change: bool = False
    product_ids: Optional[List[int]] = None
    category_ids: Optional[List[int]] = None
    make_or_buy: Optional[str] = None  # 'make' | 'buy'
    warehouse_ids: Optional[List[int]] = None
    exclude_warehouse_ids: Optional[List[int]] = None
    created_by: Optional[str] = None

    def resolve(self, options: MrpOptions, today: Optional[date] = None) -> "MrpRunConfig":
        """
        Validated copy with the horizon filled in.

        Raises:
            ValidationError: Horizon reversed or too long, unknown make_or_buy, non-integer ids
        """
        start = self.planning_horizon_start or today or date.today()
        end = self.planning_horizon_end or start + timedelta(days=options.default_horizon_days)
        if end < start:
            raise ValidationError(
                "Planning horizon end is before its start",
                field="planning_horizon_end",
                value=end.isoformat(),
            )
        if (end - start).days > options.max_horizon_days:
            raise ValidationError(
                f"Planning horizon cannot exceed {options.max_horizon_days} days",
                field="planning_horizon_end",
                value=end.isoformat(),
            )
        if self.make_or_buy not in (None, "make", "buy"):
            raise ValidationError("make_or_buy must be 'make' or 'buy'", field="make_or_buy", value=self.make_or_buy)

        return MrpRunConfig(
            planning_horizon_start=start,
            planning_horizon_end=end,
            name=self.name,
            include_safety_stock=self.include_safety_stock,
            respect_lead_times=self.respect_lead_times,
            consider_wip=self.consider_wip,
            net_change=self.net_change,
            product_ids=_int_list(self.product_ids, "product_ids"),
            category_ids=_int_list(self.category_ids, "category_ids"),
            make_or_buy=self.make_or_buy,
            warehouse_ids=_int_list(self.warehouse_ids, "warehouse_ids"),
            exclude_warehouse_ids=_int_list(self.exclude_warehouse_ids, "exclude_warehouse_ids"),
            created_by=self.created_by,
        )

    def product_filters(self) -> Optional[Dict[str, Any]]:
        filters = {
            "product_ids": self.product_ids,
            "category_ids": self.category_ids,
            "make_or_buy": self.make_or_buy,
        }
        filters = {k: v for k, v in filters.items() if v}
        return filters or None

    def warehouse_filters(self) -> Optional[Dict[str, Any]]:
        filters = {
            "warehouse_ids": self.warehouse_ids,
            "exclude_warehouse_ids": self.exclude_warehouse_ids,
        }
        filters = {k: v for k, v in filters.items() if v}
        return filters or None


@dataclass
class ProgressInfo:
    run_id: int
    run_number: str
    status: str
    products_total: int
    products_processed: int
    percentage: float
    current_product_id: Optional[int]
    recommendations_generated: int
    warnings_count: int
    updated_at: Optional[datetime]
    error_message: Optional[str] = None

    @classmethod
    def from_run(cls, run: MRPRun) -> "ProgressInfo":
        return cls(
            run_id=run.id,
            run_number=run.run_number,
            status=run.status,
            products_total=run.products_total or 0,
            products_processed=run.products_processed or 0,
            percentage=run.progress_percentage,
            current_product_id=run.current_product_id,
            recommendations_generated=run.recommendations_generated or 0,
            warnings_count=run.warnings_count or 0,
            updated_at=run.progress_updated_at,
            error_message=run.error_message,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "run_number": self.run_number,
            "status": self.status,
            "products_total": self.products_total,
            "products_processed": self.products_processed,
            "percentage": self.percentage,
            "current_product_id": self.current_product_id,
            "recommendations_generated": self.recommendations_generated,
            "warnings_count": self.warnings_count,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "error_message": self.error_message,
        }


class RunWarnings:
    """Warnings collected during a run, summarized per type."""

    def __init__(self, max_examples: int = 3):
        self.max_examples = max_examples
        self._items: List[Dict[str, Any]] = []

    def add(self, warning_type: str, message: str, product_id: Optional[int] = None) -> None:
        self._items.append({"type": warning_type, "message": message, "product_id": product_id})

    def __len__(self) -> int:
        return len(self._items)

    def types(self) -> Set[str]:
        return {item["type"] for item in self._items}

    def summary(self) -> Dict[str, Any]:
        grouped: Dict[str, Dict[str, Any]] = {}
        for item in self._items:
            group = grouped.setdefault(item["type"], {"count": 0, "examples": []})
            group["count"] += 1
            if len(group["examples"]) < self.max_examples:
                group["examples"].append({"message": item["message"], "product_id": item["product_id"]})
        return grouped


# ============================================================================
# Product graph
# ============================================================================

def compute_low_level_codes(graph: Dict[int, Set[int]]) -> Dict[int, int]:
    """
    Deepest level at which each product appears in the parent -> component graph.

    Raises:
        CyclicProductDependencyError: with the product id chain that closes the loop
    """
    nodes: Set[int] = set(graph)
    for children in graph.values():
        nodes.update(children)

    visiting: Set[int] = set()
    done: Set[int] = set()
    postorder: List[int] = []

    def visit(node: int, path: List[int]) -> None:
        visiting.add(node)
        path.append(node)
        for child in sorted(graph.get(node, ())):
            if child in visiting:
                raise CyclicProductDependencyError(path[path.index(child):] + [child])
            if child not in done:
                visit(child, path)
        path.pop()
        visiting.discard(node)
        done.add(node)
        postorder.append(node)

    for node in sorted(nodes):
        if node not in done:
            visit(node, [])

    codes = {node: 0 for node in nodes}
    for node in reversed(postorder):
        for child in graph.get(node, ()):
            codes[child] = max(codes[child], codes[node] + 1)
    return codes


def descendants(graph: Dict[int, Set[int]], seeds: Iterable[int]) -> Set[int]:
    """Every product reachable from ``seeds`` through BOM lines, seeds included."""
    found: Set[int] = set()
    stack = list(seeds)
    while stack:
        node = stack.pop()
        if node in found:
            continue
        found.add(node)
        stack.extend(graph.get(node, ()))
    return found


def get_active_routing(db: Session, product_id: int, on_date: Optional[date] = None) -> Optional[Routing]:
    """Newest active routing of a product that is effective on ``on_date``."""
    on_date = on_date or date.today()
    return db.query(Routing).filter(
        Routing.product_id == product_id,
        Routing.is_active == True,  # noqa: E712
        or_(Routing.effective_date.is_(None), Routing.effective_date <= on_date),
    ).order_by(Routing.version.desc(), Routing.id.desc()).first()


# ============================================================================
# Engine
# ============================================================================

class MrpEngine:
    """Plans material for one run at a time. Create one engine per session."""

    def __init__(
        self,
        db: Session,
        options: Optional[MrpOptions] = None,
        stock_source: Optional[StockSource] = None,
        demand_source: Optional[DemandSource] = None,
        change_log: Optional[ChangeLogSource] = None,
        explosion_engine: Optional[BomExplosionEngine] = None,
        cache: Optional[ExplosionCache] = None,
        capacity: Optional[CapacityCalendar] = None,
    ):
        self.db = db
        self.options = options or MrpOptions.from_settings()
        self.stock = stock_source or SqlStockSource(db)
        self.demand = demand_source or SqlDemandSource(db)
        self.change_log = change_log or ChangeLogSource(db)
        self.converter = UnitConverter(db)
        self.explosion = explosion_engine or BomExplosionEngine(db, converter=self.converter)
        self.cache = cache or get_explosion_cache()
        self.capacity = capacity or CapacityCalendar(db)

    def _explosion_for(self, on_date: date) -> BomExplosionEngine:
        """An explosion engine resolving BOM versions as of ``on_date``."""
        return BomExplosionEngine(
            self.db,
            converter=self.converter,
            options=replace(self.explosion.options, on_date=on_date),
        )

    # ========================================================================
    # Run lifecycle
    # ========================================================================

    def get_run(self, run_id: int) -> MRPRun:
        run = self.db.get(MRPRun, run_id)
        if run is None:
            raise MrpRunNotFoundError(run_id)
        return run

    def list_runs(self, status: Optional[str] = None, limit: int = 50, offset: int = 0) -> List[MRPRun]:
        query = self.db.query(MRPRun)
        if status:
            query = query.filter(MRPRun.status == status)
        return query.order_by(MRPRun.created_at.desc(), MRPRun.id.desc()).offset(offset).limit(limit).all()

    def _next_run_number(self) -> str:
        """MRP-YYYYMMDD-NNNN, one past the highest number issued today."""
        prefix = f"MRP-{datetime.utcnow():%Y%m%d}-"
        last = self.db.query(MRPRun.run_number).filter(
            MRPRun.run_number.like(f"{prefix}%")
        ).order_by(MRPRun.run_number.desc()).first()
        next_num = int(last[0].rsplit("-", 1)[1]) + 1 if last else 1
        return f"{prefix}{next_num:04d}"

    def create_run(self, config: MrpRunConfig) -> MRPRun:
        """
        Validate ``config`` and persist a pending run.

        Two submissions racing for the same run number hit the unique
        constraint; the loser retries with a fresh number.
        """
        resolved = config.resolve(self.options)
        attempts = max(1, self.options.run_number_attempts)
        for attempt in range(1, attempts + 1):
            run = MRPRun(
                run_number=self._next_run_number(),
                name=resolved.name,
                planning_horizon_start=resolved.planning_horizon_start,
                planning_horizon_end=resolved.planning_horizon_end,
                include_safety_stock=resolved.include_safety_stock,
                respect_lead_times=resolved.respect_lead_times,
                consider_wip=resolved.consider_wip,
                net_change=resolved.net_change,
                product_filters=resolved.product_filters(),
                warehouse_filters=resolved.warehouse_filters(),
                status=MrpRunStatus.PENDING.value,
                created_by=resolved.created_by,
            )
            self.db.add(run)
            try:
                self.db.commit()
                break
            except IntegrityError:
                self.db.rollback()
                logger.warning(
                    "MRP run number collision",
                    extra={"run_number": run.run_number, "attempt": attempt, "max_attempts": attempts},
                )
                if attempt == attempts:
                    logger.error("Could not allocate a unique MRP run number", exc_info=True)
                    raise
        self.db.refresh(run)
        logger.info(
            "MRP run created",
            extra={
                "run_id": run.id,
                "run_number": run.run_number,
                "horizon_start": run.planning_horizon_start.isoformat(),
                "horizon_end": run.planning_horizon_end.isoformat(),
                "net_change": run.net_change,
            },
        )
        return run

    def run(
        self,
        config_or_run_id: Union[MrpRunConfig, int],
        on_progress: Optional[ProgressCallback] = None,
    ) -> MRPRun:
        """Create (when given a config) and execute a run to the end."""
        if isinstance(config_or_run_id, MrpRunConfig):
            run_id = self.create_run(config_or_run_id).id
        else:
            run_id = config_or_run_id
        return self.execute(run_id, on_progress=on_progress)

    def execute(self, run_id: int, on_progress: Optional[ProgressCallback] = None) -> MRPRun:
        """
        Execute a pending run.

        A run cancelled before it starts is returned untouched. Cycles in the
        product graph fail the run with the cycle in ``error_message``; other
        unexpected errors fail the run and are re-raised.
        """
        run = self.get_run(run_id)
        if run.status == MrpRunStatus.CANCELLED.value:
            logger.info("MRP run cancelled before start", extra={"run_id": run.id})
            return run
        if not is_valid_mrp_run_transition(run.status, MrpRunStatus.RUNNING.value):
            raise InvalidStateError(
                f"Cannot start MRP run in status {run.status}",
                current_state=run.status,
                allowed_states=[MrpRunStatus.PENDING.value],
            )

        run.status = MrpRunStatus.RUNNING.value
        run.started_at = datetime.utcnow()
        run.progress_updated_at = run.started_at
        run.products_processed = 0
        run.recommendations_generated = 0
        self.db.commit()
        logger.info("MRP run started", extra={"run_id": run.id, "run_number": run.run_number})

        warnings = RunWarnings(self.options.warning_examples)
        try:
            consumed_entries = self._plan(run, warnings, on_progress)
        except (CyclicProductDependencyError, CyclicBomError) as exc:
            self.db.rollback()
            self._finish(run, MrpRunStatus.FAILED, warnings, error_message=exc.message)
            logger.error(
                "MRP run failed on cyclic dependency",
                extra={"run_id": run.id, "path": exc.path},
            )
            return run
        except Exception as exc:
            self.db.rollback()
            self._finish(run, MrpRunStatus.FAILED, warnings, error_message=str(exc))
            logger.error("MRP run failed", exc_info=True, extra={"run_id": run.id})
            raise

        self.db.refresh(run)
        if run.status == MrpRunStatus.CANCELLED.value:
            run.warnings_count = len(warnings)
            run.warnings_summary = warnings.summary() or None
            run.progress_updated_at = datetime.utcnow()
            self.db.commit()
            logger.info(
                "MRP run stopped after cancellation",
                extra={"run_id": run.id, "products_processed": run.products_processed},
            )
            return run

        if consumed_entries:
            self.change_log.mark_processed([entry.id for entry in consumed_entries], run.id)
        self._finish(run, MrpRunStatus.COMPLETED, warnings)
        logger.info(
            "MRP run completed",
            extra={
                "run_id": run.id,
                "products_processed": run.products_processed,
                "recommendations_generated": run.recommendations_generated,
                "warnings_count": run.warnings_count,
            },
        )
        return run

    def cancel(self, run_id: int) -> MRPRun:
        """Flag a pending or running run as cancelled. A running worker stops at its next product."""
        run = self.get_run(run_id)
        if not is_valid_mrp_run_transition(run.status, MrpRunStatus.CANCELLED.value):
            raise InvalidStateError(
                f"Cannot cancel MRP run in status {run.status}",
                current_state=run.status,
                allowed_states=[MrpRunStatus.PENDING.value, MrpRunStatus.RUNNING.value],
            )
        run.status = MrpRunStatus.CANCELLED.value
        run.completed_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(run)
        logger.info("MRP run cancelled", extra={"run_id": run.id})
        return run

    def progress(self, run_id: int) -> Optional[ProgressInfo]:
        run = self.db.get(MRPRun, run_id)
        if run is None:
            return None
        self.db.refresh(run)
        return ProgressInfo.from_run(run)

    def _finish(
        self,
        run: MRPRun,
        status: MrpRunStatus,
        warnings: RunWarnings,
        error_message: Optional[str] = None,
    ) -> None:
        run.status = status.value
        run.error_message = error_message
        run.completed_at = datetime.utcnow()
        run.progress_updated_at = run.completed_at
        run.current_product_id = None
        run.warnings_count = len(warnings)
        run.warnings_summary = warnings.summary() or None
        self.db.commit()
        self.db.refresh(run)

    def _is_cancelled(self, run_id: int) -> bool:
        status = self.db.query(MRPRun.status).filter(MRPRun.id == run_id).scalar()
        return status == MrpRunStatus.CANCELLED.value

    # ========================================================================
    # Planning
    # ========================================================================

    def _plan(
        self,
        run: MRPRun,
        warnings: RunWarnings,
        on_progress: Optional[ProgressCallback],
    ) -> List[MRPChangeLog]:
        """Plan every product in scope. Returns the change-log rows the run consumed."""
        start, end = run.planning_horizon_start, run.planning_horizon_end
        scope = WarehouseScope.from_filters(run.warehouse_filters)

        graph = self.product_graph(start)
        low_level_codes = compute_low_level_codes(graph)

        products = self._products_in_scope(run.product_filters or {})
        if run.net_change:
            products, consumed = self._restrict_to_changes(run, products, graph, warnings)
        else:
            consumed = self.change_log.pending_entries()

        ordered = sorted(products, key=lambda p: (low_level_codes.get(p.id, 0), p.id))
        run.products_total = len(ordered)
        run.progress_updated_at = datetime.utcnow()
        self.db.commit()

        explosion = self._explosion_for(start)
        independent = self.demand.independent_demand(start, end, scope, [p.id for p in ordered])
        dependent: Dict[int, List[DemandEntry]] = defaultdict(list)
        if run.consider_wip:
            self._add_wip_component_demand(start, end, scope, explosion, dependent, warnings)
        planned: Set[int] = set()

        for index, product in enumerate(ordered, start=1):
            if self._is_cancelled(run.id):
                self.db.commit()
                return consumed
            run.current_product_id = product.id
            try:
                recommendations = self._plan_product(
                    run, product, scope, independent.get(product.id, []), dependent, planned, explosion, warnings
                )
            except CyclicBomError:
                raise
            except PlanningException as exc:
                warnings.add("product_skipped", f"{product.sku}: {exc.message}", product_id=product.id)
                logger.warning(
                    "MRP skipped product",
                    extra={"run_id": run.id, "product_id": product.id, "error": exc.message},
                )
                recommendations = []
            planned.add(product.id)

            run.recommendations_generated = (run.recommendations_generated or 0) + len(recommendations)
            run.products_processed = index
            if index % self.options.progress_every == 0 or index == len(ordered):
                run.progress_updated_at = datetime.utcnow()
                self.db.commit()
            if on_progress is not None:
                on_progress(ProgressInfo.from_run(run))

        self.db.commit()
        return consumed

    def product_graph(self, on_date: Optional[date] = None) -> Dict[int, Set[int]]:
        """Parent -> components over every line of every effective default BOM."""
        product_ids = {
            row[0]
            for row in self.db.query(BOM.product_id).filter(
                BOM.status == "active",
                BOM.is_default == True,  # noqa: E712
            ).distinct().all()
        }
        graph: Dict[int, Set[int]] = {}
        for product_id in product_ids:
            bom = get_default_bom(self.db, product_id, on_date)
            if bom is not None:
                graph[product_id] = {line.component_id for line in bom.lines}
        return graph

    def _products_in_scope(self, filters: Dict[str, Any]) -> List[Product]:
        query = self.db.query(Product).filter(Product.active == True)  # noqa: E712
        if filters.get("product_ids"):
            query = query.filter(Product.id.in_(filters["product_ids"]))
        if filters.get("category_ids"):
            query = query.filter(Product.category_id.in_(filters["category_ids"]))
        make_or_buy = filters.get("make_or_buy")
        if make_or_buy == "make":
            query = query.filter(Product.procurement_type.in_(["make", "make_or_buy"]))
        elif make_or_buy == "buy":
            query = query.filter(Product.procurement_type.in_(["buy", "make_or_buy"]))
        return query.all()

    def _restrict_to_changes(
        self,
        run: MRPRun,
        products: List[Product],
        graph: Dict[int, Set[int]],
        warnings: RunWarnings,
    ) -> Tuple[List[Product], List[MRPChangeLog]]:
        """Dirty products and everything below them; a full run when there is nothing to compare against."""
        if not self.change_log.has_entries():
            warnings.add("degraded_full_run", "No change log available; planned every product")
            return products, []

        previous = self.db.query(MRPRun.id).filter(
            MRPRun.status == MrpRunStatus.COMPLETED.value,
            MRPRun.id != run.id,
        ).first()
        entries = self.change_log.pending_entries()
        if previous is None:
            warnings.add("degraded_full_run", "No previous completed run; planned every product")
            return products, entries

        affected = descendants(graph, {entry.product_id for entry in entries})
        logger.info(
            "Net change run restricted to changed products",
            extra={"run_id": run.id, "dirty": len(entries), "affected": len(affected)},
        )
        return [p for p in products if p.id in affected], entries

    def _plan_product(
        self,
        run: MRPRun,
        product: Product,
        scope: WarehouseScope,
        independent: List[DemandEntry],
        dependent: Dict[int, List[DemandEntry]],
        planned: Set[int],
        explosion: BomExplosionEngine,
        warnings: RunWarnings,
    ) -> List[MRPRecommendation]:
        """Time-phased netting of one product, lot-for-lot."""
        start, end = run.planning_horizon_start, run.planning_horizon_end

        gross_by_day: Dict[date, Decimal] = defaultdict(lambda: ZERO)
        sources_by_day: Dict[date, List[DemandEntry]] = defaultdict(list)
        for entry in sorted(independent + dependent.get(product.id, []), key=lambda e: e.due_date):
            gross_by_day[entry.due_date] += entry.quantity
            sources_by_day[entry.due_date].append(entry)

        on_hand = self.stock.get_on_hand(product.id, scope)
        wip = self.stock.get_wip(product.id, scope) if run.consider_wip else ZERO
        receipts = self.stock.get_scheduled_receipts(product.id, scope, start, end)
        if run.include_safety_stock:
            safety = Decimal(str(product.safety_stock or 0))
            reorder = Decimal(str(product.reorder_point or 0))
        else:
            safety = reorder = ZERO
        floor = max(safety, reorder)
        lead_time = (product.lead_time_days or 0) if run.respect_lead_times else 0

        bom = get_default_bom(self.db, product.id, start) if product.can_be_manufactured else None
        rec_type = RecommendationType.WORK_ORDER if bom is not None else RecommendationType.PURCHASE_ORDER
        routing = get_active_routing(self.db, product.id, start) if bom is not None else None

        projected = on_hand + wip
        recommendations: List[MRPRecommendation] = []
        day = start
        while day <= end:
            receipt = receipts.get(day, ZERO)
            gross = gross_by_day.get(day, ZERO)
            projected += receipt - gross
            if projected < floor:
                net = floor - projected
                rec = self._recommendation(
                    run=run,
                    product=product,
                    rec_type=rec_type,
                    required_date=day,
                    gross=gross,
                    net=net,
                    projected_after=projected + net,
                    on_hand=on_hand,
                    wip=wip,
                    receipt=receipt,
                    safety=safety,
                    reorder=reorder,
                    lead_time=lead_time,
                    sources=sources_by_day.get(day, []),
                    scope=scope,
                    routing=routing,
                    warnings=warnings,
                )
                projected += net
                self.db.add(rec)
                recommendations.append(rec)
                if bom is not None:
                    self._push_dependent_demand(
                        product, bom, net, rec.suggested_date, start, dependent, planned, explosion, warnings
                    )
            day += timedelta(days=1)

        if recommendations:
            logger.debug(
                "MRP product planned",
                extra={"run_id": run.id, "product_id": product.id, "recommendations": len(recommendations)},
            )
        return recommendations

    def _component_requirements(
        self,
        product: Product,
        bom: BOM,
        quantity: Decimal,
        explosion: BomExplosionEngine,
        warnings: RunWarnings,
    ) -> Optional[Dict[int, Decimal]]:
        """Leaf component totals to make ``quantity`` of ``product``; None when the BOM cannot be exploded."""
        try:
            bom_unit = normalize_unit(bom.unit)
            product_unit = normalize_unit(product.unit)
            qty = quantity
            if bom_unit != product_unit:
                qty = self.converter.convert(qty, product_unit, bom_unit, product_id=product.id)
            result = self.cache.explode(
                self.db, bom.id, qty, include_optional=False, aggregate_by_product=True, engine=explosion
            )
        except CyclicBomError:
            raise
        except PlanningException as exc:
            warnings.add(
                "explosion_failed",
                f"{product.sku} (BOM {bom.id}): {exc.message}",
                product_id=product.id,
            )
            logger.warning(
                "Dependent demand not exploded",
                extra={"product_id": product.id, "bom_id": bom.id, "error": exc.message},
            )
            return None

        if result.truncated:
            for message in result.warnings:
                warnings.add("explosion_truncated", f"{product.sku}: {message}", product_id=product.id)
        return {
            component_id: component_qty
            for component_id, component_qty in result.totals_by_product().items()
            if component_qty > 0
        }

    def _push_dependent_demand(
        self,
        product: Product,
        bom: BOM,
        quantity: Decimal,
        due_date: date,
        horizon_start: date,
        dependent: Dict[int, List[DemandEntry]],
        planned: Set[int],
        explosion: BomExplosionEngine,
        warnings: RunWarnings,
    ) -> None:
        """Explode a planned work order into component demand due when the order should start."""
        requirements = self._component_requirements(product, bom, quantity, explosion, warnings)
        if not requirements:
            return

        due = max(due_date, horizon_start)
        for component_id, component_qty in requirements.items():
            if component_id in planned:
                # Netting for this component is already done; the demand would be dropped silently.
                warnings.add(
                    "late_dependent_demand",
                    f"{product.sku}: {component_qty.normalize():f} of product {component_id} "
                    f"arrived after that product was planned",
                    product_id=component_id,
                )
                logger.warning(
                    "Dependent demand for an already planned product",
                    extra={"product_id": product.id, "component_id": component_id, "quantity": str(component_qty)},
                )
                continue
            dependent[component_id].append(DemandEntry(
                product_id=component_id,
                due_date=due,
                quantity=component_qty,
                source_type="dependent",
                source_id=product.id,
                original_due_date=due_date,
            ))

    def _add_wip_component_demand(
        self,
        start: date,
        end: date,
        scope: WarehouseScope,
        explosion: BomExplosionEngine,
        dependent: Dict[int, List[DemandEntry]],
        warnings: RunWarnings,
    ) -> None:
        """Components still to be issued to open production orders, due when the order starts."""
        for order in self.stock.get_wip_orders(scope):
            due = order.start_date or start
            if due > end:
                continue
            product = self.db.get(Product, order.product_id)
            if product is None:
                continue
            bom = self.db.get(BOM, order.bom_id) if order.bom_id else get_default_bom(self.db, product.id, start)
            if bom is None:
                warnings.add(
                    "wip_without_bom",
                    f"Production order {order.id} for {product.sku} has no BOM",
                    product_id=product.id,
                )
                continue
            requirements = self._component_requirements(product, bom, order.quantity_remaining, explosion, warnings)
            for component_id, component_qty in (requirements or {}).items():
                dependent[component_id].append(DemandEntry(
                    product_id=component_id,
                    due_date=max(due, start),
                    quantity=component_qty,
                    source_type="work_order",
                    source_id=order.id,
                    original_due_date=due,
                ))

    def _priority(self, days_until: int) -> RecommendationPriority:
        if days_until < 0:
            return RecommendationPriority.CRITICAL
        if days_until <= self.options.urgent_window_days:
            return RecommendationPriority.HIGH
        if days_until <= self.options.medium_window_days:
            return RecommendationPriority.MEDIUM
        return RecommendationPriority.LOW

    def _order_date(self, required_date: date, lead_time: int, routing: Optional[Routing]) -> date:
        if not self.options.working_day_lead_times:
            return required_date - timedelta(days=lead_time)
        work_center_id = None
        if routing is not None:
            active = [op for op in routing.operations if op.is_active]
            work_center_id = active[0].work_center_id if active else None
        return self.capacity.subtract_working_days(required_date, lead_time, work_center_id)

    def _recommendation(
        self,
        run: MRPRun,
        product: Product,
        rec_type: RecommendationType,
        required_date: date,
        gross: Decimal,
        net: Decimal,
        projected_after: Decimal,
        on_hand: Decimal,
        wip: Decimal,
        receipt: Decimal,
        safety: Decimal,
        reorder: Decimal,
        lead_time: int,
        sources: List[DemandEntry],
        scope: WarehouseScope,
        routing: Optional[Routing],
        warnings: RunWarnings,
    ) -> MRPRecommendation:
        today = date.today()
        order_date = self._order_date(required_date, lead_time, routing)
        suggested_date = max(order_date, today)
        days_until = (order_date - today).days

        priority = self._priority(days_until)
        is_urgent = days_until <= self.options.urgent_window_days
        if on_hand < 0:
            if PRIORITY_RANK[priority.value] > PRIORITY_RANK[RecommendationPriority.HIGH.value]:
                priority = RecommendationPriority.HIGH
            reason = f"Negative stock status: {abs(on_hand).normalize():f} units. Priority requirement."
        elif days_until <= 0:
            reason = "Order date is today or in the past - immediate action required"
        elif days_until <= self.options.urgent_window_days:
            reason = f"Order date is within {self.options.urgent_window_days} days"
        else:
            reason = None

        capacity_issues: List[Dict[str, Any]] = []
        if self.options.check_capacity and routing is not None:
            capacity_issues = self.capacity.check_capacity(
                routing.hours_by_work_center(net), suggested_date, required_date
            )
        if capacity_issues:
            codes = ", ".join(issue["work_center_code"] for issue in capacity_issues)
            is_urgent = True
            reason = reason or f"Insufficient capacity at {codes} before {required_date.isoformat()}"
            warnings.add(
                "capacity_shortfall",
                f"{product.sku}: {net.normalize():f} due {required_date.isoformat()} does not fit {codes}",
                product_id=product.id,
            )
            logger.info(
                "Work order recommendation exceeds capacity",
                extra={"run_id": run.id, "product_id": product.id, "work_centers": codes},
            )

        if sources:
            source_type, source_id = sources[0].source_type, sources[0].source_id
        elif reorder > safety:
            source_type, source_id = "reorder_point", None
        elif safety > 0:
            source_type, source_id = "safety_stock", None
        else:
            source_type, source_id = "negative_stock", None

        details = {
            "safety_stock": str(safety),
            "reorder_point": str(reorder),
            "lead_time_days": lead_time,
            "on_hand": str(on_hand),
            "wip": str(wip),
            "on_order_by_required_date": str(self.stock.get_on_order(product.id, scope, required_date)),
            "receipts_on_day": str(receipt),
            "unclipped_order_date": order_date.isoformat(),
            "demands": [entry.to_dict() for entry in sources],
        }
        if routing is not None:
            details["routing_id"] = routing.id
        if capacity_issues:
            details["capacity_issues"] = capacity_issues

        return MRPRecommendation(
            mrp_run_id=run.id,
            product_id=product.id,
            warehouse_id=scope.single_warehouse_id or self.options.default_warehouse_id,
            recommendation_type=rec_type.value,
            required_date=required_date,
            suggested_date=suggested_date,
            due_date=required_date,
            gross_requirement=gross,
            net_requirement=net,
            suggested_quantity=net,
            current_stock=on_hand,
            projected_stock=projected_after,
            demand_source_type=source_type,
            demand_source_id=source_id,
            priority=priority.value,
            is_urgent=is_urgent,
            urgency_reason=reason,
            status=RecommendationStatus.PENDING.value,
            calculation_details=details,
        )

    # ========================================================================
    # Reporting
    # ========================================================================

    def statistics(self) -> Dict[str, Any]:
        today = date.today()
        open_statuses = [RecommendationStatus.PENDING.value, RecommendationStatus.APPROVED.value]

        last_completed = self.db.query(MRPRun).filter(
            MRPRun.status == MrpRunStatus.COMPLETED.value
        ).order_by(MRPRun.completed_at.desc(), MRPRun.id.desc()).first()

        pending = self.db.query(MRPRecommendation).filter(
            MRPRecommendation.status == RecommendationStatus.PENDING.value
        )
        by_type = dict(
            self.db.query(MRPRecommendation.recommendation_type, func.count(MRPRecommendation.id))
            .filter(MRPRecommendation.status == RecommendationStatus.PENDING.value)
            .group_by(MRPRecommendation.recommendation_type)
            .all()
        )

        return {
            "total_runs": self.db.query(func.count(MRPRun.id)).scalar() or 0,
            "last_completed_run": {
                "id": last_completed.id,
                "run_number": last_completed.run_number,
                "completed_at": last_completed.completed_at.isoformat() if last_completed.completed_at else None,
                "recommendations_generated": last_completed.recommendations_generated,
            } if last_completed else None,
            "pending_recommendations": pending.count(),
            "urgent_recommendations": pending.filter(MRPRecommendation.is_urgent == True).count(),  # noqa: E712
            "overdue_recommendations": self.db.query(MRPRecommendation).filter(
                MRPRecommendation.status.in_(open_statuses),
                MRPRecommendation.required_date < today,
            ).count(),
            "pending_by_type": {
                RecommendationType.PURCHASE_ORDER.value: by_type.get(RecommendationType.PURCHASE_ORDER.value, 0),
                RecommendationType.WORK_ORDER.value: by_type.get(RecommendationType.WORK_ORDER.value, 0),
            },
        }


def execute_run_in_background(run_id: int) -> None:
    """BackgroundTasks entry point: executes a run in its own session."""
    db = SessionLocal()
    try:
        MrpEngine(db).execute(run_id)
    except Exception:
        # Already recorded on the run row as failed
        logger.error("Background MRP run raised", exc_info=True, extra={"run_id": run_id})
    finally:
        db.close()
