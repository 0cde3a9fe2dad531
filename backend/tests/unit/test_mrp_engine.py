"""
Unit tests for the MRP engine

Netting, dependent demand through BOMs, work-order component demand,
lead-time offsets over working days, capacity checks, priorities, run
lifecycle (cancellation, failure on cycles) and net-change scoping.
"""
import pytest
from collections import defaultdict
from datetime import date, datetime, timedelta
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from mfgplan.exceptions import CyclicProductDependencyError, InvalidStateError, MrpRunNotFoundError, ValidationError
from mfgplan.models.mrp import MRPChangeLog, MRPRecommendation
from mfgplan.services.bom_helpers import get_default_bom
from mfgplan.services.capacity_calendar import CapacityCalendar, CapacityOptions
from mfgplan.services.explosion_cache import ExplosionCache
from mfgplan.services.mrp import (
    MrpEngine,
    MrpOptions,
    MrpRunConfig,
    RunWarnings,
    compute_low_level_codes,
    descendants,
)
from mfgplan.services.mrp_sources import ChangeLogSource
from tests.factories import (
    create_test_bom,
    create_test_calendar_day,
    create_test_calendar_range,
    create_test_inventory,
    create_test_location,
    create_test_product,
    create_test_mrp_run,
    create_test_production_order,
    create_test_purchase_order,
    create_test_routing,
    create_test_sales_order,
    create_test_work_center,
)

TODAY = date.today()


@pytest.fixture
def engine(db_session):
    """Every day is a working day, so lead times offset in calendar days."""
    capacity = CapacityCalendar(db_session, CapacityOptions(working_weekdays=tuple(range(7))))
    return MrpEngine(db_session, MrpOptions(), cache=ExplosionCache(), capacity=capacity)


@pytest.fixture
def weekday_engine(db_session):
    capacity = CapacityCalendar(db_session, CapacityOptions())
    return MrpEngine(db_session, MrpOptions(), cache=ExplosionCache(), capacity=capacity)


@pytest.fixture
def bike(db_session):
    """BIKE (make) built from 2 x CHAIN (buy)."""
    chain = create_test_product(db_session, sku="CHAIN")
    bike = create_test_product(db_session, sku="BIKE", procurement_type="make")
    create_test_bom(db_session, bike, lines=[{"component": chain, "quantity": 2}])
    db_session.commit()
    return {"bike": bike, "chain": chain}


def _recommendations(db, run):
    rows = db.query(MRPRecommendation).filter(MRPRecommendation.mrp_run_id == run.id).all()
    return {rec.product_id: rec for rec in rows}


class TestProductGraph:
    def test_low_level_codes(self):
        codes = compute_low_level_codes({1: {2, 3}, 2: {3}})
        assert codes == {1: 0, 2: 1, 3: 2}

    def test_cycle_reports_path(self):
        with pytest.raises(CyclicProductDependencyError) as exc_info:
            compute_low_level_codes({1: {2}, 2: {3}, 3: {1}})
        path = exc_info.value.path
        assert path[0] == path[-1]
        assert set(path) == {1, 2, 3}

    def test_descendants_include_seeds(self):
        assert descendants({1: {2}, 2: {3}, 4: {5}}, [1]) == {1, 2, 3}

    def test_graph_from_default_boms(self, engine, bike):
        assert engine.product_graph() == {bike["bike"].id: {bike["chain"].id}}


class TestNetting:
    def test_demand_flows_to_components(self, db_session, engine, bike):
        create_test_sales_order(db_session, bike["bike"], Decimal("10"), due_date=TODAY + timedelta(days=5))
        db_session.commit()

        run = engine.run(MrpRunConfig())

        assert run.status == "completed"
        recs = _recommendations(db_session, run)
        wo = recs[bike["bike"].id]
        po = recs[bike["chain"].id]
        assert wo.recommendation_type == "work_order"
        assert wo.suggested_quantity == Decimal("10")
        assert wo.suggested_date <= wo.required_date
        assert wo.priority == "medium"
        assert wo.demand_source_type == "sales_order"
        assert po.recommendation_type == "purchase_order"
        assert po.suggested_quantity == Decimal("20")
        assert po.required_date == wo.suggested_date
        assert po.demand_source_type == "dependent"
        assert run.recommendations_generated == 2

    def test_on_hand_is_netted(self, db_session, engine, bike):
        create_test_inventory(db_session, bike["bike"], Decimal("4"))
        create_test_sales_order(db_session, bike["bike"], Decimal("10"), due_date=TODAY + timedelta(days=5))
        db_session.commit()

        run = engine.run(MrpRunConfig())

        recs = _recommendations(db_session, run)
        assert recs[bike["bike"].id].suggested_quantity == Decimal("6")
        assert recs[bike["chain"].id].suggested_quantity == Decimal("12")

    def test_scheduled_receipt_covers_demand(self, db_session, engine):
        bolt = create_test_product(db_session, sku="BOLT")
        create_test_purchase_order(db_session, bolt, Decimal("10"), expected_date=TODAY + timedelta(days=2))
        create_test_sales_order(db_session, bolt, Decimal("10"), due_date=TODAY + timedelta(days=5))
        db_session.commit()

        run = engine.run(MrpRunConfig())

        assert _recommendations(db_session, run) == {}

    def test_wip_counts_as_supply(self, db_session, engine, bike):
        create_test_production_order(db_session, bike["bike"], Decimal("10"), status="released")
        create_test_sales_order(db_session, bike["bike"], Decimal("10"), due_date=TODAY + timedelta(days=5))
        db_session.commit()

        run = engine.run(MrpRunConfig())

        recs = _recommendations(db_session, run)
        assert bike["bike"].id not in recs
        chain = recs[bike["chain"].id]
        assert chain.suggested_quantity == Decimal("20")
        assert chain.demand_source_type == "work_order"

    def test_wip_component_demand_uses_remaining_quantity(self, db_session, engine, bike):
        order = create_test_production_order(
            db_session, bike["bike"], Decimal("10"), status="in_progress",
            quantity_completed=Decimal("4"), due_date=TODAY + timedelta(days=6),
        )
        create_test_inventory(db_session, bike["chain"], Decimal("5"))
        db_session.commit()

        run = engine.run(MrpRunConfig())

        chain = _recommendations(db_session, run)[bike["chain"].id]
        assert chain.suggested_quantity == Decimal("7")
        assert chain.required_date == TODAY + timedelta(days=6)
        assert chain.demand_source_id == order.id

    def test_wip_ignored_when_disabled(self, db_session, engine, bike):
        create_test_production_order(db_session, bike["bike"], Decimal("10"), status="released")
        create_test_sales_order(db_session, bike["bike"], Decimal("10"), due_date=TODAY + timedelta(days=5))
        db_session.commit()

        run = engine.run(MrpRunConfig(consider_wip=False))

        assert bike["bike"].id in _recommendations(db_session, run)

    def test_shipped_and_draft_orders_are_not_demand(self, db_session, engine):
        bolt = create_test_product(db_session, sku="BOLT")
        create_test_sales_order(db_session, bolt, Decimal("5"), due_date=TODAY + timedelta(days=5),
                                shipped_quantity=Decimal("5"))
        create_test_sales_order(db_session, bolt, Decimal("5"), due_date=TODAY + timedelta(days=5), status="draft")
        db_session.commit()

        run = engine.run(MrpRunConfig())

        assert _recommendations(db_session, run) == {}

    def test_safety_stock_without_demand(self, db_session, engine):
        bolt = create_test_product(db_session, sku="BOLT", safety_stock=Decimal("5"))
        db_session.commit()

        run = engine.run(MrpRunConfig())

        rec = _recommendations(db_session, run)[bolt.id]
        assert rec.suggested_quantity == Decimal("5")
        assert rec.demand_source_type == "safety_stock"
        assert rec.required_date == TODAY

    def test_safety_stock_can_be_ignored(self, db_session, engine):
        create_test_product(db_session, sku="BOLT", safety_stock=Decimal("5"))
        db_session.commit()

        run = engine.run(MrpRunConfig(include_safety_stock=False))

        assert _recommendations(db_session, run) == {}

    def test_reorder_point_above_safety_stock_is_the_floor(self, db_session, engine):
        bolt = create_test_product(
            db_session, sku="BOLT", safety_stock=Decimal("5"), reorder_point=Decimal("12")
        )
        create_test_inventory(db_session, bolt, Decimal("8"))
        db_session.commit()

        run = engine.run(MrpRunConfig())

        rec = _recommendations(db_session, run)[bolt.id]
        assert rec.suggested_quantity == Decimal("4")
        assert rec.projected_stock == Decimal("12")
        assert rec.demand_source_type == "reorder_point"
        assert rec.calculation_details["reorder_point"] == "12"

    def test_reorder_point_ignored_with_safety_stock(self, db_session, engine):
        bolt = create_test_product(db_session, sku="BOLT", reorder_point=Decimal("12"))
        create_test_inventory(db_session, bolt, Decimal("8"))
        db_session.commit()

        run = engine.run(MrpRunConfig(include_safety_stock=False))

        assert _recommendations(db_session, run) == {}

    def test_warehouse_scope(self, db_session, engine):
        main = create_test_location(db_session)
        branch = create_test_location(db_session)
        bolt = create_test_product(db_session, sku="BOLT")
        create_test_inventory(db_session, bolt, Decimal("10"), location=main)
        create_test_sales_order(db_session, bolt, Decimal("10"), due_date=TODAY + timedelta(days=3), location=branch)
        db_session.commit()

        unscoped = engine.run(MrpRunConfig())
        scoped = engine.run(MrpRunConfig(warehouse_ids=[branch.id]))

        assert _recommendations(db_session, unscoped) == {}
        rec = _recommendations(db_session, scoped)[bolt.id]
        assert rec.suggested_quantity == Decimal("10")
        assert rec.warehouse_id == branch.id

    def test_product_filter(self, db_session, engine, bike):
        run = engine.run(MrpRunConfig(product_ids=[bike["chain"].id]))
        assert run.products_total == 1

    def test_unconvertible_bom_unit_is_a_warning(self, db_session, engine):
        resin = create_test_product(db_session, sku="RESIN")
        part = create_test_product(db_session, sku="PART", procurement_type="make")
        create_test_bom(db_session, part, unit="KG", lines=[{"component": resin, "quantity": 1}])
        create_test_sales_order(db_session, part, Decimal("3"), due_date=TODAY + timedelta(days=10))
        db_session.commit()

        run = engine.run(MrpRunConfig())

        assert run.status == "completed"
        assert run.warnings_summary["explosion_failed"]["count"] == 1
        assert resin.id not in _recommendations(db_session, run)


class TestBomEffectivity:
    def _structure(self, db, sub_bom_expiry=None):
        """TOP -> phantom SUB -> 3 x COMP; SUB's BOM optionally expires."""
        comp = create_test_product(db, sku="COMP")
        sub = create_test_product(db, sku="SUB", procurement_type="make")
        top = create_test_product(db, sku="TOP", procurement_type="make")
        create_test_bom(db, sub, lines=[{"component": comp, "quantity": 3}], expiry_date=sub_bom_expiry)
        create_test_bom(db, top, lines=[{"component": sub, "quantity": 1, "is_phantom": True}])
        return top, sub, comp

    def test_phantom_expands_into_components(self, db_session, engine):
        top, sub, comp = self._structure(db_session)
        create_test_sales_order(db_session, top, Decimal("4"), due_date=TODAY + timedelta(days=5))
        db_session.commit()

        run = engine.run(MrpRunConfig())

        recs = _recommendations(db_session, run)
        assert recs[comp.id].suggested_quantity == Decimal("12")
        assert sub.id not in recs

    def test_boms_resolved_as_of_horizon_start(self, db_session, engine):
        start = TODAY + timedelta(days=10)
        top, sub, comp = self._structure(db_session, sub_bom_expiry=TODAY + timedelta(days=5))
        create_test_sales_order(db_session, top, Decimal("4"), due_date=start + timedelta(days=3))
        db_session.commit()

        run = engine.run(MrpRunConfig(planning_horizon_start=start, planning_horizon_end=start + timedelta(days=20)))

        recs = _recommendations(db_session, run)
        assert recs[top.id].suggested_quantity == Decimal("4")
        # SUB has no effective BOM at the horizon, so it is bought as a whole
        assert recs[sub.id].recommendation_type == "purchase_order"
        assert recs[sub.id].suggested_quantity == Decimal("4")
        assert comp.id not in recs
        assert "late_dependent_demand" not in (run.warnings_summary or {})

    def test_same_bom_cached_per_date(self, db_session, bike):
        cache = ExplosionCache()
        planner = MrpEngine(db_session, MrpOptions(), cache=cache)
        bom_id = get_default_bom(db_session, bike["bike"].id).id

        cache.explode(db_session, bom_id, engine=planner._explosion_for(TODAY))
        cache.explode(db_session, bom_id, engine=planner._explosion_for(TODAY))
        cache.explode(db_session, bom_id, engine=planner._explosion_for(TODAY + timedelta(days=9)))

        assert cache.stats()["explosions"] == 2

    def test_demand_for_planned_product_is_reported(self, db_session, engine, bike):
        run = engine.create_run(MrpRunConfig())
        warnings = RunWarnings()
        dependent = defaultdict(list)
        bom = get_default_bom(db_session, bike["bike"].id)

        engine._push_dependent_demand(
            bike["bike"], bom, Decimal("5"), TODAY, run.planning_horizon_start,
            dependent, {bike["chain"].id}, engine._explosion_for(TODAY), warnings,
        )

        assert dependent == {}
        assert warnings.summary()["late_dependent_demand"]["count"] == 1


class TestLeadTimesAndCapacity:
    def test_lead_time_skips_weekends(self, db_session, weekday_engine):
        due = TODAY + timedelta(days=14)
        monday = due + timedelta(days=(7 - due.weekday()) % 7)
        bolt = create_test_product(db_session, sku="BOLT", lead_time_days=3)
        create_test_sales_order(db_session, bolt, Decimal("10"), due_date=monday)
        db_session.commit()

        run = weekday_engine.run(MrpRunConfig())

        rec = _recommendations(db_session, run)[bolt.id]
        # Fri, Thu, Wed
        assert rec.suggested_date == monday - timedelta(days=5)

    def test_lead_time_in_calendar_days_when_disabled(self, db_session):
        capacity = CapacityCalendar(db_session, CapacityOptions())
        engine = MrpEngine(
            db_session, MrpOptions(working_day_lead_times=False), cache=ExplosionCache(), capacity=capacity
        )
        bolt = create_test_product(db_session, sku="BOLT", lead_time_days=3)
        create_test_sales_order(db_session, bolt, Decimal("10"), due_date=TODAY + timedelta(days=14))
        db_session.commit()

        run = engine.run(MrpRunConfig())

        assert _recommendations(db_session, run)[bolt.id].suggested_date == TODAY + timedelta(days=11)

    def _routed_part(self, db, run_minutes, lead_time_days=0):
        wc = create_test_work_center(db, code="ASSY")
        raw = create_test_product(db, sku="RAW")
        part = create_test_product(db, sku="PART", procurement_type="make", lead_time_days=lead_time_days)
        create_test_bom(db, part, lines=[{"component": raw, "quantity": 1}])
        create_test_routing(db, part, operations=[{"work_center": wc, "run_minutes": run_minutes}])
        return wc, part

    def test_work_order_beyond_capacity_is_flagged(self, db_session, engine):
        due = TODAY + timedelta(days=10)
        wc, part = self._routed_part(db_session, run_minutes=240)
        create_test_calendar_day(db_session, wc, due)
        create_test_sales_order(db_session, part, Decimal("10"), due_date=due)
        db_session.commit()

        run = engine.run(MrpRunConfig())

        rec = _recommendations(db_session, run)[part.id]
        assert rec.is_urgent is True
        assert rec.urgency_reason.startswith("Insufficient capacity at ASSY")
        issue = rec.calculation_details["capacity_issues"][0]
        assert issue["required_hours"] == 40.0
        assert issue["available_hours"] == 8.0
        assert issue["shortage"] == 32.0
        assert run.warnings_summary["capacity_shortfall"]["count"] == 1

    def test_work_order_within_capacity(self, db_session, engine):
        due = TODAY + timedelta(days=10)
        wc, part = self._routed_part(db_session, run_minutes=30, lead_time_days=5)
        create_test_calendar_range(db_session, wc, TODAY + timedelta(days=5), 6)
        create_test_sales_order(db_session, part, Decimal("10"), due_date=due)
        db_session.commit()

        run = engine.run(MrpRunConfig())

        rec = _recommendations(db_session, run)[part.id]
        assert rec.suggested_date == TODAY + timedelta(days=5)
        assert rec.is_urgent is False
        assert "capacity_issues" not in rec.calculation_details
        assert "capacity_shortfall" not in (run.warnings_summary or {})

    def test_capacity_check_can_be_disabled(self, db_session):
        capacity = CapacityCalendar(db_session, CapacityOptions(working_weekdays=tuple(range(7))))
        engine = MrpEngine(db_session, MrpOptions(check_capacity=False), cache=ExplosionCache(), capacity=capacity)
        wc, part = self._routed_part(db_session, run_minutes=240)
        create_test_sales_order(db_session, part, Decimal("10"), due_date=TODAY + timedelta(days=10))
        db_session.commit()

        run = engine.run(MrpRunConfig())

        assert _recommendations(db_session, run)[part.id].is_urgent is False


class TestPriorities:
    @pytest.mark.parametrize("days,expected", [
        (-1, "critical"), (0, "high"), (3, "high"), (4, "medium"), (7, "medium"), (8, "low"),
    ])
    def test_priority_windows(self, engine, days, expected):
        assert engine._priority(days).value == expected

    def test_lead_time_in_the_past_is_critical(self, db_session, engine):
        bolt = create_test_product(db_session, sku="BOLT", lead_time_days=10)
        create_test_sales_order(db_session, bolt, Decimal("10"), due_date=TODAY + timedelta(days=5))
        db_session.commit()

        run = engine.run(MrpRunConfig())

        rec = _recommendations(db_session, run)[bolt.id]
        assert rec.priority == "critical"
        assert rec.is_urgent is True
        assert rec.suggested_date == TODAY
        assert rec.urgency_reason == "Order date is today or in the past - immediate action required"
        assert rec.calculation_details["unclipped_order_date"] == (TODAY - timedelta(days=5)).isoformat()

    def test_lead_times_can_be_ignored(self, db_session, engine):
        bolt = create_test_product(db_session, sku="BOLT", lead_time_days=10)
        create_test_sales_order(db_session, bolt, Decimal("10"), due_date=TODAY + timedelta(days=5))
        db_session.commit()

        run = engine.run(MrpRunConfig(respect_lead_times=False))

        rec = _recommendations(db_session, run)[bolt.id]
        assert rec.suggested_date == TODAY + timedelta(days=5)
        assert rec.priority == "medium"

    def test_negative_stock_forces_high_priority(self, db_session, engine):
        bolt = create_test_product(db_session, sku="BOLT")
        create_test_inventory(db_session, bolt, Decimal("-3"))
        db_session.commit()

        run = engine.run(MrpRunConfig(
            planning_horizon_start=TODAY + timedelta(days=20),
            planning_horizon_end=TODAY + timedelta(days=30),
        ))

        rec = _recommendations(db_session, run)[bolt.id]
        assert rec.suggested_quantity == Decimal("3")
        assert rec.priority == "high"
        assert rec.urgency_reason == "Negative stock status: 3 units. Priority requirement."
        assert rec.demand_source_type == "negative_stock"


class TestRunLifecycle:
    def test_run_numbers_are_sequential(self, engine):
        prefix = f"MRP-{datetime.utcnow():%Y%m%d}-"

        first = engine.create_run(MrpRunConfig())
        second = engine.create_run(MrpRunConfig())

        assert first.run_number == f"{prefix}0001"
        assert second.run_number == f"{prefix}0002"
        assert first.status == "pending"

    def test_run_number_follows_highest_issued(self, db_session, engine):
        prefix = f"MRP-{datetime.utcnow():%Y%m%d}-"
        create_test_mrp_run(db_session, run_number=f"{prefix}0002")
        db_session.commit()

        run = engine.create_run(MrpRunConfig())

        assert run.run_number == f"{prefix}0003"

    def test_run_number_collision_is_retried(self, db_session, engine, monkeypatch):
        prefix = f"MRP-{datetime.utcnow():%Y%m%d}-"
        create_test_mrp_run(db_session, run_number=f"{prefix}0001")
        db_session.commit()
        numbers = iter([f"{prefix}0001", f"{prefix}0005"])
        monkeypatch.setattr(engine, "_next_run_number", lambda: next(numbers))

        run = engine.create_run(MrpRunConfig())

        assert run.run_number == f"{prefix}0005"

    def test_run_number_gives_up_after_attempts(self, db_session, monkeypatch):
        prefix = f"MRP-{datetime.utcnow():%Y%m%d}-"
        create_test_mrp_run(db_session, run_number=f"{prefix}0001")
        db_session.commit()
        engine = MrpEngine(db_session, MrpOptions(run_number_attempts=2), cache=ExplosionCache())
        monkeypatch.setattr(engine, "_next_run_number", lambda: f"{prefix}0001")

        with pytest.raises(IntegrityError):
            engine.create_run(MrpRunConfig())

    def test_default_horizon(self, engine):
        run = engine.create_run(MrpRunConfig())
        assert run.planning_horizon_start == TODAY
        assert run.planning_horizon_end == TODAY + timedelta(days=30)

    @pytest.mark.parametrize("config", [
        MrpRunConfig(planning_horizon_start=TODAY, planning_horizon_end=TODAY - timedelta(days=1)),
        MrpRunConfig(planning_horizon_start=TODAY, planning_horizon_end=TODAY + timedelta(days=400)),
        MrpRunConfig(make_or_buy="both"),
        MrpRunConfig(product_ids=["abc"]),
    ])
    def test_invalid_config(self, engine, config):
        with pytest.raises(ValidationError):
            engine.create_run(config)

    def test_progress_after_completion(self, engine, bike):
        run = engine.run(MrpRunConfig())

        info = engine.progress(run.id)

        assert info.status == "completed"
        assert info.products_total == 2
        assert info.products_processed == 2
        assert info.percentage == 100.0
        assert engine.progress(999) is None

    def test_progress_callback_sees_every_product(self, engine, bike):
        seen = []
        engine.run(MrpRunConfig(), on_progress=lambda info: seen.append(info.products_processed))
        assert seen == [1, 2]

    def test_cycle_fails_the_run(self, db_session, engine):
        left = create_test_product(db_session, sku="LEFT", procurement_type="make")
        right = create_test_product(db_session, sku="RIGHT", procurement_type="make")
        create_test_bom(db_session, left, lines=[{"component": right, "quantity": 1}])
        create_test_bom(db_session, right, lines=[{"component": left, "quantity": 1}])
        db_session.commit()

        run = engine.run(MrpRunConfig())

        assert run.status == "failed"
        assert "Cyclic product dependency" in run.error_message
        assert _recommendations(db_session, run) == {}

    def test_cancel_while_running(self, db_session, engine, bike):
        calls = []

        def cancel_after_first(info):
            calls.append(info.products_processed)
            engine.cancel(info.run_id)

        run = engine.run(MrpRunConfig(), on_progress=cancel_after_first)

        assert run.status == "cancelled"
        assert run.products_processed == 1
        assert calls == [1]

    def test_cancelled_before_start_is_untouched(self, engine, bike):
        run = engine.create_run(MrpRunConfig())
        engine.cancel(run.id)

        result = engine.execute(run.id)

        assert result.status == "cancelled"
        assert result.started_at is None

    def test_finished_runs_cannot_be_cancelled_or_rerun(self, engine, bike):
        run = engine.run(MrpRunConfig())

        with pytest.raises(InvalidStateError):
            engine.cancel(run.id)
        with pytest.raises(InvalidStateError):
            engine.execute(run.id)

    def test_unknown_run(self, engine):
        with pytest.raises(MrpRunNotFoundError):
            engine.execute(999)


class TestNetChange:
    def test_without_change_log_plans_everything(self, engine, bike):
        run = engine.run(MrpRunConfig(net_change=True))

        assert run.status == "completed"
        assert run.products_total == 2
        assert "degraded_full_run" in run.warnings_summary

    def test_without_previous_run_plans_everything(self, db_session, engine, bike):
        ChangeLogSource(db_session).mark_dirty(bike["bike"].id, "bom_changed")

        run = engine.run(MrpRunConfig(net_change=True))

        assert run.products_total == 2
        assert "degraded_full_run" in run.warnings_summary

    def test_restricted_to_dirty_products_and_components(self, db_session, engine, bike):
        unrelated = create_test_product(db_session, sku="PAINT")
        log = ChangeLogSource(db_session)
        log.mark_dirty(unrelated.id, "stock_adjusted")
        engine.run(MrpRunConfig())
        assert log.dirty_product_ids() == set()

        entry = log.mark_dirty(bike["bike"].id, "demand_changed")
        run = engine.run(MrpRunConfig(net_change=True))

        assert run.products_total == 2
        assert run.warnings_summary is None
        db_session.refresh(entry)
        assert entry.processed_by_run_id == run.id
        assert db_session.query(MRPChangeLog).filter(MRPChangeLog.processed_at.is_(None)).count() == 0


class TestStatistics:
    def test_counts_pending_recommendations(self, db_session, engine, bike):
        create_test_sales_order(db_session, bike["bike"], Decimal("10"), due_date=TODAY + timedelta(days=5))
        db_session.commit()
        run = engine.run(MrpRunConfig())

        stats = engine.statistics()

        assert stats["total_runs"] == 1
        assert stats["last_completed_run"]["id"] == run.id
        assert stats["pending_recommendations"] == 2
        assert stats["pending_by_type"] == {"purchase_order": 1, "work_order": 1}
        assert stats["overdue_recommendations"] == 0
