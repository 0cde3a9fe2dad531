"""
Unit tests for the BOM explosion engine

1. Shapes: tree, flat, flat aggregated, and their equivalence
2. Linear scaling and the identity case
3. Phantom inlining, optional lines, unit conversion
4. Cycle detection independent of max_depth, truncation
"""
import pytest
from datetime import date, timedelta
from decimal import Decimal

from mfgplan.exceptions import BomNotFoundError, CyclicBomError
from mfgplan.services.bom_explosion import BomExplosionEngine, ExplosionOptions
from mfgplan.services.explosion_cache import ExplosionCache
from tests.factories import create_test_bom, create_test_product


@pytest.fixture
def engine(db_session):
    return BomExplosionEngine(db_session, options=ExplosionOptions(max_depth=10))


@pytest.fixture
def bike(db_session):
    """
    Bike (make)
      2 x Wheel (phantom, default BOM: 36 x Spoke, 1 x Rim)
      1 x Frame
      72 x Spoke (spares, straight on the top level)
      1 x Bell (optional)
    """
    spoke = create_test_product(db_session, sku="SPOKE")
    rim = create_test_product(db_session, sku="RIM")
    frame = create_test_product(db_session, sku="FRAME")
    bell = create_test_product(db_session, sku="BELL")
    wheel = create_test_product(db_session, sku="WHEEL", procurement_type="make")
    bike = create_test_product(db_session, sku="BIKE", procurement_type="make")

    wheel_bom = create_test_bom(db_session, wheel, lines=[
        {"component": spoke, "quantity": 36},
        {"component": rim, "quantity": 1},
    ])
    bike_bom = create_test_bom(db_session, bike, lines=[
        {"component": wheel, "quantity": 2, "is_phantom": True},
        {"component": frame, "quantity": 1},
        {"component": spoke, "quantity": 72},
        {"component": bell, "quantity": 1, "is_optional": True},
    ])
    return {
        "bom": bike_bom,
        "wheel_bom": wheel_bom,
        "spoke": spoke,
        "rim": rim,
        "frame": frame,
        "bell": bell,
        "wheel": wheel,
    }


class TestExplosionShapes:
    def test_flat_inlines_phantom(self, engine, bike):
        result = engine.explode(bike["bom"].id, quantity=Decimal("1"))

        ids = [node.product_id for node in result.nodes]
        assert bike["wheel"].id not in ids
        assert ids.count(bike["spoke"].id) == 2
        assert result.structure == "flat"
        assert result.max_level == 1

    def test_aggregated_sums_every_path(self, engine, bike):
        result = engine.explode(bike["bom"].id, quantity=Decimal("1"), aggregate_by_product=True)

        totals = result.totals_by_product()
        assert totals[bike["spoke"].id] == Decimal("144")
        assert totals[bike["rim"].id] == Decimal("2")
        assert totals[bike["frame"].id] == Decimal("1")
        spoke = next(item for item in result.items if item.product_id == bike["spoke"].id)
        assert len(spoke.sources) == 2
        assert spoke.min_level == 0

    def test_tree_keeps_phantom_parent(self, engine, bike):
        result = engine.explode(bike["bom"].id, quantity=Decimal("1"), as_tree=True)

        wheel = next(node for node in result.nodes if node.product_id == bike["wheel"].id)
        assert result.structure == "tree"
        assert wheel.quantity == Decimal("2")
        assert {child.product_id for child in wheel.children} == {bike["spoke"].id, bike["rim"].id}
        assert all(child.level == 1 for child in wheel.children)

    def test_tree_and_aggregated_flat_agree(self, engine, bike):
        quantity = Decimal("7")
        tree = engine.explode(bike["bom"].id, quantity=quantity, as_tree=True, include_optional=True)
        flat = engine.explode(
            bike["bom"].id, quantity=quantity, aggregate_by_product=True, include_optional=True
        )

        assert tree.totals_by_product() == flat.totals_by_product()

    def test_single_level_returns_level_zero_only(self, engine, bike):
        result = engine.explode(bike["bom"].id, explode_all_levels=False)

        assert {node.level for node in result.nodes} == {0}
        assert bike["wheel"].id in [node.product_id for node in result.nodes]
        assert result.max_level == 0

    def test_to_dict_rounds_only_on_output(self, engine, bike):
        data = engine.explode(bike["bom"].id, quantity=Decimal("1"), aggregate_by_product=True).to_dict(2)

        assert data["aggregated"] is True
        assert "items" in data and "nodes" not in data
        spoke = next(item for item in data["items"] if item["product_id"] == bike["spoke"].id)
        assert spoke["total_quantity"] == 144.0

    def test_unknown_bom(self, engine):
        with pytest.raises(BomNotFoundError):
            engine.explode(9999)


class TestQuantities:
    def test_identity_line(self, db_session, engine):
        component = create_test_product(db_session)
        parent = create_test_product(db_session, procurement_type="make")
        bom = create_test_bom(db_session, parent, lines=[{"component": component, "quantity": 1}])

        result = engine.explode(bom.id, quantity=Decimal("1"))

        assert len(result.nodes) == 1
        assert result.nodes[0].quantity == Decimal("1")

    def test_scrap_factor_is_applied(self, db_session, engine):
        component = create_test_product(db_session)
        parent = create_test_product(db_session, procurement_type="make")
        bom = create_test_bom(db_session, parent, lines=[
            {"component": component, "quantity": 10, "scrap_factor": 5},
        ])

        result = engine.explode(bom.id, quantity=Decimal("2"))

        assert result.nodes[0].quantity == Decimal("21")

    def test_base_quantity_divides(self, db_session, engine):
        component = create_test_product(db_session)
        parent = create_test_product(db_session, procurement_type="make")
        bom = create_test_bom(db_session, parent, base_quantity=4, lines=[
            {"component": component, "quantity": 2},
        ])

        result = engine.explode(bom.id, quantity=Decimal("10"))

        assert result.nodes[0].quantity == Decimal("5")

    @pytest.mark.parametrize("quantity", ["0.5", "3", "12.75", "1000"])
    def test_scales_linearly(self, db_session, engine, bike, quantity):
        target = Decimal(quantity)
        direct = engine.explode(bike["bom"].id, quantity=target, aggregate_by_product=True)
        scaled = ExplosionCache.scale_quantities(
            engine.explode(bike["bom"].id, quantity=Decimal("1"), aggregate_by_product=True), target
        )

        direct_totals = direct.totals_by_product()
        scaled_totals = scaled.totals_by_product()
        assert direct_totals.keys() == scaled_totals.keys()
        for product_id, qty in direct_totals.items():
            assert float(scaled_totals[product_id]) == pytest.approx(float(qty))

    def test_line_unit_converted_to_component_unit(self, db_session, engine):
        resin = create_test_product(db_session, unit="KG")
        part = create_test_product(db_session, procurement_type="make")
        bom = create_test_bom(db_session, part, lines=[
            {"component": resin, "quantity": 250, "unit": "G"},
        ])

        result = engine.explode(bom.id, quantity=Decimal("4"))

        assert result.nodes[0].unit == "KG"
        assert result.nodes[0].quantity == Decimal("1")

    def test_parent_quantity_in_other_unit(self, db_session, engine):
        component = create_test_product(db_session)
        parent = create_test_product(db_session, procurement_type="make")
        bom = create_test_bom(db_session, parent, lines=[{"component": component, "quantity": 1}])

        result = engine.explode(bom.id, quantity=Decimal("2"), unit="DZ")

        assert result.quantity == Decimal("24")
        assert result.nodes[0].quantity == Decimal("24")


class TestOptionalAndPhantomLines:
    def test_optional_lines_excluded_by_default(self, engine, bike):
        result = engine.explode(bike["bom"].id)
        assert bike["bell"].id not in result.totals_by_product()

    def test_optional_lines_included_on_request(self, engine, bike):
        result = engine.explode(bike["bom"].id, include_optional=True)
        assert result.totals_by_product()[bike["bell"].id] == Decimal("1")

    def test_non_explodable_phantom_is_a_leaf(self, db_session, engine):
        """A phantom whose component has no active default BOM explodes like a normal line."""
        bracket = create_test_product(db_session, procurement_type="make")
        draft_component = create_test_product(db_session)
        create_test_bom(
            db_session, bracket, lines=[{"component": draft_component, "quantity": 3}],
            status="draft", is_default=False,
        )
        assembly_a = create_test_product(db_session, procurement_type="make")
        assembly_b = create_test_product(db_session, procurement_type="make")
        phantom_bom = create_test_bom(db_session, assembly_a, lines=[
            {"component": bracket, "quantity": 2, "is_phantom": True},
        ])
        plain_bom = create_test_bom(db_session, assembly_b, lines=[
            {"component": bracket, "quantity": 2},
        ])

        phantom = engine.explode(phantom_bom.id, quantity=Decimal("5"))
        plain = engine.explode(plain_bom.id, quantity=Decimal("5"))

        assert phantom.totals_by_product() == plain.totals_by_product() == {bracket.id: Decimal("10")}
        assert phantom.max_level == plain.max_level == 0

    def test_expired_sub_bom_is_not_inlined(self, db_session, bike):
        bike["wheel_bom"].expiry_date = date.today() - timedelta(days=1)
        db_session.flush()
        engine = BomExplosionEngine(db_session, options=ExplosionOptions(max_depth=10))

        result = engine.explode(bike["bom"].id, aggregate_by_product=True)

        assert bike["wheel"].id in result.totals_by_product()
        assert bike["rim"].id not in result.totals_by_product()

    def test_has_sub_levels(self, db_session, engine, bike):
        leaf = create_test_product(db_session)
        simple = create_test_product(db_session, procurement_type="make")
        simple_bom = create_test_bom(db_session, simple, lines=[{"component": leaf, "quantity": 1}])

        assert engine.has_sub_levels(bike["bom"].id) is True
        assert engine.has_sub_levels(simple_bom.id) is False


class TestCyclesAndDepth:
    @pytest.fixture
    def cyclic_boms(self, db_session):
        """A's BOM inlines B as a phantom and B's default BOM inlines A."""
        a = create_test_product(db_session, sku="CYC-A", procurement_type="make")
        b = create_test_product(db_session, sku="CYC-B", procurement_type="make")
        bom_a = create_test_bom(db_session, a, lines=[{"component": b, "quantity": 1, "is_phantom": True}])
        bom_b = create_test_bom(db_session, b, lines=[{"component": a, "quantity": 1, "is_phantom": True}])
        return bom_a, bom_b

    @pytest.mark.parametrize("max_depth", [1, 2, 3, 10, 50])
    def test_cycle_detected_for_any_depth(self, db_session, cyclic_boms, max_depth):
        bom_a, bom_b = cyclic_boms
        engine = BomExplosionEngine(db_session)

        with pytest.raises(CyclicBomError) as exc_info:
            engine.explode(bom_a.id, max_depth=max_depth)

        path = exc_info.value.path
        assert path[0] == path[-1]
        assert set(path) == {bom_a.id, bom_b.id}

    def test_cycle_detected_in_tree_mode(self, db_session, cyclic_boms):
        bom_a, _ = cyclic_boms
        with pytest.raises(CyclicBomError):
            BomExplosionEngine(db_session).explode(bom_a.id, as_tree=True)

    def test_repeated_component_on_separate_paths_is_not_a_cycle(self, engine, bike):
        # Spoke appears below the wheel and on the top level
        result = engine.explode(bike["bom"].id, as_tree=True)
        assert result.truncated is False

    def test_depth_bound_truncates(self, db_session):
        leaf = create_test_product(db_session, sku="LEAF")
        chain = [create_test_product(db_session, sku=f"LVL-{i}", procurement_type="make") for i in range(4)]
        create_test_bom(db_session, chain[3], lines=[{"component": leaf, "quantity": 1}])
        boms = [
            create_test_bom(db_session, parent, lines=[{"component": child, "quantity": 2, "is_phantom": True}])
            for parent, child in zip(chain[:3], chain[1:])
        ]
        top_bom = boms[0]

        full = BomExplosionEngine(db_session).explode(top_bom.id, max_depth=10)
        truncated = BomExplosionEngine(db_session).explode(top_bom.id, max_depth=2)

        assert full.truncated is False
        assert full.totals_by_product() == {leaf.id: Decimal("8")}
        assert truncated.truncated is True
        assert truncated.warnings
        assert truncated.totals_by_product() == {chain[2].id: Decimal("4")}
