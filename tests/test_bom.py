"""
BOM explosion: quantities, sheet rounding, sub-assembly recursion and the
cycle guard.
"""
import math

import pytest

from production_engine.errors import CyclicBOMError, NotFoundError, ValidationError
from production_engine.models import BOMItem, ItemType, Product
from production_engine.services.bom import explode_bom, get_production_recipe, iter_leaf_items


def _add_product(session, product_id):
    session.add(Product(product_id=product_id, product_code=product_id, name=product_id))


class TestExplosionQuantities:

    def test_cut_part_and_bought_out_for_25_units(self, session, plant):
        result = explode_bom(session, plant, 25)

        assert len(result.cut_parts) == 1
        part = result.cut_parts[0]
        assert part["total_quantity"] == 50
        assert part["scrap_quantity"] == pytest.approx(2.5)
        assert part["required_quantity"] == pytest.approx(52.5)
        assert part["sheets_required"] == 6
        assert part["actual_blanks_produced"] == 60
        assert part["extra_blanks"] == pytest.approx(7.5)
        assert part["blank_id"] == "BLANK-A"

        assert len(result.bought_outs) == 1
        assert result.bought_outs[0]["required_quantity"] == 25
        assert result.consumables == []

    def test_cost_and_summary_rollup(self, session, plant):
        result = explode_bom(session, plant, 25)

        # 52.5 blanks at 100 + 25 hinges at 2
        assert result.total_material_cost == 5300.0
        assert result.summary["total_sheets_required"] == 6
        assert result.summary["total_cut_parts"] == 1
        assert result.summary["total_bought_outs"] == 1
        assert result.summary["critical_items"] == 1

    def test_estimated_scrap_weight_uses_sheet_weight(self, session, plant):
        part = explode_bom(session, plant, 25).cut_parts[0]
        # 6 sheets x 70 kg x 20%
        assert part["estimated_scrap_weight_kg"] == 84.0

    @pytest.mark.parametrize("quantity", [1, 7, 25, 33.3, 500])
    def test_sheets_cover_required_blanks(self, session, plant, quantity):
        part = explode_bom(session, plant, quantity).cut_parts[0]
        assert part["sheets_required"] == math.ceil(part["required_quantity"] / part["pcs_per_sheet"])
        assert part["actual_blanks_produced"] >= part["required_quantity"]


class TestSubAssemblies:

    def test_sub_assembly_is_exploded_for_its_required_quantity(self, session, plant):
        _add_product(session, "ASSY")
        session.add(
            BOMItem(product_id="ASSY", item_type=ItemType.SUB_ASSEMBLY, child_product_id=plant,
                    item_name="Frame", quantity_per_unit=2)
        )
        session.commit()

        result = explode_bom(session, "ASSY", 25)

        assert len(result.sub_assemblies) == 1
        child = result.sub_assemblies[0]["explosion"]
        assert child.quantity_requested == 50
        assert child.cut_parts[0]["sheets_required"] == 11  # ceil(105 / 10)
        assert result.summary["total_sheets_required"] == 11
        assert result.summary["total_cut_parts"] == 1
        assert result.summary["total_sub_assemblies"] == 1

        data = result.to_dict()
        assert data["sub_assemblies"][0]["sub_assembly_bom"]["quantity_requested"] == 50
        assert "explosion" not in data["sub_assemblies"][0]

    def test_leaves_include_nested_items(self, session, plant):
        _add_product(session, "ASSY")
        session.add(
            BOMItem(product_id="ASSY", item_type=ItemType.SUB_ASSEMBLY, child_product_id=plant,
                    quantity_per_unit=1)
        )
        session.commit()

        leaves = list(iter_leaf_items(explode_bom(session, "ASSY", 3)))
        assert [t for t, _ in leaves] == [ItemType.CUT_PART, ItemType.BOUGHT_OUT]

    def test_cycle_raises_with_path(self, session):
        _add_product(session, "X")
        _add_product(session, "Y")
        session.add_all([
            BOMItem(product_id="X", item_type=ItemType.SUB_ASSEMBLY, child_product_id="Y", quantity_per_unit=1),
            BOMItem(product_id="Y", item_type=ItemType.SUB_ASSEMBLY, child_product_id="X", quantity_per_unit=1),
        ])
        session.commit()

        with pytest.raises(CyclicBOMError) as exc:
            explode_bom(session, "X", 1)
        assert exc.value.path == ["X", "Y", "X"]

    def test_self_reference_is_a_cycle(self, session):
        _add_product(session, "Z")
        session.add(BOMItem(product_id="Z", item_type=ItemType.SUB_ASSEMBLY, child_product_id="Z", quantity_per_unit=1))
        session.commit()

        with pytest.raises(CyclicBOMError):
            explode_bom(session, "Z", 1)


class TestExplosionErrors:

    def test_unknown_product(self, session):
        with pytest.raises(NotFoundError):
            explode_bom(session, "NOPE", 1)

    def test_product_without_bom(self, session):
        _add_product(session, "EMPTY")
        session.commit()
        with pytest.raises(NotFoundError):
            explode_bom(session, "EMPTY", 1)

    @pytest.mark.parametrize("quantity", [0, -5, None])
    def test_non_positive_quantity(self, session, plant, quantity):
        with pytest.raises(ValidationError):
            explode_bom(session, plant, quantity)

    def test_non_positive_quantity_per_unit(self, session, plant):
        session.add(BOMItem(product_id=plant, item_type=ItemType.BOUGHT_OUT, material_id="BOB", quantity_per_unit=0))
        session.commit()
        with pytest.raises(ValidationError):
            explode_bom(session, plant, 1)

    def test_cut_part_with_unknown_blank(self, session, plant):
        session.add(BOMItem(product_id=plant, item_type=ItemType.CUT_PART, blank_id="MISSING", quantity_per_unit=1))
        session.commit()
        with pytest.raises(NotFoundError):
            explode_bom(session, plant, 1)


def test_recipe_is_in_step_order_with_blank_specs(session, plant):
    recipe = get_production_recipe(session, plant)

    assert [r["item_type"] for r in recipe] == ["CUT_PART", "BOUGHT_OUT"]
    assert recipe[0]["blank_spec"]["blank_id"] == "BLANK-A"
    assert recipe[1]["blank_spec"] is None
    assert recipe[1]["material_code"] == "HNG-1"
