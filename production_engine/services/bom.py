# production_engine/services/bom.py

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import nulls_last
from sqlmodel import Session, select

from ..errors import CyclicBOMError, NotFoundError, ValidationError
from ..models.master import BlankSpec, BOMItem, ItemType, Material, Product
from ..models.planning import BOMExplosionLog
from ..utils.helpers import round2, utcnow
from .event_logger import log_event

logger = logging.getLogger(__name__)


@dataclass
class ExplosionResult:
    """
    Requirements for `quantity` units of one product, split by item type.
    Sub-assembly entries carry their own nested ExplosionResult.
    """
    product_id: str
    product_code: str
    product_name: str
    quantity_requested: float
    cut_parts: List[Dict[str, Any]] = field(default_factory=list)
    bought_outs: List[Dict[str, Any]] = field(default_factory=list)
    consumables: List[Dict[str, Any]] = field(default_factory=list)
    sub_assemblies: List[Dict[str, Any]] = field(default_factory=list)
    total_material_cost: float = 0.0
    summary: Dict[str, Any] = field(default_factory=dict)
    exploded_at: Any = None

    def to_dict(self) -> Dict[str, Any]:
        subs = []
        for s in self.sub_assemblies:
            entry = {k: v for k, v in s.items() if k != "explosion"}
            entry["sub_assembly_bom"] = s["explosion"].to_dict()
            subs.append(entry)

        return {
            "product_id": self.product_id,
            "product_code": self.product_code,
            "product_name": self.product_name,
            "quantity_requested": self.quantity_requested,
            "cut_parts": self.cut_parts,
            "bought_outs": self.bought_outs,
            "consumables": self.consumables,
            "sub_assemblies": subs,
            "total_material_cost": self.total_material_cost,
            "summary": self.summary,
            "exploded_at": self.exploded_at.isoformat() if self.exploded_at else None,
        }


def _bom_rows(session: Session, product_id: str) -> List[BOMItem]:
    return session.exec(
        select(BOMItem)
        .where(BOMItem.product_id == product_id)
        .order_by(nulls_last(BOMItem.step_sequence), BOMItem.sub_assembly_name, BOMItem.bom_id)
    ).all()


def _base_item(item: BOMItem, material: Optional[Material], quantity: float) -> Dict[str, Any]:
    total_qty = item.quantity_per_unit * quantity
    scrap_pct = item.scrap_allowance_pct or 0.0
    scrap_qty = total_qty * scrap_pct / 100
    required_qty = total_qty + scrap_qty
    unit_cost = material.unit_cost if material else 0.0

    return {
        "bom_id": item.bom_id,
        "item_type": item.item_type.value,
        "item_name": item.item_name or (material.name if material else None),
        "material_id": item.material_id,
        "material_code": material.material_code if material else None,
        "material_name": material.name if material else None,
        "quantity_per_unit": item.quantity_per_unit,
        "total_quantity": total_qty,
        "scrap_allowance_pct": scrap_pct,
        "scrap_quantity": scrap_qty,
        "required_quantity": required_qty,
        "unit_cost": unit_cost,
        "total_cost": unit_cost * required_qty,
        "uom": material.uom if material else None,
        "sub_assembly_name": item.sub_assembly_name,
        "is_critical": bool(item.is_critical),
        "operation_code": item.operation_code,
    }


def _cut_part(base: Dict[str, Any], blank: BlankSpec) -> Dict[str, Any]:
    pcs = blank.pcs_per_sheet or 0
    if pcs <= 0:
        raise ValidationError(f"Blank spec {blank.blank_id} has no pieces per sheet")

    required_qty = base["required_quantity"]
    sheets = math.ceil(required_qty / pcs)
    produced = sheets * pcs

    # Sheet weight when known, otherwise what the blanks on it weigh
    sheet_weight = blank.sheet_weight_kg
    if not sheet_weight and blank.blank_weight_kg:
        sheet_weight = blank.blank_weight_kg * pcs
    scrap_pct = blank.scrap_pct or 0.0

    part = dict(base)
    part.update(
        {
            "blank_id": blank.blank_id,
            "blank_material_id": blank.material_id,
            "blank_dimensions": {
                "width_mm": blank.width_mm,
                "length_mm": blank.length_mm,
                "thickness_mm": blank.thickness_mm,
            },
            "blank_weight_kg": blank.blank_weight_kg,
            "material_type": blank.material_type,
            "sheet_type": blank.sheet_type,
            "sheet_dimensions": {
                "width_mm": blank.sheet_width_mm,
                "length_mm": blank.sheet_length_mm,
                "thickness_mm": blank.thickness_mm,
            },
            "pcs_per_sheet": pcs,
            "sheets_required": sheets,
            "actual_blanks_produced": produced,
            "extra_blanks": produced - required_qty,
            "efficiency_pct": blank.sheet_util_pct,
            "scrap_pct": scrap_pct,
            "cutting_direction": blank.cutting_direction,
            "estimated_scrap_weight_kg": round2(sheets * (sheet_weight or 0.0) * scrap_pct / 100),
        }
    )
    return part


def explode_bom(
    session: Session,
    product_id: str,
    quantity: float,
    _path: Sequence[str] = (),
) -> ExplosionResult:
    """
    Multi-level BOM explosion.

    For every BOM row:
        total    = quantity_per_unit * quantity
        required = total * (1 + scrap_allowance_pct / 100)
    Cut parts are rounded up to whole sheets, sub-assemblies are exploded
    again for their required quantity. `_path` holds the product ids on the
    active recursion path; meeting one of them again is a cycle.
    """
    if not product_id:
        raise ValidationError("product_id is required")
    if quantity is None or quantity <= 0:
        raise ValidationError("quantity must be greater than zero")
    if product_id in _path:
        raise CyclicBOMError(list(_path) + [product_id])

    product = session.get(Product, product_id)
    if not product:
        raise NotFoundError(f"Product {product_id} not found")

    rows = _bom_rows(session, product_id)
    if not rows:
        raise NotFoundError(f"No BOM found for product {product_id}")

    if not _path:
        logger.info("Exploding BOM for %s x %s", product_id, quantity)

    path = list(_path) + [product_id]
    result = ExplosionResult(
        product_id=product.product_id,
        product_code=product.product_code,
        product_name=product.name,
        quantity_requested=quantity,
        exploded_at=utcnow(),
    )

    for item in rows:
        if item.quantity_per_unit is None or item.quantity_per_unit <= 0:
            raise ValidationError(
                f"BOM row {item.bom_id} of {product_id} has non-positive quantity per unit"
            )

        material = session.get(Material, item.material_id) if item.material_id else None
        base = _base_item(item, material, quantity)

        if item.item_type == ItemType.CUT_PART:
            blank = session.get(BlankSpec, item.blank_id) if item.blank_id else None
            if not blank:
                raise NotFoundError(
                    f"Blank spec {item.blank_id} for BOM row {item.bom_id} not found"
                )
            if material is None and blank.material_id:
                material = session.get(Material, blank.material_id)
                base = _base_item(item, material, quantity)
                base["material_id"] = blank.material_id
            result.cut_parts.append(_cut_part(base, blank))
            result.total_material_cost += base["total_cost"]

        elif item.item_type == ItemType.BOUGHT_OUT:
            result.bought_outs.append(base)
            result.total_material_cost += base["total_cost"]

        elif item.item_type == ItemType.CONSUMABLE:
            result.consumables.append(base)
            result.total_material_cost += base["total_cost"]

        elif item.item_type == ItemType.SUB_ASSEMBLY:
            if not item.child_product_id:
                raise ValidationError(f"Sub-assembly row {item.bom_id} has no child product")
            child = explode_bom(session, item.child_product_id, base["required_quantity"], path)
            entry = dict(base)
            entry["sub_assembly_product_id"] = item.child_product_id
            entry["explosion"] = child
            result.sub_assemblies.append(entry)
            result.total_material_cost += child.total_material_cost

    result.total_material_cost = round2(result.total_material_cost)
    result.summary = _summarize(result)

    if not _path:
        logger.info(
            "BOM explosion for %s done: %s sheets, cost %.2f",
            product_id,
            result.summary["total_sheets_required"],
            result.total_material_cost,
        )
    return result


def _summarize(result: ExplosionResult) -> Dict[str, Any]:
    sheets = sum(p["sheets_required"] for p in result.cut_parts)
    critical = sum(
        1 for i in result.cut_parts + result.bought_outs + result.consumables if i["is_critical"]
    )
    cut_parts = len(result.cut_parts)
    bought_outs = len(result.bought_outs)
    consumables = len(result.consumables)

    for sub in result.sub_assemblies:
        child = sub["explosion"].summary
        sheets += child["total_sheets_required"]
        critical += child["critical_items"]
        cut_parts += child["total_cut_parts"]
        bought_outs += child["total_bought_outs"]
        consumables += child["total_consumables"]

    return {
        "total_cut_parts": cut_parts,
        "total_sheets_required": sheets,
        "total_bought_outs": bought_outs,
        "total_consumables": consumables,
        "total_sub_assemblies": len(result.sub_assemblies),
        "total_material_cost": result.total_material_cost,
        "critical_items": critical,
    }


def iter_leaf_items(result: ExplosionResult):
    """Yield (item_type, item) for every leaf row of the tree, sub-assemblies included."""
    for p in result.cut_parts:
        yield ItemType.CUT_PART, p
    for b in result.bought_outs:
        yield ItemType.BOUGHT_OUT, b
    for c in result.consumables:
        yield ItemType.CONSUMABLE, c
    for sub in result.sub_assemblies:
        yield from iter_leaf_items(sub["explosion"])


def get_production_recipe(session: Session, product_id: str) -> List[Dict[str, Any]]:
    """BOM rows in step order, cut parts joined with their blank spec."""
    if not session.get(Product, product_id):
        raise NotFoundError(f"Product {product_id} not found")

    out = []
    for item in _bom_rows(session, product_id):
        row = item.model_dump()
        row["item_type"] = item.item_type.value
        material = session.get(Material, item.material_id) if item.material_id else None
        if material:
            row["material_code"] = material.material_code
            row["material_name"] = material.name
            row["material_type"] = material.material_type
            row["unit_cost"] = material.unit_cost

        blank = None
        if item.item_type == ItemType.CUT_PART and item.blank_id:
            blank = session.get(BlankSpec, item.blank_id)
        row["blank_spec"] = blank.model_dump() if blank else None
        out.append(row)
    return out


def log_bom_explosion(
    session: Session,
    product_id: str,
    quantity: float,
    result: ExplosionResult,
    exploded_by: str = "system",
) -> BOMExplosionLog:
    """Append-only audit row; never updated once written."""
    summary = result.summary
    entry = BOMExplosionLog(
        product_id=product_id,
        quantity=quantity,
        total_sheet_count=summary.get("total_sheets_required", 0),
        total_bought_items_count=summary.get("total_bought_outs", 0),
        total_consumables_count=summary.get("total_consumables", 0),
        total_material_cost=result.total_material_cost,
        explosion_json=json.dumps(result.to_dict(), default=str),
        exploded_by=exploded_by,
    )
    session.add(entry)
    log_event(
        session,
        "BOM_EXPLODED",
        f"BOM of {product_id} exploded for {quantity} units by {exploded_by}",
        metadata={"explosion_id": entry.explosion_id, "sheets": entry.total_sheet_count},
        reference_id=product_id,
    )
    return entry
