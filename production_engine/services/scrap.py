# production_engine/services/scrap.py
"""
Scrap generated by cutting operations.

Scrap weight per sheet comes from the sheet weight and the consumption
percentage when both are known, otherwise from the leftover strips the
blank layout leaves on the sheet:

    blanks_across = floor(sheet_width / blank_width)
    blanks_along  = floor(sheet_length / blank_length)
    right strip   = leftover_width * sheet_length * thickness * density
    bottom strip  = sheet_width * leftover_length * thickness * density

Strips narrower than SCRAP_STRIP_MIN_MM are not reusable and weigh zero.
"""

import json
import logging
import math
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from ..config import settings
from ..database import engine, unit_of_work
from ..errors import NotFoundError, ValidationError
from ..models.master import BlankSpec, BOMItem, Material
from ..models.production import (
    OperationType,
    ScrapCalculationRun,
    ScrapOrigin,
    ScrapRecord,
    WorkOrder,
)
from ..utils.helpers import round2
from . import inventory
from .event_logger import log_event

logger = logging.getLogger(__name__)

UNKNOWN_MATERIAL = "UNKNOWN"


def _consumption_pct(blank: BlankSpec) -> Optional[float]:
    return blank.consumption_pct or blank.sheet_util_pct


def scrap_weight_per_sheet(blank: BlankSpec) -> Tuple[float, str]:
    """Return (kg of scrap per sheet, method used)."""
    sheet_weight = blank.sheet_weight_kg
    consumption = _consumption_pct(blank)

    if sheet_weight and sheet_weight > 0 and consumption and 0 < consumption <= 100:
        return round2(sheet_weight * (100 - consumption) / 100), "consumption_based"

    sheet_width = blank.sheet_width_mm or settings.default_sheet_width_mm
    sheet_length = blank.sheet_length_mm or settings.default_sheet_length_mm
    thickness = blank.thickness_mm or settings.default_thickness_mm
    density = blank.material_density or settings.steel_density_kg_per_mm3

    across = math.floor(sheet_width / blank.width_mm) if blank.width_mm and blank.width_mm > 0 else 0
    along = math.floor(sheet_length / blank.length_mm) if blank.length_mm and blank.length_mm > 0 else 0
    leftover_width = sheet_width - across * (blank.width_mm or 0)
    leftover_length = sheet_length - along * (blank.length_mm or 0)

    min_strip = settings.scrap_strip_min_mm
    right = leftover_width * sheet_length * thickness * density if leftover_width > min_strip else 0.0
    bottom = sheet_width * leftover_length * thickness * density if leftover_length > min_strip else 0.0
    return round2(right + bottom), "strip_based"


def _names_match(a: Optional[str], b: Optional[str]) -> bool:
    # "Shell HRC" blank belongs to the "Shell" BOM row and vice versa
    if not a or not b:
        return False
    return a == b or a.startswith(b) or b.startswith(a)


def _matching_bom_row(session: Session, blank: BlankSpec) -> Optional[BOMItem]:
    rows = session.exec(select(BOMItem).where(BOMItem.product_id == blank.product_id)).all()
    for row in rows:
        if row.blank_id == blank.blank_id:
            return row
    for row in rows:
        if row.sub_assembly_name == blank.sub_assembly_name:
            return row
    for row in rows:
        if _names_match(row.sub_assembly_name, blank.sub_assembly_name):
            return row
    return None


def generate_scrap_from_cutting(
    session: Session, work_order_id: str, blank_id: str, sheets_processed: int
) -> Dict[str, Any]:
    """
    Scrap produced by cutting `sheets_processed` sheets for one blank.
    Pure calculation: nothing is written.
    """
    blank = session.get(BlankSpec, blank_id)
    if not blank:
        raise NotFoundError(f"Blank spec {blank_id} not found")
    if sheets_processed is None or sheets_processed < 0:
        raise ValidationError("sheets_processed must not be negative")

    bom_row = _matching_bom_row(session, blank)
    material_id = (bom_row.material_id if bom_row else None) or blank.material_id
    material = session.get(Material, material_id) if material_id else None

    per_sheet, method = scrap_weight_per_sheet(blank)
    logger.debug(
        "Scrap for %s / %s: %s kg per sheet (%s)", work_order_id, blank_id, per_sheet, method
    )

    return {
        "work_order_id": work_order_id,
        "material_id": material_id,
        "material_name": material.name if material else "HRC Sheet",
        "thickness_mm": blank.thickness_mm or settings.default_thickness_mm,
        "width_mm": blank.sheet_width_mm or settings.default_sheet_width_mm,
        "length_mm": blank.sheet_length_mm or settings.default_sheet_length_mm,
        "weight_kg": round2(per_sheet * sheets_processed),
        "scrap_per_sheet": per_sheet,
        "method": method,
        "sheets_processed": sheets_processed,
        "blank_id": blank.blank_id,
        "product_id": blank.product_id,
        "sub_assembly_name": blank.sub_assembly_name,
        "consumption_pct": _consumption_pct(blank),
        "sheet_util_pct": blank.sheet_util_pct,
        "cutting_direction": blank.cutting_direction or "HORIZONTAL",
        "blank_width": blank.width_mm,
        "blank_length": blank.length_mm,
    }


def aggregate_scrap(scrap_data: Iterable[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """
    Group per-blank scrap by material id. The first contributor of each
    material provides the sheet metadata; every contributor is kept in
    `sub_assemblies`.
    """
    out: Dict[str, Dict[str, Any]] = {}
    for d in scrap_data:
        key = d.get("material_id") or UNKNOWN_MATERIAL
        agg = out.get(key)
        if agg is None:
            agg = {
                "material_id": d.get("material_id"),
                "material_name": d.get("material_name"),
                "thickness_mm": d.get("thickness_mm"),
                "width_mm": d.get("width_mm"),
                "length_mm": d.get("length_mm"),
                "product_id": d.get("product_id"),
                "cutting_direction": d.get("cutting_direction"),
                "total_weight_kg": 0.0,
                "total_sheets": 0,
                "sub_assemblies": [],
                "blank_ids": [],
            }
            out[key] = agg

        agg["total_weight_kg"] += d["weight_kg"]
        agg["total_sheets"] += d["sheets_processed"]
        agg["sub_assemblies"].append(
            {
                "sub_assembly_name": d.get("sub_assembly_name"),
                "blank_id": d.get("blank_id"),
                "sheets": d["sheets_processed"],
                "weight": d["weight_kg"],
                "scrap_per_sheet": d.get("scrap_per_sheet"),
                "consumption_pct": d.get("consumption_pct"),
                "blank_width": d.get("blank_width"),
                "blank_length": d.get("blank_length"),
            }
        )
        agg["blank_ids"].append(d.get("blank_id"))

    for agg in out.values():
        agg["total_weight_kg"] = round2(agg["total_weight_kg"])
    return out


def _bom_quantity(session: Session, blank: BlankSpec) -> float:
    row = _matching_bom_row(session, blank)
    if row and row.quantity_per_unit and row.quantity_per_unit > 0:
        return row.quantity_per_unit
    return 1.0


def compute_work_order_scrap(session: Session, wo: WorkOrder) -> List[Dict[str, Any]]:
    """Scrap data for every blank of the work order's product."""
    blanks = session.exec(
        select(BlankSpec)
        .where(BlankSpec.product_id == wo.product_id)
        .order_by(BlankSpec.sub_assembly_name, BlankSpec.blank_id)
    ).all()
    if not blanks:
        logger.warning("No blank spec for product %s (work order %s)", wo.product_id, wo.work_order_id)
        return []

    data = []
    for blank in blanks:
        blanks_needed = (wo.quantity or 0) * _bom_quantity(session, blank)
        sheets = math.ceil(blanks_needed / (blank.pcs_per_sheet or 1))
        if sheets <= 0:
            continue
        data.append(generate_scrap_from_cutting(session, wo.work_order_id, blank.blank_id, sheets))
    return data


def preview_scrap(session: Session, work_order_id: str) -> Dict[str, Any]:
    wo = session.get(WorkOrder, work_order_id)
    if not wo:
        raise NotFoundError(f"Work order {work_order_id} not found")
    data = compute_work_order_scrap(session, wo)
    return {"work_order_id": work_order_id, "by_material": aggregate_scrap(data), "details": data}


def _already_calculated(session: Session, work_order_id: str) -> bool:
    marker = session.exec(
        select(ScrapCalculationRun).where(
            ScrapCalculationRun.work_order_id == work_order_id,
            ScrapCalculationRun.operation == OperationType.CUTTING,
        )
    ).first()
    if marker:
        return True
    existing = session.exec(select(ScrapRecord).where(ScrapRecord.reference == work_order_id)).first()
    return existing is not None


def _persist_scrap(session: Session, wo: WorkOrder, by_material: Dict[str, Dict[str, Any]]) -> List[str]:
    created = []
    yard = inventory.scrap_yard(session)
    for agg in by_material.values():
        record = ScrapRecord(
            material_id=agg["material_id"],
            material_name=agg["material_name"],
            thickness_mm=agg["thickness_mm"],
            sheet_width_mm=agg["width_mm"],
            sheet_length_mm=agg["length_mm"],
            weight_kg=agg["total_weight_kg"],
            reference=wo.work_order_id,
            location_id=yard.location_id,
            orientation=agg["cutting_direction"] or "HORIZONTAL",
        )
        session.add(record)

        first = agg["sub_assemblies"][0]
        session.add(
            ScrapOrigin(
                scrap_id=record.scrap_id,
                source_type="PRODUCTION",
                source_reference=wo.work_order_id,
                product_id=agg["product_id"],
                blank_id=first["blank_id"],
                sub_assembly_name=first["sub_assembly_name"],
                bom_efficiency_pct=first["consumption_pct"],
                sheet_width_mm=agg["width_mm"],
                sheet_length_mm=agg["length_mm"],
                blank_width_mm=first["blank_width"],
                blank_length_mm=first["blank_length"],
                cutting_direction=agg["cutting_direction"] or "HORIZONTAL",
                contributors_json=json.dumps(agg["sub_assemblies"], default=str),
            )
        )
        created.append(record.scrap_id)
    return created


def calculate_scrap_for_session(session: Session, work_order_id: str) -> Dict[str, Any]:
    """
    Idempotent scrap pass for a completed cutting work order.

    The ScrapCalculationRun marker is written in the same transaction as
    the scrap records; its unique key makes a concurrent second pass fail
    on insert, which is reported as already calculated.
    """
    with unit_of_work(session):
        wo = session.get(WorkOrder, work_order_id)
        if not wo:
            raise NotFoundError(f"Work order {work_order_id} not found")

        if _already_calculated(session, work_order_id):
            logger.info("Scrap already calculated for %s, skipping", work_order_id)
            return {"work_order_id": work_order_id, "skipped": True, "scrap_ids": []}

        data = compute_work_order_scrap(session, wo)
        by_material = aggregate_scrap(data)
        scrap_ids = _persist_scrap(session, wo, by_material)

        session.add(
            ScrapCalculationRun(
                work_order_id=work_order_id,
                operation=OperationType.CUTTING,
                records_created=len(scrap_ids),
            )
        )
        total = round2(sum(a["total_weight_kg"] for a in by_material.values()))
        log_event(
            session,
            "SCRAP_CALCULATED",
            f"{len(scrap_ids)} scrap records ({total} kg) from {wo.wo_number}",
            metadata={"scrap_ids": scrap_ids, "materials": list(by_material)},
            reference_id=work_order_id,
        )
        try:
            session.flush()
        except IntegrityError:
            logger.info("Scrap for %s was calculated concurrently, skipping", work_order_id)
            session.rollback()
            return {"work_order_id": work_order_id, "skipped": True, "scrap_ids": []}

    logger.info(
        "Scrap calculated for %s: %s records, %s kg", work_order_id, len(scrap_ids), total
    )
    return {
        "work_order_id": work_order_id,
        "skipped": False,
        "scrap_ids": scrap_ids,
        "total_weight_kg": total,
    }


def calculate_scrap_for_work_order(work_order_id: str, bind: Optional[Engine] = None) -> Optional[Dict[str, Any]]:
    """
    Background entry point, run after the status update has committed.
    Never raises: a failed scrap pass must not affect the completion.
    """
    with Session(bind or engine) as session:
        try:
            return calculate_scrap_for_session(session, work_order_id)
        except Exception as exc:
            logger.exception("Scrap calculation failed for work order %s", work_order_id)
            try:
                log_event(
                    session,
                    "SCRAP_CALCULATION_FAILED",
                    f"Scrap calculation failed for {work_order_id}: {exc}",
                    reference_id=work_order_id,
                )
                session.commit()
            except Exception:
                logger.exception("Could not record scrap failure for %s", work_order_id)
                session.rollback()
            return None
