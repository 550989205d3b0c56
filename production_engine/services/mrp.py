# production_engine/services/mrp.py

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

from sqlmodel import Session, select

from ..database import unit_of_work
from ..errors import NotFoundError, ValidationError
from ..models.master import ItemType, SalesOrder
from ..models.planning import (
    MaterialRequisition,
    PurchaseRequisition,
    PurchaseRequisitionItem,
    RequisitionPriority,
    RequisitionStatus,
)
from ..utils.helpers import round2
from .bom import ExplosionResult, explode_bom, iter_leaf_items, log_bom_explosion
from .event_logger import log_event
from .inventory import get_available
from .procurement import ProcurementMirror, get_procurement_mirror

logger = logging.getLogger(__name__)


@dataclass
class MRPResult:
    demand_id: str
    sales_order_id: Optional[str]
    product_id: str
    quantity: float
    requirements: List[Dict[str, Any]] = field(default_factory=list)
    shortages: List[Dict[str, Any]] = field(default_factory=list)
    summary: Dict[str, Any] = field(default_factory=dict)
    requisition_ids: List[str] = field(default_factory=list)
    explosion: Optional[ExplosionResult] = None

    @property
    def can_proceed(self) -> bool:
        return not self.shortages

    def to_dict(self) -> Dict[str, Any]:
        return {
            "demand_id": self.demand_id,
            "sales_order_id": self.sales_order_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "requirements": self.requirements,
            "shortages": self.shortages,
            "summary": self.summary,
            "requisition_ids": self.requisition_ids,
            "bom_explosion": self.explosion.to_dict() if self.explosion else None,
        }


def _leaf_quantity(item_type: ItemType, item: Dict[str, Any]) -> float:
    # Cut parts are bought as whole sheets of the blank's material
    if item_type == ItemType.CUT_PART:
        return float(item["sheets_required"])
    return float(item["required_quantity"])


def collect_material_requirements(session: Session, explosion: ExplosionResult) -> List[Dict[str, Any]]:
    """
    Flatten every leaf of the explosion tree into one requirement per
    material and check each against on-hand stock.

        shortage = max(0, required - available)
    """
    merged: Dict[str, Dict[str, Any]] = {}

    for item_type, item in iter_leaf_items(explosion):
        mid = item.get("material_id")
        if not mid:
            raise ValidationError(
                f"BOM row {item.get('bom_id')} ({item.get('item_name')}) has no material"
            )

        qty = _leaf_quantity(item_type, item)
        req = merged.get(mid)
        if req is None:
            material_type = "SHEET" if item_type == ItemType.CUT_PART else item_type.value
            merged[mid] = {
                "material_id": mid,
                "material_code": item.get("material_code"),
                "material_name": item.get("material_name"),
                "material_type": material_type,
                "item_name": item.get("item_name"),
                "quantity_required": qty,
                "unit_cost": item.get("unit_cost") or 0.0,
                "total_cost": item.get("total_cost") or 0.0,
                "is_critical": bool(item.get("is_critical")),
            }
            if item_type == ItemType.CUT_PART:
                dims = item.get("sheet_dimensions") or {}
                merged[mid]["sheet_dimensions"] = (
                    f"{dims.get('width_mm')}x{dims.get('length_mm')}x{dims.get('thickness_mm')}"
                )
        else:
            req["quantity_required"] += qty
            req["total_cost"] += item.get("total_cost") or 0.0
            req["is_critical"] = req["is_critical"] or bool(item.get("is_critical"))

    out = []
    for mid, req in merged.items():
        available = get_available(session, mid)
        shortage = max(0.0, req["quantity_required"] - available)
        req["quantity_available"] = available
        req["quantity_shortage"] = shortage
        req["has_shortage"] = shortage > 0
        req["total_cost"] = round2(req["total_cost"])
        out.append(req)
    return out


def summarize_requirements(requirements: List[Dict[str, Any]]) -> Dict[str, Any]:
    shortages = [r for r in requirements if r["quantity_shortage"] > 0]
    return {
        "total_requirements": len(requirements),
        "total_shortages": len(shortages),
        "total_cost": round2(sum(r["total_cost"] for r in requirements)),
        "shortage_cost": round2(sum(r["quantity_shortage"] * r["unit_cost"] for r in shortages)),
        "can_proceed": not shortages,
        "critical_shortages": sum(1 for s in shortages if s["is_critical"]),
    }


def _resolve_demand(
    session: Session,
    product_id: Optional[str],
    quantity: Optional[float],
    sales_order_id: Optional[str],
    demand_ref: Optional[str],
):
    if sales_order_id:
        so = session.get(SalesOrder, sales_order_id)
        if not so:
            raise NotFoundError(f"Sales order {sales_order_id} not found")
        return sales_order_id, so.product_id, so.quantity, so.required_by

    if not product_id or not quantity:
        raise ValidationError("Product ID and quantity are required")
    if quantity <= 0:
        raise ValidationError("quantity must be greater than zero")

    demand_id = demand_ref or f"PLAN-{uuid.uuid4().hex[:12].upper()}"
    return demand_id, product_id, quantity, None


def check_shortages(session: Session, product_id: str, quantity: float) -> MRPResult:
    """Shortage check without persisting anything (used before starting work)."""
    explosion = explode_bom(session, product_id, quantity)
    requirements = collect_material_requirements(session, explosion)
    shortages = [r for r in requirements if r["has_shortage"]]
    return MRPResult(
        demand_id="",
        sales_order_id=None,
        product_id=product_id,
        quantity=quantity,
        requirements=requirements,
        shortages=shortages,
        summary=summarize_requirements(requirements),
        explosion=explosion,
    )


def run_mrp(
    session: Session,
    product_id: Optional[str] = None,
    quantity: Optional[float] = None,
    sales_order_id: Optional[str] = None,
    required_by_date: Optional[date] = None,
    demand_ref: Optional[str] = None,
    created_by: str = "system",
) -> MRPResult:
    """
    Explode the BOM for a demand, check every leaf material against stock
    and persist one MaterialRequisition per material.

    A shortage is reported through `shortages` / `summary["can_proceed"]`,
    never raised. Re-running the same demand replaces its requisitions that
    have not been rolled into a purchase requisition yet.
    """
    with unit_of_work(session):
        demand_id, product_id, quantity, so_date = _resolve_demand(
            session, product_id, quantity, sales_order_id, demand_ref
        )
        required_by_date = required_by_date or so_date
        logger.info("Starting MRP run for demand %s (%s x %s)", demand_id, product_id, quantity)

        explosion = explode_bom(session, product_id, quantity)
        requirements = collect_material_requirements(session, explosion)
        shortages = [r for r in requirements if r["has_shortage"]]

        stale = session.exec(
            select(MaterialRequisition).where(
                MaterialRequisition.demand_id == demand_id,
                MaterialRequisition.purchase_requisition_id.is_(None),
            )
        ).all()
        for old in stale:
            session.delete(old)

        requisition_ids = []
        for req in requirements:
            mr = MaterialRequisition(
                demand_id=demand_id,
                sales_order_id=sales_order_id,
                product_id=product_id,
                material_id=req["material_id"],
                material_code=req["material_code"],
                material_name=req["material_name"],
                material_type=req["material_type"],
                quantity_required=req["quantity_required"],
                quantity_available=req["quantity_available"],
                quantity_shortage=req["quantity_shortage"],
                unit_cost=req["unit_cost"],
                total_cost=req["total_cost"],
                status=RequisitionStatus.PENDING if req["has_shortage"] else RequisitionStatus.FULFILLED,
                priority=RequisitionPriority.HIGH if req["is_critical"] else RequisitionPriority.NORMAL,
                is_critical=req["is_critical"],
                required_by_date=required_by_date,
                created_by=created_by,
            )
            session.add(mr)
            req["requisition_id"] = mr.requisition_id
            req["status"] = mr.status.value
            req["priority"] = mr.priority.value
            requisition_ids.append(mr.requisition_id)

        log_bom_explosion(session, product_id, quantity, explosion, created_by)

        summary = summarize_requirements(requirements)
        log_event(
            session,
            "MRP_RUN",
            f"MRP for demand {demand_id}: {summary['total_requirements']} materials, "
            f"{summary['total_shortages']} shortages",
            metadata=summary,
            reference_id=demand_id,
        )

    logger.info(
        "MRP run for %s completed: %s shortages, can_proceed=%s",
        demand_id,
        summary["total_shortages"],
        summary["can_proceed"],
    )
    return MRPResult(
        demand_id=demand_id,
        sales_order_id=sales_order_id,
        product_id=product_id,
        quantity=quantity,
        requirements=requirements,
        shortages=shortages,
        summary=summary,
        requisition_ids=requisition_ids,
        explosion=explosion,
    )


def _requisition_row(mr: MaterialRequisition) -> Dict[str, Any]:
    row = mr.model_dump()
    row["status"] = mr.status.value
    row["priority"] = mr.priority.value
    row["has_shortage"] = mr.quantity_shortage > 0
    return row


def get_mrp_results(session: Session, demand_id: str) -> Dict[str, Any]:
    rows = session.exec(
        select(MaterialRequisition)
        .where(MaterialRequisition.demand_id == demand_id)
        .order_by(MaterialRequisition.created_at, MaterialRequisition.material_id)
    ).all()
    if not rows:
        raise NotFoundError(f"No MRP results for demand {demand_id}")

    requirements = [_requisition_row(r) for r in rows]
    return {
        "demand_id": demand_id,
        "requirements": requirements,
        "shortages": [r for r in requirements if r["has_shortage"]],
        "summary": summarize_requirements(requirements),
    }


def generate_purchase_requisitions(
    session: Session,
    demand_id: str,
    requested_by: str = "MRP System",
    mirror: Optional[ProcurementMirror] = None,
) -> List[str]:
    """
    Roll the open shortages of a demand into purchase requisitions, one per
    material: quantities are summed and the earliest required-by date wins.

    Source requisitions are linked to their purchase requisition, so calling
    this again for the same demand creates nothing new. Each line is then
    mirrored to procurement after the commit; mirror failures are only logged.
    """
    lines: List[Dict[str, Any]] = []

    with unit_of_work(session):
        exists = session.exec(
            select(MaterialRequisition.requisition_id).where(MaterialRequisition.demand_id == demand_id)
        ).first()
        if not exists:
            raise NotFoundError(f"No MRP results for demand {demand_id}")

        open_rows = session.exec(
            select(MaterialRequisition).where(
                MaterialRequisition.demand_id == demand_id,
                MaterialRequisition.status == RequisitionStatus.PENDING,
                MaterialRequisition.quantity_shortage > 0,
                MaterialRequisition.purchase_requisition_id.is_(None),
            )
        ).all()

        grouped: Dict[str, Dict[str, Any]] = {}
        for mr in open_rows:
            g = grouped.setdefault(
                mr.material_id,
                {"quantity": 0.0, "required_by": None, "high": False, "rows": []},
            )
            g["quantity"] += mr.quantity_shortage
            if mr.required_by_date and (g["required_by"] is None or mr.required_by_date < g["required_by"]):
                g["required_by"] = mr.required_by_date
            g["high"] = g["high"] or mr.priority == RequisitionPriority.HIGH
            g["rows"].append(mr)

        for material_id, g in grouped.items():
            pr = PurchaseRequisition(
                demand_id=demand_id,
                priority=RequisitionPriority.HIGH if g["high"] else RequisitionPriority.NORMAL,
                requested_by=requested_by,
                notes=f"Material requisition for demand {demand_id}",
            )
            session.add(pr)
            session.add(
                PurchaseRequisitionItem(
                    requisition_id=pr.requisition_id,
                    material_id=material_id,
                    quantity=g["quantity"],
                    required_by_date=g["required_by"],
                )
            )
            for mr in g["rows"]:
                mr.purchase_requisition_id = pr.requisition_id
                session.add(mr)

            log_event(
                session,
                "PURCHASE_REQUISITION_CREATED",
                f"{pr.requisition_id} for {g['quantity']} of {material_id} (demand {demand_id})",
                reference_id=demand_id,
            )
            lines.append({"pr_id": pr.requisition_id, "material_id": material_id, "quantity": g["quantity"]})

    logger.info("Generated %s purchase requisitions for demand %s", len(lines), demand_id)

    mirror = mirror or get_procurement_mirror(session.get_bind())
    for line in lines:
        try:
            mirror.create(
                material_id=line["material_id"],
                quantity=line["quantity"],
                requested_by=requested_by,
                notes=f"Generated from purchase requisition {line['pr_id']} for demand {demand_id}",
            )
        except Exception:
            logger.exception(
                "Failed to mirror purchase requisition %s (material %s) to procurement",
                line["pr_id"],
                line["material_id"],
            )

    return [line["pr_id"] for line in lines]
