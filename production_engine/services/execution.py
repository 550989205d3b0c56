# production_engine/services/execution.py

import logging
from typing import Any, Dict, List, Optional

from sqlmodel import Session, select

from ..database import unit_of_work
from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..models.inventory import InventoryTxn
from ..models.production import MaterialIssue, ProductionOutput, ScrapRecord, ScrapStatus, WorkOrderStatus
from . import inventory
from .event_logger import log_event
from .mrp import check_shortages
from .work_orders import get_work_order, start, work_order_to_dict, parse_status

logger = logging.getLogger(__name__)

PRODUCT_ITEM_TYPES = ("FINISHED_GOOD", "SUB_ASSEMBLY")


def _consume_scrap(
    session: Session, scrap_id: str, material_id: str, quantity: float, work_order_id: str, issued_by: str
) -> InventoryTxn:
    scrap = session.get(ScrapRecord, scrap_id)
    if not scrap or scrap.status != ScrapStatus.AVAILABLE:
        raise NotFoundError(f"Scrap inventory {scrap_id} not found or not available")
    if scrap.weight_kg < quantity:
        raise InsufficientStockError(scrap_id, quantity, scrap.weight_kg)

    scrap.weight_kg = max(0.0, scrap.weight_kg - quantity)
    if scrap.weight_kg <= 0:
        scrap.status = ScrapStatus.CONSUMED
    session.add(scrap)

    txn = InventoryTxn(
        item_id=material_id or scrap.material_id or scrap_id,
        item_kind="scrap",
        txn_type="ISSUE",
        quantity=quantity,
        wo_id=work_order_id,
        reference=f"SCRAP-{scrap_id}",
        created_by=issued_by,
    )
    session.add(txn)
    logger.info(
        "Reused %s kg of scrap %s for %s (remaining %s kg)",
        quantity,
        scrap_id,
        work_order_id,
        scrap.weight_kg,
    )
    return txn


def issue_materials(
    session: Session,
    work_order_id: str,
    materials: List[Dict[str, Any]],
    issued_by: str = "system",
) -> Dict[str, Any]:
    """
    Issue material lines to a work order, all or nothing.

    Each line either draws on the main store (conditional deduction) or,
    with a `scrap_id`, on an AVAILABLE scrap record. A PLANNED work order
    is started by its first issue.
    """
    if not materials:
        raise ValidationError("At least one material line is required")

    with unit_of_work(session):
        wo = get_work_order(session, work_order_id)
        status = parse_status(wo.status)
        if status in (WorkOrderStatus.COMPLETED, WorkOrderStatus.CANCELLED):
            raise ValidationError(f"Cannot issue materials to a {status.value} work order")

        store = inventory.main_store(session)
        issue_ids = []
        for line in materials:
            material_id = line.get("material_id")
            quantity = line.get("quantity_issued") or 0
            if not material_id:
                raise ValidationError("material_id is required")
            if quantity <= 0:
                raise ValidationError(f"Issue quantity for {material_id} must be positive")

            scrap_id = line.get("scrap_id")
            if scrap_id:
                _consume_scrap(session, scrap_id, material_id, quantity, work_order_id, issued_by)
            else:
                inventory.deduct(
                    session,
                    material_id,
                    quantity,
                    location=store,
                    wo_id=work_order_id,
                    reference=work_order_id,
                    created_by=issued_by,
                )

            issue = MaterialIssue(
                work_order_id=work_order_id,
                material_id=material_id,
                material_type=line.get("material_type") or "SHEET",
                scrap_id=scrap_id,
                quantity=quantity,
                unit_cost=line.get("unit_cost") or 0.0,
                issued_by=issued_by,
            )
            session.add(issue)
            issue_ids.append(issue.issue_id)

        if status == WorkOrderStatus.PLANNED:
            start(session, wo, issued_by)

        log_event(
            session,
            "MATERIAL_ISSUED",
            f"{len(issue_ids)} material lines issued to {wo.wo_number} by {issued_by}",
            metadata={"issue_ids": issue_ids},
            reference_id=work_order_id,
        )
        result = {
            "work_order_id": work_order_id,
            "issue_ids": issue_ids,
            "materials_issued": len(issue_ids),
            "status": parse_status(wo.status).value,
        }

    logger.info("Issued %s material lines to %s", len(issue_ids), work_order_id)
    return result


def record_production_output(
    session: Session,
    work_order_id: str,
    quantity_good: float,
    item_id: Optional[str] = None,
    item_type: str = "FINISHED_GOOD",
    quantity_rejected: float = 0.0,
    quantity_rework: float = 0.0,
    rejection_reason: Optional[str] = None,
    recorded_by: str = "system",
) -> Dict[str, Any]:
    """
    Book produced quantities. Good output is received into stock:
    finished goods into the FG store, everything else into the main store.
    """
    quantity_rejected = quantity_rejected or 0.0
    quantity_rework = quantity_rework or 0.0
    if quantity_good is None or quantity_good < 0 or quantity_rejected < 0 or quantity_rework < 0:
        raise ValidationError("Output quantities must not be negative")
    if quantity_good + quantity_rejected + quantity_rework <= 0:
        raise ValidationError("Nothing to record: all quantities are zero")

    with unit_of_work(session):
        wo = get_work_order(session, work_order_id)
        item_id = item_id or wo.product_id

        output = ProductionOutput(
            work_order_id=work_order_id,
            item_id=item_id,
            item_type=item_type,
            quantity_good=quantity_good,
            quantity_rejected=quantity_rejected,
            quantity_rework=quantity_rework,
            rejection_reason=rejection_reason,
            recorded_by=recorded_by,
        )
        session.add(output)

        if quantity_good > 0:
            if item_type == "FINISHED_GOOD":
                location = inventory.finished_goods_store(session)
            else:
                location = inventory.main_store(session)
            inventory.receive(
                session,
                item_id,
                quantity_good,
                location,
                item_kind="product" if item_type in PRODUCT_ITEM_TYPES else "material",
                wo_id=work_order_id,
                reference=work_order_id,
                created_by=recorded_by,
            )

        open_issues = session.exec(
            select(MaterialIssue).where(
                MaterialIssue.work_order_id == work_order_id,
                MaterialIssue.status == "ISSUED",
            )
        ).all()
        for issue in open_issues:
            issue.status = "CONSUMED"
            session.add(issue)

        log_event(
            session,
            "OUTPUT_RECORDED",
            f"{wo.wo_number}: {quantity_good} good, {quantity_rejected} rejected, {quantity_rework} rework",
            reference_id=work_order_id,
        )
        output_id = output.output_id

    logger.info("Recorded output %s for %s", output_id, work_order_id)
    return {
        "output_id": output_id,
        "work_order_id": work_order_id,
        "item_id": item_id,
        "quantity_good": quantity_good,
        "quantity_rejected": quantity_rejected,
        "quantity_rework": quantity_rework,
        "issues_consumed": len(open_issues),
    }


def start_work_order(session: Session, work_order_id: str, started_by: str = "system") -> Dict[str, Any]:
    """
    Start a PLANNED work order only if its full BOM is in stock.
    Shortages are returned, never raised.
    """
    with unit_of_work(session):
        wo = get_work_order(session, work_order_id)
        status = parse_status(wo.status)
        if status != WorkOrderStatus.PLANNED:
            return {
                "started": status == WorkOrderStatus.IN_PROGRESS,
                "already": True,
                "status": status.value,
                "shortages": [],
            }

        check = check_shortages(session, wo.product_id, wo.quantity)
        if check.shortages:
            logger.info("Work order %s not started: %s shortages", work_order_id, len(check.shortages))
            return {"started": False, "status": status.value, "shortages": check.shortages}

        start(session, wo, started_by)
        result = {"started": True, "status": WorkOrderStatus.IN_PROGRESS.value, "shortages": []}
        result["work_order"] = work_order_to_dict(wo)

    return result
