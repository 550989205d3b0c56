# production_engine/services/completion.py

import logging
from typing import Any, Dict

from sqlmodel import Session

from ..models.production import WorkOrder
from . import inventory
from .event_logger import log_event

logger = logging.getLogger(__name__)


def transfer_finished_goods_to_qa(session: Session, work_order: WorkOrder) -> Dict[str, Any]:
    """
    Move the master's full quantity from the Finished-Goods store into QA.
    This is a transfer between locations, not a new receipt.
    """
    fg = inventory.finished_goods_store(session)
    qa = inventory.qa_section(session)

    result = inventory.transfer(
        session,
        item_id=work_order.product_id,
        quantity=work_order.quantity,
        from_location=fg,
        to_location=qa,
        item_kind="product",
        wo_id=work_order.work_order_id,
        reference=f"QA-TRANSFER-{work_order.work_order_id}",
    )

    log_event(
        session,
        "QA_TRANSFER",
        f"{work_order.quantity} x {work_order.product_id} moved to QA for {work_order.wo_number}",
        metadata=result,
        reference_id=work_order.work_order_id,
    )
    logger.info(
        "Finished goods of %s (%s x %s) transferred to QA",
        work_order.work_order_id,
        work_order.quantity,
        work_order.product_id,
    )
    return result


def run_qa_transfer(session: Session, master: WorkOrder) -> Dict[str, Any]:
    """
    Best-effort QA transfer for a master that just completed.

    Runs inside a SAVEPOINT: a failure rolls back only the transfer, never
    the status update that triggered it. Failures are logged with the
    work order id for reconciliation.
    """
    if not master.quantity or master.quantity <= 0:
        logger.warning(
            "Skipping QA transfer for %s: invalid quantity %s", master.work_order_id, master.quantity
        )
        log_event(
            session,
            "QA_TRANSFER_SKIPPED",
            f"QA transfer skipped for {master.wo_number}: quantity {master.quantity}",
            reference_id=master.work_order_id,
        )
        return {"transferred": False, "reason": "quantity must be positive"}

    try:
        with session.begin_nested():
            result = transfer_finished_goods_to_qa(session, master)
    except Exception as exc:
        logger.exception("QA transfer failed for master work order %s", master.work_order_id)
        log_event(
            session,
            "QA_TRANSFER_FAILED",
            f"QA transfer failed for {master.work_order_id}: {exc}",
            reference_id=master.work_order_id,
        )
        return {"transferred": False, "error": str(exc)}

    return {"transferred": True, **result}
