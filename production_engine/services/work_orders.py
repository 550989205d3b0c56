# production_engine/services/work_orders.py
"""
Master / child work orders and their state machine.

A master work order carries the whole demand for a product; each child
carries one operation (CUTTING, FORMING, ...). Children move through the
transition table below; masters only complete through the children
cascade.
"""

import logging
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from ..database import unit_of_work
from ..errors import InvalidTransitionError, NotFoundError, ProductionEngineError, ValidationError
from ..models.master import Product
from ..models.production import (
    OperationType,
    ProductionOutput,
    WorkOrder,
    WorkOrderItem,
    WorkOrderStatus,
    WorkOrderStep,
)
from ..utils.helpers import document_number, utcnow
from .completion import run_qa_transfer
from .event_logger import log_event
from .scrap import calculate_scrap_for_work_order

logger = logging.getLogger(__name__)


class WorkOrderEvent(str, Enum):
    START = "START"
    COMPLETE = "COMPLETE"
    CANCEL = "CANCEL"
    CHILDREN_COMPLETED = "CHILDREN_COMPLETED"


TRANSITIONS: Dict[tuple, WorkOrderStatus] = {
    (WorkOrderStatus.PLANNED, WorkOrderEvent.START): WorkOrderStatus.IN_PROGRESS,
    (WorkOrderStatus.IN_PROGRESS, WorkOrderEvent.COMPLETE): WorkOrderStatus.COMPLETED,
    (WorkOrderStatus.PLANNED, WorkOrderEvent.CANCEL): WorkOrderStatus.CANCELLED,
    (WorkOrderStatus.IN_PROGRESS, WorkOrderEvent.CANCEL): WorkOrderStatus.CANCELLED,
    (WorkOrderStatus.PLANNED, WorkOrderEvent.CHILDREN_COMPLETED): WorkOrderStatus.COMPLETED,
    (WorkOrderStatus.IN_PROGRESS, WorkOrderEvent.CHILDREN_COMPLETED): WorkOrderStatus.COMPLETED,
}

# Requested status -> event that reaches it
STATUS_EVENTS = {
    WorkOrderStatus.IN_PROGRESS: WorkOrderEvent.START,
    WorkOrderStatus.COMPLETED: WorkOrderEvent.COMPLETE,
    WorkOrderStatus.CANCELLED: WorkOrderEvent.CANCEL,
}

# Operation -> operations that must each have a COMPLETED sibling
DEPENDENCIES: Dict[OperationType, tuple] = {
    OperationType.FORMING: (OperationType.CUTTING,),
    OperationType.ASSEMBLY: (OperationType.FORMING, OperationType.CUTTING),
    OperationType.WELDING: (OperationType.CUTTING,),
    OperationType.PAINTING: (OperationType.WELDING, OperationType.ASSEMBLY),
    OperationType.PACKAGING: (OperationType.PAINTING, OperationType.QC),
    OperationType.QC: (OperationType.ASSEMBLY, OperationType.WELDING),
}

# Completed operation -> operations it may unblock
TRIGGERS: Dict[OperationType, tuple] = {
    OperationType.CUTTING: (OperationType.FORMING,),
    OperationType.FORMING: (OperationType.ASSEMBLY, OperationType.WELDING),
    OperationType.ASSEMBLY: (OperationType.QC, OperationType.PAINTING),
    OperationType.WELDING: (OperationType.QC, OperationType.PAINTING),
    OperationType.PAINTING: (OperationType.PACKAGING,),
    OperationType.QC: (OperationType.PACKAGING,),
}


def _val(x):
    return getattr(x, "value", x)


def work_order_to_dict(wo: WorkOrder) -> Dict[str, Any]:
    return {
        "work_order_id": wo.work_order_id,
        "wo_number": wo.wo_number,
        "product_id": wo.product_id,
        "quantity": wo.quantity,
        "status": _val(wo.status),
        "operation_type": _val(wo.operation_type),
        "parent_wo_id": wo.parent_wo_id,
        "priority": wo.priority,
        "scheduled_start": wo.scheduled_start,
        "scheduled_end": wo.scheduled_end,
        "due_date": wo.due_date,
        "customer": wo.customer,
        "sales_order_id": wo.sales_order_id,
        "purchase_order_ref": wo.purchase_order_ref,
        "created_by": wo.created_by,
        "created_at": wo.created_at,
    }


def get_work_order(session: Session, work_order_id: str) -> WorkOrder:
    wo = session.get(WorkOrder, work_order_id)
    if not wo:
        raise NotFoundError(f"Work order {work_order_id} not found")
    return wo


def _children(session: Session, parent_id: str, fresh: bool = False) -> List[WorkOrder]:
    stmt = select(WorkOrder).where(WorkOrder.parent_wo_id == parent_id).order_by(WorkOrder.created_at)
    if fresh:
        # Re-read statuses from the store, not from the identity map
        stmt = stmt.execution_options(populate_existing=True)
    return session.exec(stmt).all()


def parse_status(status) -> WorkOrderStatus:
    try:
        return WorkOrderStatus(_val(status))
    except ValueError:
        raise ValidationError(f"Unknown work order status {status!r}")


def _parse_operation(operation_type) -> OperationType:
    try:
        return OperationType(_val(operation_type))
    except ValueError:
        raise ValidationError(f"Unknown operation type {operation_type!r}")


# ---------- state machine ----------

def apply_event(
    session: Session, wo: WorkOrder, event: WorkOrderEvent, updated_by: str = "system"
) -> WorkOrderStatus:
    """Move `wo` along the transition table; illegal moves raise InvalidTransitionError."""
    current = parse_status(wo.status)
    if event == WorkOrderEvent.CHILDREN_COMPLETED and wo.parent_wo_id is not None:
        raise InvalidTransitionError(wo.work_order_id, current.value, event.value)

    new_status = TRANSITIONS.get((current, event))
    if new_status is None:
        raise InvalidTransitionError(wo.work_order_id, current.value, event.value)

    now = utcnow()
    wo.status = new_status
    wo.updated_at = now
    if new_status == WorkOrderStatus.IN_PROGRESS and wo.scheduled_start is None:
        wo.scheduled_start = now
    if new_status == WorkOrderStatus.COMPLETED:
        wo.scheduled_end = now
    session.add(wo)

    log_event(
        session,
        "WORK_ORDER_STATUS_CHANGED",
        f"{wo.wo_number}: {current.value} -> {new_status.value} ({event.value}) by {updated_by}",
        metadata={"from": current.value, "to": new_status.value, "event": event.value},
        reference_id=wo.work_order_id,
    )
    return new_status


def start(session: Session, wo: WorkOrder, updated_by: str = "system") -> None:
    """START a work order; a child also starts its master if that is still PLANNED."""
    apply_event(session, wo, WorkOrderEvent.START, updated_by)
    if wo.parent_wo_id:
        master = session.get(WorkOrder, wo.parent_wo_id)
        if master and parse_status(master.status) == WorkOrderStatus.PLANNED:
            apply_event(session, master, WorkOrderEvent.START, updated_by)


# ---------- creation ----------

def _as_datetime(d) -> Optional[datetime]:
    if d is None:
        return None
    if isinstance(d, datetime):
        return d if d.tzinfo else d.replace(tzinfo=timezone.utc)
    return datetime(d.year, d.month, d.day, tzinfo=timezone.utc)


def create_master_work_order(
    session: Session,
    product_id: str,
    quantity: float,
    due_date: Optional[date] = None,
    start_date: Optional[date] = None,
    customer: Optional[str] = None,
    sales_order_id: Optional[str] = None,
    purchase_order_ref: Optional[str] = None,
    priority: int = 5,
    created_by: str = "system",
    notes: Optional[str] = None,
) -> WorkOrder:
    if not product_id:
        raise ValidationError("product_id is required")
    if quantity is None or quantity <= 0:
        raise ValidationError("quantity must be greater than zero")

    with unit_of_work(session):
        if not session.get(Product, product_id):
            raise NotFoundError(f"Product {product_id} not found")

        wo = WorkOrder(
            wo_number=document_number("MWO"),
            product_id=product_id,
            quantity=quantity,
            status=WorkOrderStatus.PLANNED,
            scheduled_start=_as_datetime(start_date),
            scheduled_end=_as_datetime(due_date),
            due_date=due_date.date() if isinstance(due_date, datetime) else due_date,
            customer=customer,
            sales_order_id=sales_order_id,
            purchase_order_ref=purchase_order_ref,
            priority=priority,
            created_by=created_by,
            notes=notes,
        )
        session.add(wo)
        log_event(
            session,
            "WORK_ORDER_CREATED",
            f"Master work order {wo.wo_number} for {quantity} x {product_id}",
            reference_id=wo.work_order_id,
        )

    session.refresh(wo)
    logger.info("Created master work order %s (%s)", wo.wo_number, wo.work_order_id)
    return wo


def create_child_work_order(
    session: Session,
    parent_wo_id: str,
    operation_type: str,
    quantity: Optional[float] = None,
    customer: Optional[str] = None,
    sales_order_id: Optional[str] = None,
    created_by: str = "system",
) -> WorkOrder:
    """Child inherits product and schedule window from its master."""
    op = _parse_operation(operation_type)
    if quantity is not None and quantity <= 0:
        raise ValidationError("quantity must be greater than zero")

    with unit_of_work(session):
        parent = get_work_order(session, parent_wo_id)
        if parent.parent_wo_id is not None:
            raise ValidationError(f"{parent.wo_number} is a child work order and cannot have children")
        if parse_status(parent.status) in (WorkOrderStatus.COMPLETED, WorkOrderStatus.CANCELLED):
            raise ValidationError(f"Master {parent.wo_number} is {_val(parent.status)}")

        child = WorkOrder(
            wo_number=document_number(f"WO-{op.value}"),
            product_id=parent.product_id,
            quantity=quantity if quantity is not None else parent.quantity,
            status=WorkOrderStatus.PLANNED,
            operation_type=op,
            parent_wo_id=parent.work_order_id,
            scheduled_start=parent.scheduled_start,
            scheduled_end=parent.scheduled_end,
            due_date=parent.due_date,
            priority=parent.priority,
            customer=customer or parent.customer,
            sales_order_id=sales_order_id or parent.sales_order_id,
            purchase_order_ref=parent.purchase_order_ref,
            created_by=created_by,
        )
        session.add(child)
        log_event(
            session,
            "WORK_ORDER_CREATED",
            f"Child work order {child.wo_number} ({op.value}) under {parent.wo_number}",
            reference_id=child.work_order_id,
        )

    session.refresh(child)
    logger.info("Created %s child %s under %s", op.value, child.work_order_id, parent_wo_id)
    return child


# ---------- queries ----------

def get_work_order_hierarchy(session: Session, master_id: str) -> Dict[str, Any]:
    master = get_work_order(session, master_id)
    if master.parent_wo_id is not None:
        raise ValidationError(f"{master.wo_number} is not a master work order")

    children = [work_order_to_dict(c) for c in _children(session, master_id)]
    return {
        "master": work_order_to_dict(master),
        "children": children,
        "total_work_orders": 1 + len(children),
    }


def get_child_work_orders(session: Session, parent_id: str) -> List[Dict[str, Any]]:
    get_work_order(session, parent_id)
    return [work_order_to_dict(c) for c in _children(session, parent_id)]


def check_work_order_dependencies(session: Session, work_order_id: str) -> Dict[str, Any]:
    """
    can_start is true iff every prerequisite operation has at least one
    COMPLETED sibling under the same master. Advisory only: starting is
    never blocked on it.
    """
    wo = get_work_order(session, work_order_id)
    op = OperationType(_val(wo.operation_type)) if wo.operation_type else None
    required = [r.value for r in DEPENDENCIES.get(op, ())]

    if not required or wo.parent_wo_id is None:
        return {
            "has_dependencies": False,
            "can_start": True,
            "required_operations": [],
            "completed_operations": [],
            "missing_operations": [],
        }

    siblings = [s for s in _children(session, wo.parent_wo_id, fresh=True) if s.work_order_id != wo.work_order_id]
    done = {_val(s.operation_type) for s in siblings if parse_status(s.status) == WorkOrderStatus.COMPLETED}
    completed = [r for r in required if r in done]
    return {
        "has_dependencies": True,
        "can_start": len(completed) == len(required),
        "required_operations": required,
        "completed_operations": completed,
        "missing_operations": [r for r in required if r not in done],
    }


# ---------- cascade ----------

def _trigger_next(session: Session, wo: WorkOrder, updated_by: str = "system") -> List[Dict[str, Any]]:
    if wo.parent_wo_id is None or wo.operation_type is None:
        return []
    unblocks = TRIGGERS.get(OperationType(_val(wo.operation_type)), ())
    if not unblocks:
        return []

    triggered = []
    for sibling in _children(session, wo.parent_wo_id, fresh=True):
        if sibling.work_order_id == wo.work_order_id:
            continue
        if parse_status(sibling.status) != WorkOrderStatus.PLANNED:
            continue
        if sibling.operation_type is None or OperationType(_val(sibling.operation_type)) not in unblocks:
            continue

        start(session, sibling, updated_by)
        log_event(
            session,
            "WORK_ORDER_TRIGGERED",
            f"{sibling.wo_number} started after {wo.wo_number} completed",
            reference_id=sibling.work_order_id,
        )
        triggered.append(
            {
                "work_order_id": sibling.work_order_id,
                "wo_number": sibling.wo_number,
                "operation_type": _val(sibling.operation_type),
                "status": WorkOrderStatus.IN_PROGRESS.value,
            }
        )
    return triggered


def trigger_next_work_orders(session: Session, work_order_id: str, updated_by: str = "system") -> List[Dict[str, Any]]:
    """
    Start every PLANNED sibling whose operation the completed one unblocks.
    A shortcut for the common path; check_work_order_dependencies stays
    the authority on readiness.
    """
    with unit_of_work(session):
        wo = get_work_order(session, work_order_id)
        triggered = _trigger_next(session, wo, updated_by)
    logger.info("Triggered %s work orders after %s", len(triggered), work_order_id)
    return triggered


def check_master_completion(session: Session, master_id: str, updated_by: str = "system") -> Optional[Dict[str, Any]]:
    """
    Complete the master iff it has at least one child and every child is
    COMPLETED, then move its finished goods into QA. Returns the QA
    transfer outcome, or None when the master stays open.
    """
    master = session.get(WorkOrder, master_id)
    if not master:
        logger.warning("Master work order %s vanished during completion check", master_id)
        return None

    children = _children(session, master_id, fresh=True)
    if not children:
        return None
    if any(parse_status(c.status) != WorkOrderStatus.COMPLETED for c in children):
        return None

    status = parse_status(master.status)
    if status not in (WorkOrderStatus.PLANNED, WorkOrderStatus.IN_PROGRESS):
        logger.info("Master %s is already %s, no completion cascade", master_id, status.value)
        return None

    apply_event(session, master, WorkOrderEvent.CHILDREN_COMPLETED, updated_by)
    logger.info("All %s children of %s completed, master completed", len(children), master_id)
    return run_qa_transfer(session, master)


def _require_output(session: Session, wo: WorkOrder) -> None:
    """A child completes only once some output has been booked against it."""
    booked = session.exec(
        select(ProductionOutput.output_id).where(ProductionOutput.work_order_id == wo.work_order_id)
    ).first()
    if booked is None:
        raise ValidationError(f"Work order {wo.work_order_id} has no recorded output")


def _trigger_next_best_effort(session: Session, wo: WorkOrder, updated_by: str) -> List[Dict[str, Any]]:
    try:
        with session.begin_nested():
            return _trigger_next(session, wo, updated_by)
    except (ProductionEngineError, SQLAlchemyError):
        logger.exception("Triggering next operations after %s failed", wo.work_order_id)
        return []


def update_work_order_status(
    session: Session,
    work_order_id: str,
    status: str,
    updated_by: str = "system",
    schedule: Optional[Callable[..., Any]] = None,
) -> Dict[str, Any]:
    """
    Entry point for status changes, running the whole completion cascade.

    A child can only be completed after output has been recorded for it.
    Completing a child triggers the next operations (best-effort) and the
    master completion check in the same transaction. Completing a CUTTING
    child also runs the scrap calculation after commit, either through
    `schedule` (e.g. BackgroundTasks.add_task) or inline; its failures are
    only logged.
    """
    target = parse_status(status)
    triggered: List[Dict[str, Any]] = []
    qa_transfer = None
    changed = False

    with unit_of_work(session):
        wo = get_work_order(session, work_order_id)
        current = parse_status(wo.status)

        if current != target:
            if target == WorkOrderStatus.COMPLETED and wo.parent_wo_id is None:
                # Masters complete only through their children
                raise InvalidTransitionError(work_order_id, current.value, WorkOrderEvent.COMPLETE.value)
            event = STATUS_EVENTS.get(target)
            if event is None:
                raise InvalidTransitionError(work_order_id, current.value, f"SET_{target.value}")

            if event == WorkOrderEvent.START:
                start(session, wo, updated_by)
            else:
                if event == WorkOrderEvent.COMPLETE and (current, event) in TRANSITIONS:
                    _require_output(session, wo)
                apply_event(session, wo, event, updated_by)
            changed = True

            if target == WorkOrderStatus.COMPLETED:
                triggered = _trigger_next_best_effort(session, wo, updated_by)
                qa_transfer = check_master_completion(session, wo.parent_wo_id, updated_by)

        result = {
            "work_order": work_order_to_dict(wo),
            "changed": changed,
            "triggered": triggered,
            "qa_transfer": qa_transfer,
        }
        is_cutting = wo.operation_type is not None and _val(wo.operation_type) == OperationType.CUTTING.value

    result["scrap_calculation"] = None
    if changed and target == WorkOrderStatus.COMPLETED and is_cutting:
        bind: Engine = session.get_bind()
        if schedule is not None:
            schedule(calculate_scrap_for_work_order, work_order_id, bind)
            result["scrap_calculation"] = "scheduled"
        else:
            result["scrap_calculation"] = calculate_scrap_for_work_order(work_order_id, bind)

    logger.info("Work order %s -> %s (changed=%s)", work_order_id, target.value, changed)
    return result


# ---------- deletion ----------

def _delete_rows(session: Session, work_order_id: str) -> None:
    for step in session.exec(select(WorkOrderStep).where(WorkOrderStep.work_order_id == work_order_id)).all():
        session.delete(step)
    for item in session.exec(select(WorkOrderItem).where(WorkOrderItem.work_order_id == work_order_id)).all():
        session.delete(item)


def delete_work_order(session: Session, work_order_id: str, deleted_by: str = "system") -> Dict[str, Any]:
    """
    Delete a work order with its steps and items. Deleting a master takes
    its children with it; deleting a child leaves the master alone.
    """
    with unit_of_work(session):
        wo = get_work_order(session, work_order_id)
        deleted = []

        if wo.parent_wo_id is None:
            for child in _children(session, work_order_id):
                _delete_rows(session, child.work_order_id)
                session.delete(child)
                deleted.append(child.work_order_id)
            # Children go first so no row points at a missing master
            session.flush()

        _delete_rows(session, work_order_id)
        session.delete(wo)
        deleted.append(work_order_id)

        log_event(
            session,
            "WORK_ORDER_DELETED",
            f"{wo.wo_number} deleted by {deleted_by} ({len(deleted)} work orders)",
            metadata={"deleted": deleted},
            reference_id=work_order_id,
        )

    logger.info("Deleted work orders %s", deleted)
    return {"deleted": deleted, "count": len(deleted)}
