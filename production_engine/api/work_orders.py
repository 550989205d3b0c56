# production_engine/api/work_orders.py
"""
Work order endpoints - hierarchy, state changes and shop-floor execution.
"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel
from sqlmodel import Session

from ..database import get_session
from ..services import execution, scrap, work_orders
from ..services.work_orders import work_order_to_dict

router = APIRouter(prefix="/api/work-orders", tags=["work-orders"])


# ============ Request Models ============

class MasterWorkOrderRequest(BaseModel):
    product_id: str
    quantity: float
    due_date: Optional[date] = None
    start_date: Optional[date] = None
    customer: Optional[str] = None
    sales_order_id: Optional[str] = None
    purchase_order_ref: Optional[str] = None
    priority: int = 5
    created_by: str = "system"
    notes: Optional[str] = None


class ChildWorkOrderRequest(BaseModel):
    operation_type: str
    quantity: Optional[float] = None
    customer: Optional[str] = None
    sales_order_id: Optional[str] = None
    created_by: str = "system"


class StatusUpdateRequest(BaseModel):
    status: str
    updated_by: str = "system"


class MaterialLine(BaseModel):
    material_id: str
    quantity_issued: float
    scrap_id: Optional[str] = None
    material_type: Optional[str] = None
    unit_cost: Optional[float] = None


class MaterialIssueRequest(BaseModel):
    materials: List[MaterialLine]
    issued_by: str = "system"


class OutputRequest(BaseModel):
    quantity_good: float
    item_id: Optional[str] = None
    item_type: str = "FINISHED_GOOD"
    quantity_rejected: float = 0.0
    quantity_rework: float = 0.0
    rejection_reason: Optional[str] = None
    recorded_by: str = "system"


# ============ Hierarchy ============

@router.post("/master")
def create_master(req: MasterWorkOrderRequest, session: Session = Depends(get_session)):
    wo = work_orders.create_master_work_order(session, **req.model_dump())
    return {"success": True, "data": work_order_to_dict(wo)}


@router.post("/{master_id}/children")
def create_child(master_id: str, req: ChildWorkOrderRequest, session: Session = Depends(get_session)):
    wo = work_orders.create_child_work_order(session, master_id, **req.model_dump())
    return {"success": True, "data": work_order_to_dict(wo)}


@router.get("/{master_id}/hierarchy")
def hierarchy(master_id: str, session: Session = Depends(get_session)):
    return {"success": True, "data": work_orders.get_work_order_hierarchy(session, master_id)}


@router.get("/{work_order_id}/children")
def children(work_order_id: str, session: Session = Depends(get_session)):
    return {"success": True, "data": work_orders.get_child_work_orders(session, work_order_id)}


@router.get("/{work_order_id}/dependencies")
def dependencies(work_order_id: str, session: Session = Depends(get_session)):
    return {"success": True, "data": work_orders.check_work_order_dependencies(session, work_order_id)}


@router.post("/{work_order_id}/trigger-next")
def trigger_next(work_order_id: str, session: Session = Depends(get_session)):
    return {"success": True, "data": work_orders.trigger_next_work_orders(session, work_order_id)}


# ============ State changes ============

@router.patch("/{work_order_id}/status")
def update_status(
    work_order_id: str,
    req: StatusUpdateRequest,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
):
    """
    Status change with the full completion cascade. Scrap for a finished
    CUTTING operation is calculated in the background after the response.
    """
    result = work_orders.update_work_order_status(
        session,
        work_order_id,
        req.status,
        updated_by=req.updated_by,
        schedule=background_tasks.add_task,
    )
    return {"success": True, "data": result}


@router.post("/{work_order_id}/start")
def start(work_order_id: str, session: Session = Depends(get_session)):
    return {"success": True, "data": execution.start_work_order(session, work_order_id)}


@router.delete("/{work_order_id}")
def delete(work_order_id: str, session: Session = Depends(get_session)):
    return {"success": True, "data": work_orders.delete_work_order(session, work_order_id)}


# ============ Execution ============

@router.post("/{work_order_id}/issue")
def issue(work_order_id: str, req: MaterialIssueRequest, session: Session = Depends(get_session)):
    result = execution.issue_materials(
        session,
        work_order_id,
        [m.model_dump() for m in req.materials],
        issued_by=req.issued_by,
    )
    return {"success": True, "data": result}


@router.post("/{work_order_id}/output")
def output(work_order_id: str, req: OutputRequest, session: Session = Depends(get_session)):
    result = execution.record_production_output(session, work_order_id, **req.model_dump())
    return {"success": True, "data": result}


@router.get("/{work_order_id}/scrap-preview")
def scrap_preview(work_order_id: str, session: Session = Depends(get_session)):
    return {"success": True, "data": scrap.preview_scrap(session, work_order_id)}
