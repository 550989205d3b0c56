# production_engine/api/mrp.py

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel import Session

from ..database import get_session
from ..services.mrp import generate_purchase_requisitions, get_mrp_results, run_mrp

router = APIRouter(prefix="/api/mrp", tags=["mrp"])


# ============ Request Models ============

class MRPRunRequest(BaseModel):
    product_id: Optional[str] = None
    quantity: Optional[float] = None
    sales_order_id: Optional[str] = None
    required_by_date: Optional[date] = None
    demand_ref: Optional[str] = None
    created_by: str = "system"


class PurchaseRequisitionRequest(BaseModel):
    requested_by: str = "MRP System"


# ============ Endpoints ============

@router.post("/run")
def run(req: MRPRunRequest, session: Session = Depends(get_session)):
    result = run_mrp(
        session,
        product_id=req.product_id,
        quantity=req.quantity,
        sales_order_id=req.sales_order_id,
        required_by_date=req.required_by_date,
        demand_ref=req.demand_ref,
        created_by=req.created_by,
    )
    return {"success": True, "data": result.to_dict()}


@router.get("/{demand_id}")
def results(demand_id: str, session: Session = Depends(get_session)):
    return {"success": True, "data": get_mrp_results(session, demand_id)}


@router.post("/{demand_id}/purchase-requisitions")
def purchase_requisitions(
    demand_id: str,
    req: Optional[PurchaseRequisitionRequest] = None,
    session: Session = Depends(get_session),
):
    requested_by = req.requested_by if req else "MRP System"
    pr_ids = generate_purchase_requisitions(session, demand_id, requested_by=requested_by)
    return {"success": True, "data": {"demand_id": demand_id, "purchase_requisition_ids": pr_ids}}
