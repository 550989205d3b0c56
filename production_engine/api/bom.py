# production_engine/api/bom.py

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from ..database import get_session
from ..services.bom import explode_bom, get_production_recipe

router = APIRouter(prefix="/api/bom", tags=["bom"])


@router.get("/{product_id}/explode")
def explode(
    product_id: str,
    quantity: float = Query(..., gt=0),
    session: Session = Depends(get_session),
):
    """Read-only explosion; MRP runs are what get logged for audit."""
    result = explode_bom(session, product_id, quantity)
    return {"success": True, "data": result.to_dict()}


@router.get("/{product_id}/recipe")
def recipe(product_id: str, session: Session = Depends(get_session)):
    return {"success": True, "data": get_production_recipe(session, product_id)}
