from enum import Enum
from typing import Optional
from datetime import datetime, date

from sqlmodel import SQLModel, Field

from ..utils.helpers import utcnow, new_id


class RequisitionStatus(str, Enum):
    PENDING = "PENDING"
    FULFILLED = "FULFILLED"


class RequisitionPriority(str, Enum):
    NORMAL = "NORMAL"
    HIGH = "HIGH"


class MaterialRequisition(SQLModel, table=True):
    """One row per (demand, material) produced by an MRP run."""
    requisition_id: str = Field(default_factory=new_id, primary_key=True)
    demand_id: str = Field(index=True)  # sales order id or planned-production ref
    sales_order_id: Optional[str] = Field(default=None, index=True)
    product_id: str
    material_id: str = Field(index=True)
    material_code: Optional[str] = None
    material_name: Optional[str] = None
    material_type: str  # SHEET, BOUGHT_OUT, CONSUMABLE

    quantity_required: float
    quantity_available: float
    quantity_shortage: float
    unit_cost: float = 0.0
    total_cost: float = 0.0

    status: RequisitionStatus = RequisitionStatus.PENDING
    priority: RequisitionPriority = RequisitionPriority.NORMAL
    is_critical: bool = False
    required_by_date: Optional[date] = None

    # Set once the shortage has been rolled into a purchase requisition
    purchase_requisition_id: Optional[str] = Field(
        default=None, foreign_key="purchaserequisition.requisition_id"
    )
    created_by: str = "system"
    created_at: datetime = Field(default_factory=utcnow)


class PurchaseRequisition(SQLModel, table=True):
    requisition_id: str = Field(default_factory=new_id, primary_key=True)
    demand_id: str = Field(index=True)
    status: str = "PENDING_APPROVAL"
    priority: RequisitionPriority = RequisitionPriority.NORMAL
    requested_by: str = "MRP System"
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class PurchaseRequisitionItem(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    requisition_id: str = Field(foreign_key="purchaserequisition.requisition_id", index=True)
    material_id: str
    quantity: float
    required_by_date: Optional[date] = None


class BOMExplosionLog(SQLModel, table=True):
    """Append-only audit of every explosion used for planning."""
    explosion_id: str = Field(default_factory=new_id, primary_key=True)
    product_id: str = Field(index=True)
    quantity: float
    total_sheet_count: int = 0
    total_bought_items_count: int = 0
    total_consumables_count: int = 0
    total_material_cost: float = 0.0
    explosion_json: str
    exploded_by: str = "system"
    created_at: datetime = Field(default_factory=utcnow)


class Event(SQLModel, table=True):
    event_id: str = Field(primary_key=True)
    event_type: str = Field(index=True)
    description: str
    event_date: datetime
    reference_id: Optional[str] = Field(default=None, index=True)
    metadata_json: Optional[str] = None
