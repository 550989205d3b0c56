from enum import Enum
from typing import Optional
from datetime import datetime

from sqlmodel import SQLModel, Field

from ..utils.helpers import utcnow, new_id


class LocationKind(str, Enum):
    MAIN_STORE = "MAIN_STORE"
    FINISHED_GOODS = "FINISHED_GOODS"
    QA = "QA"
    SCRAP_YARD = "SCRAP_YARD"
    OTHER = "OTHER"


class Location(SQLModel, table=True):
    location_id: str = Field(default_factory=new_id, primary_key=True)
    code: str = Field(unique=True, index=True)
    name: str
    kind: LocationKind = LocationKind.OTHER


class InventoryBalance(SQLModel, table=True):
    """On-hand quantity of one material or product at one location."""
    inventory_id: Optional[int] = Field(default=None, primary_key=True)
    item_id: str = Field(index=True)  # material_id or product_id
    item_kind: str = "material"  # material | product
    location_id: str = Field(foreign_key="location.location_id", index=True)
    quantity: float = 0.0
    status: str = "AVAILABLE"
    updated_at: datetime = Field(default_factory=utcnow)


class InventoryTxn(SQLModel, table=True):
    txn_id: str = Field(default_factory=new_id, primary_key=True)
    item_id: str = Field(index=True)
    item_kind: str = "material"
    location_id: Optional[str] = Field(default=None, foreign_key="location.location_id")
    txn_type: str  # ISSUE, RECEIPT, TRANSFER_OUT, TRANSFER_IN
    quantity: float
    wo_id: Optional[str] = Field(default=None, index=True)
    reference: Optional[str] = None
    created_by: str = "system"
    created_at: datetime = Field(default_factory=utcnow)


class ProcurementRequest(SQLModel, table=True):
    """Dashboard-facing mirror of purchase requisition lines."""
    request_id: str = Field(default_factory=new_id, primary_key=True)
    material_id: str = Field(index=True)
    quantity: float
    requested_by: str = "MRP System"
    notes: Optional[str] = None
    status: str = "OPEN"
    created_at: datetime = Field(default_factory=utcnow)
