from enum import Enum
from typing import Optional
from datetime import datetime, date

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field

from ..utils.helpers import utcnow, new_id


class WorkOrderStatus(str, Enum):
    PLANNED = "PLANNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class OperationType(str, Enum):
    CUTTING = "CUTTING"
    FORMING = "FORMING"
    WELDING = "WELDING"
    ASSEMBLY = "ASSEMBLY"
    QC = "QC"
    PAINTING = "PAINTING"
    PACKAGING = "PACKAGING"


class ScrapStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    CONSUMED = "CONSUMED"


class WorkOrder(SQLModel, table=True):
    """
    Master work orders have no operation_type and no parent.
    Child work orders carry one operation and point at their master.
    """
    work_order_id: str = Field(default_factory=new_id, primary_key=True)
    wo_number: str = Field(index=True)
    product_id: str = Field(foreign_key="product.product_id", index=True)
    quantity: float
    status: WorkOrderStatus = Field(default=WorkOrderStatus.PLANNED, index=True)
    operation_type: Optional[OperationType] = None
    parent_wo_id: Optional[str] = Field(
        default=None, foreign_key="workorder.work_order_id", index=True
    )
    priority: int = 5

    scheduled_start: Optional[datetime] = None
    scheduled_end: Optional[datetime] = None
    due_date: Optional[date] = None

    customer: Optional[str] = None
    sales_order_id: Optional[str] = None
    purchase_order_ref: Optional[str] = None
    notes: Optional[str] = None

    created_by: str = "system"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class WorkOrderStep(SQLModel, table=True):
    step_id: Optional[int] = Field(default=None, primary_key=True)
    work_order_id: str = Field(foreign_key="workorder.work_order_id", index=True)
    step_sequence: int
    operation_code: Optional[str] = None
    description: Optional[str] = None
    status: str = "PENDING"


class WorkOrderItem(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    work_order_id: str = Field(foreign_key="workorder.work_order_id", index=True)
    material_id: str
    quantity_required: float
    quantity_issued: float = 0.0


class MaterialIssue(SQLModel, table=True):
    issue_id: str = Field(default_factory=new_id, primary_key=True)
    work_order_id: str = Field(index=True)  # kept after the work order is deleted
    material_id: str
    material_type: str = "SHEET"
    scrap_id: Optional[str] = None
    quantity: float
    unit_cost: float = 0.0
    status: str = "ISSUED"  # ISSUED -> CONSUMED once output is recorded
    issued_by: str = "system"
    issued_at: datetime = Field(default_factory=utcnow)


class ProductionOutput(SQLModel, table=True):
    output_id: str = Field(default_factory=new_id, primary_key=True)
    work_order_id: str = Field(index=True)
    item_id: str
    item_type: str  # FINISHED_GOOD, SUB_ASSEMBLY, CUT_PART
    quantity_good: float
    quantity_rejected: float = 0.0
    quantity_rework: float = 0.0
    rejection_reason: Optional[str] = None
    recorded_by: str = "system"
    recorded_at: datetime = Field(default_factory=utcnow)


class ScrapRecord(SQLModel, table=True):
    """Reusable leftover material; reference holds the originating work order id."""
    scrap_id: str = Field(default_factory=new_id, primary_key=True)
    material_id: Optional[str] = Field(default=None, index=True)
    material_name: Optional[str] = None
    thickness_mm: Optional[float] = None
    sheet_width_mm: Optional[float] = None
    sheet_length_mm: Optional[float] = None
    weight_kg: float
    location_id: Optional[str] = None
    reference: Optional[str] = Field(default=None, index=True)
    status: ScrapStatus = ScrapStatus.AVAILABLE
    orientation: str = "HORIZONTAL"
    created_by: str = "system"
    created_at: datetime = Field(default_factory=utcnow)


class ScrapOrigin(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    scrap_id: str = Field(foreign_key="scraprecord.scrap_id", unique=True)
    source_type: str = "PRODUCTION"
    source_reference: str
    product_id: Optional[str] = None
    blank_id: Optional[str] = None
    sub_assembly_name: Optional[str] = None
    bom_efficiency_pct: Optional[float] = None
    sheet_width_mm: Optional[float] = None
    sheet_length_mm: Optional[float] = None
    blank_width_mm: Optional[float] = None
    blank_length_mm: Optional[float] = None
    cutting_direction: Optional[str] = None
    contributors_json: Optional[str] = None


class ScrapCalculationRun(SQLModel, table=True):
    """Processed marker: one scrap pass per (work order, operation)."""
    __table_args__ = (UniqueConstraint("work_order_id", "operation"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    work_order_id: str = Field(index=True)
    operation: OperationType = OperationType.CUTTING
    records_created: int = 0
    processed_at: datetime = Field(default_factory=utcnow)
