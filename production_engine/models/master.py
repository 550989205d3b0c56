from enum import Enum
from typing import Optional
from datetime import date

from sqlmodel import SQLModel, Field


class ItemType(str, Enum):
    CUT_PART = "CUT_PART"
    BOUGHT_OUT = "BOUGHT_OUT"
    CONSUMABLE = "CONSUMABLE"
    SUB_ASSEMBLY = "SUB_ASSEMBLY"


class Product(SQLModel, table=True):
    product_id: str = Field(primary_key=True)
    product_code: str = Field(index=True)
    name: str
    uom: str = "EA"


class Material(SQLModel, table=True):
    material_id: str = Field(primary_key=True)
    material_code: str = Field(index=True)
    name: str
    material_type: str = "SHEET"  # SHEET, BOUGHT_OUT, CONSUMABLE, ...
    uom: str = "EA"
    unit_cost: float = 0.0


class BlankSpec(SQLModel, table=True):
    """Cutting geometry of one blank, read-only during explosion."""
    blank_id: str = Field(primary_key=True)
    product_id: str = Field(foreign_key="product.product_id", index=True)
    sub_assembly_name: str
    material_id: Optional[str] = Field(default=None, foreign_key="material.material_id")
    material_type: Optional[str] = None

    width_mm: float
    length_mm: float
    thickness_mm: Optional[float] = None
    blank_weight_kg: Optional[float] = None

    sheet_type: Optional[str] = None
    sheet_width_mm: Optional[float] = None
    sheet_length_mm: Optional[float] = None
    sheet_weight_kg: Optional[float] = None
    pcs_per_sheet: int = 1

    consumption_pct: Optional[float] = None
    sheet_util_pct: Optional[float] = None
    scrap_pct: Optional[float] = None
    material_density: Optional[float] = None  # kg/mm3, steel when unset
    cutting_direction: Optional[str] = None  # HORIZONTAL, VERTICAL


class BOMItem(SQLModel, table=True):
    bom_id: Optional[int] = Field(default=None, primary_key=True)
    product_id: str = Field(foreign_key="product.product_id", index=True)
    item_type: ItemType

    # CUT_PART -> blank_spec, SUB_ASSEMBLY -> child product
    blank_id: Optional[str] = Field(default=None, foreign_key="blankspec.blank_id")
    child_product_id: Optional[str] = Field(default=None, foreign_key="product.product_id")
    material_id: Optional[str] = Field(default=None, foreign_key="material.material_id")

    item_name: Optional[str] = None
    quantity_per_unit: float
    scrap_allowance_pct: float = 0.0
    is_critical: bool = False
    sub_assembly_name: Optional[str] = None
    step_sequence: Optional[int] = None
    operation_code: Optional[str] = None


class SalesOrder(SQLModel, table=True):
    sales_order_id: str = Field(primary_key=True)
    product_id: str = Field(foreign_key="product.product_id")
    quantity: float
    customer: Optional[str] = None
    required_by: Optional[date] = None
    status: str = "OPEN"
