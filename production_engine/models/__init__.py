from .master import ItemType, Product, Material, BlankSpec, BOMItem, SalesOrder
from .inventory import LocationKind, Location, InventoryBalance, InventoryTxn, ProcurementRequest
from .planning import (
    RequisitionStatus,
    RequisitionPriority,
    MaterialRequisition,
    PurchaseRequisition,
    PurchaseRequisitionItem,
    BOMExplosionLog,
    Event,
)
from .production import (
    WorkOrderStatus,
    OperationType,
    ScrapStatus,
    WorkOrder,
    WorkOrderStep,
    WorkOrderItem,
    MaterialIssue,
    ProductionOutput,
    ScrapRecord,
    ScrapOrigin,
    ScrapCalculationRun,
)

__all__ = [
    "ItemType",
    "Product",
    "Material",
    "BlankSpec",
    "BOMItem",
    "SalesOrder",
    "LocationKind",
    "Location",
    "InventoryBalance",
    "InventoryTxn",
    "ProcurementRequest",
    "RequisitionStatus",
    "RequisitionPriority",
    "MaterialRequisition",
    "PurchaseRequisition",
    "PurchaseRequisitionItem",
    "BOMExplosionLog",
    "Event",
    "WorkOrderStatus",
    "OperationType",
    "ScrapStatus",
    "WorkOrder",
    "WorkOrderStep",
    "WorkOrderItem",
    "MaterialIssue",
    "ProductionOutput",
    "ScrapRecord",
    "ScrapOrigin",
    "ScrapCalculationRun",
]
