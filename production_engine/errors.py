# production_engine/errors.py
"""
Typed failures raised by the planning and execution services.

A material shortage is NOT an error: MRP reports it as data
(``can_proceed=False``) and the caller decides what to do.
"""

from typing import Sequence


class ProductionEngineError(Exception):
    """Base class for every failure the core raises on purpose."""


class ValidationError(ProductionEngineError):
    """Bad input rejected before any mutation."""


class NotFoundError(ProductionEngineError):
    """Unknown work order, product, BOM, blank spec or demand."""


class CyclicBOMError(ProductionEngineError):
    def __init__(self, path: Sequence[str]):
        self.path = list(path)
        super().__init__("Cyclic BOM detected: " + " -> ".join(self.path))


class InvalidTransitionError(ProductionEngineError):
    def __init__(self, work_order_id: str, current: str, event: str):
        self.work_order_id = work_order_id
        self.current = current
        self.event = event
        super().__init__(
            f"Work order {work_order_id} cannot handle {event} while {current}"
        )


class InsufficientStockError(ProductionEngineError):
    """
    Conditional deduction found less stock than requested, even if an
    earlier availability check passed (concurrent consumption).
    """

    def __init__(self, item_id: str, requested: float, available: float):
        self.item_id = item_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for {item_id}. Available: {available}, Required: {requested}"
        )
