# production_engine/services/procurement.py
"""
Procurement mirror - copies purchase requisition lines to the procurement
dashboard.

Mirroring is best-effort: callers log a failure and carry on, the purchase
requisition itself is never rolled back because of it.
"""

import logging
from typing import Optional, Protocol

import httpx
from sqlalchemy.engine import Engine
from sqlmodel import Session

from ..config import settings
from ..database import engine
from ..models.inventory import ProcurementRequest

logger = logging.getLogger(__name__)


class ProcurementMirror(Protocol):
    def create(
        self, material_id: str, quantity: float, requested_by: str, notes: Optional[str] = None
    ) -> None:
        ...


class DbProcurementMirror:
    """
    Writes ProcurementRequest rows through its own session, so the
    mirror commits (or fails) independently of the caller's transaction.
    """

    def __init__(self, bind: Optional[Engine] = None):
        self.bind = bind or engine

    def create(
        self, material_id: str, quantity: float, requested_by: str, notes: Optional[str] = None
    ) -> None:
        with Session(self.bind) as session:
            session.add(
                ProcurementRequest(
                    material_id=material_id,
                    quantity=quantity,
                    requested_by=requested_by,
                    notes=notes,
                )
            )
            session.commit()
        logger.info("Mirrored procurement request for %s (qty %s)", material_id, quantity)


class HttpProcurementMirror:
    """Posts each line to an external procurement service."""

    def __init__(self, base_url: str, timeout: float = 10.0, client: Optional[httpx.Client] = None):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.Client(timeout=timeout)

    def create(
        self, material_id: str, quantity: float, requested_by: str, notes: Optional[str] = None
    ) -> None:
        response = self.client.post(
            f"{self.base_url}/procurement-requests",
            json={
                "material_id": material_id,
                "quantity": quantity,
                "requested_by": requested_by,
                "notes": notes,
            },
        )
        response.raise_for_status()


def get_procurement_mirror(bind: Optional[Engine] = None) -> ProcurementMirror:
    if settings.procurement_mirror_url:
        return HttpProcurementMirror(
            settings.procurement_mirror_url, timeout=settings.procurement_mirror_timeout
        )
    return DbProcurementMirror(bind)
