# production_engine/services/inventory.py

import logging
from typing import Any, Dict, Optional

from sqlalchemy import func, update
from sqlmodel import Session, select

from ..config import settings
from ..errors import InsufficientStockError, ValidationError
from ..models.inventory import InventoryBalance, InventoryTxn, Location, LocationKind
from ..utils.helpers import utcnow

logger = logging.getLogger(__name__)


def get_or_create_location(
    session: Session, code: str, name: Optional[str] = None, kind: LocationKind = LocationKind.OTHER
) -> Location:
    """Resolve a fixed location by code, creating it on first use."""
    loc = session.exec(select(Location).where(Location.code == code)).first()
    if loc:
        return loc

    loc = Location(code=code, name=name or code, kind=kind)
    session.add(loc)
    session.flush()
    logger.info("Created location %s (%s)", code, kind.value)
    return loc


def main_store(session: Session) -> Location:
    return get_or_create_location(
        session, settings.main_store_location_code, "Main Store", LocationKind.MAIN_STORE
    )


def finished_goods_store(session: Session) -> Location:
    return get_or_create_location(
        session,
        settings.finished_goods_location_code,
        "Finished Goods Store",
        LocationKind.FINISHED_GOODS,
    )


def qa_section(session: Session) -> Location:
    return get_or_create_location(session, settings.qa_location_code, "QA Section", LocationKind.QA)


def scrap_yard(session: Session) -> Location:
    return get_or_create_location(
        session, settings.scrap_yard_location_code, "Scrap Yard", LocationKind.SCRAP_YARD
    )


def _balance(session: Session, item_id: str, location_id: str, item_kind: str) -> InventoryBalance:
    bal = session.exec(
        select(InventoryBalance).where(
            InventoryBalance.item_id == item_id,
            InventoryBalance.location_id == location_id,
            InventoryBalance.status == "AVAILABLE",
        )
    ).first()
    if bal:
        return bal

    bal = InventoryBalance(item_id=item_id, item_kind=item_kind, location_id=location_id, quantity=0.0)
    session.add(bal)
    session.flush()
    return bal


def get_available(session: Session, item_id: str) -> float:
    """On-hand AVAILABLE quantity of a material or product across all locations."""
    total = session.exec(
        select(func.coalesce(func.sum(InventoryBalance.quantity), 0.0)).where(
            InventoryBalance.item_id == item_id,
            InventoryBalance.status == "AVAILABLE",
        )
    ).one()
    return float(total or 0.0)


def deduct(
    session: Session,
    item_id: str,
    quantity: float,
    location: Optional[Location] = None,
    wo_id: Optional[str] = None,
    reference: Optional[str] = None,
    created_by: str = "system",
) -> InventoryTxn:
    """
    Deduct stock with a conditional update: the row only changes if it
    still holds at least `quantity`. Raises InsufficientStockError otherwise.
    """
    if quantity <= 0:
        raise ValidationError("quantity must be positive")

    location = location or main_store(session)
    bal = session.exec(
        select(InventoryBalance).where(
            InventoryBalance.item_id == item_id,
            InventoryBalance.location_id == location.location_id,
            InventoryBalance.status == "AVAILABLE",
        )
    ).first()
    if not bal:
        raise InsufficientStockError(item_id, quantity, 0.0)

    # Push pending ORM changes before the bulk UPDATE
    session.flush()
    result = session.connection().execute(
        update(InventoryBalance)
        .where(
            InventoryBalance.inventory_id == bal.inventory_id,
            InventoryBalance.quantity >= quantity,
        )
        .values(quantity=InventoryBalance.quantity - quantity, updated_at=utcnow())
    )
    session.expire(bal)

    if result.rowcount == 0:
        raise InsufficientStockError(item_id, quantity, float(bal.quantity))

    txn = InventoryTxn(
        item_id=item_id,
        item_kind=bal.item_kind,
        location_id=location.location_id,
        txn_type="ISSUE",
        quantity=quantity,
        wo_id=wo_id,
        reference=reference,
        created_by=created_by,
    )
    session.add(txn)
    return txn


def receive(
    session: Session,
    item_id: str,
    quantity: float,
    location: Location,
    item_kind: str = "material",
    wo_id: Optional[str] = None,
    reference: Optional[str] = None,
    created_by: str = "system",
) -> InventoryTxn:
    if quantity <= 0:
        raise ValidationError("quantity must be positive")

    bal = _balance(session, item_id, location.location_id, item_kind)
    bal.quantity += quantity
    bal.updated_at = utcnow()
    session.add(bal)

    txn = InventoryTxn(
        item_id=item_id,
        item_kind=item_kind,
        location_id=location.location_id,
        txn_type="RECEIPT",
        quantity=quantity,
        wo_id=wo_id,
        reference=reference,
        created_by=created_by,
    )
    session.add(txn)
    return txn


def transfer(
    session: Session,
    item_id: str,
    quantity: float,
    from_location: Location,
    to_location: Location,
    item_kind: str = "product",
    wo_id: Optional[str] = None,
    reference: Optional[str] = None,
    created_by: str = "system",
) -> Dict[str, Any]:
    """
    Move stock between two locations (no new receipt).

    The source balance is allowed to go negative: finished goods are
    moved out of the FG store even when no output was booked there.
    """
    if quantity is None or quantity <= 0:
        raise ValidationError("quantity must be positive")
    if from_location.location_id == to_location.location_id:
        raise ValidationError("source and destination locations must differ")

    src = _balance(session, item_id, from_location.location_id, item_kind)
    dst = _balance(session, item_id, to_location.location_id, item_kind)
    now = utcnow()

    src.quantity -= quantity
    src.updated_at = now
    dst.quantity += quantity
    dst.updated_at = now
    session.add(src)
    session.add(dst)

    out_txn = InventoryTxn(
        item_id=item_id,
        item_kind=item_kind,
        location_id=from_location.location_id,
        txn_type="TRANSFER_OUT",
        quantity=quantity,
        wo_id=wo_id,
        reference=reference,
        created_by=created_by,
    )
    in_txn = InventoryTxn(
        item_id=item_id,
        item_kind=item_kind,
        location_id=to_location.location_id,
        txn_type="TRANSFER_IN",
        quantity=quantity,
        wo_id=wo_id,
        reference=reference,
        created_by=created_by,
    )
    session.add(out_txn)
    session.add(in_txn)

    return {
        "item_id": item_id,
        "quantity": quantity,
        "from_location": from_location.code,
        "to_location": to_location.code,
        "reference": reference,
        "transaction_ids": [out_txn.txn_id, in_txn.txn_id],
    }

