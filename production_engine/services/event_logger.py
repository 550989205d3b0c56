import json
import logging
import uuid
from typing import Any, Dict, Optional

from sqlmodel import Session

from ..models.planning import Event
from ..utils.helpers import utcnow

logger = logging.getLogger(__name__)


def log_event(
    session: Session,
    event_type: str,
    description: str,
    metadata: Optional[Dict[str, Any]] = None,
    reference_id: Optional[str] = None,
) -> Event:
    """
    Append a business event to the audit table. The row is only added to
    the session, so it commits or rolls back with the caller's work.
    """
    event = Event(
        event_id=f"EVT-{uuid.uuid4().hex}",
        event_type=event_type,
        description=description,
        event_date=utcnow(),
        reference_id=reference_id,
        metadata_json=json.dumps(metadata, default=str) if metadata else None,
    )
    session.add(event)
    logger.debug("%s [%s] %s", event_type, reference_id, description)
    return event
