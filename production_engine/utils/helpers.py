import math
import uuid
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp, the form every table stores."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def document_number(prefix: str, now: datetime | None = None) -> str:
    """
    Human-readable document number, e.g. MWO-20251203101530-4F2A1C.
    The hex tail keeps numbers unique within the same second.
    """
    now = now or utcnow()
    return f"{prefix}-{now.strftime('%Y%m%d%H%M%S')}-{uuid.uuid4().hex[:6].upper()}"


def round2(value: float) -> float:
    """Half-up rounding to 2 decimals (weights in kg)."""
    return math.floor(float(value) * 100 + 0.5) / 100
