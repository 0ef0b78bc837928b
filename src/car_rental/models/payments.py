from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


@dataclass
class Payment:
    booking_id: str
    amount: float
    status: PaymentStatus = PaymentStatus.PENDING
    external_id: Optional[str] = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class CheckoutSession:
    redirect_url: str
    session_id: str
