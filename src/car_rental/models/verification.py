from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


class DocumentStatus(str, Enum):
    NOT_UPLOADED = "NOT_UPLOADED"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


@dataclass
class BookingVerification:
    token: str
    booking_id: str
    expires_at: datetime
    is_verified: bool = False
    verified_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at
