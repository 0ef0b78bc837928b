from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Union


class BookingStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    CONFIRMED = "CONFIRMED"
    ONGOING = "ONGOING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


# Statuses that hold the car for their window.
ACTIVE_STATUSES = frozenset(
    {
        BookingStatus.PENDING,
        BookingStatus.VERIFIED,
        BookingStatus.CONFIRMED,
        BookingStatus.ONGOING,
    }
)

TERMINAL_STATUSES = frozenset(
    {
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED,
        BookingStatus.REJECTED,
        BookingStatus.EXPIRED,
    }
)

DELETABLE_STATUSES = frozenset({BookingStatus.DRAFT, BookingStatus.CANCELLED})


class BookingType(str, Enum):
    STANDARD = "STANDARD"
    REPLACEMENT = "REPLACEMENT"


@dataclass(frozen=True)
class RegisteredCustomer:
    user_id: str


@dataclass(frozen=True)
class GuestContact:
    name: str
    phone: str
    email: Optional[str] = None


BookingSubject = Union[RegisteredCustomer, GuestContact]


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Booking:
    booking_id: str
    subject: BookingSubject
    car_id: str
    start_date: datetime
    end_date: datetime
    status: BookingStatus = BookingStatus.DRAFT
    booking_type: BookingType = BookingType.STANDARD

    pickup_time: Optional[str] = None
    return_time: Optional[str] = None

    base_price: float = 0.0
    tax_amount: float = 0.0
    total_price: float = 0.0
    deposit_amount: float = 0.0
    damage_fee: float = 0.0
    extra_km_fee: float = 0.0
    start_odometer: Optional[int] = None
    end_odometer: Optional[int] = None

    created_by_staff: bool = False
    customer_email: Optional[str] = None
    verification_token: Optional[str] = None
    document_attempt_at: Optional[datetime] = None

    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    def __post_init__(self):
        if not isinstance(self.subject, (RegisteredCustomer, GuestContact)):
            raise ValueError("booking subject must be a registered customer or a guest")

    @property
    def user_id(self) -> Optional[str]:
        if isinstance(self.subject, RegisteredCustomer):
            return self.subject.user_id
        return None

    @property
    def guest(self) -> Optional[GuestContact]:
        if isinstance(self.subject, GuestContact):
            return self.subject
        return None

    @property
    def is_walk_in(self) -> bool:
        return isinstance(self.subject, GuestContact)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def contact_email(self) -> Optional[str]:
        if self.guest is not None:
            return self.guest.email
        return self.customer_email

    def is_owned_by(self, user_id: Optional[str]) -> bool:
        return user_id is not None and self.user_id == user_id
