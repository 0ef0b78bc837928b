from enum import Enum
from dataclasses import dataclass
from typing import Optional


class CarStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    RENTED = "RENTED"
    MAINTENANCE = "MAINTENANCE"
    OUT_OF_SERVICE = "OUT_OF_SERVICE"


# Cars that may be offered when listing availability for a window.
LISTABLE_CAR_STATUSES = frozenset({CarStatus.AVAILABLE, CarStatus.RENTED})


@dataclass
class Car:
    car_id: str
    price_per_day: float
    deposit_amount: float = 0.0
    status: CarStatus = CarStatus.AVAILABLE
    plate_number: Optional[str] = None
    display_name: Optional[str] = None
