import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Set

from car_rental.models.bookings import ACTIVE_STATUSES, Booking
from car_rental.models.cars import Car, LISTABLE_CAR_STATUSES
from car_rental.repository.booking_repo import BookingRepository
from car_rental.repository.car_repo import CarRepository
from car_rental.utils.constants import AVAILABILITY_BUFFER, MAX_RENTAL_DURATION
from car_rental.utils.custom_exceptions import BadUserInput

logger = logging.getLogger(__name__)


def windows_overlap(
    a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime
) -> bool:
    """Half-open ``[start, end)`` windows: touching ends do not overlap."""
    return a_start < b_end and a_end > b_start


@dataclass
class AvailabilityResult:
    available: bool
    conflicting_bookings: List[Booking] = field(default_factory=list)


class AvailabilityService:
    def __init__(self, booking_repo: BookingRepository, car_repo: CarRepository):
        self.booking_repo = booking_repo
        self.car_repo = car_repo

    def find_conflicts(
        self,
        car_id: str,
        start: datetime,
        end: datetime,
        exclude_booking_id: Optional[str] = None,
        buffer: timedelta = timedelta(0),
    ) -> List[Booking]:
        # No rental is longer than MAX_RENTAL_DURATION, so anything starting
        # earlier than that before the window cannot reach into it.
        candidates = self.booking_repo.get_car_bookings(
            car_id,
            start_from=start - MAX_RENTAL_DURATION - buffer,
            start_before=end + buffer,
        )
        return [
            booking
            for booking in candidates
            if booking.is_active
            and booking.booking_id != exclude_booking_id
            and windows_overlap(
                booking.start_date - buffer, booking.end_date + buffer, start, end
            )
        ]

    def check_availability(
        self,
        car_id: str,
        start: datetime,
        end: datetime,
        exclude_booking_id: Optional[str] = None,
    ) -> AvailabilityResult:
        if end <= start:
            raise BadUserInput("End date must be after start date")
        conflicts = self.find_conflicts(car_id, start, end, exclude_booking_id)
        return AvailabilityResult(available=not conflicts, conflicting_bookings=conflicts)

    def _busy_car_ids(self, start: datetime, end: datetime, buffer: timedelta) -> Set[str]:
        """Cars held by any active booking near the window, read per status partition."""
        busy = set()
        for status in sorted(ACTIVE_STATUSES, key=lambda s: s.value):
            for booking in self.booking_repo.get_bookings_by_status(status):
                if windows_overlap(
                    booking.start_date - buffer, booking.end_date + buffer, start, end
                ):
                    busy.add(booking.car_id)
        return busy

    def get_available_cars(
        self, start: datetime, end: datetime, include_buffer: bool = True
    ) -> List[Car]:
        if end <= start:
            raise BadUserInput("End date must be after start date")
        buffer = AVAILABILITY_BUFFER if include_buffer else timedelta(0)
        busy = self._busy_car_ids(start, end, buffer)
        available = [
            car
            for car in self.car_repo.list_cars()
            if car.status in LISTABLE_CAR_STATUSES and car.car_id not in busy
        ]
        logger.info(f"{len(available)} cars free between {start} and {end}")
        return available
