from botocore.exceptions import ClientError
from datetime import datetime
import logging
from typing import Callable, Optional

from car_rental.models.bookings import Booking, BookingStatus
from car_rental.models.cars import CarStatus
from car_rental.models.payments import PaymentStatus
from car_rental.models.users import Actor
from car_rental.models.verification import DocumentStatus
from car_rental.repository.booking_repo import BookingRepository
from car_rental.repository.document_repo import DocumentRepository
from car_rental.repository.payment_repo import PaymentRepository
from car_rental.services.booking_state import BookingEvent, apply_transition
from car_rental.utils.custom_exceptions import (
    BadUserInput,
    Forbidden,
    InternalError,
    NotFoundException,
)
from car_rental.utils.datetime_normaliser import utc_now

logger = logging.getLogger(__name__)


class TripTransactionManager:
    """Moves a booking and its car together: both change, or neither does."""

    def __init__(
        self,
        booking_repo: BookingRepository,
        payment_repo: PaymentRepository,
        document_repo: DocumentRepository,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.booking_repo = booking_repo
        self.payment_repo = payment_repo
        self.document_repo = document_repo
        self.clock = clock

    def _get_booking(self, booking_id: str, actor: Actor) -> Booking:
        if not actor.is_admin:
            raise Forbidden("Only staff can hand over or take back cars")
        booking = self.booking_repo.get_booking_by_id(booking_id)
        if booking is None:
            raise NotFoundException("booking", booking_id)
        return booking

    def _commit(self, booking: Booking, previous: Booking, car_status: CarStatus, action: str):
        try:
            self.booking_repo.save_trip_transition(booking, previous, car_status)
        except ClientError as err:
            logger.error(f"Could not {action} for booking {booking.booking_id}: {err}")
            raise InternalError(f"Could not {action}; no changes were saved") from err

    def start_trip(self, booking_id: str, start_odometer: int, actor: Actor) -> Booking:
        booking = self._get_booking(booking_id, actor)
        if booking.status not in (BookingStatus.CONFIRMED, BookingStatus.VERIFIED):
            raise BadUserInput(f"Cannot start a trip for a {booking.status.value} booking")

        payment = self.payment_repo.get_by_booking_id(booking_id)
        if payment is None or payment.status != PaymentStatus.SUCCEEDED:
            raise BadUserInput("Payment required. Please complete payment before starting the trip")

        if not booking.is_walk_in:
            if self.document_repo.get_status(booking.user_id) != DocumentStatus.APPROVED:
                raise BadUserInput("Driver documents are not approved yet")

        ongoing = apply_transition(
            booking, BookingEvent.START_TRIP, self.clock(), start_odometer=start_odometer
        )
        self._commit(ongoing, booking, CarStatus.RENTED, "start trip")
        logger.info(f"Trip started for booking {booking_id}, car {booking.car_id} rented")
        return ongoing

    def complete_trip(
        self,
        booking_id: str,
        end_odometer: int,
        actor: Actor,
        damage_fee: Optional[float] = None,
        extra_km_fee: Optional[float] = None,
    ) -> Booking:
        booking = self._get_booking(booking_id, actor)
        if booking.status != BookingStatus.ONGOING:
            raise BadUserInput("Only ongoing trips can be completed")
        if booking.start_odometer is not None and end_odometer < booking.start_odometer:
            raise BadUserInput("End odometer cannot be lower than start odometer")

        changes = {"end_odometer": end_odometer}
        if damage_fee is not None:
            changes["damage_fee"] = damage_fee
        if extra_km_fee is not None:
            changes["extra_km_fee"] = extra_km_fee
        completed = apply_transition(booking, BookingEvent.COMPLETE_TRIP, self.clock(), **changes)
        self._commit(completed, booking, CarStatus.MAINTENANCE, "complete trip")
        logger.info(f"Trip completed for booking {booking_id}, car {booking.car_id} in maintenance")
        return completed
