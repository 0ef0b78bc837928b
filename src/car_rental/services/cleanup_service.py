from botocore.exceptions import ClientError
from datetime import datetime
import logging
from typing import Callable

from car_rental.models.bookings import BookingStatus
from car_rental.repository.booking_repo import BookingRepository, is_conditional_failure
from car_rental.services.payment_service import PaymentService
from car_rental.utils.constants import COMPLETED_RETENTION
from car_rental.utils.custom_exceptions import RefundFailed
from car_rental.utils.datetime_normaliser import utc_now

logger = logging.getLogger(__name__)


class CleanupService:
    """Daily housekeeping: purge old trips and retry refunds left pending."""

    def __init__(
        self,
        booking_repo: BookingRepository,
        payment_service: PaymentService,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.booking_repo = booking_repo
        self.payment_service = payment_service
        self.clock = clock

    def purge_completed_bookings(self) -> int:
        cutoff = self.clock() - COMPLETED_RETENTION
        deleted = 0
        for booking in self.booking_repo.get_bookings_by_status(BookingStatus.COMPLETED):
            if booking.updated_at >= cutoff:
                continue
            try:
                self.booking_repo.delete_booking(
                    booking, allowed_statuses={BookingStatus.COMPLETED}
                )
            except ClientError as err:
                if is_conditional_failure(err):
                    continue
                raise
            deleted += 1
        logger.info(f"Purged {deleted} completed bookings older than {cutoff.date()}")
        return deleted

    def reconcile_refunds(self) -> int:
        """Refund payments still held for bookings that were cancelled or rejected."""
        refunded = 0
        for status in (BookingStatus.CANCELLED, BookingStatus.REJECTED):
            for booking in self.booking_repo.get_bookings_by_status(status):
                try:
                    if self.payment_service.refund_booking_payment(booking):
                        refunded += 1
                except RefundFailed as err:
                    logger.warning(f"Refund for booking {booking.booking_id} still failing: {err.reason}")
        logger.info(f"Reconciled {refunded} refunds")
        return refunded

    def run(self) -> dict:
        return {
            "purged_completed": self.purge_completed_bookings(),
            "refunds_reconciled": self.reconcile_refunds(),
        }
