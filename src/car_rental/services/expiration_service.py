"""Background enforcement of the booking time limits.

Three sweeps run on every tick:

* PENDING bookings not verified within an hour of creation are cancelled,
  with fifteen extra minutes when documents were submitted near the deadline.
* VERIFIED bookings left unpaid for fifteen minutes are cancelled.
* DRAFT bookings older than a day are deleted.

Every write is conditional on the status the sweep read, so a booking that a
user verifies or pays in the meantime is skipped instead of being cancelled.
Running a sweep twice has the same effect as running it once.
"""

from botocore.exceptions import ClientError
from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Callable, List, Optional
from uuid import uuid4

from car_rental.models.bookings import Booking, BookingStatus
from car_rental.models.payments import PaymentStatus
from car_rental.repository.booking_repo import BookingRepository, is_conditional_failure
from car_rental.repository.lock_repo import LockRepository
from car_rental.repository.payment_repo import PaymentRepository
from car_rental.services.booking_state import BookingEvent, apply_transition
from car_rental.services.notification_service import NotificationService
from car_rental.utils.constants import (
    DRAFT_RETENTION,
    PENDING_GRACE_PERIOD,
    PENDING_TIMEOUT,
    SWEEP_LOCK_LEASE,
    VERIFIED_UNPAID_TIMEOUT,
)
from car_rental.utils.custom_exceptions import NotFoundException
from car_rental.utils.datetime_normaliser import utc_now

logger = logging.getLogger(__name__)

SWEEP_LOCK_NAME = "expiration-sweep"


def pending_deadline(booking: Booking) -> datetime:
    deadline = booking.created_at + PENDING_TIMEOUT
    attempt = booking.document_attempt_at
    if attempt is not None and attempt >= deadline - PENDING_GRACE_PERIOD:
        deadline += PENDING_GRACE_PERIOD
    return deadline


@dataclass
class SweepReport:
    expired_pending: List[str] = field(default_factory=list)
    cancelled_unpaid: List[str] = field(default_factory=list)
    purged_drafts: List[str] = field(default_factory=list)
    skipped_changed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    lock_busy: bool = False

    def as_dict(self) -> dict:
        return {
            "expired_pending": len(self.expired_pending),
            "cancelled_unpaid": len(self.cancelled_unpaid),
            "purged_drafts": len(self.purged_drafts),
            "skipped_changed": len(self.skipped_changed),
            "failed": len(self.failed),
            "lock_busy": self.lock_busy,
        }


class ExpirationService:
    def __init__(
        self,
        booking_repo: BookingRepository,
        payment_repo: PaymentRepository,
        lock_repo: LockRepository,
        notification_service: Optional[NotificationService] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.booking_repo = booking_repo
        self.payment_repo = payment_repo
        self.lock_repo = lock_repo
        self.notification_service = notification_service
        self.clock = clock
        self.owner = str(uuid4())

    def run_sweeps(self) -> SweepReport:
        now = self.clock()
        report = SweepReport()
        if not self.lock_repo.acquire(SWEEP_LOCK_NAME, self.owner, now, SWEEP_LOCK_LEASE):
            logger.info("Another expiration sweep is running, skipping this tick")
            report.lock_busy = True
            return report

        try:
            for sweep in (self.expire_pending, self.cancel_unpaid_verified, self.purge_stale_drafts):
                try:
                    sweep(now, report)
                except Exception:
                    logger.exception(f"Expiration sweep {sweep.__name__} failed")
        finally:
            self.lock_repo.release(SWEEP_LOCK_NAME, self.owner)

        logger.info(f"Expiration sweep finished: {report.as_dict()}")
        return report

    def trigger_expiration_check(self) -> SweepReport:
        """Manual run of the same sweeps, for admins and tests."""
        return self.run_sweeps()

    def _cancel(
        self,
        booking: Booking,
        event: BookingEvent,
        now: datetime,
        reason: str,
        bucket: List[str],
        report: SweepReport,
    ):
        cancelled = apply_transition(booking, event, now)
        try:
            self.booking_repo.cancel_booking(
                cancelled, booking, drop_verification=booking.status == BookingStatus.PENDING
            )
        except ClientError as err:
            if is_conditional_failure(err):
                logger.info(f"Booking {booking.booking_id} changed during sweep, skipped")
                report.skipped_changed.append(booking.booking_id)
                return
            logger.exception(f"Could not cancel booking {booking.booking_id}")
            report.failed.append(booking.booking_id)
            return

        bucket.append(booking.booking_id)
        logger.info(f"Booking {booking.booking_id} cancelled: {reason}")
        if self.notification_service:
            self.notification_service.send_cancellation_notice(cancelled, reason)

    def expire_pending(self, now: datetime, report: SweepReport):
        for booking in self.booking_repo.get_bookings_by_status(BookingStatus.PENDING):
            if now > pending_deadline(booking):
                self._cancel(
                    booking,
                    BookingEvent.EXPIRE,
                    now,
                    "booking was not verified in time",
                    report.expired_pending,
                    report,
                )

    def cancel_unpaid_verified(self, now: datetime, report: SweepReport):
        for booking in self.booking_repo.get_bookings_by_status(BookingStatus.VERIFIED):
            if now - booking.updated_at <= VERIFIED_UNPAID_TIMEOUT:
                continue
            payment = self.payment_repo.get_by_booking_id(booking.booking_id)
            if payment is not None and payment.status == PaymentStatus.SUCCEEDED:
                continue
            self._cancel(
                booking,
                BookingEvent.UNPAID_TIMEOUT,
                now,
                "payment was not completed in time",
                report.cancelled_unpaid,
                report,
            )

    def purge_stale_drafts(self, now: datetime, report: SweepReport):
        for booking in self.booking_repo.get_bookings_by_status(BookingStatus.DRAFT):
            if now - booking.created_at <= DRAFT_RETENTION:
                continue
            try:
                self.booking_repo.delete_booking(booking, allowed_statuses={BookingStatus.DRAFT})
            except ClientError as err:
                if is_conditional_failure(err):
                    report.skipped_changed.append(booking.booking_id)
                    continue
                logger.exception(f"Could not delete draft {booking.booking_id}")
                report.failed.append(booking.booking_id)
                continue
            report.purged_drafts.append(booking.booking_id)
            logger.info(f"Stale draft {booking.booking_id} deleted")

    def is_booking_expired(self, booking_id: str) -> bool:
        booking = self.booking_repo.get_booking_by_id(booking_id)
        if booking is None:
            raise NotFoundException("booking", booking_id)
        if booking.status != BookingStatus.PENDING:
            return False
        return self.clock() > pending_deadline(booking)

    def get_expiration_stats(self) -> dict:
        now = self.clock()
        pending = self.booking_repo.get_bookings_by_status(BookingStatus.PENDING)
        verified = self.booking_repo.get_bookings_by_status(BookingStatus.VERIFIED)
        drafts = self.booking_repo.get_bookings_by_status(BookingStatus.DRAFT)
        return {
            "pending": len(pending),
            "pending_overdue": sum(1 for b in pending if now > pending_deadline(b)),
            "verified": len(verified),
            "verified_overdue": sum(
                1 for b in verified if now - b.updated_at > VERIFIED_UNPAID_TIMEOUT
            ),
            "drafts": len(drafts),
            "drafts_overdue": sum(1 for b in drafts if now - b.created_at > DRAFT_RETENTION),
            "checked_at": now.isoformat(),
        }
