from botocore.exceptions import ClientError
import logging
from datetime import datetime
from typing import Callable, Optional

from car_rental.models.bookings import Booking, BookingStatus, TERMINAL_STATUSES
from car_rental.models.payments import CheckoutSession, Payment, PaymentStatus
from car_rental.models.users import Actor
from car_rental.repository.booking_repo import BookingRepository, is_conditional_failure
from car_rental.repository.payment_repo import PaymentRepository
from car_rental.services.booking_state import BookingEvent, apply_transition, next_status
from car_rental.services.payment_gateway import PaymentEvent, PaymentEventKind, PaymentGatewayError
from car_rental.utils.custom_exceptions import (
    AlreadyExists,
    BadUserInput,
    Forbidden,
    InternalError,
    NotFoundException,
    RefundFailed,
)
from car_rental.utils.datetime_normaliser import utc_now

logger = logging.getLogger(__name__)


class PaymentService:
    def __init__(
        self,
        booking_repo: BookingRepository,
        payment_repo: PaymentRepository,
        gateway,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.booking_repo = booking_repo
        self.payment_repo = payment_repo
        self.gateway = gateway
        self.clock = clock

    def _get_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repo.get_booking_by_id(booking_id)
        if booking is None:
            raise NotFoundException("booking", booking_id)
        return booking

    def _ensure_not_paid(self, booking_id: str) -> Optional[Payment]:
        payment = self.payment_repo.get_by_booking_id(booking_id)
        if payment is not None and payment.status == PaymentStatus.SUCCEEDED:
            raise AlreadyExists("Payment already completed for this booking")
        return payment

    def is_paid(self, booking_id: str) -> bool:
        payment = self.payment_repo.get_by_booking_id(booking_id)
        return payment is not None and payment.status == PaymentStatus.SUCCEEDED

    def create_checkout(self, booking_id: str, actor: Actor) -> CheckoutSession:
        booking = self._get_booking(booking_id)
        if not (actor.is_admin or booking.is_owned_by(actor.user_id)):
            raise Forbidden("You can only pay for your own bookings")
        if booking.status != BookingStatus.VERIFIED:
            raise BadUserInput("Booking must be verified before payment")
        self._ensure_not_paid(booking_id)

        try:
            session = self.gateway.create_checkout(booking)
        except PaymentGatewayError as err:
            raise InternalError("Could not start payment, please try again") from err

        self.payment_repo.upsert_payment(
            Payment(
                booking_id=booking_id,
                amount=booking.total_price,
                status=PaymentStatus.PENDING,
                external_id=session.session_id,
                updated_at=self.clock(),
            )
        )
        logger.info(f"Checkout {session.session_id} started for booking {booking_id}")
        return session

    def handle_payment_succeeded(
        self, booking_id: str, external_id: Optional[str] = None
    ) -> Booking:
        """Record the payment and move the booking from VERIFIED to CONFIRMED.

        A redelivered notification for a booking whose payment is stored but
        which is still VERIFIED finishes the confirmation instead of failing.
        """
        booking = self._get_booking(booking_id)
        payment = self.payment_repo.get_by_booking_id(booking_id)
        already_paid = payment is not None and payment.status == PaymentStatus.SUCCEEDED
        if already_paid and booking.status != BookingStatus.VERIFIED:
            raise AlreadyExists("Payment already completed for this booking")
        now = self.clock()

        if booking.status != BookingStatus.VERIFIED:
            if external_id and booking.status in TERMINAL_STATUSES:
                # Money was taken for a booking that is gone; keep the record
                # so the refund reconciliation returns it.
                self.payment_repo.upsert_payment(
                    Payment(booking_id, booking.total_price, PaymentStatus.SUCCEEDED, external_id, now)
                )
                logger.warning(
                    f"Payment received for {booking.status.value} booking {booking_id}, queued for refund"
                )
            next_status(booking.status, BookingEvent.PAY)

        if already_paid:
            logger.info(f"Payment for booking {booking_id} already recorded, finishing confirmation")
        else:
            self.payment_repo.upsert_payment(
                Payment(booking_id, booking.total_price, PaymentStatus.SUCCEEDED, external_id, now)
            )
        confirmed = apply_transition(booking, BookingEvent.PAY, now)
        try:
            self.booking_repo.save_booking(confirmed, booking)
        except ClientError as err:
            if is_conditional_failure(err):
                logger.warning(
                    f"Booking {booking_id} changed while recording its payment, refund will be reconciled"
                )
                raise BadUserInput("Booking changed while recording payment") from err
            raise
        logger.info(f"Booking {booking_id} confirmed after payment")
        return confirmed

    def handle_payment_failed(self, booking_id: str, external_id: Optional[str] = None) -> Payment:
        booking = self._get_booking(booking_id)
        existing = self._ensure_not_paid(booking_id)
        payment = Payment(
            booking_id=booking_id,
            amount=booking.total_price,
            status=PaymentStatus.FAILED,
            external_id=external_id or (existing.external_id if existing else None),
            updated_at=self.clock(),
        )
        self.payment_repo.upsert_payment(payment)
        logger.info(f"Payment failed for booking {booking_id}")
        return payment

    def record_manual_payment(self, booking_id: str, actor: Actor) -> Booking:
        """Counter payments taken by staff, for walk-ins and offline payers."""
        if not actor.is_admin:
            raise Forbidden("Only staff can record manual payments")
        return self.handle_payment_succeeded(booking_id)

    def handle_webhook(self, payload: str, signature: Optional[str]) -> Optional[PaymentEvent]:
        event = self.gateway.parse_webhook(payload, signature)
        if event is None:
            return None
        if event.kind == PaymentEventKind.SUCCEEDED:
            self.handle_payment_succeeded(event.booking_id, event.external_id)
        else:
            self.handle_payment_failed(event.booking_id, event.external_id)
        return event

    def refund_booking_payment(self, booking: Booking) -> bool:
        """Refund a succeeded payment. Returns False when there is nothing to refund.

        Safe to call again for the same booking: the gateway call is keyed by
        the booking id and a REFUNDED payment is left alone.
        """
        payment = self.payment_repo.get_by_booking_id(booking.booking_id)
        if payment is None or payment.status != PaymentStatus.SUCCEEDED:
            return False

        if payment.external_id:
            try:
                self.gateway.refund(payment.external_id, booking.booking_id)
            except PaymentGatewayError as err:
                raise RefundFailed(booking.booking_id, str(err)) from err
        else:
            logger.info(f"Booking {booking.booking_id} was paid at the counter, refund to be settled offline")

        payment.status = PaymentStatus.REFUNDED
        payment.updated_at = self.clock()
        self.payment_repo.upsert_payment(payment)
        logger.info(f"Refunded payment of booking {booking.booking_id}")
        return True
