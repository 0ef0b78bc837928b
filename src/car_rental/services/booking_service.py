from botocore.exceptions import ClientError
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime
import logging
import secrets
from typing import Callable, List, Optional
from uuid import uuid4

from car_rental.models.bookings import (
    Booking,
    BookingStatus,
    BookingType,
    DELETABLE_STATUSES,
    GuestContact,
    RegisteredCustomer,
    TERMINAL_STATUSES,
)
from car_rental.models.cars import CarStatus
from car_rental.models.users import Actor
from car_rental.models.verification import BookingVerification, DocumentStatus
from car_rental.repository.booking_repo import BookingRepository, is_conditional_failure
from car_rental.repository.car_repo import CarRepository
from car_rental.repository.document_repo import DocumentRepository
from car_rental.repository.lock_repo import LockRepository
from car_rental.schemas.bookings import BookingRequest, UpdateBookingRequest
from car_rental.services.availability_service import AvailabilityService
from car_rental.services.booking_state import (
    BookingEvent,
    BookingTransitionError,
    apply_transition,
    next_status,
)
from car_rental.services.notification_service import NotificationService
from car_rental.services.payment_service import PaymentService
from car_rental.services.rate_limiter import RateLimiter
from car_rental.utils.constants import (
    CANCELLATION_CUTOFF,
    CAR_LOCK_LEASE,
    MAX_RENTAL_DAYS,
    MAX_RENTAL_DURATION,
    MIN_RENTAL_DURATION,
    PICKUP_LEAD_TIME,
    TAX_PERCENTAGE,
    VERIFICATION_TOKEN_TTL,
    VERIFY_LINK_ATTEMPT_WINDOW,
    VERIFY_LINK_MAX_ATTEMPTS,
)
from car_rental.utils.custom_exceptions import (
    AlreadyExists,
    BadUserInput,
    Forbidden,
    NotFoundException,
    RefundFailed,
)
from car_rental.utils.datetime_normaliser import combine_pickup, utc_now
from car_rental.utils.pricing import (
    calculate_rental_cost,
    calculate_tax,
    calculate_total_price,
    rental_days,
)

logger = logging.getLogger(__name__)

VERIFIED_OR_LATER = frozenset(
    {
        BookingStatus.VERIFIED,
        BookingStatus.CONFIRMED,
        BookingStatus.ONGOING,
        BookingStatus.COMPLETED,
    }
)


@dataclass
class CancellationOutcome:
    booking: Booking
    refunded: bool = False
    refund_pending: bool = False


class BookingService:
    def __init__(
        self,
        booking_repo: BookingRepository,
        car_repo: CarRepository,
        document_repo: DocumentRepository,
        lock_repo: LockRepository,
        availability_service: AvailabilityService,
        payment_service: PaymentService,
        rate_limiter: Optional[RateLimiter] = None,
        notification_service: Optional[NotificationService] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.booking_repo = booking_repo
        self.car_repo = car_repo
        self.document_repo = document_repo
        self.lock_repo = lock_repo
        self.availability_service = availability_service
        self.payment_service = payment_service
        self.rate_limiter = rate_limiter
        self.notification_service = notification_service
        self.clock = clock

    @contextmanager
    def _car_lock(self, car_id: str):
        """Serialise conflict check and write for one car."""
        name = f"car#{car_id}"
        owner = str(uuid4())
        if not self.lock_repo.acquire(name, owner, self.clock(), CAR_LOCK_LEASE):
            raise AlreadyExists("This car is being booked right now, please try again")
        try:
            yield
        finally:
            self.lock_repo.release(name, owner)

    def _get_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repo.get_booking_by_id(booking_id)
        if booking is None:
            raise NotFoundException("booking", booking_id)
        return booking

    def _get_owned_booking(self, booking_id: str, actor: Actor) -> Booking:
        booking = self._get_booking(booking_id)
        if not (actor.is_admin or booking.is_owned_by(actor.user_id)):
            raise Forbidden("You do not have access to this booking")
        return booking

    def _ensure_free(self, car_id: str, start: datetime, end: datetime, exclude: Optional[str] = None):
        conflicts = self.availability_service.find_conflicts(car_id, start, end, exclude)
        if conflicts:
            raise AlreadyExists("Car is not available for the selected dates", conflicts)

    def _save(self, booking: Booking, previous: Booking, action: str):
        try:
            self.booking_repo.save_booking(booking, previous)
        except ClientError as err:
            if is_conditional_failure(err):
                raise AlreadyExists(
                    f"Booking was changed by someone else while {action}, please reload"
                ) from err
            raise

    def create_booking(self, req: BookingRequest, actor: Actor) -> Booking:
        now = self.clock()
        if req.guest is not None and not actor.is_admin:
            raise Forbidden("Only staff can create walk-in bookings")
        if req.booking_type == BookingType.REPLACEMENT and not actor.is_admin:
            raise Forbidden("Only staff can create replacement bookings")
        if req.start_date < now + PICKUP_LEAD_TIME:
            raise BadUserInput("Start date cannot be in the past")

        car = self.car_repo.get_car_by_id(req.car_id)
        if car is None:
            raise NotFoundException("car", req.car_id)
        if car.status == CarStatus.OUT_OF_SERVICE:
            raise BadUserInput("Car is out of service")

        try:
            base_price = calculate_rental_cost(
                rental_days(req.start_date, req.end_date), car.price_per_day
            )
        except ValueError as err:
            raise BadUserInput(str(err)) from err
        tax_amount = calculate_tax(base_price, TAX_PERCENTAGE)

        if req.guest is not None:
            subject = GuestContact(
                name=req.guest.name, phone=req.guest.phone, email=req.guest.email
            )
        else:
            subject = RegisteredCustomer(user_id=actor.user_id)

        booking = Booking(
            booking_id=str(uuid4()),
            subject=subject,
            car_id=car.car_id,
            start_date=req.start_date,
            end_date=req.end_date,
            status=BookingStatus.DRAFT,
            booking_type=req.booking_type,
            pickup_time=req.pickup_time,
            return_time=req.return_time,
            base_price=base_price,
            tax_amount=tax_amount,
            total_price=calculate_total_price(base_price, tax_amount),
            deposit_amount=car.deposit_amount,
            damage_fee=req.damage_fee,
            extra_km_fee=req.extra_km_fee,
            created_by_staff=actor.is_admin,
            customer_email=None if req.guest is not None else actor.email,
            created_at=now,
            updated_at=now,
        )

        with self._car_lock(car.car_id):
            self._ensure_free(car.car_id, booking.start_date, booking.end_date)
            try:
                self.booking_repo.add_booking(booking)
            except ClientError as err:
                if is_conditional_failure(err):
                    raise AlreadyExists("Booking already exists") from err
                raise
        logger.info(f"Draft booking {booking.booking_id} created for car {car.car_id}")
        return booking

    def confirm_reservation(self, booking_id: str, actor: Actor) -> Booking:
        """DRAFT -> PENDING. Issues the verification token and holds the car."""
        booking = self._get_booking(booking_id)
        if booking.is_walk_in:
            if not actor.is_admin:
                raise Forbidden("Only staff can confirm walk-in bookings")
        elif not booking.is_owned_by(actor.user_id):
            raise Forbidden("You can only confirm your own bookings")

        next_status(booking.status, BookingEvent.CONFIRM)
        now = self.clock()
        verification = BookingVerification(
            token=secrets.token_hex(32),
            booking_id=booking_id,
            expires_at=now + VERIFICATION_TOKEN_TTL,
            created_at=now,
        )
        pending = apply_transition(
            booking, BookingEvent.CONFIRM, now, verification_token=verification.token
        )

        with self._car_lock(booking.car_id):
            # The draft did not hold the car, so someone may have taken it since.
            self._ensure_free(booking.car_id, booking.start_date, booking.end_date, booking_id)
            try:
                self.booking_repo.confirm_booking(pending, booking, verification)
            except ClientError as err:
                if is_conditional_failure(err):
                    raise AlreadyExists(
                        "Booking was changed by someone else while confirming, please reload"
                    ) from err
                raise

        logger.info(f"Booking {booking_id} confirmed, awaiting verification")
        if self.notification_service:
            self.notification_service.send_verification_link(pending, verification)
        return pending

    def _get_verification(self, token: str) -> BookingVerification:
        verification = self.booking_repo.get_verification(token)
        if verification is None:
            raise BadUserInput("Invalid or broken verification link")
        return verification

    def get_booking_by_token(self, token: str) -> Booking:
        verification = self._get_verification(token)
        if verification.is_expired(self.clock()) and not verification.is_verified:
            raise BadUserInput("Verification link has expired")
        return self._get_booking(verification.booking_id)

    def _mark_verified(self, booking: Booking, token: Optional[str]) -> Booking:
        now = self.clock()
        verified = apply_transition(booking, BookingEvent.VERIFY, now)
        try:
            self.booking_repo.mark_verified(verified, booking, token, now)
        except ClientError as err:
            if not is_conditional_failure(err):
                raise
            # Lost a race; fine if the other writer verified it too.
            current = self._get_booking(booking.booking_id)
            if current.status in VERIFIED_OR_LATER:
                return current
            raise BookingTransitionError(current.status, BookingEvent.VERIFY) from err
        logger.info(f"Booking {booking.booking_id} verified")
        return verified

    def verify_by_token(self, token: str) -> Booking:
        if self.rate_limiter:
            self.rate_limiter.hit(
                "verify-link", token, VERIFY_LINK_MAX_ATTEMPTS, VERIFY_LINK_ATTEMPT_WINDOW
            )
        verification = self._get_verification(token)
        booking = self._get_booking(verification.booking_id)
        if verification.is_verified or booking.status in VERIFIED_OR_LATER:
            return booking
        if verification.is_expired(self.clock()):
            raise BadUserInput("Verification link has expired")
        if booking.status != BookingStatus.PENDING:
            raise BookingTransitionError(booking.status, BookingEvent.VERIFY)
        return self._mark_verified(booking, token)

    def verify_by_documents(self, booking_id: str) -> Booking:
        booking = self._get_booking(booking_id)
        if booking.status in VERIFIED_OR_LATER:
            return booking
        if booking.status != BookingStatus.PENDING:
            raise BookingTransitionError(booking.status, BookingEvent.VERIFY)
        if not booking.is_walk_in:
            if self.document_repo.get_status(booking.user_id) != DocumentStatus.APPROVED:
                raise BadUserInput("Driver documents are not approved yet")
        return self._mark_verified(booking, booking.verification_token)

    def record_document_attempt(self, booking_id: str, actor: Actor) -> Booking:
        """Stamp a document upload against a PENDING booking's deadline."""
        booking = self._get_owned_booking(booking_id, actor)
        if booking.status != BookingStatus.PENDING:
            raise BadUserInput("Documents can only be submitted for pending bookings")
        now = self.clock()
        updated = replace(booking, document_attempt_at=now, updated_at=now)
        self._save(updated, booking, "recording documents")
        return updated

    def reject_booking(self, booking_id: str, reason: str) -> CancellationOutcome:
        booking = self._get_booking(booking_id)
        if booking.status == BookingStatus.REJECTED:
            return CancellationOutcome(booking)
        next_status(booking.status, BookingEvent.REJECT)

        outcome = CancellationOutcome(booking)
        try:
            outcome.refunded = self.payment_service.refund_booking_payment(booking)
        except RefundFailed as err:
            logger.warning(f"Rejecting booking {booking_id} with refund pending: {err.reason}")
            outcome.refund_pending = True

        rejected = apply_transition(booking, BookingEvent.REJECT, self.clock())
        try:
            self.booking_repo.cancel_booking(
                rejected, booking, drop_verification=booking.status == BookingStatus.PENDING
            )
        except ClientError as err:
            if is_conditional_failure(err):
                raise AlreadyExists("Booking changed while rejecting, please retry") from err
            raise
        outcome.booking = rejected
        logger.info(f"Booking {booking_id} rejected: {reason}")
        if self.notification_service:
            self.notification_service.send_cancellation_notice(rejected, reason)
        return outcome

    def handle_document_decision(
        self, user_id: str, status: DocumentStatus, booking_id: Optional[str] = None
    ) -> List[Booking]:
        """Apply a document review result to one booking or to all of the user's open ones."""
        if booking_id:
            booking = self._get_booking(booking_id)
            if not booking.is_owned_by(user_id):
                raise Forbidden("Booking does not belong to this user")
            targets = [booking]
        else:
            targets = self.booking_repo.get_user_bookings(user_id)

        changed = []
        if status == DocumentStatus.APPROVED:
            for booking in targets:
                if booking.status == BookingStatus.PENDING:
                    changed.append(self.verify_by_documents(booking.booking_id))
        elif status == DocumentStatus.REJECTED:
            for booking in targets:
                if booking.status in (
                    BookingStatus.PENDING,
                    BookingStatus.VERIFIED,
                    BookingStatus.CONFIRMED,
                ):
                    outcome = self.reject_booking(booking.booking_id, "Driver documents were rejected")
                    changed.append(outcome.booking)
        return changed

    def cancel_booking(self, booking_id: str, actor: Actor) -> CancellationOutcome:
        booking = self._get_owned_booking(booking_id, actor)
        if booking.status in (BookingStatus.COMPLETED, BookingStatus.CANCELLED):
            raise BadUserInput("Cannot cancel a completed or already cancelled booking")
        if booking.status == BookingStatus.ONGOING and not actor.is_admin:
            raise Forbidden("Trip has already started, contact support to end it")

        event = BookingEvent.ADMIN_CANCEL if actor.is_admin else BookingEvent.CANCEL
        next_status(booking.status, event)
        now = self.clock()

        if not actor.is_admin and booking.status == BookingStatus.CONFIRMED:
            pickup = combine_pickup(booking.start_date, booking.pickup_time)
            if now > pickup - CANCELLATION_CUTOFF:
                hours = int(CANCELLATION_CUTOFF.total_seconds() // 3600)
                raise Forbidden(
                    f"Bookings can only be cancelled up to {hours} hours before pickup"
                )

        outcome = CancellationOutcome(booking)
        try:
            outcome.refunded = self.payment_service.refund_booking_payment(booking)
        except RefundFailed as err:
            if not actor.is_admin:
                raise
            logger.warning(f"Admin cancelled booking {booking_id} with refund pending: {err.reason}")
            outcome.refund_pending = True

        cancelled = apply_transition(booking, event, now)
        try:
            self.booking_repo.cancel_booking(
                cancelled, booking, drop_verification=booking.status == BookingStatus.PENDING
            )
        except ClientError as err:
            if is_conditional_failure(err):
                raise AlreadyExists(
                    "Booking was changed by someone else while cancelling, please reload"
                ) from err
            raise
        outcome.booking = cancelled
        logger.info(f"Booking {booking_id} cancelled by {actor.user_id}")
        return outcome

    def update_booking(self, booking_id: str, req: UpdateBookingRequest, actor: Actor) -> Booking:
        booking = self._get_owned_booking(booking_id, actor)
        if not actor.is_admin and booking.status != BookingStatus.PENDING:
            raise BadUserInput("Only pending bookings can be updated")
        if booking.status in TERMINAL_STATUSES:
            raise BadUserInput(f"Cannot update a {booking.status.value} booking")
        if not actor.is_admin and (req.damage_fee is not None or req.extra_km_fee is not None):
            raise Forbidden("Only staff can set fees")

        start = req.start_date or booking.start_date
        end = req.end_date or booking.end_date
        if end <= start:
            raise BadUserInput("End date must be after start date")
        if end - start < MIN_RENTAL_DURATION:
            raise BadUserInput(
                f"Minimum duration is {int(MIN_RENTAL_DURATION.total_seconds() // 3600)} hours"
            )
        if end - start > MAX_RENTAL_DURATION:
            raise BadUserInput(f"Maximum rental is {MAX_RENTAL_DAYS} days")

        now = self.clock()
        changes = {"updated_at": now}
        for name in ("pickup_time", "return_time", "damage_fee", "extra_km_fee"):
            value = getattr(req, name)
            if value is not None:
                changes[name] = value

        window_changed = start != booking.start_date or end != booking.end_date
        if window_changed:
            if start < now + PICKUP_LEAD_TIME and start != booking.start_date:
                raise BadUserInput("Start date cannot be in the past")
            car = self.car_repo.get_car_by_id(booking.car_id)
            if car is None:
                raise NotFoundException("car", booking.car_id)
            base_price = calculate_rental_cost(rental_days(start, end), car.price_per_day)
            tax_amount = calculate_tax(base_price, TAX_PERCENTAGE)
            changes.update(
                start_date=start,
                end_date=end,
                base_price=base_price,
                tax_amount=tax_amount,
                total_price=calculate_total_price(base_price, tax_amount),
            )

        updated = replace(booking, **changes)
        if window_changed and booking.is_active:
            with self._car_lock(booking.car_id):
                self._ensure_free(booking.car_id, start, end, booking_id)
                self._save(updated, booking, "updating")
        else:
            self._save(updated, booking, "updating")
        logger.info(f"Booking {booking_id} updated")
        return updated

    def delete_booking(self, booking_id: str, actor: Actor):
        booking = self._get_owned_booking(booking_id, actor)
        if booking.status not in DELETABLE_STATUSES:
            raise BadUserInput("Only draft or cancelled bookings can be deleted")
        if self.payment_service.is_paid(booking_id):
            raise BadUserInput("Booking still holds a payment awaiting refund and cannot be deleted yet")
        try:
            self.booking_repo.delete_booking(booking)
        except ClientError as err:
            if is_conditional_failure(err):
                raise BadUserInput("Booking changed and can no longer be deleted") from err
            raise
        logger.info(f"Booking {booking_id} deleted")

    def get_booking(self, booking_id: str, actor: Actor) -> Booking:
        return self._get_owned_booking(booking_id, actor)

    def get_user_bookings(self, actor: Actor, user_id: Optional[str] = None) -> List[Booking]:
        user_id = user_id or actor.user_id
        if user_id != actor.user_id and not actor.is_admin:
            raise Forbidden("You can only view your own bookings")
        bookings = self.booking_repo.get_user_bookings(user_id)
        return sorted(bookings, key=lambda b: b.start_date, reverse=True)

    def get_car_bookings(self, car_id: str, actor: Actor) -> List[Booking]:
        if not actor.is_admin:
            raise Forbidden("Only staff can view a car's bookings")
        return self.booking_repo.get_car_bookings(car_id)
