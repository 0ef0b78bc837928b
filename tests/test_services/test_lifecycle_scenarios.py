import json
import unittest
from datetime import datetime, timedelta, timezone
from itertools import combinations

from botocore.exceptions import ClientError
from fakes import make_system

from car_rental.models.bookings import Booking, BookingStatus, RegisteredCustomer
from car_rental.models.cars import Car, CarStatus
from car_rental.models.payments import Payment, PaymentStatus
from car_rental.models.users import Actor, UserRole
from car_rental.models.verification import DocumentStatus
from car_rental.schemas.bookings import BookingRequest, CompleteTripRequest, UpdateBookingRequest
from car_rental.services.availability_service import windows_overlap
from car_rental.utils.custom_exceptions import (
    AlreadyExists,
    BadUserInput,
    Forbidden,
    InternalError,
)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


USER = Actor(user_id="u1", email="u1@example.com")
OTHER_USER = Actor(user_id="u2", email="u2@example.com")
ADMIN = Actor(user_id="admin-1", role=UserRole.ADMIN)


class LifecycleScenarioTests(unittest.TestCase):

    def setUp(self):
        self.system = make_system(
            now=utc(2024, 5, 1, 9, 0),
            cars=[
                Car(car_id="C1", price_per_day=100.0, deposit_amount=500.0),
                Car(car_id="C2", price_per_day=80.0),
            ],
        )

    def _request(self, start, end, car_id="C1", **kwargs):
        return BookingRequest(car_id=car_id, start_date=start, end_date=end, **kwargs)

    def _pending(self, start, end, actor=USER, car_id="C1", **kwargs):
        draft = self.system.bookings.create_booking(
            self._request(start, end, car_id=car_id, **kwargs), actor
        )
        return self.system.bookings.confirm_reservation(draft.booking_id, actor)

    def _confirmed(self, start, end, actor=USER, car_id="C1", **kwargs):
        pending = self._pending(start, end, actor, car_id, **kwargs)
        self.system.bookings.verify_by_token(pending.verification_token)
        return self.system.payments.handle_payment_succeeded(
            pending.booking_id, f"pi_{pending.booking_id}"
        )

    def _stored(self, booking_id):
        return self.system.booking_repo.get_booking_by_id(booking_id)

    def test_overlapping_request_is_rejected_with_conflicting_booking(self):
        existing = Booking(
            booking_id="b-existing",
            subject=RegisteredCustomer(user_id="u9"),
            car_id="C1",
            start_date=utc(2024, 6, 1, 10, 0),
            end_date=utc(2024, 6, 3, 10, 0),
            status=BookingStatus.CONFIRMED,
        )
        self.system.booking_repo.bookings[existing.booking_id] = existing

        with self.assertRaises(AlreadyExists) as ctx:
            self.system.bookings.create_booking(
                self._request(utc(2024, 6, 2, 9, 0), utc(2024, 6, 4, 9, 0)), USER
            )

        self.assertEqual(["b-existing"], [b.booking_id for b in ctx.exception.conflicts])
        self.assertEqual(1, len(self.system.booking_repo.bookings))

    def test_booking_goes_from_draft_to_confirmed(self):
        draft = self.system.bookings.create_booking(
            self._request(utc(2024, 7, 1, 10, 0), utc(2024, 7, 2, 10, 0)), USER
        )
        self.assertEqual(BookingStatus.DRAFT, draft.status)
        self.assertEqual(100.0, draft.base_price)
        self.assertEqual(20.0, draft.tax_amount)
        self.assertEqual(120.0, draft.total_price)
        self.assertEqual(500.0, draft.deposit_amount)

        pending = self.system.bookings.confirm_reservation(draft.booking_id, USER)
        self.assertEqual(BookingStatus.PENDING, pending.status)
        verification = self.system.booking_repo.get_verification(pending.verification_token)
        self.assertEqual(64, len(verification.token))
        self.assertEqual(self.system.clock.now + timedelta(hours=24), verification.expires_at)
        self.assertIn(("verify", draft.booking_id), self.system.notifications.sent)

        self.system.document_repo.statuses["u1"] = DocumentStatus.APPROVED
        verified = self.system.bookings.verify_by_documents(draft.booking_id)
        self.assertEqual(BookingStatus.VERIFIED, verified.status)
        self.assertTrue(self.system.booking_repo.get_verification(verification.token).is_verified)

        payload = json.dumps(
            {
                "type": "checkout.session.completed",
                "data": {
                    "object": {
                        "metadata": {"booking_id": draft.booking_id},
                        "payment_intent": "pi_123",
                        "payment_status": "paid",
                    }
                },
            }
        )
        self.system.payments.handle_webhook(payload, "sig")

        self.assertEqual(BookingStatus.CONFIRMED, self._stored(draft.booking_id).status)
        payment = self.system.payment_repo.get_by_booking_id(draft.booking_id)
        self.assertEqual(PaymentStatus.SUCCEEDED, payment.status)
        self.assertEqual(120.0, payment.amount)

    def test_pending_booking_expires_after_an_hour(self):
        pending = self._pending(utc(2024, 6, 1, 10, 0), utc(2024, 6, 2, 10, 0))

        self.system.clock.advance(minutes=59)
        self.system.expiration.run_sweeps()
        self.assertEqual(BookingStatus.PENDING, self._stored(pending.booking_id).status)

        self.system.clock.advance(minutes=2)
        report = self.system.expiration.run_sweeps()

        self.assertEqual([pending.booking_id], report.expired_pending)
        self.assertEqual(BookingStatus.CANCELLED, self._stored(pending.booking_id).status)
        self.assertIsNone(self.system.booking_repo.get_verification(pending.verification_token))
        self.assertIn(("cancel", pending.booking_id), self.system.notifications.sent)

    def test_late_document_upload_earns_grace_period(self):
        pending = self._pending(utc(2024, 6, 1, 10, 0), utc(2024, 6, 2, 10, 0))
        self.system.clock.advance(minutes=50)
        self.system.bookings.record_document_attempt(pending.booking_id, USER)

        self.system.clock.advance(minutes=20)
        self.system.expiration.run_sweeps()
        self.assertEqual(BookingStatus.PENDING, self._stored(pending.booking_id).status)

        self.system.clock.advance(minutes=6)
        self.system.expiration.run_sweeps()
        self.assertEqual(BookingStatus.CANCELLED, self._stored(pending.booking_id).status)

    def test_unpaid_verified_booking_is_cancelled(self):
        unpaid = self._pending(utc(2024, 6, 1, 10, 0), utc(2024, 6, 2, 10, 0))
        paid = self._pending(utc(2024, 6, 1, 10, 0), utc(2024, 6, 2, 10, 0), car_id="C2")
        self.system.bookings.verify_by_token(unpaid.verification_token)
        self.system.bookings.verify_by_token(paid.verification_token)

        self.system.clock.advance(minutes=10)
        self.system.payment_repo.upsert_payment(
            Payment(paid.booking_id, paid.total_price, PaymentStatus.SUCCEEDED, "pi_1", self.system.clock.now)
        )
        self.system.clock.advance(minutes=6)
        report = self.system.expiration.run_sweeps()

        self.assertEqual([unpaid.booking_id], report.cancelled_unpaid)
        self.assertEqual(BookingStatus.CANCELLED, self._stored(unpaid.booking_id).status)
        self.assertEqual(BookingStatus.VERIFIED, self._stored(paid.booking_id).status)

    def test_start_trip_requires_approved_documents(self):
        ready = self._confirmed(utc(2024, 6, 1, 10, 0), utc(2024, 6, 2, 10, 0))
        blocked = self._confirmed(
            utc(2024, 6, 1, 10, 0), utc(2024, 6, 2, 10, 0), actor=OTHER_USER, car_id="C2"
        )
        self.system.document_repo.statuses["u1"] = DocumentStatus.APPROVED
        self.system.document_repo.statuses["u2"] = DocumentStatus.PENDING

        started = self.system.trips.start_trip(ready.booking_id, 12000, ADMIN)

        self.assertEqual(BookingStatus.ONGOING, started.status)
        self.assertEqual(BookingStatus.ONGOING, self._stored(ready.booking_id).status)
        self.assertEqual(CarStatus.RENTED, self.system.car_repo.cars["C1"].status)

        with self.assertRaises(BadUserInput):
            self.system.trips.start_trip(blocked.booking_id, 500, ADMIN)
        self.assertEqual(BookingStatus.CONFIRMED, self._stored(blocked.booking_id).status)
        self.assertEqual(CarStatus.AVAILABLE, self.system.car_repo.cars["C2"].status)

    def test_owner_cannot_cancel_inside_cutoff_but_admin_can(self):
        booking = self._confirmed(
            utc(2024, 6, 1, 10, 0), utc(2024, 6, 2, 10, 0), pickup_time="10:00"
        )
        self.system.clock.now = utc(2024, 5, 31, 11, 0)

        with self.assertRaises(Forbidden):
            self.system.bookings.cancel_booking(booking.booking_id, USER)
        self.assertEqual(BookingStatus.CONFIRMED, self._stored(booking.booking_id).status)

        outcome = self.system.bookings.cancel_booking(booking.booking_id, ADMIN)

        self.assertEqual(BookingStatus.CANCELLED, outcome.booking.status)
        self.assertTrue(outcome.refunded)
        self.assertEqual([(f"pi_{booking.booking_id}", booking.booking_id)], self.system.gateway.refunds)
        payment = self.system.payment_repo.get_by_booking_id(booking.booking_id)
        self.assertEqual(PaymentStatus.REFUNDED, payment.status)

    def test_payment_redelivery_after_failed_write_confirms_booking(self):
        pending = self._pending(utc(2024, 6, 1, 10, 0), utc(2024, 6, 2, 10, 0))
        self.system.bookings.verify_by_token(pending.verification_token)
        self.system.booking_repo.fail_next_write = True

        with self.assertRaises(ClientError):
            self.system.payments.handle_payment_succeeded(pending.booking_id, "pi_1")
        self.assertEqual(BookingStatus.VERIFIED, self._stored(pending.booking_id).status)
        self.assertTrue(self.system.payments.is_paid(pending.booking_id))

        confirmed = self.system.payments.handle_payment_succeeded(pending.booking_id, "pi_1")

        self.assertEqual(BookingStatus.CONFIRMED, confirmed.status)
        self.assertEqual(BookingStatus.CONFIRMED, self._stored(pending.booking_id).status)
        payment = self.system.payment_repo.get_by_booking_id(pending.booking_id)
        self.assertEqual((PaymentStatus.SUCCEEDED, "pi_1"), (payment.status, payment.external_id))

        with self.assertRaises(AlreadyExists):
            self.system.payments.handle_payment_succeeded(pending.booking_id, "pi_1")
        self.system.clock.advance(minutes=30)
        self.system.expiration.run_sweeps()
        self.assertEqual(BookingStatus.CONFIRMED, self._stored(pending.booking_id).status)

    def test_cancelled_booking_with_refund_pending_cannot_be_deleted(self):
        booking = self._confirmed(utc(2024, 6, 1, 10, 0), utc(2024, 6, 2, 10, 0))
        self.system.gateway.fail_refunds = True

        outcome = self.system.bookings.cancel_booking(booking.booking_id, ADMIN)
        self.assertTrue(outcome.refund_pending)

        with self.assertRaises(BadUserInput):
            self.system.bookings.delete_booking(booking.booking_id, USER)
        self.assertEqual(BookingStatus.CANCELLED, self._stored(booking.booking_id).status)
        payment = self.system.payment_repo.get_by_booking_id(booking.booking_id)
        self.assertEqual(PaymentStatus.SUCCEEDED, payment.status)

        self.system.gateway.fail_refunds = False
        self.assertEqual(1, self.system.cleanup.reconcile_refunds())
        self.system.bookings.delete_booking(booking.booking_id, USER)

        self.assertIsNone(self._stored(booking.booking_id))
        self.assertIsNone(self.system.payment_repo.get_by_booking_id(booking.booking_id))

    def test_complete_trip_keeps_fees_set_during_the_trip(self):
        booking = self._confirmed(utc(2024, 6, 1, 10, 0), utc(2024, 6, 2, 10, 0))
        self.system.document_repo.statuses["u1"] = DocumentStatus.APPROVED
        self.system.trips.start_trip(booking.booking_id, 12000, ADMIN)
        self.system.bookings.update_booking(
            booking.booking_id, UpdateBookingRequest(damage_fee=250.0), ADMIN
        )

        body = CompleteTripRequest.model_validate({"end_odometer": 12400})
        completed = self.system.trips.complete_trip(
            booking.booking_id,
            body.end_odometer,
            ADMIN,
            damage_fee=body.damage_fee,
            extra_km_fee=body.extra_km_fee,
        )

        self.assertEqual(BookingStatus.COMPLETED, completed.status)
        stored = self._stored(booking.booking_id)
        self.assertEqual(250.0, stored.damage_fee)
        self.assertEqual(12400, stored.end_odometer)


class BookingPropertyTests(unittest.TestCase):

    def setUp(self):
        self.system = make_system(now=utc(2024, 5, 1, 9, 0))

    def _request(self, start, end):
        return BookingRequest(car_id="C1", start_date=start, end_date=end)

    def test_no_two_active_bookings_overlap(self):
        windows = [
            (utc(2024, 6, 1, 10), utc(2024, 6, 3, 10)),
            (utc(2024, 6, 2, 9), utc(2024, 6, 4, 9)),
            (utc(2024, 6, 3, 10), utc(2024, 6, 4, 10)),
            (utc(2024, 5, 31, 10), utc(2024, 6, 1, 10)),
            (utc(2024, 5, 30, 10), utc(2024, 6, 5, 10)),
            (utc(2024, 6, 4, 10), utc(2024, 6, 4, 12)),
        ]
        for start, end in windows:
            try:
                draft = self.system.bookings.create_booking(self._request(start, end), USER)
                self.system.bookings.confirm_reservation(draft.booking_id, USER)
            except AlreadyExists:
                pass

        active = [b for b in self.system.booking_repo.bookings.values() if b.is_active]
        self.assertEqual(4, len(active))
        for a, b in combinations(active, 2):
            self.assertFalse(windows_overlap(a.start_date, a.end_date, b.start_date, b.end_date))

    def test_confirm_rechecks_conflicts_left_open_by_drafts(self):
        first = self.system.bookings.create_booking(
            self._request(utc(2024, 6, 1, 10), utc(2024, 6, 3, 10)), USER
        )
        second = self.system.bookings.create_booking(
            self._request(utc(2024, 6, 2, 10), utc(2024, 6, 4, 10)), OTHER_USER
        )
        self.system.bookings.confirm_reservation(first.booking_id, USER)

        with self.assertRaises(AlreadyExists):
            self.system.bookings.confirm_reservation(second.booking_id, OTHER_USER)
        self.assertEqual(
            BookingStatus.DRAFT,
            self.system.booking_repo.get_booking_by_id(second.booking_id).status,
        )

    def test_create_fails_while_car_is_locked(self):
        self.system.lock_repo.acquire(
            "car#C1", "someone-else", self.system.clock.now, timedelta(seconds=30)
        )
        with self.assertRaises(AlreadyExists):
            self.system.bookings.create_booking(
                self._request(utc(2024, 6, 1, 10), utc(2024, 6, 3, 10)), USER
            )
        self.assertEqual({}, self.system.booking_repo.bookings)

    def test_verification_is_idempotent(self):
        draft = self.system.bookings.create_booking(
            self._request(utc(2024, 6, 1, 10), utc(2024, 6, 3, 10)), USER
        )
        pending = self.system.bookings.confirm_reservation(draft.booking_id, USER)

        first = self.system.bookings.verify_by_token(pending.verification_token)
        self.system.clock.advance(minutes=1)
        second = self.system.bookings.verify_by_token(pending.verification_token)

        self.assertEqual(BookingStatus.VERIFIED, first.status)
        self.assertEqual(first, second)
        self.assertEqual(first, self.system.booking_repo.get_booking_by_id(draft.booking_id))

    def test_failed_trip_write_changes_nothing(self):
        draft = self.system.bookings.create_booking(
            self._request(utc(2024, 6, 1, 10), utc(2024, 6, 3, 10)), USER
        )
        pending = self.system.bookings.confirm_reservation(draft.booking_id, USER)
        self.system.bookings.verify_by_token(pending.verification_token)
        self.system.payments.handle_payment_succeeded(draft.booking_id, "pi_1")
        self.system.document_repo.statuses["u1"] = DocumentStatus.APPROVED
        self.system.booking_repo.fail_next_write = True

        with self.assertRaises(InternalError):
            self.system.trips.start_trip(draft.booking_id, 100, ADMIN)

        self.assertEqual(
            BookingStatus.CONFIRMED,
            self.system.booking_repo.get_booking_by_id(draft.booking_id).status,
        )
        self.assertEqual(CarStatus.AVAILABLE, self.system.car_repo.cars["C1"].status)

    def test_sweep_twice_equals_sweep_once(self):
        for day in (1, 5, 9):
            draft = self.system.bookings.create_booking(
                self._request(utc(2024, 6, day, 10), utc(2024, 6, day + 1, 10)), USER
            )
            self.system.bookings.confirm_reservation(draft.booking_id, USER)
        self.system.clock.advance(hours=2)

        first = self.system.expiration.run_sweeps()
        snapshot = {k: v.status for k, v in self.system.booking_repo.bookings.items()}
        second = self.system.expiration.run_sweeps()

        self.assertEqual(3, len(first.expired_pending))
        self.assertEqual([], second.expired_pending)
        self.assertEqual([], second.failed)
        self.assertEqual(
            snapshot, {k: v.status for k, v in self.system.booking_repo.bookings.items()}
        )

    def test_sweep_skips_booking_verified_after_it_was_read(self):
        draft = self.system.bookings.create_booking(
            self._request(utc(2024, 6, 1, 10), utc(2024, 6, 3, 10)), USER
        )
        pending = self.system.bookings.confirm_reservation(draft.booking_id, USER)
        self.system.clock.advance(minutes=61)
        stale = self.system.booking_repo.get_bookings_by_status(BookingStatus.PENDING)
        self.system.bookings.verify_by_token(pending.verification_token)
        self.system.booking_repo.get_bookings_by_status = lambda status: (
            stale if status == BookingStatus.PENDING else []
        )

        report = self.system.expiration.run_sweeps()

        self.assertEqual([], report.expired_pending)
        self.assertEqual([draft.booking_id], report.skipped_changed)
        self.assertEqual(
            BookingStatus.VERIFIED,
            self.system.booking_repo.get_booking_by_id(draft.booking_id).status,
        )

    def test_delete_only_from_draft_or_cancelled(self):
        for status in BookingStatus:
            booking = Booking(
                booking_id=f"b-{status.value}",
                subject=RegisteredCustomer(user_id="u1"),
                car_id="C1",
                start_date=utc(2024, 6, 1, 10),
                end_date=utc(2024, 6, 2, 10),
                status=status,
            )
            self.system.booking_repo.bookings[booking.booking_id] = booking

            if status in (BookingStatus.DRAFT, BookingStatus.CANCELLED):
                self.system.bookings.delete_booking(booking.booking_id, USER)
                self.assertNotIn(booking.booking_id, self.system.booking_repo.bookings)
            else:
                with self.assertRaises(BadUserInput):
                    self.system.bookings.delete_booking(booking.booking_id, USER)
                self.assertEqual(booking, self.system.booking_repo.bookings[booking.booking_id])


if __name__ == "__main__":
    unittest.main()
