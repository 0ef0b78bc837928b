import unittest
from dataclasses import replace
from unittest.mock import MagicMock
from datetime import datetime, timezone, timedelta
from decimal import Decimal
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from car_rental.repository.booking_repo import BookingRepository, is_conditional_failure
from car_rental.models.bookings import Booking, BookingStatus, GuestContact, RegisteredCustomer
from car_rental.models.cars import CarStatus
from car_rental.models.verification import BookingVerification

START = datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc)
CREATED = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


class TestBookingRepository(unittest.TestCase):

    def setUp(self):
        self.table = MagicMock()
        self.table.name = "rentals"
        self.client = MagicMock()

        self.table.meta.client = self.client
        self.repo = BookingRepository(self.table, self.client)

        self.booking = Booking(
            booking_id="b1",
            subject=RegisteredCustomer("u1"),
            car_id="C1",
            start_date=START,
            end_date=START + timedelta(days=2),
            status=BookingStatus.DRAFT,
            base_price=200.0,
            tax_amount=40.0,
            total_price=240.0,
            deposit_amount=500.0,
            customer_email="u1@example.com",
            created_at=CREATED,
            updated_at=CREATED,
        )

    def _ops(self):
        _, kwargs = self.client.transact_write_items.call_args
        return kwargs["TransactItems"]

    def test_add_booking_writes_all_copies(self):
        self.repo.add_booking(self.booking)

        items = self._ops()
        self.assertEqual(len(items), 4)

        keys = [(op["Put"]["Item"]["pk"], op["Put"]["Item"]["sk"]) for op in items]
        self.assertEqual(
            keys,
            [
                ("BOOKING#b1", "DETAILS"),
                ("CAR#C1", "BOOKING#2024-06-01T10:00:00+00:00#b1"),
                ("BOOKING_STATUS#DRAFT", "BOOKING#b1"),
                ("USER#u1", "BOOKING#b1"),
            ],
        )

        details = items[0]["Put"]
        self.assertEqual(details["ConditionExpression"], "attribute_not_exists(pk)")
        self.assertEqual(details["TableName"], "rentals")
        self.assertEqual(details["Item"]["total_price"], Decimal("240.0"))
        self.assertEqual(details["Item"]["booking_status"], "DRAFT")
        self.assertNotIn("ConditionExpression", items[1]["Put"])

    def test_guest_booking_has_no_user_copy(self):
        guest = replace(self.booking, subject=GuestContact("Walk In", "555-0100", "w@example.com"))

        self.repo.add_booking(guest)

        items = self._ops()
        self.assertEqual(len(items), 3)
        details = items[0]["Put"]["Item"]
        self.assertEqual(details["guest_name"], "Walk In")
        self.assertEqual(details["guest_email"], "w@example.com")
        self.assertTrue(details["is_walk_in"])
        self.assertNotIn("user_id", details)

    def test_save_booking_guards_on_read_version_and_moves_status_copy(self):
        later = CREATED + timedelta(minutes=5)
        updated = replace(self.booking, status=BookingStatus.PENDING, updated_at=later)

        self.repo.save_booking(updated, self.booking)

        items = self._ops()
        condition = items[0]["Put"]
        self.assertEqual(
            condition["ExpressionAttributeValues"],
            {":expected_status": "DRAFT", ":expected_updated": "2024-05-01T09:00:00+00:00"},
        )
        self.assertEqual(
            items[-1],
            {
                "Delete": {
                    "TableName": "rentals",
                    "Key": {"pk": "BOOKING_STATUS#DRAFT", "sk": "BOOKING#b1"},
                }
            },
        )

    def test_confirm_booking_stores_expiring_token(self):
        pending = replace(self.booking, status=BookingStatus.PENDING, verification_token="tok")
        expires = CREATED + timedelta(hours=24)
        verification = BookingVerification(
            token="tok", booking_id="b1", expires_at=expires, created_at=CREATED
        )

        self.repo.confirm_booking(pending, self.booking, verification)

        token_put = self._ops()[-1]["Put"]
        self.assertEqual(token_put["Item"]["pk"], "VERIFICATION#tok")
        self.assertEqual(token_put["Item"]["ttl_attribute"], int(expires.timestamp()))
        self.assertFalse(token_put["Item"]["is_verified"])

    def test_cancel_booking_can_drop_token(self):
        pending = replace(self.booking, status=BookingStatus.PENDING, verification_token="tok")
        cancelled = replace(pending, status=BookingStatus.CANCELLED)

        self.repo.cancel_booking(cancelled, pending, drop_verification=True)

        self.assertEqual(
            self._ops()[-1]["Delete"]["Key"], {"pk": "VERIFICATION#tok", "sk": "DETAILS"}
        )

    def test_trip_transition_updates_car_in_same_transaction(self):
        confirmed = replace(self.booking, status=BookingStatus.CONFIRMED)
        ongoing = replace(confirmed, status=BookingStatus.ONGOING, start_odometer=1200)

        self.repo.save_trip_transition(ongoing, confirmed, CarStatus.RENTED)

        self.client.transact_write_items.assert_called_once()
        car_update = [op for op in self._ops() if "Update" in op][0]["Update"]
        self.assertEqual(car_update["Key"], {"pk": "CAR#C1", "sk": "DETAILS"})
        self.assertEqual(car_update["ExpressionAttributeValues"], {":new_value": "RENTED"})

    def test_delete_booking_only_in_allowed_status(self):
        self.repo.delete_booking(self.booking)

        items = self._ops()
        details = items[0]["Delete"]
        self.assertEqual(details["ConditionExpression"], "#booking_status IN (:allowed0, :allowed1)")
        self.assertEqual(
            details["ExpressionAttributeValues"], {":allowed0": "CANCELLED", ":allowed1": "DRAFT"}
        )
        self.assertEqual(items[-1]["Delete"]["Key"], {"pk": "BOOKING#b1", "sk": "PAYMENT"})

    def test_transaction_failure_propagates(self):
        self.client.transact_write_items.side_effect = ClientError(
            {"Error": {"Code": "InternalServerError", "Message": "boom"}},
            "TransactWriteItems",
        )

        with self.assertRaises(ClientError):
            self.repo.add_booking(self.booking)

    def test_get_booking_round_trip(self):
        self.repo.add_booking(self.booking)
        stored = self._ops()[0]["Put"]["Item"]
        self.table.get_item.return_value = {"Item": stored}

        booking = self.repo.get_booking_by_id("b1")

        self.assertEqual(booking, self.booking)

    def test_get_booking_not_found(self):
        self.table.get_item.return_value = {}

        self.assertIsNone(self.repo.get_booking_by_id("missing"))

    def test_car_bookings_query_is_bounded_and_paginated(self):
        self.repo.add_booking(self.booking)
        stored = self._ops()[0]["Put"]["Item"]
        self.table.query.side_effect = [
            {"Items": [stored], "LastEvaluatedKey": {"pk": "x"}},
            {"Items": [stored]},
        ]

        bookings = self.repo.get_car_bookings(
            "C1", start_from=START - timedelta(days=1), start_before=START
        )

        self.assertEqual(len(bookings), 2)
        first_call = self.table.query.call_args_list[0][1]
        self.assertEqual(
            first_call["KeyConditionExpression"],
            Key("pk").eq("CAR#C1")
            & Key("sk").between(
                "BOOKING#2024-05-31T10:00:00+00:00", "BOOKING#2024-06-01T10:00:00+00:00~"
            ),
        )
        self.assertEqual(self.table.query.call_args_list[1][1]["ExclusiveStartKey"], {"pk": "x"})

    def test_get_verification(self):
        self.table.get_item.return_value = {
            "Item": {
                "pk": "VERIFICATION#tok",
                "booking_id": "b1",
                "expires_at": "2024-05-02T09:00:00+00:00",
                "is_verified": True,
                "verified_at": "2024-05-01T10:00:00+00:00",
                "created_at": "2024-05-01T09:00:00+00:00",
            }
        }

        verification = self.repo.get_verification("tok")

        self.assertTrue(verification.is_verified)
        self.assertEqual(verification.booking_id, "b1")

    def test_is_conditional_failure(self):
        plain = ClientError({"Error": {"Code": "ConditionalCheckFailedException"}}, "PutItem")
        cancelled = ClientError(
            {
                "Error": {"Code": "TransactionCanceledException"},
                "CancellationReasons": [{"Code": "None"}, {"Code": "ConditionalCheckFailed"}],
            },
            "TransactWriteItems",
        )
        other = ClientError({"Error": {"Code": "ThrottlingException"}}, "PutItem")

        self.assertTrue(is_conditional_failure(plain))
        self.assertTrue(is_conditional_failure(cancelled))
        self.assertFalse(is_conditional_failure(other))


if __name__ == "__main__":
    unittest.main()
