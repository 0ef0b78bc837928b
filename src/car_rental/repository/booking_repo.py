from botocore.exceptions import ClientError
import logging
from typing import Iterable, List, Optional
from boto3.dynamodb.conditions import Key
from car_rental.models.bookings import (
    Booking,
    BookingStatus,
    BookingType,
    DELETABLE_STATUSES,
    GuestContact,
    RegisteredCustomer,
)
from car_rental.models.cars import CarStatus
from car_rental.models.verification import BookingVerification
from car_rental.utils.datetime_normaliser import from_iso_string, to_iso
from decimal import Decimal
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from types_boto3_dynamodb.service_resource import Table
    from types_boto3_dynamodb import DynamoDBClient
else:
    Table = object
    DynamoDBClient = object


logger = logging.getLogger(__name__)

MONEY_FIELDS = (
    "base_price",
    "tax_amount",
    "total_price",
    "deposit_amount",
    "damage_fee",
    "extra_km_fee",
)


def is_conditional_failure(err: ClientError) -> bool:
    code = err.response.get("Error", {}).get("Code")
    if code == "ConditionalCheckFailedException":
        return True
    if code == "TransactionCanceledException":
        reasons = err.response.get("CancellationReasons") or []
        return any(r.get("Code") == "ConditionalCheckFailed" for r in reasons)
    return False


class BookingRepository:
    """Bookings are stored once under ``BOOKING#<id>`` and copied into three
    adjacency partitions (car, user, status) so each access pattern is a single
    query. Every write rewrites all copies in one transaction.
    """

    def __init__(self, table: Table, client: DynamoDBClient = None):
        self.table = table
        self.client = client if client else table.meta.client

    @staticmethod
    def _details_key(booking_id: str) -> dict:
        return {"pk": f"BOOKING#{booking_id}", "sk": "DETAILS"}

    @staticmethod
    def _verification_key(token: str) -> dict:
        return {"pk": f"VERIFICATION#{token}", "sk": "DETAILS"}

    @staticmethod
    def _payment_key(booking_id: str) -> dict:
        return {"pk": f"BOOKING#{booking_id}", "sk": "PAYMENT"}

    def _keys(self, booking: Booking) -> List[dict]:
        keys = [
            self._details_key(booking.booking_id),
            {
                "pk": f"CAR#{booking.car_id}",
                "sk": f"BOOKING#{to_iso(booking.start_date)}#{booking.booking_id}",
            },
            {
                "pk": f"BOOKING_STATUS#{booking.status.value}",
                "sk": f"BOOKING#{booking.booking_id}",
            },
        ]
        if booking.user_id:
            keys.append(
                {"pk": f"USER#{booking.user_id}", "sk": f"BOOKING#{booking.booking_id}"}
            )
        return keys

    @staticmethod
    def _to_item(booking: Booking) -> dict:
        item = {
            "booking_id": booking.booking_id,
            "car_id": booking.car_id,
            "start_date": to_iso(booking.start_date),
            "end_date": to_iso(booking.end_date),
            "booking_status": booking.status.value,
            "booking_type": booking.booking_type.value,
            "created_by_staff": booking.created_by_staff,
            "is_walk_in": booking.is_walk_in,
            "created_at": to_iso(booking.created_at),
            "updated_at": to_iso(booking.updated_at),
        }
        for name in MONEY_FIELDS:
            item[name] = Decimal(str(getattr(booking, name)))

        if booking.user_id:
            item["user_id"] = booking.user_id
        else:
            guest = booking.guest
            item["guest_name"] = guest.name
            item["guest_phone"] = guest.phone
            if guest.email:
                item["guest_email"] = guest.email

        optional = {
            "pickup_time": booking.pickup_time,
            "return_time": booking.return_time,
            "start_odometer": booking.start_odometer,
            "end_odometer": booking.end_odometer,
            "customer_email": booking.customer_email,
            "verification_token": booking.verification_token,
            "document_attempt_at": (
                to_iso(booking.document_attempt_at) if booking.document_attempt_at else None
            ),
        }
        item.update({k: v for k, v in optional.items() if v is not None})
        return item

    @staticmethod
    def _to_domain(item: dict) -> Booking:
        if item.get("user_id"):
            subject = RegisteredCustomer(user_id=item["user_id"])
        else:
            subject = GuestContact(
                name=item["guest_name"],
                phone=item["guest_phone"],
                email=item.get("guest_email"),
            )

        def _int(name: str) -> Optional[int]:
            return int(item[name]) if item.get(name) is not None else None

        return Booking(
            booking_id=item["booking_id"],
            subject=subject,
            car_id=item["car_id"],
            start_date=from_iso_string(item["start_date"]),
            end_date=from_iso_string(item["end_date"]),
            status=BookingStatus(item["booking_status"]),
            booking_type=BookingType(item.get("booking_type", BookingType.STANDARD.value)),
            pickup_time=item.get("pickup_time"),
            return_time=item.get("return_time"),
            start_odometer=_int("start_odometer"),
            end_odometer=_int("end_odometer"),
            created_by_staff=bool(item.get("created_by_staff", False)),
            customer_email=item.get("customer_email"),
            verification_token=item.get("verification_token"),
            document_attempt_at=(
                from_iso_string(item["document_attempt_at"])
                if item.get("document_attempt_at")
                else None
            ),
            created_at=from_iso_string(item["created_at"]),
            updated_at=from_iso_string(item["updated_at"]),
            **{name: float(item.get(name, 0)) for name in MONEY_FIELDS},
        )

    def _write_ops(self, booking: Booking, previous: Optional[Booking] = None) -> List[dict]:
        attributes = self._to_item(booking)
        new_keys = self._keys(booking)
        ops = []
        for index, key in enumerate(new_keys):
            put = {"TableName": self.table.name, "Item": {**key, **attributes}}
            if index == 0:
                if previous is None:
                    put["ConditionExpression"] = "attribute_not_exists(pk)"
                else:
                    # Lose the write if anyone changed the booking since it was read.
                    put["ConditionExpression"] = (
                        "#booking_status = :expected_status AND #updated_at = :expected_updated"
                    )
                    put["ExpressionAttributeNames"] = {
                        "#booking_status": "booking_status",
                        "#updated_at": "updated_at",
                    }
                    put["ExpressionAttributeValues"] = {
                        ":expected_status": previous.status.value,
                        ":expected_updated": to_iso(previous.updated_at),
                    }
            ops.append({"Put": put})

        if previous is not None:
            current = {(k["pk"], k["sk"]) for k in new_keys}
            for key in self._keys(previous):
                if (key["pk"], key["sk"]) not in current:
                    ops.append({"Delete": {"TableName": self.table.name, "Key": key}})
        return ops

    def _transact(self, ops: List[dict], booking_id: str, action: str):
        try:
            self.client.transact_write_items(TransactItems=ops)
        except ClientError as err:
            logger.error(f"Error {action} booking {booking_id}: {err}")
            raise

    def add_booking(self, booking: Booking):
        self._transact(self._write_ops(booking), booking.booking_id, "creating")

    def save_booking(self, booking: Booking, previous: Booking):
        self._transact(
            self._write_ops(booking, previous), booking.booking_id, "updating"
        )

    def confirm_booking(
        self, booking: Booking, previous: Booking, verification: BookingVerification
    ):
        ops = self._write_ops(booking, previous)
        ops.append(
            {
                "Put": {
                    "TableName": self.table.name,
                    "Item": {
                        **self._verification_key(verification.token),
                        "booking_id": verification.booking_id,
                        "expires_at": to_iso(verification.expires_at),
                        "is_verified": False,
                        "created_at": to_iso(verification.created_at),
                        "ttl_attribute": int(verification.expires_at.timestamp()),
                    },
                    "ConditionExpression": "attribute_not_exists(pk)",
                }
            }
        )
        self._transact(ops, booking.booking_id, "confirming")

    def mark_verified(
        self,
        booking: Booking,
        previous: Booking,
        token: Optional[str],
        verified_at: datetime,
    ):
        ops = self._write_ops(booking, previous)
        if token:
            ops.append(
                {
                    "Update": {
                        "TableName": self.table.name,
                        "Key": self._verification_key(token),
                        "UpdateExpression": "SET is_verified = :true, verified_at = :verified_at",
                        "ExpressionAttributeValues": {
                            ":true": True,
                            ":verified_at": to_iso(verified_at),
                        },
                        "ConditionExpression": "attribute_exists(pk)",
                    }
                }
            )
        self._transact(ops, booking.booking_id, "verifying")

    def cancel_booking(self, booking: Booking, previous: Booking, drop_verification: bool = False):
        ops = self._write_ops(booking, previous)
        if drop_verification and previous.verification_token:
            ops.append(
                {
                    "Delete": {
                        "TableName": self.table.name,
                        "Key": self._verification_key(previous.verification_token),
                    }
                }
            )
        self._transact(ops, booking.booking_id, "cancelling")

    def save_trip_transition(self, booking: Booking, previous: Booking, car_status: CarStatus):
        ops = self._write_ops(booking, previous)
        ops.append(
            {
                "Update": {
                    "TableName": self.table.name,
                    "Key": {"pk": f"CAR#{booking.car_id}", "sk": "DETAILS"},
                    "UpdateExpression": "SET #car_status = :new_value",
                    "ExpressionAttributeNames": {"#car_status": "car_status"},
                    "ExpressionAttributeValues": {":new_value": car_status.value},
                    "ConditionExpression": "attribute_exists(pk)",
                }
            }
        )
        self._transact(ops, booking.booking_id, f"moving car to {car_status.value} for")

    def delete_booking(self, booking: Booking, allowed_statuses: Iterable[BookingStatus] = DELETABLE_STATUSES):
        allowed = sorted(s.value for s in allowed_statuses)
        placeholders = {f":allowed{i}": value for i, value in enumerate(allowed)}
        ops = []
        for index, key in enumerate(self._keys(booking)):
            delete = {"TableName": self.table.name, "Key": key}
            if index == 0:
                delete["ConditionExpression"] = (
                    f"#booking_status IN ({', '.join(placeholders)})"
                )
                delete["ExpressionAttributeNames"] = {"#booking_status": "booking_status"}
                delete["ExpressionAttributeValues"] = placeholders
            ops.append({"Delete": delete})
        ops.append(
            {"Delete": {"TableName": self.table.name, "Key": self._payment_key(booking.booking_id)}}
        )
        if booking.verification_token:
            ops.append(
                {
                    "Delete": {
                        "TableName": self.table.name,
                        "Key": self._verification_key(booking.verification_token),
                    }
                }
            )
        self._transact(ops, booking.booking_id, "deleting")

    def get_booking_by_id(self, booking_id: str) -> Optional[Booking]:
        try:
            response = self.table.get_item(Key=self._details_key(booking_id))
        except ClientError as err:
            logger.error(f"Error retrieving booking {booking_id}: {err}")
            raise

        item = response.get("Item")
        if not item:
            return None
        return self._to_domain(item)

    def _query_all(self, key_condition, description: str) -> List[dict]:
        items = []
        try:
            resp = self.table.query(KeyConditionExpression=key_condition)
            items.extend(resp.get("Items", []))
            while "LastEvaluatedKey" in resp:
                resp = self.table.query(
                    KeyConditionExpression=key_condition,
                    ExclusiveStartKey=resp["LastEvaluatedKey"],
                )
                items.extend(resp.get("Items", []))
        except ClientError as err:
            logger.error(f"Error retrieving {description}: {err}")
            raise
        return items

    def get_user_bookings(self, user_id: str) -> List[Booking]:
        items = self._query_all(
            Key("pk").eq(f"USER#{user_id}") & Key("sk").begins_with("BOOKING#"),
            f"user {user_id} bookings",
        )
        return [self._to_domain(item) for item in items]

    def get_car_bookings(
        self,
        car_id: str,
        start_from: Optional[datetime] = None,
        start_before: Optional[datetime] = None,
    ) -> List[Booking]:
        """Bookings of a car ordered by start date, optionally limited to those
        starting inside ``[start_from, start_before]``."""
        condition = Key("pk").eq(f"CAR#{car_id}")
        if start_from is not None or start_before is not None:
            lower = f"BOOKING#{to_iso(start_from)}" if start_from else "BOOKING#"
            # '~' sorts after every character used in ISO timestamps and ids.
            upper = f"BOOKING#{to_iso(start_before)}~" if start_before else "BOOKING#~"
            condition = condition & Key("sk").between(lower, upper)
        else:
            condition = condition & Key("sk").begins_with("BOOKING#")
        items = self._query_all(condition, f"car {car_id} bookings")
        return [self._to_domain(item) for item in items]

    def get_bookings_by_status(self, status: BookingStatus) -> List[Booking]:
        items = self._query_all(
            Key("pk").eq(f"BOOKING_STATUS#{status.value}")
            & Key("sk").begins_with("BOOKING#"),
            f"{status.value} bookings",
        )
        return [self._to_domain(item) for item in items]

    def get_verification(self, token: str) -> Optional[BookingVerification]:
        try:
            response = self.table.get_item(Key=self._verification_key(token))
        except ClientError as err:
            logger.error(f"Error retrieving verification token: {err}")
            raise

        item = response.get("Item")
        if not item:
            return None
        return BookingVerification(
            token=token,
            booking_id=item["booking_id"],
            expires_at=from_iso_string(item["expires_at"]),
            is_verified=bool(item.get("is_verified", False)),
            verified_at=(
                from_iso_string(item["verified_at"]) if item.get("verified_at") else None
            ),
            created_at=from_iso_string(item["created_at"]),
        )
