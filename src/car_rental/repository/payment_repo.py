from botocore.exceptions import ClientError
import logging
from typing import Optional
from car_rental.models.payments import Payment, PaymentStatus
from car_rental.utils.datetime_normaliser import from_iso_string, to_iso
from decimal import Decimal

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from types_boto3_dynamodb.service_resource import Table
else:
    Table = object


logger = logging.getLogger(__name__)


class PaymentRepository:
    def __init__(self, table: Table):
        self.table = table

    @staticmethod
    def _key(booking_id: str) -> dict:
        return {"pk": f"BOOKING#{booking_id}", "sk": "PAYMENT"}

    def get_by_booking_id(self, booking_id: str) -> Optional[Payment]:
        try:
            response = self.table.get_item(Key=self._key(booking_id))
        except ClientError as err:
            logger.error(f"Error retrieving payment for booking {booking_id}: {err}")
            raise

        item = response.get("Item")
        if not item:
            return None
        return Payment(
            booking_id=booking_id,
            amount=float(item["amount"]),
            status=PaymentStatus(item["payment_status"]),
            external_id=item.get("external_id"),
            updated_at=from_iso_string(item["updated_at"]),
        )

    def upsert_payment(self, payment: Payment):
        item = {
            **self._key(payment.booking_id),
            "amount": Decimal(str(payment.amount)),
            "payment_status": payment.status.value,
            "updated_at": to_iso(payment.updated_at),
        }
        if payment.external_id:
            item["external_id"] = payment.external_id
        try:
            self.table.put_item(Item=item)
        except ClientError as err:
            logger.error(f"Error saving payment for booking {payment.booking_id}: {err}")
            raise
