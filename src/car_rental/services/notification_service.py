import boto3
from botocore.exceptions import BotoCoreError, ClientError
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
import logging
from typing import Optional

from car_rental.models.bookings import Booking
from car_rental.models.verification import BookingVerification
from car_rental.utils.datetime_normaliser import combine_pickup

logger = logging.getLogger(__name__)


class NotificationService:
    """Booking e-mails sent through SES.

    Delivery is best effort: a failed send is logged and never undoes the
    booking change that triggered it.
    """

    def __init__(self, sender: str, frontend_url: str, region: str = "ap-south-1", client=None):
        self.ses = client if client else boto3.client("ses", region_name=region)
        self.sender = sender
        self.frontend_url = frontend_url.rstrip("/")

    def _send(self, recipient: Optional[str], subject: str, body: str, booking_id: str) -> bool:
        if not recipient:
            logger.info(f"No contact e-mail for booking {booking_id}, skipping '{subject}'")
            return False

        msg = MIMEMultipart()
        msg["From"] = self.sender
        msg["To"] = recipient
        msg["Subject"] = subject
        msg.attach(MIMEText(body, "plain"))

        try:
            self.ses.send_raw_email(
                Source=self.sender,
                Destinations=[recipient],
                RawMessage={"Data": msg.as_string()},
            )
        except (BotoCoreError, ClientError):
            logger.exception(f"Failed to send '{subject}' for booking {booking_id}")
            return False
        return True

    def send_verification_link(self, booking: Booking, verification: BookingVerification) -> bool:
        link = f"{self.frontend_url}/bookings/verify?token={verification.token}"
        body = f"""
            Hello,

            Please confirm your reservation by opening the link below:

            {link}

            Booking ID: {booking.booking_id}
            Car: {booking.car_id}
            Pick-up: {combine_pickup(booking.start_date, booking.pickup_time).isoformat()}
            Return: {booking.end_date.isoformat()}
            Total: {booking.total_price:.2f}

            The link expires at {verification.expires_at.isoformat()}.
            """
        return self._send(
            booking.contact_email,
            f"Confirm your booking {booking.booking_id}",
            body,
            booking.booking_id,
        )

    def send_cancellation_notice(self, booking: Booking, reason: str) -> bool:
        body = f"""
            Hello,

            Your booking {booking.booking_id} for car {booking.car_id} has been cancelled.

            Reason: {reason}
            """
        return self._send(
            booking.contact_email,
            f"Booking {booking.booking_id} cancelled",
            body,
            booking.booking_id,
        )
