import json
import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import stripe

from car_rental.models.bookings import Booking
from car_rental.models.payments import CheckoutSession
from car_rental.utils.custom_exceptions import BadUserInput

logger = logging.getLogger(__name__)


class PaymentGatewayError(Exception):
    pass


class PaymentEventKind(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


@dataclass
class PaymentEvent:
    kind: PaymentEventKind
    booking_id: str
    external_id: Optional[str] = None


SUCCEEDED_EVENTS = {"checkout.session.completed", "checkout.session.async_payment_succeeded"}
FAILED_EVENTS = {
    "checkout.session.async_payment_failed",
    "checkout.session.expired",
    "payment_intent.payment_failed",
}


def _to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


def _event_from_payload(event: dict) -> Optional[PaymentEvent]:
    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}
    booking_id = (obj.get("metadata") or {}).get("booking_id") or obj.get("client_reference_id")
    if not booking_id:
        logger.info(f"Ignoring {event_type} event without a booking reference")
        return None

    if event_type in SUCCEEDED_EVENTS:
        if obj.get("payment_status") not in (None, "paid", "no_payment_required"):
            # Delayed methods complete the session before the money arrives.
            return None
        return PaymentEvent(PaymentEventKind.SUCCEEDED, booking_id, obj.get("payment_intent"))
    if event_type in FAILED_EVENTS:
        external_id = obj.get("payment_intent") if event_type.startswith("checkout") else obj.get("id")
        return PaymentEvent(PaymentEventKind.FAILED, booking_id, external_id)

    logger.info(f"Ignoring unhandled payment event {event_type}")
    return None


class StripeGateway:
    def __init__(
        self,
        api_key: str,
        webhook_secret: Optional[str],
        frontend_url: str,
        currency: str = "eur",
    ):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.frontend_url = frontend_url.rstrip("/")
        self.currency = currency

    def create_checkout(self, booking: Booking) -> CheckoutSession:
        try:
            session = stripe.checkout.Session.create(
                api_key=self.api_key,
                mode="payment",
                line_items=[
                    {
                        "price_data": {
                            "currency": self.currency,
                            "product_data": {"name": f"Car rental {booking.car_id}"},
                            "unit_amount": _to_minor_units(booking.total_price),
                        },
                        "quantity": 1,
                    }
                ],
                client_reference_id=booking.booking_id,
                metadata={"booking_id": booking.booking_id},
                payment_intent_data={"metadata": {"booking_id": booking.booking_id}},
                success_url=(
                    f"{self.frontend_url}/bookings/{booking.booking_id}/payment-success"
                    "?session_id={CHECKOUT_SESSION_ID}"
                ),
                cancel_url=f"{self.frontend_url}/bookings/{booking.booking_id}",
                idempotency_key=f"checkout-{booking.booking_id}-{booking.updated_at.timestamp()}",
            )
        except stripe.StripeError as err:
            logger.error(f"Stripe checkout failed for booking {booking.booking_id}: {err}")
            raise PaymentGatewayError(str(err)) from err
        return CheckoutSession(redirect_url=session.url, session_id=session.id)

    def refund(self, external_id: str, booking_id: str) -> str:
        try:
            refund = stripe.Refund.create(
                api_key=self.api_key,
                payment_intent=external_id,
                metadata={"booking_id": booking_id},
                idempotency_key=f"refund-{booking_id}",
            )
        except stripe.StripeError as err:
            logger.error(f"Stripe refund failed for booking {booking_id}: {err}")
            raise PaymentGatewayError(str(err)) from err
        return refund.id

    def parse_webhook(self, payload: str, signature: Optional[str]) -> Optional[PaymentEvent]:
        if not self.webhook_secret:
            raise PaymentGatewayError("STRIPE_WEBHOOK_SECRET is not configured")
        try:
            stripe.WebhookSignature.verify_header(payload, signature or "", self.webhook_secret)
        except stripe.SignatureVerificationError:
            raise BadUserInput("Invalid payment webhook signature")
        try:
            event = json.loads(payload)
        except ValueError:
            raise BadUserInput("Invalid payment webhook payload")
        return _event_from_payload(event)


class MockPaymentGateway:
    """Stands in for Stripe in local and test environments."""

    def __init__(self, frontend_url: str):
        self.frontend_url = frontend_url.rstrip("/")

    def create_checkout(self, booking: Booking) -> CheckoutSession:
        session_id = f"mock_session_{booking.booking_id}"
        logger.info(f"Mock checkout created for booking {booking.booking_id}")
        return CheckoutSession(
            redirect_url=(
                f"{self.frontend_url}/bookings/{booking.booking_id}/payment-success"
                f"?session_id={session_id}"
            ),
            session_id=session_id,
        )

    def refund(self, external_id: str, booking_id: str) -> str:
        logger.info(f"Mock refund issued for booking {booking_id}")
        return f"mock_refund_{booking_id}"

    def parse_webhook(self, payload: str, signature: Optional[str]) -> Optional[PaymentEvent]:
        try:
            event = json.loads(payload)
        except ValueError:
            raise BadUserInput("Invalid payment webhook payload")
        return _event_from_payload(event)


def build_payment_gateway():
    frontend_url = os.environ.get("FRONTEND_URL", "http://localhost:3000")
    if os.environ.get("MOCK_STRIPE", "false").lower() == "true":
        return MockPaymentGateway(frontend_url)

    api_key = os.environ.get("STRIPE_SECRET_KEY")
    if not api_key:
        raise RuntimeError("STRIPE_SECRET_KEY environment variable is not set")
    return StripeGateway(
        api_key=api_key,
        webhook_secret=os.environ.get("STRIPE_WEBHOOK_SECRET"),
        frontend_url=frontend_url,
        currency=os.environ.get("PAYMENT_CURRENCY", "eur"),
    )
