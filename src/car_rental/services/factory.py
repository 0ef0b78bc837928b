"""Wires services onto one DynamoDB table for the Lambda handlers."""

import os
from typing import Optional

from car_rental.repository.booking_repo import BookingRepository
from car_rental.repository.car_repo import CarRepository
from car_rental.repository.document_repo import DocumentRepository
from car_rental.repository.lock_repo import LockRepository
from car_rental.repository.payment_repo import PaymentRepository
from car_rental.repository.rate_limit_repo import RateLimitRepository
from car_rental.services.availability_service import AvailabilityService
from car_rental.services.booking_service import BookingService
from car_rental.services.car_service import CarService
from car_rental.services.cleanup_service import CleanupService
from car_rental.services.expiration_service import ExpirationService
from car_rental.services.notification_service import NotificationService
from car_rental.services.payment_gateway import build_payment_gateway
from car_rental.services.payment_service import PaymentService
from car_rental.services.rate_limiter import RateLimiter
from car_rental.services.trip_service import TripTransactionManager

REGION = os.environ.get("AWS_REGION_NAME", "ap-south-1")


def build_notification_service() -> Optional[NotificationService]:
    sender = os.environ.get("SENDER_EMAIL")
    if not sender:
        return None
    return NotificationService(
        sender=sender,
        frontend_url=os.environ.get("FRONTEND_URL", "http://localhost:3000"),
        region=REGION,
    )


def build_payment_service(table) -> PaymentService:
    return PaymentService(
        booking_repo=BookingRepository(table),
        payment_repo=PaymentRepository(table),
        gateway=build_payment_gateway(),
    )


def build_availability_service(table) -> AvailabilityService:
    return AvailabilityService(BookingRepository(table), CarRepository(table))


def build_booking_service(table) -> BookingService:
    return BookingService(
        booking_repo=BookingRepository(table),
        car_repo=CarRepository(table),
        document_repo=DocumentRepository(table),
        lock_repo=LockRepository(table),
        availability_service=build_availability_service(table),
        payment_service=build_payment_service(table),
        rate_limiter=RateLimiter(RateLimitRepository(table)),
        notification_service=build_notification_service(),
    )


def build_car_service(table) -> CarService:
    return CarService(CarRepository(table), build_availability_service(table))


def build_trip_manager(table) -> TripTransactionManager:
    return TripTransactionManager(
        booking_repo=BookingRepository(table),
        payment_repo=PaymentRepository(table),
        document_repo=DocumentRepository(table),
    )


def build_expiration_service(table) -> ExpirationService:
    return ExpirationService(
        booking_repo=BookingRepository(table),
        payment_repo=PaymentRepository(table),
        lock_repo=LockRepository(table),
        notification_service=build_notification_service(),
    )


def build_cleanup_service(table) -> CleanupService:
    return CleanupService(BookingRepository(table), build_payment_service(table))
