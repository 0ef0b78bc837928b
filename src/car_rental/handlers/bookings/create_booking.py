import logging
import os
from boto3 import resource
from pydantic import ValidationError

from car_rental.services.factory import build_booking_service
from car_rental.schemas.bookings import BookingRequest
from car_rental.utils.custom_exceptions import AppError, ErrorCode
from car_rental.utils.custom_response import (
    booking_details,
    send_custom_response,
    send_error_response,
    send_validation_error,
)
from car_rental.utils.request_context import get_actor, parse_body

logger = logging.getLogger()
logger.setLevel(logging.INFO)

TABLE_NAME = os.environ.get("TABLE_NAME")
REGION = os.environ.get("AWS_REGION_NAME", "ap-south-1")

dynamodb = resource("dynamodb", region_name=REGION)
table = dynamodb.Table(TABLE_NAME)

booking_service = build_booking_service(table)


def create_booking(event, context):
    try:
        actor = get_actor(event)
        request_body = parse_body(event, BookingRequest)
        booking = booking_service.create_booking(request_body, actor)
        return send_custom_response(201, "Booking created successfully", booking_details(booking))

    except ValidationError as err:
        return send_validation_error(err)

    except AppError as err:
        return send_error_response(err)

    except Exception:
        logger.exception("Unhandled error creating booking")
        return send_custom_response(500, "Internal server error", code=ErrorCode.INTERNAL_SERVER_ERROR.value)
