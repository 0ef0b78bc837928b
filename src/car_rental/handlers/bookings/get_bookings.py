import logging
import os
from boto3 import resource

from car_rental.services.factory import build_booking_service
from car_rental.utils.custom_exceptions import AppError, ErrorCode
from car_rental.utils.custom_response import (
    booking_details,
    send_custom_response,
    send_error_response,
)
from car_rental.utils.request_context import get_actor, path_param, query_param

logger = logging.getLogger()
logger.setLevel(logging.INFO)

TABLE_NAME = os.environ.get("TABLE_NAME")
REGION = os.environ.get("AWS_REGION_NAME", "ap-south-1")

dynamodb = resource("dynamodb", region_name=REGION)
table = dynamodb.Table(TABLE_NAME)

booking_service = build_booking_service(table)


def get_booking(event, context):
    try:
        actor = get_actor(event)
        booking = booking_service.get_booking(path_param(event, "booking_id"), actor)
        return send_custom_response(200, "Booking fetched successfully", booking_details(booking))

    except AppError as err:
        return send_error_response(err)

    except Exception:
        logger.exception("Unhandled error fetching booking")
        return send_custom_response(500, "Internal server error", code=ErrorCode.INTERNAL_SERVER_ERROR.value)


def get_user_bookings(event, context):
    try:
        actor = get_actor(event)
        user_id = query_param(event, "user_id", required=False)
        bookings = booking_service.get_user_bookings(actor, user_id)
        return send_custom_response(
            200,
            "Bookings fetched successfully",
            [booking_details(b) for b in bookings],
        )

    except AppError as err:
        return send_error_response(err)

    except Exception:
        logger.exception("Unhandled error fetching user bookings")
        return send_custom_response(500, "Internal server error", code=ErrorCode.INTERNAL_SERVER_ERROR.value)


def get_car_bookings(event, context):
    try:
        actor = get_actor(event)
        bookings = booking_service.get_car_bookings(path_param(event, "car_id"), actor)
        return send_custom_response(
            200,
            "Bookings fetched successfully",
            [booking_details(b) for b in bookings],
        )

    except AppError as err:
        return send_error_response(err)

    except Exception:
        logger.exception("Unhandled error fetching car bookings")
        return send_custom_response(500, "Internal server error", code=ErrorCode.INTERNAL_SERVER_ERROR.value)
