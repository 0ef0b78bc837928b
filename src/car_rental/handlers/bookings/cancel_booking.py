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
from car_rental.utils.request_context import get_actor, path_param

logger = logging.getLogger()
logger.setLevel(logging.INFO)

TABLE_NAME = os.environ.get("TABLE_NAME")
REGION = os.environ.get("AWS_REGION_NAME", "ap-south-1")

dynamodb = resource("dynamodb", region_name=REGION)
table = dynamodb.Table(TABLE_NAME)

booking_service = build_booking_service(table)


def cancel_booking(event, context):
    try:
        actor = get_actor(event)
        booking_id = path_param(event, "booking_id")
        outcome = booking_service.cancel_booking(booking_id, actor)
        data = booking_details(outcome.booking)
        data["refunded"] = outcome.refunded
        data["refund_pending"] = outcome.refund_pending
        message = "Booking cancelled"
        if outcome.refund_pending:
            message = "Booking cancelled, refund will be retried"
        return send_custom_response(200, message, data)

    except AppError as err:
        return send_error_response(err)

    except Exception:
        logger.exception("Unhandled error cancelling booking")
        return send_custom_response(500, "Internal server error", code=ErrorCode.INTERNAL_SERVER_ERROR.value)
