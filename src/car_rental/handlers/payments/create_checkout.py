import logging
import os
from boto3 import resource

from car_rental.services.factory import build_payment_service
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

payment_service = build_payment_service(table)


def create_checkout(event, context):
    try:
        actor = get_actor(event)
        booking_id = path_param(event, "booking_id")
        session = payment_service.create_checkout(booking_id, actor)
        return send_custom_response(
            200,
            "Checkout session created",
            {"redirect_url": session.redirect_url, "session_id": session.session_id},
        )

    except AppError as err:
        return send_error_response(err)

    except Exception:
        logger.exception("Unhandled error creating checkout")
        return send_custom_response(500, "Internal server error", code=ErrorCode.INTERNAL_SERVER_ERROR.value)


def record_manual_payment(event, context):
    try:
        actor = get_actor(event)
        booking_id = path_param(event, "booking_id")
        booking = payment_service.record_manual_payment(booking_id, actor)
        return send_custom_response(200, "Payment recorded", booking_details(booking))

    except AppError as err:
        return send_error_response(err)

    except Exception:
        logger.exception("Unhandled error recording manual payment")
        return send_custom_response(500, "Internal server error", code=ErrorCode.INTERNAL_SERVER_ERROR.value)
