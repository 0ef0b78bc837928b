import json
import logging
import os
from boto3 import resource

from car_rental.services.factory import build_booking_service
from car_rental.utils.custom_exceptions import AppError, BadUserInput, ErrorCode
from car_rental.utils.custom_response import (
    booking_details,
    send_custom_response,
    send_error_response,
)
from car_rental.utils.request_context import query_param

logger = logging.getLogger()
logger.setLevel(logging.INFO)

TABLE_NAME = os.environ.get("TABLE_NAME")
REGION = os.environ.get("AWS_REGION_NAME", "ap-south-1")

dynamodb = resource("dynamodb", region_name=REGION)
table = dynamodb.Table(TABLE_NAME)

booking_service = build_booking_service(table)


def _token(event) -> str:
    token = query_param(event, "token", required=False)
    if not token and event.get("body"):
        token = json.loads(event["body"]).get("token")
    if not token:
        raise BadUserInput("token is required")
    return token


def verify_booking(event, context):
    try:
        booking = booking_service.verify_by_token(_token(event))
        return send_custom_response(200, "Booking verified", booking_details(booking))

    except AppError as err:
        return send_error_response(err)

    except ValueError:
        return send_custom_response(400, "Invalid request body", code=ErrorCode.BAD_USER_INPUT.value)

    except Exception:
        logger.exception("Unhandled error verifying booking")
        return send_custom_response(500, "Internal server error", code=ErrorCode.INTERNAL_SERVER_ERROR.value)


def get_booking_by_token(event, context):
    try:
        booking = booking_service.get_booking_by_token(_token(event))
        return send_custom_response(200, "Booking fetched successfully", booking_details(booking))

    except AppError as err:
        return send_error_response(err)

    except Exception:
        logger.exception("Unhandled error fetching booking by token")
        return send_custom_response(500, "Internal server error", code=ErrorCode.INTERNAL_SERVER_ERROR.value)
