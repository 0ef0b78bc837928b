import logging
import os
from boto3 import resource
from pydantic import ValidationError

from car_rental.schemas.bookings import AvailabilityQuery
from car_rental.services.factory import build_car_service
from car_rental.utils.custom_exceptions import AppError, ErrorCode
from car_rental.utils.custom_response import (
    car_details,
    send_custom_response,
    send_error_response,
    send_validation_error,
)
from car_rental.utils.datetime_normaliser import parse_window_bound
from car_rental.utils.request_context import query_param

logger = logging.getLogger()
logger.setLevel(logging.INFO)

TABLE_NAME = os.environ.get("TABLE_NAME")
REGION = os.environ.get("AWS_REGION_NAME", "ap-south-1")

dynamodb = resource("dynamodb", region_name=REGION)
table = dynamodb.Table(TABLE_NAME)

car_service = build_car_service(table)


def get_available_cars(event, context):
    try:
        query = AvailabilityQuery(
            start_date=parse_window_bound(query_param(event, "start_date")),
            end_date=parse_window_bound(query_param(event, "end_date")),
        )
        cars = car_service.get_available_cars(query.start_date, query.end_date)
        return send_custom_response(
            200, "Available cars fetched successfully", [car_details(c) for c in cars]
        )

    except ValidationError as err:
        return send_validation_error(err)

    except AppError as err:
        return send_error_response(err)

    except ValueError:
        return send_custom_response(400, "Dates must be ISO 8601", code=ErrorCode.BAD_USER_INPUT.value)

    except Exception:
        logger.exception("Unhandled error listing available cars")
        return send_custom_response(500, "Internal server error", code=ErrorCode.INTERNAL_SERVER_ERROR.value)
