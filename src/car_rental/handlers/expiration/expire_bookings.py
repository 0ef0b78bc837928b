import logging
import os
from boto3 import resource

from car_rental.services.factory import build_expiration_service
from car_rental.utils.custom_exceptions import AppError, ErrorCode, Forbidden
from car_rental.utils.custom_response import send_custom_response, send_error_response
from car_rental.utils.request_context import get_actor

logger = logging.getLogger()
logger.setLevel(logging.INFO)

TABLE_NAME = os.environ.get("TABLE_NAME")
REGION = os.environ.get("AWS_REGION_NAME", "ap-south-1")

dynamodb = resource("dynamodb", region_name=REGION)
table = dynamodb.Table(TABLE_NAME)

expiration_service = build_expiration_service(table)


def expire_bookings(event, context):
    """Scheduled every minute by EventBridge Scheduler."""
    report = expiration_service.run_sweeps()
    return report.as_dict()


def trigger_expiration_check(event, context):
    try:
        if not get_actor(event).is_admin:
            raise Forbidden("Only staff can trigger the expiration check")
        report = expiration_service.trigger_expiration_check()
        return send_custom_response(200, "Expiration check finished", report.as_dict())

    except AppError as err:
        return send_error_response(err)

    except Exception:
        logger.exception("Unhandled error running expiration check")
        return send_custom_response(500, "Internal server error", code=ErrorCode.INTERNAL_SERVER_ERROR.value)


def get_expiration_stats(event, context):
    try:
        if not get_actor(event).is_admin:
            raise Forbidden("Only staff can view expiration stats")
        return send_custom_response(
            200, "Expiration stats fetched", expiration_service.get_expiration_stats()
        )

    except AppError as err:
        return send_error_response(err)

    except Exception:
        logger.exception("Unhandled error fetching expiration stats")
        return send_custom_response(500, "Internal server error", code=ErrorCode.INTERNAL_SERVER_ERROR.value)
