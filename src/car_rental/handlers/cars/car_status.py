import logging
import os
from boto3 import resource

from car_rental.services.factory import build_car_service
from car_rental.utils.custom_exceptions import AppError, ErrorCode
from car_rental.utils.custom_response import send_custom_response, send_error_response
from car_rental.utils.request_context import get_actor, path_param

logger = logging.getLogger()
logger.setLevel(logging.INFO)

TABLE_NAME = os.environ.get("TABLE_NAME")
REGION = os.environ.get("AWS_REGION_NAME", "ap-south-1")

dynamodb = resource("dynamodb", region_name=REGION)
table = dynamodb.Table(TABLE_NAME)

car_service = build_car_service(table)


def _change_status(event, action, message: str):
    try:
        actor = get_actor(event)
        car_id = path_param(event, "car_id")
        action(car_id, actor)
        return send_custom_response(200, message, {"car_id": car_id})

    except AppError as err:
        return send_error_response(err)

    except Exception:
        logger.exception(f"Unhandled error: {message}")
        return send_custom_response(500, "Internal server error", code=ErrorCode.INTERNAL_SERVER_ERROR.value)


def finish_maintenance(event, context):
    return _change_status(event, car_service.finish_maintenance, "Car maintenance finished")


def set_out_of_service(event, context):
    return _change_status(event, car_service.set_out_of_service, "Car taken out of service")


def return_to_service(event, context):
    return _change_status(event, car_service.return_to_service, "Car returned to service")
