import logging
import os
from boto3 import resource

from car_rental.models.verification import DocumentStatus
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


def document_status_changed(event, context):
    """EventBridge event from the document review service.

    detail carries user_id, status and optionally booking_id.
    """
    detail = event.get("detail") or event
    user_id = detail.get("user_id")
    status = detail.get("status")
    if not user_id or not status:
        raise KeyError("Missing user_id or status in document event")

    try:
        changed = booking_service.handle_document_decision(
            user_id, DocumentStatus(status), detail.get("booking_id")
        )
    except AppError as err:
        logger.warning(f"Document event for user {user_id} not applied: {err.message}")
        return {"updated": []}

    logger.info(f"Document {status} for user {user_id} updated {len(changed)} bookings")
    return {"updated": [b.booking_id for b in changed]}


def record_document_attempt(event, context):
    try:
        actor = get_actor(event)
        booking = booking_service.record_document_attempt(path_param(event, "booking_id"), actor)
        return send_custom_response(200, "Document submission recorded", booking_details(booking))

    except AppError as err:
        return send_error_response(err)

    except Exception:
        logger.exception("Unhandled error recording document submission")
        return send_custom_response(500, "Internal server error", code=ErrorCode.INTERNAL_SERVER_ERROR.value)
