import base64
import logging
import os
from boto3 import resource

from car_rental.services.factory import build_payment_service
from car_rental.utils.custom_exceptions import AppError, BadUserInput, ErrorCode
from car_rental.utils.custom_response import send_custom_response, send_error_response

logger = logging.getLogger()
logger.setLevel(logging.INFO)

TABLE_NAME = os.environ.get("TABLE_NAME")
REGION = os.environ.get("AWS_REGION_NAME", "ap-south-1")

dynamodb = resource("dynamodb", region_name=REGION)
table = dynamodb.Table(TABLE_NAME)

payment_service = build_payment_service(table)


def _raw_body(event) -> str:
    body = event.get("body") or ""
    if event.get("isBase64Encoded"):
        body = base64.b64decode(body).decode("utf-8")
    return body


def payment_webhook(event, context):
    headers = {k.lower(): v for k, v in (event.get("headers") or {}).items()}
    try:
        payment_event = payment_service.handle_webhook(
            _raw_body(event), headers.get("stripe-signature")
        )

    except BadUserInput as err:
        # Bad signatures and payloads are the only errors worth a retry from the gateway.
        return send_error_response(err)

    except AppError as err:
        logger.warning(f"Payment webhook not applied: {err.message}")
        return send_custom_response(200, "Event ignored", code=err.code.value)

    except Exception:
        logger.exception("Unhandled error processing payment webhook")
        return send_custom_response(500, "Internal server error", code=ErrorCode.INTERNAL_SERVER_ERROR.value)

    if payment_event is None:
        return send_custom_response(200, "Event ignored")
    return send_custom_response(
        200,
        "Event processed",
        {"booking_id": payment_event.booking_id, "kind": payment_event.kind.value},
    )
