import logging
import os
from boto3 import resource

from car_rental.services.factory import build_cleanup_service

logger = logging.getLogger()
logger.setLevel(logging.INFO)

TABLE_NAME = os.environ.get("TABLE_NAME")
REGION = os.environ.get("AWS_REGION_NAME", "ap-south-1")

dynamodb = resource("dynamodb", region_name=REGION)
table = dynamodb.Table(TABLE_NAME)

cleanup_service = build_cleanup_service(table)


def cleanup(event, context):
    """Scheduled daily: purge old completed bookings and retry pending refunds."""
    result = cleanup_service.run()
    logger.info(f"Cleanup finished: {result}")
    return result
