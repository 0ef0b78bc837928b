import logging
import os

from car_rental.services.schedule_service import SchedulerService

logger = logging.getLogger()
logger.setLevel(logging.INFO)

EXPIRATION_LAMBDA_ARN = os.environ.get("EXPIRATION_LAMBDA_ARN")
CLEANUP_LAMBDA_ARN = os.environ.get("CLEANUP_LAMBDA_ARN")
SCHEDULER_ROLE_ARN = os.environ.get("SCHEDULER_ROLE_ARN")
REGION = os.environ.get("AWS_REGION_NAME", "ap-south-1")


def register_schedules(event, context):
    """Run once per deployment to create or refresh the recurring jobs."""
    if not EXPIRATION_LAMBDA_ARN or not CLEANUP_LAMBDA_ARN or not SCHEDULER_ROLE_ARN:
        raise KeyError("EXPIRATION_LAMBDA_ARN, CLEANUP_LAMBDA_ARN and SCHEDULER_ROLE_ARN are required")

    scheduler_service = SchedulerService(SCHEDULER_ROLE_ARN, region=REGION)
    scheduler_service.schedule_expiration_sweep(EXPIRATION_LAMBDA_ARN)
    scheduler_service.schedule_retention_job(CLEANUP_LAMBDA_ARN)
    return {"scheduled": ["expiration", "cleanup"]}
