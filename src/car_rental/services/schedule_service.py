import boto3
import json
import logging

from car_rental.utils.constants import SWEEP_INTERVAL_MINUTES

logger = logging.getLogger(__name__)

EXPIRATION_SCHEDULE_NAME = "booking-expiration-sweep"
RETENTION_SCHEDULE_NAME = "booking-retention-cleanup"


class SchedulerService:
    """Registers the recurring EventBridge Scheduler jobs that drive the sweeps."""

    def __init__(self, role_arn: str, region="ap-south-1", client=None):
        self.client = client if client else boto3.client("scheduler", region_name=region)
        self.role_arn = role_arn

    def schedule_recurring(self, name: str, target_arn: str, expression: str, payload: dict) -> bool:
        schedule_params = {
            "Name": name,
            "ScheduleExpression": expression,
            "ScheduleExpressionTimezone": "UTC",
            "FlexibleTimeWindow": {"Mode": "OFF"},
            "Target": {
                "Arn": target_arn,
                "RoleArn": self.role_arn,
                "Input": json.dumps(payload),
            },
            "State": "ENABLED",
        }

        try:
            self.client.create_schedule(**schedule_params, ClientToken=name)
            logger.info(f"Created schedule {name} with {expression}")
            return True

        except self.client.exceptions.ConflictException:
            logger.info(f"Schedule {name} exists. Updating it.")
            self.client.update_schedule(**schedule_params)
            return True

        except Exception:
            logger.exception(f"Failed to schedule {name}")
            raise

    def schedule_expiration_sweep(self, lambda_arn: str) -> bool:
        unit = "minute" if SWEEP_INTERVAL_MINUTES == 1 else "minutes"
        return self.schedule_recurring(
            EXPIRATION_SCHEDULE_NAME,
            lambda_arn,
            f"rate({SWEEP_INTERVAL_MINUTES} {unit})",
            {"source": "scheduler", "job": "expiration"},
        )

    def schedule_retention_job(self, lambda_arn: str) -> bool:
        return self.schedule_recurring(
            RETENTION_SCHEDULE_NAME,
            lambda_arn,
            "rate(1 day)",
            {"source": "scheduler", "job": "cleanup"},
        )
