from botocore.exceptions import ClientError
import logging
from datetime import datetime, timedelta

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from types_boto3_dynamodb.service_resource import Table
else:
    Table = object


logger = logging.getLogger(__name__)


class LockRepository:
    """Lease-based advisory locks stored as single items.

    A lock whose lease has run out can be taken over, so a crashed holder
    never blocks the name for longer than one lease.
    """

    def __init__(self, table: Table):
        self.table = table

    @staticmethod
    def _key(name: str) -> dict:
        return {"pk": f"LOCK#{name}", "sk": "LOCK"}

    def acquire(self, name: str, owner: str, now: datetime, lease: timedelta) -> bool:
        expires_at = int((now + lease).timestamp())
        try:
            self.table.put_item(
                Item={
                    **self._key(name),
                    "owner": owner,
                    "expires_at": expires_at,
                    "ttl_attribute": expires_at,
                },
                ConditionExpression="attribute_not_exists(pk) OR expires_at < :now",
                ExpressionAttributeValues={":now": int(now.timestamp())},
            )
        except ClientError as err:
            if (
                err.response.get("Error", {}).get("Code")
                == "ConditionalCheckFailedException"
            ):
                return False
            logger.error(f"Error acquiring lock {name}: {err}")
            raise
        return True

    def release(self, name: str, owner: str):
        try:
            self.table.delete_item(
                Key=self._key(name),
                ConditionExpression="#owner = :owner",
                ExpressionAttributeNames={"#owner": "owner"},
                ExpressionAttributeValues={":owner": owner},
            )
        except ClientError as err:
            if (
                err.response.get("Error", {}).get("Code")
                == "ConditionalCheckFailedException"
            ):
                logger.warning(f"Lock {name} was already taken over before release")
                return
            logger.error(f"Error releasing lock {name}: {err}")
            raise
