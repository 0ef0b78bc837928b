from botocore.exceptions import ClientError
import logging
from datetime import datetime

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from types_boto3_dynamodb.service_resource import Table
else:
    Table = object


logger = logging.getLogger(__name__)


class RateLimitRepository:
    def __init__(self, table: Table):
        self.table = table

    def increment(self, scope: str, key: str, window_start: datetime, expires_at: datetime) -> int:
        """Atomically count one attempt in the fixed window and return the total."""
        try:
            response = self.table.update_item(
                Key={
                    "pk": f"RATE#{scope}#{key}",
                    "sk": f"WINDOW#{int(window_start.timestamp())}",
                },
                UpdateExpression="ADD attempts :one SET ttl_attribute = :ttl",
                ExpressionAttributeValues={
                    ":one": 1,
                    ":ttl": int(expires_at.timestamp()),
                },
                ReturnValues="UPDATED_NEW",
            )
        except ClientError as err:
            logger.error(f"Error counting {scope} attempt: {err}")
            raise
        return int(response["Attributes"]["attempts"])
