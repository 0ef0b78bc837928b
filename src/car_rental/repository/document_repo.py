from botocore.exceptions import ClientError
import logging
from car_rental.models.verification import DocumentStatus

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from types_boto3_dynamodb.service_resource import Table
else:
    Table = object


logger = logging.getLogger(__name__)


class DocumentRepository:
    """Read side of the identity/licence review, written by the document service."""

    def __init__(self, table: Table):
        self.table = table

    def get_status(self, user_id: str) -> DocumentStatus:
        try:
            response = self.table.get_item(Key={"pk": f"USER#{user_id}", "sk": "DOCUMENTS"})
        except ClientError as err:
            logger.error(f"Error retrieving documents of user {user_id}: {err}")
            raise

        item = response.get("Item")
        if not item:
            return DocumentStatus.NOT_UPLOADED
        return DocumentStatus(item["document_status"])
