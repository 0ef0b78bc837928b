from botocore.exceptions import ClientError
import logging
from typing import List, Optional
from boto3.dynamodb.conditions import Key
from car_rental.models.cars import Car, CarStatus
from car_rental.utils.custom_exceptions import BadUserInput, NotFoundException
from decimal import Decimal

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from types_boto3_dynamodb.service_resource import Table
    from types_boto3_dynamodb import DynamoDBClient
else:
    Table = object
    DynamoDBClient = object


logger = logging.getLogger(__name__)

BATCH_GET_LIMIT = 100


class CarRepository:
    def __init__(self, table: Table, client: DynamoDBClient = None):
        self.table = table
        self.client = client if client else table.meta.client

    def add_car(self, car: Car):
        car_item = {
            "pk": f"CAR#{car.car_id}",
            "sk": "DETAILS",
            "car_status": car.status.value,
            "price_per_day": Decimal(str(car.price_per_day)),
            "deposit_amount": Decimal(str(car.deposit_amount)),
        }
        if car.plate_number:
            car_item["plate_number"] = car.plate_number
        if car.display_name:
            car_item["display_name"] = car.display_name
        fleet_item = {
            "pk": "FLEET",
            "sk": f"CAR#{car.car_id}",
        }
        try:
            self.client.transact_write_items(
                TransactItems=[
                    {
                        "Put": {
                            "TableName": self.table.name,
                            "Item": car_item,
                            "ConditionExpression": "attribute_not_exists(pk)",
                        }
                    },
                    {
                        "Put": {
                            "TableName": self.table.name,
                            "Item": fleet_item,
                        }
                    },
                ]
            )
        except ClientError as err:
            logger.error(f"Error creating car {car.car_id}: {err}")
            raise

    @staticmethod
    def _to_domain(item: dict) -> Car:
        return Car(
            car_id=item["pk"].split("CAR#", 1)[1],
            price_per_day=float(item["price_per_day"]),
            deposit_amount=float(item.get("deposit_amount", 0)),
            status=CarStatus(item["car_status"]),
            plate_number=item.get("plate_number"),
            display_name=item.get("display_name"),
        )

    def get_car_by_id(self, car_id: str) -> Optional[Car]:
        try:
            response = self.table.get_item(Key={"pk": f"CAR#{car_id}", "sk": "DETAILS"})
        except ClientError as err:
            logger.error(f"Error retrieving car by id {car_id}: {err}")
            raise

        item = response.get("Item")
        if not item:
            return None
        return self._to_domain(item)

    def get_fleet_car_ids(self) -> List[str]:
        car_ids = []
        kwargs = {
            "KeyConditionExpression": Key("pk").eq("FLEET") & Key("sk").begins_with("CAR#")
        }
        try:
            while True:
                resp = self.table.query(**kwargs)
                car_ids.extend(i["sk"].split("CAR#", 1)[1] for i in resp.get("Items", []))
                if "LastEvaluatedKey" not in resp:
                    break
                kwargs["ExclusiveStartKey"] = resp["LastEvaluatedKey"]
        except ClientError as err:
            logger.error(f"Error retrieving fleet: {err}")
            raise
        return car_ids

    def list_cars(self) -> List[Car]:
        car_ids = self.get_fleet_car_ids()
        cars = []
        for offset in range(0, len(car_ids), BATCH_GET_LIMIT):
            keys = [
                {"pk": f"CAR#{car_id}", "sk": "DETAILS"}
                for car_id in car_ids[offset : offset + BATCH_GET_LIMIT]
            ]
            request = {self.table.name: {"Keys": keys}}
            try:
                while request:
                    resp = self.client.batch_get_item(RequestItems=request)
                    for item in resp.get("Responses", {}).get(self.table.name, []):
                        cars.append(self._to_domain(item))
                    request = resp.get("UnprocessedKeys") or None
            except ClientError as err:
                logger.error(f"Error retrieving cars: {err}")
                raise
        return sorted(cars, key=lambda c: c.car_id)

    def update_car_status(
        self, car_id: str, status: CarStatus, expected: Optional[CarStatus] = None
    ):
        condition = "attribute_exists(pk)"
        values = {":value": status.value}
        if expected is not None:
            condition += " AND #attribute = :expected"
            values[":expected"] = expected.value
        try:
            self.table.update_item(
                Key={"pk": f"CAR#{car_id}", "sk": "DETAILS"},
                UpdateExpression="SET #attribute=:value",
                ExpressionAttributeNames={"#attribute": "car_status"},
                ExpressionAttributeValues=values,
                ConditionExpression=condition,
            )
        except ClientError as err:
            if (
                err.response.get("Error", {}).get("Code")
                == "ConditionalCheckFailedException"
            ):
                if expected is not None and self.get_car_by_id(car_id) is not None:
                    raise BadUserInput(f"Car is not in {expected.value} status")
                raise NotFoundException("car", car_id)
            logger.error(f"Error updating car {car_id} status: {err}")
            raise
