import logging
from datetime import datetime
from typing import List

from car_rental.models.cars import Car, CarStatus
from car_rental.models.users import Actor
from car_rental.repository.car_repo import CarRepository
from car_rental.services.availability_service import AvailabilityService
from car_rental.utils.custom_exceptions import Forbidden

logger = logging.getLogger(__name__)


class CarService:
    def __init__(self, car_repo: CarRepository, availability_service: AvailabilityService):
        self.car_repo = car_repo
        self.availability_service = availability_service

    @staticmethod
    def _require_admin(actor: Actor):
        if not actor.is_admin:
            raise Forbidden("Only staff can change a car's status")

    def finish_maintenance(self, car_id: str, actor: Actor):
        self._require_admin(actor)
        self.car_repo.update_car_status(car_id, CarStatus.AVAILABLE, expected=CarStatus.MAINTENANCE)
        logger.info(f"Car {car_id} back from maintenance")

    def set_out_of_service(self, car_id: str, actor: Actor):
        self._require_admin(actor)
        self.car_repo.update_car_status(car_id, CarStatus.OUT_OF_SERVICE)
        logger.info(f"Car {car_id} taken out of service")

    def return_to_service(self, car_id: str, actor: Actor):
        self._require_admin(actor)
        self.car_repo.update_car_status(
            car_id, CarStatus.AVAILABLE, expected=CarStatus.OUT_OF_SERVICE
        )
        logger.info(f"Car {car_id} returned to service")

    def get_available_cars(self, start: datetime, end: datetime) -> List[Car]:
        return self.availability_service.get_available_cars(start, end)
