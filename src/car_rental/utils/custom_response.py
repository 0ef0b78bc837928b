from pydantic import BaseModel, ValidationError
from typing import Any, Generic, Optional, TypeVar

from car_rental.utils.custom_exceptions import AppError, ErrorCode

T = TypeVar("T")


class APIResponse(BaseModel, Generic[T]):
    status_code: int
    message: str
    code: Optional[str] = None
    data: Optional[T] = None


def send_custom_response(
    status_code: int, message: str, data: Optional[Any] = None, code: Optional[str] = None
):
    return {
        "statusCode": status_code,
        "headers": {
            "Content-Type": "application/json",
        },
        "body": APIResponse[Any](
            status_code=status_code, message=message, code=code, data=data
        ).model_dump_json(),
    }


def send_error_response(err: AppError):
    data = None
    conflicts = getattr(err, "conflicts", None)
    if conflicts:
        data = {"conflicting_bookings": [booking_summary(b) for b in conflicts]}
    return send_custom_response(err.status_code, err.message, data, err.code.value)


def send_validation_error(err: ValidationError):
    formatted = "; ".join(f"{e['msg']}" for e in err.errors())
    return send_custom_response(400, formatted, code=ErrorCode.BAD_USER_INPUT.value)


def booking_summary(booking) -> dict:
    return {
        "booking_id": booking.booking_id,
        "car_id": booking.car_id,
        "status": booking.status.value,
        "start_date": booking.start_date.isoformat(),
        "end_date": booking.end_date.isoformat(),
        "pickup_time": booking.pickup_time,
        "return_time": booking.return_time,
        "total_price": booking.total_price,
    }


def booking_details(booking) -> dict:
    details = booking_summary(booking)
    details.update(
        {
            "booking_type": booking.booking_type.value,
            "user_id": booking.user_id,
            "is_walk_in": booking.is_walk_in,
            "guest_name": booking.guest.name if booking.guest else None,
            "guest_phone": booking.guest.phone if booking.guest else None,
            "base_price": booking.base_price,
            "tax_amount": booking.tax_amount,
            "deposit_amount": booking.deposit_amount,
            "damage_fee": booking.damage_fee,
            "extra_km_fee": booking.extra_km_fee,
            "start_odometer": booking.start_odometer,
            "end_odometer": booking.end_odometer,
            "created_at": booking.created_at.isoformat(),
            "updated_at": booking.updated_at.isoformat(),
        }
    )
    return details


def car_details(car) -> dict:
    return {
        "car_id": car.car_id,
        "display_name": car.display_name,
        "plate_number": car.plate_number,
        "status": car.status.value,
        "price_per_day": car.price_per_day,
        "deposit_amount": car.deposit_amount,
    }
