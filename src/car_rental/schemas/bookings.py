import re
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from car_rental.models.bookings import BookingType
from car_rental.utils.constants import MAX_RENTAL_DAYS, MAX_RENTAL_DURATION, MIN_RENTAL_DURATION

TIME_OF_DAY_REGEX = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def _to_utc(value: datetime, name: str) -> datetime:
    if value.tzinfo is None:
        raise ValueError(f"{name} must include timezone info")
    return value.astimezone(timezone.utc)


def _check_time_of_day(value: Optional[str]) -> Optional[str]:
    if value is not None and not TIME_OF_DAY_REGEX.fullmatch(value):
        raise ValueError("times must use the HH:MM 24-hour format")
    return value


def _check_window(start: datetime, end: datetime):
    if end <= start:
        raise ValueError("End date must be after start date")
    if end - start < MIN_RENTAL_DURATION:
        hours = int(MIN_RENTAL_DURATION.total_seconds() // 3600)
        raise ValueError(f"Minimum duration is {hours} hours")
    if end - start > MAX_RENTAL_DURATION:
        raise ValueError(f"Maximum rental is {MAX_RENTAL_DAYS} days")


class GuestDetails(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    phone: str = Field(min_length=6, max_length=20)
    email: Optional[EmailStr] = None


class BookingRequest(BaseModel):
    car_id: str = Field(min_length=1)
    start_date: datetime
    end_date: datetime
    pickup_time: Optional[str] = None
    return_time: Optional[str] = None
    booking_type: BookingType = BookingType.STANDARD
    guest: Optional[GuestDetails] = None
    damage_fee: float = Field(default=0.0, ge=0)
    extra_km_fee: float = Field(default=0.0, ge=0)

    @field_validator("pickup_time", "return_time")
    @classmethod
    def check_times(cls, v: Optional[str]):
        return _check_time_of_day(v)

    @model_validator(mode="after")
    def validate_and_normalize(self):
        self.start_date = _to_utc(self.start_date, "start_date")
        self.end_date = _to_utc(self.end_date, "end_date")
        _check_window(self.start_date, self.end_date)
        return self


class UpdateBookingRequest(BaseModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    pickup_time: Optional[str] = None
    return_time: Optional[str] = None
    damage_fee: Optional[float] = Field(default=None, ge=0)
    extra_km_fee: Optional[float] = Field(default=None, ge=0)

    @field_validator("pickup_time", "return_time")
    @classmethod
    def check_times(cls, v: Optional[str]):
        return _check_time_of_day(v)

    @model_validator(mode="after")
    def validate_and_normalize(self):
        if self.start_date is not None:
            self.start_date = _to_utc(self.start_date, "start_date")
        if self.end_date is not None:
            self.end_date = _to_utc(self.end_date, "end_date")
        if self.start_date is not None and self.end_date is not None:
            if self.end_date <= self.start_date:
                raise ValueError("End date must be after start date")
        return self


class StartTripRequest(BaseModel):
    start_odometer: int = Field(ge=0)


class CompleteTripRequest(BaseModel):
    end_odometer: int = Field(ge=0)
    damage_fee: Optional[float] = Field(default=None, ge=0)
    extra_km_fee: Optional[float] = Field(default=None, ge=0)


class AvailabilityQuery(BaseModel):
    start_date: datetime
    end_date: datetime

    @model_validator(mode="after")
    def validate_window(self):
        self.start_date = _to_utc(self.start_date, "start_date")
        self.end_date = _to_utc(self.end_date, "end_date")
        if self.end_date <= self.start_date:
            raise ValueError("End date must be after start date")
        return self
