import math
from datetime import datetime


def _round2(value: float) -> float:
    return round(value, 2)


def rental_days(start: datetime, end: datetime) -> int:
    hours = (end - start).total_seconds() / 3600
    return max(1, math.ceil(hours / 24))


def calculate_rental_cost(days: int, price_per_day: float) -> float:
    if days <= 0:
        raise ValueError("Rental value must be positive")
    if not price_per_day:
        raise ValueError("Daily rental not available for this car")
    return _round2(days * price_per_day)


def calculate_tax(amount: float, tax_percentage: float) -> float:
    if amount < 0:
        raise ValueError("Amount cannot be negative")
    return _round2(amount * (tax_percentage / 100))


def calculate_total_price(base_price: float, tax_amount: float) -> float:
    if base_price < 0 or tax_amount < 0:
        raise ValueError("Prices cannot be negative")
    return _round2(base_price + tax_amount)
