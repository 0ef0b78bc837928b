from enum import Enum
from typing import List, Optional


class ErrorCode(str, Enum):
    BAD_USER_INPUT = "BAD_USER_INPUT"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    REFUND_FAILED = "REFUND_FAILED"


class AppError(Exception):
    code = ErrorCode.INTERNAL_SERVER_ERROR
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self):
        return self.message


class BadUserInput(AppError):
    code = ErrorCode.BAD_USER_INPUT
    status_code = 400


class Unauthenticated(AppError):
    code = ErrorCode.UNAUTHENTICATED
    status_code = 401


class Forbidden(AppError):
    code = ErrorCode.FORBIDDEN
    status_code = 403


class NotFoundException(AppError):
    code = ErrorCode.NOT_FOUND
    status_code = 404

    def __init__(self, resource: str, identifier: str):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} '{identifier}' not found")


class AlreadyExists(AppError):
    code = ErrorCode.ALREADY_EXISTS
    status_code = 409

    def __init__(self, message: str, conflicts: Optional[List] = None):
        super().__init__(message)
        self.conflicts = conflicts or []


class InternalError(AppError):
    pass


class RateLimited(AppError):
    code = ErrorCode.RATE_LIMIT_EXCEEDED
    status_code = 429


class RefundFailed(AppError):
    """The refund was refused, so the booking was left as it was."""

    code = ErrorCode.REFUND_FAILED
    status_code = 502

    def __init__(self, booking_id: str, reason: str):
        self.booking_id = booking_id
        self.reason = reason
        super().__init__(f"Refund for booking '{booking_id}' failed; booking not cancelled")
