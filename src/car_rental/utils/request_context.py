from typing import Optional, Type, TypeVar

from pydantic import BaseModel

from car_rental.models.users import Actor, UserRole
from car_rental.utils.custom_exceptions import BadUserInput, Unauthenticated

M = TypeVar("M", bound=BaseModel)


def get_actor(event) -> Actor:
    """Caller identity placed in the request context by the JWT authorizer."""
    authorizer = (event.get("requestContext") or {}).get("authorizer") or {}
    user_id = authorizer.get("user_id")
    if not user_id:
        raise Unauthenticated("Unauthorized")
    try:
        role = UserRole(str(authorizer.get("role", UserRole.USER.value)).upper())
    except ValueError:
        role = UserRole.USER
    return Actor(user_id=user_id, role=role, email=authorizer.get("email") or None)


def path_param(event, name: str) -> str:
    value = (event.get("pathParameters") or {}).get(name)
    if not value:
        raise BadUserInput(f"{name} is required")
    return value


def query_param(event, name: str, required: bool = True) -> Optional[str]:
    value = (event.get("queryStringParameters") or {}).get(name)
    if required and not value:
        raise BadUserInput(f"{name} query parameter is required")
    return value


def parse_body(event, model: Type[M]) -> M:
    if not event.get("body"):
        raise BadUserInput("Request body is required")
    return model.model_validate_json(event["body"])
