from enum import Enum
from dataclasses import dataclass
from typing import Optional


class UserRole(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


@dataclass(frozen=True)
class Actor:
    user_id: str
    role: UserRole = UserRole.USER
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
