"""
Calling principal

Tokens are verified upstream; the gateway forwards the verified user id and
role as headers. Handlers receive a `Principal` and pass it on by value.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from fastapi import Header

from errors import NotAuthenticated, NotAuthorized


class Role(str, Enum):
    CONSUMER = "Consumer"
    FARMER = "Farmer"
    ADMIN = "Admin"


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: Role


def get_principal(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Principal:
    if not x_user_id or not x_user_role:
        raise NotAuthenticated()
    try:
        role = Role(x_user_role)
    except ValueError:
        raise NotAuthorized(x_user_role)
    return Principal(user_id=x_user_id, role=role)


def require_role(*roles: Role) -> Callable[..., Principal]:
    def dependency(x_user_id: Optional[str] = Header(None), x_user_role: Optional[str] = Header(None)) -> Principal:
        principal = get_principal(x_user_id, x_user_role)
        if principal.role not in roles:
            raise NotAuthorized(principal.role.value)
        return principal

    return dependency
