"""Role-Based Access Control (RBAC) utilities.

Login and sessions live outside this service.  Privileged endpoints identify
the acting user by the ``X-User-Id`` header (or ``userId`` query parameter)
and verify it against the users table.
"""

from enum import Enum
from typing import Annotated, Optional

from fastapi import Depends, Header, Query

from app.core.errors import UnauthorizedError
from app.db.session import DbSession


class UserRole(str, Enum):
    """User roles for RBAC."""

    SUPER_ADMIN = "super_admin"
    ORDER_TAKER_CREW = "order_taker_crew"
    ORDER_TAKER = "order_taker"
    CREW = "crew"


# Role hierarchy: super_admin > order takers > crew
ROLE_HIERARCHY = {
    UserRole.SUPER_ADMIN: 3,
    UserRole.ORDER_TAKER_CREW: 2,
    UserRole.ORDER_TAKER: 2,
    UserRole.CREW: 1,
}


class ActingUser:
    """Verified identity of the user performing a privileged call.

    Attributes:
        user_id: The user's id.
        name: Display name (defaults to the email prefix).
        email: The user's email address.
        role: The user's role.
    """

    def __init__(self, user_id: str, email: str, role: UserRole, name: str = ""):
        self.user_id = user_id
        self.id = user_id
        self.email = email
        self.role = role
        self.name = name or email.split("@")[0]

    def to_dict(self) -> dict:
        return {"userId": self.user_id, "name": self.name, "email": self.email}


def get_acting_user(
    db: DbSession,
    x_user_id: Annotated[Optional[str], Header()] = None,
    user_id: Annotated[Optional[str], Query(alias="userId")] = None,
) -> ActingUser:
    """Resolve and verify the acting user from the request."""
    from app.models.user import User

    candidate = x_user_id or user_id
    if not candidate:
        raise UnauthorizedError("A verified user id is required for this operation")

    user = db.query(User).filter(User.id == candidate).first()
    if user is None or not user.is_active:
        raise UnauthorizedError("User not found or inactive")

    return ActingUser(user_id=user.id, email=user.email, role=user.role, name=user.name or "")


def require_role(minimum_role: UserRole):
    """Dependency to require a minimum role level."""

    def role_checker(
        current_user: Annotated[ActingUser, Depends(get_acting_user)]
    ) -> ActingUser:
        user_level = ROLE_HIERARCHY.get(current_user.role, 0)
        required_level = ROLE_HIERARCHY.get(minimum_role, 0)

        if user_level < required_level:
            raise UnauthorizedError(f"Requires role {minimum_role.value} or higher")
        return current_user

    return role_checker


# Common role dependencies
RequireSuperAdmin = Annotated[ActingUser, Depends(require_role(UserRole.SUPER_ADMIN))]
