"""FastAPI dependency injection utilities."""

from typing import Annotated

from fastapi import Depends, Header
from sqlalchemy import select
from sqlalchemy.orm import Session

from results_api.core.database import get_db
from results_api.core.exceptions import AuthenticationError, PermissionDeniedError
from results_api.core.security import verify_access_token
from results_api.models.user import User, UserRole


def get_current_user(
    db: Annotated[Session, Depends(get_db)],
    authorization: str = Header(..., description="Bearer token"),
) -> User:
    """Extract and validate the current user from JWT token."""
    if not authorization.startswith("Bearer "):
        raise AuthenticationError("Invalid authorization header format")

    token = authorization[7:]  # Remove "Bearer " prefix
    payload = verify_access_token(token)

    if not payload:
        raise AuthenticationError("Invalid or expired token")

    user_id_str = payload.get("sub")
    if not user_id_str:
        raise AuthenticationError("Invalid token payload")

    try:
        user_id = int(user_id_str)
    except ValueError:
        raise AuthenticationError("Invalid user ID in token")

    result = db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user:
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise AuthenticationError("User account is deactivated")

    return user


def require_roles(*roles: UserRole):
    """Dependency factory that requires one of the given roles."""
    allowed = [role.value for role in roles]

    def check_role(user: Annotated[User, Depends(get_current_user)]) -> User:
        if user.role not in roles:
            raise PermissionDeniedError(
                f"One of roles {allowed} required",
                required_roles=allowed,
            )
        return user

    return check_role


def is_restricted_viewer(user: User) -> bool:
    """Students and parents only see published results."""
    return user.role in (UserRole.STUDENT, UserRole.PARENT)


# Type aliases for dependency injection
CurrentUser = Annotated[User, Depends(get_current_user)]
StaffUser = Annotated[User, Depends(require_roles(UserRole.ADMIN, UserRole.TEACHER))]
AdminUser = Annotated[User, Depends(require_roles(UserRole.ADMIN))]
