from enum import Enum
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel, EmailStr


class UserRole(str, Enum):
    ADMIN = "admin"
    TEACHER = "teacher"
    STUDENT = "student"
    VISITOR = "visitor"


class VerifiedUser(BaseModel):
    """Identity the auth service vouches for; set on `request.state.user` by the gateway."""

    sub: str
    email: EmailStr
    role: UserRole = UserRole.VISITOR
    is_approved: bool = True
    level: Optional[str] = None  # lmd1 / ing1, students only


def current_user(request: Request) -> VerifiedUser:
    user = getattr(request.state, "user", None)
    if not isinstance(user, VerifiedUser):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not authenticated")
    return user


def require_role(*roles: str):
    allowed = {UserRole(r) for r in roles}

    def dependency(user: VerifiedUser = Depends(current_user)) -> VerifiedUser:
        if user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"User role {user.role.value} is not authorized to access this route",
            )
        # teachers and students need an admin approval first
        if user.role in (UserRole.TEACHER, UserRole.STUDENT) and not user.is_approved:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Your account is pending approval by an administrator",
            )
        return user

    return dependency
