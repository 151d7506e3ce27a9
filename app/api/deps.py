from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.security import StaffRole, decode_access_token

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class StaffPrincipal:
    subject: str
    role: str

    @property
    def actor(self) -> str:
        return f"{self.role}:{self.subject}"


def get_current_staff(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> StaffPrincipal:
    unauthorized_exc = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise unauthorized_exc
    try:
        payload = decode_access_token(credentials.credentials)
    except ValueError:
        raise unauthorized_exc from None

    subject = payload.get("sub")
    role = payload.get("role")
    if not subject or not role:
        raise unauthorized_exc
    return StaffPrincipal(subject=str(subject), role=str(role))


def require_roles(*roles: StaffRole | str) -> Callable[[StaffPrincipal], StaffPrincipal]:
    allowed_roles = {role.value if isinstance(role, StaffRole) else role for role in roles}

    def checker(current_staff: StaffPrincipal = Depends(get_current_staff)) -> StaffPrincipal:
        if current_staff.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Not enough permissions",
            )
        return current_staff

    return checker


def get_now() -> datetime:
    return datetime.now(UTC)
