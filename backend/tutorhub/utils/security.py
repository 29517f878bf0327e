from dataclasses import dataclass
from enum import Enum
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from ..database import get_db
from ..exceptions import AuthProviderError
from ..models.user import User
from ..services.auth_provider import AuthResolver, get_auth_resolver

ACCESS_TOKEN_COOKIE = "sb-access-token"

bearer_scheme = HTTPBearer(auto_error=False)


class UserRole(str, Enum):
    SUPER_ADMIN = "super_admin"
    CENTER_ADMIN = "center_admin"
    CENTER_STAFF = "center_staff"


class Capability(str, Enum):
    MANAGE_PORTAL_TOKENS = "manage_portal_tokens"
    SEND_NOTIFICATIONS = "send_notifications"
    VIEW_NOTIFICATIONS = "view_notifications"
    MANAGE_SUBSCRIPTION = "manage_subscription"
    VIEW_SUBSCRIPTION = "view_subscription"
    MANAGE_STUDENTS = "manage_students"
    MANAGE_STAFF = "manage_staff"
    REVERSE_PAYMENTS = "reverse_payments"


ROLE_CAPABILITIES = {
    UserRole.SUPER_ADMIN: frozenset(Capability),
    UserRole.CENTER_ADMIN: frozenset(Capability),
    UserRole.CENTER_STAFF: frozenset({
        Capability.VIEW_NOTIFICATIONS,
        Capability.VIEW_SUBSCRIPTION,
        Capability.MANAGE_STUDENTS,
    }),
}


@dataclass(frozen=True)
class AuthenticatedUser:
    """Resolved caller, passed explicitly to every staff route"""
    id: str
    email: str
    role: UserRole
    center_id: Optional[str]
    is_active: bool
    full_name: Optional[str] = None

    @property
    def is_super_admin(self) -> bool:
        return self.role == UserRole.SUPER_ADMIN

    def can(self, capability: Capability) -> bool:
        return capability in ROLE_CAPABILITIES.get(self.role, frozenset())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "fullName": self.full_name,
            "role": self.role.value,
            "centerId": self.center_id,
            "isActive": self.is_active,
        }


def extract_access_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    """Session cookie first, then the Authorization: Bearer header"""
    token = request.cookies.get(ACCESS_TOKEN_COOKIE)
    if token:
        return token
    if credentials and credentials.scheme.lower() == "bearer" and credentials.credentials:
        return credentials.credentials
    return None


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
    resolver: AuthResolver = Depends(get_auth_resolver)
) -> AuthenticatedUser:
    """Get current authenticated staff user from the provider session token"""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )

    access_token = extract_access_token(request, credentials)
    if not access_token:
        raise credentials_exception

    try:
        provider_user = await resolver.resolve(access_token)
    except AuthProviderError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication service unavailable"
        )

    if provider_user is None:
        raise credentials_exception

    profile = db.query(User).filter(User.id == provider_user["id"]).first()
    if profile is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User profile not found")

    if not profile.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User account is deactivated")

    try:
        role = UserRole(profile.role)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")

    return AuthenticatedUser(
        id=profile.id,
        email=profile.email,
        role=role,
        center_id=profile.center_id,
        is_active=profile.is_active,
        full_name=profile.full_name
    )


def require_capability(capability: Capability):
    """Dependency factory: the caller's role must grant `capability`"""
    def capability_checker(current_user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
        if not current_user.can(capability):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions"
            )
        return current_user
    return capability_checker


def verify_center_access(user: AuthenticatedUser, center_id: Optional[str]) -> bool:
    """Super admins see every center; everyone else only their own"""
    if user.is_super_admin:
        return True
    return user.center_id is not None and user.center_id == center_id


def require_center(user: AuthenticatedUser) -> str:
    if not user.center_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No center associated")
    return user.center_id
